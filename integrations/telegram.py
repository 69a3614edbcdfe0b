"""
Telegram bot integration for bulk upload summaries.

Sends the end-of-run summary ({succeeded, failed}) to a Telegram chat.
Delivery is best effort: the upload result never depends on it.
"""

from typing import Optional
import requests
import structlog

from config.settings import get_settings
from integrations.telegram_messages import get_message
from models.catalog import PipelineSummary

logger = structlog.get_logger(__name__)


class TelegramError(Exception):
    """Telegram API error."""
    pass


def get_telegram_config() -> tuple[Optional[str], Optional[str]]:
    """
    Get Telegram configuration from settings.

    Returns:
        tuple: (bot_token, chat_id)
    """
    settings = get_settings()
    bot_token = settings.telegram_bot_token
    chat_id = settings.telegram_chat_id

    if not bot_token or not chat_id:
        logger.warning(
            "telegram_not_configured",
            has_token=bool(bot_token),
            has_chat_id=bool(chat_id)
        )

    return bot_token, chat_id


def format_summary_message(summary: PipelineSummary) -> str:
    """
    Format an upload summary as a Telegram message.

    Args:
        summary: Terminal summary of a run

    Returns:
        Formatted message string
    """
    if summary.failed:
        lines = [get_message("upload_partial", succeeded=summary.succeeded, failed=summary.failed)]
    else:
        lines = [get_message("upload_done", succeeded=summary.succeeded)]

    extras = []
    if summary.skipped_duplicates:
        extras.append(get_message("upload_skipped_duplicates", count=summary.skipped_duplicates))
    if summary.unmatched_images:
        extras.append(get_message("upload_unmatched_images", count=summary.unmatched_images))
    if summary.unmatched_rows:
        extras.append(get_message("upload_unmatched_rows", count=summary.unmatched_rows))
    if summary.rejected_rows:
        extras.append(get_message("upload_rejected_rows", count=summary.rejected_rows))

    if extras:
        lines.append("")
        lines.extend(extras)

    return "\n".join(lines)


def send_message(message: str, parse_mode: str = "Markdown") -> bool:
    """
    Send message to Telegram.

    Args:
        message: Message text to send
        parse_mode: Telegram parse mode (Markdown or HTML)

    Returns:
        True if sent, False if Telegram is not configured

    Raises:
        TelegramError: If send fails
    """
    bot_token, chat_id = get_telegram_config()

    if not bot_token or not chat_id:
        logger.warning("telegram_not_configured_skipping_send")
        return False

    url = f"https://api.telegram.org/bot{bot_token}/sendMessage"

    payload = {
        "chat_id": chat_id,
        "text": message,
        "parse_mode": parse_mode,
        "disable_web_page_preview": True,
    }

    try:
        logger.info("sending_telegram_message", chat_id=chat_id)

        response = requests.post(url, json=payload, timeout=10)
        response.raise_for_status()

        result = response.json()

        if not result.get("ok"):
            error_msg = result.get("description", "Unknown error")
            logger.error("telegram_api_error", error=error_msg)
            raise TelegramError(f"Telegram API error: {error_msg}")

        logger.info("telegram_message_sent", message_id=result.get("result", {}).get("message_id"))
        return True

    except requests.exceptions.RequestException as e:
        logger.error("telegram_request_failed", error=str(e))
        raise TelegramError(f"Failed to send Telegram message: {str(e)}")


class TelegramNotifier:
    """Notification surface for finished bulk uploads."""

    def send_summary(self, summary: PipelineSummary) -> bool:
        """
        Send the run summary.

        Returns:
            True if delivered; False if not configured or delivery failed
        """
        try:
            return send_message(format_summary_message(summary))
        except TelegramError as e:
            logger.warning(
                "upload_summary_not_delivered",
                succeeded=summary.succeeded,
                failed=summary.failed,
                error=str(e)
            )
            return False


def get_notifier() -> Optional[TelegramNotifier]:
    """Notifier when Telegram is configured, else None."""
    if not get_settings().telegram_configured:
        return None
    return TelegramNotifier()
