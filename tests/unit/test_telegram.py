"""
Unit tests for Telegram upload notifications.

Run: pytest tests/unit/test_telegram.py -v
"""

from unittest.mock import MagicMock, patch

import pytest
import requests

from integrations.telegram import (
    TelegramError,
    TelegramNotifier,
    format_summary_message,
    send_message,
)
from models.catalog import PipelineSummary


@pytest.fixture
def configured():
    with patch("integrations.telegram.get_telegram_config", return_value=("token-123", "chat-9")):
        yield


def ok_response(message_id: int = 1) -> MagicMock:
    response = MagicMock()
    response.json.return_value = {"ok": True, "result": {"message_id": message_id}}
    response.raise_for_status.return_value = None
    return response


class TestFormatSummaryMessage:
    """Tests for format_summary_message()"""

    def test_partial_failure_mentions_both_counts(self):
        text = format_summary_message(PipelineSummary(succeeded=8, failed=2))

        assert "8" in text
        assert "2" in text

    def test_extra_counts_only_when_present(self):
        plain = format_summary_message(PipelineSummary(succeeded=5))
        with_skips = format_summary_message(PipelineSummary(succeeded=5, skipped_duplicates=3))

        assert len(with_skips.splitlines()) > len(plain.splitlines())
        assert "3" in with_skips

    def test_unmatched_rows_line(self):
        with patch("integrations.telegram_messages.LANG", "en"):
            text = format_summary_message(PipelineSummary(succeeded=5, unmatched_rows=4))

        assert "Products without an image: 4" in text


class TestSendMessage:
    """Tests for send_message()"""

    def test_posts_to_bot_api(self, configured):
        with patch("integrations.telegram.requests.post", return_value=ok_response()) as post:
            assert send_message("hola") is True

        url = post.call_args.args[0]
        payload = post.call_args.kwargs["json"]
        assert url == "https://api.telegram.org/bottoken-123/sendMessage"
        assert payload["chat_id"] == "chat-9"
        assert payload["text"] == "hola"

    def test_not_configured_skips(self):
        with patch("integrations.telegram.get_telegram_config", return_value=(None, None)):
            with patch("integrations.telegram.requests.post") as post:
                assert send_message("hola") is False

        post.assert_not_called()

    def test_api_error(self, configured):
        response = ok_response()
        response.json.return_value = {"ok": False, "description": "chat not found"}

        with patch("integrations.telegram.requests.post", return_value=response):
            with pytest.raises(TelegramError):
                send_message("hola")

    def test_network_error(self, configured):
        with patch(
            "integrations.telegram.requests.post",
            side_effect=requests.exceptions.ConnectionError("offline"),
        ):
            with pytest.raises(TelegramError):
                send_message("hola")


class TestTelegramNotifier:
    """Tests for TelegramNotifier.send_summary()"""

    def test_delivered(self, configured):
        with patch("integrations.telegram.requests.post", return_value=ok_response()):
            assert TelegramNotifier().send_summary(PipelineSummary(succeeded=1)) is True

    def test_delivery_failure_returns_false(self, configured):
        with patch(
            "integrations.telegram.requests.post",
            side_effect=requests.exceptions.Timeout("slow"),
        ):
            assert TelegramNotifier().send_summary(PipelineSummary(succeeded=1, failed=1)) is False
