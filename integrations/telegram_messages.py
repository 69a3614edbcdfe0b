"""
Centralized Telegram message templates with i18n support.

Usage:
    from integrations.telegram_messages import get_message

    message = get_message("upload_done", succeeded=42)
"""

import os

# Language setting - defaults to Spanish
LANG = os.getenv("TELEGRAM_LANGUAGE", "es")

MESSAGES = {
    "en": {
        "upload_done": """✅ *Bulk upload finished*

{succeeded} products added to the catalog.""",

        "upload_partial": """⚠️ *Bulk upload finished with errors*

Added: {succeeded}
Need a retry: {failed}""",

        "upload_skipped_duplicates": "Skipped (SKU already in catalog): {count}",
        "upload_unmatched_images": "Images without a product: {count}",
        "upload_unmatched_rows": "Products without an image: {count}",
        "upload_rejected_rows": "Feed rows rejected: {count}",
    },
    "es": {
        "upload_done": """✅ *Carga masiva terminada*

{succeeded} productos agregados al catálogo.""",

        "upload_partial": """⚠️ *Carga masiva terminada con errores*

Agregados: {succeeded}
Requieren reintento: {failed}""",

        "upload_skipped_duplicates": "Omitidos (SKU ya existe): {count}",
        "upload_unmatched_images": "Imágenes sin producto: {count}",
        "upload_unmatched_rows": "Productos sin imagen: {count}",
        "upload_rejected_rows": "Filas rechazadas del archivo: {count}",
    },
}


def get_message(key: str, **kwargs) -> str:
    """
    Get translated message template and format with kwargs.

    Args:
        key: Message template key
        **kwargs: Format arguments for the template

    Returns:
        Formatted message string in the configured language
    """
    lang_messages = MESSAGES.get(LANG, MESSAGES["es"])
    template = lang_messages.get(key, MESSAGES["en"].get(key, key))
    try:
        return template.format(**kwargs)
    except KeyError:
        # Return template as-is if formatting fails
        return template

