"""
Input parsers for bulk catalog uploads.
"""

from parsers.feed_parser import (
    FeedParseResult,
    validate_feed_rows,
    read_feed_file,
    parse_price_cents,
)
from parsers.image_files import (
    ImageFileInput,
    ImageCollectResult,
    collect_images,
    validate_image,
)

__all__ = [
    # Feed
    "FeedParseResult",
    "validate_feed_rows",
    "read_feed_file",
    "parse_price_cents",

    # Images
    "ImageFileInput",
    "ImageCollectResult",
    "collect_images",
    "validate_image",
]
