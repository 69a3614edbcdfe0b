"""
Image intake for bulk uploads.

Validates uploaded image files and wraps the accepted ones in ImageAsset,
deriving each clean name once. Only JPEG, PNG and WEBP are accepted.
"""

from dataclasses import dataclass, field
from typing import Iterable, Optional

import structlog

from exceptions import ImageValidationError
from models.catalog import ImageAsset, ImageRejection

logger = structlog.get_logger(__name__)

ALLOWED_CONTENT_TYPES = {
    "image/jpeg": "jpg",
    "image/jpg": "jpg",
    "image/png": "png",
    "image/webp": "webp",
}

ALLOWED_EXTENSIONS = {"jpg", "jpeg", "png", "webp"}

DEFAULT_MAX_IMAGE_BYTES = 5_000_000


@dataclass
class ImageFileInput:
    """An uploaded file as received from the collector."""
    filename: str
    content: bytes
    content_type: Optional[str] = None
    preview_ref: Optional[str] = None


@dataclass
class ImageCollectResult:
    """Accepted images and per-file rejections."""
    images: list[ImageAsset] = field(default_factory=list)
    rejected: list[ImageRejection] = field(default_factory=list)

    @property
    def has_images(self) -> bool:
        return len(self.images) > 0


def validate_image(file: ImageFileInput, max_bytes: int = DEFAULT_MAX_IMAGE_BYTES) -> ImageAsset:
    """
    Validate one file and build its ImageAsset.

    Raises:
        ImageValidationError: Wrong type, empty or too large
    """
    extension = file.filename.rsplit(".", 1)[-1].lower() if "." in file.filename else ""
    content_type = (file.content_type or "").lower() or None

    if content_type and content_type not in ALLOWED_CONTENT_TYPES:
        raise ImageValidationError(file.filename, "only JPG, PNG or WEBP files are accepted")
    if not content_type and extension not in ALLOWED_EXTENSIONS:
        raise ImageValidationError(file.filename, "only JPG, PNG or WEBP files are accepted")
    if not file.content:
        raise ImageValidationError(file.filename, "file is empty")
    if len(file.content) > max_bytes:
        raise ImageValidationError(
            file.filename, f"file is larger than {max_bytes // 1_000_000} MB"
        )

    return ImageAsset.from_file(
        filename=file.filename,
        content=file.content,
        content_type=content_type,
        preview_ref=file.preview_ref,
    )


def collect_images(
    files: Iterable[ImageFileInput],
    max_bytes: int = DEFAULT_MAX_IMAGE_BYTES,
    max_images: Optional[int] = None,
) -> ImageCollectResult:
    """
    Validate uploaded files into ImageAssets.

    Files past `max_images` are rejected individually rather than failing
    the whole upload.
    """
    result = ImageCollectResult()

    for file in files:
        if max_images is not None and len(result.images) >= max_images:
            result.rejected.append(ImageRejection(
                filename=file.filename,
                error=f"more than {max_images} images in one upload",
            ))
            continue

        try:
            result.images.append(validate_image(file, max_bytes))
        except ImageValidationError as e:
            logger.warning("image_rejected", filename=e.filename, error=e.error)
            result.rejected.append(ImageRejection(filename=e.filename, error=e.error))

    logger.info(
        "images_collected",
        accepted=len(result.images),
        rejected=len(result.rejected)
    )
    return result
