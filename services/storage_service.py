"""
Object storage for product images.

Every upload goes to a fresh, timestamp-prefixed path, so re-running a
partially failed upload can never overwrite or collide with images that
already made it in an earlier attempt.
"""

import asyncio
import re
import time
import uuid
from typing import Optional, Protocol

import structlog
from supabase import Client

from config import get_admin_client, get_supabase_client, settings
from exceptions import ExternalServiceError, StorageUnavailableError
from utils.text_utils import strip_accents

logger = structlog.get_logger(__name__)

_UNSAFE_PATH_CHARS = re.compile(r"[^A-Za-z0-9._-]+")


class ObjectStore(Protocol):
    """Binary upload target that hands back public URLs."""

    async def ensure_available(self) -> None:
        """Raise StorageUnavailableError if the store cannot be reached."""
        ...

    async def put(self, path: str, content: bytes, content_type: Optional[str] = None) -> str:
        """Store content at path (never overwriting) and return its public URL."""
        ...


def safe_filename(filename: str) -> str:
    """
    Filename reduced to characters every object store accepts.

    "Taza Roja (1).JPG" → "Taza_Roja_1_.JPG"
    """
    base = re.split(r"[/\\]", filename)[-1]
    cleaned = _UNSAFE_PATH_CHARS.sub("_", strip_accents(base)).strip("._")
    return cleaned or "image"


def build_storage_path(
    owner_id: str,
    filename: str,
    timestamp_ms: Optional[int] = None,
) -> str:
    """
    Unique storage key for one upload attempt.

    Format: {owner_id}/{epoch millis}_{random 8 hex}_{safe filename}
    The random part keeps two uploads in the same millisecond apart.
    """
    if timestamp_ms is None:
        timestamp_ms = time.time_ns() // 1_000_000
    return f"{owner_id}/{timestamp_ms}_{uuid.uuid4().hex[:8]}_{safe_filename(filename)}"


class SupabaseObjectStore:
    """
    Image storage in a Supabase storage bucket.

    Uses the admin client when a service key is configured so uploads are
    not blocked by bucket policies.
    """

    def __init__(self, client: Optional[Client] = None, bucket: Optional[str] = None):
        self.db = client or get_admin_client() or get_supabase_client()
        self.bucket = bucket or settings.storage_bucket

    async def ensure_available(self) -> None:
        """
        Probe the bucket before the first upload.

        Raises:
            StorageUnavailableError: If the bucket cannot be read
        """
        try:
            await asyncio.to_thread(self.db.storage.get_bucket, self.bucket)
        except Exception as e:
            logger.error("storage_unavailable", bucket=self.bucket, error=str(e))
            raise StorageUnavailableError("Object storage", str(e)) from e

        logger.debug("storage_available", bucket=self.bucket)

    async def put(self, path: str, content: bytes, content_type: Optional[str] = None) -> str:
        """
        Upload content to a new path.

        Raises:
            ExternalServiceError: If the upload fails
        """
        try:
            url = await asyncio.to_thread(self._put, path, content, content_type)
        except Exception as e:
            logger.warning("image_upload_failed", bucket=self.bucket, path=path, error=str(e))
            raise ExternalServiceError("storage", f"Upload failed: {e}", details={"path": path})

        logger.debug("image_uploaded", bucket=self.bucket, path=path, size=len(content))
        return url

    def _put(self, path: str, content: bytes, content_type: Optional[str]) -> str:
        bucket = self.db.storage.from_(self.bucket)
        bucket.upload(
            path,
            content,
            file_options={
                "content-type": content_type or "application/octet-stream",
                "upsert": "false",
            },
        )
        return str(bucket.get_public_url(path))
