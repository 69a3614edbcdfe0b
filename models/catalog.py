"""
Catalog ingestion domain types.

Images and feed rows come in, ProductMatch values are produced by the
matching engine, and only CatalogProductRow values are ever persisted.
Everything except the persisted rows is discarded when a run ends.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Generic, Optional, TypeVar

from pydantic import Field, field_validator, model_validator

from models.base import FrozenSchema
from utils.text_utils import normalize_filename, split_index_suffix

T = TypeVar("T")


class MatchType(str, Enum):
    """How an image was paired with a feed row."""
    EXACT = "exact"
    CONTAINS = "contains"
    FUZZY = "fuzzy"
    NONE = "none"


class MatchConfidence(str, Enum):
    """Coarse confidence bucket shown next to a match score."""
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"
    NONE = "none"


class PipelinePhase(str, Enum):
    """Bulk upload run lifecycle."""
    IDLE = "idle"
    MATCHING = "matching"
    AWAITING_DUPLICATE_CONFIRMATION = "awaiting_duplicate_confirmation"
    UPLOADING = "uploading"
    PERSISTING = "persisting"
    DONE = "done"
    PARTIALLY_FAILED = "partially_failed"
    ABORTED = "aborted"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_PHASES


TERMINAL_PHASES = frozenset({
    PipelinePhase.DONE,
    PipelinePhase.PARTIALLY_FAILED,
    PipelinePhase.ABORTED,
})


# ===================
# INPUTS
# ===================

class ImageAsset(FrozenSchema):
    """
    An uploaded image file.

    clean_name is derived from the filename once, at construction, and
    index_suffix keeps the trailing number the normalizer removed
    ("platoazul-3.jpg" -> clean_name "platoazul", index_suffix 3).
    """

    filename: str = Field(..., min_length=1)
    content: bytes = Field(default=b"", repr=False)
    content_type: Optional[str] = None
    preview_ref: Optional[str] = None
    clean_name: str = ""
    index_suffix: Optional[int] = None

    @model_validator(mode="before")
    @classmethod
    def derive_names(cls, data: Any) -> Any:
        """Fill clean_name and index_suffix from filename when not given."""
        if not isinstance(data, dict) or not isinstance(data.get("filename"), str):
            return data
        filename = data["filename"]
        if not data.get("clean_name"):
            data = {**data, "clean_name": normalize_filename(filename)}
        if data.get("index_suffix") is None:
            data = {**data, "index_suffix": split_index_suffix(filename)[1]}
        return data

    @classmethod
    def from_file(
        cls,
        filename: str,
        content: bytes = b"",
        content_type: Optional[str] = None,
        preview_ref: Optional[str] = None,
    ) -> "ImageAsset":
        """Build an asset from an uploaded file; names are derived on validation."""
        return cls(
            filename=filename,
            content=content,
            content_type=content_type,
            preview_ref=preview_ref,
        )

    @property
    def size(self) -> int:
        return len(self.content)

    @property
    def extension(self) -> str:
        if "." not in self.filename:
            return ""
        return self.filename.rsplit(".", 1)[-1].lower()


class FeedRecord(FrozenSchema):
    """
    One validated product row from the merchant's feed.

    Prices are integer cents. source_row keeps the cells as uploaded so a
    row that was not loaded can be handed back for a retry.
    """

    sku: str = Field(..., min_length=1, max_length=50)
    name: str = Field(..., min_length=3, max_length=200)
    price_cents: int = Field(..., gt=0)
    wholesale_price_cents: Optional[int] = Field(None, gt=0)
    description: Optional[str] = None
    category: Optional[str] = None
    tags: tuple[str, ...] = ()
    row_number: Optional[int] = Field(None, description="Spreadsheet row the record came from")
    source_row: tuple[tuple[str, str], ...] = Field(
        default=(),
        repr=False,
        description="Original (column, value) cells, kept for the failure report"
    )

    @field_validator("description", "category")
    @classmethod
    def blank_to_none(cls, v: Optional[str]) -> Optional[str]:
        """Empty optional text is stored as NULL."""
        if v is None or not v.strip():
            return None
        return v


class FeedRowError(FrozenSchema):
    """Why a feed row was kept out of the match set."""
    row: int
    field: str
    error: str
    sku: Optional[str] = None


class ImageRejection(FrozenSchema):
    """Why an image was kept out of the match set."""
    filename: str
    error: str


# ===================
# MATCHING
# ===================

class ProductMatch(FrozenSchema):
    """
    A primary image paired with (at most) one feed row.

    Invariants:
        match_type == NONE  <=>  feed_record is None
        match_type == EXACT  =>  match_score == 100
    """

    image: ImageAsset
    feed_record: Optional[FeedRecord] = None
    match_type: MatchType = MatchType.NONE
    match_score: int = Field(0, ge=0, le=100)
    secondary_images: tuple[ImageAsset, ...] = ()

    @model_validator(mode="after")
    def check_invariants(self) -> "ProductMatch":
        if (self.match_type == MatchType.NONE) != (self.feed_record is None):
            raise ValueError("match_type 'none' must coincide with a missing feed_record")
        if self.match_type == MatchType.EXACT and self.match_score != 100:
            raise ValueError("exact matches score 100")
        return self

    @property
    def is_matched(self) -> bool:
        return self.feed_record is not None

    @property
    def all_images(self) -> tuple[ImageAsset, ...]:
        return (self.image,) + self.secondary_images


class DuplicateRecord(FrozenSchema):
    """A feed SKU that already exists in the owner's catalog."""
    sku: str
    existing_product_id: str
    existing_name: Optional[str] = None


class ExistingProduct(FrozenSchema):
    """Minimal view of a persisted catalog product."""
    id: str
    sku: str
    name: Optional[str] = None


# ===================
# BATCH RESULTS
# ===================

@dataclass(frozen=True)
class FailedItem(Generic[T]):
    """One item that did not make it, with a readable reason."""
    item: T
    error: str


@dataclass
class BatchResult(Generic[T]):
    """
    Partitioned outcome of a batch operation.

    len(successful) + len(failed) always equals the input size.
    """
    successful: list[T] = field(default_factory=list)
    failed: list[FailedItem] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.successful) + len(self.failed)

    @property
    def has_failures(self) -> bool:
        return len(self.failed) > 0


# ===================
# COMMIT
# ===================

class UploadedProduct(FrozenSchema):
    """A feed record whose images are in the object store."""
    record: FeedRecord
    image_url: str
    secondary_image_urls: tuple[str, ...] = ()


class CatalogProductRow(FrozenSchema):
    """Row shape inserted into the catalog table."""

    user_id: str
    sku: str
    name: str
    price_retail: int
    price_wholesale: Optional[int] = None
    description: Optional[str] = None
    category: Optional[str] = None
    tags: list[str] = Field(default_factory=list)
    original_image_url: str
    secondary_image_urls: list[str] = Field(default_factory=list)
    processing_status: str = "completed"

    @classmethod
    def from_upload(cls, owner_id: str, uploaded: UploadedProduct) -> "CatalogProductRow":
        record = uploaded.record
        return cls(
            user_id=owner_id,
            sku=record.sku,
            name=record.name,
            price_retail=record.price_cents,
            price_wholesale=record.wholesale_price_cents,
            description=record.description,
            category=record.category,
            tags=list(record.tags),
            original_image_url=uploaded.image_url,
            secondary_image_urls=list(uploaded.secondary_image_urls),
        )


# ===================
# PROGRESS / SUMMARY
# ===================

class ProgressEvent(FrozenSchema):
    """Progress of the current phase."""
    phase: PipelinePhase
    completed: int = Field(..., ge=0)
    total: int = Field(..., ge=0)


class FailureEntry(FrozenSchema):
    """A product that needs a retry, and why."""
    sku: str
    name: str
    stage: str  # "match", "upload" or "persist"
    error: str
    row: Optional[int] = None
    source_row: tuple[tuple[str, str], ...] = ()

    @classmethod
    def for_record(cls, record: FeedRecord, stage: str, error: str) -> "FailureEntry":
        return cls(
            sku=record.sku,
            name=record.name,
            stage=stage,
            error=error,
            row=record.row_number,
            source_row=record.source_row,
        )


class PipelineSummary(FrozenSchema):
    """End-of-run counts reported to the merchant."""

    succeeded: int = 0
    failed: int = 0
    skipped_duplicates: int = 0
    unmatched_images: int = 0
    unmatched_rows: int = 0
    rejected_rows: int = 0
    failures: tuple[FailureEntry, ...] = ()

    def as_notification(self) -> dict:
        return {"succeeded": self.succeeded, "failed": self.failed}


class PipelineState(FrozenSchema):
    """Immutable snapshot of a run, replaced wholesale on every change."""

    phase: PipelinePhase = PipelinePhase.IDLE
    feed: tuple[FeedRecord, ...] = ()
    matches: tuple[ProductMatch, ...] = ()
    rejected_rows: tuple[FeedRowError, ...] = ()
    rejected_images: tuple[ImageRejection, ...] = ()
    duplicates: tuple[DuplicateRecord, ...] = ()
    duplicates_checked: bool = False
    proceed_with_duplicates: Optional[bool] = None
    summary: Optional[PipelineSummary] = None
    error: Optional[str] = None
