"""
Pydantic models for validation and serialization.
"""

from models.base import BaseSchema, FrozenSchema
from models.catalog import (
    MatchType,
    MatchConfidence,
    PipelinePhase,
    ImageAsset,
    FeedRecord,
    FeedRowError,
    ImageRejection,
    ProductMatch,
    DuplicateRecord,
    ExistingProduct,
    FailedItem,
    BatchResult,
    UploadedProduct,
    CatalogProductRow,
    ProgressEvent,
    FailureEntry,
    PipelineSummary,
    PipelineState,
)
from models.bulk_upload import (
    ManualMatchRequest,
    DuplicateDecisionRequest,
    MatchView,
    MatchStatsView,
    RunResponse,
)

__all__ = [
    # Base
    "BaseSchema",
    "FrozenSchema",

    # Catalog ingestion
    "MatchType",
    "MatchConfidence",
    "PipelinePhase",
    "ImageAsset",
    "FeedRecord",
    "FeedRowError",
    "ImageRejection",
    "ProductMatch",
    "DuplicateRecord",
    "ExistingProduct",
    "FailedItem",
    "BatchResult",
    "UploadedProduct",
    "CatalogProductRow",
    "ProgressEvent",
    "FailureEntry",
    "PipelineSummary",
    "PipelineState",

    # Bulk upload API
    "ManualMatchRequest",
    "DuplicateDecisionRequest",
    "MatchView",
    "MatchStatsView",
    "RunResponse",
]
