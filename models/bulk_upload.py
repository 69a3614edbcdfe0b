"""
Bulk upload API schemas.

Request bodies and the JSON views of a run returned by /api/bulk-upload.
"""

from typing import Optional

from pydantic import Field

from models.base import BaseSchema
from models.catalog import (
    DuplicateRecord,
    FeedRowError,
    ImageRejection,
    MatchConfidence,
    MatchType,
    PipelinePhase,
    PipelineState,
    PipelineSummary,
    ProductMatch,
)


# ===================
# REQUESTS
# ===================

class ManualMatchRequest(BaseSchema):
    """Pin a feed row (by SKU) to one image."""

    sku: str = Field(
        ...,
        min_length=1,
        max_length=50,
        description="SKU of a row in the uploaded feed",
        examples=["A1"]
    )


class DuplicateDecisionRequest(BaseSchema):
    """Answer to the duplicate SKU prompt."""

    proceed: bool = Field(
        ...,
        description="True skips duplicate SKUs and continues; False cancels the upload"
    )


# ===================
# RESPONSES
# ===================

class MatchView(BaseSchema):
    """One row of the match review table."""

    index: int
    filename: str
    clean_name: str
    sku: Optional[str] = None
    product_name: Optional[str] = None
    match_type: MatchType
    match_score: int
    confidence: MatchConfidence
    secondary_images: list[str] = Field(default_factory=list)

    @classmethod
    def from_match(cls, index: int, match: ProductMatch, confidence: MatchConfidence) -> "MatchView":
        record = match.feed_record
        return cls(
            index=index,
            filename=match.image.filename,
            clean_name=match.image.clean_name,
            sku=record.sku if record else None,
            product_name=record.name if record else None,
            match_type=match.match_type,
            match_score=match.match_score,
            confidence=confidence,
            secondary_images=[image.filename for image in match.secondary_images],
        )


class MatchStatsView(BaseSchema):
    """Counts shown above the match table."""

    total: int = 0
    matched: int = 0
    unmatched: int = 0
    with_secondary: int = 0
    by_type: dict[str, int] = Field(default_factory=dict)


class RunResponse(BaseSchema):
    """Snapshot of a bulk upload run."""

    run_id: str = Field(..., description="Upload run identifier")
    phase: PipelinePhase
    feed_rows: int = 0
    matches: list[MatchView] = Field(default_factory=list)
    stats: MatchStatsView = Field(default_factory=MatchStatsView)
    rejected_rows: list[FeedRowError] = Field(default_factory=list)
    rejected_images: list[ImageRejection] = Field(default_factory=list)
    duplicates: list[DuplicateRecord] = Field(default_factory=list)
    duplicates_checked: bool = False
    proceed_with_duplicates: Optional[bool] = None
    summary: Optional[PipelineSummary] = None
    error: Optional[str] = None

    @classmethod
    def from_state(
        cls,
        run_id: str,
        state: PipelineState,
        confidences: list[MatchConfidence],
        stats: MatchStatsView,
    ) -> "RunResponse":
        return cls(
            run_id=run_id,
            phase=state.phase,
            feed_rows=len(state.feed),
            matches=[
                MatchView.from_match(i, match, confidence)
                for i, (match, confidence) in enumerate(zip(state.matches, confidences))
            ],
            stats=stats,
            rejected_rows=list(state.rejected_rows),
            rejected_images=list(state.rejected_images),
            duplicates=list(state.duplicates),
            duplicates_checked=state.duplicates_checked,
            proceed_with_duplicates=state.proceed_with_duplicates,
            summary=state.summary,
            error=state.error,
        )
