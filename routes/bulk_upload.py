"""
Bulk upload API routes.

A run is created from a feed file plus images, reviewed and corrected,
passed through the duplicate gate, then committed.
"""

from dataclasses import asdict
from typing import Optional
import json

from fastapi import APIRouter, File, Form, Header, UploadFile
from fastapi.responses import JSONResponse, StreamingResponse
import structlog

from config.settings import get_settings
from exceptions import (
    AppError,
    FeedParseError,
    InvalidPhaseTransitionError,
    MissingOwnerError,
)
from models.bulk_upload import (
    DuplicateDecisionRequest,
    ManualMatchRequest,
    MatchStatsView,
    RunResponse,
)
from parsers import ImageFileInput, collect_images, read_feed_file
from services.bulk_upload_service import BulkUploadPipeline, get_run_registry
from services.export_service import get_export_service

logger = structlog.get_logger(__name__)

router = APIRouter()

XLSX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"


# ===================
# EXCEPTION HANDLER
# ===================

def handle_error(e: Exception) -> JSONResponse:
    """Convert exception to JSON response."""
    if isinstance(e, AppError):
        return JSONResponse(
            status_code=e.status_code,
            content=e.to_dict()
        )
    # Unexpected error
    logger.error("unexpected_error", error=str(e), type=type(e).__name__)
    return JSONResponse(
        status_code=500,
        content={
            "error": {
                "code": "INTERNAL_ERROR",
                "message": "An unexpected error occurred"
            }
        }
    )


# ===================
# HELPERS
# ===================

def require_owner(owner_id: Optional[str]) -> str:
    if not owner_id or not owner_id.strip():
        raise MissingOwnerError()
    return owner_id.strip()


def run_response(run_id: str, pipeline: BulkUploadPipeline) -> RunResponse:
    """Serialize a run snapshot with confidence buckets and stats."""
    state = pipeline.state
    policy = pipeline.matching.policy
    stats = pipeline.matching.match_stats(state.matches)
    return RunResponse.from_state(
        run_id,
        state,
        confidences=[policy.confidence_for(m) for m in state.matches],
        stats=MatchStatsView(**asdict(stats)),
    )


def parse_column_mapping(raw: Optional[str]) -> Optional[dict[str, str]]:
    """Column mapping form field: JSON object {source column: feed field}."""
    if not raw:
        return None
    try:
        mapping = json.loads(raw)
    except json.JSONDecodeError as e:
        raise FeedParseError(
            message="column_mapping must be a JSON object",
            details={"original_error": str(e)}
        )
    if not isinstance(mapping, dict):
        raise FeedParseError(message="column_mapping must be a JSON object")
    return {str(k): str(v) for k, v in mapping.items()}


# ===================
# ROUTES
# ===================

@router.post("/runs", response_model=RunResponse, status_code=201)
async def create_run(
    feed: UploadFile = File(..., description="Product feed (.csv or .xlsx)"),
    images: list[UploadFile] = File(..., description="Product images"),
    column_mapping: Optional[str] = Form(None, description="JSON {source column: field}"),
    owner_id: Optional[str] = Header(None, alias="X-Owner-Id"),
):
    """
    Start a bulk upload.

    Validates the feed and the images, then matches images to feed rows.
    Rejected rows and images are reported in the response; they never
    fail the whole upload.
    """
    try:
        owner = require_owner(owner_id)
        settings = get_settings()

        content = await feed.read()
        if len(content) > settings.max_feed_bytes:
            raise FeedParseError(
                message=f"Feed file is larger than {settings.max_feed_bytes // 1_000_000} MB",
                details={"filename": feed.filename, "size": len(content)}
            )

        parsed = read_feed_file(
            content,
            feed.filename or "",
            column_mapping=parse_column_mapping(column_mapping),
            max_rows=settings.max_feed_rows,
        )

        files = [
            ImageFileInput(
                filename=image.filename or "",
                content=await image.read(),
                content_type=image.content_type,
            )
            for image in images
        ]
        collected = collect_images(
            files,
            max_bytes=settings.max_image_bytes,
            max_images=settings.max_images_per_upload,
        )

        run_id, pipeline = get_run_registry().create(owner)
        pipeline.load(collected.images, parsed, collected.rejected)

        logger.info(
            "bulk_upload_run_started",
            run_id=run_id,
            owner_id=owner,
            feed_rows=len(parsed.records),
            images=len(collected.images)
        )
        return run_response(run_id, pipeline)

    except Exception as e:
        return handle_error(e)


@router.get("/runs/{run_id}", response_model=RunResponse)
async def get_run(
    run_id: str,
    owner_id: Optional[str] = Header(None, alias="X-Owner-Id"),
):
    """Current snapshot of a run."""
    try:
        pipeline = get_run_registry().get(run_id, require_owner(owner_id))
        return run_response(run_id, pipeline)

    except Exception as e:
        return handle_error(e)


@router.put("/runs/{run_id}/matches/{index}", response_model=RunResponse)
async def set_manual_match(
    run_id: str,
    index: int,
    data: ManualMatchRequest,
    owner_id: Optional[str] = Header(None, alias="X-Owner-Id"),
):
    """
    Pin a feed row to an image by hand.

    A manual match is always exact with score 100.

    Raises:
        404: SKU not in the feed
        409: Uploads already started
        422: Image index out of range
    """
    try:
        pipeline = get_run_registry().get(run_id, require_owner(owner_id))
        record = pipeline.find_feed_record(data.sku)
        pipeline.apply_manual_match(index, record)
        return run_response(run_id, pipeline)

    except Exception as e:
        return handle_error(e)


@router.delete("/runs/{run_id}/matches/{index}", response_model=RunResponse)
async def clear_manual_match(
    run_id: str,
    index: int,
    owner_id: Optional[str] = Header(None, alias="X-Owner-Id"),
):
    """Unassign the feed row of one image."""
    try:
        pipeline = get_run_registry().get(run_id, require_owner(owner_id))
        pipeline.clear_match(index)
        return run_response(run_id, pipeline)

    except Exception as e:
        return handle_error(e)


@router.post("/runs/{run_id}/duplicates", response_model=RunResponse)
async def check_duplicates(
    run_id: str,
    owner_id: Optional[str] = Header(None, alias="X-Owner-Id"),
):
    """
    Check matched SKUs against the owner's catalog.

    With duplicates the run waits in awaiting_duplicate_confirmation.
    """
    try:
        pipeline = get_run_registry().get(run_id, require_owner(owner_id))
        await pipeline.check_duplicates()
        return run_response(run_id, pipeline)

    except Exception as e:
        return handle_error(e)


@router.post("/runs/{run_id}/duplicates/decision", response_model=RunResponse)
async def decide_duplicates(
    run_id: str,
    data: DuplicateDecisionRequest,
    owner_id: Optional[str] = Header(None, alias="X-Owner-Id"),
):
    """
    Skip duplicate SKUs and continue, or cancel the upload.

    Cancelling discards the run; nothing was written.
    """
    try:
        registry = get_run_registry()
        pipeline = registry.get(run_id, require_owner(owner_id))
        pipeline.resolve_duplicates(data.proceed)

        response = run_response(run_id, pipeline)
        if not data.proceed:
            registry.remove(run_id)
        return response

    except Exception as e:
        return handle_error(e)


@router.post("/runs/{run_id}/commit", response_model=RunResponse)
async def commit_run(
    run_id: str,
    owner_id: Optional[str] = Header(None, alias="X-Owner-Id"),
):
    """
    Upload images and save the products.

    Partial failure is a completed upload: the response summary says how
    many products were added and how many need a retry.

    Raises:
        409: Duplicates not yet confirmed, or run already committed
        503: Catalog or image storage unreachable (run aborted)
    """
    try:
        pipeline = get_run_registry().get(run_id, require_owner(owner_id))
        await pipeline.commit()
        return run_response(run_id, pipeline)

    except Exception as e:
        return handle_error(e)


@router.get("/runs/{run_id}/failures.xlsx")
async def download_failure_report(
    run_id: str,
    owner_id: Optional[str] = Header(None, alias="X-Owner-Id"),
):
    """Excel report of every product that needs a retry."""
    try:
        pipeline = get_run_registry().get(run_id, require_owner(owner_id))
        summary = pipeline.state.summary
        if summary is None:
            raise InvalidPhaseTransitionError(pipeline.phase.value, "download failure report")

        output = get_export_service().generate_failure_report(summary)
        return StreamingResponse(
            output,
            media_type=XLSX_MEDIA_TYPE,
            headers={"Content-Disposition": f'attachment; filename="carga_errores_{run_id}.xlsx"'}
        )

    except Exception as e:
        return handle_error(e)


@router.delete("/runs/{run_id}")
async def cancel_run(
    run_id: str,
    owner_id: Optional[str] = Header(None, alias="X-Owner-Id"),
):
    """
    Cancel a run before uploads start, or discard a finished one.

    Raises:
        409: Uploads in progress
    """
    try:
        registry = get_run_registry()
        pipeline = registry.get(run_id, require_owner(owner_id))
        if not pipeline.phase.is_terminal:
            pipeline.cancel()
        registry.remove(run_id)

        return {"run_id": run_id, "cancelled": True}

    except Exception as e:
        return handle_error(e)
