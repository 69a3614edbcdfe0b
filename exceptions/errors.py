"""
Custom exception classes for the application.

Per-row, per-upload and per-chunk failures are recorded as data and never
raised; only the fatal pipeline errors below propagate out of a run.
"""

from typing import Optional, Any
from datetime import datetime, timezone


class AppError(Exception):
    """
    Base exception for all application errors.

    All custom exceptions inherit from this.

    Attributes:
        code: Error code (e.g., "RUN_NOT_FOUND")
        message: Human-readable message
        status_code: HTTP status code
        details: Additional context
    """

    def __init__(
        self,
        code: str,
        message: str,
        status_code: int = 500,
        details: Optional[dict[str, Any]] = None
    ):
        self.code = code
        self.message = message
        self.status_code = status_code
        self.details = details or {}
        self.timestamp = datetime.now(timezone.utc).isoformat()
        super().__init__(message)

    def to_dict(self) -> dict:
        """Convert to API response format."""
        return {
            "error": {
                "code": self.code,
                "message": self.message,
                "details": self.details,
                "timestamp": self.timestamp
            }
        }


class NotFoundError(AppError):
    """Resource not found (404)."""

    def __init__(
        self,
        resource: str,
        identifier: str,
        code: Optional[str] = None
    ):
        super().__init__(
            code=code or f"{resource.upper()}_NOT_FOUND",
            message=f"{resource} not found",
            status_code=404,
            details={"id": identifier}
        )


class ValidationError(AppError):
    """Validation failed (422)."""

    def __init__(
        self,
        message: str,
        code: str = "VALIDATION_ERROR",
        details: Optional[dict] = None
    ):
        super().__init__(
            code=code,
            message=message,
            status_code=422,
            details=details
        )


class ConflictError(AppError):
    """Conflict with existing resource (409)."""

    def __init__(
        self,
        message: str,
        code: str = "CONFLICT",
        details: Optional[dict] = None
    ):
        super().__init__(
            code=code,
            message=message,
            status_code=409,
            details=details
        )


class ExternalServiceError(AppError):
    """External service failure (503)."""

    def __init__(
        self,
        service: str,
        message: str,
        details: Optional[dict] = None
    ):
        super().__init__(
            code=f"{service.upper()}_ERROR",
            message=message,
            status_code=503,
            details={"service": service, **(details or {})}
        )


class DatabaseError(AppError):
    """Database operation failed (500)."""

    def __init__(
        self,
        operation: str,
        message: str,
        details: Optional[dict] = None
    ):
        super().__init__(
            code="DATABASE_ERROR",
            message=f"Database {operation} failed: {message}",
            status_code=500,
            details={"operation": operation, **(details or {})}
        )


# ===================
# FEED / IMAGE INTAKE ERRORS
# ===================

class FeedParseError(ValidationError):
    """Feed file could not be read as a whole."""

    def __init__(
        self,
        message: str,
        details: Optional[dict] = None
    ):
        super().__init__(
            code="FEED_PARSE_ERROR",
            message=message,
            details=details
        )


class FeedRowValidationError(ValidationError):
    """A single feed row is missing SKU, name or price, or has bad values."""

    def __init__(self, row: int, field: str, error: str, sku: Optional[str] = None):
        self.row = row
        self.field = field
        self.error = error
        self.sku = sku
        super().__init__(
            code="FEED_ROW_INVALID",
            message=f"Row {row}: {field} {error}",
            details={"row": row, "field": field, "error": error, "sku": sku}
        )


class ImageValidationError(ValidationError):
    """An uploaded image was rejected before matching."""

    def __init__(self, filename: str, error: str):
        self.filename = filename
        self.error = error
        super().__init__(
            code="IMAGE_INVALID",
            message=f"{filename}: {error}",
            details={"filename": filename, "error": error}
        )


# ===================
# MATCHING ERRORS
# ===================

class MatchIndexError(ValidationError):
    """Manual override points at a match that does not exist."""

    def __init__(self, index: int, size: int):
        super().__init__(
            code="MATCH_INDEX_OUT_OF_RANGE",
            message=f"No match at position {index}",
            details={"index": index, "size": size}
        )


class FeedRecordNotFoundError(NotFoundError):
    """Manual override names a SKU that is not in the feed."""

    def __init__(self, sku: str):
        super().__init__(
            resource="Feed record",
            identifier=sku,
            code="FEED_RECORD_NOT_FOUND"
        )


# ===================
# PIPELINE ERRORS
# ===================

class InvalidPhaseTransitionError(ConflictError):
    """Operation not allowed in the pipeline's current phase."""

    def __init__(self, current_phase: str, requested: str):
        super().__init__(
            code="INVALID_PHASE_TRANSITION",
            message=f"Cannot {requested} while pipeline is {current_phase}",
            details={
                "current_phase": current_phase,
                "requested": requested,
            }
        )


class DuplicateDecisionRequiredError(ConflictError):
    """Duplicates were found and nobody chose to skip them or cancel."""

    def __init__(self, skus: list[str]):
        super().__init__(
            code="DUPLICATE_DECISION_REQUIRED",
            message=f"{len(skus)} SKUs already exist; confirm skipping them or cancel the upload",
            details={"skus": skus}
        )


class FatalPipelineError(AppError):
    """Unrecoverable failure; the run is aborted with nothing committed."""

    def __init__(
        self,
        message: str,
        code: str = "PIPELINE_ABORTED",
        status_code: int = 500,
        details: Optional[dict] = None
    ):
        super().__init__(
            code=code,
            message=message,
            status_code=status_code,
            details=details
        )


class MissingOwnerError(FatalPipelineError):
    """No caller identity to own the uploaded catalog."""

    def __init__(self):
        super().__init__(
            code="OWNER_REQUIRED",
            message="An owner identity is required to upload products",
            status_code=401
        )


class StorageUnavailableError(FatalPipelineError):
    """Catalog store or object store failed on the first call."""

    def __init__(self, service: str, message: str):
        super().__init__(
            code="STORAGE_UNAVAILABLE",
            message=f"{service} unreachable: {message}",
            status_code=503,
            details={"service": service}
        )


class RunNotFoundError(NotFoundError):
    """Bulk upload run not found (expired, cancelled or never created)."""

    def __init__(self, run_id: str):
        super().__init__(
            resource="Upload run",
            identifier=run_id,
            code="RUN_NOT_FOUND"
        )
