"""
Custom exceptions module.
"""

from exceptions.errors import (
    # Base exceptions
    AppError,
    NotFoundError,
    ValidationError,
    ConflictError,
    ExternalServiceError,
    DatabaseError,

    # Feed / image intake
    FeedParseError,
    FeedRowValidationError,
    ImageValidationError,

    # Matching
    MatchIndexError,
    FeedRecordNotFoundError,

    # Pipeline
    InvalidPhaseTransitionError,
    DuplicateDecisionRequiredError,
    FatalPipelineError,
    MissingOwnerError,
    StorageUnavailableError,
    RunNotFoundError,
)

__all__ = [
    # Base
    "AppError",
    "NotFoundError",
    "ValidationError",
    "ConflictError",
    "ExternalServiceError",
    "DatabaseError",

    # Feed / image intake
    "FeedParseError",
    "FeedRowValidationError",
    "ImageValidationError",

    # Matching
    "MatchIndexError",
    "FeedRecordNotFoundError",

    # Pipeline
    "InvalidPhaseTransitionError",
    "DuplicateDecisionRequiredError",
    "FatalPipelineError",
    "MissingOwnerError",
    "StorageUnavailableError",
    "RunNotFoundError",
]
