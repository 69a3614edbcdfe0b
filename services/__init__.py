"""
Business logic services.

Each service handles one domain area.
"""

from services.matching_service import (
    MatchingService,
    MatchPolicy,
    MatchStats,
    get_matching_service,
)
from services.catalog_repository import CatalogRepository, SupabaseCatalogRepository
from services.storage_service import ObjectStore, SupabaseObjectStore, build_storage_path
from services.duplicate_service import DuplicateDetectionService
from services.export_service import ExportService, get_export_service, build_failure_report
from services.bulk_upload_service import (
    BulkUploadPipeline,
    BulkUploadRunRegistry,
    get_run_registry,
)

__all__ = [
    "MatchingService",
    "MatchPolicy",
    "MatchStats",
    "get_matching_service",
    "CatalogRepository",
    "SupabaseCatalogRepository",
    "ObjectStore",
    "SupabaseObjectStore",
    "build_storage_path",
    "DuplicateDetectionService",
    "ExportService",
    "get_export_service",
    "build_failure_report",
    "BulkUploadPipeline",
    "BulkUploadRunRegistry",
    "get_run_registry",
]
