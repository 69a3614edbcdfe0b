"""
Duplicate SKU detection.

Before anything is uploaded, the candidate SKUs of a run are checked
against the owner's existing catalog. Duplicates are never merged or
overwritten; the caller decides to skip them or cancel the run.
"""

from typing import Optional, Sequence

import structlog

from exceptions import MissingOwnerError
from models.catalog import DuplicateRecord
from services.catalog_repository import CatalogRepository

logger = structlog.get_logger(__name__)


class DuplicateDetectionService:
    """Cross-references candidate SKUs with persisted catalog SKUs."""

    def __init__(self, repository: CatalogRepository):
        self.repository = repository

    async def detect(self, owner_id: str, skus: Sequence[str]) -> list[DuplicateRecord]:
        """
        SKUs from `skus` that the owner already has.

        Returns exactly the intersection of `skus` and the owner's existing
        SKUs, once per SKU, in the order the SKUs were given.

        Raises:
            MissingOwnerError: If owner_id is empty
            DatabaseError: If the catalog lookup fails
        """
        if not owner_id:
            raise MissingOwnerError()

        wanted = list(dict.fromkeys(sku for sku in skus if sku))
        if not wanted:
            return []

        existing = await self.repository.find_skus_by_owner(owner_id, wanted)

        # The store may return extra rows (e.g. case-insensitive collation)
        by_sku: dict[str, DuplicateRecord] = {}
        wanted_set = set(wanted)
        for product in existing:
            if product.sku in wanted_set and product.sku not in by_sku:
                by_sku[product.sku] = DuplicateRecord(
                    sku=product.sku,
                    existing_product_id=product.id,
                    existing_name=product.name,
                )

        duplicates = [by_sku[sku] for sku in wanted if sku in by_sku]

        logger.info(
            "duplicates_detected",
            owner_id=owner_id,
            candidates=len(wanted),
            duplicates=len(duplicates)
        )
        return duplicates


def duplicate_skus(duplicates: Optional[Sequence[DuplicateRecord]]) -> set[str]:
    """SKU set of a duplicate list."""
    return {d.sku for d in duplicates or ()}
