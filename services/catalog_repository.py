"""
Catalog repository.

The ingestion pipeline only ever needs two things from the catalog store:
which of these SKUs does the owner already have, and insert these rows.
CatalogRepository is that narrow interface; SupabaseCatalogRepository is
the production implementation.
"""

import asyncio
from typing import Optional, Protocol, Sequence

import structlog
from supabase import Client

from config import get_supabase_client, settings
from config.database import DatabaseSession
from exceptions import DatabaseError
from models.catalog import CatalogProductRow, ExistingProduct
from utils.batch_processing import chunk_list

logger = structlog.get_logger(__name__)


class CatalogRepository(Protocol):
    """Persistence operations used by bulk uploads."""

    async def find_skus_by_owner(
        self,
        owner_id: str,
        skus: Sequence[str],
    ) -> list[ExistingProduct]:
        """Products of `owner_id` whose SKU is in `skus`."""
        ...

    async def insert_many(
        self,
        owner_id: str,
        rows: Sequence[CatalogProductRow],
    ) -> None:
        """Insert rows for `owner_id` in a single request; raise on failure."""
        ...


class SupabaseCatalogRepository:
    """
    Catalog repository backed by the Supabase products table.

    The Supabase client is synchronous; calls run in a worker thread so the
    pipeline's event loop keeps serving other uploads.
    """

    def __init__(
        self,
        client: Optional[Client] = None,
        table: Optional[str] = None,
        lookup_chunk_size: Optional[int] = None,
    ):
        self.db = client or get_supabase_client()
        self.table = table or settings.products_table
        self.lookup_chunk_size = lookup_chunk_size or settings.duplicate_lookup_chunk_size

    # ===================
    # READ OPERATIONS
    # ===================

    async def find_skus_by_owner(
        self,
        owner_id: str,
        skus: Sequence[str],
    ) -> list[ExistingProduct]:
        """
        Find the owner's existing products among candidate SKUs.

        Long SKU lists are split so each IN (...) filter stays short.

        Raises:
            DatabaseError: If a lookup fails
        """
        wanted = list(dict.fromkeys(sku for sku in skus if sku))
        if not wanted:
            return []

        logger.debug("finding_existing_skus", owner_id=owner_id, count=len(wanted))

        found: list[ExistingProduct] = []
        for chunk in chunk_list(wanted, self.lookup_chunk_size):
            try:
                rows = await asyncio.to_thread(self._select_existing, owner_id, chunk)
            except Exception as e:
                logger.error(
                    "find_existing_skus_failed",
                    owner_id=owner_id,
                    count=len(chunk),
                    error=str(e)
                )
                raise DatabaseError("select", str(e))

            found.extend(ExistingProduct(**row) for row in rows)

        logger.info("existing_skus_found", owner_id=owner_id, found=len(found))
        return found

    def _select_existing(self, owner_id: str, skus: list[str]) -> list[dict]:
        with DatabaseSession("find_existing_skus", self.db) as client:
            result = (
                client.table(self.table)
                .select("id, sku, name")
                .eq("user_id", owner_id)
                .in_("sku", skus)
                .execute()
            )
        return result.data or []

    # ===================
    # WRITE OPERATIONS
    # ===================

    async def insert_many(
        self,
        owner_id: str,
        rows: Sequence[CatalogProductRow],
    ) -> None:
        """
        Insert one chunk of catalog rows.

        Raises:
            ValueError: If a row belongs to a different owner
            DatabaseError: If the insert fails
        """
        if not rows:
            return

        foreign = [row.sku for row in rows if row.user_id != owner_id]
        if foreign:
            raise ValueError(f"Rows for another owner in insert batch: {foreign}")

        payload = [row.model_dump() for row in rows]

        try:
            await asyncio.to_thread(self._insert, payload)
        except Exception as e:
            logger.error(
                "insert_products_failed",
                owner_id=owner_id,
                count=len(payload),
                error=str(e)
            )
            raise DatabaseError("insert", str(e))

        logger.info("products_inserted", owner_id=owner_id, count=len(payload))

    def _insert(self, payload: list[dict]) -> None:
        with DatabaseSession("insert_products", self.db) as client:
            client.table(self.table).insert(payload).execute()
