"""
Unit tests for SupabaseCatalogRepository.

Run: pytest tests/unit/test_catalog_repository.py -v
"""

import pytest

from exceptions import DatabaseError
from models.catalog import CatalogProductRow, UploadedProduct
from services.catalog_repository import SupabaseCatalogRepository

from tests.factories import FeedRecordFactory


def make_row(owner_id: str, sku: str) -> CatalogProductRow:
    uploaded = UploadedProduct(
        record=FeedRecordFactory.create(sku=sku, name=f"Producto {sku}", price_cents=1250),
        image_url=f"https://cdn.test/{sku}.jpg",
    )
    return CatalogProductRow.from_upload(owner_id, uploaded)


class TestFindSkusByOwner:
    """Tests for find_skus_by_owner()"""

    @pytest.mark.asyncio
    async def test_filters_by_owner_and_sku(self, mock_db, mock_supabase):
        # Arrange
        mock_supabase.set_table_data("products", [
            {"id": "p1", "user_id": "owner-1", "sku": "B2", "name": "Plato Azul"},
            {"id": "p2", "user_id": "owner-2", "sku": "A1", "name": "Taza"},
            {"id": "p3", "user_id": "owner-1", "sku": "Z9", "name": "Otro"},
        ])
        repository = SupabaseCatalogRepository()

        # Act
        found = await repository.find_skus_by_owner("owner-1", ["A1", "B2"])

        # Assert
        assert [(p.id, p.sku) for p in found] == [("p1", "B2")]

    @pytest.mark.asyncio
    async def test_long_lists_are_chunked(self, mock_db, mock_supabase):
        repository = SupabaseCatalogRepository(lookup_chunk_size=2)

        await repository.find_skus_by_owner("owner-1", ["A", "B", "C", "D", "E"])

        assert mock_supabase.calls == [("products", "select")] * 3

    @pytest.mark.asyncio
    async def test_empty_list_skips_query(self, mock_db, mock_supabase):
        found = await SupabaseCatalogRepository().find_skus_by_owner("owner-1", [])

        assert found == []
        assert mock_supabase.calls == []

    @pytest.mark.asyncio
    async def test_failure_raises_database_error(self, mock_db, mock_supabase):
        mock_supabase.fail_on.add("select")

        with pytest.raises(DatabaseError):
            await SupabaseCatalogRepository().find_skus_by_owner("owner-1", ["A1"])


class TestInsertMany:
    """Tests for insert_many()"""

    @pytest.mark.asyncio
    async def test_inserts_one_request_per_call(self, mock_db, mock_supabase):
        # Arrange
        rows = [make_row("owner-1", "A1"), make_row("owner-1", "B2")]

        # Act
        await SupabaseCatalogRepository().insert_many("owner-1", rows)

        # Assert
        batches = mock_supabase.inserted["products"]
        assert len(batches) == 1
        assert [r["sku"] for r in batches[0]] == ["A1", "B2"]
        assert batches[0][0]["user_id"] == "owner-1"
        assert batches[0][0]["price_retail"] == 1250
        assert batches[0][0]["original_image_url"] == "https://cdn.test/A1.jpg"
        assert batches[0][0]["processing_status"] == "completed"

    @pytest.mark.asyncio
    async def test_rejects_rows_of_another_owner(self, mock_db, mock_supabase):
        with pytest.raises(ValueError):
            await SupabaseCatalogRepository().insert_many("owner-1", [make_row("owner-2", "A1")])

    @pytest.mark.asyncio
    async def test_failure_raises_database_error(self, mock_db, mock_supabase):
        mock_supabase.fail_on.add("insert")

        with pytest.raises(DatabaseError):
            await SupabaseCatalogRepository().insert_many("owner-1", [make_row("owner-1", "A1")])

    @pytest.mark.asyncio
    async def test_custom_table(self, mock_db, mock_supabase):
        await SupabaseCatalogRepository(table="catalog_items").insert_many(
            "owner-1", [make_row("owner-1", "A1")]
        )

        assert "catalog_items" in mock_supabase.inserted
