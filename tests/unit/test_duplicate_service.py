"""
Unit tests for DuplicateDetectionService.

Run: pytest tests/unit/test_duplicate_service.py -v
"""

import pytest

from exceptions import MissingOwnerError
from models.catalog import ExistingProduct
from services.duplicate_service import DuplicateDetectionService, duplicate_skus

from tests.conftest import FakeCatalogRepository


class LooseRepository:
    """Returns more rows than asked for, like a case-insensitive collation."""

    async def find_skus_by_owner(self, owner_id, skus):
        return [
            ExistingProduct(id="1", sku="b2", name="lower"),
            ExistingProduct(id="2", sku="B2", name="Plato Azul"),
            ExistingProduct(id="3", sku="Z9", name="Other"),
        ]


class TestDetect:
    """Tests for DuplicateDetectionService.detect()"""

    @pytest.mark.asyncio
    async def test_returns_intersection(self):
        # Arrange
        repository = FakeCatalogRepository(existing={"owner-1": ["B2", "Q7"]})
        service = DuplicateDetectionService(repository)

        # Act
        duplicates = await service.detect("owner-1", ["A1", "B2"])

        # Assert
        assert [d.sku for d in duplicates] == ["B2"]
        assert duplicates[0].existing_product_id == "existing-B2"

    @pytest.mark.asyncio
    async def test_scoped_to_owner(self):
        repository = FakeCatalogRepository(existing={"owner-2": ["A1"]})

        duplicates = await DuplicateDetectionService(repository).detect("owner-1", ["A1"])

        assert duplicates == []

    @pytest.mark.asyncio
    async def test_filters_extra_rows_from_store(self):
        duplicates = await DuplicateDetectionService(LooseRepository()).detect("o", ["A1", "B2"])

        assert [(d.sku, d.existing_product_id) for d in duplicates] == [("B2", "2")]

    @pytest.mark.asyncio
    async def test_deduplicates_candidates(self):
        repository = FakeCatalogRepository(existing={"o": ["A1"]})

        duplicates = await DuplicateDetectionService(repository).detect("o", ["A1", "A1", ""])

        assert len(duplicates) == 1
        assert repository.lookups == [("o", ["A1"])]

    @pytest.mark.asyncio
    async def test_no_candidates_skips_lookup(self):
        repository = FakeCatalogRepository()

        assert await DuplicateDetectionService(repository).detect("o", []) == []
        assert repository.lookups == []

    @pytest.mark.asyncio
    async def test_missing_owner(self):
        with pytest.raises(MissingOwnerError):
            await DuplicateDetectionService(FakeCatalogRepository()).detect("", ["A1"])


def test_duplicate_skus_helper():
    assert duplicate_skus(None) == set()
