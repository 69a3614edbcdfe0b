"""
Shared test fixtures.

Run: pytest tests/ -v
"""

import sys
from pathlib import Path

# Add backend directory to Python path
backend_dir = Path(__file__).parent.parent
sys.path.insert(0, str(backend_dir))

import asyncio
import pytest
from unittest.mock import patch
from typing import Generator, Optional, Sequence

from exceptions import DatabaseError, StorageUnavailableError, ExternalServiceError
from models.catalog import CatalogProductRow, ExistingProduct


# ===================
# MOCK SUPABASE CLIENT
# ===================

class MockSupabaseResponse:
    """Mock Supabase query response."""

    def __init__(self, data: list = None, count: int = None):
        self.data = data or []
        self.count = count if count is not None else len(self.data)


class MockSupabaseQuery:
    """Mock Supabase query builder with chainable methods.

    eq() and in_() filter the table data so owner scoping is observable.
    """

    def __init__(self, client: "MockSupabaseClient", table: str, data: list = None, count: int = None):
        self._client = client
        self._table = table
        self._data = data or []
        self._count = count
        self._operation = "select"
        self._payload = None

    def select(self, *args, **kwargs):
        self._operation = "select"
        return self

    def insert(self, data):
        self._operation = "insert"
        self._payload = data if isinstance(data, list) else [data]
        return self

    def eq(self, column, value):
        self._data = [row for row in self._data if row.get(column) == value]
        return self

    def in_(self, column, values):
        wanted = set(values)
        self._data = [row for row in self._data if row.get(column) in wanted]
        return self

    def limit(self, count):
        return self

    def execute(self) -> MockSupabaseResponse:
        self._client.calls.append((self._table, self._operation))
        if self._operation in self._client.fail_on:
            raise RuntimeError(f"simulated {self._operation} failure")

        if self._operation == "insert":
            self._client.inserted.setdefault(self._table, []).append(self._payload)
            return MockSupabaseResponse(data=self._payload)

        return MockSupabaseResponse(
            data=self._data,
            count=self._count if self._count is not None else len(self._data)
        )


class MockStorageBucket:
    """Mock storage bucket recording uploads."""

    def __init__(self, storage: "MockSupabaseStorage", name: str):
        self._storage = storage
        self.name = name

    def upload(self, path, file, file_options=None):
        if any(token in path for token in self._storage.fail_paths):
            raise RuntimeError("simulated upload failure")
        self._storage.uploads.append((self.name, path, file, file_options))
        return {"Key": f"{self.name}/{path}"}

    def get_public_url(self, path):
        return f"https://storage.test/{self.name}/{path}"


class MockSupabaseStorage:
    """Mock Supabase storage API."""

    def __init__(self):
        self.available = True
        self.fail_paths: set[str] = set()
        self.uploads: list = []

    def get_bucket(self, name):
        if not self.available:
            raise RuntimeError("bucket not found")
        return {"id": name, "name": name}

    def from_(self, name):
        return MockStorageBucket(self, name)


class MockSupabaseClient:
    """Mock Supabase client."""

    def __init__(self):
        self._tables = {}
        self.fail_on: set[str] = set()
        self.calls: list[tuple[str, str]] = []
        self.inserted: dict[str, list] = {}
        self.storage = MockSupabaseStorage()

    def set_table_data(self, table_name: str, data: list, count: int = None):
        """Configure mock data for a table."""
        self._tables[table_name] = {"data": data, "count": count}

    def table(self, name: str) -> MockSupabaseQuery:
        """Get mock table query."""
        config = self._tables.get(name, {"data": [], "count": None})
        return MockSupabaseQuery(self, name, list(config["data"]), config["count"])


# ===================
# IN-MEMORY COLLABORATORS
# ===================

class FakeCatalogRepository:
    """
    Catalog repository kept in memory.

    fail_chunks holds 1-based insert call numbers that raise.
    """

    def __init__(
        self,
        existing: Optional[dict[str, list[str]]] = None,
        fail_chunks: Optional[set[int]] = None,
        lookup_error: Optional[Exception] = None,
        delay: float = 0.0,
    ):
        self.existing = existing or {}
        self.delay = delay
        self.fail_chunks = fail_chunks or set()
        self.lookup_error = lookup_error
        self.insert_calls: list[list[CatalogProductRow]] = []
        self.lookups: list[tuple[str, list[str]]] = []

    async def find_skus_by_owner(self, owner_id: str, skus: Sequence[str]) -> list[ExistingProduct]:
        self.lookups.append((owner_id, list(skus)))
        await asyncio.sleep(self.delay)
        if self.lookup_error is not None:
            raise self.lookup_error
        owned = self.existing.get(owner_id, [])
        return [
            ExistingProduct(id=f"existing-{sku}", sku=sku, name=f"Existing {sku}")
            for sku in owned if sku in set(skus)
        ]

    async def insert_many(self, owner_id: str, rows: Sequence[CatalogProductRow]) -> None:
        self.insert_calls.append(list(rows))
        if len(self.insert_calls) in self.fail_chunks:
            raise DatabaseError("insert", "simulated chunk failure")

    @property
    def persisted(self) -> list[CatalogProductRow]:
        return [
            row
            for number, chunk in enumerate(self.insert_calls, start=1)
            if number not in self.fail_chunks
            for row in chunk
        ]


class FakeObjectStore:
    """
    Object store kept in memory.

    Paths containing any token in fail_tokens fail to upload; in-flight
    uploads are tracked to observe the concurrency bound.
    """

    def __init__(
        self,
        fail_tokens: Optional[set[str]] = None,
        available: bool = True,
        delay: float = 0.0,
    ):
        self.fail_tokens = fail_tokens or set()
        self.available = available
        self.delay = delay
        self.paths: list[str] = []
        self.in_flight = 0
        self.max_in_flight = 0
        self.probes = 0

    async def ensure_available(self) -> None:
        self.probes += 1
        if not self.available:
            raise StorageUnavailableError("Object storage", "bucket not found")

    async def put(self, path: str, content: bytes, content_type: Optional[str] = None) -> str:
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await asyncio.sleep(self.delay)
            if any(token in path for token in self.fail_tokens):
                raise ExternalServiceError("storage", f"Upload failed: {path}")
            self.paths.append(path)
            return f"https://cdn.test/{path}"
        finally:
            self.in_flight -= 1


class RecordingNotifier:
    """Notifier that keeps every summary it is sent."""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.summaries = []

    def send_summary(self, summary) -> bool:
        if self.fail:
            raise RuntimeError("telegram down")
        self.summaries.append(summary)
        return True


# ===================
# FIXTURES
# ===================

@pytest.fixture
def mock_supabase() -> MockSupabaseClient:
    """
    Create a mock Supabase client.

    Usage:
        def test_something(mock_supabase):
            mock_supabase.set_table_data("products", [
                {"id": "1", "user_id": "owner-1", "sku": "A1", "name": "Taza"}
            ])
    """
    return MockSupabaseClient()


@pytest.fixture
def mock_db(mock_supabase) -> Generator:
    """
    Patch the database client with mock.

    Any code using get_supabase_client() / get_admin_client() gets the mock.
    """
    with patch("config.database.get_supabase_client", return_value=mock_supabase):
        with patch("services.catalog_repository.get_supabase_client", return_value=mock_supabase):
            with patch("services.storage_service.get_admin_client", return_value=mock_supabase):
                yield mock_supabase


@pytest.fixture
def fake_repository() -> FakeCatalogRepository:
    return FakeCatalogRepository()


@pytest.fixture
def fake_storage() -> FakeObjectStore:
    return FakeObjectStore()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def sample_feed_rows() -> list:
    """Raw feed rows as read from a spreadsheet."""
    return [
        {"sku": "A1", "nombre": "Taza Roja", "precio": "100"},
        {"sku": "B2", "nombre": "Plato Azul", "precio": "50.50", "precio_mayoreo": "40"},
        {"sku": "C3", "nombre": "Vaso Verde", "precio": "$1,200.00", "categoria": "Cocina"},
    ]
