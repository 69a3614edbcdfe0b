"""
API tests for /api/bulk-upload.

Run: pytest tests/unit/test_bulk_upload_routes.py -v
"""

from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient

from services.bulk_upload_service import BulkUploadRunRegistry

from tests.conftest import FakeCatalogRepository, FakeObjectStore

BASE = "/api/bulk-upload"
JPEG = b"\xff\xd8\xff\xe0" + b"0" * 32
FEED_CSV = "sku,nombre,precio\nA1,Taza Roja,100\nB2,Plato Azul,50\n,Sin SKU,10\n".encode("utf-8")
OWNER_HEADERS = {"X-Owner-Id": "owner-1"}


@pytest.fixture
def repository():
    return FakeCatalogRepository(existing={"owner-1": ["B2"]})


@pytest.fixture
def storage():
    return FakeObjectStore(fail_tokens={"fail"})


@pytest.fixture
def client(repository, storage):
    """Test client whose runs use in-memory collaborators."""
    from main import app

    registry = BulkUploadRunRegistry(
        repository_factory=lambda: repository,
        storage_factory=lambda: storage,
    )
    with patch("routes.bulk_upload.get_run_registry", return_value=registry):
        yield TestClient(app)


def upload_files(*image_names):
    files = [("feed", ("feed.csv", FEED_CSV, "text/csv"))]
    files += [
        ("images", (name, JPEG, "image/gif" if name.endswith(".gif") else "image/jpeg"))
        for name in image_names
    ]
    return files


def create_run(client, *image_names) -> dict:
    response = client.post(f"{BASE}/runs", files=upload_files(*image_names), headers=OWNER_HEADERS)
    assert response.status_code == 201, response.text
    return response.json()


class TestCreateRun:
    """Tests for POST /runs"""

    def test_creates_matched_run(self, client):
        # Act
        data = create_run(client, "A1_foto.jpg", "platoazul-2.jpg", "platoazul-3.jpg", "notes.gif")

        # Assert
        assert data["phase"] == "matching"
        assert data["feed_rows"] == 2
        assert [m["sku"] for m in data["matches"]] == ["A1", "B2"]
        assert data["matches"][0]["match_type"] == "exact"
        assert data["matches"][0]["confidence"] == "high"
        assert data["matches"][1]["secondary_images"] == ["platoazul-3.jpg"]
        assert data["stats"]["matched"] == 2
        assert data["rejected_rows"][0]["row"] == 4
        assert data["rejected_images"][0]["filename"] == "notes.gif"

    def test_owner_header_required(self, client):
        response = client.post(f"{BASE}/runs", files=upload_files("A1_foto.jpg"))

        assert response.status_code == 401
        assert response.json()["error"]["code"] == "OWNER_REQUIRED"

    def test_bad_feed_type(self, client):
        files = [("feed", ("feed.pdf", b"%PDF", "application/pdf")), ("images", ("a.jpg", JPEG, "image/jpeg"))]

        response = client.post(f"{BASE}/runs", files=files, headers=OWNER_HEADERS)

        assert response.status_code == 422
        assert response.json()["error"]["code"] == "FEED_PARSE_ERROR"

    def test_bad_column_mapping(self, client):
        response = client.post(
            f"{BASE}/runs",
            files=upload_files("A1_foto.jpg"),
            data={"column_mapping": "[not json"},
            headers=OWNER_HEADERS,
        )

        assert response.status_code == 422


class TestRunLifecycle:
    """Review, duplicate gate, commit and report."""

    def test_full_flow_with_duplicate_skip(self, client, repository):
        # Arrange
        run = create_run(client, "A1_foto.jpg", "platoazul-2.jpg")
        run_url = f"{BASE}/runs/{run['run_id']}"

        # Act: duplicate gate
        gate = client.post(f"{run_url}/duplicates", headers=OWNER_HEADERS).json()
        blocked = client.post(f"{run_url}/commit", headers=OWNER_HEADERS)
        decided = client.post(f"{run_url}/duplicates/decision", json={"proceed": True}, headers=OWNER_HEADERS)
        committed = client.post(f"{run_url}/commit", headers=OWNER_HEADERS)

        # Assert
        assert gate["phase"] == "awaiting_duplicate_confirmation"
        assert [d["sku"] for d in gate["duplicates"]] == ["B2"]
        assert blocked.status_code == 409
        assert blocked.json()["error"]["code"] == "DUPLICATE_DECISION_REQUIRED"
        assert decided.json()["proceed_with_duplicates"] is True
        body = committed.json()
        assert body["phase"] == "done"
        assert body["summary"]["succeeded"] == 1
        assert body["summary"]["skipped_duplicates"] == 1
        assert [r.sku for r in repository.persisted] == ["A1"]

    def test_manual_match(self, client):
        run = create_run(client, "random_unrelated.png")
        run_url = f"{BASE}/runs/{run['run_id']}"

        response = client.put(f"{run_url}/matches/0", json={"sku": "A1"}, headers=OWNER_HEADERS)

        match = response.json()["matches"][0]
        assert (match["sku"], match["match_type"], match["match_score"]) == ("A1", "exact", 100)

    def test_manual_match_errors(self, client):
        run = create_run(client, "random_unrelated.png")
        run_url = f"{BASE}/runs/{run['run_id']}"

        unknown_sku = client.put(f"{run_url}/matches/0", json={"sku": "ZZ"}, headers=OWNER_HEADERS)
        bad_index = client.put(f"{run_url}/matches/5", json={"sku": "A1"}, headers=OWNER_HEADERS)

        assert unknown_sku.status_code == 404
        assert bad_index.status_code == 422

    def test_clear_match(self, client):
        run = create_run(client, "A1_foto.jpg")

        response = client.delete(f"{BASE}/runs/{run['run_id']}/matches/0", headers=OWNER_HEADERS)

        assert response.json()["matches"][0]["match_type"] == "none"

    def test_partial_failure_report(self, client):
        # Arrange
        run = create_run(client, "A1_fail.jpg")
        run_url = f"{BASE}/runs/{run['run_id']}"

        # Act
        committed = client.post(f"{run_url}/commit", headers=OWNER_HEADERS).json()
        report = client.get(f"{run_url}/failures.xlsx", headers=OWNER_HEADERS)

        # Assert
        assert committed["phase"] == "partially_failed"
        assert committed["summary"]["failed"] == 1
        assert committed["summary"]["failures"][0]["sku"] == "A1"
        assert report.status_code == 200
        assert report.headers["content-type"].startswith(
            "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"
        )
        assert report.content[:2] == b"PK"

    def test_report_before_commit(self, client):
        run = create_run(client, "A1_foto.jpg")

        response = client.get(f"{BASE}/runs/{run['run_id']}/failures.xlsx", headers=OWNER_HEADERS)

        assert response.status_code == 409

    def test_cancel_at_gate_discards_run(self, client, repository):
        run = create_run(client, "platoazul-2.jpg")
        run_url = f"{BASE}/runs/{run['run_id']}"
        client.post(f"{run_url}/duplicates", headers=OWNER_HEADERS)

        decided = client.post(f"{run_url}/duplicates/decision", json={"proceed": False}, headers=OWNER_HEADERS)
        after = client.get(run_url, headers=OWNER_HEADERS)

        assert decided.json()["phase"] == "idle"
        assert after.status_code == 404
        assert repository.insert_calls == []

    def test_delete_run(self, client):
        run = create_run(client, "A1_foto.jpg")
        run_url = f"{BASE}/runs/{run['run_id']}"

        deleted = client.delete(run_url, headers=OWNER_HEADERS)
        after = client.get(run_url, headers=OWNER_HEADERS)

        assert deleted.json() == {"run_id": run["run_id"], "cancelled": True}
        assert after.status_code == 404

    def test_other_owner_gets_404(self, client):
        run = create_run(client, "A1_foto.jpg")

        response = client.get(f"{BASE}/runs/{run['run_id']}", headers={"X-Owner-Id": "owner-2"})

        assert response.status_code == 404
        assert response.json()["error"]["code"] == "RUN_NOT_FOUND"


class TestHealth:
    """Tests for GET /health"""

    def test_reports_database_and_open_runs(self, client):
        with patch("main.database_status", return_value={"status": "not_configured"}):
            response = client.get("/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "degraded"
        assert data["database"] == {"status": "not_configured"}
        assert isinstance(data["open_runs"], int)
