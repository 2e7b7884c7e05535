from unittest.mock import AsyncMock

import httpx
import pytest
from fastapi.testclient import TestClient

from server.api_server import create_app
from server.core.IngestionStatusService import ChunkAccessDeniedError, RetryNotAllowedError
from services.drive_sync.SyncService import SyncRateLimitedError
from shared.db.IngestionRepository import FileNotFoundInStoreError
from shared.models.files import ChunkContext, ProgressReport, ProgressTotals, RetryOutcome, SyncSummary
from shared.models.retrieval import DriveCitation, RetrievalResult
from shared.pipeline.errors import MissingCredentialError


HEADERS = {"X-Api-Key": "test-key"}


class TestApi:
    @pytest.fixture
    def services(self):
        return {
            "sync_service": AsyncMock(),
            "status_service": AsyncMock(),
            "retrieval_service": AsyncMock(),
        }

    @pytest.fixture
    def client(self, helper_config, services):
        app = create_app(with_lifespan=False)
        app.state.helper_config = helper_config
        app.state.logging = helper_config.get_logger()
        for name, service in services.items():
            setattr(app.state, name, service)
        with TestClient(app) as client:
            yield client

    def test_wrong_api_key_is_rejected(self, client, services):
        response = client.post("/drive/sync", json={"user_id": "user-a"}, headers={"X-Api-Key": "nope"})
        assert response.status_code == 401
        services["sync_service"].do_sync.assert_not_awaited()

    def test_missing_api_key_is_unauthorized(self, client, services):
        assert client.post("/drive/sync", json={"user_id": "user-a"}).status_code == 401
        services["sync_service"].do_sync.assert_not_awaited()

    def test_unconfigured_api_key_refuses_requests(self, monkeypatch, client, services):
        monkeypatch.delenv("APP_API_KEY")
        assert client.post("/drive/sync", json={"user_id": "user-a"}, headers=HEADERS).status_code == 503
        services["sync_service"].do_sync.assert_not_awaited()

    def test_sync_returns_summary(self, client, services):
        services["sync_service"].do_sync.return_value = SyncSummary(total_found=3, supported_count=2, unsupported_count=1, enqueued_count=2)

        response = client.post("/drive/sync", json={"user_id": "user-a", "limit": 10}, headers=HEADERS)

        assert response.status_code == 200
        assert response.json() == {
            "status": "Sync completed successfully.",
            "summary": {"total_found": 3, "supported_count": 2, "unsupported_count": 1, "enqueued_count": 2},
        }
        services["sync_service"].do_sync.assert_awaited_once_with("user-a", limit=10)

    @pytest.mark.parametrize("error, status", [
        (SyncRateLimitedError("user-a", 60), 429),
        (MissingCredentialError("user-a"), 401),
        (httpx.ConnectError("drive down"), 502),
    ])
    def test_sync_error_mapping(self, client, services, error, status):
        services["sync_service"].do_sync.side_effect = error
        assert client.post("/drive/sync", json={"user_id": "user-a"}, headers=HEADERS).status_code == status

    def test_sync_validates_body(self, client):
        assert client.post("/drive/sync", json={"user_id": ""}, headers=HEADERS).status_code == 422

    def test_files_and_progress(self, client, services):
        services["status_service"].list_files.return_value = []
        services["status_service"].get_progress.return_value = ProgressReport(totals=ProgressTotals(supported=1, indexed=1), files=[])

        assert client.get("/drive/files", params={"user_id": "user-a"}, headers=HEADERS).json() == {"files": []}
        progress = client.get("/drive/progress", params={"user_id": "user-a"}, headers=HEADERS).json()
        assert progress["totals"]["indexed"] == 1

    def test_retry(self, client, services):
        services["status_service"].retry_file.return_value = RetryOutcome(file_id="f1", retry_phase="fetch", message="Fetch job re-enqueued")
        response = client.post("/drive/files/f1/retry", json={"user_id": "user-a"}, headers=HEADERS)
        assert response.status_code == 200
        assert response.json()["retry_phase"] == "fetch"
        services["status_service"].retry_file.assert_awaited_once_with("user-a", "f1")

    @pytest.mark.parametrize("error, status", [
        (FileNotFoundInStoreError("user-a", "f1"), 404),
        (RetryNotAllowedError("f1", "indexed"), 400),
    ])
    def test_retry_error_mapping(self, client, services, error, status):
        services["status_service"].retry_file.side_effect = error
        assert client.post("/drive/files/f1/retry", json={"user_id": "user-a"}, headers=HEADERS).status_code == status

    def test_chunk_context(self, client, services):
        services["status_service"].get_chunk_context.return_value = ChunkContext(
            chunk_id="c1", file_id="f1", file_name="a.txt", mime_type="text/plain", chunk_index=1, text="x\n...\ny",
        )
        response = client.get("/drive/chunks/c1", params={"user_id": "user-a"}, headers=HEADERS)
        assert response.json()["text"] == "x\n...\ny"

    def test_chunk_of_other_user_is_forbidden(self, client, services):
        services["status_service"].get_chunk_context.side_effect = ChunkAccessDeniedError("no")
        assert client.get("/drive/chunks/c1", params={"user_id": "user-b"}, headers=HEADERS).status_code == 403

    def test_retrieve(self, client, services):
        services["retrieval_service"].retrieve.return_value = RetrievalResult(
            formatted_text="[File: a.txt (ID: f1)]\nhello",
            citations=[DriveCitation(chunk_id="c1", chunk_ids=["c1"], chunk_indices=[0], file_id="f1", file_name="a.txt", mime_type="text/plain", score=0.8)],
        )

        response = client.post("/retrieve", json={"query": "hello", "user_id": "user-a", "top_k": 5}, headers=HEADERS)

        assert response.status_code == 200
        body = response.json()
        assert body["citations"][0]["type"] == "drive"
        assert body["citations"][0]["chunk_id"] == "c1"
        services["retrieval_service"].retrieve.assert_awaited_once_with("hello", "user-a", top_k=5)

    def test_retrieve_backend_failure_is_bad_gateway(self, client, services):
        services["retrieval_service"].retrieve.side_effect = httpx.ConnectError("qdrant down")
        assert client.post("/retrieve", json={"query": "q", "user_id": "user-a"}, headers=HEADERS).status_code == 502

    def test_retrieve_rejects_out_of_range_top_k(self, client):
        assert client.post("/retrieve", json={"query": "q", "user_id": "user-a", "top_k": 0}, headers=HEADERS).status_code == 422
