import hashlib

import httpx
import pytest

from conftest import http_status_error
from services.drive_fetch.FetchService import FetchService, content_hash
from services.worker.StageService import StageOutcome
from shared.models.ingestion import FetchJob, IngestionPhase, VectorizeJob
from shared.pipeline.TextExtractor import MAX_TEXT_CHARS, MIME_GOOGLE_SHEET, TRUNCATION_WARNING, TextExtractor


class TestFetchService:
    @pytest.fixture
    def service(self, helper_config, repository, source_manager, fetch_queue, vectorize_queue):
        return FetchService(
            helper_config=helper_config,
            repository=repository,
            source_manager=source_manager,
            extractor=TextExtractor(helper_config),
            fetch_queue=fetch_queue,
            vectorize_queue=vectorize_queue,
        )

    async def test_fetch_stores_text_and_enqueues_vectorize(self, service, repository, make_file, source_manager, vectorize_queue, connected):
        await make_file()
        source_manager.contents["file-1"] = b"hello drive"

        assert await service.process_job(FetchJob(user_id="user-a", file_id="file-1")) == StageOutcome.COMPLETED

        record = await repository.get_file("user-a", "file-1")
        raw = await repository.get_raw_document("user-a", "file-1")
        assert record.ingestion_phase == IngestionPhase.CHUNK_PENDING.value
        assert record.ingestion_error is None
        assert raw.text == "hello drive"
        assert raw.hash == hashlib.sha256(b"hello drive").hexdigest() == content_hash("hello drive")
        assert source_manager.downloads == ["file-1"]
        assert source_manager.booted == source_manager.closed == 1
        assert [(type(j), j.file_id) for j in vectorize_queue.jobs] == [(VectorizeJob, "file-1")]

    async def test_workspace_files_are_exported(self, service, repository, make_file, source_manager, connected):
        await make_file(mime_type=MIME_GOOGLE_SHEET, name="budget")
        source_manager.contents["file-1"] = b"a,b\n1,2\n"

        await service.process_job(FetchJob(user_id="user-a", file_id="file-1"))

        assert source_manager.exports == [("file-1", "text/csv")]
        assert source_manager.downloads == []
        raw = await repository.get_raw_document("user-a", "file-1")
        assert (raw.mime_type, raw.text) == ("text/csv", "a,b\n1,2\n")

    async def test_truncation_warning_is_kept(self, service, repository, make_file, source_manager, connected):
        await make_file()
        source_manager.contents["file-1"] = b"z" * (MAX_TEXT_CHARS + 1)

        await service.process_job(FetchJob(user_id="user-a", file_id="file-1"))

        record = await repository.get_file("user-a", "file-1")
        assert record.ingestion_phase == "chunk_pending"
        assert record.ingestion_error == TRUNCATION_WARNING
        assert len((await repository.get_raw_document("user-a", "file-1")).text) == MAX_TEXT_CHARS

    async def test_missing_credential_fails_permanently(self, service, repository, make_file, fetch_queue):
        await make_file()
        assert await service.process_job(FetchJob(user_id="user-a", file_id="file-1")) == StageOutcome.FAILED
        record = await repository.get_file("user-a", "file-1")
        assert record.ingestion_phase == "failed"
        assert "credential" in record.ingestion_error
        assert fetch_queue.delayed == []

    async def test_not_found_fails_without_retry(self, service, repository, make_file, source_manager, fetch_queue, connected):
        await make_file()
        source_manager.error = http_status_error(404)
        assert await service.process_job(FetchJob(user_id="user-a", file_id="file-1")) == StageOutcome.FAILED
        assert fetch_queue.delayed == []
        assert source_manager.closed == 1

    async def test_transient_errors_retry_then_fail(self, service, repository, make_file, source_manager, fetch_queue, connected):
        await make_file()
        source_manager.error = httpx.ConnectError("network down")
        job = FetchJob(user_id="user-a", file_id="file-1")

        assert await service.process_job(job) == StageOutcome.RETRY_SCHEDULED
        record = await repository.get_file("user-a", "file-1")
        assert (record.ingestion_phase, record.retry_count) == ("fetching", 1)
        assert fetch_queue.delayed[-1][1] == 2

        assert await service.process_job(fetch_queue.delayed[-1][0]) == StageOutcome.RETRY_SCHEDULED
        assert fetch_queue.delayed[-1][1] == 4

        assert await service.process_job(fetch_queue.delayed[-1][0]) == StageOutcome.FAILED
        record = await repository.get_file("user-a", "file-1")
        assert (record.ingestion_phase, record.retry_count) == ("failed", 2)
        assert "network down" in record.ingestion_error
        assert len(fetch_queue.delayed) == 2

    async def test_unsupported_content_type_fails(self, service, repository, make_file, source_manager, connected):
        await make_file(mime_type="image/png", name="photo.png")
        source_manager.contents["file-1"] = b"\x89PNG"
        assert await service.process_job(FetchJob(user_id="user-a", file_id="file-1")) == StageOutcome.FAILED
        assert (await repository.get_file("user-a", "file-1")).ingestion_error == "Unsupported MIME type: image/png"

    async def test_duplicate_job_for_fetched_file_re_enqueues_vectorize(self, service, make_file, source_manager, vectorize_queue):
        await make_file(phase=IngestionPhase.CHUNK_PENDING)
        assert await service.process_job(FetchJob(user_id="user-a", file_id="file-1")) == StageOutcome.SKIPPED
        assert source_manager.downloads == []
        assert [j.file_id for j in vectorize_queue.jobs] == ["file-1"]

    async def test_job_for_indexed_file_is_skipped(self, service, make_file, vectorize_queue):
        await make_file(phase=IngestionPhase.INDEXED)
        assert await service.process_job(FetchJob(user_id="user-a", file_id="file-1")) == StageOutcome.SKIPPED
        assert vectorize_queue.jobs == []

    async def test_job_without_record_is_skipped(self, service):
        assert await service.process_job(FetchJob(user_id="user-a", file_id="ghost")) == StageOutcome.SKIPPED
