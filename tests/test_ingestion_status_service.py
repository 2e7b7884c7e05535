import pytest

from server.core.IngestionStatusService import (
    ChunkAccessDeniedError,
    ChunkNotFoundError,
    IngestionStatusService,
    RetryNotAllowedError,
)
from shared.db.IngestionRepository import FileNotFoundInStoreError
from shared.db.models import Chunk
from shared.models.ingestion import FetchJob, IngestionPhase, VectorizeJob


class TestIngestionStatusService:
    @pytest.fixture
    def service(self, helper_config, repository, fetch_queue, vectorize_queue):
        return IngestionStatusService(
            helper_config=helper_config,
            repository=repository,
            fetch_queue=fetch_queue,
            vectorize_queue=vectorize_queue,
        )

    async def test_progress_totals(self, service, make_file):
        await make_file(file_id="a", name="a", phase=IngestionPhase.INDEXED)
        await make_file(file_id="b", name="b", phase=IngestionPhase.FAILED)
        await make_file(file_id="c", name="c", phase=IngestionPhase.VECTORIZING)
        await make_file(file_id="d", name="d", phase=IngestionPhase.DISCOVERED)
        await make_file(file_id="e", name="e", phase=IngestionPhase.FAILED, supported=False)
        await make_file(user_id="user-b", file_id="z", phase=IngestionPhase.INDEXED)

        report = await service.get_progress("user-a")

        totals = report.totals
        assert (totals.supported, totals.unsupported, totals.indexed, totals.in_progress, totals.failed) == (4, 1, 1, 2, 1)
        assert [f.file_id for f in report.files] == ["a", "b", "c", "d", "e"]
        assert report.files[0].ingestion_phase == IngestionPhase.INDEXED

    async def test_retry_resumes_at_vectorize_when_text_is_stored(self, service, repository, make_file, vectorize_queue, fetch_queue):
        await make_file(phase=IngestionPhase.FETCHING)
        await repository.complete_fetch("user-a", "file-1", "text/plain", "body", "h")
        await repository.set_phase("user-a", "file-1", IngestionPhase.VECTORIZING)
        await repository.record_retry("user-a", "file-1", "HTTP 503")
        await repository.mark_failed("user-a", "file-1", "HTTP 503")

        outcome = await service.retry_file("user-a", "file-1")

        assert outcome.retry_phase == "vectorize"
        assert outcome.message == "Vectorize job re-enqueued (raw text preserved)"
        record = await repository.get_file("user-a", "file-1")
        assert (record.ingestion_phase, record.retry_count, record.ingestion_error) == ("chunk_pending", 0, None)
        assert [type(j) for j in vectorize_queue.jobs] == [VectorizeJob]
        assert fetch_queue.jobs == []

    async def test_retry_resumes_at_fetch_without_text(self, service, repository, make_file, fetch_queue):
        await make_file(phase=IngestionPhase.FAILED)

        outcome = await service.retry_file("user-a", "file-1")

        assert (outcome.retry_phase, outcome.message) == ("fetch", "Fetch job re-enqueued")
        assert (await repository.get_file("user-a", "file-1")).ingestion_phase == "discovered"
        assert [type(j) for j in fetch_queue.jobs] == [FetchJob]

    @pytest.mark.parametrize("phase", [IngestionPhase.INDEXED, IngestionPhase.FETCHING, IngestionPhase.DISCOVERED])
    async def test_retry_only_for_failed_files(self, service, make_file, phase):
        await make_file(phase=phase)
        with pytest.raises(RetryNotAllowedError):
            await service.retry_file("user-a", "file-1")

    async def test_retry_refused_for_unsupported_files(self, service, make_file, fetch_queue):
        await make_file(phase=IngestionPhase.FAILED, supported=False)
        with pytest.raises(RetryNotAllowedError):
            await service.retry_file("user-a", "file-1")
        assert fetch_queue.jobs == []

    async def test_retry_unknown_file(self, service):
        with pytest.raises(FileNotFoundInStoreError):
            await service.retry_file("user-a", "nope")


@pytest.fixture
async def indexed(repository, make_file):
    await make_file(name="report.txt", phase=IngestionPhase.VECTORIZING)
    chunks = [
        Chunk(id=f"c{i}", user_id="user-a", file_id="file-1", chunk_index=i, text=f"part {i}", hash="h", vectorized=True, qdrant_point_id=f"c{i}")
        for i in range(4)
    ]
    await repository.complete_vectorize("user-a", "file-1", chunks, "h")


class TestChunkContext:
    @pytest.fixture
    def service(self, helper_config, repository, fetch_queue, vectorize_queue):
        return IngestionStatusService(helper_config, repository, fetch_queue, vectorize_queue)

    async def test_middle_chunk_includes_both_neighbours(self, service, indexed):
        context = await service.get_chunk_context("user-a", "c1")
        assert context.text == "part 0\n...\npart 1\n...\npart 2"
        assert (context.file_name, context.mime_type, context.chunk_index) == ("report.txt", "text/plain", 1)

    async def test_first_chunk_has_only_a_successor(self, service, indexed):
        assert (await service.get_chunk_context("user-a", "c0")).text == "part 0\n...\npart 1"

    async def test_other_users_chunk_is_forbidden(self, service, indexed):
        with pytest.raises(ChunkAccessDeniedError):
            await service.get_chunk_context("user-b", "c1")

    async def test_unknown_chunk(self, service, indexed):
        with pytest.raises(ChunkNotFoundError):
            await service.get_chunk_context("user-a", "missing")
