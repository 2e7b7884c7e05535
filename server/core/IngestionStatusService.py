from shared.db.IngestionRepository import FileNotFoundInStoreError, IngestionRepository
from shared.helper.HelperConfig import HelperConfig
from shared.models.files import ChunkContext, FileStatus, ProgressReport, ProgressTotals, RetryOutcome
from shared.models.ingestion import IngestionPhase
from shared.queue.WorkQueue import WorkQueue, enqueue_fetch, enqueue_vectorize


class RetryNotAllowedError(Exception):
    def __init__(self, file_id: str, phase: str):
        super().__init__(f"Only failed files can be retried manually (file '{file_id}' is '{phase}').")
        self.file_id = file_id
        self.phase = phase


class ChunkNotFoundError(LookupError):
    pass


class ChunkAccessDeniedError(PermissionError):
    pass


class IngestionStatusService:
    """File status surface for UI polling, manual retries and citation previews."""

    def __init__(
        self,
        helper_config: HelperConfig,
        repository: IngestionRepository,
        fetch_queue: WorkQueue,
        vectorize_queue: WorkQueue,
    ) -> None:
        self.logging = helper_config.get_logger()
        self._repository = repository
        self._fetch_queue = fetch_queue
        self._vectorize_queue = vectorize_queue

    ##########################################
    ################ STATUS ##################
    ##########################################

    async def list_files(self, user_id: str) -> list[FileStatus]:
        records = await self._repository.list_files(user_id)
        return [FileStatus.model_validate(record) for record in records]

    async def get_progress(self, user_id: str) -> ProgressReport:
        """Aggregate totals over the user's files.

        Unsupported files only count as unsupported; supported files count once
        as supported and once in indexed, failed or in_progress.
        """
        files = await self.list_files(user_id)
        totals = ProgressTotals()
        for file in files:
            if not file.supported:
                totals.unsupported += 1
                continue
            totals.supported += 1
            if file.ingestion_phase == IngestionPhase.INDEXED:
                totals.indexed += 1
            elif file.ingestion_phase == IngestionPhase.FAILED:
                totals.failed += 1
            else:
                totals.in_progress += 1
        return ProgressReport(totals=totals, files=files)

    ##########################################
    ################ RETRY ###################
    ##########################################

    async def retry_file(self, user_id: str, file_id: str) -> RetryOutcome:
        """Re-enter a failed file into the pipeline.

        With a stored raw document only vectorize is repeated, otherwise the
        file starts again at fetch.

        Raises:
            FileNotFoundInStoreError: If the file record does not exist.
            RetryNotAllowedError: If the file is not in phase failed.
        """
        record = await self._repository.get_file(user_id, file_id)
        if record is None:
            raise FileNotFoundInStoreError(user_id, file_id)
        if record.ingestion_phase != IngestionPhase.FAILED.value:
            raise RetryNotAllowedError(file_id, record.ingestion_phase)
        if not record.supported:
            raise RetryNotAllowedError(file_id, "unsupported")

        if await self._repository.has_raw_document(user_id, file_id):
            await self._repository.reset_for_retry(user_id, file_id, IngestionPhase.CHUNK_PENDING)
            await enqueue_vectorize(self._vectorize_queue, user_id, file_id)
            self.logging.info("Manual retry of file %s for user %s resumes at vectorize.", file_id, user_id)
            return RetryOutcome(file_id=file_id, retry_phase="vectorize", message="Vectorize job re-enqueued (raw text preserved)")

        await self._repository.reset_for_retry(user_id, file_id, IngestionPhase.DISCOVERED)
        await enqueue_fetch(self._fetch_queue, user_id, file_id)
        self.logging.info("Manual retry of file %s for user %s resumes at fetch.", file_id, user_id)
        return RetryOutcome(file_id=file_id, retry_phase="fetch", message="Fetch job re-enqueued")

    ##########################################
    ############ CHUNK CONTEXT ###############
    ##########################################

    async def get_chunk_context(self, user_id: str, chunk_id: str) -> ChunkContext:
        """Return a chunk's text together with its direct neighbours.

        Raises:
            ChunkNotFoundError: If the chunk does not exist.
            ChunkAccessDeniedError: If the chunk belongs to another user.
        """
        chunk = await self._repository.get_chunk(chunk_id)
        if chunk is None:
            raise ChunkNotFoundError(f"Chunk '{chunk_id}' not found.")
        if chunk.user_id != user_id:
            raise ChunkAccessDeniedError(f"Chunk '{chunk_id}' belongs to another user.")

        neighbours = await self._repository.get_chunks_by_index(
            user_id, chunk.file_id, [chunk.chunk_index - 1, chunk.chunk_index, chunk.chunk_index + 1]
        )
        file = await self._repository.get_file(user_id, chunk.file_id)
        return ChunkContext(
            chunk_id=chunk.id,
            file_id=chunk.file_id,
            file_name=file.name if file else "Unknown File",
            mime_type=file.mime_type if file else "text/plain",
            chunk_index=chunk.chunk_index,
            text="\n...\n".join(neighbour.text for neighbour in neighbours),
        )
