"""Fetch stage: download or export a file, extract its text, store it."""

import asyncio
import hashlib

from services.worker.StageService import StageService
from shared.clients.source.SourceClientManager import SourceClientManager
from shared.db.IngestionRepository import IngestionRepository
from shared.db.models import DriveFile
from shared.helper.HelperConfig import HelperConfig
from shared.models.ingestion import FETCH_ENTRY_PHASES, IngestionPhase, QueueJob
from shared.pipeline.errors import MissingCredentialError
from shared.pipeline.TextExtractor import ExtractedText, TextExtractor, export_target_mime, is_workspace_native
from shared.queue.WorkQueue import WorkQueue, enqueue_vectorize


def content_hash(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


class FetchService(StageService):
    def __init__(
        self,
        helper_config: HelperConfig,
        repository: IngestionRepository,
        source_manager: SourceClientManager,
        extractor: TextExtractor,
        fetch_queue: WorkQueue,
        vectorize_queue: WorkQueue,
    ) -> None:
        super().__init__(helper_config=helper_config, repository=repository, retry_queue=fetch_queue)
        self._source_manager = source_manager
        self._extractor = extractor
        self._vectorize_queue = vectorize_queue

    def get_stage_name(self) -> str:
        return "fetch"

    def _get_entry_phases(self) -> frozenset[IngestionPhase]:
        return FETCH_ENTRY_PHASES

    def _get_active_phase(self) -> IngestionPhase:
        return IngestionPhase.FETCHING

    async def _handle_out_of_phase(self, job: QueueJob, file: DriveFile, log_prefix: str) -> None:
        # text already stored: make sure the vectorize job exists
        if file.ingestion_phase == IngestionPhase.CHUNK_PENDING.value:
            self.logging.info("%s Already fetched, re-enqueueing vectorize job.", log_prefix)
            await enqueue_vectorize(self._vectorize_queue, job.user_id, job.file_id)
            return
        await super()._handle_out_of_phase(job, file, log_prefix)

    async def _execute(self, job: QueueJob, file: DriveFile, log_prefix: str) -> None:
        data, mime_type = await self._download(job, file, log_prefix)

        # parsing is CPU bound, keep it off the event loop
        extracted: ExtractedText = await asyncio.to_thread(self._extractor.extract, data, mime_type, log_prefix)
        del data

        text_hash = content_hash(extracted.text)
        await self._repository.complete_fetch(
            user_id=job.user_id,
            file_id=job.file_id,
            mime_type=mime_type,
            text=extracted.text,
            content_hash=text_hash,
            warning=extracted.warning,
        )
        await enqueue_vectorize(self._vectorize_queue, job.user_id, job.file_id)
        self.logging.info("%s Fetched %d characters (truncated=%s). Queued vectorize.", log_prefix, len(extracted.text), extracted.truncated)

    async def _download(self, job: QueueJob, file: DriveFile, log_prefix: str) -> tuple[bytes, str]:
        """Download or export the file content.

        Returns:
            tuple[bytes, str]: The content and the MIME type it is encoded in.
        """
        credential = await self._repository.get_credential(job.user_id)
        if credential is None:
            raise MissingCredentialError(job.user_id)

        client = self._source_manager.create_client(credential)
        try:
            await client.boot()
            if is_workspace_native(file.mime_type):
                target_mime = export_target_mime(file.mime_type)
                self.logging.info("%s Exporting workspace file as %s...", log_prefix, target_mime)
                data = await client.do_export_bytes(job.file_id, target_mime)
                mime_type = target_mime
            else:
                self.logging.info("%s Downloading %s...", log_prefix, file.mime_type)
                data = await client.do_download_bytes(job.file_id)
                mime_type = file.mime_type
        finally:
            await client.close()
        self.logging.info("%s Download complete, %d bytes.", log_prefix, len(data))
        return data, mime_type
