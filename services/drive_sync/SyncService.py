"""Discovery: mirror a user's file listing into file records and enqueue fetches."""

import redis.asyncio as aioredis

from shared.clients.source.SourceClientManager import SourceClientManager
from shared.clients.source.models.SourceFile import SourceFile
from shared.db.IngestionRepository import IngestionRepository, as_utc
from shared.db.models import DriveFile
from shared.helper.HelperConfig import HelperConfig
from shared.models.files import SyncSummary
from shared.models.ingestion import IngestionPhase
from shared.pipeline.errors import MissingCredentialError
from shared.pipeline.TextExtractor import MIME_DOCX, MIME_GOOGLE_DOC, MIME_GOOGLE_SHEET, MIME_GOOGLE_SLIDES, MIME_PDF
from shared.queue.WorkQueue import WorkQueue, enqueue_fetch


SUPPORTED_MIME_TYPES: frozenset[str] = frozenset({
    MIME_PDF,
    MIME_DOCX,
    "text/plain",
    "text/markdown",
    "text/csv",
    "application/csv",
    "application/json",
    MIME_GOOGLE_DOC,
    MIME_GOOGLE_SHEET,
    MIME_GOOGLE_SLIDES,
})

MAX_FILE_SIZE_BYTES = 10 * 1024 * 1024


def unsupported_reason(file: SourceFile) -> str | None:
    """Return why ``file`` cannot be ingested, or None if it can."""
    if file.mime_type not in SUPPORTED_MIME_TYPES:
        return f"Unsupported MIME type: {file.mime_type}"
    if file.size is not None and file.size > MAX_FILE_SIZE_BYTES:
        return f"File exceeds 10MB limit (size: {file.size} bytes)"
    return None


def is_stale(file: SourceFile, record: DriveFile) -> bool:
    modified = as_utc(file.modified_time)
    ingested = as_utc(record.last_ingested_at)
    return modified is not None and ingested is not None and modified > ingested


class SyncRateLimitedError(Exception):
    def __init__(self, user_id: str, interval_seconds: int):
        super().__init__(f"Sync for user '{user_id}' is limited to once every {interval_seconds} seconds.")
        self.user_id = user_id
        self.interval_seconds = interval_seconds


class SyncService:
    """Runs discovery passes for single users."""

    def __init__(
        self,
        helper_config: HelperConfig,
        repository: IngestionRepository,
        source_manager: SourceClientManager,
        fetch_queue: WorkQueue,
        redis: aioredis.Redis,
    ) -> None:
        self.logging = helper_config.get_logger()
        self._repository = repository
        self._source_manager = source_manager
        self._fetch_queue = fetch_queue
        self._redis = redis
        self.min_interval_seconds = int(helper_config.get_number_val("SYNC_MIN_INTERVAL_SECONDS", default=60, minimum=0))

    ##########################################
    ############## RATE LIMIT ################
    ##########################################

    async def acquire_sync_slot(self, user_id: str) -> bool:
        """Claim the user's sync slot for SYNC_MIN_INTERVAL_SECONDS.

        Returns:
            bool: False if a sync already ran within the interval.
        """
        if self.min_interval_seconds <= 0:
            return True
        acquired = await self._redis.set(f"drive_sync:last:{user_id}", "1", nx=True, ex=self.min_interval_seconds)
        return bool(acquired)

    ##########################################
    ############### CORE SYNC ################
    ##########################################

    async def do_sync(self, user_id: str, limit: int | None = None, enforce_rate_limit: bool = True) -> SyncSummary:
        """List the user's files and bring their records up to date.

        Args:
            user_id (str): The user to sync.
            limit (int | None): Process at most this many listed files.
            enforce_rate_limit (bool): Reject syncs closer together than SYNC_MIN_INTERVAL_SECONDS.

        Returns:
            SyncSummary: Counts of found, supported, unsupported and enqueued files.

        Raises:
            SyncRateLimitedError: If the user synced too recently.
            MissingCredentialError: If no source credential is stored for the user.
        """
        if enforce_rate_limit and not await self.acquire_sync_slot(user_id):
            raise SyncRateLimitedError(user_id, self.min_interval_seconds)

        credential = await self._repository.get_credential(user_id)
        if credential is None:
            raise MissingCredentialError(user_id)

        client = self._source_manager.create_client(credential)
        try:
            await client.boot()
            files = await client.do_list_files(limit=limit)
        finally:
            await client.close()

        self.logging.info("Syncing %d file(s) for user %s...", len(files), user_id)
        summary = SyncSummary(total_found=len(files))
        for file in files:
            supported, enqueued = await self._sync_file(user_id, file)
            if supported:
                summary.supported_count += 1
            else:
                summary.unsupported_count += 1
            if enqueued:
                summary.enqueued_count += 1

        self.logging.info(
            "Sync complete for user %s: %d found, %d supported, %d unsupported, %d enqueued.",
            user_id, summary.total_found, summary.supported_count, summary.unsupported_count, summary.enqueued_count,
        )
        return summary

    async def _sync_file(self, user_id: str, file: SourceFile) -> tuple[bool, bool]:
        """Upsert the record of one listed file.

        Returns:
            tuple[bool, bool]: (supported, fetch enqueued)
        """
        reason = unsupported_reason(file)
        supported = reason is None
        record = await self._repository.get_file(user_id, file.id)

        if record is None:
            await self._repository.insert_file(DriveFile(
                user_id=user_id,
                file_id=file.id,
                name=file.name,
                mime_type=file.mime_type,
                size=file.size,
                last_modified_at=as_utc(file.modified_time),
                supported=supported,
                ingestion_phase=(IngestionPhase.DISCOVERED if supported else IngestionPhase.FAILED).value,
                ingestion_error=reason,
            ))
            if not supported:
                self.logging.debug("File %s ('%s') is unsupported: %s", file.id, file.name, reason)
                return False, False
            await enqueue_fetch(self._fetch_queue, user_id, file.id)
            return True, True

        metadata = {
            "user_id": user_id,
            "file_id": file.id,
            "name": file.name,
            "mime_type": file.mime_type,
            "size": file.size,
            "last_modified_at": as_utc(file.modified_time),
            "supported": supported,
        }

        if not supported:
            await self._repository.update_file_metadata(**metadata, phase=IngestionPhase.FAILED, error=reason)
            return False, False

        if is_stale(file, record) or not record.supported:
            self.logging.info(
                "File %s ('%s') %s, re-discovering.",
                file.id, file.name, "changed since last ingest" if record.supported else "became supported",
            )
            await self._repository.update_file_metadata(**metadata, phase=IngestionPhase.DISCOVERED, clear_error=True)
            await enqueue_fetch(self._fetch_queue, user_id, file.id)
            return True, True

        await self._repository.update_file_metadata(**metadata)
        # an earlier enqueue may have been lost after the insert committed
        if record.ingestion_phase == IngestionPhase.DISCOVERED.value:
            await enqueue_fetch(self._fetch_queue, user_id, file.id)
            return True, True
        return True, False
