"""Relational store operations for the ingestion pipeline.

Every phase change goes through ``_transition`` so the forward-only ordering of
``IngestionPhase`` is enforced in one place. Multi-row updates that must be
observed together (raw document + phase, chunks + phase) run in one
transaction.
"""

from datetime import datetime, timezone

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from shared.clients.source.models.SourceFile import SourceCredential
from shared.db.Database import Database
from shared.db.models import Chunk, DriveFile, RawDocument, UserCredential, utcnow
from shared.helper.HelperConfig import HelperConfig
from shared.models.ingestion import IngestionPhase, assert_transition
from shared.pipeline.errors import truncate_message


def as_utc(value: datetime | None) -> datetime | None:
    """Return ``value`` as an aware UTC datetime. Naive values are taken as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class FileNotFoundInStoreError(LookupError):
    def __init__(self, user_id: str, file_id: str):
        super().__init__(f"No file record for file '{file_id}' of user '{user_id}'.")
        self.user_id = user_id
        self.file_id = file_id


class IngestionRepository:
    def __init__(self, helper_config: HelperConfig, database: Database):
        self.logging = helper_config.get_logger()
        self._db = database

    ##########################################
    ############## CREDENTIALS ###############
    ##########################################

    async def get_credential(self, user_id: str) -> SourceCredential | None:
        async with self._db.session() as session:
            row = await session.get(UserCredential, user_id)
            if row is None or not row.refresh_token:
                return None
            return SourceCredential(user_id=row.user_id, refresh_token=row.refresh_token)

    async def save_credential(self, user_id: str, refresh_token: str) -> None:
        async with self._db.session() as session:
            row = await session.get(UserCredential, user_id)
            if row is None:
                session.add(UserCredential(user_id=user_id, refresh_token=refresh_token))
            else:
                row.refresh_token = refresh_token

    ##########################################
    ################ FILES ###################
    ##########################################

    async def get_file(self, user_id: str, file_id: str) -> DriveFile | None:
        async with self._db.session() as session:
            return await self._get_file(session, user_id, file_id)

    async def list_files(self, user_id: str) -> list[DriveFile]:
        async with self._db.session() as session:
            result = await session.execute(
                select(DriveFile).where(DriveFile.user_id == user_id).order_by(DriveFile.name, DriveFile.file_id)
            )
            return list(result.scalars().all())

    async def insert_file(self, file: DriveFile) -> DriveFile:
        async with self._db.session() as session:
            session.add(file)
        return file

    async def update_file_metadata(
        self,
        user_id: str,
        file_id: str,
        name: str,
        mime_type: str,
        size: int | None,
        last_modified_at: datetime | None,
        supported: bool,
        phase: IngestionPhase | None = None,
        error: str | None = None,
        clear_error: bool = False,
    ) -> DriveFile:
        """Refresh listing metadata of an existing record, optionally resetting its phase.

        Phase changes requested here are resets (staleness, unsupported file)
        and bring the retry counter back to zero.
        """
        async with self._db.session() as session:
            row = await self._require_file(session, user_id, file_id)
            row.name = name
            row.mime_type = mime_type
            row.size = size
            row.last_modified_at = last_modified_at
            row.supported = supported
            if phase is not None and phase.value != row.ingestion_phase:
                self._transition(row, phase, reset=True)
                row.retry_count = 0
            if error is not None:
                row.ingestion_error = truncate_message(error)
            elif clear_error:
                row.ingestion_error = None
            return row

    ##########################################
    ############# PHASE CHANGES ##############
    ##########################################

    async def set_phase(self, user_id: str, file_id: str, target: IngestionPhase, reset: bool = False) -> DriveFile:
        """Move a file to ``target``.

        Raises:
            FileNotFoundInStoreError: If the record does not exist.
            InvalidPhaseTransitionError: If the move breaks the phase ordering.
        """
        async with self._db.session() as session:
            row = await self._require_file(session, user_id, file_id)
            self._transition(row, target, reset=reset)
            return row

    async def record_retry(self, user_id: str, file_id: str, error: str) -> DriveFile:
        """Spend one retry: increment the counter and keep the latest error visible."""
        async with self._db.session() as session:
            row = await self._require_file(session, user_id, file_id)
            row.retry_count = (row.retry_count or 0) + 1
            row.last_retry_at = utcnow()
            row.ingestion_error = truncate_message(error)
            return row

    async def mark_failed(self, user_id: str, file_id: str, error: str) -> DriveFile:
        async with self._db.session() as session:
            row = await self._require_file(session, user_id, file_id)
            self._transition(row, IngestionPhase.FAILED)
            row.ingestion_error = truncate_message(error)
            return row

    async def reset_for_retry(self, user_id: str, file_id: str, target: IngestionPhase) -> DriveFile:
        """Manual retry reset: move to ``target`` with a clean retry/error state."""
        async with self._db.session() as session:
            row = await self._require_file(session, user_id, file_id)
            self._transition(row, target, reset=True)
            row.retry_count = 0
            row.ingestion_error = None
            return row

    ##########################################
    ############ RAW DOCUMENTS ###############
    ##########################################

    async def get_raw_document(self, user_id: str, file_id: str) -> RawDocument | None:
        async with self._db.session() as session:
            result = await session.execute(
                select(RawDocument).where(RawDocument.user_id == user_id, RawDocument.file_id == file_id)
            )
            return result.scalar_one_or_none()

    async def has_raw_document(self, user_id: str, file_id: str) -> bool:
        return await self.get_raw_document(user_id, file_id) is not None

    async def complete_fetch(self, user_id: str, file_id: str, mime_type: str, text: str, content_hash: str, warning: str | None = None) -> DriveFile:
        """Store the extracted text and move the file to ``chunk_pending`` in one transaction.

        Args:
            warning (str | None): Non-fatal note (e.g. truncation) kept as the file's error text.
        """
        async with self._db.session() as session:
            row = await self._require_file(session, user_id, file_id)
            result = await session.execute(
                select(RawDocument).where(RawDocument.user_id == user_id, RawDocument.file_id == file_id)
            )
            raw = result.scalar_one_or_none()
            if raw is None:
                session.add(RawDocument(user_id=user_id, file_id=file_id, mime_type=mime_type, text=text, hash=content_hash))
            else:
                raw.mime_type = mime_type
                raw.text = text
                raw.hash = content_hash
            self._transition(row, IngestionPhase.CHUNK_PENDING)
            row.retry_count = 0
            row.ingestion_error = warning
            return row

    ##########################################
    ################ CHUNKS ##################
    ##########################################

    async def list_chunk_point_ids(self, user_id: str, file_id: str) -> list[str]:
        async with self._db.session() as session:
            result = await session.execute(
                select(Chunk.qdrant_point_id).where(Chunk.user_id == user_id, Chunk.file_id == file_id)
            )
            return list(result.scalars().all())

    async def delete_chunks(self, user_id: str, file_id: str) -> int:
        async with self._db.session() as session:
            result = await session.execute(delete(Chunk).where(Chunk.user_id == user_id, Chunk.file_id == file_id))
            return result.rowcount or 0

    async def complete_vectorize(self, user_id: str, file_id: str, chunks: list[Chunk], content_hash: str | None) -> DriveFile:
        """Insert the new chunk rows and move the file to ``indexed`` in one transaction."""
        async with self._db.session() as session:
            row = await self._require_file(session, user_id, file_id)
            session.add_all(chunks)
            self._transition(row, IngestionPhase.INDEXED)
            row.hash = content_hash
            row.last_ingested_at = utcnow()
            row.retry_count = 0
            row.ingestion_error = None
            return row

    async def get_chunks_with_files(self, user_id: str, chunk_ids: list[str]) -> dict[str, tuple[Chunk, DriveFile]]:
        """Load chunks by ID together with their file record, restricted to ``user_id``.

        Returns:
            dict[str, tuple[Chunk, DriveFile]]: Keyed by chunk ID. Unknown IDs
                and chunks of other users are absent.
        """
        if not chunk_ids:
            return {}
        async with self._db.session() as session:
            result = await session.execute(
                select(Chunk, DriveFile)
                .join(DriveFile, (DriveFile.user_id == Chunk.user_id) & (DriveFile.file_id == Chunk.file_id))
                .where(Chunk.user_id == user_id, Chunk.id.in_(chunk_ids))
            )
            return {chunk.id: (chunk, file) for chunk, file in result.all()}

    async def get_chunk(self, chunk_id: str) -> Chunk | None:
        async with self._db.session() as session:
            return await session.get(Chunk, chunk_id)

    async def get_chunks_by_index(self, user_id: str, file_id: str, indices: list[int]) -> list[Chunk]:
        async with self._db.session() as session:
            result = await session.execute(
                select(Chunk)
                .where(Chunk.user_id == user_id, Chunk.file_id == file_id, Chunk.chunk_index.in_(indices))
                .order_by(Chunk.chunk_index)
            )
            return list(result.scalars().all())

    ##########################################
    ################ HELPERS #################
    ##########################################

    async def _get_file(self, session: AsyncSession, user_id: str, file_id: str) -> DriveFile | None:
        result = await session.execute(
            select(DriveFile).where(DriveFile.user_id == user_id, DriveFile.file_id == file_id)
        )
        return result.scalar_one_or_none()

    async def _require_file(self, session: AsyncSession, user_id: str, file_id: str) -> DriveFile:
        row = await self._get_file(session, user_id, file_id)
        if row is None:
            raise FileNotFoundInStoreError(user_id, file_id)
        return row

    def _transition(self, row: DriveFile, target: IngestionPhase, reset: bool = False) -> None:
        previous = row.ingestion_phase
        row.ingestion_phase = assert_transition(previous, target, reset=reset).value
        if previous != row.ingestion_phase:
            self.logging.debug("File %s: %s → %s%s", row.file_id, previous, row.ingestion_phase, " (reset)" if reset else "")
