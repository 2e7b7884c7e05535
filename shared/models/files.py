"""Pydantic models for the file-status surface, sync summaries and retries."""

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict

from shared.models.ingestion import IngestionPhase


class FileStatus(BaseModel):
    """Public view of a file record, used by the UI for polling."""

    model_config = ConfigDict(from_attributes=True)

    file_id: str
    name: str
    mime_type: str
    supported: bool
    ingestion_phase: IngestionPhase
    ingestion_error: str | None = None
    retry_count: int = 0
    hash: str | None = None
    last_modified_at: datetime | None = None
    last_ingested_at: datetime | None = None
    updated_at: datetime | None = None


class ProgressTotals(BaseModel):
    supported: int = 0
    unsupported: int = 0
    indexed: int = 0
    in_progress: int = 0
    failed: int = 0


class ProgressReport(BaseModel):
    totals: ProgressTotals
    files: list[FileStatus]


class SyncSummary(BaseModel):
    """Result of one discovery pass over a user's file source."""

    total_found: int = 0
    supported_count: int = 0
    unsupported_count: int = 0
    enqueued_count: int = 0


class RetryOutcome(BaseModel):
    file_id: str
    retry_phase: Literal["fetch", "vectorize"]
    message: str


class ChunkContext(BaseModel):
    """A chunk together with its direct neighbours, for citation previews."""

    chunk_id: str
    file_id: str
    file_name: str
    mime_type: str
    chunk_index: int
    text: str
