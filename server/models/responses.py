from pydantic import BaseModel

from shared.models.files import FileStatus, SyncSummary
from shared.models.retrieval import DriveCitation


class SyncResponse(BaseModel):
    status: str
    summary: SyncSummary


class FilesResponse(BaseModel):
    files: list[FileStatus]


class RetrieveResponse(BaseModel):
    formatted_text: str
    citations: list[DriveCitation]
