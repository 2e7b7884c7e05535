"""Models returned by file source clients."""

from datetime import datetime

from pydantic import BaseModel


class SourceFile(BaseModel):
    """A single file as listed by the file source.

    Attributes:
        id:            Source-assigned file ID.
        name:          Human-readable file name.
        mime_type:     MIME type reported by the source.
        modified_time: Last modification time at the source, if reported.
        size:          Size in bytes. None for workspace-native documents,
                       which have no binary size.
    """

    id: str
    name: str
    mime_type: str
    modified_time: datetime | None = None
    size: int | None = None


class SourceCredential(BaseModel):
    """A user's stored credential for the file source (an OAuth refresh token)."""

    user_id: str
    refresh_token: str


class SourceFileListResponse(BaseModel):
    """One page of a file listing."""

    files: list[SourceFile] = []
    next_page_token: str | None = None
