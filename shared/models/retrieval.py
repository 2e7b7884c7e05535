"""Pydantic models for retrieval results and citations."""

from typing import Literal

from pydantic import BaseModel


NO_RESULTS_MESSAGE = "No relevant documents found in Google Drive."


class DriveCitation(BaseModel):
    """One citation per source file.

    Attributes:
        chunk_id:      Composite identifier of all retained chunks (comma separated).
        chunk_ids:     The retained chunk IDs, best match first.
        chunk_indices: Positions of the retained chunks within the file.
        score:         Highest similarity score among the retained chunks.
    """

    type: Literal["drive"] = "drive"
    chunk_id: str
    chunk_ids: list[str]
    chunk_indices: list[int]
    file_id: str
    file_name: str
    mime_type: str
    score: float


class RetrievalResult(BaseModel):
    formatted_text: str
    citations: list[DriveCitation] = []

    @property
    def is_empty(self) -> bool:
        return not self.citations
