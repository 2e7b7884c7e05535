"""VectorPoint model: metadata stored alongside each chunk vector in a RAG backend."""

from pydantic import BaseModel, Field


class VectorPoint(BaseModel):
    """Payload stored alongside each chunk vector.

    The user_id field is mandatory and enforced as an isolation invariant on
    every upsert and search operation. It must never be absent or empty.

    Attributes:
        user_id:     MANDATORY. Owner of the source file, used for access isolation.
        file_id:     File ID as assigned by the file source.
        file_name:   Human-readable file name.
        mime_type:   MIME type of the source file.
        chunk_index: Zero-based position of this chunk within the document.
        hash:        SHA-256 hex digest of the chunk text.
    """

    # never empty
    user_id: str = Field(min_length=1)

    # Core identity
    file_id: str
    file_name: str
    mime_type: str
    chunk_index: int

    # per-chunk content hash
    hash: str


class SearchHit(BaseModel):
    """A single similarity search result.

    Attributes:
        id:      Point ID (identical to the chunk record ID).
        score:   Similarity score, higher is closer.
        payload: The stored payload, if requested.
    """

    id: str
    score: float
    payload: dict = {}
