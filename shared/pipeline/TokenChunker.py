"""Token-aware sliding window chunker."""

import hashlib
from dataclasses import dataclass
from typing import Protocol

import tiktoken


CHUNK_SIZE_TOKENS = 800
CHUNK_OVERLAP_TOKENS = 100
ENCODING_NAME = "cl100k_base"


class TokenEncoding(Protocol):
    def encode(self, text: str) -> list[int]: ...

    def decode(self, tokens: list[int]) -> str: ...


@dataclass(frozen=True)
class TextChunk:
    index: int
    text: str
    token_count: int

    @property
    def hash(self) -> str:
        return hashlib.sha256(self.text.encode("utf-8")).hexdigest()


class TokenChunker:
    """Splits text into overlapping windows measured in tokens.

    Windows start every ``size - overlap`` tokens. The last window may be
    shorter than ``size``; it is kept. Empty text yields no chunks.
    """

    def __init__(self, encoding: TokenEncoding | None = None, size: int = CHUNK_SIZE_TOKENS, overlap: int = CHUNK_OVERLAP_TOKENS):
        if size <= 0:
            raise ValueError(f"Chunk size must be positive, got {size}.")
        if overlap < 0 or overlap >= size:
            raise ValueError(f"Chunk overlap must be in [0, {size}), got {overlap}.")
        self._encoding = encoding
        self.size = size
        self.overlap = overlap

    def _get_encoding(self) -> TokenEncoding:
        # tiktoken downloads the BPE ranks on first use, so load lazily
        if self._encoding is None:
            self._encoding = tiktoken.get_encoding(ENCODING_NAME)
        return self._encoding

    def split(self, text: str) -> list[TextChunk]:
        """Split ``text`` into ordered chunks.

        Args:
            text (str): The document text.

        Returns:
            list[TextChunk]: Chunks with contiguous indices starting at 0.
        """
        if not text:
            return []
        encoding = self._get_encoding()
        tokens = encoding.encode(text)
        if not tokens:
            return []

        chunks: list[TextChunk] = []
        step = self.size - self.overlap
        start = 0
        while start < len(tokens):
            end = min(start + self.size, len(tokens))
            window = tokens[start:end]
            chunks.append(TextChunk(index=len(chunks), text=encoding.decode(window), token_count=len(window)))
            if end >= len(tokens):
                break
            start += step
        return chunks
