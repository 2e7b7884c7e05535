import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone

import httpx
import pytest

from shared.clients.rag.models.VectorPoint import SearchHit
from shared.clients.source.models.SourceFile import SourceCredential, SourceFile
from shared.db.Database import Database
from shared.db.IngestionRepository import IngestionRepository
from shared.db.models import DriveFile
from shared.helper.HelperConfig import HelperConfig
from shared.logging.logging_setup import ColorLogger
from shared.models.ingestion import IngestionPhase, QueueJob
from shared.pipeline.TokenChunker import TokenChunker


##########################################
############### TEST DOUBLES #############
##########################################

class FakeEncoding:
    """Deterministic stand-in for a BPE encoding: one token per 4 characters."""

    def __init__(self, chars_per_token: int = 4):
        self.chars_per_token = chars_per_token
        self._pieces: list[str] = []
        self._ids: dict[str, int] = {}

    def encode(self, text: str) -> list[int]:
        tokens = []
        for start in range(0, len(text), self.chars_per_token):
            piece = text[start:start + self.chars_per_token]
            if piece not in self._ids:
                self._ids[piece] = len(self._pieces)
                self._pieces.append(piece)
            tokens.append(self._ids[piece])
        return tokens

    def decode(self, tokens: list[int]) -> str:
        return "".join(self._pieces[token] for token in tokens)


class FakeQueue:
    """Records enqueued and delayed jobs instead of talking to Redis."""

    def __init__(self, stream: str = "fake:0"):
        self.stream = stream
        self.jobs: list[QueueJob] = []
        self.delayed: list[tuple[QueueJob, float]] = []

    async def enqueue(self, job: QueueJob) -> str:
        self.jobs.append(job)
        return f"{len(self.jobs)}-0"

    async def enqueue_delayed(self, job: QueueJob, delay_seconds: float) -> None:
        self.delayed.append((job, delay_seconds))


class FakeEmbedClient:
    def __init__(self):
        self.batches: list[list[str]] = []
        self.queries: list[str] = []
        self.error: Exception | None = None

    async def do_embed_batched(self, texts: list[str], batch_size: int = 50) -> list[list[float]]:
        if self.error is not None:
            raise self.error
        vectors = []
        for start in range(0, len(texts), batch_size):
            batch = texts[start:start + batch_size]
            self.batches.append(batch)
            vectors.extend([[float(len(text)), 1.0] for text in batch])
        return vectors

    async def do_embed_query(self, query: str) -> list[float]:
        self.queries.append(query)
        return [float(len(query)), 1.0]


class FakeRagClient:
    """In-memory vector index. Search scores come from ``scores`` (by point ID)
    or, failing that, from ``scores_by_file`` (by payload file_id)."""

    def __init__(self, default_score: float = 0.0):
        self.points: dict[str, dict] = {}
        self.scores: dict[str, float] = {}
        self.scores_by_file: dict[str, float] = {}
        self.default_score = default_score
        self.upsert_batches: list[int] = []
        self.search_calls: list[dict] = []

    async def do_upsert_points(self, points: list[dict]) -> None:
        self.upsert_batches.append(len(points))
        for point in points:
            self.points[point["id"]] = point

    async def do_delete_points(self, point_ids: list[str]) -> None:
        for point_id in point_ids:
            self.points.pop(point_id, None)

    async def do_delete_file_points(self, user_id: str, file_id: str) -> None:
        for point_id in [pid for pid, p in self.points.items() if p["payload"]["user_id"] == user_id and p["payload"]["file_id"] == file_id]:
            del self.points[point_id]

    def add_point(self, point_id: str, user_id: str, file_id: str, score: float) -> None:
        self.points[point_id] = {"id": point_id, "vector": [0.0], "payload": {"user_id": user_id, "file_id": file_id}}
        self.scores[point_id] = score

    def score_of(self, point_id: str) -> float:
        if point_id in self.scores:
            return self.scores[point_id]
        file_id = self.points[point_id]["payload"]["file_id"]
        return self.scores_by_file.get(file_id, self.default_score)

    async def do_search(self, vector: list[float], user_id: str, limit: int, score_threshold: float | None = None) -> list[SearchHit]:
        self.search_calls.append({"user_id": user_id, "limit": limit, "score_threshold": score_threshold})
        hits = [
            SearchHit(id=point_id, score=self.score_of(point_id), payload=point["payload"])
            for point_id, point in self.points.items()
            if point["payload"]["user_id"] == user_id
        ]
        if score_threshold is not None:
            hits = [hit for hit in hits if hit.score >= score_threshold]
        return sorted(hits, key=lambda hit: hit.score, reverse=True)[:limit]


class FakeSourceClient:
    def __init__(self, manager: "FakeSourceManager", credential: SourceCredential):
        self._manager = manager
        self.credential = credential

    async def boot(self) -> None:
        self._manager.booted += 1

    async def close(self) -> None:
        self._manager.closed += 1

    async def do_list_files(self, page_size: int = 100, limit: int | None = None) -> list[SourceFile]:
        files = list(self._manager.files)
        return files[:limit] if limit is not None else files

    async def do_download_bytes(self, file_id: str) -> bytes:
        if self._manager.error is not None:
            raise self._manager.error
        self._manager.downloads.append(file_id)
        return self._manager.contents[file_id]

    async def do_export_bytes(self, file_id: str, target_mime: str) -> bytes:
        if self._manager.error is not None:
            raise self._manager.error
        self._manager.exports.append((file_id, target_mime))
        return self._manager.contents[file_id]


@dataclass
class FakeSourceManager:
    files: list[SourceFile] = field(default_factory=list)
    contents: dict[str, bytes] = field(default_factory=dict)
    error: Exception | None = None
    downloads: list[str] = field(default_factory=list)
    exports: list[tuple[str, str]] = field(default_factory=list)
    booted: int = 0
    closed: int = 0

    def create_client(self, credential: SourceCredential) -> FakeSourceClient:
        return FakeSourceClient(self, credential)


def http_status_error(status_code: int, url: str = "https://example.test/resource") -> httpx.HTTPStatusError:
    request = httpx.Request("GET", url)
    response = httpx.Response(status_code, request=request, text="error body")
    return httpx.HTTPStatusError(f"HTTP {status_code}", request=request, response=response)


##########################################
################ FIXTURES ################
##########################################

@pytest.fixture
def env(monkeypatch, tmp_path):
    values = {
        "ROOT_DIR": str(tmp_path),
        "APP_API_KEY": "test-key",
        "RAG_ENGINES": "[qdrant]",
        "RAG_QDRANT_BASE_URL": "http://qdrant.test",
        "RAG_QDRANT_COLLECTION": "drive_vectors",
        "EMBED_ENGINE": "openai",
        "EMBED_MODEL": "text-embedding-3-small",
        "EMBED_OPENAI_API_KEY": "sk-test",
        "SOURCE_ENGINE": "gdrive",
        "SOURCE_GDRIVE_CLIENT_ID": "client-id",
        "SOURCE_GDRIVE_CLIENT_SECRET": "client-secret",
        "SYNC_MIN_INTERVAL_SECONDS": "60",
    }
    for key, value in values.items():
        monkeypatch.setenv(key, value)
    return values


@pytest.fixture
def helper_config(env) -> HelperConfig:
    return HelperConfig(logger=ColorLogger(logging.getLogger("drive_rag_bridge.tests")))


@pytest.fixture
async def database(helper_config, tmp_path):
    db = Database(helper_config=helper_config, url=f"sqlite+aiosqlite:///{tmp_path}/test.db")
    await db.boot()
    await db.create_schema()
    yield db
    await db.close()


@pytest.fixture
def repository(helper_config, database) -> IngestionRepository:
    return IngestionRepository(helper_config=helper_config, database=database)


@pytest.fixture
def fetch_queue() -> FakeQueue:
    return FakeQueue("drive_fetch:0")


@pytest.fixture
def vectorize_queue() -> FakeQueue:
    return FakeQueue("drive_vectorize:0")


@pytest.fixture
def embed_client() -> FakeEmbedClient:
    return FakeEmbedClient()


@pytest.fixture
def rag_client() -> FakeRagClient:
    return FakeRagClient()


@pytest.fixture
def source_manager() -> FakeSourceManager:
    return FakeSourceManager()


@pytest.fixture
def fake_encoding() -> FakeEncoding:
    return FakeEncoding()


@pytest.fixture
def chunker(fake_encoding) -> TokenChunker:
    return TokenChunker(encoding=fake_encoding)


@pytest.fixture
def make_file(repository):
    async def _make_file(
        user_id: str = "user-a",
        file_id: str = "file-1",
        name: str = "notes.txt",
        mime_type: str = "text/plain",
        phase: IngestionPhase = IngestionPhase.DISCOVERED,
        supported: bool = True,
        retry_count: int = 0,
        last_ingested_at: datetime | None = None,
        size: int | None = 100,
    ) -> DriveFile:
        return await repository.insert_file(DriveFile(
            user_id=user_id,
            file_id=file_id,
            name=name,
            mime_type=mime_type,
            size=size,
            supported=supported,
            ingestion_phase=phase.value,
            retry_count=retry_count,
            last_modified_at=datetime(2024, 1, 1, tzinfo=timezone.utc),
            last_ingested_at=last_ingested_at,
        ))
    return _make_file


@pytest.fixture
async def connected(repository):
    """Stores a source credential for user-a."""
    await repository.save_credential("user-a", "refresh-token")
