"""Vectorize stage: chunk the stored text, embed it and index the vectors."""

import asyncio

from services.worker.StageService import StageService
from shared.clients.embed.EmbedClientInterface import EMBED_BATCH_SIZE, EmbedClientInterface
from shared.clients.rag.RAGClientInterface import RAGClientInterface
from shared.clients.rag.models.VectorPoint import VectorPoint
from shared.db.IngestionRepository import IngestionRepository
from shared.db.models import Chunk, DriveFile, new_id
from shared.helper.HelperConfig import HelperConfig
from shared.models.ingestion import VECTORIZE_ENTRY_PHASES, IngestionPhase, QueueJob
from shared.pipeline.errors import InvariantViolationError
from shared.pipeline.TokenChunker import TokenChunker
from shared.queue.WorkQueue import WorkQueue


class VectorizeService(StageService):
    def __init__(
        self,
        helper_config: HelperConfig,
        repository: IngestionRepository,
        embed_client: EmbedClientInterface,
        rag_clients: list[RAGClientInterface],
        chunker: TokenChunker,
        vectorize_queue: WorkQueue,
    ) -> None:
        super().__init__(helper_config=helper_config, repository=repository, retry_queue=vectorize_queue)
        self._embed_client = embed_client
        self._rag_clients = rag_clients
        self._chunker = chunker

    def get_stage_name(self) -> str:
        return "vectorize"

    def _get_entry_phases(self) -> frozenset[IngestionPhase]:
        return VECTORIZE_ENTRY_PHASES

    def _get_active_phase(self) -> IngestionPhase:
        return IngestionPhase.VECTORIZING

    async def _execute(self, job: QueueJob, file: DriveFile, log_prefix: str) -> None:
        raw = await self._repository.get_raw_document(job.user_id, job.file_id)
        if raw is None:
            raise InvariantViolationError(f"No raw document stored for file '{job.file_id}'.")

        await self._delete_previous_chunks(job, log_prefix)

        chunks = await asyncio.to_thread(self._chunker.split, raw.text)
        if not chunks:
            raise InvariantViolationError("Empty document: no chunks produced.")
        self.logging.info("%s Split into %d chunk(s).", log_prefix, len(chunks))

        vectors = await self._embed_client.do_embed_batched([chunk.text for chunk in chunks], batch_size=EMBED_BATCH_SIZE)

        rows: list[Chunk] = []
        points: list[dict] = []
        for chunk, vector in zip(chunks, vectors):
            point_id = new_id()
            chunk_hash = chunk.hash
            rows.append(Chunk(
                id=point_id,
                user_id=job.user_id,
                file_id=job.file_id,
                chunk_index=chunk.index,
                text=chunk.text,
                hash=chunk_hash,
                vectorized=True,
                qdrant_point_id=point_id,
            ))
            payload = VectorPoint(
                user_id=job.user_id,
                file_id=job.file_id,
                file_name=file.name,
                mime_type=file.mime_type,
                chunk_index=chunk.index,
                hash=chunk_hash,
            )
            points.append({"id": point_id, "vector": vector, "payload": payload.model_dump()})

        for rag_client in self._rag_clients:
            for start in range(0, len(points), EMBED_BATCH_SIZE):
                await rag_client.do_upsert_points(points[start:start + EMBED_BATCH_SIZE])

        await self._repository.complete_vectorize(job.user_id, job.file_id, rows, raw.hash)
        self.logging.info("%s Indexed %d chunk(s).", log_prefix, len(rows), color="green")

    async def _delete_previous_chunks(self, job: QueueJob, log_prefix: str) -> None:
        """Remove the chunk records and vectors of an earlier run."""
        point_ids = await self._repository.list_chunk_point_ids(job.user_id, job.file_id)
        for rag_client in self._rag_clients:
            await rag_client.do_delete_points(point_ids)
            # also sweeps vectors of runs that failed before their chunk rows were committed
            await rag_client.do_delete_file_points(job.user_id, job.file_id)
        deleted = await self._repository.delete_chunks(job.user_id, job.file_id)
        if deleted:
            self.logging.info("%s Deleted %d previous chunk(s).", log_prefix, deleted)
