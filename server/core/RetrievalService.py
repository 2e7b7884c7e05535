from shared.clients.embed.EmbedClientInterface import EmbedClientInterface
from shared.clients.rag.RAGClientInterface import RAGClientInterface
from shared.clients.rag.models.VectorPoint import SearchHit
from shared.db.IngestionRepository import IngestionRepository
from shared.db.models import Chunk, DriveFile
from shared.helper.HelperConfig import HelperConfig
from shared.models.retrieval import NO_RESULTS_MESSAGE, DriveCitation, RetrievalResult


SCORE_THRESHOLD = 0.4
DEFAULT_TOP_K = 10
MAX_CHUNKS_PER_FILE = 2
MAX_FILES = 5

CHUNK_SEPARATOR = "\n...\n"
FILE_SEPARATOR = "\n\n---\n\n"


class RetrievalService:
    """Answers queries: embed -> user-scoped search -> join chunk text -> group by file."""

    def __init__(
        self,
        helper_config: HelperConfig,
        repository: IngestionRepository,
        embed_client: EmbedClientInterface,
        rag_client: RAGClientInterface,
    ) -> None:
        self.logging = helper_config.get_logger()
        self._repository = repository
        self._embed_client = embed_client
        self._rag_client = rag_client

    ##########################################
    ############### CORE #####################
    ##########################################

    async def retrieve(self, query: str, user_id: str, top_k: int = DEFAULT_TOP_K) -> RetrievalResult:
        """Retrieve the most relevant chunks of a user's files.

        Hits below SCORE_THRESHOLD are discarded. Remaining hits are grouped by
        file in order of their best score; each file keeps at most
        MAX_CHUNKS_PER_FILE chunks and at most MAX_FILES files are returned.
        Equal scores keep the order the index returned them in.

        Args:
            query (str): Free-text query.
            user_id (str): Only this user's chunks are searched.
            top_k (int): Maximum number of vector hits to consider.

        Returns:
            RetrievalResult: Formatted text and one citation per file. No hits
                is a normal outcome with NO_RESULTS_MESSAGE and no citations.

        Raises:
            ValueError: If user_id is empty or top_k is not positive.
        """
        if not user_id:
            raise ValueError("user_id is required for retrieval.")
        if top_k <= 0:
            raise ValueError(f"top_k must be positive, got {top_k}.")
        if not query or not query.strip():
            return RetrievalResult(formatted_text=NO_RESULTS_MESSAGE)

        self.logging.info("Retrieving for user %s, top_k=%d, query='%s'", user_id, top_k, query[:80])
        query_vector = await self._embed_client.do_embed_query(query)
        hits = await self._rag_client.do_search(query_vector, user_id=user_id, limit=top_k, score_threshold=SCORE_THRESHOLD)

        # the index applies the threshold too, the post-filter keeps it exact across backends
        hits = [hit for hit in hits if hit.score >= SCORE_THRESHOLD]
        # sorted() is stable, ties keep index order
        hits = sorted(hits, key=lambda hit: hit.score, reverse=True)
        self.logging.debug("%d hit(s) passed the %.2f score threshold.", len(hits), SCORE_THRESHOLD)
        if not hits:
            return RetrievalResult(formatted_text=NO_RESULTS_MESSAGE)

        rows = await self._repository.get_chunks_with_files(user_id, [hit.id for hit in hits])
        groups = self._group_by_file(hits, rows)
        if not groups:
            self.logging.warning("No chunk records found for %d hit(s) of user %s.", len(hits), user_id)
            return RetrievalResult(formatted_text=NO_RESULTS_MESSAGE)

        blocks: list[str] = []
        citations: list[DriveCitation] = []
        for entries in groups:
            file = entries[0][2]
            blocks.append(f"[File: {file.name} (ID: {file.file_id})]\n" + CHUNK_SEPARATOR.join(chunk.text for _, chunk, _ in entries))
            chunk_ids = [chunk.id for _, chunk, _ in entries]
            citations.append(DriveCitation(
                chunk_id=",".join(chunk_ids),
                chunk_ids=chunk_ids,
                chunk_indices=[chunk.chunk_index for _, chunk, _ in entries],
                file_id=file.file_id,
                file_name=file.name,
                mime_type=file.mime_type,
                score=max(hit.score for hit, _, _ in entries),
            ))

        self.logging.info("Returning %d citation(s) for user %s.", len(citations), user_id)
        return RetrievalResult(formatted_text=FILE_SEPARATOR.join(blocks), citations=citations)

    ##########################################
    ############### HELPERS ##################
    ##########################################

    def _group_by_file(
        self,
        hits: list[SearchHit],
        rows: dict[str, tuple[Chunk, DriveFile]],
    ) -> list[list[tuple[SearchHit, Chunk, DriveFile]]]:
        """Group score-sorted hits by file, capping chunks per file and number of files."""
        groups: dict[str, list[tuple[SearchHit, Chunk, DriveFile]]] = {}
        seen_chunks: set[str] = set()
        for hit in hits:
            row = rows.get(hit.id)
            # vectors without a chunk record are orphans of an interrupted run
            if row is None or hit.id in seen_chunks:
                continue
            seen_chunks.add(hit.id)
            chunk, file = row
            entries = groups.get(file.file_id)
            if entries is None:
                if len(groups) >= MAX_FILES:
                    continue
                entries = groups[file.file_id] = []
            if len(entries) < MAX_CHUNKS_PER_FILE:
                entries.append((hit, chunk, file))
        return list(groups.values())
