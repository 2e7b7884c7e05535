"""Vectorize worker entry point.

Consumes the drive_vectorize stream: chunks stored text, embeds the chunks and
writes the vectors to every configured RAG backend.

Usage:
    python -m services.drive_vectorize.vectorize_worker
"""

import asyncio

from services.drive_vectorize.VectorizeService import VectorizeService
from services.worker.BaseWorker import BaseWorker, build_consumer_name
from shared.clients.embed.EmbedClientManager import EmbedClientManager
from shared.clients.rag.RAGClientManager import RAGClientManager
from shared.db.Database import Database
from shared.db.IngestionRepository import IngestionRepository
from shared.helper.HelperConfig import HelperConfig
from shared.logging.logging_setup import setup_logging
from shared.pipeline.TokenChunker import TokenChunker
from shared.queue.WorkQueue import create_redis, create_vectorize_queue


async def main() -> None:
    """Boot the vectorize worker and poll until cancelled."""
    logger = setup_logging(log_file_name="vectorize_worker.log")
    config = HelperConfig(logger=logger)

    embed_client = EmbedClientManager(helper_config=config).get_client()
    rag_manager = RAGClientManager(helper_config=config)
    database = Database(helper_config=config)
    redis = create_redis(config)

    try:
        # without embeddings and a vector index there is nothing to do, abort start-up
        try:
            await embed_client.boot()
            await rag_manager.boot()
            for rag_client in rag_manager.get_clients():
                result = await rag_client.do_healthcheck()
                if not result.is_success:
                    raise Exception(f"RAG client '{rag_client.__class__.__name__}' answered the healthcheck with status {result.status_code}.")
                await rag_client.do_ensure_collection()
        except Exception as e:
            logger.error("Error booting Embed/RAG clients: %s. Aborting.", e)
            return

        await database.boot()
        await database.create_schema()

        vectorize_queue = create_vectorize_queue(config, redis)
        service = VectorizeService(
            helper_config=config,
            repository=IngestionRepository(helper_config=config, database=database),
            embed_client=embed_client,
            rag_clients=rag_manager.get_clients(),
            chunker=TokenChunker(),
            vectorize_queue=vectorize_queue,
        )
        worker = BaseWorker(
            helper_config=config,
            queue=vectorize_queue,
            stage=service,
            consumer_name=build_consumer_name("vectorize"),
        )
        await worker.run_forever()
    finally:
        await embed_client.close()
        await rag_manager.close()
        await redis.aclose()
        await database.close()


if __name__ == "__main__":
    asyncio.run(main())
