"""Fetch worker entry point.

Consumes the drive_fetch stream: downloads or exports each file, extracts its
text and hands it to the vectorize stream.

Usage:
    python -m services.drive_fetch.fetch_worker
"""

import asyncio

from services.drive_fetch.FetchService import FetchService
from services.worker.BaseWorker import BaseWorker, build_consumer_name
from shared.clients.source.SourceClientManager import SourceClientManager
from shared.db.Database import Database
from shared.db.IngestionRepository import IngestionRepository
from shared.helper.HelperConfig import HelperConfig
from shared.logging.logging_setup import setup_logging
from shared.pipeline.TextExtractor import TextExtractor
from shared.queue.WorkQueue import create_fetch_queue, create_redis, create_vectorize_queue


async def main() -> None:
    """Boot the fetch worker and poll until cancelled."""
    logger = setup_logging(log_file_name="fetch_worker.log")
    config = HelperConfig(logger=logger)

    database = Database(helper_config=config)
    redis = create_redis(config)
    try:
        await database.boot()
        await database.create_schema()

        repository = IngestionRepository(helper_config=config, database=database)
        fetch_queue = create_fetch_queue(config, redis)
        vectorize_queue = create_vectorize_queue(config, redis)
        service = FetchService(
            helper_config=config,
            repository=repository,
            source_manager=SourceClientManager(helper_config=config),
            extractor=TextExtractor(helper_config=config),
            fetch_queue=fetch_queue,
            vectorize_queue=vectorize_queue,
        )
        worker = BaseWorker(
            helper_config=config,
            queue=fetch_queue,
            stage=service,
            consumer_name=build_consumer_name("fetch"),
        )
        await worker.run_forever()
    finally:
        await redis.aclose()
        await database.close()


if __name__ == "__main__":
    asyncio.run(main())
