"""FastAPI application entry point for drive_rag_bridge."""

import os
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from shared.logging.logging_setup import setup_logging
from shared.helper.HelperConfig import HelperConfig
from shared.clients.embed.EmbedClientManager import EmbedClientManager
from shared.clients.rag.RAGClientManager import RAGClientManager
from shared.clients.source.SourceClientManager import SourceClientManager
from shared.db.Database import Database
from shared.db.IngestionRepository import IngestionRepository
from shared.queue.WorkQueue import create_fetch_queue, create_redis, create_vectorize_queue
from services.drive_sync.SyncService import SyncService
from server.core.IngestionStatusService import IngestionStatusService
from server.core.RetrievalService import RetrievalService
from server.routers.DriveRouter import router as drive_router
from server.routers.RetrieveRouter import router as retrieve_router

logging = setup_logging()
app_version = os.getenv("APP_VERSION", "unknown")


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    # when the app starts
    app.state.logging = logging
    app.state.helper_config = config = HelperConfig(logger=logging)

    embed_client = EmbedClientManager(helper_config=config).get_client()
    rag_manager = RAGClientManager(helper_config=config)
    database = Database(helper_config=config)
    redis = create_redis(config)

    logging.info("Booting database and clients...")
    await database.boot()
    await database.create_schema()
    await embed_client.boot()
    await rag_manager.boot()

    rag_client = rag_manager.get_primary_client()
    # queries cannot be served without the vector index
    result = await rag_client.do_healthcheck()
    if not result.is_success:
        raise Exception(
            f"RAG client '{rag_client.__class__.__name__}' is not reachable "
            f"(status {result.status_code}). Cannot serve queries."
        )
    await rag_client.do_ensure_collection()
    logging.info("All clients booted successfully.")

    repository = IngestionRepository(helper_config=config, database=database)
    fetch_queue = create_fetch_queue(config, redis)
    vectorize_queue = create_vectorize_queue(config, redis)
    await fetch_queue.ensure_group()
    await vectorize_queue.ensure_group()

    app.state.sync_service = SyncService(
        helper_config=config,
        repository=repository,
        source_manager=SourceClientManager(helper_config=config),
        fetch_queue=fetch_queue,
        redis=redis,
    )
    app.state.status_service = IngestionStatusService(
        helper_config=config,
        repository=repository,
        fetch_queue=fetch_queue,
        vectorize_queue=vectorize_queue,
    )
    app.state.retrieval_service = RetrievalService(
        helper_config=config,
        repository=repository,
        embed_client=embed_client,
        rag_client=rag_client,
    )

    # while the app is running...
    yield

    # when the app shuts down, close all connections
    logging.info("Shutting down, closing all clients...")
    await embed_client.close()
    await rag_manager.close()
    await redis.aclose()
    await database.close()
    logging.info("All clients closed.")


def create_app(with_lifespan: bool = True) -> FastAPI:
    """Build the FastAPI app.

    Args:
        with_lifespan (bool): Attach the start-up/shut-down wiring. Without it,
            the caller is responsible for populating app.state.
    """
    app = FastAPI(
        title="drive_rag_bridge",
        description=(
            "Ingestion pipeline and retrieval engine for cloud drive documents. "
            "Files are discovered via POST /drive/sync, fetched and vectorized by "
            "background workers, and served with citations via POST /retrieve."
        ),
        version=app_version,
        lifespan=lifespan if with_lifespan else None,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(drive_router)
    app.include_router(retrieve_router)
    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    logging.info(
        "Starting drive_rag_bridge API Server v%s from root dir: %s on port 8000...",
        app_version,
        os.environ.get("ROOT_DIR", "unknown"),
    )
    uvicorn.run(app, host="0.0.0.0", port=8000)
