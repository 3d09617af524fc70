"""FastAPI application entry point for notes_rag_bridge."""

import os
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from shared.logging.logging_setup import setup_logging
from shared.helper.HelperConfig import HelperConfig
from services.rag.RAGService import RAGService
from server.routers.DocumentEventRouter import router as document_event_router
from server.routers.EventRouter import router as event_router
from server.routers.QueryRouter import router as query_router
from server.routers.RAGRouter import router as rag_router

logging = setup_logging()
app_version = os.getenv("APP_VERSION", "unknown")


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    # when the app starts
    app.state.logging = logging
    app.state.helper_config = HelperConfig(logger=logging)

    rag_service = RAGService(helper_config=app.state.helper_config)
    logging.info("Booting RAG service...")
    await rag_service.boot()
    app.state.rag_service = rag_service

    await check_connections(rag_service)

    # while the app is running...
    yield

    # when the app shuts down, stop background jobs and close all clients
    logging.info("Shutting down, closing RAG service...")
    await rag_service.close()


app = FastAPI(
    title="notes_rag_bridge",
    description=(
        "Local semantic retrieval engine for a note-taking application. "
        "Notes and their external blocks (bookmarks, files, folders) are chunked, "
        "embedded and indexed in a local vector index. "
        "Save and delete events arrive via POST /documents/*, search via POST /query, "
        "index management via /rag and live updates via GET /events."
    ),
    version=app_version,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(document_event_router)
app.include_router(query_router)
app.include_router(rag_router)
app.include_router(event_router)


async def check_connections(rag_service: RAGService) -> None:
    """Check connectivity to all backends on startup.

    Failures are non-fatal: the server stays up so the settings can be fixed
    from the UI, and semantic operations report the problem in their `error`.
    """
    if not await rag_service.rag_client.do_healthcheck():
        logging.warning("Vector index '%s' is not usable.", rag_service.rag_client.get_engine_name())

    if not await rag_service.document_source.do_healthcheck():
        logging.warning("Document source '%s' is not reachable.", rag_service.document_source.get_engine_name())

    status = await rag_service.do_get_status()
    if not status.enabled:
        logging.warning("Semantic search is disabled: %s", status.error or "no embedding provider configured")
        return

    result = await rag_service.do_test_connection()
    if not result.success:
        logging.warning(
            "Embedding provider '%s' is not reachable: %s. Indexing will fail until it is.",
            status.embed_model,
            result.error,
        )
    else:
        logging.info("Embedding provider ready (%s, dimension %d).", status.embed_model, result.dimension, color="green")


if __name__ == "__main__":
    import uvicorn

    logging.info(
        "Starting notes_rag_bridge API Server v%s from root dir: %s on port %s...",
        app_version,
        os.environ.get("ROOT_DIR", "unknown"),
        os.environ.get("APP_PORT", "8000"),
    )
    uvicorn.run(app, host=os.environ.get("APP_HOST", "127.0.0.1"), port=int(os.environ.get("APP_PORT", "8000")))
