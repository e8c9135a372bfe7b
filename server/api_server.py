"""FastAPI application entry point for the document RAG assistant."""

import os
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from shared.logging.logging_setup import setup_logging
from shared.helper.HelperConfig import HelperConfig
from shared.clients.ClientInterface import ClientInterface
from shared.clients.embed.EmbedClientManager import EmbedClientManager
from shared.clients.llm.LLMClientManager import LLMClientManager
from shared.clients.rag.RAGClientManager import RAGClientManager
from shared.clients.storage.StorageClientManager import StorageClientManager
from shared.models.errors import (
    CompletionError,
    DocumentNotFound,
    DuplicateContentError,
    EmbeddingError,
    ObjectNotFound,
    PersistenceError,
    RAGAssistantError,
    StorageUnavailable,
    ValidationError,
    VectorIndexError,
)
from shared.store.MetadataStore import MetadataStore
from services.ingestion.IngestionService import IngestionService
from services.query.QueryService import QueryService
from services.watcher.WatcherService import WatcherService
from server.models.responses import HealthResponse
from server.routers.DocumentRouter import router as document_router
from server.routers.KnowledgeBaseRouter import router as knowledge_base_router
from server.routers.QueryRouter import router as query_router

logging = setup_logging()
app_version = os.getenv("APP_VERSION", "unknown")

# most specific first: the first matching class wins
ERROR_STATUS_CODES: list[tuple[type[RAGAssistantError], int]] = [
    (ValidationError, 400),
    (DocumentNotFound, 404),
    (ObjectNotFound, 404),
    (DuplicateContentError, 409),
    (EmbeddingError, 502),
    (CompletionError, 502),
    (VectorIndexError, 502),
    (StorageUnavailable, 503),
    (PersistenceError, 500),
]


def status_code_for(exc: RAGAssistantError) -> int:
    for error_class, status_code in ERROR_STATUS_CODES:
        if isinstance(exc, error_class):
            return status_code
    return 500


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    # when the app starts
    app.state.logging = logging
    app.state.helper_config = HelperConfig(logger=logging)
    config = app.state.helper_config

    embed_client = EmbedClientManager(helper_config=config).get_client()
    rag_client = RAGClientManager(helper_config=config).get_client()
    llm_client = LLMClientManager(helper_config=config).get_client()
    storage = StorageClientManager(helper_config=config).get_client()
    metadata_store = MetadataStore(helper_config=config)
    http_clients: list[ClientInterface] = [embed_client, rag_client, llm_client]

    logging.info("Booting all clients...")
    for client in http_clients:
        await client.boot()
    await storage.boot()
    await metadata_store.boot()
    logging.info("All clients booted successfully.")

    await check_connections(http_clients)

    app.state.ingestion_service = IngestionService(
        helper_config=config,
        embed_client=embed_client,
        rag_client=rag_client,
        storage=storage,
        metadata_store=metadata_store,
    )
    app.state.query_service = QueryService(
        helper_config=config,
        embed_client=embed_client,
        rag_client=rag_client,
        llm_client=llm_client,
        metadata_store=metadata_store,
    )
    app.state.watcher = None
    if config.get_bool_val("WATCHER_ENABLED", default=False):
        app.state.watcher = WatcherService(helper_config=config, ingestion_service=app.state.ingestion_service)
        await app.state.watcher.do_start()

    # while the app is running...
    yield

    # when the app shuts down, stop the watcher and close all client connections
    logging.info("Shutting down, closing all clients...")
    if app.state.watcher is not None:
        await app.state.watcher.do_stop()
    for client in http_clients:
        await client.close()
    await storage.close()
    await metadata_store.close()
    logging.info("All clients closed.")


app = FastAPI(
    title="rag_assistant",
    description=(
        "Personal document assistant. Upload documents via POST /documents and ask "
        "questions answered only from their content via POST /query. A local "
        "knowledge-base folder can be watched and indexed automatically."
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

app.include_router(document_router)
app.include_router(query_router)
app.include_router(knowledge_base_router)


@app.exception_handler(RAGAssistantError)
async def handle_assistant_error(request: Request, exc: RAGAssistantError) -> JSONResponse:
    status_code = status_code_for(exc)
    if status_code >= 500:
        logging.error("%s %s failed: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=status_code, content={"detail": str(exc)})


@app.get("/healthz", tags=["health"])
async def healthz(request: Request) -> HealthResponse:
    watcher = getattr(request.app.state, "watcher", None)
    return HealthResponse(status="ok", version=app_version, watcher=bool(watcher and watcher.is_running()))


async def check_connections(clients: list[ClientInterface]) -> None:
    """Check connectivity to all HTTP backends on startup.

    Raises:
        Exception: If a backend is not reachable; nothing can be served without it.
    """
    for client in clients:
        result = await client.do_healthcheck()
        if not result.is_success:
            raise Exception(
                f"{client.get_client_type().upper()} client '{client.get_engine_name()}' is not reachable "
                f"(status {result.status_code})."
            )


if __name__ == "__main__":
    import uvicorn

    logging.info(
        "Starting rag_assistant API Server v%s from root dir: %s on port 8000...",
        app_version,
        os.environ.get("ROOT_DIR", "unknown"),
    )
    uvicorn.run(app, host="0.0.0.0", port=8000)
