"""kbrag FastAPI application entry point.

Wires the store, job queue, model-provider factory and services together
via dependency injection, configures structured logging, and starts the
background ingestion workers for the lifetime of the app.

``build_components`` is also used by the CLI, so both entry points share
one wiring.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any

import structlog
import uvicorn
from fastapi import FastAPI

import kbrag
from kbrag.api.middleware import (
    ErrorHandlingMiddleware,
    RequestLoggingMiddleware,
    configure_cors,
)
from kbrag.api.routes import router as api_router
from kbrag.config.settings import Settings
from kbrag.providers.model.factory import ModelProviderFactory
from kbrag.providers.storage.local_file_storage import LocalFileStorage
from kbrag.providers.store.sqlite_artifact_store import SQLiteArtifactStore
from kbrag.providers.store.sqlite_job_store import SQLiteJobStore
from kbrag.services.ingestion.chunker import Chunker
from kbrag.services.ingestion.extractor import TextExtractor
from kbrag.services.ingestion.graph_extractor import GraphExtractor
from kbrag.services.ingestion.ingestion_service import IngestionService
from kbrag.services.ingestion.job_queue import IngestionJobQueue
from kbrag.services.rag_service import RagService
from kbrag.services.retrieval.hybrid_search import HybridSearchService
from kbrag.services.retrieval.vector_retrieval import VectorRetriever
from kbrag.services.single_scope_chat import SingleScopeChatService
from kbrag.utils.logging import configure_logging, get_logger
from kbrag.utils.rate_limiter import RateLimiter

# ---------------------------------------------------------------------------
# Module-level settings & logging
# ---------------------------------------------------------------------------

settings = Settings()

configure_logging(
    log_level=settings.log_level,
    json_output=(settings.app_env == "production"),
)
_logger: structlog.BoundLogger = get_logger(__name__)


# ---------------------------------------------------------------------------
# Component wiring
# ---------------------------------------------------------------------------


def build_components(app_settings: Settings) -> dict[str, Any]:
    """Construct every store and service instance for the application.

    Returns a flat dict of named components to be stored on ``app.state``.
    """
    # -- Persistence --
    store = SQLiteArtifactStore(app_settings.database_path)
    job_store = SQLiteJobStore(app_settings.database_path)
    file_storage = LocalFileStorage(app_settings.upload_dir)

    # -- Providers (resolved per call, per organization) --
    provider_factory = ModelProviderFactory(app_settings, store)

    # -- Ingestion --
    ingestion_service = IngestionService(
        store=store,
        provider_factory=provider_factory,
        file_storage=file_storage,
        extractor=TextExtractor(),
        chunker=Chunker(
            max_tokens=app_settings.chunk_max_tokens,
            overlap_tokens=app_settings.chunk_overlap_tokens,
        ),
        graph_extractor=GraphExtractor(store, max_chars=app_settings.graph_extraction_max_chars),
        embedding_concurrency=app_settings.embedding_concurrency,
        metadata_max_chars=app_settings.metadata_max_chars,
    )
    job_queue = IngestionJobQueue(
        job_store=job_store,
        ingestion_service=ingestion_service,
        worker_count=app_settings.ingestion_worker_count,
        max_attempts=app_settings.ingestion_job_max_attempts,
        poll_interval=app_settings.ingestion_poll_interval_seconds,
    )

    # -- Retrieval & generation --
    retriever = VectorRetriever(store)
    rag_service = RagService(
        store=store,
        provider_factory=provider_factory,
        retriever=retriever,
        top_k=app_settings.rag_top_k,
        min_similarity=app_settings.rag_min_similarity,
        history_messages=app_settings.rag_history_messages,
    )
    single_scope_chat = SingleScopeChatService(
        store=store,
        provider_factory=provider_factory,
        retriever=retriever,
        document_top_k=app_settings.single_scope_document_top_k,
        article_top_k=app_settings.single_scope_article_top_k,
        history_messages=app_settings.single_scope_history_messages,
    )
    hybrid_search = HybridSearchService(
        store=store,
        provider_factory=provider_factory,
        retriever=retriever,
        semantic_limit=app_settings.semantic_search_limit,
        semantic_min_similarity=app_settings.semantic_search_min_similarity,
        fulltext_limit=app_settings.fulltext_search_limit,
        page_size=app_settings.hybrid_search_page_size,
    )

    return {
        "store": store,
        "job_store": job_store,
        "file_storage": file_storage,
        "provider_factory": provider_factory,
        "ingestion_service": ingestion_service,
        "job_queue": job_queue,
        "retriever": retriever,
        "rag_service": rag_service,
        "single_scope_chat": single_scope_chat,
        "hybrid_search": hybrid_search,
        "rate_limiter": RateLimiter(max_requests=app_settings.ai_requests_per_minute),
    }


async def initialize_components(components: dict[str, Any]) -> None:
    """Create database tables (idempotent)."""
    await components["store"].initialize()
    await components["job_store"].initialize()


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def _lifespan(application: FastAPI):  # noqa: ANN201
    """Initialise stores and start ingestion workers; stop them on shutdown."""
    components = build_components(settings)

    for key, value in components.items():
        setattr(application.state, key, value)

    await initialize_components(components)
    job_queue: IngestionJobQueue = components["job_queue"]
    await job_queue.start()

    _logger.info(
        "app_startup",
        version=kbrag.__version__,
        environment=settings.app_env,
        database=settings.database_path,
        workers=settings.ingestion_worker_count,
    )

    yield

    await job_queue.stop()
    _logger.info("app_shutdown")


# ---------------------------------------------------------------------------
# FastAPI application factory
# ---------------------------------------------------------------------------


def create_app() -> FastAPI:
    """Build and configure the FastAPI application."""
    application = FastAPI(
        title="kbrag API",
        version=kbrag.__version__,
        description=(
            "Multi-tenant knowledge-base core: ingest documents and articles, "
            "answer questions over them with streamed, cited responses, and "
            "search them with hybrid semantic and lexical ranking."
        ),
        lifespan=_lifespan,
    )

    # -- Middleware (order matters: last added = first executed) --
    application.add_middleware(ErrorHandlingMiddleware)
    application.add_middleware(RequestLoggingMiddleware)
    configure_cors(application, allowed_origins=settings.get_cors_origins())

    # -- API routes --
    application.include_router(api_router)

    return application


app = create_app()

# ---------------------------------------------------------------------------
# CLI entry point
# ---------------------------------------------------------------------------

if __name__ == "__main__":
    uvicorn.run(
        "kbrag.main:app",
        host=settings.app_host,
        port=settings.app_port,
        reload=(settings.app_env == "development"),
    )
