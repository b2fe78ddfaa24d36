"""FastAPI routes for the knowledge-base RAG core.

# ─── API ROUTE MAP ────────────────────────────────────────────────────
#
# Endpoint                              Method  Description
# ─────────────────────────────────────────────────────────────────────
# /api/v1/artifacts/{id}/ingest         POST    Queue (re-)ingestion → 202
# /api/v1/artifacts/{id}/status         GET     Poll processing state + log
# /api/v1/artifacts/{id}/chat           POST    SSE Q&A about one artifact
# /api/v1/rag/query                     POST    SSE Q&A across the caller's scope
# /api/v1/search                        POST    Hybrid semantic + lexical search
# /api/v1/health                        GET     Health check
#
# Services are resolved from ``app.state`` (populated by main.py's
# build_components) through ``Annotated[..., Depends(helper)]`` parameters.
# ──────────────────────────────────────────────────────────────────────
"""

from __future__ import annotations

import asyncio
from typing import Annotated

import structlog
from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import StreamingResponse

import kbrag
from kbrag.api.schemas import (
    ArtifactStatusResponse,
    HealthResponse,
    IngestResponse,
    RagQueryRequest,
    SearchRequest,
    SearchResponse,
    SingleScopeChatRequest,
)
from kbrag.api.streaming import FinalFrames, event_stream, sse_response
from kbrag.interfaces.artifact_store import IArtifactStore
from kbrag.interfaces.model_provider import ChunkCallback
from kbrag.models.artifact import ArtifactStatus
from kbrag.services.ingestion.job_queue import IngestionJobQueue
from kbrag.services.rag_service import RagService
from kbrag.services.retrieval.hybrid_search import HybridSearchService
from kbrag.services.single_scope_chat import SingleScopeChatService, friendly_error_message
from kbrag.utils.errors import ArtifactNotFoundError
from kbrag.utils.logging import get_logger
from kbrag.utils.rate_limiter import RateLimiter

_logger: structlog.BoundLogger = get_logger(__name__)

router = APIRouter(prefix="/api/v1")


# ---------------------------------------------------------------------------
# Dependency injection helpers
# ---------------------------------------------------------------------------


def _get_store(request: Request) -> IArtifactStore:
    return request.app.state.store


def _get_job_queue(request: Request) -> IngestionJobQueue:
    return request.app.state.job_queue


def _get_rag_service(request: Request) -> RagService:
    return request.app.state.rag_service


def _get_single_scope_chat(request: Request) -> SingleScopeChatService:
    return request.app.state.single_scope_chat


def _get_hybrid_search(request: Request) -> HybridSearchService:
    return request.app.state.hybrid_search


def _get_rate_limiter(request: Request) -> RateLimiter:
    return request.app.state.rate_limiter


StoreDep = Annotated[IArtifactStore, Depends(_get_store)]
JobQueueDep = Annotated[IngestionJobQueue, Depends(_get_job_queue)]
RagServiceDep = Annotated[RagService, Depends(_get_rag_service)]
SingleScopeChatDep = Annotated[SingleScopeChatService, Depends(_get_single_scope_chat)]
HybridSearchDep = Annotated[HybridSearchService, Depends(_get_hybrid_search)]
RateLimiterDep = Annotated[RateLimiter, Depends(_get_rate_limiter)]


def _enforce_rate_limit(limiter: RateLimiter, organization_id: str) -> None:
    if not limiter.check(organization_id).allowed:
        raise HTTPException(
            status_code=429,
            detail="Too many AI requests for this organization. Please wait a minute and try again.",
        )


# ---------------------------------------------------------------------------
# Ingestion
# ---------------------------------------------------------------------------


@router.post("/artifacts/{artifact_id}/ingest", response_model=IngestResponse, status_code=202)
async def trigger_ingestion(artifact_id: str, store: StoreDep, job_queue: JobQueueDep) -> IngestResponse:
    """Queue an ingestion run; repeated triggers coalesce onto the pending job."""
    if await store.get_artifact(artifact_id) is None:
        raise HTTPException(status_code=404, detail=f"Artifact {artifact_id} not found")

    job = await job_queue.trigger(artifact_id)
    _logger.info("ingestion_triggered", artifact_id=artifact_id, job_id=job.id)
    return IngestResponse(artifact_id=artifact_id, job_id=job.id, status=job.status)


@router.get("/artifacts/{artifact_id}/status", response_model=ArtifactStatusResponse)
async def get_artifact_status(artifact_id: str, store: StoreDep) -> ArtifactStatusResponse:
    artifact = await store.get_artifact(artifact_id)
    if artifact is None:
        raise HTTPException(status_code=404, detail=f"Artifact {artifact_id} not found")
    return ArtifactStatusResponse(**ArtifactStatus.from_artifact(artifact).model_dump())


# ---------------------------------------------------------------------------
# Streaming Q&A
# ---------------------------------------------------------------------------


@router.post("/artifacts/{artifact_id}/chat")
async def chat_single_scope(
    artifact_id: str,
    body: SingleScopeChatRequest,
    request: Request,
    chat_service: SingleScopeChatDep,
    limiter: RateLimiterDep,
) -> StreamingResponse:
    """Stream an answer grounded in one document or article.

    SSE events: ``chunk`` {text} per token, then ``done``; or ``error`` {message}.
    """
    try:
        artifact = await chat_service.get_artifact(artifact_id)
    except ArtifactNotFoundError as exc:
        raise HTTPException(status_code=404, detail=exc.message) from exc
    _enforce_rate_limit(limiter, artifact.organization_id)

    async def run(emit: ChunkCallback, cancel_event: asyncio.Event) -> FinalFrames:
        await chat_service.chat(artifact_id, body.question, body.history, emit, cancel_event)
        return []

    return sse_response(event_stream(request, run, error_message=friendly_error_message))


@router.post("/rag/query")
async def rag_query(
    body: RagQueryRequest,
    request: Request,
    rag_service: RagServiceDep,
    limiter: RateLimiterDep,
) -> StreamingResponse:
    """Stream an answer from everything the caller may see.

    SSE events: ``chunk`` {text} per token, ``citations`` {citations}, then
    ``done``; or ``error`` {message}.
    """
    _enforce_rate_limit(limiter, body.caller.organization_id)

    async def run(emit: ChunkCallback, cancel_event: asyncio.Event) -> FinalFrames:
        citations = await rag_service.query(body.question, body.history, body.caller, emit, cancel_event)
        return [("citations", {"citations": [c.model_dump(mode="json") for c in citations]})]

    return sse_response(event_stream(request, run, error_message=friendly_error_message))


# ---------------------------------------------------------------------------
# Search
# ---------------------------------------------------------------------------


@router.post("/search", response_model=SearchResponse)
async def hybrid_search(
    body: SearchRequest,
    rag_service: RagServiceDep,
    search_service: HybridSearchDep,
    limiter: RateLimiterDep,
) -> SearchResponse:
    """Semantic and lexical search merged into one ranked list per artifact."""
    _enforce_rate_limit(limiter, body.caller.organization_id)
    scope = await rag_service.resolve_scope(body.caller)
    results = await search_service.search(body.query, scope)
    return SearchResponse(results=results, total=len(results))


# ---------------------------------------------------------------------------
# Health
# ---------------------------------------------------------------------------


@router.get("/health", response_model=HealthResponse)
async def health_check(job_queue: JobQueueDep) -> HealthResponse:
    return HealthResponse(status="healthy", version=kbrag.__version__, workers_running=job_queue.running)
