"""kbrag API layer: routes, schemas, SSE streaming and middleware."""

from kbrag.api.middleware import (
    ErrorHandlingMiddleware,
    RequestLoggingMiddleware,
    configure_cors,
)
from kbrag.api.routes import router
from kbrag.api.schemas import (
    ArtifactStatusResponse,
    ErrorResponse,
    HealthResponse,
    IngestResponse,
    RagQueryRequest,
    SearchRequest,
    SearchResponse,
    SingleScopeChatRequest,
)
from kbrag.api.streaming import event_stream, sse_frame

__all__ = [
    "ErrorHandlingMiddleware",
    "RequestLoggingMiddleware",
    "configure_cors",
    "router",
    "event_stream",
    "sse_frame",
    "ArtifactStatusResponse",
    "ErrorResponse",
    "HealthResponse",
    "IngestResponse",
    "RagQueryRequest",
    "SearchRequest",
    "SearchResponse",
    "SingleScopeChatRequest",
]
