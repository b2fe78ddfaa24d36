"""Pydantic request/response schemas for the knowledge-base API.

Request schemas end with "Request", response schemas with "Response".
Caller identity travels in request bodies; the trusted CRUD layer in front
of this service fills it in.
"""

from __future__ import annotations

from pydantic import BaseModel, Field, field_validator

from kbrag.models.artifact import ArtifactKind, ProcessingStatus, ProgressEntry
from kbrag.models.identity import CallerIdentity
from kbrag.models.provider import ChatMessage
from kbrag.models.rag import JobStatus, SearchResult


class IngestResponse(BaseModel):
    """Acknowledgement that an ingestion job was queued."""

    artifact_id: str
    job_id: str
    status: JobStatus


class ArtifactStatusResponse(BaseModel):
    """Polling view of an artifact's processing state."""

    artifact_id: str
    kind: ArtifactKind
    status: ProcessingStatus
    progress_log: list[ProgressEntry] = Field(default_factory=list)
    processed: bool
    error: str | None = None


class SingleScopeChatRequest(BaseModel):
    """Question about one document or article."""

    question: str = Field(..., min_length=1, max_length=4000)
    history: list[ChatMessage] = Field(default_factory=list)


class RagQueryRequest(BaseModel):
    """Question against everything the caller can see."""

    question: str = Field(..., min_length=1, max_length=4000)
    history: list[ChatMessage] = Field(default_factory=list)
    caller: CallerIdentity


class SearchRequest(BaseModel):
    """Hybrid search query."""

    query: str = Field(..., min_length=1, max_length=500)
    caller: CallerIdentity

    @field_validator("query")
    @classmethod
    def _strip_query(cls, value: str) -> str:
        stripped = value.strip()
        if not stripped:
            raise ValueError("query must not be blank")
        return stripped


class SearchResponse(BaseModel):
    results: list[SearchResult]
    total: int


class HealthResponse(BaseModel):
    """Application health check response."""

    status: str
    version: str
    workers_running: bool


class ErrorResponse(BaseModel):
    """Standard error response body."""

    error: str
    detail: str | None = None
