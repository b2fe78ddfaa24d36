"""RAG pipeline data models.

Defines Pydantic v2 models for extracted pages, chunks, retrieval results,
citations, hybrid-search results, knowledge-graph records, usage entries and
ingestion jobs.  All models are frozen.

RAG overview:

1. INGESTION: artifacts are extracted to page text and split into chunks.
2. EMBEDDING: each chunk becomes a vector capturing its meaning.
3. STORAGE: chunks + vectors are persisted next to their artifact.
4. RETRIEVAL: a question is embedded and compared against chunks the
   caller is allowed to see.
5. GENERATION: the best chunks are placed in the prompt as numbered
   sources and the answer streams back with citations.
"""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

from kbrag.models.artifact import ArtifactKind, ProcessingStatus


# ---------------------------------------------------------------------------
# Extraction / chunking
# ---------------------------------------------------------------------------
class PageText(BaseModel):
    """Text of one (possibly approximate) page."""

    model_config = ConfigDict(frozen=True)

    page_number: int = Field(ge=1)
    text: str


class ExtractedText(BaseModel):
    """Output of the text extractor."""

    model_config = ConfigDict(frozen=True)

    full_text: str
    pages: list[PageText] = Field(default_factory=list)
    page_count: int = Field(default=1, ge=0)


class TextChunk(BaseModel):
    """A contiguous, token-budgeted slice of an artifact's text."""

    model_config = ConfigDict(frozen=True)

    chunk_index: int = Field(ge=0, description="Ordinal, contiguous from 0.")
    content: str
    token_count: int = Field(ge=0, description="Estimate: ceil(len / 3.5).")
    page_start: int = Field(default=1, ge=1)
    page_end: int = Field(default=1, ge=1)


# ---------------------------------------------------------------------------
# Retrieval
# ---------------------------------------------------------------------------
class ChunkCandidate(BaseModel):
    """A persisted chunk with its vector, joined with artifact display fields.

    Produced by the store for vector ranking; never leaves the retrieval layer.
    """

    model_config = ConfigDict(frozen=True)

    chunk_id: str
    artifact_id: str
    artifact_kind: ArtifactKind
    title: str
    content: str
    chunk_index: int
    page_start: int
    page_end: int
    division_name: str | None = None
    embedding: list[float]


class RetrievedChunk(BaseModel):
    """A chunk returned from vector retrieval with its cosine similarity."""

    model_config = ConfigDict(frozen=True)

    chunk_id: str
    artifact_id: str
    artifact_kind: ArtifactKind
    title: str
    content: str
    chunk_index: int = 0
    page_start: int = 1
    page_end: int = 1
    division_name: str | None = None
    similarity: float = Field(description="1 - cosine distance.")

    @property
    def locator(self) -> str:
        """Page range for documents, section index for articles."""
        if self.artifact_kind == ArtifactKind.ARTICLE:
            return f"section {self.chunk_index + 1}"
        if self.page_end != self.page_start:
            return f"p. {self.page_start}-{self.page_end}"
        return f"p. {self.page_start}"


class Citation(BaseModel):
    """A pointer from an answer back to a source chunk.  Never persisted."""

    model_config = ConfigDict(frozen=True)

    artifact_id: str
    artifact_kind: ArtifactKind
    title: str
    page_start: int
    page_end: int
    chunk_index: int
    division_name: str | None = None
    excerpt: str = Field(description="First 150 characters of the chunk.")

    @classmethod
    def from_chunk(cls, chunk: RetrievedChunk) -> Citation:
        return cls(
            artifact_id=chunk.artifact_id,
            artifact_kind=chunk.artifact_kind,
            title=chunk.title,
            page_start=chunk.page_start,
            page_end=chunk.page_end,
            chunk_index=chunk.chunk_index,
            division_name=chunk.division_name,
            excerpt=chunk.content[:150],
        )


class SearchSource(str, Enum):  # noqa: UP042
    """Which signal produced a hybrid search hit."""

    SEMANTIC = "semantic"
    FULLTEXT = "fulltext"
    BOTH = "both"


class SearchResult(BaseModel):
    """One ranked hybrid-search hit (one per artifact)."""

    model_config = ConfigDict(frozen=True)

    id: str
    kind: ArtifactKind
    title: str
    excerpt: str = ""
    score: float = Field(ge=0.0, le=1.0)
    source: SearchSource
    page_start: int | None = None
    page_end: int | None = None
    division_name: str | None = None


# ---------------------------------------------------------------------------
# Knowledge graph
# ---------------------------------------------------------------------------
class GraphEntity(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str = ""
    name: str
    type: str = "CONCEPT"
    description: str | None = None


class GraphRelationship(BaseModel):
    model_config = ConfigDict(frozen=True)

    source_name: str
    target_name: str
    relationship: str = "RELATED_TO"
    description: str | None = None


# ---------------------------------------------------------------------------
# Usage / jobs / outcomes
# ---------------------------------------------------------------------------
class UsageAction(str, Enum):  # noqa: UP042
    AUTO_TAG = "AUTO_TAG"
    CHAT_QUERY = "CHAT_QUERY"


class UsageEntry(BaseModel):
    """One best-effort usage/audit record."""

    model_config = ConfigDict(frozen=True)

    organization_id: str
    user_id: str | None = None
    action: UsageAction
    tokens_used: int = Field(ge=0)
    model: str


class JobStatus(str, Enum):  # noqa: UP042
    PENDING = "pending"
    RUNNING = "running"
    DONE = "done"
    FAILED = "failed"


class IngestionJob(BaseModel):
    """A durable request to (re-)ingest one artifact."""

    model_config = ConfigDict(frozen=True)

    id: str
    artifact_id: str
    status: JobStatus = JobStatus.PENDING
    attempts: int = 0
    last_error: str | None = None


class IngestionOutcome(BaseModel):
    """Summary returned by one pipeline run."""

    model_config = ConfigDict(frozen=True)

    artifact_id: str
    status: ProcessingStatus
    chunk_count: int = 0
    entity_count: int = 0
    relationship_count: int = 0
    embedding_model: str | None = None
    error: str | None = None
