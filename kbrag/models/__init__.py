"""Pydantic data models for the kbrag RAG core."""

from kbrag.models.artifact import (
    Artifact,
    ArtifactKind,
    ArtifactStatus,
    ProcessingStatus,
    ProgressEntry,
)
from kbrag.models.identity import (
    AccessScope,
    CallerIdentity,
    Organization,
    Role,
    is_division_scoped,
)
from kbrag.models.provider import ChatMessage, DocumentMetadata, ProviderConfig, ProviderKind
from kbrag.models.rag import (
    ChunkCandidate,
    Citation,
    ExtractedText,
    GraphEntity,
    GraphRelationship,
    IngestionJob,
    IngestionOutcome,
    JobStatus,
    PageText,
    RetrievedChunk,
    SearchResult,
    SearchSource,
    TextChunk,
    UsageAction,
    UsageEntry,
)

__all__ = [
    "AccessScope",
    "Artifact",
    "ArtifactKind",
    "ArtifactStatus",
    "CallerIdentity",
    "ChatMessage",
    "ChunkCandidate",
    "Citation",
    "DocumentMetadata",
    "ExtractedText",
    "GraphEntity",
    "GraphRelationship",
    "IngestionJob",
    "IngestionOutcome",
    "JobStatus",
    "Organization",
    "PageText",
    "ProcessingStatus",
    "ProgressEntry",
    "ProviderConfig",
    "ProviderKind",
    "RetrievedChunk",
    "Role",
    "SearchResult",
    "SearchSource",
    "TextChunk",
    "UsageAction",
    "UsageEntry",
    "is_division_scoped",
]
