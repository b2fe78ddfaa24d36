"""Abstract base class for artifact, chunk and graph persistence.

The RAG core reads artifact records owned by the CRUD application and writes
processing state, chunks, embeddings, knowledge-graph rows and usage
entries.  The concrete SQLite backend lives in
``kbrag/providers/store/sqlite_artifact_store.py``.

Every retrieval method takes an :class:`~kbrag.models.identity.AccessScope`
and applies the one shared scoping predicate.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from kbrag.models.artifact import Artifact, ArtifactKind, ProcessingStatus, ProgressEntry
from kbrag.models.identity import AccessScope, Organization
from kbrag.models.provider import DocumentMetadata
from kbrag.models.rag import (
    ChunkCandidate,
    GraphEntity,
    GraphRelationship,
    SearchResult,
    TextChunk,
    UsageEntry,
)


class IArtifactStore(ABC):
    """Contract for the persistence backend of the RAG core."""

    @abstractmethod
    async def initialize(self) -> None:
        """Create tables and indices if they do not exist."""

    # ------------------------------------------------------------------
    # Collaborator records (written by the CRUD layer, read by the core)
    # ------------------------------------------------------------------

    @abstractmethod
    async def save_organization(self, organization: Organization) -> None:
        """Insert or replace an organization record."""

    @abstractmethod
    async def get_organization(self, organization_id: str) -> Organization | None:
        """Return the organization, or ``None`` if unknown."""

    @abstractmethod
    async def save_division(self, division_id: str, organization_id: str, name: str) -> None:
        """Insert or replace a division record."""

    @abstractmethod
    async def save_artifact(self, artifact: Artifact) -> None:
        """Insert or replace an artifact record."""

    @abstractmethod
    async def get_artifact(self, artifact_id: str) -> Artifact | None:
        """Return the artifact with its division name and progress log."""

    # ------------------------------------------------------------------
    # Processing state
    # ------------------------------------------------------------------

    @abstractmethod
    async def append_progress(
        self,
        artifact_id: str,
        entry: ProgressEntry,
        status: ProcessingStatus = ProcessingStatus.PROCESSING,
    ) -> None:
        """Atomically append *entry* to the progress log and set *status*.

        Must be a single database-level append so concurrent writers never
        lose entries.
        """

    @abstractmethod
    async def set_embedding_model(self, artifact_id: str, model: str) -> None:
        """Record the embedding model used for the artifact's chunks."""

    @abstractmethod
    async def update_document_metadata(self, artifact_id: str, metadata: DocumentMetadata) -> None:
        """Store AI title, summary and tags on a document."""

    @abstractmethod
    async def mark_completed(self, artifact_id: str, entry: ProgressEntry) -> None:
        """Set completed/processed, clear the error, bump embedding version, append *entry*."""

    @abstractmethod
    async def mark_failed(self, artifact_id: str, error: str, entry: ProgressEntry) -> None:
        """Set failed/unprocessed, record *error* verbatim, append *entry*."""

    # ------------------------------------------------------------------
    # Chunks
    # ------------------------------------------------------------------

    @abstractmethod
    async def delete_chunks(self, artifact_id: str) -> int:
        """Remove every chunk of the artifact; return how many were removed."""

    @abstractmethod
    async def insert_chunk(
        self,
        artifact_id: str,
        chunk: TextChunk,
        embedding: list[float],
        embedding_version: int,
    ) -> str:
        """Persist one chunk with its vector; return the new chunk id."""

    @abstractmethod
    async def count_chunks(self, artifact_id: str) -> int:
        """Return how many chunks the artifact currently has."""

    @abstractmethod
    async def fetch_chunk_candidates(
        self,
        scope: AccessScope | None,
        kinds: tuple[ArtifactKind, ...],
        artifact_id: str | None = None,
    ) -> list[ChunkCandidate]:
        """Return embedded chunks visible under *scope*.

        Parameters
        ----------
        scope:
            Caller visibility.  ``None`` skips scoping and is only valid
            together with *artifact_id* (single-scope chat, where the
            artifact was already resolved).
        kinds:
            Artifact kinds to include.
        artifact_id:
            Restrict to one artifact.
        """

    @abstractmethod
    async def lexical_search(
        self,
        scope: AccessScope,
        query: str,
        limit: int = 10,
    ) -> list[SearchResult]:
        """Case-insensitive substring match on title, summary, file name and chunk text."""

    # ------------------------------------------------------------------
    # Knowledge graph
    # ------------------------------------------------------------------

    @abstractmethod
    async def delete_graph(self, artifact_id: str) -> None:
        """Remove the artifact's entities and relationships."""

    @abstractmethod
    async def insert_entity(self, artifact_id: str, entity: GraphEntity) -> str:
        """Persist an entity; return its id."""

    @abstractmethod
    async def insert_relationship(
        self,
        artifact_id: str,
        source_entity_id: str,
        target_entity_id: str,
        relationship: str,
        description: str | None = None,
    ) -> str:
        """Persist a relationship between two persisted entities."""

    @abstractmethod
    async def get_graph(
        self,
        artifact_id: str,
        entity_limit: int = 15,
        relationship_limit: int = 30,
    ) -> tuple[list[GraphEntity], list[GraphRelationship]]:
        """Return up to *entity_limit* entities and *relationship_limit* relationships."""

    # ------------------------------------------------------------------
    # Usage
    # ------------------------------------------------------------------

    @abstractmethod
    async def record_usage(self, entry: UsageEntry) -> None:
        """Append a usage/audit entry."""
