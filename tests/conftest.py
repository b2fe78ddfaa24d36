"""Shared pytest fixtures for the kbrag test suite."""

from __future__ import annotations

import asyncio
import hashlib
import math
import struct
from pathlib import Path

import pytest
import pytest_asyncio

from kbrag.interfaces.model_provider import ChunkCallback, IModelProvider
from kbrag.models.artifact import Artifact, ArtifactKind, ProcessingStatus
from kbrag.models.identity import Organization
from kbrag.models.provider import DocumentMetadata
from kbrag.models.rag import TextChunk
from kbrag.providers.model.base import emit_chunk
from kbrag.providers.store.sqlite_artifact_store import SQLiteArtifactStore
from kbrag.providers.store.sqlite_job_store import SQLiteJobStore

EMBEDDING_DIM = 16


def hash_embedding(text: str, dim: int = EMBEDDING_DIM) -> list[float]:
    """Deterministic unit vector derived from the SHA-256 digest of *text*."""
    digest = hashlib.sha256(text.encode("utf-8")).digest()
    raw = [struct.unpack_from(">h", digest, (i * 2) % 31)[0] / 32768.0 for i in range(dim)]
    norm = math.sqrt(sum(v * v for v in raw)) or 1.0
    return [v / norm for v in raw]


# ---------------------------------------------------------------------------
# Mock providers
# ---------------------------------------------------------------------------


class MockModelProvider(IModelProvider):
    """In-memory model provider recording every call.

    ``vectors`` maps exact texts to fixed embeddings; anything else gets
    :func:`hash_embedding`.  ``stream_chunks`` are emitted by
    :meth:`stream_completion`, which stops early when the cancel event is set.
    """

    def __init__(
        self,
        *,
        vectors: dict[str, list[float]] | None = None,
        completion: str = "{}",
        stream_chunks: list[str] | None = None,
        metadata: DocumentMetadata | None = None,
        embedding_error: Exception | None = None,
        stream_error: Exception | None = None,
        embedding_model: str = "mock-embed",
    ) -> None:
        self.vectors = vectors or {}
        self.completion = completion
        self.stream_chunks = stream_chunks if stream_chunks is not None else ["Hello", " world"]
        self.metadata = metadata or DocumentMetadata(
            title="AI Title", summary="AI summary of the document.", tags=["policy"]
        )
        self.embedding_error = embedding_error
        self.stream_error = stream_error
        self._embedding_model = embedding_model

        self.embedded: list[str] = []
        self.completion_calls: list[dict[str, object]] = []
        self.stream_calls: list[dict[str, str]] = []
        self.metadata_calls: list[dict[str, object]] = []

    @property
    def provider_name(self) -> str:
        return "mock"

    @property
    def chat_model(self) -> str:
        return "mock-chat"

    @property
    def embedding_model(self) -> str:
        return self._embedding_model

    async def generate_embedding(self, text: str) -> list[float]:
        self.embedded.append(text)
        if self.embedding_error is not None:
            raise self.embedding_error
        return self.vectors.get(text) or hash_embedding(text)

    async def generate_completion(
        self,
        prompt: str,
        system_prompt: str | None = None,
        max_tokens: int = 2048,
        json_mode: bool = False,
    ) -> str:
        self.completion_calls.append({"prompt": prompt, "system_prompt": system_prompt, "json_mode": json_mode})
        return self.completion

    async def stream_completion(
        self,
        prompt: str,
        system_prompt: str,
        on_chunk: ChunkCallback,
        cancel_event: asyncio.Event | None = None,
    ) -> None:
        self.stream_calls.append({"prompt": prompt, "system_prompt": system_prompt})
        if self.stream_error is not None:
            raise self.stream_error
        for chunk in self.stream_chunks:
            if cancel_event is not None and cancel_event.is_set():
                break
            await emit_chunk(on_chunk, chunk)

    async def generate_document_metadata(
        self,
        file_name: str,
        text: str | None = None,
        raw_file: bytes | None = None,
    ) -> DocumentMetadata:
        self.metadata_calls.append({"file_name": file_name, "text": text, "raw_file": raw_file})
        return self.metadata


class StaticProviderFactory:
    """Stands in for ModelProviderFactory: the same provider for every organization."""

    def __init__(self, provider: IModelProvider | None = None, error: Exception | None = None) -> None:
        self.provider = provider
        self.error = error
        self.calls: list[str] = []

    async def for_organization(self, organization_id: str) -> IModelProvider:
        self.calls.append(organization_id)
        if self.error is not None:
            raise self.error
        return self.provider


# ---------------------------------------------------------------------------
# Record builders
# ---------------------------------------------------------------------------


def make_document(
    artifact_id: str = "doc-1",
    organization_id: str = "org-1",
    division_id: str | None = None,
    **overrides: object,
) -> Artifact:
    fields: dict[str, object] = {
        "id": artifact_id,
        "kind": ArtifactKind.DOCUMENT,
        "organization_id": organization_id,
        "division_id": division_id,
        "title": "Leave Policy",
        "file_name": "leave-policy.txt",
        "file_path": f"{artifact_id}.txt",
        "mime_type": "text/plain",
        "file_size": 100,
    }
    fields.update(overrides)
    return Artifact(**fields)


def make_article(
    artifact_id: str = "art-1",
    organization_id: str = "org-1",
    division_id: str | None = None,
    **overrides: object,
) -> Artifact:
    fields: dict[str, object] = {
        "id": artifact_id,
        "kind": ArtifactKind.ARTICLE,
        "organization_id": organization_id,
        "division_id": division_id,
        "title": "Onboarding Guide",
        "body": "<p>New staff receive a laptop and badge on their first working day.</p>"
        "<p>The onboarding buddy introduces them to the team and the tools.</p>",
        "author_id": "user-1",
    }
    fields.update(overrides)
    return Artifact(**fields)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def mock_provider() -> MockModelProvider:
    return MockModelProvider()


@pytest.fixture
def provider_factory(mock_provider: MockModelProvider) -> StaticProviderFactory:
    return StaticProviderFactory(mock_provider)


@pytest.fixture
def db_path(tmp_path: Path) -> Path:
    return tmp_path / "kb.db"


@pytest_asyncio.fixture
async def store(db_path: Path) -> SQLiteArtifactStore:
    """An initialized artifact store in a temp DB with one organization."""
    artifact_store = SQLiteArtifactStore(db_path)
    await artifact_store.initialize()
    await artifact_store.save_organization(Organization(id="org-1", name="Acme"))
    return artifact_store


@pytest_asyncio.fixture
async def job_store(db_path: Path) -> SQLiteJobStore:
    jobs = SQLiteJobStore(db_path)
    await jobs.initialize()
    return jobs


async def seed_processed(
    artifact_store: SQLiteArtifactStore,
    artifact: Artifact,
    chunks: list[tuple[str, list[float]]],
) -> Artifact:
    """Persist *artifact* as processed with the given (content, embedding) chunks."""
    processed = artifact.model_copy(
        update={"status": ProcessingStatus.COMPLETED, "is_processed": True, "embedding_version": 1}
    )
    await artifact_store.save_artifact(processed)
    for index, (content, embedding) in enumerate(chunks):
        await artifact_store.insert_chunk(
            processed.id,
            TextChunk(
                chunk_index=index,
                content=content,
                token_count=len(content) // 4,
                page_start=index + 1,
                page_end=index + 1,
            ),
            embedding,
            embedding_version=1,
        )
    return processed
