"""Unit tests for EmbeddingFallbackProvider."""

from __future__ import annotations

import pytest

from kbrag.providers.model.embedding_fallback import EmbeddingFallbackProvider
from kbrag.utils.errors import EmbeddingUnsupportedError, LLMError
from tests.conftest import MockModelProvider


class _ManagedFactory:
    def __init__(self, provider: MockModelProvider) -> None:
        self.provider = provider
        self.builds = 0

    def __call__(self) -> MockModelProvider:
        self.builds += 1
        return self.provider


@pytest.mark.asyncio
async def test_primary_embeddings_are_used_when_supported() -> None:
    primary = MockModelProvider(vectors={"q": [1.0, 0.0]})
    managed = _ManagedFactory(MockModelProvider(embedding_model="managed-embed"))
    provider = EmbeddingFallbackProvider(primary, managed)

    assert await provider.generate_embedding("q") == [1.0, 0.0]
    assert managed.builds == 0
    assert provider.embedding_model == "mock-embed"


@pytest.mark.asyncio
async def test_unsupported_switches_to_managed_for_good() -> None:
    primary = MockModelProvider(embedding_error=EmbeddingUnsupportedError())
    managed_backend = MockModelProvider(embedding_model="managed-embed", vectors={"a": [0.5, 0.5]})
    managed = _ManagedFactory(managed_backend)
    provider = EmbeddingFallbackProvider(primary, managed)

    assert await provider.generate_embedding("a") == [0.5, 0.5]
    await provider.generate_embedding("b")

    assert managed.builds == 1
    assert primary.embedded == ["a"]
    assert managed_backend.embedded == ["a", "b"]
    assert provider.embedding_model == "managed-embed"


@pytest.mark.asyncio
async def test_other_embedding_errors_propagate() -> None:
    primary = MockModelProvider(embedding_error=LLMError("boom"))
    managed = _ManagedFactory(MockModelProvider())
    provider = EmbeddingFallbackProvider(primary, managed)

    with pytest.raises(LLMError):
        await provider.generate_embedding("a")
    assert managed.builds == 0


@pytest.mark.asyncio
async def test_chat_always_uses_primary() -> None:
    primary = MockModelProvider(completion="primary answer", embedding_error=EmbeddingUnsupportedError())
    managed_backend = MockModelProvider(completion="managed answer")
    provider = EmbeddingFallbackProvider(primary, _ManagedFactory(managed_backend))
    await provider.generate_embedding("x")

    assert await provider.generate_completion("hi") == "primary answer"
    chunks: list[str] = []
    await provider.stream_completion("p", "s", chunks.append)

    assert chunks == ["Hello", " world"]
    assert len(primary.stream_calls) == 1
    assert managed_backend.stream_calls == []
    assert provider.chat_model == "mock-chat"
    assert provider.provider_name == "mock"
