"""Unit tests for RagService: scoped retrieval, prompt assembly, streaming, citations."""

from __future__ import annotations

import asyncio
import math

import pytest

from kbrag.models.artifact import ArtifactKind
from kbrag.models.identity import CallerIdentity, Organization, Role
from kbrag.models.provider import ChatMessage
from kbrag.providers.store.sqlite_artifact_store import SQLiteArtifactStore
from kbrag.services.rag_service import RagService, build_prompt, build_system_prompt
from kbrag.services.retrieval.vector_retrieval import VectorRetriever
from kbrag.utils.errors import ConfigurationError, LLMError
from tests.conftest import (
    MockModelProvider,
    StaticProviderFactory,
    make_article,
    make_document,
    seed_processed,
)

QUESTION = "How many leave days?"
ADMIN = CallerIdentity(user_id="user-1", organization_id="org-1", role=Role.SUPER_ADMIN)


def _service(store: SQLiteArtifactStore, provider: MockModelProvider, **kwargs: object) -> RagService:
    return RagService(store, StaticProviderFactory(provider), VectorRetriever(store), **kwargs)


async def _ask(service: RagService, caller: CallerIdentity = ADMIN, **kwargs: object):  # noqa: ANN202
    history = kwargs.pop("history", [])
    chunks: list[str] = []
    citations = await service.query(QUESTION, history, caller, chunks.append, **kwargs)
    return chunks, citations


class TestPromptHelpers:
    def test_history_is_truncated_to_recent_turns(self) -> None:
        history = [
            ChatMessage(role="user" if i % 2 == 0 else "assistant", content=f"turn {i}") for i in range(10)
        ]

        prompt = build_prompt("final?", history, max_messages=6)

        assert "turn 3" not in prompt
        assert prompt.startswith("User: turn 4\nAssistant: turn 5")
        assert prompt.endswith("\n\nUser: final?")

    def test_no_history(self) -> None:
        assert build_prompt("hi", [], 6) == "hi"

    def test_system_prompt_branches_on_context(self) -> None:
        assert "DOCUMENT CONTEXT:\nctx" in build_system_prompt("ctx")
        assert "No documents relevant" in build_system_prompt("")


class TestQuery:
    @pytest.mark.asyncio
    async def test_no_matches_streams_general_answer(self, store: SQLiteArtifactStore) -> None:
        provider = MockModelProvider(vectors={QUESTION: [1.0, 0.0]})

        chunks, citations = await _ask(_service(store, provider))

        assert chunks == ["Hello", " world"]
        assert citations == []
        assert "No documents relevant" in provider.stream_calls[0]["system_prompt"]

    @pytest.mark.asyncio
    async def test_context_labels_and_citations(self, store: SQLiteArtifactStore) -> None:
        await seed_processed(store, make_document(), [("Staff receive 12 leave days.", [1.0, 0.0])])
        await seed_processed(store, make_article(), [("Leave requests go to HR.", [0.9, 0.3])])
        provider = MockModelProvider(vectors={QUESTION: [1.0, 0.0]})

        _, citations = await _ask(_service(store, provider))

        system_prompt = provider.stream_calls[0]["system_prompt"]
        assert "[Source 1: Leave Policy, p. 1]\nStaff receive 12 leave days." in system_prompt
        assert "[Source 2: Onboarding Guide, section 1]\nLeave requests go to HR." in system_prompt
        assert [(c.artifact_id, c.artifact_kind) for c in citations] == [
            ("doc-1", ArtifactKind.DOCUMENT),
            ("art-1", ArtifactKind.ARTICLE),
        ]
        assert citations[0].excerpt == "Staff receive 12 leave days."

    @pytest.mark.asyncio
    async def test_similarity_floor(self, store: SQLiteArtifactStore) -> None:
        await seed_processed(store, make_document(), [("Unrelated canteen menu.", [0.0, 1.0])])
        provider = MockModelProvider(vectors={QUESTION: [1.0, 0.0]})

        _, citations = await _ask(_service(store, provider, min_similarity=0.3))

        assert citations == []

    @pytest.mark.asyncio
    async def test_staff_only_see_own_division(self, store: SQLiteArtifactStore) -> None:
        await seed_processed(store, make_document("doc-a", division_id="div-a"), [("A leave", [1.0, 0.0])])
        await seed_processed(store, make_document("doc-b", division_id="div-b"), [("B leave", [1.0, 0.0])])
        await seed_processed(store, make_document("doc-all"), [("Org leave", [1.0, 0.0])])
        provider = MockModelProvider(vectors={QUESTION: [1.0, 0.0]})
        staff = CallerIdentity(user_id="u2", organization_id="org-1", division_id="div-a", role=Role.STAFF)

        _, citations = await _ask(_service(store, provider), caller=staff)

        assert {c.artifact_id for c in citations} == {"doc-a", "doc-all"}

    @pytest.mark.asyncio
    async def test_supervisor_with_cross_division_sees_everything(self, store: SQLiteArtifactStore) -> None:
        await store.save_organization(Organization(id="org-1", name="Acme", cross_division_enabled=True))
        await seed_processed(store, make_document("doc-a", division_id="div-a"), [("A leave", [1.0, 0.0])])
        await seed_processed(store, make_document("doc-b", division_id="div-b"), [("B leave", [1.0, 0.0])])
        provider = MockModelProvider(vectors={QUESTION: [1.0, 0.0]})
        supervisor = CallerIdentity(
            user_id="u3", organization_id="org-1", division_id="div-a", role=Role.SUPERVISOR
        )

        _, citations = await _ask(_service(store, provider), caller=supervisor)

        assert {c.artifact_id for c in citations} == {"doc-a", "doc-b"}

    @pytest.mark.asyncio
    async def test_retrieval_failure_degrades_to_empty_context(self, store: SQLiteArtifactStore) -> None:
        await seed_processed(store, make_document(), [("Staff receive 12 leave days.", [1.0, 0.0])])
        provider = MockModelProvider(embedding_error=LLMError("embedding backend down"))

        chunks, citations = await _ask(_service(store, provider))

        assert chunks == ["Hello", " world"]
        assert citations == []
        assert "No documents relevant" in provider.stream_calls[0]["system_prompt"]

    @pytest.mark.asyncio
    async def test_provider_resolution_error_propagates(self, store: SQLiteArtifactStore) -> None:
        service = RagService(
            store, StaticProviderFactory(error=ConfigurationError("no key")), VectorRetriever(store)
        )
        with pytest.raises(ConfigurationError):
            await _ask(service)

    @pytest.mark.asyncio
    async def test_generation_error_propagates(self, store: SQLiteArtifactStore) -> None:
        provider = MockModelProvider(vectors={QUESTION: [1.0, 0.0]}, stream_error=LLMError("504 Gateway"))
        with pytest.raises(LLMError):
            await _ask(_service(store, provider))

    @pytest.mark.asyncio
    async def test_usage_is_recorded_with_chat_model(self, store: SQLiteArtifactStore) -> None:
        provider = MockModelProvider(vectors={QUESTION: [1.0, 0.0]})

        await _ask(_service(store, provider))

        usage = await store.list_usage("org-1")
        assert len(usage) == 1
        assert usage[0]["action_type"] == "CHAT_QUERY"
        assert usage[0]["model_used"] == "mock-chat"
        assert usage[0]["user_id"] == "user-1"
        assert usage[0]["tokens_used"] == math.ceil(len(QUESTION) / 3.5) * 3

    @pytest.mark.asyncio
    async def test_cancelled_before_first_token(self, store: SQLiteArtifactStore) -> None:
        provider = MockModelProvider(vectors={QUESTION: [1.0, 0.0]})
        cancel = asyncio.Event()
        cancel.set()

        chunks, _ = await _ask(_service(store, provider), cancel_event=cancel)

        assert chunks == []

    @pytest.mark.asyncio
    async def test_history_reaches_prompt(self, store: SQLiteArtifactStore) -> None:
        provider = MockModelProvider(vectors={QUESTION: [1.0, 0.0]})
        history = [ChatMessage(role="user", content="Hi"), ChatMessage(role="assistant", content="Hello!")]

        await _ask(_service(store, provider), history=history)

        assert provider.stream_calls[0]["prompt"] == f"User: Hi\nAssistant: Hello!\n\nUser: {QUESTION}"
