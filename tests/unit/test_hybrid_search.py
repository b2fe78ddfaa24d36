"""Unit tests for hybrid (semantic + lexical) search merging."""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import pytest

from kbrag.models.artifact import ArtifactKind
from kbrag.models.identity import AccessScope
from kbrag.models.rag import RetrievedChunk, SearchResult, SearchSource
from kbrag.services.retrieval.hybrid_search import (
    HybridSearchService,
    best_hit_per_artifact,
    merge_results,
)
from kbrag.utils.errors import ConfigurationError
from tests.conftest import StaticProviderFactory

SCOPE = AccessScope(organization_id="org-1", division_scoped=False)


def _hit(artifact_id: str, similarity: float, chunk_index: int = 0) -> RetrievedChunk:
    return RetrievedChunk(
        chunk_id=f"{artifact_id}-{chunk_index}",
        artifact_id=artifact_id,
        artifact_kind=ArtifactKind.DOCUMENT,
        title=artifact_id.title(),
        content=f"chunk {chunk_index} of {artifact_id}",
        chunk_index=chunk_index,
        page_start=chunk_index + 1,
        page_end=chunk_index + 1,
        similarity=similarity,
    )


def _lexical(artifact_id: str) -> SearchResult:
    return SearchResult(
        id=artifact_id,
        kind=ArtifactKind.ARTICLE,
        title=artifact_id.title(),
        excerpt="summary",
        score=0.5,
        source=SearchSource.FULLTEXT,
    )


class TestMerge:
    def test_best_hit_per_artifact(self) -> None:
        hits = [_hit("a", 0.6, 0), _hit("b", 0.7), _hit("a", 0.9, 3)]
        best = best_hit_per_artifact(hits)
        assert [(h.artifact_id, h.chunk_index) for h in best] == [("a", 3), ("b", 0)]

    def test_overlap_is_boosted_and_marked_both(self) -> None:
        results = merge_results([_lexical("a")], [_hit("a", 0.7, 2)])

        assert len(results) == 1
        assert results[0].source == SearchSource.BOTH
        assert results[0].score == pytest.approx(0.84)
        assert results[0].page_start == 3
        assert results[0].excerpt == "chunk 2 of a"

    def test_boost_is_capped(self) -> None:
        assert merge_results([_lexical("a")], [_hit("a", 0.95)])[0].score == 1.0

    def test_single_branch_hits_keep_their_scores(self) -> None:
        results = merge_results([_lexical("lex")], [_hit("sem", 0.8)])

        assert [(r.id, r.source, r.score) for r in results] == [
            ("sem", SearchSource.SEMANTIC, 0.8),
            ("lex", SearchSource.FULLTEXT, 0.5),
        ]

    def test_page_size(self) -> None:
        hits = [_hit(f"doc-{i}", 0.5 + i / 100) for i in range(30)]
        results = merge_results([], hits, page_size=20)
        assert len(results) == 20
        assert results[0].id == "doc-29"


class TestHybridSearchService:
    def _service(self, store: MagicMock, factory: StaticProviderFactory, retriever: MagicMock) -> HybridSearchService:
        return HybridSearchService(store, factory, retriever)

    @pytest.mark.asyncio
    async def test_both_branches_merge(self) -> None:
        store = MagicMock()
        store.lexical_search = AsyncMock(return_value=[_lexical("a")])
        retriever = MagicMock()
        retriever.search = AsyncMock(return_value=[_hit("a", 0.6), _hit("b", 0.55)])
        service = self._service(store, StaticProviderFactory(MagicMock()), retriever)

        results = await service.search("leave", SCOPE)

        assert [(r.id, r.source) for r in results] == [("a", SearchSource.BOTH), ("b", SearchSource.SEMANTIC)]
        store.lexical_search.assert_awaited_once_with(SCOPE, "leave", limit=10)

    @pytest.mark.asyncio
    async def test_semantic_failure_still_returns_lexical(self) -> None:
        store = MagicMock()
        store.lexical_search = AsyncMock(return_value=[_lexical("a")])
        retriever = MagicMock()
        retriever.search = AsyncMock()
        factory = StaticProviderFactory(error=ConfigurationError("GEMINI_API_KEY not configured"))
        service = self._service(store, factory, retriever)

        results = await service.search("leave", SCOPE)

        assert [(r.id, r.source) for r in results] == [("a", SearchSource.FULLTEXT)]
        retriever.search.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_lexical_failure_still_returns_semantic(self) -> None:
        store = MagicMock()
        store.lexical_search = AsyncMock(side_effect=RuntimeError("database is locked"))
        retriever = MagicMock()
        retriever.search = AsyncMock(return_value=[_hit("b", 0.9)])
        service = self._service(store, StaticProviderFactory(MagicMock()), retriever)

        results = await service.search("leave", SCOPE)

        assert [r.id for r in results] == ["b"]

    @pytest.mark.asyncio
    async def test_both_fail_gives_empty(self) -> None:
        store = MagicMock()
        store.lexical_search = AsyncMock(side_effect=RuntimeError("boom"))
        service = self._service(store, StaticProviderFactory(error=RuntimeError("boom")), MagicMock())

        assert await service.search("leave", SCOPE) == []

    @pytest.mark.asyncio
    async def test_blank_query_searches_nothing(self) -> None:
        store = MagicMock()
        store.lexical_search = AsyncMock(return_value=[_lexical("a")])
        retriever = MagicMock()
        retriever.search = AsyncMock(return_value=[_hit("a", 0.9)])
        service = self._service(store, StaticProviderFactory(MagicMock()), retriever)

        assert await service.search("   ", SCOPE) == []
        store.lexical_search.assert_not_awaited()
        retriever.search.assert_not_awaited()
