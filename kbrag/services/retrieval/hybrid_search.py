"""Hybrid search: vector retrieval merged with lexical substring matching.

Both signals run concurrently and independently.  A branch that raises
contributes nothing; the search itself never fails because one source
errored.  Results are one row per artifact:

- vector hits are collapsed to the best-scoring chunk per artifact first
- an artifact found by only one branch keeps that branch's score and source
- an artifact found by both gets ``min(1.0, max(scores) * 1.2)``, source
  ``both``, and the vector hit's page range and excerpt
"""

from __future__ import annotations

import asyncio

import structlog

from kbrag.interfaces.artifact_store import IArtifactStore
from kbrag.models.identity import AccessScope
from kbrag.models.rag import RetrievedChunk, SearchResult, SearchSource
from kbrag.providers.model.factory import ModelProviderFactory
from kbrag.services.retrieval.vector_retrieval import COMBINED, VectorRetriever

logger = structlog.get_logger(logger_name=__name__)

BOTH_BOOST = 1.2
_EXCERPT_LENGTH = 200


def best_hit_per_artifact(chunks: list[RetrievedChunk]) -> list[RetrievedChunk]:
    """Keep the highest-similarity chunk of each artifact, in first-seen order."""
    best: dict[str, RetrievedChunk] = {}
    for chunk in chunks:
        current = best.get(chunk.artifact_id)
        if current is None or chunk.similarity > current.similarity:
            best[chunk.artifact_id] = chunk
    return list(best.values())


def merge_results(
    lexical: list[SearchResult],
    semantic: list[RetrievedChunk],
    page_size: int = 20,
) -> list[SearchResult]:
    """Merge both branches by artifact id, boost overlaps, sort and truncate."""
    merged: dict[str, SearchResult] = {r.id: r for r in lexical}

    for hit in best_hit_per_artifact(semantic):
        excerpt = hit.content[:_EXCERPT_LENGTH]
        existing = merged.get(hit.artifact_id)
        if existing is not None:
            merged[hit.artifact_id] = existing.model_copy(
                update={
                    "score": min(max(existing.score, hit.similarity) * BOTH_BOOST, 1.0),
                    "source": SearchSource.BOTH,
                    "page_start": hit.page_start,
                    "page_end": hit.page_end,
                    "excerpt": excerpt,
                }
            )
        else:
            merged[hit.artifact_id] = SearchResult(
                id=hit.artifact_id,
                kind=hit.artifact_kind,
                title=hit.title,
                excerpt=excerpt,
                score=min(max(hit.similarity, 0.0), 1.0),
                source=SearchSource.SEMANTIC,
                page_start=hit.page_start,
                page_end=hit.page_end,
                division_name=hit.division_name,
            )

    ranked = sorted(merged.values(), key=lambda r: r.score, reverse=True)
    return ranked[:page_size]


class HybridSearchService:
    """Runs the semantic and lexical branches and merges them.

    Parameters
    ----------
    store:
        Lexical search backend.
    provider_factory:
        Resolves the embedding backend for the semantic branch.
    retriever:
        Vector retrieval.
    semantic_limit / semantic_min_similarity:
        Vector branch cap and floor.
    fulltext_limit:
        Lexical branch cap.
    page_size:
        Length of the merged result list.
    """

    def __init__(
        self,
        store: IArtifactStore,
        provider_factory: ModelProviderFactory,
        retriever: VectorRetriever,
        semantic_limit: int = 8,
        semantic_min_similarity: float = 0.5,
        fulltext_limit: int = 10,
        page_size: int = 20,
    ) -> None:
        self._store = store
        self._provider_factory = provider_factory
        self._retriever = retriever
        self._semantic_limit = semantic_limit
        self._semantic_min_similarity = semantic_min_similarity
        self._fulltext_limit = fulltext_limit
        self._page_size = page_size

    async def search(self, query: str, scope: AccessScope) -> list[SearchResult]:
        """Ranked, de-duplicated results for *query* visible under *scope*."""
        if not query.strip():
            return []
        semantic_result, lexical_result = await asyncio.gather(
            self._semantic(query, scope),
            self._store.lexical_search(scope, query, limit=self._fulltext_limit),
            return_exceptions=True,
        )

        semantic = self._settled(semantic_result, "semantic", scope)
        lexical = self._settled(lexical_result, "fulltext", scope)
        results = merge_results(lexical, semantic, self._page_size)
        logger.info(
            "hybrid_search",
            organization_id=scope.organization_id,
            semantic=len(semantic),
            fulltext=len(lexical),
            results=len(results),
        )
        return results

    async def _semantic(self, query: str, scope: AccessScope) -> list[RetrievedChunk]:
        provider = await self._provider_factory.for_organization(scope.organization_id)
        return await self._retriever.search(
            provider,
            query,
            scope,
            COMBINED,
            top_k=self._semantic_limit,
            min_similarity=self._semantic_min_similarity,
        )

    @staticmethod
    def _settled(result: list | BaseException, branch: str, scope: AccessScope) -> list:
        if isinstance(result, BaseException):
            if isinstance(result, asyncio.CancelledError):
                raise result
            logger.warning(
                "search_branch_failed",
                branch=branch,
                organization_id=scope.organization_id,
                error=str(result),
            )
            return []
        return result
