"""Scoped cosine-similarity retrieval over persisted chunk embeddings.

The store returns every embedded chunk the caller may see (the scoping
predicate is applied in SQL); ranking happens here with numpy:

    similarity = 1 - cosine_distance = (q . v) / (|q| |v|)

Chunks whose vector length differs from the query's are skipped, which
happens when an artifact was embedded by a different model than the one
the organization uses now.
"""

from __future__ import annotations

import numpy as np
import structlog

from kbrag.interfaces.artifact_store import IArtifactStore
from kbrag.interfaces.model_provider import IModelProvider
from kbrag.models.artifact import ArtifactKind
from kbrag.models.identity import AccessScope
from kbrag.models.rag import ChunkCandidate, RetrievedChunk
from kbrag.utils.errors import RAGError

logger = structlog.get_logger(logger_name=__name__)

DOCUMENTS = (ArtifactKind.DOCUMENT,)
ARTICLES = (ArtifactKind.ARTICLE,)
COMBINED = (ArtifactKind.DOCUMENT, ArtifactKind.ARTICLE)


def rank_candidates(
    query_embedding: list[float],
    candidates: list[ChunkCandidate],
    top_k: int,
    min_similarity: float,
) -> list[RetrievedChunk]:
    """Score *candidates* against the query, drop those under the floor, keep the best *top_k*."""
    query = np.asarray(query_embedding, dtype=np.float64)
    query_norm = float(np.linalg.norm(query))
    if query_norm == 0.0 or top_k <= 0:
        return []

    dimension = query.shape[0]
    usable = [c for c in candidates if len(c.embedding) == dimension]
    skipped = len(candidates) - len(usable)
    if skipped:
        logger.warning("embedding_dimension_mismatch", skipped=skipped, expected=dimension)
    if not usable:
        return []

    matrix = np.asarray([c.embedding for c in usable], dtype=np.float64)
    norms = np.linalg.norm(matrix, axis=1)
    with np.errstate(divide="ignore", invalid="ignore"):
        scores = (matrix @ query) / (norms * query_norm)
    scores = np.nan_to_num(scores, nan=0.0, posinf=0.0, neginf=0.0)

    # Stable sort keeps store order (artifact, chunk index) for equal scores.
    order = np.argsort(-scores, kind="stable")
    results: list[RetrievedChunk] = []
    for idx in order:
        similarity = float(scores[idx])
        if similarity < min_similarity:
            break
        candidate = usable[idx]
        results.append(
            RetrievedChunk(
                chunk_id=candidate.chunk_id,
                artifact_id=candidate.artifact_id,
                artifact_kind=candidate.artifact_kind,
                title=candidate.title,
                content=candidate.content,
                chunk_index=candidate.chunk_index,
                page_start=candidate.page_start,
                page_end=candidate.page_end,
                division_name=candidate.division_name,
                similarity=similarity,
            )
        )
        if len(results) >= top_k:
            break
    return results


class VectorRetriever:
    """Embeds a query and ranks the chunks visible to a caller.

    Parameters
    ----------
    store:
        Source of scoped chunk candidates.
    """

    def __init__(self, store: IArtifactStore) -> None:
        self._store = store

    async def search(
        self,
        provider: IModelProvider,
        query: str,
        scope: AccessScope,
        kinds: tuple[ArtifactKind, ...] = COMBINED,
        top_k: int = 8,
        min_similarity: float = 0.3,
    ) -> list[RetrievedChunk]:
        """Scoped retrieval over *kinds* (documents, articles, or both)."""
        try:
            embedding = await provider.generate_embedding(query)
            candidates = await self._store.fetch_chunk_candidates(scope, kinds)
        except Exception as exc:
            raise RAGError(message=f"Retrieval failed: {exc}") from exc
        results = rank_candidates(embedding, candidates, top_k, min_similarity)
        logger.debug(
            "vector_search",
            organization_id=scope.organization_id,
            kinds=[k.value for k in kinds],
            candidates=len(candidates),
            results=len(results),
        )
        return results

    async def search_documents(
        self, provider: IModelProvider, query: str, scope: AccessScope, top_k: int = 8, min_similarity: float = 0.3
    ) -> list[RetrievedChunk]:
        return await self.search(provider, query, scope, DOCUMENTS, top_k, min_similarity)

    async def search_articles(
        self, provider: IModelProvider, query: str, scope: AccessScope, top_k: int = 8, min_similarity: float = 0.3
    ) -> list[RetrievedChunk]:
        return await self.search(provider, query, scope, ARTICLES, top_k, min_similarity)

    async def search_artifact(
        self,
        provider: IModelProvider,
        query: str,
        artifact_id: str,
        kind: ArtifactKind,
        top_k: int,
        min_similarity: float = -1.0,
    ) -> list[RetrievedChunk]:
        """Retrieval restricted to one already-resolved artifact."""
        try:
            embedding = await provider.generate_embedding(query)
            candidates = await self._store.fetch_chunk_candidates(None, (kind,), artifact_id=artifact_id)
        except Exception as exc:
            raise RAGError(message=f"Retrieval failed: {exc}") from exc
        return rank_candidates(embedding, candidates, top_k, min_similarity)
