"""Scoped vector retrieval and hybrid search."""

from kbrag.services.retrieval.hybrid_search import HybridSearchService, merge_results
from kbrag.services.retrieval.vector_retrieval import VectorRetriever, rank_candidates

__all__ = ["HybridSearchService", "VectorRetriever", "merge_results", "rank_candidates"]
