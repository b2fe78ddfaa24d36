"""kbrag: multi-tenant knowledge-base ingestion, retrieval and RAG core."""

__version__ = "0.1.0"
