"""Business logic: ingestion, retrieval, RAG orchestration and single-scope chat."""

from kbrag.services.rag_service import RagService
from kbrag.services.single_scope_chat import SingleScopeChatService

__all__ = ["RagService", "SingleScopeChatService"]
