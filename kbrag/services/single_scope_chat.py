"""In-context Q&A restricted to one document or article.

Same shape as :class:`~kbrag.services.rag_service.RagService`, narrowed:

- retrieval runs over one artifact's chunks only (top 6 for documents,
  top 4 for articles)
- articles also get their knowledge graph (entities and relationships) in
  the context
- the system prompt forbids answering from outside the artifact
- an artifact that has not been processed yet gets an empty context
"""

from __future__ import annotations

import asyncio

import structlog

from kbrag.interfaces.artifact_store import IArtifactStore
from kbrag.interfaces.model_provider import ChunkCallback, IModelProvider
from kbrag.models.artifact import Artifact, ArtifactKind
from kbrag.models.provider import ChatMessage
from kbrag.models.rag import GraphEntity, GraphRelationship, RetrievedChunk
from kbrag.providers.model.factory import ModelProviderFactory
from kbrag.services.rag_service import CONTEXT_SEPARATOR, build_prompt
from kbrag.services.retrieval.vector_retrieval import VectorRetriever
from kbrag.utils.errors import ArtifactNotFoundError, KnowledgeBaseError, RAGError

logger = structlog.get_logger(logger_name=__name__)

TIMEOUT_MESSAGE = (
    "The AI server timed out (504). The content may be too long or the server is busy; "
    "please try again."
)

_DOCUMENT_PROMPT = """You are an AI assistant helping the user understand the document "{title}".
{summary}
RULES:
- Answer ONLY from the document context below.
- If the information is not in the context, say "This is not discussed in this document."
- Mention the relevant page when answering, for example (p. 3).
- Reply in the same language as the question.
- Use markdown formatting where it improves clarity.
- Keep answers concise and to the point.

DOCUMENT CONTEXT:
{context}"""

_ARTICLE_PROMPT = """You are an AI assistant helping the user understand the knowledge-base article "{title}".

RULES:
- Answer ONLY from the article context below, which contains text excerpts and a knowledge graph of its entities and relationships.
- If the information is not stated in the text, say "This is not discussed in this article."
- Be concise and direct. Never repeat the same sentence, point or conclusion.
- Once you have given a conclusion or summary, finish the answer.

ARTICLE CONTEXT:
{context}"""

_NO_DOCUMENT_CONTEXT = "No relevant sections of this document were found."
_NO_ARTICLE_CONTEXT = "No AI-processed article text was found."


def friendly_error_message(exc: BaseException) -> str:
    """User-facing text for a failed answer."""
    message = exc.message if isinstance(exc, KnowledgeBaseError) else str(exc)
    if "504" in message:
        return TIMEOUT_MESSAGE
    return message or "Failed to get a response from the AI. Please try again."


def _document_excerpts(chunks: list[RetrievedChunk]) -> str:
    return CONTEXT_SEPARATOR.join(
        f"[Part {i}, {chunk.locator}]\n{chunk.content}" for i, chunk in enumerate(chunks, start=1)
    )


def _article_excerpts(chunks: list[RetrievedChunk]) -> str:
    return CONTEXT_SEPARATOR.join(
        f"[Excerpt {i}]\n{chunk.content}" for i, chunk in enumerate(chunks, start=1)
    )


def format_graph(entities: list[GraphEntity], relationships: list[GraphRelationship]) -> str:
    """Render an article's graph as a context block, or ``""`` when empty."""
    if not entities and not relationships:
        return ""
    parts = ["[KNOWLEDGE GRAPH: ENTITIES & RELATIONSHIPS]"]
    if entities:
        lines = "\n".join(f"- {e.name} ({e.type}): {e.description or ''}" for e in entities)
        parts.append(f"Key entities:\n{lines}\n")
    if relationships:
        lines = "\n".join(
            f"- {r.source_name} [{r.relationship}] {r.target_name}"
            + (f" ({r.description})" if r.description else "")
            for r in relationships
        )
        parts.append(f"Relationships:\n{lines}\n")
    return "\n".join(parts)


class SingleScopeChatService:
    """Answers questions about exactly one artifact.

    Parameters
    ----------
    store:
        Artifact records and knowledge graph.
    provider_factory:
        Resolves the owning organization's provider per call.
    retriever:
        Single-artifact vector retrieval.
    document_top_k / article_top_k:
        Excerpts retrieved per kind.
    history_messages:
        History turns included in the prompt.
    entity_limit / relationship_limit:
        Graph rows included for articles.
    """

    def __init__(
        self,
        store: IArtifactStore,
        provider_factory: ModelProviderFactory,
        retriever: VectorRetriever,
        document_top_k: int = 6,
        article_top_k: int = 4,
        history_messages: int = 8,
        entity_limit: int = 15,
        relationship_limit: int = 30,
    ) -> None:
        self._store = store
        self._provider_factory = provider_factory
        self._retriever = retriever
        self._document_top_k = document_top_k
        self._article_top_k = article_top_k
        self._history_messages = history_messages
        self._entity_limit = entity_limit
        self._relationship_limit = relationship_limit

    async def get_artifact(self, artifact_id: str) -> Artifact:
        artifact = await self._store.get_artifact(artifact_id)
        if artifact is None:
            raise ArtifactNotFoundError(message=f"Artifact {artifact_id} not found")
        return artifact

    async def chat(
        self,
        artifact_id: str,
        question: str,
        history: list[ChatMessage],
        on_chunk: ChunkCallback,
        cancel_event: asyncio.Event | None = None,
    ) -> None:
        """Stream an answer about *artifact_id* to *on_chunk*.

        Raises
        ------
        ArtifactNotFoundError
            If the artifact does not exist.
        """
        artifact = await self.get_artifact(artifact_id)
        provider = await self._provider_factory.for_organization(artifact.organization_id)

        context = await self._build_context(provider, artifact, question) if artifact.is_processed else ""
        system_prompt = self._system_prompt(artifact, context)
        prompt = build_prompt(question, history, self._history_messages)

        await provider.stream_completion(prompt, system_prompt, on_chunk, cancel_event)
        logger.info(
            "single_scope_chat_answered",
            artifact_id=artifact.id,
            kind=artifact.kind.value,
            has_context=bool(context),
        )

    async def _build_context(self, provider: IModelProvider, artifact: Artifact, question: str) -> str:
        is_article = artifact.kind == ArtifactKind.ARTICLE
        top_k = self._article_top_k if is_article else self._document_top_k
        try:
            chunks = await self._retriever.search_artifact(provider, question, artifact.id, artifact.kind, top_k)
        except RAGError as exc:
            logger.warning("single_scope_retrieval_failed", artifact_id=artifact.id, error=str(exc))
            chunks = []

        if not is_article:
            return _document_excerpts(chunks)

        excerpts = _article_excerpts(chunks)
        entities, relationships = await self._store.get_graph(
            artifact.id, self._entity_limit, self._relationship_limit
        )
        graph = format_graph(entities, relationships)
        if graph:
            return f"{graph}\n[TEXT EXCERPTS (vector search)]\n{excerpts}"
        return excerpts

    @staticmethod
    def _system_prompt(artifact: Artifact, context: str) -> str:
        if artifact.kind == ArtifactKind.ARTICLE:
            return _ARTICLE_PROMPT.format(title=artifact.title, context=context or _NO_ARTICLE_CONTEXT)
        summary = f"Document summary: {artifact.ai_summary}" if artifact.ai_summary else ""
        return _DOCUMENT_PROMPT.format(
            title=artifact.display_title,
            summary=summary,
            context=context or _NO_DOCUMENT_CONTEXT,
        )
