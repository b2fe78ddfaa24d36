"""Retrieval-augmented question answering across an organization's knowledge base.

Data flow for one turn:
  1. PROVIDER  -- resolve the organization's model backend (fresh each call)
  2. RETRIEVE  -- scoped combined search over documents and articles; any
                  failure here degrades to an empty context, never an error
  3. CONTEXT   -- number each chunk as ``[Source N: title, locator]``
  4. PROMPT    -- system prompt branches on whether any context was found;
                  the last few history turns precede the new question
  5. STREAM    -- forward tokens to the caller as they arrive, stopping when
                  the cancel event is set
  6. CITE      -- one citation per retrieved chunk, whether or not the
                  answer referenced it
"""

from __future__ import annotations

import asyncio
import math

import structlog

from kbrag.interfaces.artifact_store import IArtifactStore
from kbrag.interfaces.model_provider import ChunkCallback
from kbrag.models.identity import AccessScope, CallerIdentity
from kbrag.models.provider import ChatMessage
from kbrag.models.rag import Citation, RetrievedChunk, UsageAction, UsageEntry
from kbrag.providers.model.factory import ModelProviderFactory
from kbrag.services.retrieval.vector_retrieval import COMBINED, VectorRetriever
from kbrag.utils.errors import RAGError

logger = structlog.get_logger(logger_name=__name__)

CONTEXT_SEPARATOR = "\n\n---\n\n"

_SYSTEM_PROMPT_WITH_CONTEXT = """You are a knowledgeable assistant for this organization's knowledge base.
Answer the user's question using the document context below.
- Cite the sources you use with the format [Source N].
- If the context does not contain the answer, say so plainly and answer from general knowledge only when it is clearly safe to do so.
- Greetings, thanks and small talk do not need sources: reply naturally and briefly instead of refusing.
- Reply in the same language as the question (Indonesian or English).
- Use markdown formatting where it improves clarity.

DOCUMENT CONTEXT:
{context}"""

_SYSTEM_PROMPT_WITHOUT_CONTEXT = """You are a helpful assistant for this organization.
No documents relevant to this message were found in the knowledge base.
- Answer as a general-purpose assistant.
- Do not say that the information was "not found in the documents" unless the user explicitly asked about the organization's documents.
- Reply in the same language as the question (Indonesian or English).
- Use markdown formatting where it improves clarity."""


def source_label(index: int, chunk: RetrievedChunk) -> str:
    """``[Source N: title, p. X-Y]`` for documents, ``section N`` for articles."""
    return f"[Source {index}: {chunk.title}, {chunk.locator}]"


def build_context(chunks: list[RetrievedChunk]) -> str:
    return CONTEXT_SEPARATOR.join(
        f"{source_label(i, chunk)}\n{chunk.content}" for i, chunk in enumerate(chunks, start=1)
    )


def build_system_prompt(context: str) -> str:
    if context:
        return _SYSTEM_PROMPT_WITH_CONTEXT.format(context=context)
    return _SYSTEM_PROMPT_WITHOUT_CONTEXT


def build_prompt(question: str, history: list[ChatMessage], max_messages: int) -> str:
    """Flatten the last *max_messages* turns and the new question into one prompt."""
    recent = history[-max_messages:] if max_messages > 0 else []
    history_text = "\n".join(
        f"{'User' if m.role == 'user' else 'Assistant'}: {m.content}" for m in recent
    )
    if history_text:
        return f"{history_text}\n\nUser: {question}"
    return question


def estimate_query_tokens(question: str) -> int:
    """Rough usage estimate for one chat turn (question, context and answer)."""
    return math.ceil(len(question) / 3.5) * 3


class RagService:
    """Answers questions from the chunks a caller is allowed to see.

    Parameters
    ----------
    store:
        Organization records and the usage log.
    provider_factory:
        Resolves the organization's model provider per call.
    retriever:
        Scoped vector retrieval.
    top_k / min_similarity:
        Retrieval cap and floor.
    history_messages:
        History turns included in the prompt.
    """

    def __init__(
        self,
        store: IArtifactStore,
        provider_factory: ModelProviderFactory,
        retriever: VectorRetriever,
        top_k: int = 8,
        min_similarity: float = 0.3,
        history_messages: int = 6,
    ) -> None:
        self._store = store
        self._provider_factory = provider_factory
        self._retriever = retriever
        self._top_k = top_k
        self._min_similarity = min_similarity
        self._history_messages = history_messages

    async def resolve_scope(self, caller: CallerIdentity) -> AccessScope:
        """Visibility window for *caller*, using the organization's cross-division flag."""
        organization = await self._store.get_organization(caller.organization_id)
        cross_division = organization.cross_division_enabled if organization else False
        return AccessScope.for_caller(caller, cross_division)

    async def query(
        self,
        question: str,
        history: list[ChatMessage],
        caller: CallerIdentity,
        on_chunk: ChunkCallback,
        cancel_event: asyncio.Event | None = None,
    ) -> list[Citation]:
        """Stream an answer to *on_chunk* and return the citations used as context.

        Provider resolution and generation errors propagate; retrieval
        errors do not.
        """
        provider = await self._provider_factory.for_organization(caller.organization_id)
        scope = await self.resolve_scope(caller)

        try:
            chunks = await self._retriever.search(
                provider,
                question,
                scope,
                COMBINED,
                top_k=self._top_k,
                min_similarity=self._min_similarity,
            )
        except RAGError as exc:
            logger.warning(
                "rag_retrieval_failed",
                organization_id=caller.organization_id,
                error=str(exc),
            )
            chunks = []

        context = build_context(chunks)
        prompt = build_prompt(question, history, self._history_messages)
        await provider.stream_completion(prompt, build_system_prompt(context), on_chunk, cancel_event)

        logger.info(
            "rag_query_answered",
            organization_id=caller.organization_id,
            user_id=caller.user_id,
            sources=len(chunks),
            cancelled=bool(cancel_event and cancel_event.is_set()),
        )
        await self._record_usage(caller, question, provider.chat_model)
        return [Citation.from_chunk(chunk) for chunk in chunks]

    async def _record_usage(self, caller: CallerIdentity, question: str, model: str) -> None:
        entry = UsageEntry(
            organization_id=caller.organization_id,
            user_id=caller.user_id,
            action=UsageAction.CHAT_QUERY,
            tokens_used=estimate_query_tokens(question),
            model=model,
        )
        try:
            await self._store.record_usage(entry)
        except Exception as exc:  # noqa: BLE001
            logger.warning("usage_log_failed", organization_id=caller.organization_id, error=str(exc))
