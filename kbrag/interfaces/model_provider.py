"""Abstract base class for language/embedding model backends.

One capability interface covers everything the RAG core asks of a model:
embeddings, one-shot completions, cancellable streaming, and document
metadata generation.  Concrete variants (managed Gemini, BYOK OpenAI or
Anthropic, self-hosted OpenAI-protocol servers) live in
``kbrag/providers/model/`` and are selected per call by
:class:`~kbrag.providers.model.factory.ModelProviderFactory`.
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable

from kbrag.models.provider import DocumentMetadata

# Receives each streamed text delta.  May be a plain function or a coroutine
# function; providers await the result when it is awaitable.
ChunkCallback = Callable[[str], Awaitable[None] | None]


class IModelProvider(ABC):
    """Contract for model backends used by ingestion and retrieval."""

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Identifier of the backend, e.g. ``"google-gemini"`` or ``"openai"``."""

    @property
    @abstractmethod
    def chat_model(self) -> str:
        """Model used for completions and streaming."""

    @property
    @abstractmethod
    def embedding_model(self) -> str:
        """Model used for embeddings; recorded on every ingested artifact."""

    @abstractmethod
    async def generate_embedding(self, text: str) -> list[float]:
        """Embed *text* into a fixed-length vector.

        Raises
        ------
        kbrag.utils.errors.EmbeddingUnsupportedError
            If the backend has no embedding model or reports it as not found.
        kbrag.utils.errors.LLMError
            For any other API failure (after rate-limit retries).
        """

    @abstractmethod
    async def generate_completion(
        self,
        prompt: str,
        system_prompt: str | None = None,
        max_tokens: int = 2048,
        json_mode: bool = False,
    ) -> str:
        """Generate a complete response.

        Parameters
        ----------
        prompt:
            The user message.
        system_prompt:
            Optional instructions sent as the system message.
        max_tokens:
            Upper bound on the response length.
        json_mode:
            Ask the backend for a JSON object response where supported.

        Returns
        -------
        str
            The model's text, or ``""`` when the backend returned nothing.
        """

    @abstractmethod
    async def stream_completion(
        self,
        prompt: str,
        system_prompt: str,
        on_chunk: ChunkCallback,
        cancel_event: asyncio.Event | None = None,
    ) -> None:
        """Stream a response, forwarding each text delta to *on_chunk*.

        Cancellation is cooperative: *cancel_event* is checked between
        deltas and the stream is closed as soon as it is set.
        """

    @abstractmethod
    async def generate_document_metadata(
        self,
        file_name: str,
        text: str | None = None,
        raw_file: bytes | None = None,
    ) -> DocumentMetadata:
        """Derive title, summary, tags, language and document type.

        Never raises on malformed model output: a fallback record built from
        *file_name* and *text* is returned instead.
        """
