"""Embedding fallback to the managed backend.

Wraps a non-managed provider.  Every capability delegates to the wrapped
provider; only :meth:`generate_embedding` differs: when the wrapped backend
raises :class:`EmbeddingUnsupportedError` the call is retried against the
managed backend.  Once that happens the managed backend serves all further
embeddings from this instance, so one ingestion run or query never mixes
vectors from two embedding models.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable

import structlog

from kbrag.interfaces.model_provider import ChunkCallback, IModelProvider
from kbrag.models.provider import DocumentMetadata
from kbrag.utils.errors import EmbeddingUnsupportedError

logger = structlog.get_logger(logger_name=__name__)


class EmbeddingFallbackProvider(IModelProvider):
    """Delegates to *primary*, falling back to a lazily built managed embedder.

    Parameters
    ----------
    primary:
        The organization's selected provider.
    managed_factory:
        Builds the managed provider on first fallback.  Deferred so that
        organizations whose backend embeds fine never need a managed key.
    """

    def __init__(self, primary: IModelProvider, managed_factory: Callable[[], IModelProvider]) -> None:
        self._primary = primary
        self._managed_factory = managed_factory
        self._managed: IModelProvider | None = None
        self._lock = asyncio.Lock()

    @property
    def primary(self) -> IModelProvider:
        return self._primary

    @property
    def provider_name(self) -> str:
        return self._primary.provider_name

    @property
    def chat_model(self) -> str:
        return self._primary.chat_model

    @property
    def embedding_model(self) -> str:
        if self._managed is not None:
            return self._managed.embedding_model
        return self._primary.embedding_model

    async def generate_embedding(self, text: str) -> list[float]:
        if self._managed is None:
            try:
                return await self._primary.generate_embedding(text)
            except EmbeddingUnsupportedError as exc:
                async with self._lock:
                    if self._managed is None:
                        self._managed = self._managed_factory()
                        logger.warning(
                            "embedding_fallback_to_managed",
                            provider=self._primary.provider_name,
                            managed_model=self._managed.embedding_model,
                            reason=str(exc),
                        )
        return await self._managed.generate_embedding(text)

    async def generate_completion(
        self,
        prompt: str,
        system_prompt: str | None = None,
        max_tokens: int = 2048,
        json_mode: bool = False,
    ) -> str:
        return await self._primary.generate_completion(
            prompt, system_prompt=system_prompt, max_tokens=max_tokens, json_mode=json_mode
        )

    async def stream_completion(
        self,
        prompt: str,
        system_prompt: str,
        on_chunk: ChunkCallback,
        cancel_event: asyncio.Event | None = None,
    ) -> None:
        await self._primary.stream_completion(prompt, system_prompt, on_chunk, cancel_event)

    async def generate_document_metadata(
        self,
        file_name: str,
        text: str | None = None,
        raw_file: bytes | None = None,
    ) -> DocumentMetadata:
        return await self._primary.generate_document_metadata(file_name, text=text, raw_file=raw_file)
