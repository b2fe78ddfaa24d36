"""OpenAI-protocol model provider adapter.

Wraps the ``openai`` async client to implement :class:`IModelProvider`.
Anything that speaks the OpenAI REST protocol works through this one
adapter by changing ``base_url``: OpenAI itself (BYOK keys), self-hosted
Ollama/Olla gateways, and Google's Gemini compatibility surface (see
:mod:`kbrag.providers.model.gemini_provider`).

The SDK's own retry loop is disabled (``max_retries=0``) so the project-wide
rate-limit policy in :mod:`kbrag.utils.retry` is the only one in effect.
"""

from __future__ import annotations

import asyncio
import base64

import httpx
import openai
import structlog

from kbrag.interfaces.model_provider import ChunkCallback, IModelProvider
from kbrag.models.provider import DocumentMetadata
from kbrag.providers.model.base import RetryPolicy, emit_chunk
from kbrag.providers.model.metadata import (
    METADATA_SYSTEM_PROMPT,
    fallback_metadata,
    parse_document_metadata,
)
from kbrag.utils.errors import (
    EmbeddingUnsupportedError,
    KnowledgeBaseError,
    LLMError,
    ProviderUnavailableError,
    RateLimitError,
)

logger = structlog.get_logger(logger_name=__name__)

_METADATA_TEXT_LIMIT = 8000
_CONNECT_TIMEOUT = 10.0
_UNSUPPORTED_MARKERS = ("not found", "not supported", "does not support", "unsupported")


class OpenAICompatibleProvider(IModelProvider):
    """Model provider for any OpenAI-compatible endpoint.

    Parameters
    ----------
    base_url:
        API root, e.g. ``https://api.openai.com/v1``.
    api_key:
        Bearer key; self-hosted gateways accept a placeholder.
    chat_model / embedding_model:
        Model identifiers sent with each request.
    provider_name:
        Identifier used in logs, errors and usage records.
    retry_policy:
        Rate-limit backoff applied to every request.
    timeout:
        Per-request timeout in seconds.
    """

    def __init__(
        self,
        base_url: str,
        api_key: str,
        chat_model: str,
        embedding_model: str,
        provider_name: str,
        retry_policy: RetryPolicy | None = None,
        timeout: float = 120.0,
    ) -> None:
        self._provider_name = provider_name
        self._chat_model = chat_model
        self._embedding_model = embedding_model
        self._retry = retry_policy or RetryPolicy()
        self._client = openai.AsyncOpenAI(
            base_url=base_url,
            api_key=api_key,
            timeout=httpx.Timeout(timeout, connect=_CONNECT_TIMEOUT),
            max_retries=0,
        )

    # ------------------------------------------------------------------
    # Identity
    # ------------------------------------------------------------------

    @property
    def provider_name(self) -> str:
        return self._provider_name

    @property
    def chat_model(self) -> str:
        return self._chat_model

    @property
    def embedding_model(self) -> str:
        return self._embedding_model

    # ------------------------------------------------------------------
    # IModelProvider implementation
    # ------------------------------------------------------------------

    async def generate_embedding(self, text: str) -> list[float]:
        try:
            response = await self._retry.run(
                lambda: self._client.embeddings.create(model=self._embedding_model, input=text)
            )
        except openai.APIError as exc:
            raise self._translate(exc, embedding=True) from exc

        if not response.data or not response.data[0].embedding:
            raise LLMError(
                message="No embedding returned from provider",
                provider_name=self._provider_name,
            )
        return list(response.data[0].embedding)

    async def generate_completion(
        self,
        prompt: str,
        system_prompt: str | None = None,
        max_tokens: int = 2048,
        json_mode: bool = False,
    ) -> str:
        messages: list[dict[str, object]] = []
        if system_prompt:
            messages.append({"role": "system", "content": system_prompt})
        messages.append({"role": "user", "content": prompt})
        return await self._complete(messages, max_tokens=max_tokens, json_mode=json_mode)

    async def stream_completion(
        self,
        prompt: str,
        system_prompt: str,
        on_chunk: ChunkCallback,
        cancel_event: asyncio.Event | None = None,
    ) -> None:
        try:
            stream = await self._retry.run(
                lambda: self._client.chat.completions.create(
                    model=self._chat_model,
                    stream=True,
                    messages=[
                        {"role": "system", "content": system_prompt},
                        {"role": "user", "content": prompt},
                    ],
                )
            )
        except openai.APIError as exc:
            raise self._translate(exc) from exc

        delivered = 0
        try:
            async for event in stream:
                if cancel_event is not None and cancel_event.is_set():
                    logger.info("stream_cancelled", provider=self._provider_name, chunks=delivered)
                    break
                if not event.choices:
                    continue
                delta = event.choices[0].delta.content
                if delta:
                    delivered += 1
                    await emit_chunk(on_chunk, delta)
        except openai.APIError as exc:
            raise self._translate(exc) from exc
        finally:
            await stream.close()

        logger.info("stream_complete", provider=self._provider_name, model=self._chat_model, chunks=delivered)

    async def generate_document_metadata(
        self,
        file_name: str,
        text: str | None = None,
        raw_file: bytes | None = None,
    ) -> DocumentMetadata:
        if text:
            user_content: object = f"Document content:\n{text[:_METADATA_TEXT_LIMIT]}"
        elif raw_file:
            user_content = [
                {"type": "text", "text": "Analyze the attached document."},
                {
                    "type": "file",
                    "file": {
                        "filename": file_name,
                        "file_data": "data:application/pdf;base64,"
                        + base64.b64encode(raw_file).decode("ascii"),
                    },
                },
            ]
        else:
            return fallback_metadata(file_name, text)

        response = await self._complete(
            [
                {"role": "system", "content": METADATA_SYSTEM_PROMPT},
                {"role": "user", "content": user_content},
            ],
            max_tokens=1024,
            json_mode=True,
        )
        return parse_document_metadata(response, file_name, text)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _complete(
        self,
        messages: list[dict[str, object]],
        max_tokens: int,
        json_mode: bool,
    ) -> str:
        kwargs: dict[str, object] = {
            "model": self._chat_model,
            "max_tokens": max_tokens,
            "messages": messages,
        }
        if json_mode:
            kwargs["response_format"] = {"type": "json_object"}

        try:
            response = await self._retry.run(lambda: self._client.chat.completions.create(**kwargs))
        except openai.APIError as exc:
            raise self._translate(exc) from exc

        content = response.choices[0].message.content if response.choices else None
        usage = getattr(response, "usage", None)
        logger.info(
            "completion",
            provider=self._provider_name,
            model=self._chat_model,
            tokens=getattr(usage, "total_tokens", None),
        )
        return content or ""

    def _translate(self, exc: openai.APIError, embedding: bool = False) -> KnowledgeBaseError:
        """Map an SDK error onto the package's error hierarchy."""
        name = self._provider_name
        if isinstance(exc, openai.RateLimitError):
            return RateLimitError(message=f"Rate limit exceeded: {exc}", provider_name=name)
        if embedding:
            status = getattr(exc, "status_code", None)
            text = str(exc).lower()
            if status == 404 or (status == 400 and any(m in text for m in _UNSUPPORTED_MARKERS)):
                return EmbeddingUnsupportedError(
                    message=f"Embedding model '{self._embedding_model}' unavailable: {exc}",
                    provider_name=name,
                )
        if isinstance(exc, (openai.APIConnectionError, openai.InternalServerError)):
            return ProviderUnavailableError(message=f"Provider unreachable: {exc}", provider_name=name)
        return LLMError(message=f"API error: {exc}", provider_name=name)
