"""Anthropic model provider adapter (bring-your-own-key, chat only).

Wraps the ``anthropic`` async client.  Key differences from the OpenAI
adapter:

- the system prompt is a top-level parameter, not a message
- responses are lists of content blocks; text blocks are joined
- there is no JSON response mode, so ``json_mode`` adds an instruction
- Anthropic has no embeddings API: :meth:`generate_embedding` raises
  :class:`EmbeddingUnsupportedError`, which the factory's fallback wrapper
  turns into a call to the managed embedding backend
"""

from __future__ import annotations

import asyncio

import anthropic
import httpx
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

ANTHROPIC_PROVIDER_NAME = "anthropic"
_METADATA_TEXT_LIMIT = 8000
_CONNECT_TIMEOUT = 10.0
_JSON_INSTRUCTION = "Respond with a single JSON object and nothing else."


class AnthropicProvider(IModelProvider):
    """Chat/completion provider backed by the Anthropic Messages API."""

    def __init__(
        self,
        api_key: str,
        chat_model: str = "claude-sonnet-4-20250514",
        retry_policy: RetryPolicy | None = None,
        timeout: float = 120.0,
    ) -> None:
        self._chat_model = chat_model
        self._retry = retry_policy or RetryPolicy()
        self._client = anthropic.AsyncAnthropic(
            api_key=api_key,
            timeout=httpx.Timeout(timeout, connect=_CONNECT_TIMEOUT),
            max_retries=0,
        )

    @property
    def provider_name(self) -> str:
        return ANTHROPIC_PROVIDER_NAME

    @property
    def chat_model(self) -> str:
        return self._chat_model

    @property
    def embedding_model(self) -> str:
        return ""

    # ------------------------------------------------------------------
    # IModelProvider implementation
    # ------------------------------------------------------------------

    async def generate_embedding(self, text: str) -> list[float]:
        raise EmbeddingUnsupportedError(provider_name=ANTHROPIC_PROVIDER_NAME)

    async def generate_completion(
        self,
        prompt: str,
        system_prompt: str | None = None,
        max_tokens: int = 2048,
        json_mode: bool = False,
    ) -> str:
        system = system_prompt or ""
        if json_mode:
            system = f"{system}\n\n{_JSON_INSTRUCTION}".strip()

        kwargs: dict[str, object] = {
            "model": self._chat_model,
            "max_tokens": max_tokens,
            "messages": [{"role": "user", "content": prompt}],
        }
        if system:
            kwargs["system"] = system

        try:
            response = await self._retry.run(lambda: self._client.messages.create(**kwargs))
        except anthropic.APIError as exc:
            raise self._translate(exc) from exc

        text_blocks = [block.text for block in response.content if block.type == "text"]
        logger.info(
            "anthropic_completion",
            model=self._chat_model,
            input_tokens=response.usage.input_tokens,
            output_tokens=response.usage.output_tokens,
        )
        return "\n".join(text_blocks)

    async def stream_completion(
        self,
        prompt: str,
        system_prompt: str,
        on_chunk: ChunkCallback,
        cancel_event: asyncio.Event | None = None,
    ) -> None:
        try:
            stream = await self._retry.run(
                lambda: self._client.messages.create(
                    model=self._chat_model,
                    max_tokens=4096,
                    system=system_prompt,
                    messages=[{"role": "user", "content": prompt}],
                    stream=True,
                )
            )
        except anthropic.APIError as exc:
            raise self._translate(exc) from exc

        try:
            async for event in stream:
                if cancel_event is not None and cancel_event.is_set():
                    logger.info("stream_cancelled", provider=ANTHROPIC_PROVIDER_NAME)
                    break
                if event.type == "content_block_delta" and event.delta.type == "text_delta":
                    await emit_chunk(on_chunk, event.delta.text)
        except anthropic.APIError as exc:
            raise self._translate(exc) from exc
        finally:
            await stream.close()

    async def generate_document_metadata(
        self,
        file_name: str,
        text: str | None = None,
        raw_file: bytes | None = None,
    ) -> DocumentMetadata:
        if not text:
            return fallback_metadata(file_name, text)
        response = await self.generate_completion(
            f"Document content:\n{text[:_METADATA_TEXT_LIMIT]}",
            system_prompt=METADATA_SYSTEM_PROMPT,
            max_tokens=1024,
            json_mode=True,
        )
        return parse_document_metadata(response, file_name, text)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    @staticmethod
    def _translate(exc: anthropic.APIError) -> KnowledgeBaseError:
        if isinstance(exc, anthropic.RateLimitError):
            return RateLimitError(message=f"Rate limit exceeded: {exc}", provider_name=ANTHROPIC_PROVIDER_NAME)
        if isinstance(exc, (anthropic.APIConnectionError, anthropic.InternalServerError)):
            return ProviderUnavailableError(
                message=f"Anthropic unreachable: {exc}", provider_name=ANTHROPIC_PROVIDER_NAME
            )
        return LLMError(message=f"Anthropic API error: {exc}", provider_name=ANTHROPIC_PROVIDER_NAME)
