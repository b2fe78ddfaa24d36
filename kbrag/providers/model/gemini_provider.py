"""Google Gemini model provider (the managed default backend).

Gemini exposes an OpenAI-compatible surface, so this adapter reuses
:class:`OpenAICompatibleProvider` pointed at Google's base URL instead of
pulling in a second SDK.  What differs is the metadata prompt: Gemini gets a
single inline instruction and a much larger text window (30k characters).

Default models: ``gemini-2.5-flash`` for chat, ``text-embedding-004``
(768 dimensions) for embeddings.
"""

from __future__ import annotations

import base64

import structlog

from kbrag.models.provider import DocumentMetadata
from kbrag.providers.model.base import RetryPolicy
from kbrag.providers.model.metadata import (
    METADATA_INLINE_PROMPT,
    fallback_metadata,
    parse_document_metadata,
)
from kbrag.providers.model.openai_compat_provider import OpenAICompatibleProvider

logger = structlog.get_logger(logger_name=__name__)

GEMINI_PROVIDER_NAME = "google-gemini"


class GeminiProvider(OpenAICompatibleProvider):
    """Gemini via its OpenAI-compatible endpoint."""

    def __init__(
        self,
        api_key: str,
        base_url: str,
        chat_model: str = "gemini-2.5-flash",
        embedding_model: str = "text-embedding-004",
        retry_policy: RetryPolicy | None = None,
        timeout: float = 120.0,
        metadata_max_chars: int = 30000,
    ) -> None:
        super().__init__(
            base_url=base_url,
            api_key=api_key,
            chat_model=chat_model,
            embedding_model=embedding_model,
            provider_name=GEMINI_PROVIDER_NAME,
            retry_policy=retry_policy,
            timeout=timeout,
        )
        self._metadata_max_chars = metadata_max_chars

    async def generate_document_metadata(
        self,
        file_name: str,
        text: str | None = None,
        raw_file: bytes | None = None,
    ) -> DocumentMetadata:
        if raw_file and not text:
            content: object = [
                {"type": "text", "text": METADATA_INLINE_PROMPT},
                {
                    "type": "file",
                    "file": {
                        "filename": file_name,
                        "file_data": "data:application/pdf;base64,"
                        + base64.b64encode(raw_file).decode("ascii"),
                    },
                },
            ]
        elif text:
            content = f"{METADATA_INLINE_PROMPT}\n\nDocument text:\n{text[: self._metadata_max_chars]}"
        else:
            return fallback_metadata(file_name, text)

        response = await self._complete(
            [{"role": "user", "content": content}],
            max_tokens=1024,
            json_mode=False,
        )
        logger.debug("gemini_metadata_response", file_name=file_name, length=len(response))
        return parse_document_metadata(response, file_name, text)
