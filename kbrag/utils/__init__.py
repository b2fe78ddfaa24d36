"""Utility modules for kbrag.

- **errors** -- exception hierarchy rooted at KnowledgeBaseError.
- **logging** -- structlog setup (console in development, JSON in
  production) with secret redaction on every log line.
- **concurrency** -- bounded ``gather`` and per-key asyncio locks.
- **retry** -- exponential backoff for rate-limited provider calls.
- **crypto** -- AES-256-GCM encryption of stored provider credentials.
- **rate_limiter** -- in-memory per-organization request limiter.
"""

from kbrag.utils.concurrency import KeyedLocks, throttled_gather
from kbrag.utils.errors import (
    ArtifactNotFoundError,
    ConfigurationError,
    EmbeddingUnsupportedError,
    ExtractionError,
    IngestionError,
    KnowledgeBaseError,
    LLMError,
    ProviderUnavailableError,
    RAGError,
    RateLimitError,
)
from kbrag.utils.logging import configure_logging, get_logger
from kbrag.utils.retry import is_rate_limit_error, with_retry

__all__ = [
    "ArtifactNotFoundError",
    "ConfigurationError",
    "EmbeddingUnsupportedError",
    "ExtractionError",
    "IngestionError",
    "KeyedLocks",
    "KnowledgeBaseError",
    "LLMError",
    "ProviderUnavailableError",
    "RAGError",
    "RateLimitError",
    "configure_logging",
    "get_logger",
    "is_rate_limit_error",
    "throttled_gather",
    "with_retry",
]
