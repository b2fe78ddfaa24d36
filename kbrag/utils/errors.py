"""Custom exception hierarchy for the knowledge-base RAG core.

All application exceptions inherit from :class:`KnowledgeBaseError`, which
carries an optional ``provider_name`` so error handlers can identify which
external service (e.g. "openai", "google-gemini", "ollama-olla") caused the
failure.

The hierarchy is organized by subsystem:

    KnowledgeBaseError  (base -- catch-all for any kbrag error)
    +-- ExtractionError            (text extraction from uploaded bytes)
    +-- IngestionError             (pipeline / job orchestration)
    +-- ArtifactNotFoundError      (unknown document or article id)
    +-- ConfigurationError         (missing keys, bad provider config)
    +-- LLMError                   (any model API call failure)
    +-- RateLimitError             (provider rate-limit exceeded)
    +-- EmbeddingUnsupportedError  (backend cannot serve embeddings)
    +-- ProviderUnavailableError   (external service down / unreachable)
    +-- RAGError                   (retrieval or vector math failure)

Callers handle errors at the level they care about -- retry on
RateLimitError, fall back to the managed embedding backend on
EmbeddingUnsupportedError, or fail the ingestion run on anything else.
"""


class KnowledgeBaseError(Exception):
    """Base exception for all kbrag errors.

    Every subclass carries a human-readable ``message`` and an optional
    ``provider_name`` identifying which external service triggered the
    error.  ``__str__`` prefixes the provider name in brackets, e.g.
    ``[openai] Rate limit exceeded``.
    """

    def __init__(
        self,
        message: str = "An unexpected error occurred",
        provider_name: str | None = None,
    ) -> None:
        self._message = message
        self._provider_name = provider_name
        super().__init__(self._message)

    @property
    def message(self) -> str:
        return self._message

    @property
    def provider_name(self) -> str | None:
        return self._provider_name

    def __str__(self) -> str:
        if self._provider_name:
            return f"[{self._provider_name}] {self._message}"
        return self._message


# ---------------------------------------------------------------------------
# Ingestion errors
# ---------------------------------------------------------------------------

class ExtractionError(KnowledgeBaseError):
    """Raised when a raw artifact cannot be parsed into text (PDF, text, HTML)."""

    def __init__(
        self,
        message: str = "Text extraction failed",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class IngestionError(KnowledgeBaseError):
    """Raised when the ingestion pipeline or job queue cannot proceed."""

    def __init__(
        self,
        message: str = "Ingestion failed",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class ArtifactNotFoundError(KnowledgeBaseError):
    """Raised when a document or article id does not exist in the store."""

    def __init__(
        self,
        message: str = "Artifact not found",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


# ---------------------------------------------------------------------------
# Provider errors
# ---------------------------------------------------------------------------

class ProviderUnavailableError(KnowledgeBaseError):
    """Raised when an external service is unreachable or returns a server error."""

    def __init__(
        self,
        message: str = "Provider is unavailable",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class RateLimitError(KnowledgeBaseError):
    """Raised when a provider rejects a request because of rate limiting.

    ``with_retry`` recognises this type (alongside raw HTTP 429 errors) and
    backs off exponentially before retrying.
    """

    status_code = 429

    def __init__(
        self,
        message: str = "Rate limit exceeded",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class LLMError(KnowledgeBaseError):
    """Raised when a chat, completion or embedding call fails."""

    def __init__(
        self,
        message: str = "LLM request failed",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class EmbeddingUnsupportedError(LLMError):
    """Raised when a backend reports that embeddings are not found or not supported.

    This is the only signal that triggers the managed embedding fallback.
    """

    def __init__(
        self,
        message: str = "Embeddings are not supported by this provider",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


# ---------------------------------------------------------------------------
# Configuration / retrieval errors
# ---------------------------------------------------------------------------

class ConfigurationError(KnowledgeBaseError):
    """Raised for invalid or missing configuration (keys, endpoints, secrets)."""

    def __init__(
        self,
        message: str = "Invalid configuration",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class RAGError(KnowledgeBaseError):
    """Raised when retrieval (embedding the query or ranking chunks) fails."""

    def __init__(
        self,
        message: str = "RAG retrieval failed",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)
