"""Application settings loaded from environment variables via pydantic-settings.

Values come from, in priority order:

1. **Environment variables** -- e.g. ``GEMINI_API_KEY=AIza...``
2. **.env file** -- key=value lines in the project root ``.env``

Field ``gemini_api_key`` maps to env var ``GEMINI_API_KEY``.  Empty-string
defaults mean "not configured"; the provider factory raises a
``ConfigurationError`` when an organization needs a backend whose key is
empty.
"""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """kbrag application settings.

    Environment variables override defaults. Loaded from .env file when present.
    """

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # === Managed provider (Gemini) ===
    gemini_api_key: str = ""
    # Gemini's OpenAI-compatible surface, reached with the openai SDK.
    gemini_base_url: str = "https://generativelanguage.googleapis.com/v1beta/openai/"
    managed_chat_model: str = "gemini-2.5-flash"
    managed_embedding_model: str = "text-embedding-004"

    # === Bring-your-own-key defaults ===
    openai_base_url: str = "https://api.openai.com/v1"
    byok_openai_chat_model: str = "gpt-4o-mini"
    byok_openai_embedding_model: str = "text-embedding-3-small"
    byok_anthropic_chat_model: str = "claude-sonnet-4-20250514"

    # === Self-hosted (OpenAI-protocol) defaults ===
    self_hosted_base_url: str = "https://llm01.weldn.ai/olla/openai/v1"
    self_hosted_chat_model: str = "llama3.3:70b"
    self_hosted_embedding_model: str = "nomic-embed-text"
    self_hosted_placeholder_key: str = "ollama-dummy-key"

    # === Provider retry policy ===
    provider_max_retries: int = 8
    provider_initial_retry_delay_ms: int = 3000
    provider_timeout_seconds: float = 120.0

    # === Security ===
    encryption_key: str = ""

    # === Storage ===
    database_path: str = "data/knowledge_base.db"
    upload_dir: str = "data/uploads"

    # === Chunking / ingestion ===
    chunk_max_tokens: int = 400
    chunk_overlap_tokens: int = 50
    embedding_concurrency: int = 4
    graph_extraction_max_chars: int = 30000
    metadata_max_chars: int = 30000
    ingestion_worker_count: int = 1
    ingestion_job_max_attempts: int = 3
    ingestion_poll_interval_seconds: float = 2.0

    # === Retrieval ===
    rag_top_k: int = 8
    rag_min_similarity: float = 0.3
    rag_history_messages: int = 6
    semantic_search_limit: int = 8
    semantic_search_min_similarity: float = 0.5
    fulltext_search_limit: int = 10
    hybrid_search_page_size: int = 20
    single_scope_document_top_k: int = 6
    single_scope_article_top_k: int = 4
    single_scope_history_messages: int = 8

    # === Rate limits (per organization, per minute) ===
    ai_requests_per_minute: int = 30

    # === App Config ===
    app_host: str = "0.0.0.0"
    app_port: int = 8000
    app_env: str = "development"
    log_level: str = "INFO"
    cors_allowed_origins: str = ""

    def get_cors_origins(self) -> list[str]:
        """Return the comma-separated CORS origins as a list (empty = allow all)."""
        return [o.strip() for o in self.cors_allowed_origins.split(",") if o.strip()]
