"""Per-call model provider selection.

The factory is the only place that knows how to instantiate each backend.
It reads the organization's :class:`ProviderConfig` from the store on every
call (no caching), so a provider change takes effect on the next request.

Dispatch on :class:`ProviderKind`:

- ``managed``      -> Gemini with the service-wide ``GEMINI_API_KEY``
- ``byok``         -> decrypted key; ``sk-ant-`` = Anthropic, ``sk-`` = OpenAI,
                      anything else = Gemini with the organization's key
- ``self_hosted``  -> OpenAI-protocol server at the configured endpoint

Non-managed providers are wrapped in :class:`EmbeddingFallbackProvider`,
the single documented fallback path.
"""

from __future__ import annotations

import structlog

from kbrag.config.settings import Settings
from kbrag.interfaces.artifact_store import IArtifactStore
from kbrag.interfaces.model_provider import IModelProvider
from kbrag.models.provider import ProviderConfig, ProviderKind
from kbrag.providers.model.anthropic_provider import AnthropicProvider
from kbrag.providers.model.base import RetryPolicy
from kbrag.providers.model.embedding_fallback import EmbeddingFallbackProvider
from kbrag.providers.model.gemini_provider import GeminiProvider
from kbrag.providers.model.openai_compat_provider import OpenAICompatibleProvider
from kbrag.utils.crypto import KeyEncryptor
from kbrag.utils.errors import ConfigurationError

logger = structlog.get_logger(logger_name=__name__)

OPENAI_PROVIDER_NAME = "openai"
SELF_HOSTED_PROVIDER_NAME = "ollama-olla"


class ModelProviderFactory:
    """Builds the model provider an organization has selected.

    Parameters
    ----------
    settings:
        Service-wide defaults (managed key, default model names, retry policy).
    store:
        Source of organization provider configuration.
    """

    def __init__(self, settings: Settings, store: IArtifactStore) -> None:
        self._settings = settings
        self._store = store
        self._retry = RetryPolicy(
            max_retries=settings.provider_max_retries,
            initial_delay_ms=settings.provider_initial_retry_delay_ms,
        )

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def for_organization(self, organization_id: str) -> IModelProvider:
        """Resolve the provider for *organization_id* from its stored configuration."""
        organization = await self._store.get_organization(organization_id)
        config = organization.provider_config if organization else ProviderConfig()
        provider = self.build(config)
        logger.info(
            "provider_resolved",
            organization_id=organization_id,
            kind=config.provider.value,
            provider=provider.provider_name,
            embedding_model=provider.embedding_model,
        )
        return provider

    def build(self, config: ProviderConfig) -> IModelProvider:
        """Construct the provider described by *config*."""
        if config.provider == ProviderKind.BYOK:
            return self._build_byok(config)
        if config.provider == ProviderKind.SELF_HOSTED:
            return self._build_self_hosted(config)
        return self.build_managed(config.chat_model, config.embed_model)

    def build_managed(self, chat_model: str | None = None, embed_model: str | None = None) -> IModelProvider:
        """The managed Gemini backend with the service-wide key."""
        key = self._settings.gemini_api_key
        if not key:
            raise ConfigurationError(message="GEMINI_API_KEY not configured", provider_name="google-gemini")
        return self._gemini(key, chat_model, embed_model)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _build_byok(self, config: ProviderConfig) -> IModelProvider:
        if not config.encrypted_key:
            raise ConfigurationError(message="API key not configured for BYOK")
        key = self._decrypt(config.encrypted_key)

        if key.startswith("sk-ant-"):
            primary: IModelProvider = AnthropicProvider(
                api_key=key,
                chat_model=config.chat_model or self._settings.byok_anthropic_chat_model,
                retry_policy=self._retry,
                timeout=self._settings.provider_timeout_seconds,
            )
        elif key.startswith("sk-"):
            primary = OpenAICompatibleProvider(
                base_url=self._settings.openai_base_url,
                api_key=key,
                chat_model=config.chat_model or self._settings.byok_openai_chat_model,
                embedding_model=config.embed_model or self._settings.byok_openai_embedding_model,
                provider_name=OPENAI_PROVIDER_NAME,
                retry_policy=self._retry,
                timeout=self._settings.provider_timeout_seconds,
            )
        else:
            primary = self._gemini(key, config.chat_model, config.embed_model)
        return EmbeddingFallbackProvider(primary, self.build_managed)

    def _build_self_hosted(self, config: ProviderConfig) -> IModelProvider:
        key = (
            self._decrypt(config.encrypted_key)
            if config.encrypted_key
            else self._settings.self_hosted_placeholder_key
        )
        primary = OpenAICompatibleProvider(
            base_url=config.endpoint or self._settings.self_hosted_base_url,
            api_key=key,
            chat_model=config.chat_model or self._settings.self_hosted_chat_model,
            embedding_model=config.embed_model or self._settings.self_hosted_embedding_model,
            provider_name=SELF_HOSTED_PROVIDER_NAME,
            retry_policy=self._retry,
            timeout=self._settings.provider_timeout_seconds,
        )
        return EmbeddingFallbackProvider(primary, self.build_managed)

    def _gemini(self, api_key: str, chat_model: str | None, embed_model: str | None = None) -> GeminiProvider:
        return GeminiProvider(
            api_key=api_key,
            base_url=self._settings.gemini_base_url,
            chat_model=chat_model or self._settings.managed_chat_model,
            embedding_model=embed_model or self._settings.managed_embedding_model,
            retry_policy=self._retry,
            timeout=self._settings.provider_timeout_seconds,
            metadata_max_chars=self._settings.metadata_max_chars,
        )

    def _decrypt(self, encrypted_key: str) -> str:
        return KeyEncryptor(self._settings.encryption_key).decrypt(encrypted_key)
