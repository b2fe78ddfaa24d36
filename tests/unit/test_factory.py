"""Unit tests for ModelProviderFactory dispatch."""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import pytest

from kbrag.config.settings import Settings
from kbrag.models.identity import Organization
from kbrag.models.provider import ProviderConfig, ProviderKind
from kbrag.providers.model.anthropic_provider import AnthropicProvider
from kbrag.providers.model.embedding_fallback import EmbeddingFallbackProvider
from kbrag.providers.model.factory import ModelProviderFactory
from kbrag.providers.model.gemini_provider import GeminiProvider
from kbrag.providers.model.openai_compat_provider import OpenAICompatibleProvider
from kbrag.utils.crypto import KeyEncryptor
from kbrag.utils.errors import ConfigurationError

ENCRYPTION_KEY = "e" * 32


def _settings(**overrides: object) -> Settings:
    defaults: dict[str, object] = {
        "gemini_api_key": "AIza-managed",
        "encryption_key": ENCRYPTION_KEY,
    }
    defaults.update(overrides)
    return Settings(_env_file=None, **defaults)


def _store(config: ProviderConfig | None) -> MagicMock:
    store = MagicMock()
    organization = Organization(id="org-1", provider_config=config) if config else None
    store.get_organization = AsyncMock(return_value=organization)
    return store


def _sealed(key: str) -> str:
    return KeyEncryptor(ENCRYPTION_KEY).encrypt(key)


class TestManaged:
    @pytest.mark.asyncio
    async def test_default_config_is_managed_gemini(self) -> None:
        factory = ModelProviderFactory(_settings(), _store(ProviderConfig()))

        provider = await factory.for_organization("org-1")

        assert isinstance(provider, GeminiProvider)
        assert provider.chat_model == "gemini-2.5-flash"
        assert provider.embedding_model == "text-embedding-004"

    @pytest.mark.asyncio
    async def test_unknown_organization_uses_managed(self) -> None:
        factory = ModelProviderFactory(_settings(), _store(None))
        assert isinstance(await factory.for_organization("missing"), GeminiProvider)

    def test_managed_without_key_is_configuration_error(self) -> None:
        factory = ModelProviderFactory(_settings(gemini_api_key=""), _store(None))
        with pytest.raises(ConfigurationError):
            factory.build(ProviderConfig())

    def test_managed_chat_model_override(self) -> None:
        factory = ModelProviderFactory(_settings(), _store(None))
        assert factory.build(ProviderConfig(chat_model="gemini-pro")).chat_model == "gemini-pro"

    def test_managed_embedding_model_override(self) -> None:
        factory = ModelProviderFactory(_settings(), _store(None))
        provider = factory.build(ProviderConfig(embed_model="gemini-embedding-001"))
        assert provider.embedding_model == "gemini-embedding-001"


class TestByok:
    @pytest.mark.parametrize(
        ("key", "expected_cls", "provider_name"),
        [
            ("sk-ant-abc123", AnthropicProvider, "anthropic"),
            ("sk-proj-abc123", OpenAICompatibleProvider, "openai"),
            ("AIza-org-key", GeminiProvider, "google-gemini"),
        ],
    )
    def test_key_prefix_selects_backend(self, key: str, expected_cls: type, provider_name: str) -> None:
        factory = ModelProviderFactory(_settings(), _store(None))

        provider = factory.build(ProviderConfig(provider=ProviderKind.BYOK, encrypted_key=_sealed(key)))

        assert isinstance(provider, EmbeddingFallbackProvider)
        assert isinstance(provider.primary, expected_cls)
        assert provider.provider_name == provider_name

    def test_missing_key(self) -> None:
        factory = ModelProviderFactory(_settings(), _store(None))
        with pytest.raises(ConfigurationError):
            factory.build(ProviderConfig(provider=ProviderKind.BYOK))

    def test_undecryptable_key(self) -> None:
        factory = ModelProviderFactory(_settings(), _store(None))
        token = KeyEncryptor("x" * 32).encrypt("sk-abc")
        with pytest.raises(ConfigurationError):
            factory.build(ProviderConfig(provider=ProviderKind.BYOK, encrypted_key=token))

    def test_byok_does_not_need_managed_key_up_front(self) -> None:
        factory = ModelProviderFactory(_settings(gemini_api_key=""), _store(None))
        provider = factory.build(
            ProviderConfig(provider=ProviderKind.BYOK, encrypted_key=_sealed("sk-proj-abc"))
        )
        assert provider.embedding_model == "text-embedding-3-small"

    def test_gemini_key_uses_configured_models(self) -> None:
        factory = ModelProviderFactory(_settings(), _store(None))

        provider = factory.build(
            ProviderConfig(
                provider=ProviderKind.BYOK,
                encrypted_key=_sealed("AIza-org-key"),
                chat_model="gemini-2.5-pro",
                embed_model="gemini-embedding-001",
            )
        )

        assert provider.chat_model == "gemini-2.5-pro"
        assert provider.embedding_model == "gemini-embedding-001"


class TestSelfHosted:
    def test_defaults_and_placeholder_key(self) -> None:
        factory = ModelProviderFactory(_settings(), _store(None))

        provider = factory.build(ProviderConfig(provider=ProviderKind.SELF_HOSTED))

        assert isinstance(provider, EmbeddingFallbackProvider)
        assert provider.provider_name == "ollama-olla"
        assert provider.chat_model == "llama3.3:70b"
        assert provider.embedding_model == "nomic-embed-text"

    def test_configured_models(self) -> None:
        factory = ModelProviderFactory(_settings(), _store(None))

        provider = factory.build(
            ProviderConfig(
                provider="self_hosted",
                endpoint="http://gpu-box:11434/v1",
                chat_model="qwen2.5",
                embed_model="bge-m3",
            )
        )

        assert provider.chat_model == "qwen2.5"
        assert provider.embedding_model == "bge-m3"
