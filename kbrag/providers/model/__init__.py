"""Model provider adapters and the per-organization factory."""

from kbrag.providers.model.anthropic_provider import AnthropicProvider
from kbrag.providers.model.base import RetryPolicy
from kbrag.providers.model.embedding_fallback import EmbeddingFallbackProvider
from kbrag.providers.model.factory import ModelProviderFactory
from kbrag.providers.model.gemini_provider import GeminiProvider
from kbrag.providers.model.openai_compat_provider import OpenAICompatibleProvider

__all__ = [
    "AnthropicProvider",
    "EmbeddingFallbackProvider",
    "GeminiProvider",
    "ModelProviderFactory",
    "OpenAICompatibleProvider",
    "RetryPolicy",
]
