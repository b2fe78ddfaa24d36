"""Model-provider configuration and structured provider outputs."""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


class ProviderKind(str, Enum):  # noqa: UP042
    """Backend families an organization can select."""

    MANAGED = "managed"
    BYOK = "byok"
    SELF_HOSTED = "self_hosted"


class ProviderConfig(BaseModel):
    """Per-organization provider selection.

    Stored as JSON on the organization record.  Unknown ``provider`` strings
    are coerced to ``managed`` rather than rejected, so a bad value never
    locks an organization out of the assistant.
    """

    model_config = ConfigDict(frozen=True)

    provider: ProviderKind = ProviderKind.MANAGED
    endpoint: str | None = Field(default=None, description="Base URL for self-hosted backends.")
    encrypted_key: str | None = Field(default=None, description="AES-GCM encrypted API key.")
    chat_model: str | None = None
    embed_model: str | None = None

    @field_validator("provider", mode="before")
    @classmethod
    def _unknown_to_managed(cls, value: Any) -> Any:
        if isinstance(value, ProviderKind):
            return value
        try:
            return ProviderKind(value)
        except ValueError:
            return ProviderKind.MANAGED


class DocumentMetadata(BaseModel):
    """AI-generated descriptive metadata for an uploaded document."""

    model_config = ConfigDict(frozen=True)

    title: str = Field(max_length=80)
    summary: str
    tags: list[str] = Field(default_factory=list)
    language: str = Field(default="id", description="'id', 'en' or 'mixed'.")
    doc_type: str = Field(
        default="other",
        description="'sop', 'policy', 'guide', 'report', 'regulation' or 'other'.",
    )


class ChatMessage(BaseModel):
    """One turn of conversation history."""

    model_config = ConfigDict(frozen=True)

    role: str = Field(description="'user' or 'assistant'.")
    content: str
