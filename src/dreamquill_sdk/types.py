"""SDK type definitions.

Records returned by the chat and provider services. Missing (or null)
optional fields fall back to the backend defaults; a field of the wrong
structure fails validation.
"""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, Field, model_validator

ChatRole = Literal["user", "assistant", "system", "tool"]


class _Record(BaseModel):
    @model_validator(mode="before")
    @classmethod
    def _drop_nulls(cls, data: Any) -> Any:
        # null means "use the default" for every field that has one
        if isinstance(data, dict):
            required = {name for name, f in cls.model_fields.items() if f.is_required()}
            return {k: v for k, v in data.items() if v is not None or k in required}
        return data


class ProviderConfig(_Record):
    """Connection settings of one model provider."""

    name: str = ""
    provider: str = "openai"
    api_base: str = ""
    api_key: str = ""
    model: str = ""


class ProviderRecord(ProviderConfig):
    """A stored provider."""

    id: int
    is_default: bool = False


class ProviderState(_Record):
    """All providers plus the global provider settings."""

    providers: list[ProviderRecord] = Field(default_factory=list)
    default_provider_id: int | None = None
    telemetry_enabled: bool = False

    def default_provider(self) -> ProviderRecord | None:
        for record in self.providers:
            if record.id == self.default_provider_id:
                return record
        return None


class ChatSummary(_Record):
    """Chat list entry."""

    id: int
    title: str = ""
    provider_id: int | None = None


class StoredChatMessage(_Record):
    id: int
    role: ChatRole
    content: str = ""


class ChatMessagesPayload(_Record):
    """Messages of one chat, oldest first."""

    chat_id: int
    provider_id: int | None = None
    messages: list[StoredChatMessage] = Field(default_factory=list)


class HealthStatus(_Record):
    """Result of probing a provider by listing its models."""

    ok: bool = False
    provider_id: int = 0
    provider: str | None = None
    base: str | None = None
    model: str | None = None
    models: int | None = None  # Number of models the provider reported
    error: str | None = None


class BranchResult(_Record):
    """The chat created by branching."""

    chat_id: int
    title: str = ""


class ChatReply(BaseModel):
    """A whole streamed exchange, collected."""

    chat_id: int | None = None
    text: str = ""
    logs: list[str] = Field(default_factory=list)
