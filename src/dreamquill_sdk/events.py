"""Stream event model.

Every streaming exchange, whichever transport carries it, is delivered to
callers as a sequence of these four event kinds:

- meta:  the backend bound the exchange to a chat (``chat_id``)
- chunk: a piece of assistant text
- log:   diagnostic line (``level`` is info, error or log)
- error: the backend reported a failure mid-stream

Example:
    async for event in client.chat.send("hi"):
        if isinstance(event, ChunkEvent):
            print(event.text, end="")
"""

from __future__ import annotations

from typing import Annotated, Literal

from pydantic import BaseModel, ConfigDict, Field

LogLevel = Literal["info", "error", "log"]


class _BaseStreamEvent(BaseModel):
    model_config = ConfigDict(frozen=True)


class MetaEvent(_BaseStreamEvent):
    """The exchange belongs to chat ``chat_id``."""

    type: Literal["meta"] = "meta"
    chat_id: int


class ChunkEvent(_BaseStreamEvent):
    """Incremental assistant output."""

    type: Literal["chunk"] = "chunk"
    text: str


class LogEvent(_BaseStreamEvent):
    """Diagnostic message from the backend or the transport."""

    type: Literal["log"] = "log"
    level: LogLevel = "log"
    message: str

    @classmethod
    def info(cls, message: str) -> LogEvent:
        return cls(level="info", message=message)

    @classmethod
    def error(cls, message: str) -> LogEvent:
        return cls(level="error", message=message)


class ErrorEvent(_BaseStreamEvent):
    """Backend-reported failure. Output received so far is still valid."""

    type: Literal["error"] = "error"
    message: str


StreamEvent = Annotated[
    MetaEvent | ChunkEvent | LogEvent | ErrorEvent,
    Field(discriminator="type"),
]
