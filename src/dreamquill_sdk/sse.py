"""Server-sent events frame parser.

Turns the text lines of an ``text/event-stream`` response into frames::

    event: meta
    data: {"chat_id": 7}

    data: Hello

yields ``SSEFrame(event="meta", data='{"chat_id": 7}')`` then
``SSEFrame(event="message", data="Hello")``.
"""

from __future__ import annotations

from collections.abc import AsyncIterable, AsyncIterator
from dataclasses import dataclass

DEFAULT_EVENT = "message"


@dataclass(frozen=True)
class SSEFrame:
    """One dispatched event-stream frame.

    ``id`` and ``retry`` are parsed so the grammar is complete; the adapters
    never reconnect and do not read them.
    """

    event: str = DEFAULT_EVENT
    data: str = ""
    id: str | None = None
    retry: int | None = None


async def iter_sse_frames(lines: AsyncIterable[str]) -> AsyncIterator[SSEFrame]:
    """Parse event-stream lines (without line terminators) into frames.

    A frame is dispatched on a blank line if it carried at least one
    ``data`` field. Comment lines (leading ``:``) and unknown fields are
    ignored. An unterminated frame at end of stream is discarded.
    """
    event = ""
    data: list[str] = []
    last_id: str | None = None
    retry: int | None = None

    async for raw in lines:
        line = raw.rstrip("\r\n")

        if not line:
            if data:
                yield SSEFrame(
                    event=event or DEFAULT_EVENT,
                    data="\n".join(data),
                    id=last_id,
                    retry=retry,
                )
            event = ""
            data = []
            continue

        if line.startswith(":"):
            continue

        name, sep, value = line.partition(":")
        if sep and value.startswith(" "):
            value = value[1:]

        if name == "event":
            event = value
        elif name == "data":
            data.append(value)
        elif name == "id":
            if "\x00" not in value:
                last_id = value
        elif name == "retry":
            if value.isdigit():
                retry = int(value)
