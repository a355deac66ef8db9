"""Transport abstraction shared by every backend.

Architecture:
- Transport is the PROTOCOL (interface) the services depend on
- HTTPTransport talks to the networked backend (REST + server-sent events)
- IPCTransport talks to the embedded desktop backend (commands + event channels)
- DreamQuillClient accepts any Transport via constructor injection

Two operations only:
- request(): one non-streaming round trip, returns the parsed body
- stream():  starts a chat exchange and returns a StreamHandle at once;
             events are pulled from the handle until the backend finishes
             or the caller cancels
"""

from __future__ import annotations

from collections.abc import AsyncIterator, Callable, Mapping
from dataclasses import dataclass, field
from typing import Any, Generic, Literal, Protocol, TypeVar, runtime_checkable

from .errors import ParseError
from .events import StreamEvent

T = TypeVar("T")

HttpMethod = Literal["GET", "POST", "PUT", "DELETE"]
QueryValue = str | int | float | bool | None

_METHODS = ("GET", "POST", "PUT", "DELETE")

DEFAULT_STREAM_PATH = "/chat/sse"


@dataclass(frozen=True)
class RequestSpec(Generic[T]):
    """A plain request.

    ``path`` never contains the query string; use ``query``, where ``None``
    values are omitted. ``parse`` post-processes the decoded JSON body and
    should raise (ValueError, pydantic.ValidationError, ...) on payloads with
    the wrong shape.
    """

    method: HttpMethod
    path: str
    query: Mapping[str, QueryValue] | None = None
    body: Any = None
    parse: Callable[[Any], T] | None = field(default=None, compare=False)

    def __post_init__(self) -> None:
        if self.method not in _METHODS:
            raise ValueError(f"Unsupported method: {self.method}")
        if "?" in self.path:
            raise ValueError(f"Path must not include a query string: {self.path}")

    def present_query(self) -> dict[str, QueryValue]:
        """Query parameters with ``None`` values dropped."""
        if not self.query:
            return {}
        return {key: value for key, value in self.query.items() if value is not None}

    def apply_parse(self, data: Any) -> T:
        """Run ``parse`` on a decoded body, reporting failures as ParseError."""
        if self.parse is None:
            return data
        try:
            return self.parse(data)
        except (ValueError, TypeError, KeyError) as e:
            # pydantic.ValidationError is a ValueError
            raise ParseError(f"Unexpected response for {self.method} {self.path}: {e}") from e


@dataclass(frozen=True)
class StreamSpec:
    """A streaming chat request.

    ``path`` is only used by the networked transport; the IPC transport
    addresses the backend by command name.
    """

    prompt: str
    chat_id: int | None = None
    provider_id: int | None = None
    regen_message_id: int | None = None
    stream: bool = True  # False asks the backend for a single, complete chunk
    debug: bool = False  # True asks the backend for verbose log events
    path: str = DEFAULT_STREAM_PATH


@dataclass(frozen=True)
class StreamHandle:
    """Handle returned by ``Transport.stream``.

    ``events`` is finite and can only be iterated once. ``cancel()`` may be
    called any number of times, before, during or after iteration; events
    that were already buffered are still delivered.

    Usage:
        handle = transport.stream(StreamSpec(prompt="hi"))
        async for event in handle:
            ...
        handle.cancel()  # no-op after completion
    """

    events: AsyncIterator[StreamEvent]
    _cancel: Callable[[], None] = field(repr=False)
    stream_id: str | None = None

    def cancel(self) -> None:
        """Stop the stream. Never raises."""
        self._cancel()

    def __aiter__(self) -> AsyncIterator[StreamEvent]:
        return self.events


@runtime_checkable
class Transport(Protocol):
    """Protocol for SDK transports.

    Callers never know which backend is active; both adapters satisfy this
    protocol identically.
    """

    async def request(self, spec: RequestSpec[T]) -> T:
        """Perform one request and return the parsed response body.

        Raises:
            TransportError: If the backend reports a failure
            ParseError: If the body cannot be decoded into the expected shape
            UnsupportedRouteError: IPC transport only, unmapped method + path
        """
        ...

    def stream(self, spec: StreamSpec) -> StreamHandle:
        """Begin a streaming exchange. Never blocks the caller."""
        ...

    async def aclose(self) -> None:
        """Release connections or subprocesses owned by the transport."""
        ...
