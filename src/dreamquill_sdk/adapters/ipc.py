"""Transport over the embedded desktop backend.

Plain requests are routed to named backend commands (see routes.py).

Streaming multiplexes every chat stream over five shared channels:

    dq:meta   {"stream_id": "...", "data": {"chat_id": 7}}
    dq:chunk  {"stream_id": "...", "data": "Hel"}
    dq:log    {"stream_id": "...", "data": "request -> provider=..."}
    dq:error  {"stream_id": "...", "data": "upstream failed"}
    dq:end    {"stream_id": "..."}

If the host loses the backend (HOST_CLOSED_CHANNEL) every open stream ends
with an "IPC closed" log event.

Each stream gets its own StreamId and only accepts payloads carrying it,
so a stale or concurrent stream never leaks into another's sequence.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, TypeVar

from pydantic import AliasChoices, BaseModel, Field, ValidationError

from ..bridge import EventBridge
from ..config import ClientConfig
from ..errors import TransportError
from ..events import ChunkEvent, ErrorEvent, LogEvent, MetaEvent, StreamEvent
from ..ipc.host import HOST_CLOSED_CHANNEL, IPCHost
from ..transport import RequestSpec, StreamHandle, StreamSpec
from .routes import resolve_route

logger = logging.getLogger(__name__)

T = TypeVar("T")

BEGIN_STREAM_COMMAND = "dq_send_chat_stream"
CANCEL_STREAM_COMMAND = "dq_cancel_stream"

META_CHANNEL = "dq:meta"
CHUNK_CHANNEL = "dq:chunk"
LOG_CHANNEL = "dq:log"
ERROR_CHANNEL = "dq:error"
END_CHANNEL = "dq:end"

PayloadMapper = Callable[[Any], StreamEvent]


@dataclass(frozen=True)
class StreamId:
    """Correlation id of one IPC stream.

    Kept as its own type so it is never compared by accident with chat ids
    or other strings.
    """

    value: str

    @classmethod
    def new(cls) -> StreamId:
        return cls(f"stream_{uuid.uuid4().hex[:12]}")

    def matches(self, raw: Any) -> bool:
        """Check a wire ``stream_id`` against this id."""
        return isinstance(raw, str) and raw == self.value

    def __str__(self) -> str:
        return self.value


class ChannelPayload(BaseModel):
    """Envelope of every stream channel payload."""

    stream_id: str = Field(validation_alias=AliasChoices("stream_id", "streamId"))
    data: Any = None


class MetaData(BaseModel):
    chat_id: int


def _map_meta(data: Any) -> StreamEvent:
    return MetaEvent(chat_id=MetaData.model_validate(data).chat_id)


def _map_chunk(data: Any) -> StreamEvent:
    return ChunkEvent(text=str(data))


def _map_log(data: Any) -> StreamEvent:
    return LogEvent(level="log", message=str(data))


def _map_error(data: Any) -> StreamEvent:
    return ErrorEvent(message=str(data))


CHANNEL_MAPPERS: dict[str, PayloadMapper] = {
    META_CHANNEL: _map_meta,
    CHUNK_CHANNEL: _map_chunk,
    LOG_CHANNEL: _map_log,
    ERROR_CHANNEL: _map_error,
}


class IPCTransport:
    """Transport for the embedded desktop backend.

    Usage:
        transport = IPCTransport(StdioIPCHost(config))
        handle = transport.stream(StreamSpec(prompt="hi"))
        async for event in handle:
            ...
    """

    def __init__(self, host: IPCHost, config: ClientConfig | None = None):
        self.host = host
        self.config = config or ClientConfig(mode="ipc")

    async def request(self, spec: RequestSpec[T]) -> T:
        """Invoke the command routed from ``spec.method`` and ``spec.path``."""
        route = resolve_route(spec)
        logger.debug(f"{spec.method} {spec.path} -> {route.command}")
        result = await self.host.invoke(route.command, route.args)
        return spec.apply_parse(result)

    def stream(self, spec: StreamSpec) -> StreamHandle:
        """Start a correlated chat stream. Subscription starts on first iteration."""
        stream_id = StreamId.new()
        bridge = EventBridge(name=str(stream_id), idle_interval=self.config.idle_interval)
        session = _IPCStream(self.host, stream_id, spec, bridge)
        bridge.on_cancel(session.request_cancel)
        return StreamHandle(
            events=bridge.stream(session.open),
            _cancel=bridge.cancel,
            stream_id=str(stream_id),
        )

    async def aclose(self) -> None:
        """Close the host if it owns resources (subprocess)."""
        close = getattr(self.host, "aclose", None)
        if close is not None:
            await close()

    async def __aenter__(self) -> IPCTransport:
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.aclose()


class _IPCStream:
    """Subscriptions and remote begin/cancel calls for one stream."""

    def __init__(self, host: IPCHost, stream_id: StreamId, spec: StreamSpec, bridge: EventBridge):
        self._host = host
        self._stream_id = stream_id
        self._spec = spec
        self._bridge = bridge
        self._opening = False
        self._begun = False
        self._host_closed = False
        self._started = asyncio.Event()
        self._cancel_task: asyncio.Task[None] | None = None

    async def open(self) -> None:
        self._opening = True
        self._bridge.on_teardown(self._started.set)
        try:
            for channel, mapper in CHANNEL_MAPPERS.items():
                unlisten = await self._host.listen(channel, self._listener(channel, mapper))
                self._bridge.on_teardown(unlisten)
            unlisten = await self._host.listen(END_CHANNEL, self._on_end)
            self._bridge.on_teardown(unlisten)
            unlisten = await self._host.listen(HOST_CLOSED_CHANNEL, self._on_host_closed)
            self._bridge.on_teardown(unlisten)

            if self._bridge.ended:
                return

            try:
                await self._host.invoke(BEGIN_STREAM_COMMAND, self._begin_args())
                self._begun = True
                if self._host_closed:
                    self._close()
            except TransportError as e:
                logger.warning(f"[{self._stream_id}] failed to start stream: {e}")
                self._bridge.enqueue(ErrorEvent(message=e.text or str(e)))
                self._bridge.finish()
        finally:
            self._started.set()

    def _begin_args(self) -> dict[str, Any]:
        spec = self._spec
        return {
            "stream_id": str(self._stream_id),
            "prompt": spec.prompt,
            "chat_id": spec.chat_id,
            "provider_id": spec.provider_id,
            "regen_message_id": spec.regen_message_id,
            "stream": spec.stream,
            "debug": spec.debug,
        }

    def _accepts(self, payload: Any) -> ChannelPayload | None:
        try:
            envelope = ChannelPayload.model_validate(payload)
        except ValidationError:
            logger.debug(f"[{self._stream_id}] ignoring payload without stream id")
            return None
        if not self._stream_id.matches(envelope.stream_id):
            return None
        return envelope

    def _listener(self, channel: str, mapper: PayloadMapper) -> Callable[[Any], None]:
        def handle(payload: Any) -> None:
            envelope = self._accepts(payload)
            if envelope is None:
                return
            try:
                event = mapper(envelope.data)
            except (ValidationError, TypeError, ValueError) as e:
                event = LogEvent.error(f"{channel} parse error: {e}")
            self._bridge.enqueue(event)

        return handle

    def _on_end(self, payload: Any) -> None:
        if self._accepts(payload) is not None:
            self._bridge.finish()

    def _on_host_closed(self, payload: Any) -> None:
        # A pending begin settles later; its outcome decides how the stream ends
        if self._begun:
            self._close()
        else:
            self._host_closed = True

    def _close(self) -> None:
        logger.debug(f"[{self._stream_id}] IPC host closed")
        self._bridge.enqueue(LogEvent.info("IPC closed"))
        self._bridge.finish()

    def request_cancel(self) -> None:
        """Ask the backend to stop this stream, without waiting or raising."""
        if not self._opening or self._cancel_task is not None:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug(f"[{self._stream_id}] no running loop, skipping remote cancel")
            return
        self._cancel_task = loop.create_task(self._send_cancel())

    async def _send_cancel(self) -> None:
        await self._started.wait()
        if not self._begun:
            return
        try:
            await self._host.invoke(CANCEL_STREAM_COMMAND, {"stream_id": str(self._stream_id)})
            logger.debug(f"[{self._stream_id}] remote cancel sent")
        except Exception as e:
            logger.warning(f"[{self._stream_id}] remote cancel failed: {e}")
