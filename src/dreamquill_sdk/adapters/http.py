"""Transport over HTTP REST + SSE.

Plain requests map 1:1 to REST endpoints under ``config.base_path``:
- GET/POST /providers, PUT/DELETE /providers/{id}, POST /providers/{id}/select
- GET /chats, GET /chats/{id}/messages, PUT/DELETE /chats/{id}, POST /chats/{id}/branch
- GET /models, GET /health, POST /health/preview

Chat streaming uses one long-lived ``GET /chat/sse`` connection. The
backend sends named frames:

    event: meta     data: {"chat_id": 7}
    event: log      data: request -> provider=...
    event: error    data: upstream failed
    (unnamed)       data: <assistant text chunk>
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
from collections.abc import Callable
from typing import Any, TypeVar

import httpx
from pydantic import BaseModel, ValidationError

from ..bridge import EventBridge
from ..config import ClientConfig
from ..errors import ParseError, TransportError
from ..events import ChunkEvent, ErrorEvent, LogEvent, MetaEvent
from ..sse import DEFAULT_EVENT, iter_sse_frames
from ..transport import QueryValue, RequestSpec, StreamHandle, StreamSpec

logger = logging.getLogger(__name__)

T = TypeVar("T")

FrameListener = Callable[[str], None]

CLOSED_MESSAGE = "SSE closed"


class MetaFrame(BaseModel):
    """Body of a ``meta`` frame."""

    chat_id: int


def _query_value(value: QueryValue) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


class HTTPTransport:
    """Transport for the networked backend.

    Usage:
        async with HTTPTransport(ClientConfig(base_url="http://127.0.0.1:5173")) as t:
            state = await t.request(RequestSpec("GET", "/providers"))
            async for event in t.stream(StreamSpec(prompt="hi")):
                print(event)
    """

    def __init__(
        self,
        config: ClientConfig | None = None,
        client: httpx.AsyncClient | None = None,
    ):
        self.config = config or ClientConfig(mode="http")
        self._client = client
        self._owns_client = client is None
        self._base = self.config.base_path.rstrip("/")

    @property
    def client(self) -> httpx.AsyncClient:
        """The underlying httpx client, created on first use."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(self.config.timeout, read=None),  # No read timeout for SSE
            )
        return self._client

    def build_url(self, path: str, query: dict[str, QueryValue] | None = None) -> httpx.URL:
        """Resolve ``path`` against the base URL and path, encoding ``query``.

        ``None`` query values are omitted.
        """
        base_url = self.config.base_url.rstrip("/")
        params = {k: _query_value(v) for k, v in (query or {}).items() if v is not None}
        return httpx.URL(f"{base_url}{self._base}{path}", params=params)

    async def request(self, spec: RequestSpec[T]) -> T:
        """Perform one HTTP round trip."""
        url = self.build_url(spec.path, spec.present_query())
        logger.debug(f"{spec.method} {url}")

        try:
            response = await self.client.request(
                spec.method,
                url,
                json=spec.body,
                headers={"content-type": "application/json"},
                timeout=self.config.timeout,
            )
        except httpx.HTTPError as e:
            raise TransportError(f"Request failed: {spec.method} {spec.path}: {e}") from e

        if response.is_error:
            raise TransportError.from_status(response.status_code, response.text)

        try:
            data = response.json()
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise ParseError(f"Invalid JSON from {spec.method} {spec.path}: {e}") from e

        return spec.apply_parse(data)

    def stream(self, spec: StreamSpec) -> StreamHandle:
        """Open the chat SSE stream. The connection starts on first iteration."""
        url = self.build_url(
            spec.path,
            {
                "prompt": spec.prompt,
                "chat_id": spec.chat_id,
                "provider_id": spec.provider_id,
                "regen_message_id": spec.regen_message_id,
                "stream": "false" if spec.stream is False else None,
                "debug": "true" if spec.debug else None,
            },
        )
        bridge = EventBridge(name="sse", idle_interval=self.config.idle_interval)
        connection = _SSEConnection(self.client, url, bridge)
        return StreamHandle(events=bridge.stream(connection.open), _cancel=bridge.cancel)

    async def aclose(self) -> None:
        """Close the HTTP client if this transport created it."""
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> HTTPTransport:
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.aclose()


class _SSEConnection:
    """One SSE connection feeding one bridge.

    A reader task parses frames and dispatches them to listeners keyed by
    frame name. Cancelling the bridge cancels the reader, which closes the
    response.
    """

    def __init__(self, client: httpx.AsyncClient, url: httpx.URL, bridge: EventBridge):
        self._client = client
        self._url = url
        self._bridge = bridge
        self._listeners: dict[str, FrameListener] = {}
        self._reader_task: asyncio.Task[None] | None = None

    async def open(self) -> None:
        self._listeners.update(
            {
                "meta": self._on_meta,
                "log": self._on_log,
                "error": self._on_error,
                DEFAULT_EVENT: self._on_message,
            }
        )
        self._bridge.on_teardown(self._listeners.clear)

        self._reader_task = asyncio.create_task(self._read_loop())
        self._bridge.on_cancel(self._reader_task.cancel)
        self._bridge.on_teardown(self._stop_reader)

    async def _stop_reader(self) -> None:
        if self._reader_task is None:
            return
        self._reader_task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._reader_task
        self._reader_task = None

    async def _read_loop(self) -> None:
        try:
            async with self._client.stream(
                "GET", self._url, headers={"Accept": "text/event-stream"}
            ) as response:
                if response.is_error:
                    body = (await response.aread()).decode("utf-8", errors="replace")
                    self._bridge.enqueue(ErrorEvent(message=f"HTTP {response.status_code}: {body}"))
                    return

                logger.debug(f"SSE connected: {self._url}")
                async for frame in iter_sse_frames(response.aiter_lines()):
                    listener = self._listeners.get(frame.event)
                    if listener is None:
                        logger.debug(f"Ignoring SSE frame: {frame.event}")
                        continue
                    listener(frame.data)
                    if self._bridge.ended:
                        return

            # Peer closed the connection
            self._bridge.enqueue(LogEvent.info(CLOSED_MESSAGE))
        except httpx.HTTPError as e:
            logger.warning(f"SSE connection lost: {e}")
            self._bridge.enqueue(LogEvent.info(f"{CLOSED_MESSAGE}: {e}"))
        finally:
            self._bridge.finish()

    def _on_meta(self, data: str) -> None:
        try:
            meta = MetaFrame.model_validate_json(data or "{}")
        except ValidationError as e:
            self._bridge.enqueue(LogEvent.error(f"meta parse error: {e}"))
            return
        self._bridge.enqueue(MetaEvent(chat_id=meta.chat_id))

    def _on_log(self, data: str) -> None:
        self._bridge.enqueue(LogEvent(level="log", message=data))

    def _on_error(self, data: str) -> None:
        if data:
            self._bridge.enqueue(ErrorEvent(message=data))
        else:
            self._bridge.enqueue(LogEvent.info(CLOSED_MESSAGE))
        self._bridge.finish()

    def _on_message(self, data: str) -> None:
        self._bridge.enqueue(ChunkEvent(text=data))
