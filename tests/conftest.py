"""Pytest configuration and shared fixtures."""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from typing import Any

import httpx
import pytest

from dreamquill_sdk.adapters.http import HTTPTransport
from dreamquill_sdk.adapters.ipc import IPCTransport
from dreamquill_sdk.config import ClientConfig
from dreamquill_sdk.events import StreamEvent
from dreamquill_sdk.ipc.host import InMemoryIPCHost
from dreamquill_sdk.transport import StreamHandle

BASE_URL = "http://testserver"


async def collect_events(handle: StreamHandle, timeout: float = 2.0) -> list[StreamEvent]:
    """Drain a stream handle, failing the test if it never finishes."""

    async def drain() -> list[StreamEvent]:
        return [event async for event in handle]

    return await asyncio.wait_for(drain(), timeout=timeout)


def sse_body(*frames: tuple[str | None, str]) -> str:
    """Render (event name, data) pairs as an event-stream body."""
    lines: list[str] = []
    for name, data in frames:
        if name:
            lines.append(f"event: {name}")
        lines.extend(f"data: {line}" for line in data.split("\n"))
        lines.append("")
    return "\n".join(lines) + "\n"


class StreamRecorder:
    """Begin-stream handler for InMemoryIPCHost recording every call.

    ``script`` is called with (host, stream_id) while the begin command is
    being handled and may emit events synchronously.
    """

    def __init__(
        self,
        host: InMemoryIPCHost,
        script: Callable[[InMemoryIPCHost, str], None] | None = None,
    ):
        self.host = host
        self.script = script
        self.calls: list[dict[str, Any]] = []

    def __call__(self, args: dict[str, Any]) -> None:
        self.calls.append(args)
        if self.script is not None:
            self.script(self.host, args["stream_id"])

    @property
    def stream_ids(self) -> list[str]:
        return [call["stream_id"] for call in self.calls]


@pytest.fixture
def config() -> ClientConfig:
    """Config with a short idle interval to keep stream tests fast."""
    return ClientConfig(base_url=BASE_URL, idle_interval=0.005, timeout=5.0)


@pytest.fixture
def ipc_host() -> InMemoryIPCHost:
    return InMemoryIPCHost()


@pytest.fixture
def ipc_transport(ipc_host: InMemoryIPCHost, config: ClientConfig) -> IPCTransport:
    return IPCTransport(ipc_host, config)


@pytest.fixture
def make_http_transport(
    config: ClientConfig,
) -> Callable[[Callable[[httpx.Request], Any]], HTTPTransport]:
    """Build an HTTPTransport whose backend is ``handler``."""

    def factory(handler: Callable[[httpx.Request], Any]) -> HTTPTransport:
        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        return HTTPTransport(config, client=client)

    return factory


@pytest.fixture
def collect() -> Callable[..., Any]:
    return collect_events


@pytest.fixture
def sse() -> Callable[..., str]:
    return sse_body


@pytest.fixture
def recorder(ipc_host: InMemoryIPCHost) -> Callable[..., StreamRecorder]:
    """Install a StreamRecorder as the host's begin-stream command."""

    def install(script: Callable[[InMemoryIPCHost, str], None] | None = None) -> StreamRecorder:
        stream_recorder = StreamRecorder(ipc_host, script)
        ipc_host.register("dq_send_chat_stream", stream_recorder)
        return stream_recorder

    return install
