"""Unit tests for the networked transport.

The backend is faked with httpx.MockTransport; SSE bodies are plain text,
or an async byte stream when a test needs the connection to stay open.
"""

from __future__ import annotations

import asyncio
import json
from collections.abc import AsyncIterator
from typing import Any

import httpx
import pytest

from dreamquill_sdk.adapters.http import HTTPTransport
from dreamquill_sdk.config import ClientConfig
from dreamquill_sdk.errors import ParseError, TransportError
from dreamquill_sdk.events import ChunkEvent, ErrorEvent, LogEvent, MetaEvent
from dreamquill_sdk.transport import RequestSpec, StreamSpec, Transport

SSE_HEADERS = {"content-type": "text/event-stream"}


def sse_response(body: str) -> httpx.Response:
    return httpx.Response(200, headers=SSE_HEADERS, text=body)


# =============================================================================
# URL building
# =============================================================================


class TestBuildUrl:
    """Base URL + base path + path, with encoded query."""

    def test_joins_base_url_and_path(self) -> None:
        transport = HTTPTransport(ClientConfig(base_url="http://host:5173/"))
        assert str(transport.build_url("/chats")) == "http://host:5173/api/chats"

    def test_custom_base_path(self) -> None:
        transport = HTTPTransport(ClientConfig(base_url="http://host", base_path="/v2/"))
        assert str(transport.build_url("/models")) == "http://host/v2/models"

    def test_query_is_encoded_and_none_omitted(self) -> None:
        transport = HTTPTransport(ClientConfig(base_url="http://host"))
        url = transport.build_url("/chat/sse", {"prompt": "a b&c=d", "chat_id": 3, "x": None})

        assert url.params["prompt"] == "a b&c=d"
        assert url.params["chat_id"] == "3"
        assert "x" not in url.params
        assert "&c=d" not in str(url)

    def test_booleans_render_lowercase(self) -> None:
        transport = HTTPTransport(ClientConfig(base_url="http://host"))
        url = transport.build_url("/x", {"on": True, "off": False})
        assert url.params["on"] == "true"
        assert url.params["off"] == "false"

    def test_satisfies_transport_protocol(self) -> None:
        assert isinstance(HTTPTransport(), Transport)


# =============================================================================
# Plain requests
# =============================================================================


class TestRequest:
    """One round trip per request; failures are raised once."""

    @pytest.mark.asyncio
    async def test_get_returns_decoded_body(self, make_http_transport) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"chats": []})

        transport = make_http_transport(handler)
        result = await transport.request(RequestSpec("GET", "/chats"))

        assert result == {"chats": []}
        assert seen[0].method == "GET"
        assert seen[0].url.path == "/api/chats"
        assert seen[0].content == b""

    @pytest.mark.asyncio
    async def test_body_is_sent_as_json(self, make_http_transport) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"id": 1, "title": "New"})

        transport = make_http_transport(handler)
        await transport.request(RequestSpec("PUT", "/chats/1", body={"title": "New"}))

        assert json.loads(seen[0].content) == {"title": "New"}
        assert seen[0].headers["content-type"] == "application/json"

    @pytest.mark.asyncio
    async def test_query_parameters_are_sent(self, make_http_transport) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json=["gpt-4o"])

        transport = make_http_transport(handler)
        await transport.request(RequestSpec("GET", "/models", query={"provider_id": 2}))

        assert seen[0].url.params["provider_id"] == "2"

    @pytest.mark.asyncio
    async def test_non_success_status_raises_transport_error(self, make_http_transport) -> None:
        transport = make_http_transport(lambda request: httpx.Response(404, text="not found"))

        with pytest.raises(TransportError) as exc_info:
            await transport.request(RequestSpec("GET", "/chats/9/messages"))

        assert str(exc_info.value) == "HTTP 404: not found"
        assert exc_info.value.status == 404
        assert exc_info.value.text == "not found"

    @pytest.mark.asyncio
    async def test_network_failure_raises_transport_error(self, make_http_transport) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        transport = make_http_transport(handler)

        with pytest.raises(TransportError) as exc_info:
            await transport.request(RequestSpec("GET", "/providers"))

        assert exc_info.value.status is None
        assert isinstance(exc_info.value.__cause__, httpx.ConnectError)

    @pytest.mark.asyncio
    async def test_invalid_json_raises_parse_error(self, make_http_transport) -> None:
        transport = make_http_transport(lambda request: httpx.Response(200, text="<html>"))

        with pytest.raises(ParseError):
            await transport.request(RequestSpec("GET", "/providers"))

    @pytest.mark.asyncio
    async def test_parse_transform_is_applied(self, make_http_transport) -> None:
        transport = make_http_transport(lambda request: httpx.Response(200, json={"n": 2}))

        result = await transport.request(RequestSpec("GET", "/x", parse=lambda d: d["n"] * 10))

        assert result == 20

    @pytest.mark.asyncio
    async def test_parse_failure_raises_parse_error(self, make_http_transport) -> None:
        transport = make_http_transport(lambda request: httpx.Response(200, json={}))

        with pytest.raises(ParseError, match="GET /x"):
            await transport.request(RequestSpec("GET", "/x", parse=lambda d: d["missing"]))

    @pytest.mark.asyncio
    async def test_request_is_attempted_once(self, make_http_transport) -> None:
        calls: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            return httpx.Response(503, text="busy")

        transport = make_http_transport(handler)
        with pytest.raises(TransportError):
            await transport.request(RequestSpec("GET", "/providers"))

        assert len(calls) == 1


# =============================================================================
# Streaming
# =============================================================================


class TestStreamQuery:
    """The stream request carries the chat parameters."""

    @pytest.mark.asyncio
    async def test_default_query(self, make_http_transport, collect) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return sse_response("")

        transport = make_http_transport(handler)
        await collect(transport.stream(StreamSpec(prompt="hello world")))

        request = seen[0]
        assert request.method == "GET"
        assert request.url.path == "/api/chat/sse"
        assert request.headers["accept"] == "text/event-stream"
        assert dict(request.url.params) == {"prompt": "hello world"}

    @pytest.mark.asyncio
    async def test_full_query(self, make_http_transport, collect) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return sse_response("")

        transport = make_http_transport(handler)
        spec = StreamSpec(
            prompt="again",
            chat_id=3,
            provider_id=2,
            regen_message_id=11,
            stream=False,
            debug=True,
        )
        await collect(transport.stream(spec))

        assert dict(seen[0].url.params) == {
            "prompt": "again",
            "chat_id": "3",
            "provider_id": "2",
            "regen_message_id": "11",
            "stream": "false",
            "debug": "true",
        }

    @pytest.mark.asyncio
    async def test_connection_opens_on_first_iteration(self, make_http_transport, collect) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return sse_response("")

        transport = make_http_transport(handler)
        handle = transport.stream(StreamSpec(prompt="hi"))
        await asyncio.sleep(0.01)
        assert seen == []

        await collect(handle)
        assert len(seen) == 1


class TestStreamEvents:
    """Frame -> event mapping."""

    @pytest.mark.asyncio
    async def test_full_exchange(self, make_http_transport, collect, sse) -> None:
        body = sse(
            ("meta", '{"chat_id": 7}'),
            (None, "Hel"),
            (None, "lo"),
            ("log", "request -> provider=1"),
        )
        transport = make_http_transport(lambda request: sse_response(body))

        events = await collect(transport.stream(StreamSpec(prompt="hi")))

        assert events == [
            MetaEvent(chat_id=7),
            ChunkEvent(text="Hel"),
            ChunkEvent(text="lo"),
            LogEvent(level="log", message="request -> provider=1"),
            LogEvent(level="info", message="SSE closed"),
        ]

    @pytest.mark.asyncio
    async def test_multiline_chunk(self, make_http_transport, collect, sse) -> None:
        transport = make_http_transport(lambda request: sse_response(sse((None, "a\nb"))))

        events = await collect(transport.stream(StreamSpec(prompt="hi")))

        assert events[0] == ChunkEvent(text="a\nb")

    @pytest.mark.asyncio
    async def test_error_frame_ends_stream(self, make_http_transport, collect, sse) -> None:
        body = sse((None, "partial"), ("error", "upstream failed"), (None, "never"))
        transport = make_http_transport(lambda request: sse_response(body))

        events = await collect(transport.stream(StreamSpec(prompt="hi")))

        assert events == [ChunkEvent(text="partial"), ErrorEvent(message="upstream failed")]

    @pytest.mark.asyncio
    async def test_empty_error_frame_is_a_close(self, make_http_transport, collect) -> None:
        body = "data: x\n\nevent: error\ndata:\n\ndata: never\n\n"
        transport = make_http_transport(lambda request: sse_response(body))

        events = await collect(transport.stream(StreamSpec(prompt="hi")))

        assert events == [ChunkEvent(text="x"), LogEvent.info("SSE closed")]

    @pytest.mark.asyncio
    async def test_malformed_meta_is_reported_and_stream_continues(
        self, make_http_transport, collect, sse
    ) -> None:
        body = sse(("meta", "not json"), ("meta", '{"chat_id": "seven"}'), (None, "ok"))
        transport = make_http_transport(lambda request: sse_response(body))

        events = await collect(transport.stream(StreamSpec(prompt="hi")))

        assert [e.type for e in events] == ["log", "log", "chunk", "log"]
        assert events[0].level == "error"
        assert events[0].message.startswith("meta parse error")
        assert events[1].message.startswith("meta parse error")
        assert events[2] == ChunkEvent(text="ok")

    @pytest.mark.asyncio
    async def test_unknown_frames_are_ignored(self, make_http_transport, collect, sse) -> None:
        body = sse(("progress", "50%"), (None, "x"))
        transport = make_http_transport(lambda request: sse_response(body))

        events = await collect(transport.stream(StreamSpec(prompt="hi")))

        assert events == [ChunkEvent(text="x"), LogEvent.info("SSE closed")]

    @pytest.mark.asyncio
    async def test_error_status_becomes_error_event(self, make_http_transport, collect) -> None:
        transport = make_http_transport(lambda request: httpx.Response(500, text="kaput"))

        events = await collect(transport.stream(StreamSpec(prompt="hi")))

        assert events == [ErrorEvent(message="HTTP 500: kaput")]

    @pytest.mark.asyncio
    async def test_connection_failure_is_a_close(self, make_http_transport, collect) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        transport = make_http_transport(handler)

        events = await collect(transport.stream(StreamSpec(prompt="hi")))

        assert len(events) == 1
        assert events[0].type == "log"
        assert events[0].level == "info"
        assert events[0].message.startswith("SSE closed: ")
        assert "connection refused" in events[0].message


class TestStreamCancel:
    """Cancelling stops delivery and closes the connection."""

    @pytest.mark.asyncio
    async def test_cancel_before_iteration_never_connects(
        self, make_http_transport, collect
    ) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return sse_response("data: x\n\n")

        transport = make_http_transport(handler)
        handle = transport.stream(StreamSpec(prompt="hi"))
        handle.cancel()

        assert await collect(handle) == []
        assert seen == []

    @pytest.mark.asyncio
    async def test_cancel_mid_stream(self, make_http_transport) -> None:
        release = asyncio.Event()

        async def body() -> AsyncIterator[bytes]:
            yield b"data: first\n\n"
            await release.wait()
            yield b"data: second\n\n"

        transport = make_http_transport(
            lambda request: httpx.Response(200, headers=SSE_HEADERS, content=body())
        )
        handle = transport.stream(StreamSpec(prompt="hi"))

        async def consume() -> list[Any]:
            received = []
            async for event in handle:
                received.append(event)
                handle.cancel()
            return received

        events = await asyncio.wait_for(consume(), timeout=2.0)
        release.set()

        assert events == [ChunkEvent(text="first")]
        handle.cancel()

    @pytest.mark.asyncio
    async def test_cancel_after_completion_is_noop(
        self, make_http_transport, collect, sse
    ) -> None:
        transport = make_http_transport(lambda request: sse_response(sse((None, "x"))))
        handle = transport.stream(StreamSpec(prompt="hi"))

        events = await collect(handle)
        handle.cancel()
        handle.cancel()

        assert events[-1] == LogEvent.info("SSE closed")

    @pytest.mark.asyncio
    async def test_streams_are_independent(self, make_http_transport, collect) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return sse_response(f"data: {request.url.params['prompt']}\n\n")

        transport = make_http_transport(handler)
        first = transport.stream(StreamSpec(prompt="one"))
        second = transport.stream(StreamSpec(prompt="two"))
        first.cancel()

        assert await collect(first) == []
        assert (await collect(second))[0] == ChunkEvent(text="two")


class TestLifecycle:
    """Client ownership."""

    @pytest.mark.asyncio
    async def test_owned_client_is_closed(self) -> None:
        transport = HTTPTransport(ClientConfig())
        client = transport.client

        await transport.aclose()

        assert client.is_closed

    @pytest.mark.asyncio
    async def test_injected_client_is_left_open(self) -> None:
        client = httpx.AsyncClient()
        async with HTTPTransport(ClientConfig(), client=client):
            pass

        assert not client.is_closed
        await client.aclose()
