"""IPC host interface and in-memory implementation.

The embedded desktop backend is reached through a host object offering two
primitives:

- invoke(command, args): call a named backend procedure
- listen(channel, handler): subscribe to a named event channel, returning
  a function that removes the subscription

Hosts fire HOST_CLOSED_CHANNEL (payload None) when their connection to the
backend is lost.

IPCTransport is written against the IPCHost protocol only.
"""

from __future__ import annotations

import inspect
import logging
from collections.abc import Awaitable, Callable
from typing import Any, Protocol, runtime_checkable

from ..errors import TransportError

logger = logging.getLogger(__name__)

Listener = Callable[[Any], None]
Unlisten = Callable[[], None]
CommandHandler = Callable[[dict[str, Any]], Any | Awaitable[Any]]

HOST_CLOSED_CHANNEL = "ipc:closed"


@runtime_checkable
class IPCHost(Protocol):
    """Protocol for embedded backend hosts."""

    async def invoke(self, command: str, args: dict[str, Any] | None = None) -> Any:
        """Call a backend command and return its result.

        Raises:
            TransportError: If the backend reports a failure
        """
        ...

    async def listen(self, channel: str, handler: Listener) -> Unlisten:
        """Subscribe ``handler`` to ``channel``.

        Returns:
            Idempotent function removing the subscription
        """
        ...


class ListenerRegistry:
    """Channel -> handlers table shared by the host implementations."""

    def __init__(self) -> None:
        self._listeners: dict[str, list[Listener]] = {}

    def add(self, channel: str, handler: Listener) -> Unlisten:
        self._listeners.setdefault(channel, []).append(handler)
        removed = False

        def unlisten() -> None:
            nonlocal removed
            if removed:
                return
            removed = True
            handlers = self._listeners.get(channel, [])
            if handler in handlers:
                handlers.remove(handler)
            if not handlers:
                self._listeners.pop(channel, None)

        return unlisten

    def dispatch(self, channel: str, payload: Any) -> int:
        """Call every handler of ``channel``. Returns the number called."""
        handlers = list(self._listeners.get(channel, []))
        for handler in handlers:
            try:
                handler(payload)
            except Exception as e:
                logger.warning(f"Listener for {channel} failed: {e}")
        return len(handlers)

    def count(self, channel: str) -> int:
        return len(self._listeners.get(channel, []))

    def clear(self) -> None:
        self._listeners.clear()


class InMemoryIPCHost:
    """In-process host for embedding and tests.

    No I/O: commands are answered by registered handlers and events are
    fired synchronously with ``emit``.

    Usage:
        host = InMemoryIPCHost()
        host.set_response("dq_list_chats", [{"id": 1, "title": "Hi", "provider_id": None}])
        host.register("dq_send_chat_stream", lambda args: streams.append(args["stream_id"]))

        client = DreamQuillClient(IPCTransport(host))
        chats = await client.chat.list_chats()

        host.emit("dq:chunk", {"stream_id": streams[0], "data": "Hello"})
        assert host.invocations[0] == ("dq_list_chats", {})
    """

    def __init__(self) -> None:
        self._commands: dict[str, CommandHandler] = {}
        self._listeners = ListenerRegistry()
        self._invocations: list[tuple[str, dict[str, Any]]] = []

    @property
    def invocations(self) -> list[tuple[str, dict[str, Any]]]:
        """Get all (command, args) pairs invoked so far."""
        return self._invocations.copy()

    def register(self, command: str, handler: CommandHandler) -> None:
        """Answer ``command`` with ``handler(args)`` (sync or async)."""
        self._commands[command] = handler

    def set_response(self, command: str, result: Any) -> None:
        """Answer ``command`` with a fixed result."""
        self._commands[command] = lambda args: result

    def listener_count(self, channel: str) -> int:
        return self._listeners.count(channel)

    def emit(self, channel: str, payload: Any) -> int:
        """Fire ``payload`` on ``channel``. Returns the number of listeners called."""
        return self._listeners.dispatch(channel, payload)

    def close(self) -> int:
        """Report the backend as gone to every HOST_CLOSED_CHANNEL listener."""
        return self._listeners.dispatch(HOST_CLOSED_CHANNEL, None)

    async def invoke(self, command: str, args: dict[str, Any] | None = None) -> Any:
        args = dict(args or {})
        self._invocations.append((command, args))

        handler = self._commands.get(command)
        if handler is None:
            raise TransportError(
                f"IPC {command} failed: unknown command",
                code="unknown_command",
                text="unknown command",
            )

        try:
            result = handler(args)
            if inspect.isawaitable(result):
                result = await result
        except TransportError:
            raise
        except Exception as e:
            raise TransportError(
                f"IPC {command} failed: {e}", code="command_failed", text=str(e)
            ) from e
        return result

    async def listen(self, channel: str, handler: Listener) -> Unlisten:
        return self._listeners.add(channel, handler)
