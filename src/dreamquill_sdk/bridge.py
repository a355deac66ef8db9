"""Push-to-pull bridge.

Both backends deliver stream data by callback: the networked transport
dispatches parsed SSE frames from a reader task, the IPC transport receives
channel payloads from the host. Callers want an ordered, lazily consumed,
cancellable async iterator. EventBridge connects the two:

- producers call ``enqueue()`` (and ``finish()`` on natural completion)
- the caller iterates ``stream()``, which drains the queue until the
  bridge has ended and nothing is left
- ``cancel()`` ends the bridge at once and fires the cancel hooks; events
  already queued are still yielded
- teardown callbacks run exactly once when iteration stops, however it
  stops (completion, cancellation, ``aclose()``, or an exception)
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import AsyncIterator, Awaitable, Callable

from .config import DEFAULT_IDLE_INTERVAL
from .events import StreamEvent

logger = logging.getLogger(__name__)

Teardown = Callable[[], Awaitable[None] | None]


class EventBridge:
    """Queue plus consumption loop for one stream.

    Not shared between streams: each ``Transport.stream()`` call creates its
    own bridge.
    """

    def __init__(self, name: str = "stream", idle_interval: float = DEFAULT_IDLE_INTERVAL):
        self.name = name
        self.idle_interval = idle_interval
        self._queue: asyncio.Queue[StreamEvent] = asyncio.Queue()
        self._ended = False
        self._cancelled = False
        self._closed = False
        self._teardowns: list[Teardown] = []
        self._cancel_hooks: list[Callable[[], None]] = []

    @property
    def ended(self) -> bool:
        """True once the stream finished, was cancelled, or was closed."""
        return self._ended

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    @property
    def closed(self) -> bool:
        """True once teardown has run."""
        return self._closed

    def enqueue(self, event: StreamEvent) -> bool:
        """Append an event. Returns False (and drops it) if the bridge ended."""
        if self._ended:
            logger.debug(f"[{self.name}] dropping {event.type} event after end")
            return False
        self._queue.put_nowait(event)
        return True

    def finish(self) -> None:
        """Mark natural completion. Queued events are still delivered."""
        if not self._ended:
            logger.debug(f"[{self.name}] finished")
        self._ended = True

    def on_teardown(self, fn: Teardown) -> None:
        """Register a cleanup callback (sync or async) for the end of iteration."""
        self._teardowns.append(fn)

    def on_cancel(self, fn: Callable[[], None]) -> None:
        """Register a synchronous hook fired by the first ``cancel()``."""
        self._cancel_hooks.append(fn)

    def cancel(self) -> None:
        """End the stream now. Idempotent; a no-op after completion."""
        if self._cancelled or self._closed:
            return
        self._cancelled = True
        if self._ended:
            return

        self._ended = True
        logger.debug(f"[{self.name}] cancelled ({self._queue.qsize()} events still queued)")
        for hook in self._cancel_hooks:
            try:
                hook()
            except Exception as e:
                logger.warning(f"[{self.name}] cancel hook failed: {e}")

    async def stream(
        self, setup: Callable[[], Awaitable[None]] | None = None
    ) -> AsyncIterator[StreamEvent]:
        """Yield queued events in order until ended and drained.

        Args:
            setup: Coroutine function that attaches listeners and starts the
                   push source. Skipped if the bridge was cancelled first.
        """
        try:
            if setup is not None and not self._ended:
                await setup()

            while not (self._ended and self._queue.empty()):
                try:
                    event = await asyncio.wait_for(self._queue.get(), timeout=self.idle_interval)
                except TimeoutError:
                    continue
                yield event
        finally:
            await self._teardown()

    async def _teardown(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._ended = True

        teardowns = list(reversed(self._teardowns))
        self._teardowns.clear()
        for fn in teardowns:
            try:
                result = fn()
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.warning(f"[{self.name}] teardown failed: {e}")
        logger.debug(f"[{self.name}] closed")
