"""IPC host over subprocess stdin/stdout.

Launches the desktop backend as a subprocess and communicates via
newline-delimited JSON (UTF-8, LF).

Wire format:
    → {"id": "req_1a2b3c", "cmd": "dq_list_chats", "args": {}}
    ← {"id": "req_1a2b3c", "result": [{"id": 1, "title": "Hi", "provider_id": 2}]}
    → {"id": "req_4d5e6f", "cmd": "dq_delete_chat", "args": {"chat_id": 9}}
    ← {"id": "req_4d5e6f", "error": "chat not found", "code": "not_found"}
    ← {"event": "dq:chunk", "payload": {"stream_id": "stream_0a1b", "data": "Hel"}}

Replies carry the request ``id``; events carry the channel name. stderr is
forwarded to the logger. When stdout closes, pending invokes fail and
HOST_CLOSED_CHANNEL fires.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import os
import uuid
from typing import Any

from pydantic import BaseModel, Field, ValidationError

from ..config import ClientConfig
from ..errors import TransportError
from .host import HOST_CLOSED_CHANNEL, Listener, ListenerRegistry, Unlisten

logger = logging.getLogger(__name__)

ENCODING = "utf-8"
NEWLINE = "\n"

SHUTDOWN_TIMEOUT = 5.0

# Longest accepted stdout line (a whole reply or event)
LINE_LIMIT = 16 * 1024 * 1024


class IPCRequest(BaseModel):
    """A command sent to the backend."""

    id: str = Field(default_factory=lambda: f"req_{uuid.uuid4().hex[:12]}")
    cmd: str
    args: dict[str, Any] = Field(default_factory=dict)


class IPCMessage(BaseModel):
    """A line received from the backend: either a reply or an event."""

    id: str | None = None
    result: Any = None
    error: str | None = None
    code: str | None = None
    event: str | None = None
    payload: Any = None

    def is_event(self) -> bool:
        return self.event is not None


class StdioIPCHost:
    """IPCHost backed by a subprocess.

    The subprocess is started on the first ``invoke`` (or explicitly with
    ``start``) and terminated by ``aclose``.

    Usage:
        async with StdioIPCHost(ClientConfig(ipc_command=["dreamquill-desktop", "--ipc"])) as host:
            transport = IPCTransport(host)
            chats = await transport.request(RequestSpec("GET", "/chats"))
    """

    def __init__(self, config: ClientConfig | None = None):
        self.config = config or ClientConfig(mode="ipc")
        self._process: asyncio.subprocess.Process | None = None
        self._reader_task: asyncio.Task[None] | None = None
        self._stderr_task: asyncio.Task[None] | None = None
        self._pending: dict[str, tuple[str, asyncio.Future[Any]]] = {}
        self._listeners = ListenerRegistry()
        self._lock = asyncio.Lock()

    @property
    def is_running(self) -> bool:
        """Check if the backend subprocess is alive."""
        return self._process is not None and self._process.returncode is None

    @property
    def pid(self) -> int | None:
        return self._process.pid if self._process else None

    async def start(self) -> None:
        """Launch the backend subprocess if it is not running."""
        async with self._lock:
            if self.is_running:
                return

            cmd = self.config.ipc_command
            env = None
            if self.config.ipc_env:
                env = {**os.environ, **self.config.ipc_env}

            try:
                self._process = await asyncio.create_subprocess_exec(
                    *cmd,
                    stdin=asyncio.subprocess.PIPE,
                    stdout=asyncio.subprocess.PIPE,
                    stderr=asyncio.subprocess.PIPE,
                    cwd=self.config.ipc_working_directory,
                    env=env,
                    limit=LINE_LIMIT,
                )
            except OSError as e:
                raise TransportError(
                    f"Failed to launch IPC backend {cmd[0]!r}: {e}", code="spawn_failed"
                ) from e

            self._reader_task = asyncio.create_task(self._read_loop())
            self._stderr_task = asyncio.create_task(self._read_stderr())
            logger.info(f"Launched IPC backend: {' '.join(cmd)} (pid={self._process.pid})")

    async def aclose(self) -> None:
        """Terminate the subprocess and fail any pending invocations."""
        async with self._lock:
            for task in (self._reader_task, self._stderr_task):
                if task:
                    task.cancel()
                    with contextlib.suppress(asyncio.CancelledError):
                        await task
            self._reader_task = None
            self._stderr_task = None

            self._fail_pending("IPC host closed")

            if self._process:
                if self._process.returncode is None:
                    with contextlib.suppress(ProcessLookupError):
                        self._process.terminate()
                    try:
                        await asyncio.wait_for(self._process.wait(), timeout=SHUTDOWN_TIMEOUT)
                    except TimeoutError:
                        self._process.kill()
                        await self._process.wait()
                logger.info(f"IPC backend terminated (pid={self._process.pid})")
                self._process = None

    async def invoke(self, command: str, args: dict[str, Any] | None = None) -> Any:
        """Send a command and wait for its reply."""
        await self.start()

        request = IPCRequest(cmd=command, args=args or {})
        future: asyncio.Future[Any] = asyncio.get_running_loop().create_future()
        self._pending[request.id] = (command, future)

        try:
            await self._write(request)
            return await asyncio.wait_for(future, timeout=self.config.timeout)
        except TimeoutError as e:
            raise TransportError(
                f"IPC {command} timed out after {self.config.timeout}s", code="timeout"
            ) from e
        finally:
            self._pending.pop(request.id, None)

    async def listen(self, channel: str, handler: Listener) -> Unlisten:
        return self._listeners.add(channel, handler)

    async def _write(self, request: IPCRequest) -> None:
        if not self._process or not self._process.stdin:
            raise TransportError("IPC backend not running", code="transport_closed")

        line = request.model_dump_json() + NEWLINE
        try:
            self._process.stdin.write(line.encode(ENCODING))
            await self._process.stdin.drain()
        except (BrokenPipeError, ConnectionResetError) as e:
            raise TransportError(
                f"IPC backend closed its input: {e}", code="transport_closed"
            ) from e
        logger.debug(f"IPC → {request.cmd} (id={request.id})")

    async def _read_loop(self) -> None:
        """Background task routing replies and events from stdout."""
        if not self._process or not self._process.stdout:
            return

        try:
            while True:
                try:
                    line = await self._process.stdout.readline()
                except ValueError as e:
                    logger.warning(f"Skipping oversized IPC line: {e}")
                    continue
                if not line:
                    # EOF - process exited
                    break

                line_str = line.decode(ENCODING, errors="replace").strip()
                if not line_str:
                    continue

                # Skip non-JSON lines (e.g., log messages that leaked to stdout)
                if not line_str.startswith("{"):
                    logger.debug(f"Skipping non-JSON line: {line_str[:50]}")
                    continue

                try:
                    message = IPCMessage.model_validate_json(line_str)
                except ValidationError as e:
                    logger.warning(f"Failed to parse IPC message: {e} (line: {line_str[:50]})")
                    continue

                self._route(message)
        finally:
            self._fail_pending("IPC backend exited")
            self._listeners.dispatch(HOST_CLOSED_CHANNEL, None)

    def _route(self, message: IPCMessage) -> None:
        if message.event == HOST_CLOSED_CHANNEL:
            logger.debug(f"Ignoring reserved event {message.event} from backend")
            return
        if message.is_event():
            delivered = self._listeners.dispatch(message.event or "", message.payload)
            logger.debug(f"IPC ← {message.event} ({delivered} listeners)")
            return

        if message.id is None:
            logger.debug("Ignoring IPC message without id or event")
            return

        pending = self._pending.get(message.id)
        if pending is None:
            logger.debug(f"Ignoring reply for unknown request {message.id}")
            return

        command, future = pending
        if future.done():
            return
        if message.error is not None:
            future.set_exception(
                TransportError(
                    f"IPC {command} failed: {message.error}",
                    code=message.code or "command_failed",
                    text=message.error,
                )
            )
        else:
            future.set_result(message.result)

    def _fail_pending(self, reason: str) -> None:
        for command, future in self._pending.values():
            if not future.done():
                future.set_exception(
                    TransportError(f"IPC {command} failed: {reason}", code="transport_closed")
                )

    async def _read_stderr(self) -> None:
        """Read and log stderr output."""
        if not self._process or not self._process.stderr:
            return

        while True:
            try:
                line = await self._process.stderr.readline()
            except ValueError:
                continue
            if not line:
                break
            logger.debug(f"[backend stderr] {line.decode(ENCODING, errors='replace').strip()}")

    async def __aenter__(self) -> StdioIPCHost:
        await self.start()
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.aclose()
