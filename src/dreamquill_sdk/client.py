"""DreamQuill client.

Works with any Transport implementation:
- HTTPTransport: networked backend
- IPCTransport over StdioIPCHost: desktop backend as a subprocess
- IPCTransport over InMemoryIPCHost: for embedding and testing

Callers pick the backend by injecting a transport, or let ``create_client``
choose from the configuration.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

import httpx

from .adapters.http import HTTPTransport
from .adapters.ipc import IPCTransport
from .config import ClientConfig, RuntimeMode
from .ipc.host import InMemoryIPCHost, IPCHost
from .ipc.stdio import StdioIPCHost
from .services.chat import ChatAPI
from .services.providers import ProviderAPI
from .transport import Transport

logger = logging.getLogger(__name__)


@dataclass
class DreamQuillClient:
    """Entry point for chat and provider operations.

    Usage:
        # Networked backend
        async with create_http_client("http://127.0.0.1:5173") as client:
            state = await client.providers.fetch_state()

        # Desktop backend subprocess
        async with create_ipc_client(command=["dreamquill-desktop", "--ipc"]) as client:
            reply = await client.chat.collect(client.chat.send("Hello"))

        # Testing
        host = InMemoryIPCHost()
        host.set_response("dq_list_chats", [])
        client = create_test_client(host)
    """

    _transport: Transport
    _owns_transport: bool = field(default=True)

    @property
    def transport(self) -> Transport:
        """Access the underlying transport."""
        return self._transport

    @property
    def chat(self) -> ChatAPI:
        """Chat operations."""
        return ChatAPI(_transport=self._transport)

    @property
    def providers(self) -> ProviderAPI:
        """Provider operations."""
        return ProviderAPI(_transport=self._transport)

    async def aclose(self) -> None:
        """Close the transport if this client owns it."""
        if self._owns_transport:
            await self._transport.aclose()

    async def __aenter__(self) -> DreamQuillClient:
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.aclose()


# Factory functions


def create_client(
    config: ClientConfig | None = None,
    *,
    transport: Transport | None = None,
    ipc_host: IPCHost | None = None,
) -> DreamQuillClient:
    """Create a client for the configured backend.

    Args:
        config: Client configuration (read from the environment if None)
        transport: Use this transport as is; the caller keeps ownership
        ipc_host: Talk to this IPC host instead of launching a subprocess

    Returns:
        DreamQuillClient bound to the selected transport
    """
    if transport is not None:
        return DreamQuillClient(_transport=transport, _owns_transport=False)

    config = config or ClientConfig.from_env()
    if ipc_host is not None:
        return DreamQuillClient(_transport=IPCTransport(ipc_host, config))

    mode = config.resolved_mode()
    logger.debug(f"Selected {mode.value} transport")
    if mode == RuntimeMode.IPC:
        return DreamQuillClient(_transport=IPCTransport(StdioIPCHost(config), config))
    return DreamQuillClient(_transport=HTTPTransport(config))


def create_http_client(
    base_url: str = "http://127.0.0.1:5173",
    *,
    base_path: str = "/api",
    timeout: float = 30.0,
    client: httpx.AsyncClient | None = None,
) -> DreamQuillClient:
    """Create a client for the networked backend.

    Args:
        base_url: Server URL
        base_path: Path prefix of the REST API
        timeout: Request timeout in seconds
        client: Pre-configured httpx client (the caller keeps ownership)
    """
    config = ClientConfig(
        mode=RuntimeMode.HTTP, base_url=base_url, base_path=base_path, timeout=timeout
    )
    return DreamQuillClient(_transport=HTTPTransport(config, client=client))


def create_ipc_client(
    host: IPCHost | None = None,
    command: list[str] | None = None,
    working_directory: str | None = None,
    env: dict[str, str] | None = None,
) -> DreamQuillClient:
    """Create a client for the embedded desktop backend.

    Args:
        host: Existing IPC host (a subprocess host is created if None)
        command: Backend command line (default: ["dreamquill-desktop", "--ipc"])
        working_directory: CWD for the subprocess
        env: Additional environment variables for the subprocess
    """
    config = ClientConfig(
        mode=RuntimeMode.IPC, ipc_working_directory=working_directory, ipc_env=env
    )
    if command:
        config.ipc_command = list(command)
    return DreamQuillClient(_transport=IPCTransport(host or StdioIPCHost(config), config))


def create_test_client(host: InMemoryIPCHost | None = None) -> DreamQuillClient:
    """Create a client over an in-memory IPC host.

    Args:
        host: Pre-configured host (creates new if None)
    """
    return DreamQuillClient(
        _transport=IPCTransport(host or InMemoryIPCHost(), ClientConfig(mode=RuntimeMode.IPC)),
        _owns_transport=host is None,
    )
