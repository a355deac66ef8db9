"""Hosts for the embedded desktop backend.

- IPCHost: protocol the IPC transport is written against
- StdioIPCHost: backend subprocess speaking newline-delimited JSON
- InMemoryIPCHost: in-process host for embedding and tests
"""

from .host import HOST_CLOSED_CHANNEL, InMemoryIPCHost, IPCHost, ListenerRegistry
from .stdio import IPCMessage, IPCRequest, StdioIPCHost

__all__ = [
    "IPCHost",
    "InMemoryIPCHost",
    "ListenerRegistry",
    "HOST_CLOSED_CHANNEL",
    "StdioIPCHost",
    "IPCRequest",
    "IPCMessage",
]
