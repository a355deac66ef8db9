"""Transport adapters.

- HTTPTransport: networked backend (REST + server-sent events)
- IPCTransport: embedded desktop backend (commands + event channels)
"""

from .http import HTTPTransport
from .ipc import IPCTransport, StreamId
from .routes import ROUTES, ResolvedRoute, Route, resolve_route

__all__ = [
    "HTTPTransport",
    "IPCTransport",
    "StreamId",
    "ROUTES",
    "Route",
    "ResolvedRoute",
    "resolve_route",
]
