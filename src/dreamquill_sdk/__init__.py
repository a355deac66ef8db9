"""DreamQuill SDK - client for the DreamQuill chat backend.

Provides two transports behind one interface:
- http: networked backend (REST + server-sent events)
- ipc:  embedded desktop backend (named commands + event channels)

Streams are delivered as StreamHandle objects: async-iterable, ordered,
cancellable at any time.
"""

from .adapters import HTTPTransport, IPCTransport, StreamId
from .bridge import EventBridge
from .client import (
    DreamQuillClient,
    create_client,
    create_http_client,
    create_ipc_client,
    create_test_client,
)
from .config import ClientConfig, RuntimeMode, detect_mode
from .errors import (
    DreamQuillError,
    ParseError,
    StreamDeliveryError,
    TransportError,
    UnsupportedRouteError,
)
from .events import ChunkEvent, ErrorEvent, LogEvent, MetaEvent, StreamEvent
from .ipc import InMemoryIPCHost, IPCHost, StdioIPCHost
from .services import ChatAPI, ProviderAPI
from .transport import RequestSpec, StreamHandle, StreamSpec, Transport
from .types import (
    BranchResult,
    ChatMessagesPayload,
    ChatReply,
    ChatSummary,
    HealthStatus,
    ProviderConfig,
    ProviderRecord,
    ProviderState,
    StoredChatMessage,
)

__all__ = [
    # Client
    "DreamQuillClient",
    "create_client",
    "create_http_client",
    "create_ipc_client",
    "create_test_client",
    "ChatAPI",
    "ProviderAPI",
    # Configuration
    "ClientConfig",
    "RuntimeMode",
    "detect_mode",
    # Transport contract
    "Transport",
    "RequestSpec",
    "StreamSpec",
    "StreamHandle",
    "EventBridge",
    # Transport implementations
    "HTTPTransport",
    "IPCTransport",
    "StreamId",
    "IPCHost",
    "InMemoryIPCHost",
    "StdioIPCHost",
    # Events
    "StreamEvent",
    "MetaEvent",
    "ChunkEvent",
    "LogEvent",
    "ErrorEvent",
    # Errors
    "DreamQuillError",
    "TransportError",
    "ParseError",
    "UnsupportedRouteError",
    "StreamDeliveryError",
    # Types
    "ProviderConfig",
    "ProviderRecord",
    "ProviderState",
    "ChatSummary",
    "StoredChatMessage",
    "ChatMessagesPayload",
    "HealthStatus",
    "BranchResult",
    "ChatReply",
]
