"""Error types raised by the SDK.

Plain requests fail with a single exception and are never retried.
Streaming failures are delivered in-band as ``ErrorEvent``s instead; only
convenience consumers (``ChatAPI.collect``, the CLI) turn them into
``StreamDeliveryError``.
"""

from __future__ import annotations


class DreamQuillError(Exception):
    """Base class for all SDK errors."""


class TransportError(DreamQuillError):
    """The backend reported a failure for a plain request.

    Attributes:
        status: HTTP status code (networked transport), if any
        code: Backend error code (IPC transport), if any
        text: Raw response/message text from the backend
    """

    def __init__(
        self,
        message: str,
        *,
        status: int | None = None,
        code: str | None = None,
        text: str = "",
    ):
        super().__init__(message)
        self.status = status
        self.code = code
        self.text = text

    @classmethod
    def from_status(cls, status: int, text: str) -> TransportError:
        """Create an error for a non-success HTTP response."""
        return cls(f"HTTP {status}: {text}", status=status, text=text)


class ParseError(DreamQuillError):
    """A response body could not be decoded into the expected shape."""


class UnsupportedRouteError(DreamQuillError):
    """No IPC command is mapped for a (method, path) pair.

    This is a programming error: every path the services issue must be
    present in the route table.
    """

    def __init__(self, method: str, path: str):
        super().__init__(f"Unsupported IPC route: {method} {path}")
        self.method = method
        self.path = path


class StreamDeliveryError(DreamQuillError):
    """The backend sent an error event in the middle of a stream."""

    def __init__(self, message: str, *, partial: str = ""):
        super().__init__(message)
        self.partial = partial
