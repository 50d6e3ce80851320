"""Error taxonomy for the bridge.

Every error the router can hand back to a caller derives from `BridgeError`, so
transports can map them to client responses in one place.
"""

from __future__ import annotations


class BridgeError(Exception):
    """Base class for bridge errors."""

    code = -32000

    def __init__(self, message: str = "") -> None:
        super().__init__(message)
        self.message = str(message or self.__class__.__name__)


class ProtocolError(BridgeError):
    """Malformed record or frame."""

    code = -32700


class PayloadTooLargeError(ProtocolError):
    """Outbound payload exceeds the configured frame limit (nothing was written)."""

    code = -32004

    def __init__(self, size: int, limit: int) -> None:
        super().__init__(f"Payload of {size} bytes exceeds limit of {limit} bytes")
        self.size = int(size)
        self.limit = int(limit)


class DispatchError(BridgeError):
    """Unknown tool name, or the browser side failed to dispatch the call."""

    code = -32003


class CallTimeoutError(BridgeError, TimeoutError):
    """No result arrived within the call deadline."""

    code = -32001

    def __init__(self, name: str, timeout_ms: int) -> None:
        super().__init__(f"Tool {name} timed out after {timeout_ms}ms")
        self.name = name
        self.timeout_ms = int(timeout_ms)


class ConnectionLostError(BridgeError, ConnectionError):
    """The browser channel closed before or during a call."""

    code = -32002


class ConfigError(BridgeError):
    pass


class StartupError(BridgeError):
    pass


__all__ = [
    "BridgeError",
    "CallTimeoutError",
    "ConfigError",
    "ConnectionLostError",
    "DispatchError",
    "PayloadTooLargeError",
    "ProtocolError",
    "StartupError",
]
