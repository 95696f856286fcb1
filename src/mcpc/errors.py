"""Error types for the MCP client runtime.

Every failure the session raises derives from :class:`MCPClientError`.
Local validation errors (``NotReadyError``, ``UnknownCapabilityError``,
``InvalidArgumentsError``, ``ApprovalDeniedError``) are raised before any
bytes reach the transport.  A tool that runs and reports failure is *not* an
error here; see :class:`~mcpc.session.results.ToolResult`.
"""

from __future__ import annotations

from typing import Any


class MCPClientError(Exception):
    """Base error for all client runtime failures."""


class ConfigError(MCPClientError):
    """Configuration could not be loaded or is invalid."""


# ---------------------------------------------------------------------------
# Session lifecycle
# ---------------------------------------------------------------------------


class NotReadyError(MCPClientError):
    """Operation attempted before the handshake completed."""

    def __init__(self, operation: str, state: str) -> None:
        self.operation = operation
        self.state = state
        super().__init__(f"Session not ready for {operation} (state: {state})")


class SessionClosedError(MCPClientError):
    """The session was closed before or while the operation ran."""

    def __init__(self, detail: str = "") -> None:
        self.detail = detail
        super().__init__("Session closed" + (f": {detail}" if detail else ""))


class SessionStateError(MCPClientError):
    """An operation is not valid in the session's current lifecycle state."""

    def __init__(self, current: str, target: str) -> None:
        self.current = current
        self.target = target
        super().__init__(f"Invalid session transition: {current} -> {target}")


class TransportInUseError(MCPClientError):
    """The transport is already owned by another live session."""


class VersionMismatchError(MCPClientError):
    """Client and server share no protocol version."""

    def __init__(self, client_range: Any, server_range: Any) -> None:
        self.client_range = client_range
        self.server_range = server_range
        super().__init__(
            f"No common protocol version: client supports {client_range}, "
            f"server supports {server_range}"
        )


class ConnectionLostError(MCPClientError):
    """The transport terminated unexpectedly."""

    def __init__(self, detail: str = "") -> None:
        self.detail = detail
        super().__init__("Connection lost" + (f": {detail}" if detail else ""))


# ---------------------------------------------------------------------------
# Capabilities
# ---------------------------------------------------------------------------


class UnknownCapabilityError(MCPClientError):
    """Lookup or call against a name absent from the cached registry."""

    def __init__(self, kind: str, name: str) -> None:
        self.kind = kind
        self.name = name
        super().__init__(f"Unknown {kind}: {name}")


class DiscoveryFailedError(MCPClientError):
    """A list request failed; the previous cache is retained."""

    def __init__(self, kind: str, detail: str = "") -> None:
        self.kind = kind
        self.detail = detail
        super().__init__(f"Discovery of {kind} failed" + (f": {detail}" if detail else ""))


class InvalidArgumentsError(MCPClientError):
    """Arguments do not satisfy the capability's declared input."""

    def __init__(self, name: str, detail: str = "") -> None:
        self.name = name
        self.detail = detail
        super().__init__(f"Invalid arguments for {name}" + (f": {detail}" if detail else ""))


# ---------------------------------------------------------------------------
# Calls
# ---------------------------------------------------------------------------


class CallTimeoutError(MCPClientError):
    """No response arrived within the caller's deadline."""

    def __init__(self, method: str, timeout: float) -> None:
        self.method = method
        self.timeout = timeout
        super().__init__(f"Request {method} timed out after {timeout}s")


class InvocationCancelledError(MCPClientError):
    """The caller cancelled its own outstanding request."""

    def __init__(self, method: str, request_id: int | str) -> None:
        self.method = method
        self.request_id = request_id
        super().__init__(f"Request {method} (id={request_id}) cancelled")


class ApprovalDeniedError(MCPClientError):
    """The approval gate rejected a tool call before dispatch."""

    def __init__(self, tool_name: str, reason: str = "") -> None:
        self.tool_name = tool_name
        self.reason = reason
        msg = f"Approval denied for tool: {tool_name}"
        if reason:
            msg += f" ({reason})"
        super().__init__(msg)


class UnsupportedError(MCPClientError):
    """No handler is registered for a server-initiated request."""

    def __init__(self, method: str) -> None:
        self.method = method
        super().__init__(f"Unsupported: {method}")


# ---------------------------------------------------------------------------
# Protocol & transport
# ---------------------------------------------------------------------------


class ProtocolError(MCPClientError):
    """Malformed frame or a peer violating the protocol."""

    def __init__(self, detail: str, *, request_id: int | str | None = None) -> None:
        self.detail = detail
        self.request_id = request_id
        super().__init__(detail)


class RequestError(ProtocolError):
    """The server answered a request with a JSON-RPC error."""

    def __init__(
        self,
        method: str,
        code: int,
        message: str,
        data: Any = None,
        *,
        request_id: int | str | None = None,
    ) -> None:
        self.method = method
        self.code = code
        self.message = message
        self.data = data
        super().__init__(f"{method} failed ({code}): {message}", request_id=request_id)


class TransportError(MCPClientError):
    """The transport failed to connect, send, or receive."""


class TransportClosedError(TransportError):
    """The transport reached end of stream."""
