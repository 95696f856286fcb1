"""Frame transports: stdio subprocess, WebSocket, streamable HTTP."""

from mcpc.transport.base import Transport
from mcpc.transport.http import StreamableHttpTransport
from mcpc.transport.stdio import StdioTransport
from mcpc.transport.websocket import WebSocketTransport

__all__ = [
    "StdioTransport",
    "StreamableHttpTransport",
    "Transport",
    "WebSocketTransport",
]
