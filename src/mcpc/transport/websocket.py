"""WebSocket transport: one frame per WebSocket message.

Requires the ``websockets`` package (optional dependency ``ws``).
"""

from __future__ import annotations

from typing import Any

from mcpc.errors import TransportClosedError, TransportError


class WebSocketTransport:
    """Communicates with an MCP server over WebSocket using the ``mcp`` subprotocol."""

    def __init__(self, url: str, headers: dict[str, str] | None = None) -> None:
        self._url = url
        self._headers = dict(headers or {})
        self._ws: Any = None  # websockets ClientConnection

    async def connect(self) -> None:
        """Open the WebSocket connection."""
        try:
            import websockets
            from websockets.exceptions import WebSocketException
        except ImportError as exc:
            msg = "websockets package required: pip install mcpc[ws]"
            raise ImportError(msg) from exc
        try:
            self._ws = await websockets.connect(
                self._url,
                subprotocols=["mcp"],
                additional_headers=self._headers or None,
            )
        except (OSError, WebSocketException) as exc:
            raise TransportError(f"Cannot connect to {self._url}: {exc}") from exc

    async def send(self, data: bytes) -> None:
        """Send one frame as a text message."""
        if self._ws is None:
            msg = "Transport not connected"
            raise TransportError(msg)
        from websockets.exceptions import ConnectionClosed

        try:
            await self._ws.send(data.decode("utf-8"))
        except ConnectionClosed as exc:
            raise TransportClosedError(f"WebSocket closed: {exc}") from exc

    async def receive(self) -> bytes:
        """Receive the next message."""
        if self._ws is None:
            msg = "Transport not connected"
            raise TransportError(msg)
        from websockets.exceptions import ConnectionClosed

        try:
            raw = await self._ws.recv()
        except ConnectionClosed as exc:
            raise TransportClosedError(f"WebSocket closed: {exc}") from exc
        return raw.encode("utf-8") if isinstance(raw, str) else bytes(raw)

    async def close(self) -> None:
        """Close the WebSocket connection."""
        ws, self._ws = self._ws, None
        if ws is not None:
            await ws.close()
