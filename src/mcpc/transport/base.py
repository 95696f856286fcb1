"""Transport protocol: a bidirectional frame channel.

Transports move opaque frames; they know nothing about JSON-RPC.  The
session drains ``receive`` from a dedicated task, so implementations only need
to support one concurrent reader.  End of stream is signalled by raising
:class:`~mcpc.errors.TransportClosedError`; any other exception is treated as
a transport failure.
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable


@runtime_checkable
class Transport(Protocol):
    """Abstract frame transport for MCP JSON-RPC communication."""

    async def connect(self) -> None: ...
    async def send(self, data: bytes) -> None: ...
    async def receive(self) -> bytes: ...
    async def close(self) -> None: ...
