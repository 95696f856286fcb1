"""Handlers for server-initiated requests.

The set of requests a server may send a client is closed: ``ping``,
``sampling/createMessage`` and ``roots/list``.  Each maps to a typed field of
:class:`RequestHandlers`, populated by the host when the session is built.
``ping`` is always answered; a request whose handler is missing fails with
:class:`~mcpc.errors.UnsupportedError`.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any

from mcpc.errors import UnsupportedError
from mcpc.protocol.models import (
    ClientCapabilities,
    CreateMessageParams,
    CreateMessageResult,
    JsonRpcRequest,
    ListRootsResult,
    Root,
)

SamplingHandler = Callable[[CreateMessageParams], Awaitable[CreateMessageResult]]
RootsHandler = Callable[[], Awaitable[list[Root]]]


class ServerRequestKind(str, Enum):
    PING = "ping"
    SAMPLING = "sampling/createMessage"
    LIST_ROOTS = "roots/list"


@dataclass(frozen=True)
class RequestHandlers:
    """Typed handler table for server-initiated requests."""

    sampling: SamplingHandler | None = None
    roots: RootsHandler | None = None
    roots_list_changed: bool = False

    def client_capabilities(self) -> ClientCapabilities:
        """Capabilities to advertise for the handlers that are present."""
        return ClientCapabilities(
            sampling={} if self.sampling is not None else None,
            roots={"listChanged": self.roots_list_changed} if self.roots is not None else None,
        )

    async def handle(self, request: JsonRpcRequest) -> dict[str, Any]:
        """Run the handler for *request* and return the JSON result.

        Raises:
            UnsupportedError: Unknown method or no handler registered.
            pydantic.ValidationError: Malformed request params.
        """
        try:
            kind = ServerRequestKind(request.method)
        except ValueError:
            raise UnsupportedError(request.method) from None

        if kind is ServerRequestKind.PING:
            return {}

        if kind is ServerRequestKind.SAMPLING:
            if self.sampling is None:
                raise UnsupportedError(request.method)
            params = CreateMessageParams.model_validate(request.params or {})
            result = await self.sampling(params)
            return result.to_wire()

        if self.roots is None:
            raise UnsupportedError(request.method)
        roots = await self.roots()
        return ListRootsResult(roots=roots).to_wire()
