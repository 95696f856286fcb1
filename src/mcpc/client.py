"""MCPClient: connect to a configured server in one step.

Wraps :class:`~mcpc.session.session.ClientSession` with transport creation and
an initial discovery pass.
"""

from __future__ import annotations

import logging
from typing import Any

from mcpc.config import ClientConfig, ServerConfig, SessionConfig, create_transport
from mcpc.errors import DiscoveryFailedError, SessionClosedError
from mcpc.gate.gate import ApprovalGate, CLIGate, PolicyGate
from mcpc.protocol.models import GetPromptResult, ReadResourceResult
from mcpc.session.handlers import RequestHandlers
from mcpc.session.registry import CapabilityKind
from mcpc.session.results import ToolResult
from mcpc.session.session import ClientSession
from mcpc.telemetry import configure_telemetry
from mcpc.transport.base import Transport

logger = logging.getLogger(__name__)


class MCPClient:
    """Async context manager that connects to an MCP server.

    Usage::

        server = ServerConfig(name="fs", command="npx @mcp/filesystem", args=["/tmp"])
        async with MCPClient(server) as client:
            result = await client.call_tool("read_file", {"path": "/tmp/x"})
    """

    def __init__(
        self,
        server: ServerConfig,
        config: SessionConfig | None = None,
        *,
        gate: ApprovalGate | None = None,
        handlers: RequestHandlers | None = None,
        discover: bool = True,
    ) -> None:
        self._server = server
        self._config = config or SessionConfig()
        self._gate = gate
        self._handlers = handlers
        self._discover = discover
        self._session: ClientSession | None = None

    @classmethod
    def from_config(
        cls,
        config: ClientConfig,
        server_name: str,
        *,
        handlers: RequestHandlers | None = None,
    ) -> MCPClient:
        """Build a client for one server of a loaded :class:`ClientConfig`.

        A configured gate becomes a :class:`PolicyGate` whose ``ask`` rules
        prompt at the terminal.  Enabled telemetry settings install the
        OpenTelemetry SDK provider.
        """
        if config.telemetry.enabled:
            configure_telemetry(
                export_to_console=config.telemetry.export_to_console,
                otlp_endpoint=config.telemetry.otlp_endpoint,
            )
        gate: ApprovalGate | None = None
        if config.gate is not None:
            gate = PolicyGate(config.gate, interactive=CLIGate(timeout=config.gate.approval_timeout))
        return cls(config.server(server_name), config.session, gate=gate, handlers=handlers)

    async def __aenter__(self) -> MCPClient:
        await self.connect()
        return self

    async def __aexit__(self, *_: object) -> None:
        await self.close()

    @property
    def session(self) -> ClientSession:
        if self._session is None:
            msg = "MCPClient is not connected"
            raise SessionClosedError(msg)
        return self._session

    async def connect(self) -> None:
        """Create the transport, run the handshake and (optionally) discover everything."""
        session = ClientSession(
            self._config,
            gate=self._gate,
            handlers=self._handlers,
            server_name=self._server.name,
        )
        self._session = session
        await session.connect(self._create_transport())
        if self._discover:
            await self.discover_all()

    async def close(self) -> None:
        if self._session is not None:
            await self._session.close()
            self._session = None

    async def discover_all(self) -> None:
        """Refresh every capability kind the server declared.

        A kind that fails to load keeps its previous (possibly empty) cache;
        the failure is logged rather than aborting the others.
        """
        for kind in CapabilityKind:
            try:
                await self.session.discover(kind)
            except DiscoveryFailedError as exc:
                logger.warning("%s: %s", self._server.name, exc)

    async def call_tool(self, name: str, arguments: dict[str, Any] | None = None, **kwargs: Any) -> ToolResult:
        return await self.session.call_tool(name, arguments, **kwargs)

    async def read_resource(self, uri: str, **kwargs: Any) -> ReadResourceResult:
        return await self.session.read_resource(uri, **kwargs)

    async def get_prompt(self, name: str, arguments: dict[str, str] | None = None, **kwargs: Any) -> GetPromptResult:
        return await self.session.get_prompt(name, arguments, **kwargs)

    def _create_transport(self) -> Transport:
        return create_transport(self._server)
