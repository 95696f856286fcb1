"""Configuration models and loading.

Everything a session needs is passed in explicitly: a :class:`SessionConfig`
for protocol behaviour and a :class:`ServerConfig` describing how to reach the
server.  Hosts that keep their settings in a file use :func:`load_config`,
which reads YAML with ``${VAR}`` expansion into a :class:`ClientConfig`.

Example YAML::

    session:
      request_timeout: 60
    gate:
      default_action: ask
      safe_tools: [search]
    servers:
      - name: filesystem
        transport: stdio
        command: npx -y @modelcontextprotocol/server-filesystem
        args: [/tmp]
      - name: remote
        transport: http
        url: https://mcp.example.com/mcp
        headers:
          Authorization: Bearer ${MCP_TOKEN}
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

from mcpc import __version__
from mcpc.errors import ConfigError
from mcpc.gate.models import GateConfig
from mcpc.protocol.models import Implementation
from mcpc.protocol.versions import SUPPORTED_PROTOCOL_VERSIONS, VersionRange
from mcpc.transport.base import Transport
from mcpc.transport.http import StreamableHttpTransport
from mcpc.transport.stdio import StdioTransport
from mcpc.transport.websocket import WebSocketTransport


class SessionConfig(BaseModel):
    """Protocol behaviour of one client session."""

    client_info: Implementation = Field(
        default_factory=lambda: Implementation(name="mcpc", version=__version__)
    )
    protocol_versions: list[str | int] = Field(
        default_factory=lambda: list(SUPPORTED_PROTOCOL_VERSIONS),
        description="Versions this client speaks; the range spans min..max.",
    )
    request_timeout: float | None = Field(
        default=30.0,
        description="Default per-call timeout in seconds; None waits forever.",
    )
    handshake_timeout: float = Field(default=30.0, gt=0)
    propagate_cancellation: bool = Field(
        default=True,
        description="Send notifications/cancelled when a call is cancelled or times out.",
    )
    discovery_retries: int = Field(default=0, ge=0)

    @field_validator("protocol_versions")
    @classmethod
    def _valid_versions(cls, value: list[str | int]) -> list[str | int]:
        if not value:
            msg = "protocol_versions must not be empty"
            raise ValueError(msg)
        VersionRange.of(value)
        return value

    @property
    def version_range(self) -> VersionRange:
        return VersionRange.of(self.protocol_versions)


class ServerConfig(BaseModel):
    """How to reach one MCP server."""

    name: str
    transport: Literal["stdio", "websocket", "http"] = "stdio"
    command: str | None = None
    args: list[str] = []
    env: dict[str, str] = {}
    url: str | None = None
    headers: dict[str, str] = {}

    @model_validator(mode="after")
    def _check_endpoint(self) -> ServerConfig:
        if self.transport == "stdio" and not self.command:
            msg = f"server {self.name!r}: stdio transport requires 'command'"
            raise ValueError(msg)
        if self.transport != "stdio" and not self.url:
            msg = f"server {self.name!r}: {self.transport} transport requires 'url'"
            raise ValueError(msg)
        return self


class TelemetrySettings(BaseModel):
    enabled: bool = False
    export_to_console: bool = False
    otlp_endpoint: str | None = None


class ClientConfig(BaseModel):
    """Top-level file configuration."""

    session: SessionConfig = Field(default_factory=SessionConfig)
    gate: GateConfig | None = None
    telemetry: TelemetrySettings = Field(default_factory=TelemetrySettings)
    servers: list[ServerConfig] = []

    def server(self, name: str) -> ServerConfig:
        for server in self.servers:
            if server.name == name:
                return server
        raise ConfigError(f"No server named {name!r}")


def load_config(path: str | Path) -> ClientConfig:
    """Read YAML, expand environment variables, and validate.

    Raises:
        ConfigError: On unreadable files, YAML errors or validation failures.
    """
    path = Path(path)
    try:
        raw = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise ConfigError(f"Cannot read {path}: {exc}") from exc

    try:
        data: Any = yaml.safe_load(os.path.expandvars(raw))
    except yaml.YAMLError as exc:
        raise ConfigError(f"YAML parse error: {exc}") from exc

    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ConfigError("Configuration YAML must be a mapping")

    try:
        return ClientConfig.model_validate(data)
    except ValidationError as exc:
        raise ConfigError(str(exc)) from exc


def create_transport(server: ServerConfig) -> Transport:
    """Build the transport described by *server*."""
    if server.transport == "stdio":
        assert server.command is not None
        env = {**os.environ, **server.env} if server.env else None
        return StdioTransport(command=server.command, args=server.args, env=env)
    assert server.url is not None
    if server.transport == "websocket":
        return WebSocketTransport(url=server.url, headers=server.headers)
    return StreamableHttpTransport(url=server.url, headers=server.headers)
