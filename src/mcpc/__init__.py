"""mcpc: MCP client session runtime."""

from __future__ import annotations

from typing import TYPE_CHECKING

__version__ = "0.1.0"

if TYPE_CHECKING:
    from mcpc.client import MCPClient as MCPClient
    from mcpc.config import ClientConfig as ClientConfig
    from mcpc.config import ServerConfig as ServerConfig
    from mcpc.config import SessionConfig as SessionConfig
    from mcpc.session.session import ClientSession as ClientSession

_LAZY_EXPORTS = {
    "ClientSession": "mcpc.session.session",
    "MCPClient": "mcpc.client",
    "ClientConfig": "mcpc.config",
    "ServerConfig": "mcpc.config",
    "SessionConfig": "mcpc.config",
}


def __getattr__(name: str) -> object:
    module_path = _LAZY_EXPORTS.get(name)
    if module_path is not None:
        import importlib

        mod = importlib.import_module(module_path)
        return getattr(mod, name)
    raise AttributeError(f"module 'mcpc' has no attribute {name!r}")
