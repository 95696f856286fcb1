"""In-memory fake MCP server used to drive ClientSession end to end.

``FakeServer`` satisfies the Transport protocol.  Frames the client sends are
recorded in ``sent``; requests are answered by per-method handlers, each in
its own task, so a handler that sleeps delays only its own reply.
"""

from __future__ import annotations

import asyncio
import inspect
import json
from collections.abc import Awaitable, Callable
from typing import Any

from mcpc.errors import TransportClosedError

Handler = Callable[[dict[str, Any]], Any]

NO_REPLY = object()


class RpcFailure(Exception):
    """Raised by a handler to answer with a JSON-RPC error."""

    def __init__(self, code: int, message: str) -> None:
        self.code = code
        self.message = message
        super().__init__(message)


ECHO_TOOL = {
    "name": "echo",
    "description": "Echo text back.",
    "inputSchema": {
        "type": "object",
        "properties": {"text": {"type": "string"}},
        "required": ["text"],
    },
}

DELETE_TOOL = {
    "name": "delete_file",
    "description": "Delete a file.",
    "inputSchema": {"type": "object", "properties": {"path": {"type": "string"}}},
    "annotations": {"destructiveHint": True},
}


class FakeServer:
    """Scripted MCP server behind an in-memory transport."""

    def __init__(
        self,
        *,
        tools: list[dict[str, Any]] | None = None,
        resources: list[dict[str, Any]] | None = None,
        prompts: list[dict[str, Any]] | None = None,
        protocol_version: str | int = "2025-06-18",
        supported_versions: list[str | int] | None = None,
        capabilities: dict[str, Any] | None = None,
    ) -> None:
        self.tools = tools if tools is not None else [ECHO_TOOL, DELETE_TOOL]
        self.resources = resources or []
        self.prompts = prompts or []
        self.protocol_version = protocol_version
        self.supported_versions = supported_versions
        self.capabilities = capabilities if capabilities is not None else {
            "tools": {"listChanged": True},
            "resources": {},
            "prompts": {},
            "logging": {},
        }
        self.sent: list[dict[str, Any]] = []
        self.send_count = 0
        self.connected = False
        self.closed = False
        self._inbox: asyncio.Queue[bytes | None] = asyncio.Queue()
        self._client_replies: dict[Any, asyncio.Future[dict[str, Any]]] = {}
        self._tasks: set[asyncio.Task[None]] = set()
        self._next_server_id = 1000
        self.handlers: dict[str, Handler] = {
            "initialize": self._initialize,
            "tools/list": lambda _: {"tools": self.tools},
            "resources/list": lambda _: {"resources": self.resources},
            "prompts/list": lambda _: {"prompts": self.prompts},
            "tools/call": self._echo,
            "ping": lambda _: {},
        }

    # -- Transport protocol ------------------------------------------------

    async def connect(self) -> None:
        self.connected = True

    async def send(self, data: bytes) -> None:
        if self.closed:
            raise TransportClosedError("fake server closed")
        self.send_count += 1
        frame = json.loads(data)
        self.sent.append(frame)
        if "method" in frame and "id" in frame:
            task = asyncio.create_task(self._respond(frame))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)
        elif "method" not in frame:
            future = self._client_replies.pop(frame.get("id"), None)
            if future is not None and not future.done():
                future.set_result(frame)

    async def receive(self) -> bytes:
        item = await self._inbox.get()
        if item is None:
            raise TransportClosedError("fake server went away")
        return item

    async def close(self) -> None:
        self.closed = True
        for task in list(self._tasks):
            task.cancel()
        self._inbox.put_nowait(None)

    # -- Scripting ---------------------------------------------------------

    def on(self, method: str, handler: Handler) -> None:
        """Answer *method* with *handler(params)* (sync or async).

        Returning ``NO_REPLY`` leaves the request unanswered.
        """
        self.handlers[method] = handler

    def push(self, frame: dict[str, Any]) -> None:
        self._inbox.put_nowait(json.dumps(frame).encode())

    def push_raw(self, data: bytes) -> None:
        self._inbox.put_nowait(data)

    def notify(self, method: str, params: dict[str, Any] | None = None) -> None:
        frame: dict[str, Any] = {"jsonrpc": "2.0", "method": method}
        if params is not None:
            frame["params"] = params
        self.push(frame)

    def disconnect(self) -> None:
        """Simulate the server process dying."""
        self._inbox.put_nowait(None)

    async def request_client(self, method: str, params: dict[str, Any] | None = None) -> dict[str, Any]:
        """Send a server->client request and wait for the client's reply."""
        request_id = self._next_server_id
        self._next_server_id += 1
        future: asyncio.Future[dict[str, Any]] = asyncio.get_running_loop().create_future()
        self._client_replies[request_id] = future
        frame: dict[str, Any] = {"jsonrpc": "2.0", "id": request_id, "method": method}
        if params is not None:
            frame["params"] = params
        self.push(frame)
        return await asyncio.wait_for(future, timeout=2)

    def requests(self, method: str | None = None) -> list[dict[str, Any]]:
        return [f for f in self.sent if "id" in f and "method" in f and (method is None or f["method"] == method)]

    def notifications(self, method: str | None = None) -> list[dict[str, Any]]:
        return [f for f in self.sent if "id" not in f and (method is None or f["method"] == method)]

    # -- Default behaviour -------------------------------------------------

    def _initialize(self, params: dict[str, Any]) -> dict[str, Any]:
        result: dict[str, Any] = {
            "protocolVersion": self.protocol_version,
            "capabilities": self.capabilities,
            "serverInfo": {"name": "fake-server", "version": "1.0"},
        }
        if self.supported_versions is not None:
            result["supportedProtocolVersions"] = self.supported_versions
        return result

    @staticmethod
    def _echo(params: dict[str, Any]) -> dict[str, Any]:
        arguments = params.get("arguments", {})
        return {
            "content": [{"type": "text", "text": str(arguments.get("text", ""))}],
            "structuredContent": arguments,
        }

    async def _respond(self, frame: dict[str, Any]) -> None:
        handler = self.handlers.get(frame["method"])
        reply: dict[str, Any] = {"jsonrpc": "2.0", "id": frame["id"]}
        if handler is None:
            reply["error"] = {"code": -32601, "message": f"Method not found: {frame['method']}"}
        else:
            try:
                result = handler(frame.get("params") or {})
                if inspect.isawaitable(result):
                    result = await result
            except RpcFailure as exc:
                reply["error"] = {"code": exc.code, "message": exc.message}
            else:
                if result is NO_REPLY:
                    return
                reply["result"] = result
        self.push(reply)


async def eventually(predicate: Callable[[], bool], timeout: float = 1.0) -> None:
    """Yield to the loop until *predicate* holds."""
    async with asyncio.timeout(timeout):
        while not predicate():
            await asyncio.sleep(0.001)


def delayed(delay: float, result: Any) -> Callable[[dict[str, Any]], Awaitable[Any]]:
    """Handler that answers with *result* after *delay* seconds."""

    async def handler(_: dict[str, Any]) -> Any:
        await asyncio.sleep(delay)
        return result

    return handler
