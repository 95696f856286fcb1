"""Streamable HTTP transport.

Each outgoing frame is POSTed to the server endpoint.  The server answers with
``202 Accepted`` (notifications), a JSON body, or an SSE stream carrying one
or more frames.  Replies are read in background tasks and queued for
``receive`` so a slow tool call never holds up the next request.  The
``Mcp-Session-Id`` header assigned during ``initialize`` is echoed on every
later request, as is the ``Mcp-Protocol-Version`` taken from the
``initialize`` result.  A ``DELETE`` ends the server-side session on close.
"""

from __future__ import annotations

import asyncio
import json
import logging

import httpx
from httpx_sse import EventSource

from mcpc.errors import TransportClosedError, TransportError

logger = logging.getLogger(__name__)

SESSION_ID_HEADER = "mcp-session-id"
PROTOCOL_VERSION_HEADER = "mcp-protocol-version"

_CLOSED = object()


class StreamableHttpTransport:
    """Exchanges frames with an MCP server over streamable HTTP."""

    def __init__(
        self,
        url: str,
        headers: dict[str, str] | None = None,
        *,
        timeout: float = 30.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._url = url
        self._headers = dict(headers or {})
        self._timeout = timeout
        self._client = client
        self._owns_client = client is None
        self._session_id: str | None = None
        self._protocol_version: str | None = None
        self._queue: asyncio.Queue[object] = asyncio.Queue()
        self._tasks: set[asyncio.Task[None]] = set()

    @property
    def session_id(self) -> str | None:
        return self._session_id

    @property
    def protocol_version(self) -> str | None:
        return self._protocol_version

    async def connect(self) -> None:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=httpx.Timeout(self._timeout, read=None))

    async def send(self, data: bytes) -> None:
        """POST *data* and read the reply in the background."""
        if self._client is None:
            msg = "Transport not connected"
            raise TransportError(msg)
        task = asyncio.create_task(self._post(self._client, data))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def receive(self) -> bytes:
        item = await self._queue.get()
        if item is _CLOSED:
            msg = "Transport closed"
            raise TransportClosedError(msg)
        if isinstance(item, Exception):
            raise item
        assert isinstance(item, bytes)
        return item

    async def close(self) -> None:
        client, self._client = self._client, None
        if client is None:
            return
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        if self._session_id is not None:
            try:
                await client.delete(self._url, headers=self._request_headers())
            except httpx.HTTPError:
                logger.debug("Session DELETE failed for %s", self._url, exc_info=True)
        if self._owns_client:
            await client.aclose()
        self._queue.put_nowait(_CLOSED)

    def _request_headers(self) -> dict[str, str]:
        headers = {
            **self._headers,
            "Accept": "application/json, text/event-stream",
            "Content-Type": "application/json",
        }
        if self._session_id is not None:
            headers[SESSION_ID_HEADER] = self._session_id
        if self._protocol_version is not None:
            headers[PROTOCOL_VERSION_HEADER] = self._protocol_version
        return headers

    async def _post(self, client: httpx.AsyncClient, data: bytes) -> None:
        request = client.build_request("POST", self._url, content=data, headers=self._request_headers())
        try:
            response = await client.send(request, stream=True)
            try:
                await self._handle_response(response)
            finally:
                await response.aclose()
        except httpx.HTTPError as exc:
            self._queue.put_nowait(TransportError(f"HTTP request to {self._url} failed: {exc}"))

    async def _handle_response(self, response: httpx.Response) -> None:
        session_id = response.headers.get(SESSION_ID_HEADER)
        if session_id:
            self._session_id = session_id

        if response.status_code == 404 and self._session_id is not None:
            self._queue.put_nowait(TransportClosedError("Server session expired"))
            return
        response.raise_for_status()
        if response.status_code == 202:
            return

        content_type = response.headers.get("content-type", "")
        if content_type.startswith("text/event-stream"):
            async for sse in EventSource(response).aiter_sse():
                if sse.event == "message" and sse.data.strip():
                    self._enqueue(sse.data.encode("utf-8"))
        else:
            body = await response.aread()
            if body.strip():
                self._enqueue(body)

    def _enqueue(self, frame: bytes) -> None:
        if self._protocol_version is None:
            self._protocol_version = _initialize_version(frame)
        self._queue.put_nowait(frame)


def _initialize_version(frame: bytes) -> str | None:
    """Return the protocol version if *frame* is an ``initialize`` result."""
    try:
        message = json.loads(frame)
    except ValueError:
        return None
    result = message.get("result") if isinstance(message, dict) else None
    if isinstance(result, dict) and "capabilities" in result and "protocolVersion" in result:
        return str(result["protocolVersion"])
    return None
