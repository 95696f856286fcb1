"""ClientSession: one MCP client connection.

The session owns its transport for its whole lifetime.  After ``connect`` a
receive-loop task drains the transport and does nothing but route frames:

- responses resolve pending calls in the :class:`CallDispatcher`,
- notifications are queued for a separate pump task that delivers them to
  subscribers in arrival order,
- server requests (sampling, roots, ping) run in their own tasks.

Callers therefore never block the read side, and any number of calls may be
in flight at once.

Usage::

    session = ClientSession(SessionConfig(), gate=PolicyGate(gate_config))
    async with session:
        await session.connect(StdioTransport("my-server"))
        await session.discover("tools")
        result = await session.call_tool("echo", {"text": "hi"})
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Coroutine, Iterable
from typing import Any
from uuid import uuid4

from jsonschema import SchemaError
from jsonschema import ValidationError as SchemaValidationError
from jsonschema import validate as validate_schema
from pydantic import BaseModel, ValidationError

from mcpc.config import SessionConfig
from mcpc.errors import (
    ApprovalDeniedError,
    CallTimeoutError,
    ConnectionLostError,
    DiscoveryFailedError,
    InvalidArgumentsError,
    InvocationCancelledError,
    MCPClientError,
    ProtocolError,
    RequestError,
    SessionClosedError,
    SessionStateError,
    TransportClosedError,
    TransportError,
    TransportInUseError,
    UnsupportedError,
)
from mcpc.gate.gate import ApprovalGate
from mcpc.gate.models import ApprovalRequest
from mcpc.protocol.codec import JsonRpcCodec
from mcpc.protocol.models import (
    INTERNAL_ERROR,
    INVALID_PARAMS,
    METHOD_NOT_FOUND,
    CallToolResult,
    ClientCapabilities,
    Descriptor,
    GetPromptResult,
    Implementation,
    InitializeResult,
    JsonRpcError,
    JsonRpcErrorResponse,
    JsonRpcNotification,
    JsonRpcRequest,
    JsonRpcResponse,
    ListPromptsResult,
    ListResourcesResult,
    ListToolsResult,
    LoggingLevel,
    LoggingMessageParams,
    ProgressParams,
    Prompt,
    ReadResourceResult,
    RequestId,
    ServerCapabilities,
    Tool,
)
from mcpc.protocol.versions import VersionRange, negotiate_version
from mcpc.session.dispatcher import CallDispatcher, PendingCall, ProgressCallback
from mcpc.session.handlers import RequestHandlers
from mcpc.session.registry import CapabilityCache, CapabilityKind
from mcpc.session.results import ErrorDetail, InvocationResult, ResultKind, ToolResult
from mcpc.session.state import SessionState, SessionStateMachine
from mcpc.telemetry import (
    ATTR_CAPABILITY_COUNT,
    ATTR_CAPABILITY_KIND,
    ATTR_METHOD,
    ATTR_PROTOCOL_VERSION,
    ATTR_REQUEST_ID,
    ATTR_SERVER_NAME,
    ATTR_SESSION_ID,
    ATTR_TOOL_NAME,
    ATTR_TOOL_OUTCOME,
    get_tracer,
)
from mcpc.transport.base import Transport

logger = logging.getLogger(__name__)
server_logger = logging.getLogger("mcpc.server")

_tracer = get_tracer(__name__)

NotificationCallback = Callable[[JsonRpcNotification], Awaitable[None]]
ErrorListener = Callable[[MCPClientError], None]

_LIST_RESULTS: dict[CapabilityKind, type[BaseModel]] = {
    CapabilityKind.TOOLS: ListToolsResult,
    CapabilityKind.RESOURCES: ListResourcesResult,
    CapabilityKind.PROMPTS: ListPromptsResult,
}

# Attribute set on a transport while a session owns it.
_OWNER_ATTR = "_mcpc_owner"

_ROUTING_KEYS = {
    "notifications/progress": "progressToken",
    "notifications/cancelled": "requestId",
}

_SERVER_LOG_LEVELS: dict[str, int] = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "notice": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.ERROR,
    "critical": logging.CRITICAL,
    "alert": logging.CRITICAL,
    "emergency": logging.CRITICAL,
}


def _is_request_id(value: Any) -> bool:
    return isinstance(value, int | str) and not isinstance(value, bool)


def _claim(transport: Transport, owner: str | None) -> None:
    """Mark *transport* as owned by session *owner*, or release it."""
    try:
        setattr(transport, _OWNER_ATTR, owner)
    except AttributeError:
        logger.debug("Cannot record ownership on %s", type(transport).__name__)


class CallHandle:
    """An outstanding request started with :meth:`ClientSession.start_request`."""

    def __init__(self, session: ClientSession, call: PendingCall) -> None:
        self._session = session
        self._call = call

    @property
    def request_id(self) -> RequestId:
        return self._call.request_id

    @property
    def method(self) -> str:
        return self._call.method

    def done(self) -> bool:
        return self._call.future.done()

    def cancel(self, reason: str = "cancelled by caller") -> bool:
        """Abandon the call; its awaiter sees :class:`InvocationCancelledError`.

        The server is told on a best-effort basis; its work may still run.
        Returns False if the call had already completed.
        """
        if self._call.future.done():
            return False
        self._session._abandon(self._call, reason)
        self._call.future.set_exception(
            InvocationCancelledError(self._call.method, self._call.request_id)
        )
        return True

    async def result(self, timeout: float | None = None) -> InvocationResult:
        """Wait for the reply.

        Raises:
            CallTimeoutError: No reply within *timeout* seconds.
            InvocationCancelledError: :meth:`cancel` was called.
            SessionClosedError: The session closed first.
            ConnectionLostError: The transport died first.
        """
        call = self._call
        try:
            reply = await asyncio.wait_for(call.future, timeout)
        except TimeoutError:
            self._session._abandon(call, "timeout")
            assert timeout is not None
            raise CallTimeoutError(call.method, timeout) from None
        except asyncio.CancelledError:
            self._session._abandon(call, "cancelled by caller")
            raise

        if isinstance(reply, JsonRpcErrorResponse):
            return InvocationResult(
                request_id=call.request_id,
                method=call.method,
                kind=ResultKind.FAILURE,
                error=ErrorDetail.from_rpc(reply.error),
            )
        return InvocationResult(
            request_id=call.request_id,
            method=call.method,
            kind=ResultKind.SUCCESS,
            payload=reply.result,
        )


class ClientSession:
    """Protocol state machine, capability cache and call dispatcher for one server."""

    def __init__(
        self,
        config: SessionConfig | None = None,
        *,
        gate: ApprovalGate | None = None,
        handlers: RequestHandlers | None = None,
        codec: JsonRpcCodec | None = None,
        server_name: str = "",
    ) -> None:
        self._config = config or SessionConfig()
        self._gate = gate
        self._handlers = handlers or RequestHandlers()
        self._codec = codec or JsonRpcCodec()
        self._server_name = server_name

        self.session_id = uuid4().hex
        self._state = SessionStateMachine(self.session_id)
        self._dispatcher = CallDispatcher()
        self._cache = CapabilityCache()

        self._transport: Transport | None = None
        self._send_lock = asyncio.Lock()
        self._receive_task: asyncio.Task[None] | None = None
        self._pump_task: asyncio.Task[None] | None = None
        self._notifications: asyncio.Queue[tuple[JsonRpcNotification, ProgressCallback | None]] = (
            asyncio.Queue()
        )
        self._server_requests: dict[RequestId, asyncio.Task[None]] = {}
        self._background: set[asyncio.Task[Any]] = set()
        self._closed = asyncio.Event()

        self._subscribers: list[tuple[NotificationCallback, frozenset[str] | None]] = []
        self._error_listeners: list[ErrorListener] = []
        self._last_error: MCPClientError | None = None

        self.protocol_version: str | int | None = None
        self.server_capabilities = ServerCapabilities()
        self.client_capabilities = ClientCapabilities()
        self.server_info: Implementation | None = None
        self.instructions: str | None = None

    async def __aenter__(self) -> ClientSession:
        return self

    async def __aexit__(self, *_: object) -> None:
        await self.close()

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def state(self) -> SessionState:
        return self._state.state

    @property
    def config(self) -> SessionConfig:
        return self._config

    @property
    def pending_count(self) -> int:
        return len(self._dispatcher)

    @property
    def last_error(self) -> MCPClientError | None:
        """The most recent error published to the error channel."""
        return self._last_error

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def connect(
        self,
        transport: Transport,
        client_capabilities: ClientCapabilities | None = None,
    ) -> InitializeResult:
        """Connect *transport* and run the initialize handshake.

        Raises:
            SessionStateError: The session was already connected.
            TransportInUseError: *transport* belongs to another session.
            TransportError: The transport could not connect.
            VersionMismatchError: No common protocol version.
            CallTimeoutError: The server did not answer ``initialize`` in time.
        """
        if self._state.state is not SessionState.UNCONNECTED:
            raise SessionStateError(self._state.state.value, SessionState.HANDSHAKING.value)
        if getattr(transport, _OWNER_ATTR, None) is not None:
            msg = "Transport is already owned by another session"
            raise TransportInUseError(msg)
        _claim(transport, self.session_id)
        self._transport = transport

        with _tracer.start_as_current_span("mcpc.connect") as span:
            span.set_attribute(ATTR_SESSION_ID, self.session_id)
            span.set_attribute(ATTR_SERVER_NAME, self._server_name)

            try:
                await transport.connect()
            except Exception as exc:
                self._state.fail(exc)
                await self._release_transport()
                if isinstance(exc, TransportError):
                    raise
                raise TransportError(str(exc)) from exc

            self._state.transition(SessionState.HANDSHAKING)
            self._receive_task = asyncio.create_task(self._receive_loop(transport))
            self._pump_task = asyncio.create_task(self._notification_pump())

            try:
                init = await self._handshake(client_capabilities)
            except BaseException:
                if self._state.state is SessionState.HANDSHAKING:
                    await self.close()
                raise

            self._state.transition(SessionState.READY)
            span.set_attribute(ATTR_PROTOCOL_VERSION, str(self.protocol_version))

        await self.send_notification("notifications/initialized")
        logger.info(
            "Session %s ready (server=%s, protocol=%s)",
            self.session_id,
            self.server_info.name if self.server_info else "?",
            self.protocol_version,
        )
        return init

    async def close(self) -> None:
        """Cancel pending calls, release the transport and move to ``closed``.

        Idempotent; a no-op on a failed session.
        """
        state = self._state.state
        if state in (SessionState.CLOSED, SessionState.FAILED):
            return
        if state is SessionState.CLOSING:
            await self._closed.wait()
            return
        if state is SessionState.UNCONNECTED:
            self._state.transition(SessionState.CLOSED)
            self._closed.set()
            return

        self._state.transition(SessionState.CLOSING)
        cancelled = self._dispatcher.fail_all(SessionClosedError("session closed"))
        if cancelled:
            logger.debug("Session %s: cancelled %d pending call(s)", self.session_id, cancelled)
        await self._stop_tasks()
        await self._release_transport()
        if self._state.state is SessionState.CLOSING:
            self._state.transition(SessionState.CLOSED)
        self._closed.set()
        logger.info("Session %s closed", self.session_id)

    async def _handshake(self, client_capabilities: ClientCapabilities | None) -> InitializeResult:
        client_range = self._config.version_range
        capabilities = client_capabilities or self._handlers.client_capabilities()
        self.client_capabilities = capabilities

        handle = await self._start(
            "initialize",
            {
                "protocolVersion": client_range.maximum,
                "supportedProtocolVersions": list(self._config.protocol_versions),
                "capabilities": capabilities.to_wire(),
                "clientInfo": self._config.client_info.to_wire(),
            },
            operation="initialize",
            allow_handshaking=True,
        )
        result = await handle.result(self._config.handshake_timeout)
        if result.error is not None:
            raise RequestError(
                "initialize", result.error.code, result.error.message, result.error.data
            )
        try:
            init = InitializeResult.model_validate(result.payload)
        except ValidationError as exc:
            raise ProtocolError(f"Invalid initialize result: {exc}") from exc

        try:
            if init.supported_protocol_versions:
                server_range = VersionRange.of(init.supported_protocol_versions)
            else:
                server_range = VersionRange(init.protocol_version, init.protocol_version)
        except ValueError as exc:
            raise ProtocolError(f"Invalid server protocol versions: {exc}") from exc
        self.protocol_version = negotiate_version(client_range, server_range)
        self.server_capabilities = init.capabilities
        self.server_info = init.server_info
        self.instructions = init.instructions
        return init

    # ------------------------------------------------------------------
    # Capability discovery
    # ------------------------------------------------------------------

    async def discover(self, kind: CapabilityKind | str) -> list[Any]:
        """Fetch the server's full list for *kind* and replace the cache.

        Raises:
            DiscoveryFailedError: The list request failed; the previous
                snapshot is kept.
        """
        kind = CapabilityKind(kind)
        self._state.require_ready(f"discover {kind.value}")
        registry = self._cache.registry(kind)

        if getattr(self.server_capabilities, kind.value) is None:
            logger.debug("Server did not declare %s; caching an empty list", kind.value)
            registry.replace([])
            return []

        with _tracer.start_as_current_span("mcpc.discover") as span:
            span.set_attribute(ATTR_SESSION_ID, self.session_id)
            span.set_attribute(ATTR_CAPABILITY_KIND, kind.value)

            attempts = 1 + self._config.discovery_retries
            for attempt in range(1, attempts + 1):
                try:
                    items = await self._fetch_all(kind)
                    break
                except MCPClientError as exc:
                    if attempt < attempts and self._state.state is SessionState.READY:
                        logger.warning(
                            "Discovery of %s failed (attempt %d/%d): %s",
                            kind.value, attempt, attempts, exc,
                        )
                        continue
                    raise DiscoveryFailedError(kind.value, str(exc)) from exc

            registry.replace(items)
            span.set_attribute(ATTR_CAPABILITY_COUNT, len(items))

        logger.debug("Discovered %d %s", len(items), kind.value)
        return items

    async def _fetch_all(self, kind: CapabilityKind) -> list[Descriptor]:
        """Follow ``nextCursor`` until the list is exhausted."""
        items: list[Descriptor] = []
        seen: set[str] = set()
        cursor: str | None = None
        while True:
            result = await self.invoke(kind.list_method, {"cursor": cursor} if cursor else None)
            if result.error is not None:
                raise RequestError(kind.list_method, result.error.code, result.error.message)
            try:
                page = _LIST_RESULTS[kind].model_validate(result.payload)
            except ValidationError as exc:
                raise ProtocolError(f"Invalid {kind.list_method} result: {exc}") from exc
            items.extend(getattr(page, kind.value))

            cursor = page.next_cursor  # type: ignore[attr-defined]
            if not cursor:
                return items
            if cursor in seen:
                raise ProtocolError(f"Repeated pagination cursor in {kind.list_method}")
            seen.add(cursor)

    def lookup(self, kind: CapabilityKind | str, name: str) -> Any:
        """Return the cached descriptor; never touches the network.

        Tools and prompts are looked up by name.  Resources are keyed by URI
        and also match on their ``name``.

        Raises:
            UnknownCapabilityError: *name* is not in the cached snapshot.
        """
        kind = CapabilityKind(kind)
        self._state.require_ready(f"lookup {kind.singular}")
        return self._cache.registry(kind).lookup(name)

    def list_cached(self, kind: CapabilityKind | str) -> list[Any]:
        kind = CapabilityKind(kind)
        self._state.require_ready(f"list {kind.value}")
        return self._cache.registry(kind).list()

    # ------------------------------------------------------------------
    # Calls
    # ------------------------------------------------------------------

    async def start_request(
        self,
        method: str,
        params: dict[str, Any] | None = None,
        *,
        progress: ProgressCallback | None = None,
    ) -> CallHandle:
        """Send a request and return a handle to await or cancel it."""
        return await self._start(method, params, operation=method, progress=progress)

    async def invoke(
        self,
        method: str,
        params: dict[str, Any] | None = None,
        *,
        timeout: float | None = None,
        progress: ProgressCallback | None = None,
    ) -> InvocationResult:
        """Send a request and wait for its reply.

        *timeout* defaults to ``SessionConfig.request_timeout``.
        """
        with _tracer.start_as_current_span("mcpc.invoke") as span:
            span.set_attribute(ATTR_METHOD, method)
            handle = await self.start_request(method, params, progress=progress)
            span.set_attribute(ATTR_REQUEST_ID, str(handle.request_id))
            return await handle.result(self._timeout(timeout))

    async def call_tool(
        self,
        name: str,
        arguments: dict[str, Any] | None = None,
        *,
        timeout: float | None = None,
        progress: ProgressCallback | None = None,
    ) -> ToolResult:
        """Call a cached tool.

        Validation, the approval gate and the cache lookup all run before
        anything is sent.  A tool that runs and fails returns a
        ``tool_execution_error`` result rather than raising.

        Raises:
            UnknownCapabilityError: *name* is not in the tool cache.
            InvalidArgumentsError: *arguments* violate the input schema.
            ApprovalDeniedError: The approval gate said no.
            RequestError: The server rejected the request itself.
            ProtocolError: The result was malformed.
        """
        self._state.require_ready("call tool")
        tool: Tool = self._cache.tools.lookup(name)
        arguments = dict(arguments or {})
        self._validate_arguments(tool, arguments)

        if self._gate is not None:
            decision = await self._gate.decide(
                ApprovalRequest(
                    tool_name=name,
                    arguments=arguments,
                    annotations=tool.annotations or {},
                    session_id=self.session_id,
                )
            )
            if not decision.allowed:
                logger.info("Tool call %s denied: %s", name, decision.reason)
                raise ApprovalDeniedError(name, decision.reason)

        with _tracer.start_as_current_span("mcpc.call_tool") as span:
            span.set_attribute(ATTR_SESSION_ID, self.session_id)
            span.set_attribute(ATTR_TOOL_NAME, name)

            result = await self.invoke(
                "tools/call",
                {"name": name, "arguments": arguments},
                timeout=timeout,
                progress=progress,
            )
            if result.error is not None:
                raise RequestError(
                    "tools/call",
                    result.error.code,
                    result.error.message,
                    result.error.data,
                    request_id=result.request_id,
                )
            try:
                call_result = CallToolResult.model_validate(result.payload)
            except ValidationError as exc:
                raise ProtocolError(
                    f"Invalid tools/call result for {name}: {exc}", request_id=result.request_id
                ) from exc
            if not call_result.is_error:
                self._validate_output(tool, call_result)

            tool_result = ToolResult.from_call_result(name, call_result)
            span.set_attribute(ATTR_TOOL_OUTCOME, tool_result.kind.value)
            return tool_result

    async def read_resource(self, uri: str, *, timeout: float | None = None) -> ReadResourceResult:
        """Read a resource.  Never consults the approval gate."""
        self._state.require_ready("read resource")
        result = await self.invoke("resources/read", {"uri": uri}, timeout=timeout)
        return self._parse(result, ReadResourceResult)

    async def get_prompt(
        self,
        name: str,
        arguments: dict[str, str] | None = None,
        *,
        timeout: float | None = None,
    ) -> GetPromptResult:
        """Render a cached prompt with *arguments*."""
        self._state.require_ready("get prompt")
        prompt: Prompt = self._cache.prompts.lookup(name)
        arguments = dict(arguments or {})
        missing = [arg for arg in prompt.required_arguments if arg not in arguments]
        if missing:
            raise InvalidArgumentsError(name, f"missing required argument(s): {', '.join(missing)}")

        params: dict[str, Any] = {"name": name}
        if arguments:
            params["arguments"] = arguments
        result = await self.invoke("prompts/get", params, timeout=timeout)
        return self._parse(result, GetPromptResult)

    async def ping(self, *, timeout: float | None = None) -> None:
        result = await self.invoke("ping", timeout=timeout)
        if result.error is not None:
            raise RequestError("ping", result.error.code, result.error.message)

    async def set_logging_level(self, level: LoggingLevel) -> None:
        """Ask the server to send log messages at *level* and above."""
        self._state.require_ready("set logging level")
        if self.server_capabilities.logging is None:
            raise UnsupportedError("logging/setLevel")
        result = await self.invoke("logging/setLevel", {"level": level})
        if result.error is not None:
            raise RequestError("logging/setLevel", result.error.code, result.error.message)

    async def send_notification(self, method: str, params: dict[str, Any] | None = None) -> None:
        """Send a fire-and-forget notification; bypasses the pending table."""
        self._state.require_open(f"notify {method}")
        try:
            await self._send(JsonRpcNotification(method=method, params=params))
        except ConnectionLostError as exc:
            await self._connection_lost(exc)
            raise

    # ------------------------------------------------------------------
    # Subscriptions
    # ------------------------------------------------------------------

    def subscribe(
        self,
        callback: NotificationCallback,
        methods: Iterable[str] | None = None,
    ) -> Callable[[], None]:
        """Deliver server notifications (optionally only *methods*) to *callback*.

        Returns a function that removes the subscription.
        """
        entry = (callback, frozenset(methods) if methods is not None else None)
        self._subscribers.append(entry)

        def unsubscribe() -> None:
            if entry in self._subscribers:
                self._subscribers.remove(entry)

        return unsubscribe

    def add_error_listener(self, listener: ErrorListener) -> Callable[[], None]:
        """Call *listener* for every transport or protocol failure."""
        self._error_listeners.append(listener)

        def remove() -> None:
            if listener in self._error_listeners:
                self._error_listeners.remove(listener)

        return remove

    # ------------------------------------------------------------------
    # Internals: sending
    # ------------------------------------------------------------------

    def _timeout(self, timeout: float | None) -> float | None:
        return timeout if timeout is not None else self._config.request_timeout

    async def _start(
        self,
        method: str,
        params: dict[str, Any] | None,
        *,
        operation: str,
        progress: ProgressCallback | None = None,
        allow_handshaking: bool = False,
    ) -> CallHandle:
        if allow_handshaking:
            self._state.require_open(operation)
        else:
            self._state.require_ready(operation)

        call = self._dispatcher.register(method, params, progress=progress)
        if progress is not None:
            params = dict(params or {})
            params["_meta"] = {**params.get("_meta", {}), "progressToken": call.request_id}

        try:
            await self._send(JsonRpcRequest(id=call.request_id, method=method, params=params))
        except ConnectionLostError as exc:
            self._dispatcher.discard(call.request_id)
            await self._connection_lost(exc)
            raise
        except BaseException:
            self._dispatcher.discard(call.request_id)
            raise
        return CallHandle(self, call)

    async def _send(self, message: BaseModel) -> None:
        """Encode and write one frame; writes are serialised in issue order."""
        transport = self._transport
        if transport is None:
            msg = "no transport"
            raise SessionClosedError(msg)
        data = self._codec.encode(message)
        async with self._send_lock:
            try:
                await transport.send(data)
            except (TransportError, OSError) as exc:
                raise ConnectionLostError(f"send failed: {exc}") from exc

    def _abandon(self, call: PendingCall, reason: str) -> None:
        """Drop a call locally and tell the server, best effort."""
        if self._dispatcher.discard(call.request_id) is None:
            return
        logger.debug("Abandoned %s (id=%s): %s", call.method, call.request_id, reason)
        if self._config.propagate_cancellation and self._state.state is SessionState.READY:
            self._spawn(
                self.send_notification(
                    "notifications/cancelled",
                    {"requestId": call.request_id, "reason": reason},
                )
            )

    def _spawn(self, coro: Coroutine[Any, Any, Any]) -> None:
        task = asyncio.create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background_done)

    def _background_done(self, task: asyncio.Task[Any]) -> None:
        self._background.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.debug("Background send failed: %s", task.exception())

    # ------------------------------------------------------------------
    # Internals: receiving
    # ------------------------------------------------------------------

    async def _receive_loop(self, transport: Transport) -> None:
        try:
            while True:
                data = await transport.receive()
                self._handle_frame(data)
        except asyncio.CancelledError:
            raise
        except TransportClosedError as exc:
            await self._connection_lost(ConnectionLostError(str(exc)))
        except Exception as exc:
            await self._connection_lost(ConnectionLostError(f"{type(exc).__name__}: {exc}"))

    def _handle_frame(self, data: bytes) -> None:
        try:
            message = self._codec.decode(data)
        except ProtocolError as exc:
            logger.warning("Session %s: %s", self.session_id, exc)
            if exc.request_id is not None:
                self._dispatcher.reject(exc.request_id, exc)
            self._publish_error(exc)
            return

        if isinstance(message, JsonRpcResponse | JsonRpcErrorResponse):
            if message.id is None:
                assert isinstance(message, JsonRpcErrorResponse)
                self._publish_error(
                    ProtocolError(f"Server error without request id: {message.error.message}")
                )
            else:
                self._dispatcher.resolve(message)
        elif isinstance(message, JsonRpcNotification):
            self._route_notification(message)
        else:
            task = asyncio.create_task(self._handle_server_request(message))
            self._server_requests[message.id] = task
            task.add_done_callback(lambda _: self._server_requests.pop(message.id, None))

    def _route_notification(self, notification: JsonRpcNotification) -> None:
        progress: ProgressCallback | None = None
        params = notification.params or {}
        key = _ROUTING_KEYS.get(notification.method)
        if key is not None and params.get(key) is not None and not _is_request_id(params[key]):
            exc = ProtocolError(f"Invalid {key} in {notification.method}: {params[key]!r}")
            logger.warning("Session %s: %s", self.session_id, exc)
            self._publish_error(exc)
            return
        if notification.method == "notifications/progress":
            token = params.get("progressToken")
            if token is not None:
                progress = self._dispatcher.progress_callback(token)
        elif notification.method == "notifications/cancelled":
            task = self._server_requests.get(params.get("requestId"))
            if task is not None:
                task.cancel()
        self._notifications.put_nowait((notification, progress))

    async def _notification_pump(self) -> None:
        while True:
            notification, progress = await self._notifications.get()
            await self._deliver(notification, progress)

    async def _deliver(
        self, notification: JsonRpcNotification, progress: ProgressCallback | None
    ) -> None:
        params = notification.params or {}
        try:
            if progress is not None:
                update = ProgressParams.model_validate(params)
                await progress(update.progress, update.total, update.message)
            elif notification.method == "notifications/message":
                self._log_server_message(LoggingMessageParams.model_validate(params))
        except Exception:
            logger.exception("Failed to handle %s", notification.method)

        for callback, methods in list(self._subscribers):
            if methods is not None and notification.method not in methods:
                continue
            try:
                await callback(notification)
            except Exception:
                logger.exception("Notification subscriber failed on %s", notification.method)

    def _log_server_message(self, message: LoggingMessageParams) -> None:
        level = _SERVER_LOG_LEVELS.get(message.level, logging.INFO)
        server_logger.log(
            level,
            "[%s%s] %s",
            self._server_name or (self.server_info.name if self.server_info else "server"),
            f":{message.logger}" if message.logger else "",
            message.data,
        )

    async def _handle_server_request(self, request: JsonRpcRequest) -> None:
        reply: JsonRpcResponse | JsonRpcErrorResponse
        try:
            result = await self._handlers.handle(request)
            reply = JsonRpcResponse(id=request.id, result=result)
        except UnsupportedError as exc:
            logger.debug("Rejecting server request: %s", exc)
            reply = JsonRpcErrorResponse(
                id=request.id,
                error=JsonRpcError(
                    code=METHOD_NOT_FOUND, message="Unsupported", data={"method": request.method}
                ),
            )
        except ValidationError as exc:
            reply = JsonRpcErrorResponse(
                id=request.id,
                error=JsonRpcError(code=INVALID_PARAMS, message=f"Invalid params: {exc}"),
            )
        except Exception as exc:
            logger.exception("Handler for %s failed", request.method)
            reply = JsonRpcErrorResponse(
                id=request.id,
                error=JsonRpcError(code=INTERNAL_ERROR, message=str(exc)),
            )

        try:
            await self._send(reply)
        except (ConnectionLostError, SessionClosedError) as exc:
            logger.warning("Could not answer %s (id=%s): %s", request.method, request.id, exc)

    # ------------------------------------------------------------------
    # Internals: failure and teardown
    # ------------------------------------------------------------------

    async def _connection_lost(self, exc: ConnectionLostError) -> None:
        if self._state.state not in (SessionState.HANDSHAKING, SessionState.READY):
            return
        self._state.fail(exc)
        logger.warning("Session %s failed: %s", self.session_id, exc)
        self._dispatcher.fail_all(exc)
        self._publish_error(exc)
        await self._stop_tasks()
        await self._release_transport()
        self._closed.set()

    def _publish_error(self, exc: MCPClientError) -> None:
        self._last_error = exc
        for listener in list(self._error_listeners):
            try:
                listener(exc)
            except Exception:
                logger.exception("Error listener failed")

    async def _stop_tasks(self) -> None:
        current = asyncio.current_task()
        tasks = [
            task
            for task in (self._receive_task, self._pump_task, *self._server_requests.values())
            if task is not None and task is not current and not task.done()
        ]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    async def _release_transport(self) -> None:
        transport, self._transport = self._transport, None
        if transport is None:
            return
        _claim(transport, None)
        try:
            await transport.close()
        except Exception:
            logger.warning("Error while closing transport", exc_info=True)

    # ------------------------------------------------------------------
    # Internals: validation
    # ------------------------------------------------------------------

    def _validate_arguments(self, tool: Tool, arguments: dict[str, Any]) -> None:
        try:
            validate_schema(arguments, tool.input_schema)
        except SchemaValidationError as exc:
            raise InvalidArgumentsError(tool.name, exc.message) from exc
        except SchemaError:
            logger.warning("Tool %s has an invalid input schema; skipping validation", tool.name)

    def _validate_output(self, tool: Tool, result: CallToolResult) -> None:
        if tool.output_schema is None:
            return
        if result.structured_content is None:
            raise ProtocolError(f"Tool {tool.name} declares an output schema but returned no structured content")
        try:
            validate_schema(result.structured_content, tool.output_schema)
        except SchemaValidationError as exc:
            raise ProtocolError(f"Tool {tool.name} returned invalid structured content: {exc.message}") from exc
        except SchemaError:
            logger.warning("Tool %s has an invalid output schema; skipping validation", tool.name)

    @staticmethod
    def _parse(result: InvocationResult, model: type[Any]) -> Any:
        if result.error is not None:
            raise RequestError(
                result.method,
                result.error.code,
                result.error.message,
                result.error.data,
                request_id=result.request_id,
            )
        try:
            return model.model_validate(result.payload)
        except ValidationError as exc:
            raise ProtocolError(
                f"Invalid {result.method} result: {exc}", request_id=result.request_id
            ) from exc
