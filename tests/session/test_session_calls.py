"""ClientSession call tests: discovery, tool calls, cancellation, notifications."""

import asyncio
import logging
import random
from typing import Any
from unittest.mock import AsyncMock

import pytest

from mcpc.config import SessionConfig
from mcpc.errors import (
    ApprovalDeniedError,
    CallTimeoutError,
    DiscoveryFailedError,
    InvalidArgumentsError,
    InvocationCancelledError,
    ProtocolError,
    RequestError,
    UnknownCapabilityError,
    UnsupportedError,
)
from mcpc.gate.gate import PolicyGate
from mcpc.gate.models import ApprovalDecision, GateConfig, PolicyAction, ToolPolicy
from mcpc.protocol.models import JsonRpcNotification, TextResourceContents
from mcpc.session.results import ResultKind, ToolResultKind
from mcpc.session.session import ClientSession
from mcpc.session.state import SessionState
from tests.fakes import DELETE_TOOL, ECHO_TOOL, NO_REPLY, FakeServer, RpcFailure, delayed, eventually


async def _connected(server: FakeServer, **kwargs: Any) -> ClientSession:
    config = kwargs.pop("config", SessionConfig(request_timeout=2.0))
    session = ClientSession(config, server_name="fake", **kwargs)
    await session.connect(server)
    await session.discover("tools")
    return session


class TestDiscovery:
    async def test_tools_cached(self, session: ClientSession) -> None:
        tools = session.list_cached("tools")
        assert [t.name for t in tools] == ["echo", "delete_file"]
        assert session.lookup("tools", "echo").input_schema["required"] == ["text"]

    async def test_lookup_does_not_send(self, session: ClientSession, server: FakeServer) -> None:
        before = server.send_count
        session.lookup("tools", "echo")
        with pytest.raises(UnknownCapabilityError):
            session.lookup("tools", "missing")
        assert server.send_count == before

    async def test_pagination(self, server: FakeServer) -> None:
        pages = {
            None: {"tools": [ECHO_TOOL], "nextCursor": "p2"},
            "p2": {"tools": [DELETE_TOOL], "nextCursor": "p3"},
            "p3": {"tools": [{"name": "third"}]},
        }
        server.on("tools/list", lambda params: pages[params.get("cursor")])
        session = await _connected(server)

        assert [t.name for t in session.list_cached("tools")] == ["echo", "delete_file", "third"]
        assert len(server.requests("tools/list")) == 3
        await session.close()

    async def test_repeated_cursor_fails(self, server: FakeServer) -> None:
        session = await _connected(server)
        server.on("tools/list", lambda _: {"tools": [], "nextCursor": "again"})

        with pytest.raises(DiscoveryFailedError, match="Repeated pagination cursor"):
            await session.discover("tools")
        assert "echo" in [t.name for t in session.list_cached("tools")]
        await session.close()

    async def test_failure_keeps_previous_snapshot(self, session: ClientSession, server: FakeServer) -> None:
        def broken(_: dict) -> dict:
            raise RpcFailure(-32603, "database down")

        server.on("tools/list", broken)
        with pytest.raises(DiscoveryFailedError) as exc_info:
            await session.discover("tools")
        assert exc_info.value.kind == "tools"
        assert session.lookup("tools", "echo").name == "echo"

    async def test_retries(self, server: FakeServer) -> None:
        attempts = []

        def flaky(_: dict) -> dict:
            attempts.append(1)
            if len(attempts) == 1:
                raise RpcFailure(-32603, "try again")
            return {"tools": [ECHO_TOOL]}

        server.on("tools/list", flaky)
        session = await _connected(server, config=SessionConfig(discovery_retries=1))
        assert len(attempts) == 2
        assert session.lookup("tools", "echo").name == "echo"
        await session.close()

    async def test_undeclared_capability_skips_round_trip(self) -> None:
        server = FakeServer(capabilities={"tools": {}})
        session = await _connected(server)

        assert await session.discover("prompts") == []
        assert await session.discover("resources") == []
        assert server.requests("prompts/list") == []
        assert server.requests("resources/list") == []
        await session.close()

    async def test_lookups_during_discovery_see_a_whole_snapshot(
        self, session: ClientSession, server: FakeServer
    ) -> None:
        server.on("tools/list", delayed(0.05, {"tools": [{"name": "fresh"}]}))
        refresh = asyncio.create_task(session.discover("tools"))

        seen: list[list[str]] = []
        while not refresh.done():
            seen.append(sorted(t.name for t in session.list_cached("tools")))
            await asyncio.sleep(0.005)
        await refresh

        assert all(names in (["delete_file", "echo"], ["fresh"]) for names in seen)
        assert seen[0] == ["delete_file", "echo"]
        assert [t.name for t in session.list_cached("tools")] == ["fresh"]
        with pytest.raises(UnknownCapabilityError):
            session.lookup("tools", "echo")


class TestCallTool:
    async def test_echo(self, session: ClientSession, server: FakeServer) -> None:
        result = await session.call_tool("echo", {"text": "hello"})

        assert result.ok
        assert result.kind is ToolResultKind.SUCCESS
        assert result.text == "hello"
        assert result.structured_content == {"text": "hello"}
        call = server.requests("tools/call")[0]
        assert call["params"] == {"name": "echo", "arguments": {"text": "hello"}}

    async def test_unknown_tool_sends_nothing(self, session: ClientSession, server: FakeServer) -> None:
        before = server.send_count
        with pytest.raises(UnknownCapabilityError, match="Unknown tool: nope"):
            await session.call_tool("nope", {})
        assert server.send_count == before

    async def test_invalid_arguments_send_nothing(self, session: ClientSession, server: FakeServer) -> None:
        before = server.send_count
        with pytest.raises(InvalidArgumentsError, match="echo"):
            await session.call_tool("echo", {"text": 42})
        with pytest.raises(InvalidArgumentsError):
            await session.call_tool("echo", {})
        assert server.send_count == before

    async def test_tool_execution_error_is_a_result(self, session: ClientSession, server: FakeServer) -> None:
        server.on("tools/call", lambda _: {"content": [{"type": "text", "text": "disk full"}], "isError": True})
        result = await session.call_tool("echo", {"text": "x"})
        assert not result.ok
        assert result.kind is ToolResultKind.TOOL_EXECUTION_ERROR
        assert result.text == "disk full"

    async def test_request_error_raises(self, session: ClientSession, server: FakeServer) -> None:
        def reject(_: dict) -> dict:
            raise RpcFailure(-32602, "unknown tool")

        server.on("tools/call", reject)
        with pytest.raises(RequestError) as exc_info:
            await session.call_tool("echo", {"text": "x"})
        assert exc_info.value.code == -32602
        assert exc_info.value.method == "tools/call"

    async def test_malformed_result(self, session: ClientSession, server: FakeServer) -> None:
        server.on("tools/call", lambda _: {"content": "not a list"})
        with pytest.raises(ProtocolError, match="Invalid tools/call result"):
            await session.call_tool("echo", {"text": "x"})
        assert session.state is SessionState.READY

    async def test_output_schema(self) -> None:
        tool = {
            "name": "add",
            "inputSchema": {"type": "object"},
            "outputSchema": {
                "type": "object",
                "properties": {"sum": {"type": "number"}},
                "required": ["sum"],
            },
        }
        server = FakeServer(tools=[tool])
        server.on("tools/call", lambda p: {"content": [], "structuredContent": p["arguments"]})
        session = await _connected(server)

        result = await session.call_tool("add", {"sum": 3})
        assert result.structured_content == {"sum": 3}
        with pytest.raises(ProtocolError, match="invalid structured content"):
            await session.call_tool("add", {"sum": "three"})
        await session.close()

    async def test_replies_matched_by_id_not_order(self, session: ClientSession, server: FakeServer) -> None:
        async def reply_after(params: dict) -> dict:
            text = params["arguments"]["text"]
            await asyncio.sleep(0.05 if text == "slow" else 0)
            return {"content": [{"type": "text", "text": text}]}

        server.on("tools/call", reply_after)
        finished: list[str] = []

        async def call(text: str) -> str:
            result = await session.call_tool("echo", {"text": text})
            finished.append(result.text)
            return result.text

        results = await asyncio.gather(call("slow"), call("fast"))

        assert results == ["slow", "fast"]
        assert finished == ["fast", "slow"]

    async def test_many_concurrent_calls(self, session: ClientSession, server: FakeServer) -> None:
        rng = random.Random(7)

        async def jittered(params: dict) -> dict:
            await asyncio.sleep(rng.random() / 50)
            return {"content": [{"type": "text", "text": params["arguments"]["text"]}]}

        server.on("tools/call", jittered)
        texts = [f"msg-{i}" for i in range(25)]
        results = await asyncio.gather(*(session.call_tool("echo", {"text": t}) for t in texts))

        assert [r.text for r in results] == texts
        ids = [f["id"] for f in server.requests("tools/call")]
        assert len(set(ids)) == len(ids)
        assert session.pending_count == 0


class TestApprovalGate:
    async def test_denied_call_sends_nothing(self, server: FakeServer) -> None:
        gate = PolicyGate(
            GateConfig(
                default_action=PolicyAction.ALLOW,
                policies=[ToolPolicy(pattern="delete_*", action=PolicyAction.DENY, reason="destructive")],
            )
        )
        session = await _connected(server, gate=gate)
        before = server.send_count

        with pytest.raises(ApprovalDeniedError) as exc_info:
            await session.call_tool("delete_file", {"path": "/etc/passwd"})

        assert exc_info.value.reason == "destructive"
        assert server.send_count == before
        assert server.requests("tools/call") == []
        assert (await session.call_tool("echo", {"text": "ok"})).ok
        await session.close()

    async def test_gate_sees_arguments_and_annotations(self, server: FakeServer) -> None:
        gate = AsyncMock()
        gate.decide = AsyncMock(return_value=ApprovalDecision.allow("fine"))
        session = await _connected(server, gate=gate)

        await session.call_tool("delete_file", {"path": "/tmp/x"})

        request = gate.decide.await_args.args[0]
        assert request.tool_name == "delete_file"
        assert request.arguments == {"path": "/tmp/x"}
        assert request.annotations == {"destructiveHint": True}
        assert request.session_id == session.session_id
        await session.close()

    async def test_ask_without_interactive_gate_denies(self, server: FakeServer) -> None:
        session = await _connected(server, gate=PolicyGate(GateConfig()))
        with pytest.raises(ApprovalDeniedError, match="no interactive gate"):
            await session.call_tool("echo", {"text": "x"})
        await session.close()

    async def test_gate_not_consulted_for_invalid_arguments(self, server: FakeServer) -> None:
        gate = AsyncMock()
        session = await _connected(server, gate=gate)
        with pytest.raises(InvalidArgumentsError):
            await session.call_tool("echo", {})
        gate.decide.assert_not_awaited()
        await session.close()


class TestCancellationAndTimeout:
    async def test_cancel_then_late_reply(self, session: ClientSession, server: FakeServer) -> None:
        server.on("tools/call", lambda _: NO_REPLY)
        handle = await session.start_request("tools/call", {"name": "echo", "arguments": {"text": "x"}})

        assert handle.cancel("user pressed stop")
        with pytest.raises(InvocationCancelledError):
            await handle.result()
        await eventually(lambda: bool(server.notifications("notifications/cancelled")))
        cancelled = server.notifications("notifications/cancelled")[0]
        assert cancelled["params"] == {"requestId": handle.request_id, "reason": "user pressed stop"}

        server.push({"jsonrpc": "2.0", "id": handle.request_id, "result": {"content": []}})
        assert await session.invoke("ping") is not None
        assert session.state is SessionState.READY
        assert session.pending_count == 0

    async def test_cancel_after_completion(self, session: ClientSession) -> None:
        handle = await session.start_request("ping")
        result = await handle.result(1.0)
        assert result.ok
        assert handle.done()
        assert handle.cancel() is False

    async def test_timeout(self, session: ClientSession, server: FakeServer) -> None:
        server.on("tools/call", lambda _: NO_REPLY)
        with pytest.raises(CallTimeoutError) as exc_info:
            await session.call_tool("echo", {"text": "x"}, timeout=0.05)
        assert exc_info.value.method == "tools/call"
        assert session.pending_count == 0
        await eventually(lambda: bool(server.notifications("notifications/cancelled")))
        assert server.notifications("notifications/cancelled")[0]["params"]["reason"] == "timeout"

    async def test_timeout_without_propagation(self, server: FakeServer) -> None:
        session = await _connected(server, config=SessionConfig(propagate_cancellation=False))
        server.on("tools/call", lambda _: NO_REPLY)
        with pytest.raises(CallTimeoutError):
            await session.call_tool("echo", {"text": "x"}, timeout=0.02)
        await asyncio.sleep(0.01)
        assert server.notifications("notifications/cancelled") == []
        await session.close()

    async def test_task_cancellation_abandons_call(self, session: ClientSession, server: FakeServer) -> None:
        server.on("tools/call", lambda _: NO_REPLY)
        task = asyncio.create_task(session.call_tool("echo", {"text": "x"}))
        await eventually(lambda: bool(server.requests("tools/call")))
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        assert session.pending_count == 0

    async def test_other_calls_unaffected(self, session: ClientSession, server: FakeServer) -> None:
        async def maybe_hang(params: dict) -> Any:
            if params["arguments"]["text"] == "hang":
                return NO_REPLY
            return {"content": [{"type": "text", "text": "done"}]}

        server.on("tools/call", maybe_hang)
        hanging = asyncio.create_task(session.call_tool("echo", {"text": "hang"}, timeout=0.05))
        result = await session.call_tool("echo", {"text": "quick"})
        assert result.text == "done"
        with pytest.raises(CallTimeoutError):
            await hanging


class TestInvoke:
    async def test_failure_result(self, session: ClientSession) -> None:
        result = await session.invoke("custom/method", {"x": 1})
        assert result.kind is ResultKind.FAILURE
        assert result.error is not None and result.error.code == -32601

    async def test_success_payload(self, session: ClientSession, server: FakeServer) -> None:
        server.on("custom/echo", lambda params: {"got": params})
        result = await session.invoke("custom/echo", {"x": 1})
        assert result.ok
        assert result.payload == {"got": {"x": 1}}

    async def test_progress(self, session: ClientSession, server: FakeServer) -> None:
        async def with_progress(params: dict) -> dict:
            token = params["_meta"]["progressToken"]
            server.notify("notifications/progress", {"progressToken": token, "progress": 1, "total": 2})
            server.notify(
                "notifications/progress",
                {"progressToken": token, "progress": 2, "total": 2, "message": "done"},
            )
            await asyncio.sleep(0)
            return {"content": [{"type": "text", "text": "finished"}]}

        server.on("tools/call", with_progress)
        progress = AsyncMock()
        result = await session.call_tool("echo", {"text": "x"}, progress=progress)

        assert result.text == "finished"
        await eventually(lambda: progress.await_count == 2)
        assert progress.await_args_list[0].args == (1.0, 2.0, None)
        assert progress.await_args_list[1].args == (2.0, 2.0, "done")

    async def test_bad_frame_for_pending_call(self, session: ClientSession, server: FakeServer) -> None:
        server.on("custom/slow", lambda _: NO_REPLY)
        errors: list[Exception] = []
        session.add_error_listener(errors.append)
        handle = await session.start_request("custom/slow")

        server.push({"jsonrpc": "2.0", "id": handle.request_id, "result": "not an object"})

        with pytest.raises(ProtocolError):
            await handle.result(1.0)
        assert isinstance(errors[0], ProtocolError)
        assert session.state is SessionState.READY

    async def test_garbage_frame_does_not_kill_session(self, session: ClientSession, server: FakeServer) -> None:
        errors: list[Exception] = []
        session.add_error_listener(errors.append)
        server.push_raw(b"{garbage")
        server.push({"jsonrpc": "2.0", "id": None, "error": {"code": -32700, "message": "Parse error"}})
        await eventually(lambda: len(errors) == 2)
        await session.ping()
        assert session.state is SessionState.READY

    @pytest.mark.parametrize(
        ("method", "params"),
        [
            ("notifications/cancelled", {"requestId": [1]}),
            ("notifications/progress", {"progressToken": {"a": 1}, "progress": 1}),
        ],
    )
    async def test_unhashable_routing_id(
        self, session: ClientSession, server: FakeServer, method: str, params: dict[str, Any]
    ) -> None:
        errors: list[Exception] = []
        session.add_error_listener(errors.append)
        received: list[JsonRpcNotification] = []

        async def collect(notification: JsonRpcNotification) -> None:
            received.append(notification)

        session.subscribe(collect)
        server.notify(method, params)
        await eventually(lambda: len(errors) == 1)

        assert isinstance(errors[0], ProtocolError)
        await session.ping()
        assert session.state is SessionState.READY
        assert received == []


class TestResourcesAndPrompts:
    async def test_read_resource(self) -> None:
        server = FakeServer(resources=[{"uri": "file:///notes.txt", "name": "notes", "mimeType": "text/plain"}])
        server.on(
            "resources/read",
            lambda p: {"contents": [{"uri": p["uri"], "mimeType": "text/plain", "text": "hello"}]},
        )
        session = await _connected(server)
        await session.discover("resources")

        assert session.lookup("resources", "file:///notes.txt").name == "notes"
        assert session.lookup("resources", "notes").uri == "file:///notes.txt"
        result = await session.read_resource("file:///notes.txt")
        content = result.contents[0]
        assert isinstance(content, TextResourceContents)
        assert content.text == "hello"
        await session.close()

    async def test_read_resource_error(self, session: ClientSession) -> None:
        with pytest.raises(RequestError) as exc_info:
            await session.read_resource("file:///missing")
        assert exc_info.value.method == "resources/read"

    async def test_get_prompt(self) -> None:
        prompt = {
            "name": "review",
            "arguments": [{"name": "code", "required": True}, {"name": "style"}],
        }
        server = FakeServer(prompts=[prompt])
        server.on(
            "prompts/get",
            lambda p: {
                "description": "Code review",
                "messages": [
                    {"role": "user", "content": {"type": "text", "text": f"Review: {p['arguments']['code']}"}}
                ],
            },
        )
        session = await _connected(server)
        await session.discover("prompts")

        result = await session.get_prompt("review", {"code": "x = 1"})
        assert result.messages[0].content.text == "Review: x = 1"  # type: ignore[union-attr]
        assert server.requests("prompts/get")[0]["params"] == {"name": "review", "arguments": {"code": "x = 1"}}
        await session.close()

    async def test_get_prompt_missing_required_argument(self) -> None:
        server = FakeServer(prompts=[{"name": "review", "arguments": [{"name": "code", "required": True}]}])
        session = await _connected(server)
        await session.discover("prompts")
        before = server.send_count

        with pytest.raises(InvalidArgumentsError, match="code"):
            await session.get_prompt("review", {"style": "terse"})
        assert server.send_count == before
        await session.close()

    async def test_get_unknown_prompt(self, session: ClientSession) -> None:
        with pytest.raises(UnknownCapabilityError, match="Unknown prompt"):
            await session.get_prompt("nope")


class TestNotifications:
    async def test_delivered_in_arrival_order(self, session: ClientSession, server: FakeServer) -> None:
        received: list[int] = []

        async def collect(notification: JsonRpcNotification) -> None:
            await asyncio.sleep(rng.random() / 100)
            received.append(notification.params["seq"])  # type: ignore[index]

        rng = random.Random(3)
        session.subscribe(collect)
        for seq in range(10):
            server.notify("notifications/resources/updated", {"uri": "file:///x", "seq": seq})

        await eventually(lambda: len(received) == 10)
        assert received == list(range(10))

    async def test_method_filter_and_unsubscribe(self, session: ClientSession, server: FakeServer) -> None:
        tools_changed = AsyncMock()
        everything = AsyncMock()
        session.subscribe(tools_changed, methods=["notifications/tools/list_changed"])
        unsubscribe = session.subscribe(everything)

        server.notify("notifications/resources/list_changed")
        server.notify("notifications/tools/list_changed")
        await eventually(lambda: tools_changed.await_count == 1 and everything.await_count == 2)

        unsubscribe()
        server.notify("notifications/tools/list_changed")
        await eventually(lambda: tools_changed.await_count == 2)
        assert everything.await_count == 2

    async def test_failing_subscriber_does_not_stop_delivery(
        self, session: ClientSession, server: FakeServer
    ) -> None:
        session.subscribe(AsyncMock(side_effect=RuntimeError("boom")))
        good = AsyncMock()
        session.subscribe(good)

        server.notify("notifications/tools/list_changed")
        server.notify("notifications/tools/list_changed")
        await eventually(lambda: good.await_count == 2)

    async def test_server_log_forwarded(
        self, session: ClientSession, server: FakeServer, caplog: pytest.LogCaptureFixture
    ) -> None:
        with caplog.at_level(logging.DEBUG, logger="mcpc.server"):
            server.notify("notifications/message", {"level": "warning", "logger": "db", "data": "slow query"})
            await eventually(lambda: any(r.name == "mcpc.server" for r in caplog.records))

        record = next(r for r in caplog.records if r.name == "mcpc.server")
        assert record.levelno == logging.WARNING
        assert "[fake:db] slow query" in record.getMessage()

    async def test_send_notification(self, session: ClientSession, server: FakeServer) -> None:
        await session.send_notification("notifications/roots/list_changed")
        assert server.notifications("notifications/roots/list_changed")[0] == {
            "jsonrpc": "2.0",
            "method": "notifications/roots/list_changed",
        }


class TestPingAndLogging:
    async def test_ping(self, session: ClientSession, server: FakeServer) -> None:
        await session.ping()
        assert len(server.requests("ping")) == 1

    async def test_set_logging_level(self, session: ClientSession, server: FakeServer) -> None:
        server.on("logging/setLevel", lambda _: {})
        await session.set_logging_level("error")
        assert server.requests("logging/setLevel")[0]["params"] == {"level": "error"}

    async def test_set_logging_level_unsupported(self) -> None:
        server = FakeServer(capabilities={"tools": {}})
        session = await _connected(server)
        with pytest.raises(UnsupportedError):
            await session.set_logging_level("info")
        assert server.requests("logging/setLevel") == []
        await session.close()
