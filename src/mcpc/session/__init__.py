"""Client session: lifecycle, capability cache, and call dispatch."""

from mcpc.session.dispatcher import CallDispatcher, PendingCall
from mcpc.session.handlers import RequestHandlers, ServerRequestKind
from mcpc.session.registry import CapabilityCache, CapabilityKind, CapabilityRegistry
from mcpc.session.results import ErrorDetail, InvocationResult, ResultKind, ToolResult, ToolResultKind
from mcpc.session.session import CallHandle, ClientSession
from mcpc.session.state import SessionState, SessionStateMachine

__all__ = [
    "CallDispatcher",
    "CallHandle",
    "CapabilityCache",
    "CapabilityKind",
    "CapabilityRegistry",
    "ClientSession",
    "ErrorDetail",
    "InvocationResult",
    "PendingCall",
    "RequestHandlers",
    "ResultKind",
    "ServerRequestKind",
    "SessionState",
    "SessionStateMachine",
    "ToolResult",
    "ToolResultKind",
]
