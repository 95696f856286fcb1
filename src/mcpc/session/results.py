"""Invocation outcomes returned to callers.

Cancellation, timeouts and session loss are raised; these models carry the
outcomes a caller is expected to branch on.
"""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from mcpc.protocol.models import CallToolResult, ContentPart, JsonRpcError, TextContent


class ErrorDetail(BaseModel):
    """Code and message of a failed invocation."""

    model_config = ConfigDict(frozen=True)

    code: int
    message: str
    data: Any = None

    @classmethod
    def from_rpc(cls, error: JsonRpcError) -> ErrorDetail:
        return cls(code=error.code, message=error.message, data=error.data)


class ResultKind(str, Enum):
    SUCCESS = "success"
    FAILURE = "failure"


class InvocationResult(BaseModel):
    """Outcome of a raw :meth:`~mcpc.session.session.ClientSession.invoke`."""

    model_config = ConfigDict(frozen=True)

    request_id: int | str
    method: str
    kind: ResultKind
    payload: dict[str, Any] = Field(default_factory=dict)
    error: ErrorDetail | None = None

    @property
    def ok(self) -> bool:
        return self.kind is ResultKind.SUCCESS


class ToolResultKind(str, Enum):
    SUCCESS = "success"
    TOOL_EXECUTION_ERROR = "tool_execution_error"


class ToolResult(BaseModel):
    """Outcome of ``call_tool``.

    ``TOOL_EXECUTION_ERROR`` means the tool ran and reported failure; the
    server's explanation is in ``content``.
    """

    model_config = ConfigDict(frozen=True)

    tool_name: str
    kind: ToolResultKind
    content: list[ContentPart] = []
    structured_content: dict[str, Any] | None = None

    @property
    def ok(self) -> bool:
        return self.kind is ToolResultKind.SUCCESS

    @property
    def text(self) -> str:
        """Concatenated text of all text parts."""
        return "\n".join(part.text for part in self.content if isinstance(part, TextContent))

    @classmethod
    def from_call_result(cls, tool_name: str, result: CallToolResult) -> ToolResult:
        kind = ToolResultKind.TOOL_EXECUTION_ERROR if result.is_error else ToolResultKind.SUCCESS
        return cls(
            tool_name=tool_name,
            kind=kind,
            content=list(result.content),
            structured_content=result.structured_content,
        )
