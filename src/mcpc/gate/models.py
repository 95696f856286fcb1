"""Data models for the approval gate."""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class Decision(str, Enum):
    """Final verdict on a tool call."""

    ALLOW = "allow"
    DENY = "deny"


class PolicyAction(str, Enum):
    """Action a policy rule prescribes for a tool."""

    ALLOW = "allow"
    DENY = "deny"
    ASK = "ask"


class ToolPolicy(BaseModel):
    """A single policy rule matching tool names to an action."""

    pattern: str = Field(..., description="Tool name or glob pattern (e.g. 'file_*', '*').")
    action: PolicyAction = Field(..., description="What to do when this rule matches.")
    reason: str = Field(default="", description="Human-readable rationale for the rule.")


class GateConfig(BaseModel):
    """Configuration for :class:`~mcpc.gate.gate.PolicyGate`."""

    enabled: bool = Field(default=True, description="Master switch; disabled allows everything.")
    default_action: PolicyAction = Field(
        default=PolicyAction.ASK,
        description="Action when no policy rule matches.",
    )
    safe_tools: list[str] = Field(
        default_factory=list,
        description="Tool names that are always allowed (fast-path bypass).",
    )
    trust_read_only_hint: bool = Field(
        default=False,
        description="Allow tools whose annotations declare readOnlyHint=true.",
    )
    policies: list[ToolPolicy] = Field(
        default_factory=list,
        description="Ordered policy rules (first match wins).",
    )
    approval_timeout: float = Field(
        default=300.0,
        description="Seconds to wait for interactive approval before denying.",
    )


class ApprovalRequest(BaseModel):
    """A tool call awaiting a decision."""

    tool_name: str
    arguments: dict[str, Any] = Field(default_factory=dict)
    annotations: dict[str, Any] = Field(default_factory=dict)
    session_id: str = ""
    reason: str = Field(default="", description="Why approval is being requested.")


class ApprovalDecision(BaseModel):
    """The gate's verdict on an approval request."""

    decision: Decision
    reason: str = ""

    @property
    def allowed(self) -> bool:
        return self.decision is Decision.ALLOW

    @classmethod
    def allow(cls, reason: str = "") -> ApprovalDecision:
        return cls(decision=Decision.ALLOW, reason=reason)

    @classmethod
    def deny(cls, reason: str = "") -> ApprovalDecision:
        return cls(decision=Decision.DENY, reason=reason)
