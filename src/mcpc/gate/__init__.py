"""Approval gate: policy hook consulted before tool calls are dispatched."""

from mcpc.gate.gate import AllowAllGate, ApprovalGate, CLIGate, PolicyGate
from mcpc.gate.models import (
    ApprovalDecision,
    ApprovalRequest,
    Decision,
    GateConfig,
    PolicyAction,
    ToolPolicy,
)
from mcpc.gate.policy import PolicyEngine

__all__ = [
    "AllowAllGate",
    "ApprovalDecision",
    "ApprovalGate",
    "ApprovalRequest",
    "CLIGate",
    "Decision",
    "GateConfig",
    "PolicyAction",
    "PolicyEngine",
    "PolicyGate",
    "ToolPolicy",
]
