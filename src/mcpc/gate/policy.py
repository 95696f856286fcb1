"""PolicyEngine: evaluates a tool call against an ordered rule list.

Pure logic, no I/O.  Resolution order:

1. gate disabled → ``ALLOW``
2. ``safe_tools`` (exact names) → ``ALLOW``
3. ``readOnlyHint`` annotation, when trusted → ``ALLOW``
4. ``policies``, first matching glob wins
5. ``default_action``
"""

from __future__ import annotations

import fnmatch
from typing import NamedTuple

from mcpc.gate.models import ApprovalRequest, GateConfig, PolicyAction


class PolicyMatch(NamedTuple):
    action: PolicyAction
    reason: str


class PolicyEngine:
    """Evaluate approval requests against a :class:`GateConfig`."""

    def __init__(self, config: GateConfig) -> None:
        self._config = config

    @property
    def config(self) -> GateConfig:
        return self._config

    def evaluate(self, request: ApprovalRequest) -> PolicyMatch:
        config = self._config
        name = request.tool_name

        if not config.enabled:
            return PolicyMatch(PolicyAction.ALLOW, "gate disabled")
        if name in config.safe_tools:
            return PolicyMatch(PolicyAction.ALLOW, "safe tool")
        if config.trust_read_only_hint and request.annotations.get("readOnlyHint") is True:
            return PolicyMatch(PolicyAction.ALLOW, "read-only tool")

        for policy in config.policies:
            if fnmatch.fnmatchcase(name, policy.pattern):
                return PolicyMatch(policy.action, policy.reason or f"matched {policy.pattern!r}")

        return PolicyMatch(config.default_action, "default action")
