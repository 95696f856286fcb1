"""ApprovalGate protocol and implementations.

- ``ApprovalGate``: runtime-checkable protocol the session consults before
  every tool call.
- ``AllowAllGate``: always allows; equivalent to configuring no gate.
- ``PolicyGate``: rule-based, delegating ``ask`` verdicts to another gate.
- ``CLIGate``: prompts the user at the terminal.
"""

from __future__ import annotations

import asyncio
import logging
import sys
from typing import Protocol, runtime_checkable

from mcpc.gate.models import ApprovalDecision, ApprovalRequest, GateConfig, PolicyAction
from mcpc.gate.policy import PolicyEngine

logger = logging.getLogger(__name__)


@runtime_checkable
class ApprovalGate(Protocol):
    """Decides whether a tool call may be dispatched."""

    async def decide(self, request: ApprovalRequest) -> ApprovalDecision:
        """Return ``allow`` or ``deny`` for *request*."""
        ...


class AllowAllGate:
    """Always allows.  Satisfies :class:`ApprovalGate`."""

    async def decide(self, request: ApprovalRequest) -> ApprovalDecision:
        logger.debug("AllowAllGate: allowing %s", request.tool_name)
        return ApprovalDecision.allow("allow-all")


class PolicyGate:
    """Applies a :class:`GateConfig` rule set.  Satisfies :class:`ApprovalGate`.

    ``ask`` verdicts go to *interactive*; without one they are denied, so a
    policy that asks never silently turns into an allow.
    """

    def __init__(
        self,
        config: GateConfig | None = None,
        *,
        interactive: ApprovalGate | None = None,
    ) -> None:
        self._engine = PolicyEngine(config or GateConfig())
        self._interactive = interactive

    @property
    def config(self) -> GateConfig:
        return self._engine.config

    async def decide(self, request: ApprovalRequest) -> ApprovalDecision:
        match = self._engine.evaluate(request)
        if match.action is PolicyAction.ALLOW:
            return ApprovalDecision.allow(match.reason)
        if match.action is PolicyAction.DENY:
            return ApprovalDecision.deny(match.reason)

        if self._interactive is None:
            logger.warning(
                "Policy says 'ask' for tool %s but no interactive gate is configured; denying.",
                request.tool_name,
            )
            return ApprovalDecision.deny("approval required but no interactive gate configured")
        return await self._interactive.decide(request.model_copy(update={"reason": match.reason}))


class CLIGate:
    """Prompts the user at the terminal.  Satisfies :class:`ApprovalGate`.

    Reads stdin in an executor so the event loop (and with it every other
    in-flight call) keeps running.  No answer within *timeout* is a denial.
    """

    def __init__(self, *, timeout: float = 300.0) -> None:
        self._timeout = timeout
        self._lock = asyncio.Lock()

    async def decide(self, request: ApprovalRequest) -> ApprovalDecision:
        # One prompt at a time; concurrent tool calls queue up here.
        async with self._lock:
            self._print_summary(request)
            loop = asyncio.get_running_loop()
            try:
                answer: str = await asyncio.wait_for(
                    loop.run_in_executor(None, self._read_input),
                    timeout=self._timeout,
                )
            except TimeoutError:
                logger.info("No approval for %s within %ss; denying", request.tool_name, self._timeout)
                return ApprovalDecision.deny(f"no answer within {self._timeout}s")

        if answer.strip().lower() in ("y", "yes"):
            return ApprovalDecision.allow("approved by user")
        return ApprovalDecision.deny("denied by user")

    @staticmethod
    def _print_summary(request: ApprovalRequest) -> None:
        sep = "-" * 60
        sys.stdout.write(f"\n{sep}\n")
        sys.stdout.write(f"  Tool:      {request.tool_name}\n")
        if request.arguments:
            sys.stdout.write(f"  Arguments: {request.arguments}\n")
        if request.reason:
            sys.stdout.write(f"  Reason:    {request.reason}\n")
        sys.stdout.write(f"{sep}\n")
        sys.stdout.write("  Approve? [y/N]: ")
        sys.stdout.flush()

    @staticmethod
    def _read_input() -> str:
        """Blocking read from stdin (run in executor)."""
        return input()
