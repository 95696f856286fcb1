"""CallDispatcher: the pending-call table.

Maps correlation ids to futures.  The session's receive loop resolves entries
as responses arrive; callers await the future.  Responses are matched purely
by id, so any number of calls may be outstanding and may complete in any
order.

All mutation happens on the event loop thread, and no method awaits between
reading and writing the table.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

from mcpc.protocol.models import JsonRpcErrorResponse, JsonRpcResponse, RequestId

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[float, float | None, str | None], Awaitable[None]]
Reply = JsonRpcResponse | JsonRpcErrorResponse


@dataclass
class PendingCall:
    """One outstanding request awaiting its reply."""

    request_id: RequestId
    method: str
    params: dict[str, Any] | None
    future: asyncio.Future[Reply]
    created_at: float = field(default_factory=time.monotonic)
    progress: ProgressCallback | None = None

    @property
    def age(self) -> float:
        return time.monotonic() - self.created_at


class CallDispatcher:
    """Allocates correlation ids and routes replies to waiting callers."""

    def __init__(self) -> None:
        self._ids = itertools.count(1)
        self._pending: dict[RequestId, PendingCall] = {}

    def __len__(self) -> int:
        return len(self._pending)

    def __contains__(self, request_id: object) -> bool:
        return request_id in self._pending

    @property
    def pending_ids(self) -> list[RequestId]:
        return list(self._pending)

    def register(
        self,
        method: str,
        params: dict[str, Any] | None = None,
        *,
        progress: ProgressCallback | None = None,
    ) -> PendingCall:
        """Allocate a fresh id and add a pending entry for it."""
        request_id = next(self._ids)
        future: asyncio.Future[Reply] = asyncio.get_running_loop().create_future()
        call = PendingCall(
            request_id=request_id,
            method=method,
            params=params,
            future=future,
            progress=progress,
        )
        self._pending[request_id] = call
        return call

    def resolve(self, reply: Reply) -> bool:
        """Complete the call matching ``reply.id``.

        Returns False when no such call is outstanding (late reply for a
        cancelled or timed-out call); the reply is dropped.
        """
        call = self._pending.pop(reply.id, None) if reply.id is not None else None
        if call is None:
            logger.debug("Dropping reply for unknown or finished request id=%r", reply.id)
            return False
        if call.future.done():
            return False
        call.future.set_result(reply)
        return True

    def reject(self, request_id: RequestId, exc: BaseException) -> bool:
        """Fail one outstanding call with *exc*."""
        call = self._pending.pop(request_id, None)
        if call is None or call.future.done():
            return False
        call.future.set_exception(exc)
        return True

    def discard(self, request_id: RequestId) -> PendingCall | None:
        """Forget a call without completing its future."""
        return self._pending.pop(request_id, None)

    def fail_all(self, exc: BaseException) -> int:
        """Fail every outstanding call with *exc*; returns how many."""
        pending, self._pending = self._pending, {}
        failed = 0
        for call in pending.values():
            if not call.future.done():
                call.future.set_exception(exc)
                failed += 1
        return failed

    def progress_callback(self, token: RequestId) -> ProgressCallback | None:
        if not isinstance(token, int | str):
            return None
        call = self._pending.get(token)
        return call.progress if call is not None else None
