"""Session lifecycle state machine.

::

    unconnected -> handshaking -> ready -> closing -> closed
         \\______________\\___________\\________\\______> failed

``closed`` and ``failed`` are terminal.
"""

from __future__ import annotations

import logging
from enum import Enum

from mcpc.errors import (
    ConnectionLostError,
    NotReadyError,
    SessionClosedError,
    SessionStateError,
)

logger = logging.getLogger(__name__)


class SessionState(str, Enum):
    UNCONNECTED = "unconnected"
    HANDSHAKING = "handshaking"
    READY = "ready"
    CLOSING = "closing"
    CLOSED = "closed"
    FAILED = "failed"


_TRANSITIONS: dict[SessionState, frozenset[SessionState]] = {
    SessionState.UNCONNECTED: frozenset({
        SessionState.HANDSHAKING,
        SessionState.CLOSED,
        SessionState.FAILED,
    }),
    SessionState.HANDSHAKING: frozenset({
        SessionState.READY,
        SessionState.CLOSING,
        SessionState.FAILED,
    }),
    SessionState.READY: frozenset({SessionState.CLOSING, SessionState.FAILED}),
    SessionState.CLOSING: frozenset({SessionState.CLOSED, SessionState.FAILED}),
    SessionState.CLOSED: frozenset(),
    SessionState.FAILED: frozenset(),
}


class SessionStateMachine:
    """Tracks the lifecycle state and guards operations against it."""

    def __init__(self, session_id: str = "") -> None:
        self._session_id = session_id
        self._state = SessionState.UNCONNECTED
        self._failure: BaseException | None = None

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def failure(self) -> BaseException | None:
        """The error that moved the session to ``failed``, if any."""
        return self._failure

    @property
    def is_terminal(self) -> bool:
        return self._state in (SessionState.CLOSED, SessionState.FAILED)

    def can_transition(self, target: SessionState) -> bool:
        return target in _TRANSITIONS[self._state]

    def transition(self, target: SessionState) -> None:
        """Move to *target* or raise :class:`SessionStateError`."""
        if not self.can_transition(target):
            raise SessionStateError(self._state.value, target.value)
        logger.debug("Session %s: %s -> %s", self._session_id, self._state.value, target.value)
        self._state = target

    def fail(self, cause: BaseException) -> bool:
        """Move to ``failed``; returns False if already terminal."""
        if self.is_terminal:
            return False
        self._failure = cause
        self.transition(SessionState.FAILED)
        return True

    def require_ready(self, operation: str) -> None:
        """Raise the error matching the current state unless ``ready``."""
        state = self._state
        if state is SessionState.READY:
            return
        if state in (SessionState.UNCONNECTED, SessionState.HANDSHAKING):
            raise NotReadyError(operation, state.value)
        if state in (SessionState.CLOSING, SessionState.CLOSED):
            raise SessionClosedError(f"cannot {operation}")
        raise ConnectionLostError(str(self._failure) if self._failure else "")

    def require_open(self, operation: str) -> None:
        """Like :meth:`require_ready` but also accepts ``handshaking``."""
        if self._state is SessionState.HANDSHAKING:
            return
        self.require_ready(operation)
