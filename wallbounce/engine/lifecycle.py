"""Supervision state machine.

Defines valid transitions and enforces them. Invalid transitions
raise ValueError rather than silently proceeding.

State Diagram:

    RUNNING ──┬──> TIMED_OUT   (a timer killed the process)
              │
              ├──> EXITED      (process closed on its own)
              │
              └──> FAILED      (spawn failure, caller cancellation)

Every non-RUNNING state is terminal. A kill issued by a timer is
followed by the process closing; the close must not produce a second
outcome, so the first settle() wins and later ones return False.
"""
from __future__ import annotations

from enum import Enum


class SupervisionState(str, Enum):
    RUNNING = "running"
    TIMED_OUT = "timed_out"
    EXITED = "exited"
    FAILED = "failed"


VALID_TRANSITIONS: dict[SupervisionState, set[SupervisionState]] = {
    SupervisionState.RUNNING: {
        SupervisionState.TIMED_OUT,
        SupervisionState.EXITED,
        SupervisionState.FAILED,
    },
    SupervisionState.TIMED_OUT: set(),
    SupervisionState.EXITED: set(),
    SupervisionState.FAILED: set(),
}


def validate_transition(
    current: SupervisionState, target: SupervisionState,
) -> None:
    """Validate a state transition. Raises ValueError if invalid."""
    allowed = VALID_TRANSITIONS.get(current, set())
    if target not in allowed:
        allowed_str = ", ".join(s.value for s in allowed) or "none (terminal)"
        raise ValueError(
            f"Invalid state transition: {current.value} -> {target.value}. "
            f"Allowed from {current.value}: {allowed_str}"
        )


class SupervisionGuard:
    """Single transition guard for one supervision.

    All callers (timer callbacks, the exit path, cleanup) run on the
    same event loop, so check-and-set here is atomic.
    """

    def __init__(self) -> None:
        self._state = SupervisionState.RUNNING
        self._cause: BaseException | None = None

    @property
    def state(self) -> SupervisionState:
        return self._state

    @property
    def cause(self) -> BaseException | None:
        """Error recorded by the transition that settled the supervision."""
        return self._cause

    @property
    def running(self) -> bool:
        return self._state is SupervisionState.RUNNING

    def settle(
        self,
        target: SupervisionState,
        cause: BaseException | None = None,
    ) -> bool:
        """Move out of RUNNING. Returns False if already settled."""
        if self._state is not SupervisionState.RUNNING:
            return False
        validate_transition(self._state, target)
        self._state = target
        self._cause = cause
        return True
