"""Run state machine definitions for opt-out runs."""

from enum import Enum


class RunStatus(str, Enum):
    """Lifecycle states of one opt-out run."""

    IDLE = "idle"
    RUNNING = "running"
    WAITING_FOR_USER = "waiting_for_user"
    COMPLETED = "completed"
    FAILED = "failed"


# A run in one of these states blocks new runs from starting
ACTIVE_STATES = {RunStatus.RUNNING, RunStatus.WAITING_FOR_USER}

TERMINAL_STATES = {RunStatus.COMPLETED, RunStatus.FAILED}

# Normal transitions; FAILED is additionally reachable from any non-terminal state (cancel)
STATE_TRANSITIONS: dict[RunStatus, list[RunStatus]] = {
    RunStatus.IDLE: [RunStatus.RUNNING],
    RunStatus.RUNNING: [RunStatus.WAITING_FOR_USER, RunStatus.COMPLETED],
    RunStatus.WAITING_FOR_USER: [RunStatus.RUNNING],
    RunStatus.COMPLETED: [],
    RunStatus.FAILED: [],
}


def can_transition(current: RunStatus, target: RunStatus) -> bool:
    """Return whether *current* → *target* is a legal transition."""
    if target == RunStatus.FAILED:
        return current not in TERMINAL_STATES
    return target in STATE_TRANSITIONS.get(current, [])
