"""Challenge phase lifecycle state machine.

States: unopened → open → closed
A closed phase may be reopened (closed → open).
"""

from enum import Enum

from challenge_api.phases.exceptions import PhaseStateError
from challenge_api.phases.schemas import PhaseInstance


class PhaseState(str, Enum):
    """Observable lifecycle state of one phase instance."""

    UNOPENED = "unopened"
    OPEN = "open"
    CLOSED = "closed"


VALID_TRANSITIONS: dict[str, list[str]] = {
    PhaseState.UNOPENED.value: [PhaseState.OPEN.value],
    PhaseState.OPEN.value: [PhaseState.CLOSED.value],
    PhaseState.CLOSED.value: [PhaseState.OPEN.value],
}


def phase_state(phase: PhaseInstance) -> PhaseState:
    """Derive the lifecycle state from a phase's flags and actual dates."""
    if phase.is_open:
        return PhaseState.OPEN
    if phase.actual_end_date is not None:
        return PhaseState.CLOSED
    if phase.actual_start_date is not None:
        # Stopped without a recorded end; reopening is still allowed.
        return PhaseState.CLOSED
    return PhaseState.UNOPENED


def can_transition(current: str, target: str) -> bool:
    """Check if a phase state transition is valid."""
    return target in VALID_TRANSITIONS.get(current, [])


def validate_transition(current: str, target: str) -> None:
    """Validate a phase state transition, raising PhaseStateError if invalid."""
    if not can_transition(current, target):
        raise PhaseStateError(current, target, VALID_TRANSITIONS.get(current, []))


__all__ = [
    "PhaseState",
    "VALID_TRANSITIONS",
    "can_transition",
    "phase_state",
    "validate_transition",
]
