"""Unit tests for phase state machine transitions."""

import pytest

from challenge_api.phases.exceptions import PhaseStateError
from challenge_api.phases.state_machine import (
    PhaseState,
    can_transition,
    phase_state,
    validate_transition,
)
from tests.factories.phase_factory import make_phase, utc


class TestPhaseCanTransition:
    def test_unopened_to_open(self):
        assert can_transition("unopened", "open") is True

    def test_open_to_closed(self):
        assert can_transition("open", "closed") is True

    def test_closed_to_open(self):
        assert can_transition("closed", "open") is True

    def test_unopened_to_closed_invalid(self):
        assert can_transition("unopened", "closed") is False

    def test_unknown_state(self):
        assert can_transition("archived", "open") is False


class TestPhaseValidateTransition:
    def test_valid_passes(self):
        validate_transition("open", "closed")

    def test_invalid_raises(self):
        with pytest.raises(PhaseStateError, match="Cannot transition"):
            validate_transition("unopened", "closed")


class TestPhaseState:
    def test_unopened(self):
        assert phase_state(make_phase()) == PhaseState.UNOPENED

    def test_open(self):
        phase = make_phase(is_open=True, actual_start_date=utc(2024, 1, 1))
        assert phase_state(phase) == PhaseState.OPEN

    def test_closed(self):
        phase = make_phase(actual_start_date=utc(2024, 1, 1), actual_end_date=utc(2024, 1, 2))
        assert phase_state(phase) == PhaseState.CLOSED

    def test_started_without_end_counts_as_closed(self):
        phase = make_phase(actual_start_date=utc(2024, 1, 1))
        assert phase_state(phase) == PhaseState.CLOSED
