"""Closing open phases when a challenge is cancelled."""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from datetime import datetime

from challenge_api.phases.config import get_phase_settings
from challenge_api.phases.constants import CANCELLED_STATUSES
from challenge_api.phases.schemas import PhaseInstance
from challenge_api.shared.utils.datetime_utils import ensure_utc, utcnow
from challenge_api.shared.utils.logging import get_logger

logger = get_logger(__name__)


def is_cancelled_status(status: str | None) -> bool:
    """True for ``Cancelled`` and every ``Cancelled - <reason>`` status."""
    return status in CANCELLED_STATUSES


def close_on_cancellation(
    phases: Sequence[PhaseInstance],
    now: datetime | None = None,
    closeable: Iterable[str] | None = None,
) -> list[PhaseInstance]:
    """Close open Registration/Submission/Checkpoint Submission phases.

    Every other phase passes through unchanged. Applying this to an already
    closed set is a no-op.
    """
    now = ensure_utc(now) if now is not None else utcnow()
    names = set(closeable if closeable is not None else get_phase_settings().closeable_on_cancel)

    result = []
    closed = []
    for phase in phases:
        if phase.is_open and phase.name in names:
            phase = phase.model_copy(update={"is_open": False, "actual_end_date": now})
            closed.append(phase.name)
        result.append(phase)

    if closed:
        logger.info("phases_closed_on_cancellation", phases=closed)
    return result


__all__ = ["close_on_cancellation", "is_cancelled_status"]
