"""PhaseLifecycleGuard — validates and applies direct patches to one phase.

The decision logic (:meth:`PhaseLifecycleGuard.evaluate`) is pure; the only
I/O is the pending-review count, which goes through an injected
:class:`~challenge_api.phases.review.PendingReviewPort` and only when a patch
closes an open phase.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from datetime import datetime
from typing import Any
from uuid import uuid4

from pydantic import ValidationError

from challenge_api.phases.catalog import PhaseDefinitionCatalog
from challenge_api.phases.exceptions import (
    BadRequestError,
    InvalidConstraintError,
    InvalidPhaseError,
    InvalidPredecessorError,
    PendingReviewsError,
    PhaseDateOrderError,
)
from challenge_api.phases.review import PendingReviewPort
from challenge_api.phases.schemas import (
    Constraint,
    DeleteResult,
    PhaseDefinition,
    PhaseInstance,
    PhasePatch,
)
from challenge_api.phases.state_machine import PhaseState, phase_state, validate_transition
from challenge_api.shared.utils.datetime_utils import add_seconds, ensure_utc, to_iso, utcnow
from challenge_api.shared.utils.logging import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class PatchDecision:
    """Outcome of evaluating a patch, before the pending-review check."""

    result: PhaseInstance
    changes: dict[str, Any]
    transition: PhaseState | None = None

    @property
    def is_closing(self) -> bool:
        return self.transition == PhaseState.CLOSED

    @property
    def is_reopening(self) -> bool:
        return self.transition == PhaseState.OPEN


def coerce_patch(patch: PhasePatch | Mapping[str, Any]) -> PhasePatch:
    """Validate a raw patch mapping, turning schema errors into BadRequestError."""
    if isinstance(patch, PhasePatch):
        return patch
    try:
        return PhasePatch.model_validate(dict(patch))
    except ValidationError as e:
        raise BadRequestError(f"Invalid challenge phase patch: {e.errors(include_url=False)}")


def _check_order(
    start_field: str,
    start: datetime | None,
    end_field: str,
    end: datetime | None,
) -> None:
    if start is not None and end is not None and start > end:
        raise PhaseDateOrderError(start_field, to_iso(start), end_field, to_iso(end))


def _merge_constraints(
    current: Sequence[Constraint],
    supplied: Sequence[Constraint],
) -> tuple[Constraint, ...]:
    known = {c.id for c in current if c.id is not None}
    for constraint in supplied:
        if constraint.id is not None and constraint.id not in known:
            raise InvalidConstraintError(constraint.id)

    updates = {c.id: c for c in supplied if c.id is not None}
    merged = [updates.get(c.id, c) if c.id is not None else c for c in current]
    merged.extend(
        c.model_copy(update={"id": str(uuid4())}) for c in supplied if c.id is None
    )
    return tuple(merged)


class PhaseLifecycleGuard:
    """Open/close/reopen state machine for a single challenge phase."""

    def __init__(
        self,
        review_port: PendingReviewPort,
        catalog: PhaseDefinitionCatalog | None = None,
    ):
        self.review_port = review_port
        self.catalog = catalog

    def evaluate(
        self,
        phase: PhaseInstance,
        patch: PhasePatch | Mapping[str, Any],
        siblings: Sequence[PhaseInstance] = (),
        definitions: Mapping[str, PhaseDefinition] | None = None,
        now: datetime | None = None,
        challenge_id: str | None = None,
    ) -> PatchDecision:
        """Validate ``patch`` against ``phase`` and compute the patched phase.

        Raises:
            BadRequestError: On an unknown field, unknown phase id, foreign
                predecessor, foreign constraint id or inverted date pair.
        """
        patch = coerce_patch(patch)
        changes = patch.supplied()

        # A null isOpen means "closed".
        if "is_open" in changes and not changes["is_open"]:
            changes["is_open"] = False

        if changes.get("phase_id"):
            if definitions is None or changes["phase_id"] not in definitions:
                raise InvalidPhaseError([changes["phase_id"]])

        if changes.get("predecessor"):
            predecessor = changes["predecessor"]
            if not any(s.id == predecessor and s.id != phase.id for s in siblings):
                raise InvalidPredecessorError(predecessor, challenge_id)

        if changes.get("scheduled_start_date") or changes.get("scheduled_end_date"):
            _check_order(
                "scheduledStartDate",
                changes.get("scheduled_start_date") or phase.scheduled_start_date,
                "scheduledEndDate",
                changes.get("scheduled_end_date") or phase.scheduled_end_date,
            )
        if changes.get("actual_start_date") or changes.get("actual_end_date"):
            _check_order(
                "actualStartDate",
                changes.get("actual_start_date") or phase.actual_start_date,
                "actualEndDate",
                changes.get("actual_end_date") or phase.actual_end_date,
            )

        if changes.get("constraints"):
            changes["constraints"] = _merge_constraints(phase.constraints, changes["constraints"])
        elif "constraints" in changes:
            del changes["constraints"]

        transition = None
        current = phase_state(phase)
        if changes.get("is_open") is False and phase.is_open:
            transition = PhaseState.CLOSED
        elif changes.get("is_open") is True and not phase.is_open:
            transition = PhaseState.OPEN
        if transition is not None:
            validate_transition(current.value, transition.value)

        if transition == PhaseState.OPEN:
            # Reopening invalidates the previous completion timestamp.
            changes["actual_end_date"] = None
            if changes.get("actual_start_date") is None and phase.actual_start_date is None:
                changes["actual_start_date"] = ensure_utc(now) if now is not None else utcnow()

        if changes.get("duration") is not None:
            start = changes.get("scheduled_start_date") or phase.scheduled_start_date
            if start is not None:
                changes["scheduled_end_date"] = add_seconds(start, changes["duration"])

        result = phase.model_copy(update=changes)
        return PatchDecision(result=result, changes=changes, transition=transition)

    async def apply_patch(
        self,
        phase: PhaseInstance,
        patch: PhasePatch | Mapping[str, Any],
        siblings: Sequence[PhaseInstance] = (),
        now: datetime | None = None,
        challenge_id: str | None = None,
    ) -> PatchDecision:
        """Evaluate a patch and, when it closes an open phase, check reviews.

        Raises:
            BadRequestError: See :meth:`evaluate`.
            PendingReviewsError: If the phase still has pending reviews.
        """
        patch = coerce_patch(patch)
        definitions = None
        if patch.phase_id and self.catalog is not None:
            definitions = await self.catalog.get_definitions()

        decision = self.evaluate(
            phase,
            patch,
            siblings=siblings,
            definitions=definitions,
            now=now,
            challenge_id=challenge_id,
        )

        if decision.is_closing:
            pending = await self.review_port.count_pending_reviews(phase.id)
            if pending > 0:
                logger.warning(
                    "phase_close_rejected_pending_reviews",
                    phase_id=phase.id,
                    phase_name=phase.name,
                    pending=pending,
                )
                raise PendingReviewsError(phase.name, pending)

        if decision.transition is not None:
            logger.info(
                "phase_transition",
                phase_id=phase.id,
                phase_name=phase.name,
                to=decision.transition.value,
            )
        return decision


def delete_phase(phase: PhaseInstance, siblings: Sequence[PhaseInstance]) -> DeleteResult:
    """Remove ``phase`` from its chain, re-linking its successors.

    A sibling that chained after the deleted phase, either by instance id or
    by phase id when no other sibling shares that phase id, is re-pointed to
    the deleted phase's own predecessor.
    """
    others = [s for s in siblings if s.id != phase.id]
    phase_id_is_unique = not any(s.phase_id == phase.phase_id for s in others)
    pointers = {phase.id}
    if phase_id_is_unique:
        pointers.add(phase.phase_id)

    remaining = []
    relinked = []
    for sibling in others:
        if sibling.predecessor is not None and sibling.predecessor in pointers:
            sibling = sibling.model_copy(update={"predecessor": phase.predecessor})
            relinked.append(sibling)
        remaining.append(sibling)

    logger.info(
        "phase_deleted",
        phase_id=phase.id,
        phase_name=phase.name,
        relinked=[s.id for s in relinked],
    )
    return DeleteResult(
        deleted_id=phase.id,
        deleted=phase,
        updated_siblings=relinked,
        remaining=remaining,
    )
