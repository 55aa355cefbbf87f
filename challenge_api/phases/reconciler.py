"""PhaseTimelineReconciler — recompute an existing challenge's phase schedule.

Runs on challenge update and activation. Dates that already happened are
history: a phase that has physically started keeps its scheduled start, and a
phase that has physically ended keeps both scheduled dates.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from datetime import datetime

from challenge_api.phases.config import PhaseSettings, get_phase_settings
from challenge_api.phases.constants import ITERATIVE_REVIEW_PHASE_NAME, POST_MORTEM_PHASE_NAME
from challenge_api.phases.catalog import find_definition_by_name
from challenge_api.phases.exceptions import InvalidPhaseError
from challenge_api.phases.schemas import (
    PhaseDefinition,
    PhaseInstance,
    PhaseOverride,
    ResolvedTemplate,
)
from challenge_api.phases.timeline import (
    PhaseOrder,
    clamp_to_fixed_start,
    index_overrides,
    order_phases,
    schedule_end,
)
from challenge_api.shared.utils.datetime_utils import ensure_utc, utcnow
from challenge_api.shared.utils.logging import get_logger

logger = get_logger(__name__)


def _start_is_frozen(phase: PhaseInstance) -> bool:
    return phase.has_started or phase.has_ended


class PhaseTimelineReconciler:
    """Recomputes phase instances against the current template and overrides."""

    def __init__(self, settings: PhaseSettings | None = None):
        self.settings = settings or get_phase_settings()

    def reconcile(
        self,
        existing: Sequence[PhaseInstance],
        overrides: Sequence[PhaseOverride] | None,
        template: ResolvedTemplate,
        definitions: Mapping[str, PhaseDefinition],
        is_being_activated: bool = False,
        now: datetime | None = None,
    ) -> list[PhaseInstance]:
        """Return a new, rescheduled list of phase instances.

        Args:
            existing: The challenge's current phases, in any order.
            overrides: Sparse per-phase duration/constraints/start overrides.
            template: The challenge's resolved timeline template.
            definitions: Phase definitions keyed by id.
            is_being_activated: True when the challenge is becoming Active;
                root phases whose start has arrived open immediately.
            now: Reference instant (defaults to the current UTC time).
        """
        now = ensure_utc(now) if now is not None else utcnow()
        overrides_by_phase = index_overrides(overrides)
        post_mortem_predecessor = self._post_mortem_predecessor(definitions)

        refreshed = [
            self._refresh(
                phase,
                template,
                definitions,
                overrides_by_phase.get(phase.phase_id),
                post_mortem_predecessor,
            )
            for phase in existing
        ]
        order = order_phases(refreshed, template)
        rooted = self._schedule_roots(order, overrides_by_phase, is_being_activated, now)
        reconciled = self._chain(order, rooted)

        logger.info(
            "phases_reconciled",
            template_id=template.template_id,
            count=len(reconciled),
            activated=is_being_activated,
            opened=[p.name for p in reconciled if p.is_open],
        )
        return reconciled

    def _post_mortem_predecessor(self, definitions: Mapping[str, PhaseDefinition]) -> str | None:
        name = self.settings.post_mortem_predecessor_name
        definition = find_definition_by_name(definitions.values(), name)
        if definition is None:
            logger.warning("post_mortem_predecessor_not_found", phase_name=name)
            return None
        return definition.id

    @staticmethod
    def _refresh(
        phase: PhaseInstance,
        template: ResolvedTemplate,
        definitions: Mapping[str, PhaseDefinition],
        override: PhaseOverride | None,
        post_mortem_predecessor: str | None,
    ) -> PhaseInstance:
        definition = definitions.get(phase.phase_id)
        if definition is None:
            raise InvalidPhaseError([phase.phase_id])
        entry = template.by_phase_id.get(phase.phase_id)

        update: dict = {
            "predecessor": entry.predecessor if entry is not None else None,
            "description": definition.description,
        }
        if phase.name == POST_MORTEM_PHASE_NAME and post_mortem_predecessor is not None:
            update["predecessor"] = post_mortem_predecessor
        if not phase.has_ended and override is not None:
            if override.duration is not None:
                update["duration"] = override.duration
            if override.constraints is not None:
                update["constraints"] = tuple(override.constraints)
        return phase.model_copy(update=update)

    @staticmethod
    def _schedule_roots(
        order: PhaseOrder,
        overrides: Mapping[str, PhaseOverride],
        is_being_activated: bool,
        now: datetime,
    ) -> list[PhaseInstance]:
        fixed_start: datetime | None = None
        scheduled = []
        for phase in order.phases:
            if phase.is_root:
                override = overrides.get(phase.phase_id)
                candidate = phase.scheduled_start_date
                if override is not None and override.scheduled_start_date is not None:
                    candidate = override.scheduled_start_date
                if candidate is None:
                    candidate = fixed_start or now
                candidate = clamp_to_fixed_start(candidate, fixed_start)

                update: dict = {}
                if not _start_is_frozen(phase):
                    if is_being_activated and candidate <= now:
                        update = {
                            "is_open": True,
                            "scheduled_start_date": now,
                            "actual_start_date": now,
                        }
                    else:
                        update["scheduled_start_date"] = candidate

                if not phase.has_ended:
                    start = update.get("scheduled_start_date", phase.scheduled_start_date)
                    update["scheduled_end_date"] = schedule_end(start, phase.duration)
                phase = phase.model_copy(update=update)

                if fixed_start is None:
                    fixed_start = phase.scheduled_start_date
            scheduled.append(phase)
        return scheduled

    @staticmethod
    def _chain(order: PhaseOrder, phases: list[PhaseInstance]) -> list[PhaseInstance]:
        by_id = {phase.id: phase for phase in phases}
        iterative_review_anchored = False
        chained = []
        for phase in phases:
            if phase.is_root:
                chained.append(phase)
                continue

            start = phase.scheduled_start_date
            source_id = order.predecessors.get(phase.id)
            if source_id is None:
                logger.warning(
                    "phase_predecessor_unresolved",
                    phase_id=phase.phase_id,
                    phase_name=phase.name,
                    predecessor=phase.predecessor,
                )
            else:
                source = by_id[source_id]
                if phase.name == ITERATIVE_REVIEW_PHASE_NAME:
                    # Only the first round is anchored; later rounds keep their own dates.
                    if not iterative_review_anchored:
                        if not _start_is_frozen(phase):
                            start = source.scheduled_start_date
                        iterative_review_anchored = True
                elif not _start_is_frozen(phase):
                    start = source.scheduled_end_date

            update: dict = {"scheduled_start_date": start}
            if not phase.has_ended:
                update["scheduled_end_date"] = schedule_end(start, phase.duration)
            phase = phase.model_copy(update=update)
            by_id[phase.id] = phase
            chained.append(phase)
        return chained
