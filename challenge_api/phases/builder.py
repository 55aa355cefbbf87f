"""PhaseTimelineBuilder — initial phase instances for a new challenge."""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from datetime import datetime

from challenge_api.phases.constants import ITERATIVE_REVIEW_PHASE_NAME
from challenge_api.phases.exceptions import InvalidPhaseError
from challenge_api.phases.schemas import (
    PhaseDefinition,
    PhaseInstance,
    PhaseOverride,
    ResolvedTemplate,
    TimelineTemplateEntry,
)
from challenge_api.phases.timeline import (
    PhaseOrder,
    clamp_to_fixed_start,
    index_overrides,
    order_phases,
    schedule_end,
)
from challenge_api.shared.utils.datetime_utils import ensure_utc
from challenge_api.shared.utils.logging import get_logger

logger = get_logger(__name__)


class PhaseTimelineBuilder:
    """Materializes a timeline template into dated phase instances.

    Two passes over the dependency-ordered template:

    * **roots** — phases without a predecessor start at the override's
      ``scheduled_start_date`` or the challenge start, clamped forward to the
      start of the first root processed;
    * **chaining** — every other phase starts when its predecessor ends,
      except ``Iterative Review`` which runs in parallel with it.
    """

    def build(
        self,
        template: ResolvedTemplate,
        definitions: Mapping[str, PhaseDefinition],
        overrides: Sequence[PhaseOverride] | None,
        challenge_start_date: datetime,
    ) -> list[PhaseInstance]:
        overrides_by_phase = index_overrides(overrides)
        missing = [e.phase_id for e in template.entries if e.phase_id not in definitions]
        if missing:
            raise InvalidPhaseError(missing)

        phases = [
            self._instantiate(entry, definitions[entry.phase_id], overrides_by_phase.get(entry.phase_id))
            for entry in template.entries
        ]
        order = order_phases(phases, template)
        rooted = self._schedule_roots(order, overrides_by_phase, ensure_utc(challenge_start_date))
        built = self._chain(order, rooted)

        logger.info(
            "phases_built",
            template_id=template.template_id,
            count=len(built),
            start=built[0].scheduled_start_date.isoformat() if built else None,
        )
        return built

    @staticmethod
    def _instantiate(
        entry: TimelineTemplateEntry,
        definition: PhaseDefinition,
        override: PhaseOverride | None,
    ) -> PhaseInstance:
        duration = entry.default_duration
        constraints = ()
        if override is not None:
            if override.duration is not None:
                duration = override.duration
            if override.constraints is not None:
                constraints = tuple(override.constraints)
        return PhaseInstance(
            phase_id=entry.phase_id,
            name=definition.name,
            description=definition.description,
            duration=duration,
            predecessor=entry.predecessor,
            is_open=False,
            constraints=constraints,
        )

    @staticmethod
    def _schedule_roots(
        order: PhaseOrder,
        overrides: Mapping[str, PhaseOverride],
        challenge_start_date: datetime,
    ) -> list[PhaseInstance]:
        fixed_start: datetime | None = None
        scheduled = []
        for phase in order.phases:
            if phase.is_root:
                override = overrides.get(phase.phase_id)
                candidate = challenge_start_date
                if override is not None and override.scheduled_start_date is not None:
                    candidate = override.scheduled_start_date
                start = clamp_to_fixed_start(candidate, fixed_start)
                phase = phase.model_copy(
                    update={
                        "scheduled_start_date": start,
                        "scheduled_end_date": schedule_end(start, phase.duration),
                    }
                )
                if fixed_start is None:
                    fixed_start = start
            scheduled.append(phase)
        return scheduled

    @staticmethod
    def _chain(order: PhaseOrder, phases: list[PhaseInstance]) -> list[PhaseInstance]:
        by_id = {phase.id: phase for phase in phases}
        chained = []
        for phase in phases:
            source_id = order.predecessors.get(phase.id)
            if source_id is not None:
                source = by_id[source_id]
                if phase.name == ITERATIVE_REVIEW_PHASE_NAME:
                    start = source.scheduled_start_date
                else:
                    start = source.scheduled_end_date
                phase = phase.model_copy(
                    update={
                        "scheduled_start_date": start,
                        "scheduled_end_date": schedule_end(start, phase.duration),
                    }
                )
                by_id[phase.id] = phase
            chained.append(phase)
        return chained
