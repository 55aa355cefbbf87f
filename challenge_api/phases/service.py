"""Owning services for challenge timelines and individual challenge phases."""

from collections.abc import Mapping, Sequence
from datetime import datetime
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from challenge_api.infrastructure.events import emit_phase_event
from challenge_api.phases.cancellation import is_cancelled_status
from challenge_api.phases.catalog import PhaseDefinitionCatalog, ReferenceDataCache
from challenge_api.phases.config import PhaseSettings, get_phase_settings
from challenge_api.phases.constants import ChallengeStatus, Topics
from challenge_api.phases.engine import PhaseTimelineEngine
from challenge_api.phases.exceptions import (
    BadRequestError,
    InvalidTimelineTemplateError,
    NotFoundError,
)
from challenge_api.phases.lifecycle import PhaseLifecycleGuard, coerce_patch, delete_phase
from challenge_api.phases.repository import (
    ChallengePhaseRepository,
    PhaseDefinitionRepository,
    to_phase_instance,
)
from challenge_api.phases.review import PendingReviewPort, get_pending_review_port
from challenge_api.phases.schemas import (
    ChallengePhaseDeletedEvent,
    ChallengePhaseUpdatedEvent,
    ChallengeTimeline,
    PhaseInstance,
    PhaseOverride,
    PhasePatch,
    TimelineUpdate,
)
from challenge_api.shared.utils.logging import get_logger

logger = get_logger(__name__)


def derive_timeline_dates(
    phases: Sequence[PhaseInstance],
    start_date: datetime | None = None,
    end_date: datetime | None = None,
) -> tuple[datetime | None, datetime | None]:
    """Challenge start/end are the earliest phase start and the latest phase end.

    Falls back to the given dates when there are no phases or no dated ones.
    """
    starts = [p.scheduled_start_date for p in phases if p.scheduled_start_date is not None]
    ends = [p.scheduled_end_date for p in phases if p.scheduled_end_date is not None]
    return (min(starts) if starts else start_date, max(ends) if ends else end_date)


class ChallengeTimelineService:
    """Computes a challenge's phases when it is created or updated.

    Persistence of the challenge itself stays with the caller; this service
    only decides which phases the challenge should have.
    """

    def __init__(self, engine: PhaseTimelineEngine):
        self.engine = engine

    async def _require_active_template(self, template_id: str | None) -> None:
        if not template_id:
            raise InvalidTimelineTemplateError(template_id)
        template = await self.engine.resolver.get_template(template_id)
        if not template.is_active:
            raise InvalidTimelineTemplateError(template_id, "timeline template is inactive")

    async def create_timeline(
        self,
        template_id: str | None,
        overrides: Sequence[PhaseOverride] | None,
        start_date: datetime,
    ) -> TimelineUpdate:
        """Build the phases for a new challenge.

        Raises:
            InvalidTimelineTemplateError: If the template is missing, unknown or inactive.
            InvalidPhaseError: If an override names an unknown phase.
        """
        await self._require_active_template(template_id)
        await self.engine.validate_overrides(overrides)
        phases = await self.engine.build_for_creation(overrides, start_date, template_id)
        start, end = derive_timeline_dates(phases, start_date)

        logger.info("challenge_timeline_created", template_id=template_id, phases=len(phases))
        return TimelineUpdate(
            phases=phases,
            phases_updated=True,
            timeline_template_id=template_id,
            start_date=start,
            end_date=end,
        )

    async def update_timeline(
        self,
        challenge: ChallengeTimeline,
        status: str | None = None,
        timeline_template_id: str | None = None,
        overrides: Sequence[PhaseOverride] | None = None,
        start_date: datetime | None = None,
        end_date: datetime | None = None,
        privileged: bool = False,
        now: datetime | None = None,
    ) -> TimelineUpdate:
        """Recompute phases for a challenge update.

        Args:
            challenge: The challenge as currently stored.
            status: New status, if the update changes it.
            timeline_template_id: New template id, if the update changes it.
            overrides: Phase overrides supplied with the update.
            start_date: New challenge start date, if supplied.
            end_date: New challenge end date, if supplied.
            privileged: Admin or machine caller; may change the template of a
                challenge that is no longer New.

        Raises:
            BadRequestError: On a forbidden template change or a phase change
                on a Completed/Cancelled challenge.
        """
        final_status = status or challenge.status
        final_template_id = timeline_template_id or challenge.timeline_template_id
        is_being_activated = (
            status == ChallengeStatus.ACTIVE.value
            and challenge.status != ChallengeStatus.ACTIVE.value
        )
        is_being_cancelled = is_cancelled_status(status)

        template_changed = final_template_id != challenge.timeline_template_id
        if template_changed:
            if not privileged and final_status != ChallengeStatus.NEW.value:
                raise BadRequestError(
                    f"Cannot change the timelineTemplateId for challenges with status: {final_status}"
                )
            await self._require_active_template(final_template_id)

        phases: list[PhaseInstance] = list(challenge.phases)
        phases_updated = False

        if (overrides or is_being_activated or template_changed) and not is_being_cancelled:
            if challenge.status == ChallengeStatus.COMPLETED.value or is_cancelled_status(challenge.status):
                raise BadRequestError(
                    "Challenge phase/start date can not be modified for Completed or Cancelled challenges."
                )
            await self.engine.validate_overrides(overrides)
            new_start = start_date or challenge.start_date
            if template_changed:
                if new_start is None:
                    raise BadRequestError("A start date is required to rebuild the challenge phases")
                phases = await self.engine.build_for_creation(overrides, new_start, final_template_id)
            else:
                phases = await self.engine.reconcile(
                    challenge.phases,
                    overrides,
                    challenge.timeline_template_id,
                    is_being_activated=is_being_activated,
                    challenge_start_date=new_start,
                    now=now,
                )
            phases_updated = True

        if is_being_cancelled and challenge.phases:
            phases = self.engine.close_on_cancellation(challenge.phases, now=now)
            phases_updated = True

        new_start_date = start_date or challenge.start_date
        new_end_date = end_date or challenge.end_date
        if phases_updated:
            new_start_date, new_end_date = derive_timeline_dates(phases, new_start_date, new_end_date)

        logger.info(
            "challenge_timeline_updated",
            challenge_id=challenge.id,
            status=final_status,
            activated=is_being_activated,
            cancelled=is_being_cancelled,
            template_changed=template_changed,
            phases_updated=phases_updated,
        )
        return TimelineUpdate(
            phases=phases,
            phases_updated=phases_updated,
            timeline_template_id=final_template_id,
            start_date=new_start_date,
            end_date=new_end_date,
        )


class ChallengePhaseService:
    """Reads, patches and deletes the phases of a stored challenge."""

    def __init__(
        self,
        session: AsyncSession,
        cache: ReferenceDataCache,
        review_port: PendingReviewPort | None = None,
        settings: PhaseSettings | None = None,
    ):
        self.session = session
        self.cache = cache
        self.settings = settings or get_phase_settings()
        self.repository = ChallengePhaseRepository(session)
        self.catalog = PhaseDefinitionCatalog(PhaseDefinitionRepository(session), cache)
        self.guard = PhaseLifecycleGuard(
            review_port or get_pending_review_port(session, self.settings),
            self.catalog,
        )

    async def _require_challenge(self, challenge_id: str) -> None:
        if not await self.repository.challenge_exists(challenge_id):
            raise NotFoundError("Challenge", challenge_id)

    async def _require_phase(self, challenge_id: str, phase_instance_id: str):
        row = await self.repository.get(challenge_id, phase_instance_id)
        if row is None:
            raise NotFoundError(
                "ChallengePhase",
                f"{phase_instance_id} (challengeId: {challenge_id})",
            )
        return row

    async def get_all_phases(self, challenge_id: str) -> list[PhaseInstance]:
        await self._require_challenge(challenge_id)
        rows = await self.repository.list_for_challenge(challenge_id)
        return [to_phase_instance(row) for row in rows]

    async def get_phase(self, challenge_id: str, phase_instance_id: str) -> PhaseInstance:
        await self._require_challenge(challenge_id)
        row = await self._require_phase(challenge_id, phase_instance_id)
        return to_phase_instance(row)

    async def partially_update_phase(
        self,
        challenge_id: str,
        phase_instance_id: str,
        patch: PhasePatch | Mapping[str, Any],
        updated_by: str,
    ) -> PhaseInstance:
        """Apply a direct patch to one challenge phase and persist it.

        Raises:
            NotFoundError: If the challenge or phase does not exist.
            BadRequestError: If the patch is invalid.
            PendingReviewsError: If closing a phase with pending reviews.
        """
        patch = coerce_patch(patch)
        try:
            await self._require_challenge(challenge_id)
            row = await self._require_phase(challenge_id, phase_instance_id)
            phase = to_phase_instance(row)

            siblings: list[PhaseInstance] = []
            if patch.predecessor:
                siblings = [
                    to_phase_instance(r)
                    for r in await self.repository.list_for_challenge(challenge_id)
                ]

            decision = await self.guard.apply_patch(
                phase, patch, siblings=siblings, challenge_id=challenge_id
            )
            await self.repository.update_phase(phase.id, decision.changes, updated_by)
            if "constraints" in decision.changes:
                await self.repository.save_constraints(row, decision.result.constraints, updated_by)
            await self.session.commit()
        except Exception:
            await self.session.rollback()
            raise

        self.cache.invalidate()
        result = decision.result
        event = ChallengePhaseUpdatedEvent(
            challenge_id=challenge_id,
            phase=result.model_dump(mode="json"),
        )
        emit_phase_event(Topics.CHALLENGE_PHASE_UPDATED, event.model_dump(mode="json"))

        logger.info(
            "challenge_phase_updated",
            challenge_id=challenge_id,
            phase_id=result.id,
            fields=sorted(decision.changes),
            updated_by=updated_by,
        )
        return result

    async def delete_phase(
        self,
        challenge_id: str,
        phase_instance_id: str,
        deleted_by: str,
    ) -> PhaseInstance:
        """Delete one challenge phase, re-linking its successors.

        Raises:
            NotFoundError: If the challenge or phase does not exist.
        """
        try:
            await self._require_challenge(challenge_id)
            row = await self._require_phase(challenge_id, phase_instance_id)
            phase = to_phase_instance(row)
            siblings = [
                to_phase_instance(r)
                for r in await self.repository.list_for_challenge(challenge_id)
            ]

            result = delete_phase(phase, siblings)
            await self.repository.relink(result.updated_siblings, deleted_by)
            await self.repository.delete(phase.id)
            await self.session.commit()
        except Exception:
            await self.session.rollback()
            raise

        self.cache.invalidate()
        event = ChallengePhaseDeletedEvent(
            challenge_id=challenge_id,
            phase=phase.model_dump(mode="json"),
        )
        emit_phase_event(Topics.CHALLENGE_PHASE_DELETED, event.model_dump(mode="json"))

        logger.info(
            "challenge_phase_removed",
            challenge_id=challenge_id,
            phase_id=phase.id,
            relinked=len(result.updated_siblings),
            deleted_by=deleted_by,
        )
        return phase
