"""PhaseTimelineEngine — the operations the owning challenge service consumes.

The engine resolves reference data through the catalog and resolver, then
hands plain, already-fetched data to the synchronous builder, reconciler,
cancellation and guard logic.
"""

from __future__ import annotations

from collections.abc import AsyncIterator, Mapping, Sequence
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from challenge_api.infrastructure.database.session import get_db_session
from challenge_api.phases.builder import PhaseTimelineBuilder
from challenge_api.phases.cancellation import close_on_cancellation
from challenge_api.phases.catalog import (
    PhaseDefinitionCatalog,
    ReferenceDataCache,
    TimelineTemplateResolver,
)
from challenge_api.phases.config import PhaseSettings, get_phase_settings
from challenge_api.phases.exceptions import BadRequestError, InvalidTimelineTemplateError
from challenge_api.phases.lifecycle import PhaseLifecycleGuard, delete_phase
from challenge_api.phases.reconciler import PhaseTimelineReconciler
from challenge_api.phases.repository import PhaseDefinitionRepository, TimelineTemplateRepository
from challenge_api.phases.review import (
    DisabledPendingReviewQuery,
    PendingReviewPort,
    get_pending_review_port,
)
from challenge_api.phases.schemas import (
    DeleteResult,
    PhaseInstance,
    PhaseOverride,
    PhasePatch,
)


class PhaseTimelineEngine:
    """Facade over the phase timeline and lifecycle components."""

    def __init__(
        self,
        catalog: PhaseDefinitionCatalog,
        resolver: TimelineTemplateResolver,
        review_port: PendingReviewPort | None = None,
        settings: PhaseSettings | None = None,
    ):
        self.settings = settings or get_phase_settings()
        self.catalog = catalog
        self.resolver = resolver
        self.builder = PhaseTimelineBuilder()
        self.reconciler = PhaseTimelineReconciler(self.settings)
        self.guard = PhaseLifecycleGuard(review_port or DisabledPendingReviewQuery(), catalog)

    async def validate_overrides(self, overrides: Sequence[PhaseOverride] | None) -> None:
        await self.catalog.validate_overrides(overrides)

    async def build_for_creation(
        self,
        overrides: Sequence[PhaseOverride] | None,
        challenge_start_date: datetime,
        template_id: str | None,
    ) -> list[PhaseInstance]:
        """Build the dated phase list for a new challenge.

        Raises:
            InvalidTimelineTemplateError: If ``template_id`` is missing or unknown.
        """
        if not template_id:
            raise InvalidTimelineTemplateError(template_id)
        template = await self.resolver.get_template(template_id)
        definitions = await self.catalog.get_definitions()
        return self.builder.build(template, definitions, overrides, challenge_start_date)

    async def reconcile(
        self,
        existing: Sequence[PhaseInstance],
        overrides: Sequence[PhaseOverride] | None,
        template_id: str | None,
        is_being_activated: bool = False,
        challenge_start_date: datetime | None = None,
        now: datetime | None = None,
    ) -> list[PhaseInstance]:
        """Recompute an existing phase set.

        With no existing phases (the template changed) this rebuilds from the
        template starting at ``challenge_start_date``.

        Raises:
            BadRequestError: If there are no phases and no start date to build from.
        """
        if not existing:
            if challenge_start_date is None:
                raise BadRequestError("A start date is required to rebuild the challenge phases")
            return await self.build_for_creation(overrides, challenge_start_date, template_id)
        template = await self.resolver.get_template(template_id)
        definitions = await self.catalog.get_definitions()
        return self.reconciler.reconcile(
            existing,
            overrides,
            template,
            definitions,
            is_being_activated=is_being_activated,
            now=now,
        )

    def close_on_cancellation(
        self,
        phases: Sequence[PhaseInstance],
        now: datetime | None = None,
    ) -> list[PhaseInstance]:
        return close_on_cancellation(phases, now=now, closeable=self.settings.closeable_on_cancel)

    async def apply_patch(
        self,
        phase: PhaseInstance,
        patch: PhasePatch | Mapping[str, Any],
        siblings: Sequence[PhaseInstance] = (),
        now: datetime | None = None,
    ) -> PhaseInstance:
        decision = await self.guard.apply_patch(phase, patch, siblings=siblings, now=now)
        return decision.result

    def delete_phase(
        self,
        phase: PhaseInstance,
        siblings: Sequence[PhaseInstance],
    ) -> DeleteResult:
        return delete_phase(phase, siblings)


def build_engine(
    session: AsyncSession,
    cache: ReferenceDataCache,
    settings: PhaseSettings | None = None,
    review_port: PendingReviewPort | None = None,
) -> PhaseTimelineEngine:
    """Create an engine backed by the database reference stores.

    Definitions and templates are read through ``session`` and cached in
    ``cache``; the pending-review port follows ``settings``.
    """
    settings = settings or get_phase_settings()
    return PhaseTimelineEngine(
        PhaseDefinitionCatalog(PhaseDefinitionRepository(session), cache),
        TimelineTemplateResolver(TimelineTemplateRepository(session), cache),
        review_port=review_port or get_pending_review_port(session, settings),
        settings=settings,
    )


@asynccontextmanager
async def open_engine(
    cache: ReferenceDataCache,
    settings: PhaseSettings | None = None,
) -> AsyncIterator[PhaseTimelineEngine]:
    """
    Open a database session and yield an engine bound to it.

    Usage:
        async with open_engine(cache) as engine:
            phases = await engine.build_for_creation(overrides, start, template_id)
    """
    async with get_db_session() as session:
        yield build_engine(session, cache, settings)
