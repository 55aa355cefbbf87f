"""Repository layer for phase reference data and challenge phases."""

from collections.abc import Iterable, Sequence
from typing import Any

from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from challenge_api.infrastructure.database.models import (
    Challenge,
    ChallengePhase,
    ChallengePhaseConstraint,
    Phase,
    TimelineTemplate as TimelineTemplateRow,
)
from challenge_api.phases.schemas import (
    Constraint,
    PhaseDefinition,
    PhaseInstance,
    TimelineTemplate,
    TimelineTemplateEntry,
)
from challenge_api.shared.utils.logging import get_logger

logger = get_logger(__name__)

# Columns a phase patch may write directly; constraints are persisted separately.
_WRITABLE_COLUMNS = frozenset({
    "name",
    "is_open",
    "phase_id",
    "predecessor",
    "duration",
    "description",
    "scheduled_start_date",
    "scheduled_end_date",
    "actual_start_date",
    "actual_end_date",
})


def to_phase_instance(row: ChallengePhase) -> PhaseInstance:
    """Convert a challenge phase row, with its constraints loaded, to a PhaseInstance."""
    return PhaseInstance(
        id=row.id,
        phase_id=row.phase_id,
        name=row.name,
        description=row.description,
        duration=row.duration,
        predecessor=row.predecessor,
        is_open=bool(row.is_open),
        constraints=tuple(
            Constraint(id=c.id, name=c.name, value=c.value) for c in row.constraints
        ),
        scheduled_start_date=row.scheduled_start_date,
        scheduled_end_date=row.scheduled_end_date,
        actual_start_date=row.actual_start_date,
        actual_end_date=row.actual_end_date,
    )


class PhaseDefinitionRepository:
    """Reads phase definitions; satisfies the catalog's DefinitionStore."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def list_definitions(self) -> list[PhaseDefinition]:
        result = await self.session.execute(select(Phase).order_by(Phase.name))
        return [
            PhaseDefinition(
                id=row.id,
                name=row.name,
                description=row.description,
                default_duration=row.duration,
            )
            for row in result.scalars().all()
        ]


class TimelineTemplateRepository:
    """Reads timeline templates; satisfies the resolver's TemplateStore."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_template(self, template_id: str) -> TimelineTemplate | None:
        query = (
            select(TimelineTemplateRow)
            .where(TimelineTemplateRow.id == template_id)
            .options(selectinload(TimelineTemplateRow.phases))
        )
        result = await self.session.execute(query)
        row = result.scalar_one_or_none()
        if row is None:
            return None
        return TimelineTemplate(
            id=row.id,
            name=row.name,
            is_active=row.is_active,
            phases=[
                TimelineTemplateEntry(
                    phase_id=entry.phase_id,
                    default_duration=entry.default_duration,
                    predecessor=entry.predecessor,
                )
                for entry in sorted(row.phases, key=lambda e: e.position)
            ],
        )


class ChallengePhaseRepository:
    """Repository for challenge phase database operations."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def challenge_exists(self, challenge_id: str) -> bool:
        query = select(Challenge.id).where(Challenge.id == challenge_id)
        result = await self.session.execute(query)
        return result.scalar_one_or_none() is not None

    async def list_for_challenge(self, challenge_id: str) -> list[ChallengePhase]:
        query = (
            select(ChallengePhase)
            .where(ChallengePhase.challenge_id == challenge_id)
            .options(selectinload(ChallengePhase.constraints))
        )
        result = await self.session.execute(query)
        return list(result.scalars().all())

    async def get(self, challenge_id: str, phase_instance_id: str) -> ChallengePhase | None:
        query = (
            select(ChallengePhase)
            .where(
                ChallengePhase.challenge_id == challenge_id,
                ChallengePhase.id == phase_instance_id,
            )
            .options(selectinload(ChallengePhase.constraints))
        )
        result = await self.session.execute(query)
        return result.scalar_one_or_none()

    async def update_phase(
        self,
        phase_instance_id: str,
        changes: dict[str, Any],
        updated_by: str,
    ) -> None:
        values = {k: v for k, v in changes.items() if k in _WRITABLE_COLUMNS}
        values["updated_by"] = updated_by
        await self.session.execute(
            update(ChallengePhase).where(ChallengePhase.id == phase_instance_id).values(**values)
        )

    async def save_constraints(
        self,
        row: ChallengePhase,
        constraints: Sequence[Constraint],
        updated_by: str,
    ) -> None:
        """Update constraints that already exist on ``row`` and create the rest."""
        existing = {c.id for c in row.constraints}
        for constraint in constraints:
            if constraint.id in existing:
                await self.session.execute(
                    update(ChallengePhaseConstraint)
                    .where(ChallengePhaseConstraint.id == constraint.id)
                    .values(name=constraint.name, value=constraint.value, updated_by=updated_by)
                )
            else:
                self.session.add(
                    ChallengePhaseConstraint(
                        id=constraint.id,
                        challenge_phase_id=row.id,
                        name=constraint.name,
                        value=constraint.value,
                        created_by=updated_by,
                        updated_by=updated_by,
                    )
                )
        await self.session.flush()

    async def relink(self, siblings: Iterable[PhaseInstance], updated_by: str) -> None:
        for sibling in siblings:
            await self.session.execute(
                update(ChallengePhase)
                .where(ChallengePhase.id == sibling.id)
                .values(predecessor=sibling.predecessor, updated_by=updated_by)
            )

    async def delete(self, phase_instance_id: str) -> None:
        await self.session.execute(
            delete(ChallengePhaseConstraint).where(
                ChallengePhaseConstraint.challenge_phase_id == phase_instance_id
            )
        )
        await self.session.execute(
            delete(ChallengePhase).where(ChallengePhase.id == phase_instance_id)
        )
        logger.debug("challenge_phase_row_deleted", phase_id=phase_instance_id)
