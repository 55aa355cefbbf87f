"""Pydantic v2 schemas for phase definitions, templates and phase instances."""

from datetime import datetime
from typing import Any
from uuid import uuid4

from pydantic import ConfigDict, Field, field_validator, model_validator

from challenge_api.shared.schemas.base import BaseEvent, BaseSchema
from challenge_api.shared.utils.datetime_utils import ensure_utc


def _new_id() -> str:
    return str(uuid4())


def _utc_or_none(value: datetime | None) -> datetime | None:
    return ensure_utc(value) if value is not None else None


# ===========================================
# REFERENCE DATA
# ===========================================


class PhaseDefinition(BaseSchema):
    """A reusable phase type from the catalog."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    description: str | None = None
    default_duration: int = Field(ge=0)


class TimelineTemplateEntry(BaseSchema):
    """One phase slot of a timeline template."""

    model_config = ConfigDict(frozen=True)

    phase_id: str
    default_duration: int = Field(ge=0)
    predecessor: str | None = None


class TimelineTemplate(BaseSchema):
    """A named, reusable phase blueprint as stored."""

    id: str
    name: str = ""
    is_active: bool = True
    phases: list[TimelineTemplateEntry] = Field(default_factory=list)


class ResolvedTemplate(BaseSchema):
    """A template's entries in authored order plus a lookup by phase id."""

    model_config = ConfigDict(frozen=True)

    template_id: str
    is_active: bool = True
    entries: tuple[TimelineTemplateEntry, ...]

    @property
    def by_phase_id(self) -> dict[str, TimelineTemplateEntry]:
        return {entry.phase_id: entry for entry in self.entries}

    def index_of(self, phase_id: str) -> int | None:
        for index, entry in enumerate(self.entries):
            if entry.phase_id == phase_id:
                return index
        return None


# ===========================================
# PHASE INSTANCES
# ===========================================


class Constraint(BaseSchema):
    """A named integer limit attached to a challenge phase."""

    model_config = ConfigDict(frozen=True)

    id: str | None = None
    name: str
    value: int = Field(ge=0)


class PhaseInstance(BaseSchema):
    """A concrete per-challenge occurrence of a phase definition.

    Instances are immutable; every engine pass returns updated copies
    via ``model_copy(update=...)``.
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=_new_id)
    phase_id: str
    name: str
    description: str | None = None
    duration: int = Field(ge=0)
    predecessor: str | None = None
    is_open: bool = False
    constraints: tuple[Constraint, ...] = ()
    scheduled_start_date: datetime | None = None
    scheduled_end_date: datetime | None = None
    actual_start_date: datetime | None = None
    actual_end_date: datetime | None = None

    @field_validator(
        "scheduled_start_date",
        "scheduled_end_date",
        "actual_start_date",
        "actual_end_date",
    )
    @classmethod
    def normalize_dates(cls, value: datetime | None) -> datetime | None:
        return _utc_or_none(value)

    @property
    def is_root(self) -> bool:
        return self.predecessor is None

    @property
    def has_started(self) -> bool:
        return self.actual_start_date is not None

    @property
    def has_ended(self) -> bool:
        return self.actual_end_date is not None


class PhaseOverride(BaseSchema):
    """Caller-supplied adjustments for one phase, keyed by phase definition id."""

    model_config = ConfigDict(frozen=True)

    phase_id: str
    duration: int | None = Field(default=None, ge=1)
    constraints: list[Constraint] | None = None
    scheduled_start_date: datetime | None = None

    @field_validator("scheduled_start_date")
    @classmethod
    def normalize_start(cls, value: datetime | None) -> datetime | None:
        return _utc_or_none(value)


_NULLABLE_PATCH_FIELDS = frozenset({"is_open"})


class PhasePatch(BaseSchema):
    """A direct partial update of one challenge phase.

    Unknown fields are rejected. Only fields present in the request
    (``model_fields_set``) are applied.
    """

    model_config = ConfigDict(extra="forbid")

    name: str | None = Field(default=None, min_length=1)
    is_open: bool | None = None
    phase_id: str | None = None
    predecessor: str | None = None
    duration: int | None = Field(default=None, ge=1)
    scheduled_start_date: datetime | None = None
    scheduled_end_date: datetime | None = None
    actual_start_date: datetime | None = None
    actual_end_date: datetime | None = None
    description: str | None = None
    constraints: list[Constraint] | None = None

    @field_validator(
        "scheduled_start_date",
        "scheduled_end_date",
        "actual_start_date",
        "actual_end_date",
    )
    @classmethod
    def normalize_dates(cls, value: datetime | None) -> datetime | None:
        return _utc_or_none(value)

    @field_validator("name")
    @classmethod
    def strip_name(cls, value: str | None) -> str | None:
        return value.strip() if value is not None else None

    @model_validator(mode="after")
    def reject_explicit_nulls(self) -> "PhasePatch":
        # Only isOpen may be sent as null (it means closed).
        nulls = sorted(
            name
            for name in self.model_fields_set
            if name not in _NULLABLE_PATCH_FIELDS and getattr(self, name) is None
        )
        if nulls:
            raise ValueError(f"fields may not be null: {', '.join(nulls)}")
        return self

    def supplied(self) -> dict[str, Any]:
        """Return only the fields the caller actually sent."""
        return {name: getattr(self, name) for name in self.model_fields_set}


class DeleteResult(BaseSchema):
    """Outcome of deleting one phase instance from its chain."""

    deleted_id: str
    deleted: PhaseInstance
    updated_siblings: list[PhaseInstance]
    remaining: list[PhaseInstance]


# ===========================================
# CHALLENGE TIMELINE
# ===========================================


class ChallengeTimeline(BaseSchema):
    """The slice of a challenge the timeline services read and write."""

    id: str
    status: str
    timeline_template_id: str | None = None
    start_date: datetime | None = None
    end_date: datetime | None = None
    phases: list[PhaseInstance] = Field(default_factory=list)


class TimelineUpdate(BaseSchema):
    """Result of recomputing a challenge's phases on update."""

    phases: list[PhaseInstance]
    phases_updated: bool
    timeline_template_id: str | None
    start_date: datetime | None
    end_date: datetime | None


# ===========================================
# EVENTS
# ===========================================


class ChallengePhaseUpdatedEvent(BaseEvent):
    """Emitted after a challenge phase has been patched."""

    event_type: str = "challenge.action.phase.updated"
    challenge_id: str
    phase: dict[str, Any]


class ChallengePhaseDeletedEvent(BaseEvent):
    """Emitted after a challenge phase has been deleted."""

    event_type: str = "challenge.action.phase.deleted"
    challenge_id: str
    phase: dict[str, Any]
