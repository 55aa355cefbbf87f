"""SQLAlchemy ORM models for challenge phases and their reference data."""

from datetime import datetime
from uuid import uuid4

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

from challenge_api.shared.utils.datetime_utils import utcnow


def _new_id() -> str:
    return str(uuid4())


class Base(DeclarativeBase):
    """Base class for all ORM models."""


class AuditMixin:
    """Audit columns carried by every table; never part of API payloads."""

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    created_by: Mapped[str] = mapped_column(String(64), nullable=False, default="system")
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)
    updated_by: Mapped[str | None] = mapped_column(String(64))


# ===========================================
# REFERENCE DATA TABLES
# ===========================================


class Phase(AuditMixin, Base):
    """A phase definition from the catalog."""

    __tablename__ = "phases"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    name: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    description: Mapped[str | None] = mapped_column(Text)
    is_open: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    duration: Mapped[int] = mapped_column(Integer, nullable=False)

    __table_args__ = (
        CheckConstraint("duration >= 0", name="phase_duration_non_negative"),
    )


class TimelineTemplate(AuditMixin, Base):
    """A named phase blueprint."""

    __tablename__ = "timeline_templates"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    name: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    description: Mapped[str | None] = mapped_column(Text)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    # Relationships
    phases: Mapped[list["TimelineTemplatePhase"]] = relationship(
        back_populates="template",
        cascade="all, delete-orphan",
        order_by="TimelineTemplatePhase.position",
    )


class TimelineTemplatePhase(AuditMixin, Base):
    """One phase slot of a timeline template, in authored order."""

    __tablename__ = "timeline_template_phases"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    timeline_template_id: Mapped[str] = mapped_column(
        ForeignKey("timeline_templates.id", ondelete="CASCADE"), nullable=False
    )
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    phase_id: Mapped[str] = mapped_column(ForeignKey("phases.id"), nullable=False)
    predecessor: Mapped[str | None] = mapped_column(String(36))
    default_duration: Mapped[int] = mapped_column(Integer, nullable=False)

    template: Mapped["TimelineTemplate"] = relationship(back_populates="phases")

    __table_args__ = (
        UniqueConstraint("timeline_template_id", "position", name="uq_template_phase_position"),
        Index("idx_template_phases_template", "timeline_template_id"),
    )


# ===========================================
# CHALLENGE TABLES
# ===========================================


class Challenge(AuditMixin, Base):
    """The slice of a challenge record the phase services touch."""

    __tablename__ = "challenges"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    name: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    status: Mapped[str] = mapped_column(String(64), nullable=False, default="New")
    timeline_template_id: Mapped[str | None] = mapped_column(ForeignKey("timeline_templates.id"))
    start_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    end_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    # Relationships
    phases: Mapped[list["ChallengePhase"]] = relationship(
        back_populates="challenge", cascade="all, delete-orphan"
    )

    __table_args__ = (
        Index("idx_challenges_status", "status"),
    )


class ChallengePhase(AuditMixin, Base):
    """A dated phase instance owned by one challenge."""

    __tablename__ = "challenge_phases"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    challenge_id: Mapped[str] = mapped_column(
        ForeignKey("challenges.id", ondelete="CASCADE"), nullable=False
    )
    phase_id: Mapped[str] = mapped_column(ForeignKey("phases.id"), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text)
    predecessor: Mapped[str | None] = mapped_column(String(36))
    is_open: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    duration: Mapped[int] = mapped_column(Integer, nullable=False)
    scheduled_start_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    scheduled_end_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    actual_start_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    actual_end_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    # Relationships
    challenge: Mapped["Challenge"] = relationship(back_populates="phases")
    phase: Mapped["Phase"] = relationship()
    constraints: Mapped[list["ChallengePhaseConstraint"]] = relationship(
        back_populates="challenge_phase", cascade="all, delete-orphan"
    )

    __table_args__ = (
        CheckConstraint("duration >= 0", name="challenge_phase_duration_non_negative"),
        Index("idx_challenge_phases_challenge", "challenge_id"),
        Index("idx_challenge_phases_predecessor", "challenge_id", "predecessor"),
    )


class ChallengePhaseConstraint(AuditMixin, Base):
    """A named integer limit on a challenge phase."""

    __tablename__ = "challenge_phase_constraints"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    challenge_phase_id: Mapped[str] = mapped_column(
        ForeignKey("challenge_phases.id", ondelete="CASCADE"), nullable=False
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    value: Mapped[int] = mapped_column(Integer, nullable=False)

    challenge_phase: Mapped["ChallengePhase"] = relationship(back_populates="constraints")

    __table_args__ = (
        CheckConstraint("value >= 0", name="constraint_value_non_negative"),
    )
