from __future__ import annotations

import enum
from datetime import date, datetime, time, timezone
from decimal import Decimal
from typing import Any

from sqlalchemy import (
    Boolean,
    Date,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    Time,
    UniqueConstraint,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.db import Base


class WorkerStatus(str, enum.Enum):
    ACTIVE = "ACTIVE"
    VACATION = "VACATION"
    MEDICAL_LEAVE = "MEDICAL_LEAVE"
    PARENTAL_LEAVE = "PARENTAL_LEAVE"
    SUSPENDED = "SUSPENDED"
    TRAINING = "TRAINING"
    AWAY = "AWAY"
    DISMISSED = "DISMISSED"
    RETIRED = "RETIRED"


class SchedulePeriodStatus(str, enum.Enum):
    DRAFT = "DRAFT"
    PUBLISHED = "PUBLISHED"
    ARCHIVED = "ARCHIVED"


class SlotState(str, enum.Enum):
    WORK = "WORK"
    DAY_OFF = "DAY_OFF"
    EXCEPTION = "EXCEPTION"


class CrewRole(str, enum.Enum):
    DRIVER = "DRIVER"
    PASSENGER = "PASSENGER"
    CREW = "CREW"


class AbsenceStatus(str, enum.Enum):
    PENDING = "PENDING"
    UNDER_REVIEW = "UNDER_REVIEW"
    JUSTIFIED = "JUSTIFIED"
    UNJUSTIFIED = "UNJUSTIFIED"
    SUPERSEDED = "SUPERSEDED"


class AbsenceReason(str, enum.Enum):
    NO_SHIFT_OPENED = "NO_SHIFT_OPENED"
    SHIFT_OUTSIDE_WINDOW = "SHIFT_OUTSIDE_WINDOW"


class OvertimeKind(str, enum.Enum):
    EXCESS_HOURS = "EXCESS_HOURS"
    DAY_OFF_WORKED = "DAY_OFF_WORKED"
    UNSCHEDULED_WORK = "UNSCHEDULED_WORK"


class DecisionStatus(str, enum.Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    SUPERSEDED = "SUPERSEDED"


class ReconciliationMode(str, enum.Enum):
    SCHEDULED = "SCHEDULED"
    MANUAL = "MANUAL"
    FORCED = "FORCED"


class ActorKind(str, enum.Enum):
    SYSTEM = "SYSTEM"
    OPERATOR = "OPERATOR"


def _created_at_column() -> Mapped[datetime]:
    return mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=text("CURRENT_TIMESTAMP"),
    )


def _updated_at_column() -> Mapped[datetime]:
    return mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=text("CURRENT_TIMESTAMP"),
        onupdate=lambda: datetime.now(timezone.utc),
    )


class Team(Base):
    __tablename__ = "teams"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default=text("true"))
    deleted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = _created_at_column()
    updated_at: Mapped[datetime] = _updated_at_column()

    schedule_periods: Mapped[list[SchedulePeriod]] = relationship(back_populates="team")


class Worker(Base):
    __tablename__ = "workers"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    full_name: Mapped[str] = mapped_column(String(255), nullable=False)
    registration: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    status: Mapped[WorkerStatus] = mapped_column(
        Enum(WorkerStatus, name="worker_status"),
        nullable=False,
        default=WorkerStatus.ACTIVE,
        server_default=text("'ACTIVE'"),
    )
    deleted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = _created_at_column()
    updated_at: Mapped[datetime] = _updated_at_column()


class SchedulePeriod(Base):
    __tablename__ = "schedule_periods"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    team_id: Mapped[int] = mapped_column(ForeignKey("teams.id", ondelete="CASCADE"), nullable=False, index=True)
    start_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    end_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    status: Mapped[SchedulePeriodStatus] = mapped_column(
        Enum(SchedulePeriodStatus, name="schedule_period_status"),
        nullable=False,
        default=SchedulePeriodStatus.DRAFT,
        server_default=text("'DRAFT'"),
    )
    created_at: Mapped[datetime] = _created_at_column()
    updated_at: Mapped[datetime] = _updated_at_column()

    team: Mapped[Team] = relationship(back_populates="schedule_periods")
    slots: Mapped[list[ScheduleSlot]] = relationship(back_populates="period", cascade="all, delete-orphan")


class ScheduleSlot(Base):
    __tablename__ = "schedule_slots"
    __table_args__ = (
        UniqueConstraint("period_id", "worker_id", "day_date", name="uq_schedule_slots_period_worker_day"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    period_id: Mapped[int] = mapped_column(
        ForeignKey("schedule_periods.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    worker_id: Mapped[int] = mapped_column(ForeignKey("workers.id", ondelete="CASCADE"), nullable=False, index=True)
    day_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    state: Mapped[SlotState] = mapped_column(Enum(SlotState, name="schedule_slot_state"), nullable=False)
    planned_start: Mapped[time | None] = mapped_column(Time(timezone=False), nullable=True)
    planned_minutes: Mapped[int] = mapped_column(Integer, nullable=False, default=480, server_default=text("480"))

    period: Mapped[SchedulePeriod] = relationship(back_populates="slots")
    worker: Mapped[Worker] = relationship()


class ActualShift(Base):
    __tablename__ = "actual_shifts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    team_id: Mapped[int] = mapped_column(ForeignKey("teams.id", ondelete="CASCADE"), nullable=False, index=True)
    worker_id: Mapped[int] = mapped_column(ForeignKey("workers.id", ondelete="CASCADE"), nullable=False, index=True)
    day_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    role: Mapped[CrewRole] = mapped_column(
        Enum(CrewRole, name="crew_role"),
        nullable=False,
        default=CrewRole.CREW,
        server_default=text("'CREW'"),
    )
    opened_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    closed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = _created_at_column()


class Absence(Base):
    __tablename__ = "absences"
    __table_args__ = (
        UniqueConstraint("worker_id", "day_date", name="uq_absences_worker_day"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    worker_id: Mapped[int] = mapped_column(ForeignKey("workers.id", ondelete="CASCADE"), nullable=False, index=True)
    day_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    team_id: Mapped[int] = mapped_column(ForeignKey("teams.id", ondelete="CASCADE"), nullable=False, index=True)
    slot_id: Mapped[int | None] = mapped_column(
        ForeignKey("schedule_slots.id", ondelete="SET NULL"),
        nullable=True,
    )
    reason: Mapped[AbsenceReason] = mapped_column(Enum(AbsenceReason, name="absence_reason"), nullable=False)
    status: Mapped[AbsenceStatus] = mapped_column(
        Enum(AbsenceStatus, name="absence_status"),
        nullable=False,
        default=AbsenceStatus.PENDING,
        server_default=text("'PENDING'"),
        index=True,
    )
    superseded_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_by: Mapped[str] = mapped_column(String(255), nullable=False)
    updated_by: Mapped[str] = mapped_column(String(255), nullable=False)
    created_at: Mapped[datetime] = _created_at_column()
    updated_at: Mapped[datetime] = _updated_at_column()

    justifications: Mapped[list[Justification]] = relationship(back_populates="absence")


class Overtime(Base):
    __tablename__ = "overtimes"
    __table_args__ = (
        UniqueConstraint("worker_id", "day_date", name="uq_overtimes_worker_day"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    worker_id: Mapped[int] = mapped_column(ForeignKey("workers.id", ondelete="CASCADE"), nullable=False, index=True)
    day_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    team_id: Mapped[int] = mapped_column(ForeignKey("teams.id", ondelete="CASCADE"), nullable=False, index=True)
    actual_shift_id: Mapped[int | None] = mapped_column(
        ForeignKey("actual_shifts.id", ondelete="SET NULL"),
        nullable=True,
    )
    kind: Mapped[OvertimeKind] = mapped_column(Enum(OvertimeKind, name="overtime_kind"), nullable=False)
    planned_hours: Mapped[Decimal] = mapped_column(Numeric(6, 2), nullable=False)
    actual_hours: Mapped[Decimal] = mapped_column(Numeric(6, 2), nullable=False)
    diff_hours: Mapped[Decimal] = mapped_column(Numeric(6, 2), nullable=False)
    status: Mapped[DecisionStatus] = mapped_column(
        Enum(DecisionStatus, name="decision_status"),
        nullable=False,
        default=DecisionStatus.PENDING,
        server_default=text("'PENDING'"),
        index=True,
    )
    decided_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    decided_by: Mapped[str | None] = mapped_column(String(255), nullable=True)
    decision_note: Mapped[str | None] = mapped_column(String(1000), nullable=True)
    superseded_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_by: Mapped[str] = mapped_column(String(255), nullable=False)
    updated_by: Mapped[str] = mapped_column(String(255), nullable=False)
    created_at: Mapped[datetime] = _created_at_column()
    updated_at: Mapped[datetime] = _updated_at_column()


class ScheduleDivergence(Base):
    __tablename__ = "schedule_divergences"
    __table_args__ = (
        UniqueConstraint(
            "worker_id",
            "day_date",
            "planned_team_id",
            "actual_team_id",
            name="uq_schedule_divergences_worker_day_teams",
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    worker_id: Mapped[int] = mapped_column(ForeignKey("workers.id", ondelete="CASCADE"), nullable=False, index=True)
    day_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    planned_team_id: Mapped[int] = mapped_column(ForeignKey("teams.id", ondelete="CASCADE"), nullable=False)
    actual_team_id: Mapped[int] = mapped_column(ForeignKey("teams.id", ondelete="CASCADE"), nullable=False)
    created_by: Mapped[str] = mapped_column(String(255), nullable=False)
    created_at: Mapped[datetime] = _created_at_column()


class ReconciliationMarker(Base):
    __tablename__ = "reconciliation_markers"
    __table_args__ = (
        UniqueConstraint("team_id", "day_date", name="uq_reconciliation_markers_team_day"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    team_id: Mapped[int] = mapped_column(ForeignKey("teams.id", ondelete="CASCADE"), nullable=False)
    day_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    mode: Mapped[ReconciliationMode] = mapped_column(
        Enum(ReconciliationMode, name="reconciliation_mode"),
        nullable=False,
    )
    last_run_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    last_run_by: Mapped[str] = mapped_column(String(255), nullable=False)


class JustificationType(Base):
    __tablename__ = "justification_types"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    description: Mapped[str | None] = mapped_column(String(1000), nullable=True)
    generates_absence: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=True,
        server_default=text("true"),
    )
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default=text("true"))
    created_at: Mapped[datetime] = _created_at_column()


class Justification(Base):
    __tablename__ = "justifications"
    __table_args__ = (
        Index(
            "uq_justifications_absence_pending",
            "absence_id",
            unique=True,
            postgresql_where=text("status = 'PENDING'"),
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    absence_id: Mapped[int] = mapped_column(ForeignKey("absences.id", ondelete="CASCADE"), nullable=False, index=True)
    type_id: Mapped[int] = mapped_column(ForeignKey("justification_types.id"), nullable=False)
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    attachment_refs: Mapped[list[str]] = mapped_column(
        JSONB,
        nullable=False,
        default=list,
        server_default=text("'[]'::jsonb"),
    )
    status: Mapped[DecisionStatus] = mapped_column(
        Enum(DecisionStatus, name="decision_status"),
        nullable=False,
        default=DecisionStatus.PENDING,
        server_default=text("'PENDING'"),
    )
    decided_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    decided_by: Mapped[str | None] = mapped_column(String(255), nullable=True)
    created_by: Mapped[str] = mapped_column(String(255), nullable=False)
    created_at: Mapped[datetime] = _created_at_column()

    absence: Mapped[Absence] = relationship(back_populates="justifications")
    type: Mapped[JustificationType] = relationship()


class TeamJustification(Base):
    __tablename__ = "team_justifications"
    __table_args__ = (
        Index(
            "uq_team_justifications_team_day_pending",
            "team_id",
            "day_date",
            unique=True,
            postgresql_where=text("status = 'PENDING'"),
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    team_id: Mapped[int] = mapped_column(ForeignKey("teams.id", ondelete="CASCADE"), nullable=False, index=True)
    day_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    type_id: Mapped[int] = mapped_column(ForeignKey("justification_types.id"), nullable=False)
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    attachment_refs: Mapped[list[str]] = mapped_column(
        JSONB,
        nullable=False,
        default=list,
        server_default=text("'[]'::jsonb"),
    )
    status: Mapped[DecisionStatus] = mapped_column(
        Enum(DecisionStatus, name="decision_status"),
        nullable=False,
        default=DecisionStatus.PENDING,
        server_default=text("'PENDING'"),
    )
    decided_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    decided_by: Mapped[str | None] = mapped_column(String(255), nullable=True)
    created_by: Mapped[str] = mapped_column(String(255), nullable=False)
    created_at: Mapped[datetime] = _created_at_column()

    type: Mapped[JustificationType] = relationship()


class AuditLog(Base):
    __tablename__ = "audit_logs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    ts_utc: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=text("CURRENT_TIMESTAMP"),
        index=True,
    )
    actor_type: Mapped[ActorKind] = mapped_column(Enum(ActorKind, name="actor_kind"), nullable=False)
    actor_id: Mapped[str] = mapped_column(String(255), nullable=False)
    action: Mapped[str] = mapped_column(String(255), nullable=False)
    entity_type: Mapped[str | None] = mapped_column(String(255), nullable=True)
    entity_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    success: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default=text("true"))
    details: Mapped[dict[str, Any]] = mapped_column(
        JSONB,
        nullable=False,
        default=dict,
        server_default=text("'{}'::jsonb"),
    )
