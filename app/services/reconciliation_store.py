from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any

from sqlalchemy import exists, select, union
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.actors import Actor
from app.db import session_scope
from app.models import (
    Absence,
    AbsenceReason,
    AbsenceStatus,
    ActualShift as ActualShiftRow,
    DecisionStatus,
    JustificationType,
    Overtime,
    ReconciliationMarker,
    ReconciliationMode,
    ScheduleDivergence,
    SchedulePeriod,
    SchedulePeriodStatus,
    ScheduleSlot,
    SlotState,
    TeamJustification,
    Worker,
)
from app.services.derived_records import minutes_to_hours
from app.services.reconciliation_errors import FetchError, WriteConflict
from app.services.reconciliation_port import (
    AbsenceSnapshot,
    ActualShift,
    OvertimeSnapshot,
    OvertimeValues,
    PlannedSlot,
    ScheduledWorker,
    UpsertOutcome,
)

ON_DUTY_STATES = (SlotState.WORK, SlotState.EXCEPTION)


def not_deleted(model: Any):
    return model.deleted_at.is_(None)


def _hours(minutes: int) -> Decimal:
    return Decimal(str(minutes_to_hours(minutes)))


def _minutes(hours: Decimal | None) -> int:
    if hours is None:
        return 0
    return int((Decimal(hours) * 60).to_integral_value())


def published_slot_conditions(start: date, end: date) -> tuple:
    """Slot rows of published periods inside [start, end] and inside their own period, for live workers.

    Callers join ScheduleSlot to SchedulePeriod and Worker.
    """
    return (
        SchedulePeriod.status == SchedulePeriodStatus.PUBLISHED,
        ScheduleSlot.day_date >= start,
        ScheduleSlot.day_date <= end,
        SchedulePeriod.start_date <= ScheduleSlot.day_date,
        SchedulePeriod.end_date >= ScheduleSlot.day_date,
        not_deleted(Worker),
    )


def _published_slots_query(start: date, end: date):
    return (
        select(ScheduleSlot, SchedulePeriod.team_id)
        .join(SchedulePeriod, SchedulePeriod.id == ScheduleSlot.period_id)
        .join(Worker, Worker.id == ScheduleSlot.worker_id)
        .where(*published_slot_conditions(start, end))
    )


def _absence_snapshot(row: Absence) -> AbsenceSnapshot:
    return AbsenceSnapshot(
        absence_id=row.id,
        worker_id=row.worker_id,
        day_date=row.day_date,
        status=row.status,
        reason=row.reason,
    )


def _overtime_snapshot(row: Overtime) -> OvertimeSnapshot:
    return OvertimeSnapshot(
        overtime_id=row.id,
        worker_id=row.worker_id,
        day_date=row.day_date,
        status=row.status,
        kind=row.kind,
        planned_minutes=_minutes(row.planned_hours),
        actual_minutes=_minutes(row.actual_hours),
    )


class SqlReconciliationStore:
    """ReconciliationStore over one SQLAlchemy session already inside a transaction."""

    def __init__(self, db: Session):
        self.db = db

    def get_planned_slot(self, team_id: int, day: date) -> PlannedSlot | None:
        try:
            rows = self.db.execute(
                _published_slots_query(day, day)
                .add_columns(Worker.status)
                .where(SchedulePeriod.team_id == team_id)
                .order_by(ScheduleSlot.planned_start.asc().nulls_last(), ScheduleSlot.id.asc())
            ).all()
            if not rows:
                return None
            team_excused = bool(
                self.db.scalar(
                    select(
                        exists().where(
                            TeamJustification.team_id == team_id,
                            TeamJustification.day_date == day,
                            TeamJustification.status == DecisionStatus.APPROVED,
                            TeamJustification.type_id == JustificationType.id,
                            JustificationType.generates_absence.is_(False),
                        )
                    )
                )
            )
        except SQLAlchemyError as exc:
            raise FetchError(f"planned slot for team {team_id} on {day.isoformat()} unavailable") from exc

        # Team reference for rows without their own start: the earliest on-duty slot.
        reference = next((slot for slot, _team, _status in rows if slot.state in ON_DUTY_STATES), rows[0][0])
        workers = tuple(
            ScheduledWorker(
                worker_id=slot.worker_id,
                state=slot.state,
                status=status,
                slot_id=slot.id,
                planned_start=slot.planned_start,
                planned_minutes=slot.planned_minutes,
            )
            for slot, _team, status in rows
        )
        return PlannedSlot(
            team_id=team_id,
            day_date=day,
            planned_start=reference.planned_start,
            planned_minutes=reference.planned_minutes,
            workers=workers,
            team_excused=team_excused,
        )

    def get_actual_shifts(self, day: date) -> list[ActualShift]:
        try:
            rows = self.db.scalars(
                select(ActualShiftRow)
                .where(ActualShiftRow.day_date == day)
                .order_by(ActualShiftRow.opened_at.asc(), ActualShiftRow.id.asc())
            ).all()
        except SQLAlchemyError as exc:
            raise FetchError(f"actual shifts for {day.isoformat()} unavailable") from exc
        return [
            ActualShift(
                shift_id=row.id,
                team_id=row.team_id,
                worker_id=row.worker_id,
                day_date=row.day_date,
                opened_at=row.opened_at,
                closed_at=row.closed_at,
            )
            for row in rows
        ]

    def get_scheduled_worker_ids(self, day: date) -> set[int]:
        try:
            rows = self.db.execute(_published_slots_query(day, day)).all()
        except SQLAlchemyError as exc:
            raise FetchError(f"published schedule for {day.isoformat()} unavailable") from exc
        return {slot.worker_id for slot, _team in rows}

    def find_absence(self, worker_id: int, day: date) -> AbsenceSnapshot | None:
        row = self.db.scalar(select(Absence).where(Absence.worker_id == worker_id, Absence.day_date == day))
        return _absence_snapshot(row) if row is not None else None

    def upsert_absence(
        self,
        *,
        worker_id: int,
        day: date,
        team_id: int,
        slot_id: int | None,
        reason: AbsenceReason,
        actor: Actor,
    ) -> UpsertOutcome:
        stmt = (
            insert(Absence)
            .values(
                worker_id=worker_id,
                day_date=day,
                team_id=team_id,
                slot_id=slot_id,
                reason=reason,
                status=AbsenceStatus.PENDING,
                created_by=actor.label,
                updated_by=actor.label,
            )
            .on_conflict_do_nothing(index_elements=["worker_id", "day_date"])
            .returning(Absence.id)
        )
        inserted_id = self.db.execute(stmt).scalar_one_or_none()
        snapshot = self.find_absence(worker_id, day)
        if snapshot is None:
            raise WriteConflict(f"absence for worker {worker_id} on {day.isoformat()} vanished after upsert")
        return UpsertOutcome(created=inserted_id is not None, snapshot=snapshot)

    def update_absence(
        self,
        absence_id: int,
        *,
        status: AbsenceStatus,
        reason: AbsenceReason,
        superseded_at: datetime | None,
        actor: Actor,
    ) -> None:
        row = self.db.get(Absence, absence_id)
        if row is None:
            raise WriteConflict(f"absence {absence_id} not found")
        row.status = status
        row.reason = reason
        row.superseded_at = superseded_at
        row.updated_by = actor.label
        self.db.flush()

    def _find_overtime(self, worker_id: int, day: date) -> Overtime | None:
        return self.db.scalar(select(Overtime).where(Overtime.worker_id == worker_id, Overtime.day_date == day))

    def find_overtime(self, worker_id: int, day: date) -> OvertimeSnapshot | None:
        row = self._find_overtime(worker_id, day)
        return _overtime_snapshot(row) if row is not None else None

    def upsert_overtime(self, *, worker_id: int, day: date, values: OvertimeValues, actor: Actor) -> UpsertOutcome:
        stmt = (
            insert(Overtime)
            .values(
                worker_id=worker_id,
                day_date=day,
                team_id=values.team_id,
                actual_shift_id=values.actual_shift_id,
                kind=values.kind,
                planned_hours=_hours(values.planned_minutes),
                actual_hours=_hours(values.actual_minutes),
                diff_hours=_hours(values.diff_minutes),
                status=DecisionStatus.PENDING,
                created_by=actor.label,
                updated_by=actor.label,
            )
            .on_conflict_do_nothing(index_elements=["worker_id", "day_date"])
            .returning(Overtime.id)
        )
        inserted_id = self.db.execute(stmt).scalar_one_or_none()
        row = self._find_overtime(worker_id, day)
        if row is None:
            raise WriteConflict(f"overtime for worker {worker_id} on {day.isoformat()} vanished after upsert")
        return UpsertOutcome(created=inserted_id is not None, snapshot=_overtime_snapshot(row))

    def update_overtime(self, overtime_id: int, *, values: OvertimeValues, actor: Actor) -> None:
        row = self.db.get(Overtime, overtime_id)
        if row is None:
            raise WriteConflict(f"overtime {overtime_id} not found")
        row.team_id = values.team_id
        row.actual_shift_id = values.actual_shift_id
        row.kind = values.kind
        row.planned_hours = _hours(values.planned_minutes)
        row.actual_hours = _hours(values.actual_minutes)
        row.diff_hours = _hours(values.diff_minutes)
        row.status = DecisionStatus.PENDING
        row.superseded_at = None
        row.updated_by = actor.label
        self.db.flush()

    def supersede_overtime(self, overtime_id: int, *, superseded_at: datetime, actor: Actor) -> None:
        row = self.db.get(Overtime, overtime_id)
        if row is None:
            raise WriteConflict(f"overtime {overtime_id} not found")
        row.status = DecisionStatus.SUPERSEDED
        row.superseded_at = superseded_at
        row.updated_by = actor.label
        self.db.flush()

    def upsert_divergence(
        self,
        *,
        worker_id: int,
        day: date,
        planned_team_id: int,
        actual_team_id: int,
        actor: Actor,
    ) -> bool:
        stmt = (
            insert(ScheduleDivergence)
            .values(
                worker_id=worker_id,
                day_date=day,
                planned_team_id=planned_team_id,
                actual_team_id=actual_team_id,
                created_by=actor.label,
            )
            .on_conflict_do_nothing(
                index_elements=["worker_id", "day_date", "planned_team_id", "actual_team_id"],
            )
            .returning(ScheduleDivergence.id)
        )
        return self.db.execute(stmt).scalar_one_or_none() is not None

    def mark_reconciled(self, team_id: int, day: date, mode: ReconciliationMode, actor: Actor) -> None:
        now = datetime.now(timezone.utc)
        stmt = insert(ReconciliationMarker).values(
            team_id=team_id,
            day_date=day,
            mode=mode,
            last_run_at=now,
            last_run_by=actor.label,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["team_id", "day_date"],
            set_={"mode": stmt.excluded.mode, "last_run_at": stmt.excluded.last_run_at, "last_run_by": stmt.excluded.last_run_by},
        )
        self.db.execute(stmt)

    def teams_with_published_schedule(self, start: date, end: date) -> list[int]:
        return sorted({team_id for team_id, _day in self.published_slot_days(start, end)})

    def published_slot_days(self, start: date, end: date) -> set[tuple[int, date]]:
        stmt = (
            select(SchedulePeriod.team_id, ScheduleSlot.day_date)
            .join(SchedulePeriod, SchedulePeriod.id == ScheduleSlot.period_id)
            .join(Worker, Worker.id == ScheduleSlot.worker_id)
            .where(*published_slot_conditions(start, end))
            .distinct()
        )
        try:
            rows = self.db.execute(stmt).all()
        except SQLAlchemyError as exc:
            raise FetchError("published schedule days unavailable") from exc
        return {(team_id, day) for team_id, day in rows}

    def reconciled_pairs(self, start: date, end: date) -> set[tuple[int, date]]:
        stmt = union(
            select(ReconciliationMarker.team_id, ReconciliationMarker.day_date).where(
                ReconciliationMarker.day_date >= start,
                ReconciliationMarker.day_date <= end,
            ),
            select(Absence.team_id, Absence.day_date).where(Absence.day_date >= start, Absence.day_date <= end),
            select(Overtime.team_id, Overtime.day_date).where(Overtime.day_date >= start, Overtime.day_date <= end),
            select(ScheduleDivergence.planned_team_id, ScheduleDivergence.day_date).where(
                ScheduleDivergence.day_date >= start,
                ScheduleDivergence.day_date <= end,
            ),
        )
        try:
            rows = self.db.execute(stmt).all()
        except SQLAlchemyError as exc:
            raise FetchError("reconciliation history unavailable") from exc
        return {(team_id, day) for team_id, day in rows}


@contextmanager
def sql_store_factory() -> Iterator[SqlReconciliationStore]:
    with session_scope() as db:
        yield SqlReconciliationStore(db)
