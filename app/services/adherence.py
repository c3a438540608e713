from __future__ import annotations

from collections import Counter, defaultdict
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.errors import NotFound
from app.models import (
    Absence,
    AbsenceStatus,
    DecisionStatus,
    JustificationType,
    Overtime,
    SchedulePeriod,
    ScheduleSlot,
    SlotState,
    Team,
    TeamJustification,
    Worker,
)
from app.services.reconciliation_store import SqlReconciliationStore, published_slot_conditions

WorkerDay = tuple[int, date]


@dataclass(frozen=True, slots=True)
class AbsenceFact:
    worker_id: int
    day_date: date
    status: AbsenceStatus


@dataclass(frozen=True, slots=True)
class OvertimeFact:
    worker_id: int
    day_date: date
    status: DecisionStatus
    diff_hours: Decimal


@dataclass(slots=True)
class DayAdherence:
    day_date: date
    planned_slots: int = 0
    honored: int = 0
    unreconciled: int = 0
    absences: int = 0
    overtime_events: int = 0

    def to_dict(self) -> dict:
        return {
            "day": self.day_date.isoformat(),
            "planned_slots": self.planned_slots,
            "honored": self.honored,
            "unreconciled": self.unreconciled,
            "absences": self.absences,
            "overtime_events": self.overtime_events,
            "adherence_percent": compute_adherence_percent(self.planned_slots, self.honored),
        }


@dataclass(slots=True)
class AdherenceReport:
    planned_slots: int = 0
    honored: int = 0
    excused: int = 0
    unreconciled: int = 0
    absences: Counter = field(default_factory=Counter)
    overtime_events: int = 0
    overtime_hours_approved: Decimal = Decimal("0")
    days: list[DayAdherence] = field(default_factory=list)

    @property
    def adherence_percent(self) -> float:
        return compute_adherence_percent(self.planned_slots, self.honored)

    def to_dict(self) -> dict:
        return {
            "planned_slots": self.planned_slots,
            "honored": self.honored,
            "absences": {status.value: self.absences.get(status.value, 0) for status in AbsenceStatus},
            "overtime_events": self.overtime_events,
            "overtime_hours_approved": float(self.overtime_hours_approved),
            "excused": self.excused,
            "unreconciled": self.unreconciled,
            "adherence_percent": self.adherence_percent,
            "days": [item.to_dict() for item in self.days],
        }


def compute_adherence_percent(planned_slots: int, honored: int) -> float:
    if planned_slots <= 0:
        return 0.0
    return round(honored / planned_slots * 100, 2)


def build_adherence_report(
    planned: Iterable[WorkerDay],
    absences: Iterable[AbsenceFact],
    overtimes: Iterable[OvertimeFact],
    excused: Iterable[WorkerDay] = (),
    reconciled: Iterable[WorkerDay] = (),
) -> AdherenceReport:
    """Aggregate adjudicated facts into honored counts.

    Only planned worker-days listed in ``reconciled`` are measured; the rest
    are reported as ``unreconciled`` and count neither as planned nor as
    honored. A measured worker-day is honored unless it has a non-superseded
    absence or falls on an excused team day. A justified absence is still
    not honored.
    """
    all_planned = set(planned)
    planned_keys = all_planned & set(reconciled)
    unreconciled_keys = all_planned - planned_keys
    excused_keys = set(excused) & planned_keys
    absence_list = [item for item in absences if item.status != AbsenceStatus.SUPERSEDED]
    overtime_list = [item for item in overtimes if item.status != DecisionStatus.SUPERSEDED]

    missed_keys = {(item.worker_id, item.day_date) for item in absence_list} & planned_keys
    not_honored = missed_keys | excused_keys

    days: dict[date, DayAdherence] = {}

    def _day(day_date: date) -> DayAdherence:
        if day_date not in days:
            days[day_date] = DayAdherence(day_date=day_date)
        return days[day_date]

    for worker_id, day_date in planned_keys:
        row = _day(day_date)
        row.planned_slots += 1
        if (worker_id, day_date) not in not_honored:
            row.honored += 1
    for _worker_id, day_date in unreconciled_keys:
        _day(day_date).unreconciled += 1
    for item in absence_list:
        _day(item.day_date).absences += 1
    for item in overtime_list:
        _day(item.day_date).overtime_events += 1

    report = AdherenceReport(
        planned_slots=len(planned_keys),
        honored=len(planned_keys) - len(not_honored),
        excused=len(excused_keys),
        unreconciled=len(unreconciled_keys),
        absences=Counter(item.status.value for item in absence_list),
        overtime_events=len(overtime_list),
        overtime_hours_approved=sum(
            (Decimal(item.diff_hours) for item in overtime_list if item.status == DecisionStatus.APPROVED),
            Decimal("0"),
        ),
        days=[days[key] for key in sorted(days)],
    )
    return report


def _planned_rows(db: Session, *, start: date, end: date, team_id: int | None = None, worker_id: int | None = None):
    stmt = (
        select(ScheduleSlot.worker_id, ScheduleSlot.day_date, SchedulePeriod.team_id)
        .join(SchedulePeriod, SchedulePeriod.id == ScheduleSlot.period_id)
        .join(Worker, Worker.id == ScheduleSlot.worker_id)
        .where(
            *published_slot_conditions(start, end),
            ScheduleSlot.state.in_((SlotState.WORK, SlotState.EXCEPTION)),
        )
    )
    if team_id is not None:
        stmt = stmt.where(SchedulePeriod.team_id == team_id)
    if worker_id is not None:
        stmt = stmt.where(ScheduleSlot.worker_id == worker_id)
    return db.execute(stmt).all()


def _excused_team_days(db: Session, *, start: date, end: date) -> set[tuple[int, date]]:
    rows = db.execute(
        select(TeamJustification.team_id, TeamJustification.day_date)
        .join(JustificationType, JustificationType.id == TeamJustification.type_id)
        .where(
            TeamJustification.status == DecisionStatus.APPROVED,
            JustificationType.generates_absence.is_(False),
            TeamJustification.day_date >= start,
            TeamJustification.day_date <= end,
        )
    ).all()
    return {(team_id, day_date) for team_id, day_date in rows}


def _absence_facts(db: Session, *, start: date, end: date, team_id: int | None = None, worker_id: int | None = None):
    stmt = select(Absence.worker_id, Absence.day_date, Absence.status).where(
        Absence.day_date >= start,
        Absence.day_date <= end,
    )
    if team_id is not None:
        stmt = stmt.where(Absence.team_id == team_id)
    if worker_id is not None:
        stmt = stmt.where(Absence.worker_id == worker_id)
    return [AbsenceFact(worker_id=row[0], day_date=row[1], status=row[2]) for row in db.execute(stmt).all()]


def _overtime_facts(db: Session, *, start: date, end: date, team_id: int | None = None, worker_id: int | None = None):
    stmt = select(Overtime.worker_id, Overtime.day_date, Overtime.status, Overtime.diff_hours).where(
        Overtime.day_date >= start,
        Overtime.day_date <= end,
    )
    if team_id is not None:
        stmt = stmt.where(Overtime.team_id == team_id)
    if worker_id is not None:
        stmt = stmt.where(Overtime.worker_id == worker_id)
    return [
        OvertimeFact(worker_id=row[0], day_date=row[1], status=row[2], diff_hours=row[3])
        for row in db.execute(stmt).all()
    ]


def _reconciled_worker_days(db: Session, planned_rows, *, start: date, end: date) -> list[WorkerDay]:
    done = SqlReconciliationStore(db).reconciled_pairs(start, end)
    return [(row.worker_id, row.day_date) for row in planned_rows if (row.team_id, row.day_date) in done]


def _range_payload(start: date, end: date) -> dict:
    return {"from": start.isoformat(), "to": end.isoformat()}


def consolidate_worker(db: Session, *, worker_id: int, start: date, end: date) -> dict:
    worker = db.get(Worker, worker_id)
    if worker is None or worker.deleted_at is not None:
        raise NotFound("Worker not found")

    planned_rows = _planned_rows(db, start=start, end=end, worker_id=worker_id)
    excused_days = _excused_team_days(db, start=start, end=end)
    report = build_adherence_report(
        planned=[(row.worker_id, row.day_date) for row in planned_rows],
        absences=_absence_facts(db, start=start, end=end, worker_id=worker_id),
        overtimes=_overtime_facts(db, start=start, end=end, worker_id=worker_id),
        excused=[(row.worker_id, row.day_date) for row in planned_rows if (row.team_id, row.day_date) in excused_days],
        reconciled=_reconciled_worker_days(db, planned_rows, start=start, end=end),
    )
    return {
        "worker_id": worker.id,
        "worker_name": worker.full_name,
        **_range_payload(start, end),
        **report.to_dict(),
    }


def _team_report(db: Session, *, team_id: int, start: date, end: date):
    planned_rows = _planned_rows(db, start=start, end=end, team_id=team_id)
    excused_days = {day for team, day in _excused_team_days(db, start=start, end=end) if team == team_id}
    planned = [(row.worker_id, row.day_date) for row in planned_rows]
    excused = [(row.worker_id, row.day_date) for row in planned_rows if row.day_date in excused_days]
    absences = _absence_facts(db, start=start, end=end, team_id=team_id)
    overtimes = _overtime_facts(db, start=start, end=end, team_id=team_id)
    reconciled = _reconciled_worker_days(db, planned_rows, start=start, end=end)
    return planned, absences, overtimes, excused, reconciled


def _get_team(db: Session, team_id: int) -> Team:
    team = db.get(Team, team_id)
    if team is None or team.deleted_at is not None:
        raise NotFound("Team not found")
    return team


def consolidate_team(db: Session, *, team_id: int, start: date, end: date) -> dict:
    team = _get_team(db, team_id)
    planned, absences, overtimes, excused, reconciled = _team_report(db, team_id=team_id, start=start, end=end)
    report = build_adherence_report(planned, absences, overtimes, excused, reconciled)

    planned_by_worker: dict[int, list[WorkerDay]] = defaultdict(list)
    for key in planned:
        planned_by_worker[key[0]].append(key)
    worker_ids = set(planned_by_worker) | {item.worker_id for item in absences} | {item.worker_id for item in overtimes}
    names = {
        worker.id: worker.full_name
        for worker in db.scalars(select(Worker).where(Worker.id.in_(worker_ids))).all()
    } if worker_ids else {}

    workers = []
    for worker_id in sorted(worker_ids):
        worker_report = build_adherence_report(
            planned_by_worker.get(worker_id, []),
            [item for item in absences if item.worker_id == worker_id],
            [item for item in overtimes if item.worker_id == worker_id],
            [item for item in excused if item[0] == worker_id],
            [item for item in reconciled if item[0] == worker_id],
        )
        payload = worker_report.to_dict()
        payload.pop("days")
        workers.append({"worker_id": worker_id, "worker_name": names.get(worker_id), **payload})

    return {
        "team_id": team.id,
        "team_name": team.name,
        **_range_payload(start, end),
        **report.to_dict(),
        "workers": workers,
    }


def team_adherence(db: Session, *, team_id: int, start: date, end: date) -> dict:
    team = _get_team(db, team_id)
    report = build_adherence_report(*_team_report(db, team_id=team_id, start=start, end=end))
    payload = report.to_dict()
    return {
        "team_id": team.id,
        "team_name": team.name,
        **_range_payload(start, end),
        "planned_slots": payload["planned_slots"],
        "honored": payload["honored"],
        "unreconciled": payload["unreconciled"],
        "adherence_percent": payload["adherence_percent"],
        "days": payload["days"],
    }
