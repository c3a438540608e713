from __future__ import annotations

import enum
from collections import defaultdict
from dataclasses import dataclass, replace
from datetime import date, datetime, timedelta, timezone, tzinfo

from app.models import AbsenceReason, WorkerStatus
from app.services.reconciliation_port import ActualShift, PlannedSlot, ScheduledWorker


class OutcomeKind(str, enum.Enum):
    HONORED = "HONORED"
    EARLY_CLOSE = "EARLY_CLOSE"
    OVERTIME = "OVERTIME"
    NO_SHOW = "NO_SHOW"
    EXCUSED = "EXCUSED"
    TEAM_MISMATCH = "TEAM_MISMATCH"
    DAY_OFF_WORKED = "DAY_OFF_WORKED"
    UNSCHEDULED_WORK = "UNSCHEDULED_WORK"


HONORING_KINDS = frozenset({OutcomeKind.HONORED, OutcomeKind.EARLY_CLOSE, OutcomeKind.OVERTIME})

EXEMPT_WORKER_STATUSES = frozenset(status for status in WorkerStatus if status != WorkerStatus.ACTIVE)


@dataclass(frozen=True, slots=True)
class MatchPolicy:
    margin_minutes: int = 30
    overtime_threshold_minutes: int = 15
    forced: bool = False
    tz: tzinfo = timezone.utc

    def as_forced(self) -> MatchPolicy:
        return replace(self, forced=True)


@dataclass(frozen=True, slots=True)
class WorkerOutcome:
    worker_id: int
    team_id: int
    day_date: date
    kind: OutcomeKind
    slot_id: int | None = None
    shift_id: int | None = None
    planned_minutes: int = 0
    actual_minutes: int = 0
    reason: AbsenceReason | None = None
    actual_team_id: int | None = None

    @property
    def honors_slot(self) -> bool:
        return self.kind in HONORING_KINDS

    @property
    def shortfall_minutes(self) -> int:
        if self.kind != OutcomeKind.EARLY_CLOSE:
            return 0
        return max(0, self.planned_minutes - self.actual_minutes)


def shift_minutes(opened_at: datetime, closed_at: datetime | None) -> int | None:
    """Whole minutes between open and close; None while the shift is still open."""
    if closed_at is None:
        return None
    return int((closed_at - opened_at).total_seconds() // 60)


def planned_start_at(slot: PlannedSlot, tz: tzinfo, worker: ScheduledWorker | None = None) -> datetime | None:
    """Local planned start as an aware datetime; the worker's own slot wins over the team reference."""
    planned_start = slot.planned_start
    if worker is not None and worker.planned_start is not None:
        planned_start = worker.planned_start
    if planned_start is None:
        return None
    return datetime.combine(slot.day_date, planned_start, tzinfo=tz)


def planned_minutes_for(slot: PlannedSlot, worker: ScheduledWorker) -> int:
    minutes = worker.planned_minutes if worker.planned_minutes is not None else slot.planned_minutes
    return max(0, minutes)


def latest_start_at(slot: PlannedSlot, tz: tzinfo) -> datetime | None:
    """Latest start among on-duty workers; the whole slot is judged only after it."""
    starts = [
        start_at
        for start_at in (planned_start_at(slot, tz, worker) for worker in slot.on_duty_workers)
        if start_at is not None
    ]
    if not starts:
        return planned_start_at(slot, tz)
    return max(starts)


def within_tolerance(opened_at: datetime, planned_start: datetime, margin_minutes: int) -> bool:
    margin = timedelta(minutes=max(0, margin_minutes))
    return planned_start - margin <= opened_at <= planned_start + margin


def _group_by_worker(shifts: list[ActualShift]) -> dict[int, list[ActualShift]]:
    grouped: dict[int, list[ActualShift]] = defaultdict(list)
    for shift in sorted(shifts, key=lambda item: (item.opened_at, item.shift_id)):
        grouped[shift.worker_id].append(shift)
    return grouped


def _pick_matching_shift(
    team_shifts: list[ActualShift],
    *,
    start_at: datetime | None,
    policy: MatchPolicy,
) -> ActualShift | None:
    if not team_shifts:
        return None
    if policy.forced or start_at is None:
        return team_shifts[0]
    for shift in team_shifts:
        if within_tolerance(shift.opened_at, start_at, policy.margin_minutes):
            return shift
    return None


def _classify_duration(
    base: WorkerOutcome,
    shift: ActualShift,
    *,
    planned_minutes: int,
    policy: MatchPolicy,
) -> WorkerOutcome:
    actual = shift_minutes(shift.opened_at, shift.closed_at)
    if actual is None:
        # Still open: presence is established, duration is judged after close.
        return replace(base, kind=OutcomeKind.HONORED, shift_id=shift.shift_id)

    if actual <= 0:
        return replace(base, kind=OutcomeKind.EARLY_CLOSE, shift_id=shift.shift_id, actual_minutes=0)
    if actual < planned_minutes:
        return replace(base, kind=OutcomeKind.EARLY_CLOSE, shift_id=shift.shift_id, actual_minutes=actual)
    if actual - planned_minutes > max(0, policy.overtime_threshold_minutes):
        return replace(base, kind=OutcomeKind.OVERTIME, shift_id=shift.shift_id, actual_minutes=actual)
    return replace(base, kind=OutcomeKind.HONORED, shift_id=shift.shift_id, actual_minutes=actual)


def _evaluate_on_duty(
    slot: PlannedSlot,
    worker: ScheduledWorker,
    worker_shifts: list[ActualShift],
    *,
    policy: MatchPolicy,
) -> WorkerOutcome:
    base = WorkerOutcome(
        worker_id=worker.worker_id,
        team_id=slot.team_id,
        day_date=slot.day_date,
        kind=OutcomeKind.NO_SHOW,
        slot_id=worker.slot_id,
        planned_minutes=planned_minutes_for(slot, worker),
    )
    if slot.team_excused or worker.status in EXEMPT_WORKER_STATUSES:
        return replace(base, kind=OutcomeKind.EXCUSED)

    team_shifts = [item for item in worker_shifts if item.team_id == slot.team_id]
    matched = _pick_matching_shift(team_shifts, start_at=planned_start_at(slot, policy.tz, worker), policy=policy)
    if matched is not None:
        return _classify_duration(base, matched, planned_minutes=base.planned_minutes, policy=policy)

    other_team_shifts = [item for item in worker_shifts if item.team_id != slot.team_id]
    if other_team_shifts:
        return replace(
            base,
            kind=OutcomeKind.TEAM_MISMATCH,
            shift_id=other_team_shifts[0].shift_id,
            actual_team_id=other_team_shifts[0].team_id,
        )

    reason = AbsenceReason.SHIFT_OUTSIDE_WINDOW if team_shifts else AbsenceReason.NO_SHIFT_OPENED
    return replace(base, reason=reason)


def _evaluate_day_off(
    slot: PlannedSlot,
    worker: ScheduledWorker,
    worker_shifts: list[ActualShift],
) -> WorkerOutcome | None:
    if not worker_shifts:
        return None
    team_shifts = [item for item in worker_shifts if item.team_id == slot.team_id]
    shift = (team_shifts or worker_shifts)[0]
    actual = shift_minutes(shift.opened_at, shift.closed_at)
    if actual is None or actual <= 0:
        return None
    return WorkerOutcome(
        worker_id=worker.worker_id,
        team_id=slot.team_id,
        day_date=slot.day_date,
        kind=OutcomeKind.DAY_OFF_WORKED,
        slot_id=worker.slot_id,
        shift_id=shift.shift_id,
        planned_minutes=0,
        actual_minutes=actual,
        actual_team_id=shift.team_id,
    )


def match_slot(
    slot: PlannedSlot,
    shifts: list[ActualShift],
    policy: MatchPolicy,
) -> list[WorkerOutcome]:
    """Classify every worker the slot lists against the day's actual shifts.

    ``shifts`` may contain other teams' records for the same day; they are
    used only to tell a team mismatch apart from a no-show and to detect work
    on a day off.
    """
    shifts_by_worker = _group_by_worker([item for item in shifts if item.day_date == slot.day_date])

    outcomes: list[WorkerOutcome] = []
    for worker in slot.workers:
        worker_shifts = shifts_by_worker.get(worker.worker_id, [])
        if worker.on_duty:
            outcomes.append(_evaluate_on_duty(slot, worker, worker_shifts, policy=policy))
            continue
        day_off_outcome = _evaluate_day_off(slot, worker, worker_shifts)
        if day_off_outcome is not None:
            outcomes.append(day_off_outcome)
    return outcomes


def match_unscheduled(
    *,
    team_id: int,
    day: date,
    shifts: list[ActualShift],
    scheduled_worker_ids: set[int],
) -> list[WorkerOutcome]:
    """Closed shifts on ``team_id`` by workers with no published slot anywhere that day."""
    team_shifts = [
        item
        for item in shifts
        if item.team_id == team_id and item.day_date == day and item.worker_id not in scheduled_worker_ids
    ]
    outcomes: list[WorkerOutcome] = []
    for worker_id, worker_shifts in sorted(_group_by_worker(team_shifts).items()):
        closed_minutes = [
            minutes
            for minutes in (shift_minutes(item.opened_at, item.closed_at) for item in worker_shifts)
            if minutes is not None and minutes > 0
        ]
        if not closed_minutes:
            continue
        outcomes.append(
            WorkerOutcome(
                worker_id=worker_id,
                team_id=team_id,
                day_date=day,
                kind=OutcomeKind.UNSCHEDULED_WORK,
                shift_id=worker_shifts[0].shift_id,
                planned_minutes=0,
                actual_minutes=sum(closed_minutes),
            )
        )
    return outcomes
