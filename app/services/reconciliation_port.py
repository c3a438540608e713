from __future__ import annotations

from collections.abc import Callable
from contextlib import AbstractContextManager
from dataclasses import dataclass
from datetime import date, datetime, time
from typing import Protocol

from app.actors import Actor
from app.models import (
    AbsenceReason,
    AbsenceStatus,
    DecisionStatus,
    OvertimeKind,
    ReconciliationMode,
    SlotState,
    WorkerStatus,
)


@dataclass(frozen=True, slots=True)
class ScheduledWorker:
    worker_id: int
    state: SlotState
    status: WorkerStatus = WorkerStatus.ACTIVE
    slot_id: int | None = None
    planned_start: time | None = None
    planned_minutes: int | None = None

    @property
    def on_duty(self) -> bool:
        return self.state in (SlotState.WORK, SlotState.EXCEPTION)


@dataclass(frozen=True, slots=True)
class PlannedSlot:
    """One team's published expectation for one day.

    ``planned_start`` and ``planned_minutes`` are the team reference, used for
    workers whose own slot row leaves them empty.
    """

    team_id: int
    day_date: date
    planned_start: time | None
    planned_minutes: int
    workers: tuple[ScheduledWorker, ...] = ()
    team_excused: bool = False

    @property
    def on_duty_workers(self) -> tuple[ScheduledWorker, ...]:
        return tuple(item for item in self.workers if item.on_duty)


@dataclass(frozen=True, slots=True)
class ActualShift:
    shift_id: int
    team_id: int
    worker_id: int
    day_date: date
    opened_at: datetime
    closed_at: datetime | None = None


@dataclass(frozen=True, slots=True)
class AbsenceSnapshot:
    absence_id: int
    worker_id: int
    day_date: date
    status: AbsenceStatus
    reason: AbsenceReason


@dataclass(frozen=True, slots=True)
class OvertimeSnapshot:
    overtime_id: int
    worker_id: int
    day_date: date
    status: DecisionStatus
    kind: OvertimeKind
    planned_minutes: int
    actual_minutes: int


@dataclass(frozen=True, slots=True)
class OvertimeValues:
    team_id: int
    kind: OvertimeKind
    planned_minutes: int
    actual_minutes: int
    actual_shift_id: int | None = None

    @property
    def diff_minutes(self) -> int:
        return self.actual_minutes - self.planned_minutes


@dataclass(frozen=True, slots=True)
class UpsertOutcome:
    created: bool
    snapshot: AbsenceSnapshot | OvertimeSnapshot


class ReconciliationStore(Protocol):
    """Narrow persistence port used by the reconciliation core.

    ``upsert_*`` insert the row when its natural key is free and otherwise
    return the existing row untouched; callers decide what to update.
    ``update_overtime`` also returns a superseded row to PENDING.

    One instance is bound to one transaction; a unit either commits every
    write it made through the store or none of them.
    """

    def get_planned_slot(self, team_id: int, day: date) -> PlannedSlot | None: ...

    def get_actual_shifts(self, day: date) -> list[ActualShift]: ...

    def get_scheduled_worker_ids(self, day: date) -> set[int]: ...

    def find_absence(self, worker_id: int, day: date) -> AbsenceSnapshot | None: ...

    def upsert_absence(
        self,
        *,
        worker_id: int,
        day: date,
        team_id: int,
        slot_id: int | None,
        reason: AbsenceReason,
        actor: Actor,
    ) -> UpsertOutcome: ...

    def update_absence(
        self,
        absence_id: int,
        *,
        status: AbsenceStatus,
        reason: AbsenceReason,
        superseded_at: datetime | None,
        actor: Actor,
    ) -> None: ...

    def upsert_overtime(self, *, worker_id: int, day: date, values: OvertimeValues, actor: Actor) -> UpsertOutcome: ...

    def find_overtime(self, worker_id: int, day: date) -> OvertimeSnapshot | None: ...

    def update_overtime(self, overtime_id: int, *, values: OvertimeValues, actor: Actor) -> None: ...

    def supersede_overtime(self, overtime_id: int, *, superseded_at: datetime, actor: Actor) -> None: ...

    def upsert_divergence(
        self,
        *,
        worker_id: int,
        day: date,
        planned_team_id: int,
        actual_team_id: int,
        actor: Actor,
    ) -> bool: ...

    def mark_reconciled(self, team_id: int, day: date, mode: ReconciliationMode, actor: Actor) -> None: ...

    def teams_with_published_schedule(self, start: date, end: date) -> list[int]: ...

    def published_slot_days(self, start: date, end: date) -> set[tuple[int, date]]: ...

    def reconciled_pairs(self, start: date, end: date) -> set[tuple[int, date]]: ...


StoreFactory = Callable[[], AbstractContextManager[ReconciliationStore]]
