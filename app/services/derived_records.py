from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from datetime import datetime, timezone

from app.actors import Actor
from app.models import AbsenceStatus, DecisionStatus, OvertimeKind
from app.services.reconciliation_errors import WriteConflict
from app.services.reconciliation_port import (
    AbsenceSnapshot,
    OvertimeSnapshot,
    OvertimeValues,
    ReconciliationStore,
)
from app.services.shift_matching import OutcomeKind, WorkerOutcome

logger = logging.getLogger("app.reconciliation")

OVERTIME_KIND_BY_OUTCOME = {
    OutcomeKind.OVERTIME: OvertimeKind.EXCESS_HOURS,
    OutcomeKind.DAY_OFF_WORKED: OvertimeKind.DAY_OFF_WORKED,
    OutcomeKind.UNSCHEDULED_WORK: OvertimeKind.UNSCHEDULED_WORK,
}

# Outcomes proving the worker was present; a pending absence for the day is stale.
ABSENCE_CLEARING_KINDS = frozenset(
    {
        OutcomeKind.HONORED,
        OutcomeKind.EARLY_CLOSE,
        OutcomeKind.OVERTIME,
        OutcomeKind.EXCUSED,
        OutcomeKind.TEAM_MISMATCH,
    }
)


class WriteAction(str, enum.Enum):
    CREATED = "CREATED"
    UPDATED = "UPDATED"
    UNCHANGED = "UNCHANGED"
    SUPERSEDED = "SUPERSEDED"
    REACTIVATED = "REACTIVATED"
    SKIPPED = "SKIPPED"


@dataclass(frozen=True, slots=True)
class WriteResult:
    action: WriteAction
    entity: str
    entity_id: int | None = None


def minutes_to_hours(minutes: int) -> float:
    return round(minutes / 60, 2)


def _absence_result(action: WriteAction, snapshot: AbsenceSnapshot | None) -> WriteResult:
    return WriteResult(action=action, entity="absence", entity_id=snapshot.absence_id if snapshot else None)


def _overtime_result(action: WriteAction, snapshot: OvertimeSnapshot | None) -> WriteResult:
    return WriteResult(action=action, entity="overtime", entity_id=snapshot.overtime_id if snapshot else None)


def _write_absence(store: ReconciliationStore, outcome: WorkerOutcome, actor: Actor) -> WriteResult:
    upserted = store.upsert_absence(
        worker_id=outcome.worker_id,
        day=outcome.day_date,
        team_id=outcome.team_id,
        slot_id=outcome.slot_id,
        reason=outcome.reason,
        actor=actor,
    )
    snapshot = upserted.snapshot
    if upserted.created:
        return _absence_result(WriteAction.CREATED, snapshot)

    if snapshot.status == AbsenceStatus.SUPERSEDED:
        store.update_absence(
            snapshot.absence_id,
            status=AbsenceStatus.PENDING,
            reason=outcome.reason,
            superseded_at=None,
            actor=actor,
        )
        return _absence_result(WriteAction.REACTIVATED, snapshot)

    if snapshot.status == AbsenceStatus.PENDING and snapshot.reason != outcome.reason:
        store.update_absence(
            snapshot.absence_id,
            status=AbsenceStatus.PENDING,
            reason=outcome.reason,
            superseded_at=None,
            actor=actor,
        )
        return _absence_result(WriteAction.UPDATED, snapshot)
    return _absence_result(WriteAction.UNCHANGED, snapshot)


def _clear_stale_absence(
    store: ReconciliationStore,
    outcome: WorkerOutcome,
    actor: Actor,
    now: datetime,
) -> WriteResult | None:
    existing = store.find_absence(outcome.worker_id, outcome.day_date)
    if existing is None or existing.status == AbsenceStatus.SUPERSEDED:
        return None
    if existing.status != AbsenceStatus.PENDING:
        logger.warning(
            "absence_left_in_review",
            extra={
                "absence_id": existing.absence_id,
                "worker_id": outcome.worker_id,
                "day": outcome.day_date,
                "status": existing.status.value,
                "outcome": outcome.kind.value,
            },
        )
        return _absence_result(WriteAction.SKIPPED, existing)

    store.update_absence(
        existing.absence_id,
        status=AbsenceStatus.SUPERSEDED,
        reason=existing.reason,
        superseded_at=now,
        actor=actor,
    )
    return _absence_result(WriteAction.SUPERSEDED, existing)


def _write_overtime(store: ReconciliationStore, outcome: WorkerOutcome, actor: Actor) -> WriteResult:
    values = OvertimeValues(
        team_id=outcome.team_id,
        kind=OVERTIME_KIND_BY_OUTCOME[outcome.kind],
        planned_minutes=outcome.planned_minutes,
        actual_minutes=outcome.actual_minutes,
        actual_shift_id=outcome.shift_id,
    )
    upserted = store.upsert_overtime(worker_id=outcome.worker_id, day=outcome.day_date, values=values, actor=actor)
    snapshot = upserted.snapshot
    if upserted.created:
        return _overtime_result(WriteAction.CREATED, snapshot)
    if snapshot.status == DecisionStatus.SUPERSEDED:
        store.update_overtime(snapshot.overtime_id, values=values, actor=actor)
        return _overtime_result(WriteAction.REACTIVATED, snapshot)
    if snapshot.status != DecisionStatus.PENDING:
        return _overtime_result(WriteAction.UNCHANGED, snapshot)

    unchanged = (
        snapshot.kind == values.kind
        and snapshot.planned_minutes == values.planned_minutes
        and snapshot.actual_minutes == values.actual_minutes
    )
    if unchanged:
        return _overtime_result(WriteAction.UNCHANGED, snapshot)
    store.update_overtime(snapshot.overtime_id, values=values, actor=actor)
    return _overtime_result(WriteAction.UPDATED, snapshot)


def _clear_stale_overtime(
    store: ReconciliationStore,
    outcome: WorkerOutcome,
    actor: Actor,
    now: datetime,
) -> WriteResult | None:
    existing = store.find_overtime(outcome.worker_id, outcome.day_date)
    if existing is None or existing.status == DecisionStatus.SUPERSEDED:
        return None
    if existing.status != DecisionStatus.PENDING:
        logger.warning(
            "overtime_left_decided",
            extra={
                "overtime_id": existing.overtime_id,
                "worker_id": outcome.worker_id,
                "day": outcome.day_date,
                "status": existing.status.value,
                "outcome": outcome.kind.value,
            },
        )
        return _overtime_result(WriteAction.SKIPPED, existing)

    store.supersede_overtime(existing.overtime_id, superseded_at=now, actor=actor)
    return _overtime_result(WriteAction.SUPERSEDED, existing)


def _write_divergence(store: ReconciliationStore, outcome: WorkerOutcome, actor: Actor) -> WriteResult:
    created = store.upsert_divergence(
        worker_id=outcome.worker_id,
        day=outcome.day_date,
        planned_team_id=outcome.team_id,
        actual_team_id=outcome.actual_team_id,
        actor=actor,
    )
    return WriteResult(action=WriteAction.CREATED if created else WriteAction.UNCHANGED, entity="divergence")


def apply_outcome(
    store: ReconciliationStore,
    outcome: WorkerOutcome,
    actor: Actor,
    *,
    now: datetime | None = None,
) -> list[WriteResult]:
    """Persist the derived records implied by one worker's outcome.

    Safe to repeat: a second call with the same outcome yields only
    UNCHANGED or SKIPPED results and leaves the store as it was. A worker-day
    keeps at most one live record: an outcome without overtime supersedes a
    pending overtime, and a presence outcome supersedes a pending absence.
    """
    now = now or datetime.now(timezone.utc)
    results: list[WriteResult] = []
    try:
        if outcome.kind == OutcomeKind.NO_SHOW:
            results.append(_write_absence(store, outcome, actor))
        elif outcome.kind in ABSENCE_CLEARING_KINDS:
            cleared = _clear_stale_absence(store, outcome, actor, now)
            if cleared is not None:
                results.append(cleared)

        if outcome.kind in OVERTIME_KIND_BY_OUTCOME:
            results.append(_write_overtime(store, outcome, actor))
        else:
            stale = _clear_stale_overtime(store, outcome, actor, now)
            if stale is not None:
                results.append(stale)

        if outcome.kind == OutcomeKind.TEAM_MISMATCH:
            results.append(_write_divergence(store, outcome, actor))
    except WriteConflict:
        logger.info(
            "derived_record_write_conflict",
            extra={"worker_id": outcome.worker_id, "day": outcome.day_date, "outcome": outcome.kind.value},
        )
        results.append(WriteResult(action=WriteAction.UNCHANGED, entity="conflict"))
    return results
