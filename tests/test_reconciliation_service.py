from __future__ import annotations

import asyncio
import unittest
from dataclasses import replace
from datetime import date, datetime, time, timedelta, timezone

from _memory_store import InMemoryReconciliationStore

from app.actors import Actor
from app.models import AbsenceStatus, DecisionStatus, ReconciliationMode, SlotState
from app.services.reconciliation import (
    ReconciliationOrchestrator,
    UnitState,
    scheduled_run_due,
)
from app.services.reconciliation_errors import PartialBatchFailure, ValidationError
from app.services.reconciliation_port import ActualShift, PlannedSlot, ScheduledWorker
from app.services.shift_matching import MatchPolicy

DAY = date(2026, 3, 10)


def _slot(team_id: int, day: date, *worker_ids: int) -> PlannedSlot:
    return PlannedSlot(
        team_id=team_id,
        day_date=day,
        planned_start=time(7, 0),
        planned_minutes=480,
        workers=tuple(ScheduledWorker(worker_id=item, state=SlotState.WORK, slot_id=item) for item in worker_ids),
    )


def _shift(shift_id: int, team_id: int, worker_id: int, day: date, *, opened: time = time(7, 5)) -> ActualShift:
    opened_at = datetime.combine(day, opened, tzinfo=timezone.utc)
    return ActualShift(
        shift_id=shift_id,
        team_id=team_id,
        worker_id=worker_id,
        day_date=day,
        opened_at=opened_at,
        closed_at=opened_at + timedelta(minutes=480),
    )


def _orchestrator(store: InMemoryReconciliationStore, *, now: datetime | None = None) -> ReconciliationOrchestrator:
    clock_value = now or datetime(2026, 3, 11, 2, 0, tzinfo=timezone.utc)
    return ReconciliationOrchestrator(
        store.factory(),
        MatchPolicy(margin_minutes=30, overtime_threshold_minutes=15, tz=timezone.utc),
        max_workers=2,
        clock=lambda: clock_value,
    )


class ReconciliationOrchestratorTests(unittest.TestCase):
    def test_manual_run_is_idempotent(self) -> None:
        store = InMemoryReconciliationStore(slots=[_slot(1, DAY, 10, 11)], shifts=[_shift(1, 1, 10, DAY)])
        orchestrator = _orchestrator(store)

        first = asyncio.run(orchestrator.run_manual(day=DAY, team_id=1))
        second = asyncio.run(orchestrator.run_manual(day=DAY, team_id=1))

        self.assertTrue(first.success)
        self.assertEqual(first.unit_results[0].outcomes, {"HONORED": 1, "NO_SHOW": 1})
        self.assertEqual(first.unit_results[0].writes, {"CREATED": 1})
        self.assertEqual(second.unit_results[0].writes, {"UNCHANGED": 1})
        self.assertEqual(len(store.absences), 1)
        self.assertEqual(store.markers[(1, DAY)], ReconciliationMode.MANUAL)

    def test_late_shift_reverses_absence_on_rerun(self) -> None:
        store = InMemoryReconciliationStore(slots=[_slot(1, DAY, 10)])
        orchestrator = _orchestrator(store)
        asyncio.run(orchestrator.run_manual(day=DAY, team_id=1))
        self.assertEqual(store.find_absence(10, DAY).status, AbsenceStatus.PENDING)

        store.shifts.append(_shift(1, 1, 10, DAY, opened=time(7, 20)))
        batch = asyncio.run(orchestrator.run_manual(day=DAY, team_id=1))

        self.assertEqual(batch.unit_results[0].writes, {"SUPERSEDED": 1})
        self.assertEqual(store.find_absence(10, DAY).status, AbsenceStatus.SUPERSEDED)

    def test_failing_unit_does_not_stop_the_batch(self) -> None:
        store = InMemoryReconciliationStore(slots=[_slot(1, DAY, 10), _slot(2, DAY, 20), _slot(3, DAY, 30)])
        store.fail_fetch_for.add((2, DAY))
        orchestrator = _orchestrator(store)

        batch = asyncio.run(orchestrator.run_manual(day=DAY, all_teams=True))

        self.assertFalse(batch.success)
        self.assertEqual(batch.total_units, 3)
        self.assertEqual(batch.succeeded, 2)
        self.assertEqual(batch.failed, 1)
        failed = next(item for item in batch.unit_results if not item.succeeded)
        self.assertEqual(failed.unit.team_id, 2)
        self.assertEqual(failed.state, UnitState.FAILED)
        self.assertIn("schedule source unavailable", failed.error)
        self.assertNotIn((2, DAY), store.markers)
        with self.assertRaises(PartialBatchFailure) as ctx:
            batch.raise_for_partial_failure()
        self.assertEqual(ctx.exception.total_units, 3)

    def test_manual_without_team_requires_all_teams_flag(self) -> None:
        orchestrator = _orchestrator(InMemoryReconciliationStore())

        with self.assertRaises(ValidationError):
            asyncio.run(orchestrator.run_manual(day=DAY))

    def test_manual_all_teams_with_no_published_schedule_is_empty_success(self) -> None:
        batch = asyncio.run(_orchestrator(InMemoryReconciliationStore()).run_manual(day=DAY, all_teams=True))

        self.assertTrue(batch.success)
        self.assertEqual(batch.total_units, 0)

    def test_forced_run_processes_only_unreconciled_pairs(self) -> None:
        days = [DAY + timedelta(days=offset) for offset in range(5)]
        slots = [_slot(team_id, day, team_id * 100) for team_id in (1, 2, 3) for day in days]
        store = InMemoryReconciliationStore(slots=slots)
        pending = {(1, days[1]), (3, days[4])}
        for team_id in (1, 2, 3):
            for day in days:
                if (team_id, day) not in pending:
                    store.markers[(team_id, day)] = ReconciliationMode.SCHEDULED
        orchestrator = _orchestrator(store, now=datetime(2026, 3, 20, 12, 0, tzinfo=timezone.utc))

        batch = asyncio.run(orchestrator.run_forced(start=days[0], end=days[-1]))

        processed = {(item.unit.team_id, item.unit.day_date) for item in batch.unit_results}
        self.assertEqual(processed, pending)
        self.assertEqual(batch.total_units, 2)
        self.assertEqual(batch.team_ids, [1, 3])
        self.assertTrue(all(item.unit.mode == ReconciliationMode.FORCED for item in batch.unit_results))

    def test_forced_run_matches_regardless_of_offset(self) -> None:
        store = InMemoryReconciliationStore(
            slots=[_slot(1, DAY, 10)],
            shifts=[_shift(1, 1, 10, DAY, opened=time(11, 0))],
        )
        batch = asyncio.run(_orchestrator(store).run_forced(start=DAY, end=DAY))

        self.assertEqual(batch.unit_results[0].outcomes, {"HONORED": 1})
        self.assertEqual(store.absences, {})

    def test_forced_range_defaults_and_validation(self) -> None:
        orchestrator = _orchestrator(InMemoryReconciliationStore())

        start, end = orchestrator.resolve_forced_range()
        self.assertEqual(end, date(2026, 3, 11))
        self.assertEqual(start, date(2026, 2, 9))
        self.assertEqual(orchestrator.resolve_forced_range(history_days=3), (date(2026, 3, 8), date(2026, 3, 11)))
        with self.assertRaises(ValidationError):
            orchestrator.resolve_forced_range(start=date(2026, 3, 12), end=date(2026, 3, 11))
        with self.assertRaises(ValidationError):
            orchestrator.resolve_forced_range(start=date(2024, 1, 1), end=date(2026, 3, 11))

    def test_scheduled_units_wait_for_start_plus_margin(self) -> None:
        today = date(2026, 3, 11)
        store = InMemoryReconciliationStore(slots=[_slot(1, DAY, 10), _slot(1, today, 10)])
        orchestrator = _orchestrator(store)

        before = orchestrator.scheduled_units(datetime(2026, 3, 11, 7, 29, tzinfo=timezone.utc))
        at_margin = orchestrator.scheduled_units(datetime(2026, 3, 11, 7, 30, tzinfo=timezone.utc))

        self.assertEqual([(item.team_id, item.day_date) for item in before], [(1, DAY)])
        self.assertEqual([(item.team_id, item.day_date) for item in at_margin], [(1, DAY), (1, today)])
        self.assertTrue(all(item.mode == ReconciliationMode.SCHEDULED for item in at_margin))

    def test_scheduled_units_wait_for_latest_staggered_start(self) -> None:
        today = date(2026, 3, 11)
        afternoon = ScheduledWorker(worker_id=11, state=SlotState.WORK, slot_id=11, planned_start=time(13, 0))
        slot = _slot(1, today, 10)
        store = InMemoryReconciliationStore(slots=[replace(slot, workers=slot.workers + (afternoon,))])
        orchestrator = _orchestrator(store)

        morning_only = orchestrator.scheduled_units(datetime(2026, 3, 11, 7, 30, tzinfo=timezone.utc))
        everyone = orchestrator.scheduled_units(datetime(2026, 3, 11, 13, 30, tzinfo=timezone.utc))

        self.assertEqual(morning_only, [])
        self.assertEqual([(item.team_id, item.day_date) for item in everyone], [(1, today)])

    def test_corrected_shift_supersedes_pending_overtime(self) -> None:
        long_shift = ActualShift(
            shift_id=1,
            team_id=1,
            worker_id=10,
            day_date=DAY,
            opened_at=datetime(2026, 3, 10, 7, 0, tzinfo=timezone.utc),
            closed_at=datetime(2026, 3, 10, 17, 0, tzinfo=timezone.utc),
        )
        store = InMemoryReconciliationStore(slots=[_slot(1, DAY, 10)], shifts=[long_shift])
        orchestrator = _orchestrator(store)
        asyncio.run(orchestrator.run_manual(day=DAY, team_id=1))
        self.assertEqual(store.overtimes[(10, DAY)].status, DecisionStatus.PENDING)

        store.shifts = [
            replace(
                long_shift,
                opened_at=datetime(2026, 3, 10, 11, 0, tzinfo=timezone.utc),
                closed_at=datetime(2026, 3, 10, 21, 0, tzinfo=timezone.utc),
            )
        ]
        batch = asyncio.run(orchestrator.run_manual(day=DAY, team_id=1))

        self.assertEqual(batch.unit_results[0].outcomes, {"NO_SHOW": 1})
        self.assertEqual(batch.unit_results[0].writes, {"CREATED": 1, "SUPERSEDED": 1})
        self.assertEqual(store.find_absence(10, DAY).status, AbsenceStatus.PENDING)
        self.assertEqual(store.overtimes[(10, DAY)].status, DecisionStatus.SUPERSEDED)

    def test_stop_event_aborts_units_not_started(self) -> None:
        store = InMemoryReconciliationStore(slots=[_slot(1, DAY, 10), _slot(2, DAY, 20)])
        orchestrator = _orchestrator(store)

        async def _run():
            stop_event = asyncio.Event()
            stop_event.set()
            return await orchestrator.run_forced(start=DAY, end=DAY, stop_event=stop_event)

        batch = asyncio.run(_run())

        self.assertEqual(batch.failed, 2)
        self.assertEqual({item.error for item in batch.unit_results}, {"aborted"})
        self.assertEqual(store.absences, {})
        self.assertEqual(store.markers, {})

    def test_writes_carry_the_given_actor(self) -> None:
        store = InMemoryReconciliationStore(slots=[_slot(1, DAY, 10)])
        operator = Actor.operator("maria")

        asyncio.run(_orchestrator(store).run_manual(day=DAY, team_id=1, actor=operator))

        self.assertEqual(store.absences[(10, DAY)].updated_by, "operator:maria")

    def test_scheduled_run_due_once_per_local_day(self) -> None:
        evening = datetime(2026, 3, 10, 23, 5, tzinfo=timezone.utc)

        self.assertFalse(scheduled_run_due(evening.replace(hour=22), None, 23))
        self.assertTrue(scheduled_run_due(evening, None, 23))
        self.assertFalse(scheduled_run_due(evening, evening.date(), 23))
        self.assertTrue(scheduled_run_due(evening + timedelta(days=1), evening.date(), 23))


if __name__ == "__main__":
    unittest.main()
