from __future__ import annotations

import unittest
from dataclasses import replace
from datetime import date, datetime, timezone

from _memory_store import InMemoryReconciliationStore

from app.actors import SCHEDULER_ACTOR
from app.models import AbsenceReason, AbsenceStatus, DecisionStatus, OvertimeKind
from app.services.derived_records import WriteAction, apply_outcome, minutes_to_hours
from app.services.shift_matching import OutcomeKind, WorkerOutcome

DAY = date(2026, 3, 10)
NOW = datetime(2026, 3, 11, 2, 0, tzinfo=timezone.utc)


def _outcome(kind: OutcomeKind, **overrides) -> WorkerOutcome:
    values = {
        "worker_id": 1,
        "team_id": 5,
        "day_date": DAY,
        "kind": kind,
        "slot_id": 10,
        "planned_minutes": 480,
    }
    if kind == OutcomeKind.NO_SHOW:
        values["reason"] = AbsenceReason.NO_SHIFT_OPENED
    values.update(overrides)
    return WorkerOutcome(**values)


class DerivedRecordWriterTests(unittest.TestCase):
    def setUp(self) -> None:
        self.store = InMemoryReconciliationStore()

    def _apply(self, outcome: WorkerOutcome):
        return apply_outcome(self.store, outcome, SCHEDULER_ACTOR, now=NOW)

    def test_no_show_creates_single_absence_and_rerun_is_unchanged(self) -> None:
        first = self._apply(_outcome(OutcomeKind.NO_SHOW))
        second = self._apply(_outcome(OutcomeKind.NO_SHOW))

        self.assertEqual([item.action for item in first], [WriteAction.CREATED])
        self.assertEqual([item.action for item in second], [WriteAction.UNCHANGED])
        self.assertEqual(len(self.store.absences), 1)
        self.assertEqual(self.store.find_absence(1, DAY).status, AbsenceStatus.PENDING)

    def test_no_show_updates_reason_of_pending_absence(self) -> None:
        self._apply(_outcome(OutcomeKind.NO_SHOW))
        results = self._apply(_outcome(OutcomeKind.NO_SHOW, reason=AbsenceReason.SHIFT_OUTSIDE_WINDOW))

        self.assertEqual(results[0].action, WriteAction.UPDATED)
        self.assertEqual(self.store.find_absence(1, DAY).reason, AbsenceReason.SHIFT_OUTSIDE_WINDOW)

    def test_late_shift_supersedes_pending_absence(self) -> None:
        self._apply(_outcome(OutcomeKind.NO_SHOW))
        results = self._apply(_outcome(OutcomeKind.HONORED, shift_id=3, actual_minutes=480))

        self.assertEqual(results[0].action, WriteAction.SUPERSEDED)
        row = self.store.absences[(1, DAY)]
        self.assertEqual(row.snapshot.status, AbsenceStatus.SUPERSEDED)
        self.assertEqual(row.superseded_at, NOW)
        self.assertEqual(len(self.store.absences), 1)

    def test_superseded_absence_is_reactivated_when_shift_disappears(self) -> None:
        self._apply(_outcome(OutcomeKind.NO_SHOW))
        self._apply(_outcome(OutcomeKind.HONORED))
        results = self._apply(_outcome(OutcomeKind.NO_SHOW))

        self.assertEqual(results[0].action, WriteAction.REACTIVATED)
        row = self.store.absences[(1, DAY)]
        self.assertEqual(row.snapshot.status, AbsenceStatus.PENDING)
        self.assertIsNone(row.superseded_at)

    def test_absence_under_review_is_left_alone(self) -> None:
        self._apply(_outcome(OutcomeKind.NO_SHOW))
        self.store.set_absence_status(1, DAY, AbsenceStatus.UNDER_REVIEW)

        results = self._apply(_outcome(OutcomeKind.HONORED))

        self.assertEqual(results[0].action, WriteAction.SKIPPED)
        self.assertEqual(self.store.find_absence(1, DAY).status, AbsenceStatus.UNDER_REVIEW)

    def test_justified_absence_is_not_reactivated(self) -> None:
        self._apply(_outcome(OutcomeKind.NO_SHOW))
        self.store.set_absence_status(1, DAY, AbsenceStatus.JUSTIFIED)

        results = self._apply(_outcome(OutcomeKind.NO_SHOW))

        self.assertEqual(results[0].action, WriteAction.UNCHANGED)
        self.assertEqual(self.store.find_absence(1, DAY).status, AbsenceStatus.JUSTIFIED)

    def test_honored_without_absence_writes_nothing(self) -> None:
        self.assertEqual(self._apply(_outcome(OutcomeKind.HONORED)), [])
        self.assertEqual(self.store.absences, {})

    def test_overtime_is_created_pending_and_refreshed(self) -> None:
        first = self._apply(_outcome(OutcomeKind.OVERTIME, shift_id=3, actual_minutes=540))
        repeat = self._apply(_outcome(OutcomeKind.OVERTIME, shift_id=3, actual_minutes=540))
        refreshed = self._apply(_outcome(OutcomeKind.OVERTIME, shift_id=3, actual_minutes=560))

        self.assertEqual(first[0].action, WriteAction.CREATED)
        self.assertEqual(repeat[0].action, WriteAction.UNCHANGED)
        self.assertEqual(refreshed[0].action, WriteAction.UPDATED)
        snapshot = self.store.overtimes[(1, DAY)]
        self.assertEqual(snapshot.status, DecisionStatus.PENDING)
        self.assertEqual(snapshot.kind, OvertimeKind.EXCESS_HOURS)
        self.assertEqual(snapshot.actual_minutes, 560)

    def test_decided_overtime_is_never_touched(self) -> None:
        self._apply(_outcome(OutcomeKind.OVERTIME, actual_minutes=540))
        key = (1, DAY)
        self.store.overtimes[key] = replace(self.store.overtimes[key], status=DecisionStatus.APPROVED)

        results = self._apply(_outcome(OutcomeKind.OVERTIME, actual_minutes=600))

        self.assertEqual(results[0].action, WriteAction.UNCHANGED)
        self.assertEqual(self.store.overtimes[key].actual_minutes, 540)
        self.assertEqual(self.store.overtimes[key].status, DecisionStatus.APPROVED)

    def test_no_show_supersedes_pending_overtime(self) -> None:
        self._apply(_outcome(OutcomeKind.OVERTIME, shift_id=3, actual_minutes=600))

        results = self._apply(_outcome(OutcomeKind.NO_SHOW, reason=AbsenceReason.SHIFT_OUTSIDE_WINDOW))
        repeat = self._apply(_outcome(OutcomeKind.NO_SHOW, reason=AbsenceReason.SHIFT_OUTSIDE_WINDOW))

        self.assertEqual(
            [(item.entity, item.action) for item in results],
            [("absence", WriteAction.CREATED), ("overtime", WriteAction.SUPERSEDED)],
        )
        self.assertEqual([item.action for item in repeat], [WriteAction.UNCHANGED])
        overtime = self.store.overtimes[(1, DAY)]
        self.assertEqual(overtime.status, DecisionStatus.SUPERSEDED)
        self.assertEqual(self.store.overtime_superseded_at[overtime.overtime_id], NOW)
        self.assertEqual(self.store.find_absence(1, DAY).status, AbsenceStatus.PENDING)

    def test_honored_supersedes_pending_overtime_and_overtime_can_return(self) -> None:
        self._apply(_outcome(OutcomeKind.OVERTIME, shift_id=3, actual_minutes=600))

        superseded = self._apply(_outcome(OutcomeKind.HONORED, shift_id=3, actual_minutes=485))
        returned = self._apply(_outcome(OutcomeKind.OVERTIME, shift_id=3, actual_minutes=560))

        self.assertEqual([item.action for item in superseded], [WriteAction.SUPERSEDED])
        self.assertEqual([item.action for item in returned], [WriteAction.REACTIVATED])
        overtime = self.store.overtimes[(1, DAY)]
        self.assertEqual(overtime.status, DecisionStatus.PENDING)
        self.assertEqual(overtime.actual_minutes, 560)
        self.assertNotIn(overtime.overtime_id, self.store.overtime_superseded_at)

    def test_decided_overtime_survives_a_later_no_show(self) -> None:
        self._apply(_outcome(OutcomeKind.OVERTIME, actual_minutes=540))
        key = (1, DAY)
        self.store.overtimes[key] = replace(self.store.overtimes[key], status=DecisionStatus.REJECTED)

        results = self._apply(_outcome(OutcomeKind.NO_SHOW))

        self.assertEqual(
            [(item.entity, item.action) for item in results],
            [("absence", WriteAction.CREATED), ("overtime", WriteAction.SKIPPED)],
        )
        self.assertEqual(self.store.overtimes[key].status, DecisionStatus.REJECTED)

    def test_overtime_outcome_also_supersedes_pending_absence(self) -> None:
        self._apply(_outcome(OutcomeKind.NO_SHOW))
        results = self._apply(_outcome(OutcomeKind.OVERTIME, actual_minutes=540))

        self.assertEqual([item.action for item in results], [WriteAction.SUPERSEDED, WriteAction.CREATED])
        self.assertEqual([item.entity for item in results], ["absence", "overtime"])

    def test_day_off_worked_and_unscheduled_map_to_overtime_kinds(self) -> None:
        self._apply(_outcome(OutcomeKind.DAY_OFF_WORKED, planned_minutes=0, actual_minutes=300))
        self._apply(_outcome(OutcomeKind.UNSCHEDULED_WORK, worker_id=2, slot_id=None, planned_minutes=0, actual_minutes=90))

        self.assertEqual(self.store.overtimes[(1, DAY)].kind, OvertimeKind.DAY_OFF_WORKED)
        self.assertEqual(self.store.overtimes[(2, DAY)].kind, OvertimeKind.UNSCHEDULED_WORK)

    def test_team_mismatch_records_divergence_once(self) -> None:
        first = self._apply(_outcome(OutcomeKind.TEAM_MISMATCH, actual_team_id=6))
        second = self._apply(_outcome(OutcomeKind.TEAM_MISMATCH, actual_team_id=6))

        self.assertEqual(first[0].action, WriteAction.CREATED)
        self.assertEqual(second[0].action, WriteAction.UNCHANGED)
        self.assertEqual(self.store.divergences, {(1, DAY, 5, 6)})

    def test_minutes_to_hours_rounds_to_two_places(self) -> None:
        self.assertEqual(minutes_to_hours(480), 8.0)
        self.assertEqual(minutes_to_hours(437), 7.28)
        self.assertEqual(minutes_to_hours(-20), -0.33)


if __name__ == "__main__":
    unittest.main()
