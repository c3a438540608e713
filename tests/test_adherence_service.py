from __future__ import annotations

import unittest
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from types import SimpleNamespace
from unittest.mock import MagicMock, patch

from app.errors import NotFound
from app.models import AbsenceStatus, DecisionStatus, Team
from app.services.adherence import (
    AbsenceFact,
    OvertimeFact,
    build_adherence_report,
    compute_adherence_percent,
    team_adherence,
)

DAY = date(2026, 3, 2)


def _planned(workers: int, days: int) -> list[tuple[int, date]]:
    return [(worker_id, DAY + timedelta(days=offset)) for worker_id in range(1, workers + 1) for offset in range(days)]


class AdherenceTests(unittest.TestCase):
    def test_percent_from_planned_and_honored(self) -> None:
        self.assertEqual(compute_adherence_percent(10, 7), 70.0)
        self.assertEqual(compute_adherence_percent(3, 2), 66.67)

    def test_zero_planned_is_zero_percent(self) -> None:
        self.assertEqual(compute_adherence_percent(0, 0), 0.0)
        self.assertEqual(build_adherence_report([], [], []).adherence_percent, 0.0)

    def test_justified_absences_still_count_against_adherence(self) -> None:
        planned = _planned(2, 5)
        absences = [
            AbsenceFact(worker_id=1, day_date=DAY, status=AbsenceStatus.JUSTIFIED),
            AbsenceFact(worker_id=1, day_date=DAY + timedelta(days=1), status=AbsenceStatus.JUSTIFIED),
            AbsenceFact(worker_id=2, day_date=DAY, status=AbsenceStatus.UNJUSTIFIED),
        ]

        report = build_adherence_report(planned, absences, [], reconciled=planned)

        self.assertEqual(report.planned_slots, 10)
        self.assertEqual(report.honored, 7)
        self.assertEqual(report.adherence_percent, 70.0)
        payload = report.to_dict()
        self.assertEqual(payload["absences"]["JUSTIFIED"], 2)
        self.assertEqual(payload["absences"]["UNJUSTIFIED"], 1)
        self.assertEqual(payload["absences"]["PENDING"], 0)

    def test_superseded_absences_are_ignored(self) -> None:
        report = build_adherence_report(
            _planned(1, 2),
            [AbsenceFact(worker_id=1, day_date=DAY, status=AbsenceStatus.SUPERSEDED)],
            [],
            reconciled=_planned(1, 2),
        )

        self.assertEqual(report.honored, 2)
        self.assertEqual(report.to_dict()["absences"]["SUPERSEDED"], 0)

    def test_excused_team_day_is_not_honored_and_not_double_counted(self) -> None:
        planned = _planned(2, 1)
        absences = [AbsenceFact(worker_id=1, day_date=DAY, status=AbsenceStatus.JUSTIFIED)]

        report = build_adherence_report(planned, absences, [], excused=planned, reconciled=planned)

        self.assertEqual(report.honored, 0)
        self.assertEqual(report.excused, 2)

    def test_approved_overtime_hours_are_summed(self) -> None:
        overtimes = [
            OvertimeFact(worker_id=1, day_date=DAY, status=DecisionStatus.APPROVED, diff_hours=Decimal("1.25")),
            OvertimeFact(worker_id=2, day_date=DAY, status=DecisionStatus.PENDING, diff_hours=Decimal("2.00")),
            OvertimeFact(worker_id=1, day_date=DAY + timedelta(days=1), status=DecisionStatus.APPROVED, diff_hours=Decimal("0.50")),
        ]

        report = build_adherence_report(_planned(2, 2), [], overtimes, reconciled=_planned(2, 2))

        self.assertEqual(report.overtime_events, 3)
        self.assertEqual(report.overtime_hours_approved, Decimal("1.75"))
        self.assertEqual([item.overtime_events for item in report.days], [2, 1])

    def test_daily_breakdown_is_sorted_by_day(self) -> None:
        absences = [AbsenceFact(worker_id=1, day_date=DAY + timedelta(days=1), status=AbsenceStatus.PENDING)]

        report = build_adherence_report(_planned(2, 2), absences, [], reconciled=_planned(2, 2))
        days = report.to_dict()["days"]

        self.assertEqual([item["day"] for item in days], ["2026-03-02", "2026-03-03"])
        self.assertEqual(days[0]["adherence_percent"], 100.0)
        self.assertEqual(days[1]["adherence_percent"], 50.0)

    def test_unreconciled_days_are_not_counted_as_honored(self) -> None:
        planned = _planned(1, 10)

        nothing_reconciled = build_adherence_report(planned, [], [])
        partly_reconciled = build_adherence_report(
            planned,
            [AbsenceFact(worker_id=1, day_date=DAY, status=AbsenceStatus.PENDING)],
            [],
            reconciled=planned[:4],
        )

        self.assertEqual(nothing_reconciled.planned_slots, 0)
        self.assertEqual(nothing_reconciled.honored, 0)
        self.assertEqual(nothing_reconciled.unreconciled, 10)
        self.assertEqual(nothing_reconciled.adherence_percent, 0.0)
        self.assertEqual(partly_reconciled.planned_slots, 4)
        self.assertEqual(partly_reconciled.honored, 3)
        self.assertEqual(partly_reconciled.unreconciled, 6)
        self.assertEqual(partly_reconciled.adherence_percent, 75.0)
        last_day = partly_reconciled.to_dict()["days"][-1]
        self.assertEqual((last_day["planned_slots"], last_day["unreconciled"]), (0, 1))

    def test_superseded_overtime_is_not_an_event(self) -> None:
        overtimes = [
            OvertimeFact(worker_id=1, day_date=DAY, status=DecisionStatus.SUPERSEDED, diff_hours=Decimal("2.00")),
        ]

        report = build_adherence_report(_planned(1, 1), [], overtimes, reconciled=_planned(1, 1))

        self.assertEqual(report.overtime_events, 0)
        self.assertEqual(report.honored, 1)

    @patch("app.services.adherence._overtime_facts", return_value=[])
    @patch("app.services.adherence._absence_facts", return_value=[])
    @patch("app.services.adherence._excused_team_days", return_value=set())
    @patch("app.services.adherence._planned_rows")
    @patch("app.services.adherence.SqlReconciliationStore")
    def test_team_adherence_measures_only_reconciled_team_days(
        self,
        mock_store_cls,
        mock_planned_rows,
        _mock_excused,
        _mock_absences,
        _mock_overtimes,
    ) -> None:
        db = MagicMock()
        db.get.return_value = Team(id=5, name="Equipe 5", deleted_at=None)
        mock_planned_rows.return_value = [
            SimpleNamespace(worker_id=worker_id, day_date=DAY + timedelta(days=offset), team_id=5)
            for worker_id in (1, 2)
            for offset in range(3)
        ]
        mock_store_cls.return_value.reconciled_pairs.return_value = {(5, DAY)}

        payload = team_adherence(db, team_id=5, start=DAY, end=DAY + timedelta(days=2))

        mock_store_cls.assert_called_once_with(db)
        self.assertEqual(payload["planned_slots"], 2)
        self.assertEqual(payload["honored"], 2)
        self.assertEqual(payload["unreconciled"], 4)
        self.assertEqual(payload["adherence_percent"], 100.0)

    def test_deleted_team_is_not_found(self) -> None:
        db = MagicMock()
        db.get.return_value = Team(id=5, name="Equipe 5", deleted_at=datetime(2026, 3, 1, tzinfo=timezone.utc))

        with self.assertRaises(NotFound):
            team_adherence(db, team_id=5, start=DAY, end=DAY)


if __name__ == "__main__":
    unittest.main()
