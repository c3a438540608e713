from __future__ import annotations

import unittest
from datetime import date

from sqlalchemy.exc import IntegrityError

from app.actors import Actor
from app.errors import ApiError, DuplicatePendingJustification, InvalidTransition, NotFound
from app.models import (
    Absence,
    AbsenceReason,
    AbsenceStatus,
    DecisionStatus,
    Justification,
    JustificationType,
    Overtime,
    OvertimeKind,
    Team,
    TeamJustification,
)
from app.services.justifications import (
    decide_justification,
    decide_team_justification,
    submit_justification,
    submit_team_justification,
)
from app.services.overtime import decide_overtime

DAY = date(2026, 3, 10)
SUPERVISOR = Actor.operator("supervisor-1")


class _FakeScalarResult:
    def __init__(self, items):
        self._items = list(items)

    def all(self):  # type: ignore[no-untyped-def]
        return list(self._items)


class _FakeSession:
    """Answers ``get`` from an identity map and ``scalar``/``scalars`` from queued results."""

    def __init__(self, *objects, scalar_results=(), scalars_results=(), commit_error: Exception | None = None):
        self.objects = {(type(item), item.id): item for item in objects}
        self.scalar_results = list(scalar_results)
        self.scalars_results = list(scalars_results)
        self.commit_error = commit_error
        self.added: list[object] = []
        self.commits = 0
        self.rollbacks = 0

    def get(self, model, object_id):  # type: ignore[no-untyped-def]
        return self.objects.get((model, object_id))

    def scalar(self, _statement):  # type: ignore[no-untyped-def]
        return self.scalar_results.pop(0) if self.scalar_results else None

    def scalars(self, _statement):  # type: ignore[no-untyped-def]
        return _FakeScalarResult(self.scalars_results.pop(0) if self.scalars_results else [])

    def add(self, item) -> None:  # type: ignore[no-untyped-def]
        self.added.append(item)

    def commit(self) -> None:
        if self.commit_error is not None:
            raise self.commit_error
        self.commits += 1

    def rollback(self) -> None:
        self.rollbacks += 1

    def refresh(self, _item) -> None:  # type: ignore[no-untyped-def]
        return None


def _absence(absence_id: int = 1, status: AbsenceStatus = AbsenceStatus.PENDING, *, team_id: int = 5) -> Absence:
    return Absence(
        id=absence_id,
        worker_id=absence_id * 10,
        day_date=DAY,
        team_id=team_id,
        reason=AbsenceReason.NO_SHIFT_OPENED,
        status=status,
        created_by="system:reconciliation-scheduler",
        updated_by="system:reconciliation-scheduler",
    )


def _type(type_id: int = 3, *, generates_absence: bool = True, is_active: bool = True) -> JustificationType:
    return JustificationType(id=type_id, name=f"type-{type_id}", generates_absence=generates_absence, is_active=is_active)


class JustificationServiceTests(unittest.TestCase):
    def test_submission_moves_absence_under_review(self) -> None:
        absence = _absence()
        db = _FakeSession(absence, _type())

        justification = submit_justification(
            db,  # type: ignore[arg-type]
            absence_id=1,
            type_id=3,
            reason="medical appointment",
            attachment_refs=["doc-1"],
            actor=SUPERVISOR,
        )

        self.assertEqual(justification.status, DecisionStatus.PENDING)
        self.assertEqual(justification.created_by, "operator:supervisor-1")
        self.assertEqual(absence.status, AbsenceStatus.UNDER_REVIEW)
        self.assertEqual(db.commits, 1)

    def test_second_pending_submission_is_rejected(self) -> None:
        absence = _absence(status=AbsenceStatus.UNDER_REVIEW)
        db = _FakeSession(absence, _type(), scalar_results=[99])

        with self.assertRaises(DuplicatePendingJustification) as ctx:
            submit_justification(
                db,  # type: ignore[arg-type]
                absence_id=1,
                type_id=3,
                reason=None,
                attachment_refs=[],
                actor=SUPERVISOR,
            )

        self.assertEqual(ctx.exception.status_code, 409)
        self.assertEqual(db.added, [])

    def test_lost_race_on_pending_index_maps_to_duplicate(self) -> None:
        db = _FakeSession(
            _absence(),
            _type(),
            commit_error=IntegrityError("insert", {}, Exception("uq_justifications_pending_absence")),
        )

        with self.assertRaises(DuplicatePendingJustification):
            submit_justification(
                db,  # type: ignore[arg-type]
                absence_id=1,
                type_id=3,
                reason=None,
                attachment_refs=[],
                actor=SUPERVISOR,
            )
        self.assertEqual(db.rollbacks, 1)

    def test_superseded_absence_cannot_be_justified(self) -> None:
        db = _FakeSession(_absence(status=AbsenceStatus.SUPERSEDED), _type())

        with self.assertRaises(InvalidTransition):
            submit_justification(
                db,  # type: ignore[arg-type]
                absence_id=1,
                type_id=3,
                reason=None,
                attachment_refs=[],
                actor=SUPERVISOR,
            )

    def test_inactive_type_and_missing_absence(self) -> None:
        db = _FakeSession(_absence(), _type(is_active=False))

        with self.assertRaises(ApiError) as ctx:
            submit_justification(
                db,  # type: ignore[arg-type]
                absence_id=1,
                type_id=3,
                reason=None,
                attachment_refs=[],
                actor=SUPERVISOR,
            )
        self.assertEqual(ctx.exception.status_code, 422)

        with self.assertRaises(NotFound):
            submit_justification(
                db,  # type: ignore[arg-type]
                absence_id=404,
                type_id=3,
                reason=None,
                attachment_refs=[],
                actor=SUPERVISOR,
            )

    def test_approval_propagates_to_absence(self) -> None:
        absence = _absence(status=AbsenceStatus.UNDER_REVIEW)
        justification = Justification(id=7, absence_id=1, type_id=3, status=DecisionStatus.PENDING, created_by="x")
        db = _FakeSession(absence, scalar_results=[justification])

        decided = decide_justification(db, justification_id=7, approve=True, actor=SUPERVISOR)  # type: ignore[arg-type]

        self.assertEqual(decided.status, DecisionStatus.APPROVED)
        self.assertEqual(decided.decided_by, "operator:supervisor-1")
        self.assertIsNotNone(decided.decided_at)
        self.assertEqual(absence.status, AbsenceStatus.JUSTIFIED)

    def test_rejection_marks_absence_unjustified(self) -> None:
        absence = _absence(status=AbsenceStatus.UNDER_REVIEW)
        justification = Justification(id=7, absence_id=1, type_id=3, status=DecisionStatus.PENDING, created_by="x")
        db = _FakeSession(absence, scalar_results=[justification])

        decide_justification(db, justification_id=7, approve=False, actor=SUPERVISOR)  # type: ignore[arg-type]

        self.assertEqual(justification.status, DecisionStatus.REJECTED)
        self.assertEqual(absence.status, AbsenceStatus.UNJUSTIFIED)

    def test_decided_justification_is_terminal(self) -> None:
        justification = Justification(id=7, absence_id=1, type_id=3, status=DecisionStatus.APPROVED, created_by="x")
        db = _FakeSession(_absence(status=AbsenceStatus.JUSTIFIED), scalar_results=[justification])

        with self.assertRaises(InvalidTransition) as ctx:
            decide_justification(db, justification_id=7, approve=False, actor=SUPERVISOR)  # type: ignore[arg-type]

        self.assertEqual(ctx.exception.code, "INVALID_TRANSITION")
        self.assertEqual(justification.status, DecisionStatus.APPROVED)
        self.assertEqual(db.commits, 0)


class TeamJustificationServiceTests(unittest.TestCase):
    def test_team_submission_requires_existing_team(self) -> None:
        db = _FakeSession(_type())

        with self.assertRaises(NotFound):
            submit_team_justification(
                db,  # type: ignore[arg-type]
                team_id=5,
                day=DAY,
                type_id=3,
                reason=None,
                attachment_refs=[],
                actor=SUPERVISOR,
            )

    def test_team_submission_creates_pending_record(self) -> None:
        db = _FakeSession(Team(id=5, name="Equipe 5"), _type())

        created = submit_team_justification(
            db,  # type: ignore[arg-type]
            team_id=5,
            day=DAY,
            type_id=3,
            reason="vehicle breakdown",
            attachment_refs=[],
            actor=SUPERVISOR,
        )

        self.assertEqual(created.status, DecisionStatus.PENDING)
        self.assertEqual(db.added, [created])

    def test_approving_excusing_type_justifies_open_absences(self) -> None:
        pending = _absence(1)
        under_review = _absence(2, AbsenceStatus.UNDER_REVIEW)
        individual = Justification(id=8, absence_id=2, type_id=3, status=DecisionStatus.PENDING, created_by="x")
        team_justification = TeamJustification(
            id=4,
            team_id=5,
            day_date=DAY,
            type_id=9,
            status=DecisionStatus.PENDING,
            created_by="x",
        )
        db = _FakeSession(
            _type(9, generates_absence=False),
            scalar_results=[team_justification],
            scalars_results=[[pending, under_review], [individual]],
        )

        decided, justified_ids = decide_team_justification(
            db,  # type: ignore[arg-type]
            team_justification_id=4,
            approve=True,
            actor=SUPERVISOR,
        )

        self.assertEqual(decided.status, DecisionStatus.APPROVED)
        self.assertEqual(justified_ids, [1, 2])
        self.assertEqual(pending.status, AbsenceStatus.JUSTIFIED)
        self.assertEqual(under_review.status, AbsenceStatus.JUSTIFIED)
        self.assertEqual(individual.status, DecisionStatus.APPROVED)

    def test_approving_absence_generating_type_leaves_absences(self) -> None:
        team_justification = TeamJustification(
            id=4,
            team_id=5,
            day_date=DAY,
            type_id=3,
            status=DecisionStatus.PENDING,
            created_by="x",
        )
        db = _FakeSession(_type(3, generates_absence=True), scalar_results=[team_justification])

        _decided, justified_ids = decide_team_justification(
            db,  # type: ignore[arg-type]
            team_justification_id=4,
            approve=True,
            actor=SUPERVISOR,
        )

        self.assertEqual(justified_ids, [])

    def test_rejecting_team_justification_touches_nothing(self) -> None:
        team_justification = TeamJustification(
            id=4,
            team_id=5,
            day_date=DAY,
            type_id=9,
            status=DecisionStatus.PENDING,
            created_by="x",
        )
        db = _FakeSession(_type(9, generates_absence=False), scalar_results=[team_justification])

        decided, justified_ids = decide_team_justification(
            db,  # type: ignore[arg-type]
            team_justification_id=4,
            approve=False,
            actor=SUPERVISOR,
        )

        self.assertEqual(decided.status, DecisionStatus.REJECTED)
        self.assertEqual(justified_ids, [])


class OvertimeDecisionTests(unittest.TestCase):
    def _overtime(self, status: DecisionStatus) -> Overtime:
        return Overtime(
            id=11,
            worker_id=10,
            day_date=DAY,
            team_id=5,
            kind=OvertimeKind.EXCESS_HOURS,
            status=status,
            created_by="system:reconciliation-scheduler",
            updated_by="system:reconciliation-scheduler",
        )

    def test_pending_overtime_is_approved_with_note(self) -> None:
        overtime = self._overtime(DecisionStatus.PENDING)
        db = _FakeSession(scalar_results=[overtime])

        decide_overtime(db, overtime_id=11, approve=True, note="ok", actor=SUPERVISOR)  # type: ignore[arg-type]

        self.assertEqual(overtime.status, DecisionStatus.APPROVED)
        self.assertEqual(overtime.decision_note, "ok")
        self.assertEqual(overtime.decided_by, "operator:supervisor-1")

    def test_decided_overtime_cannot_be_decided_again(self) -> None:
        db = _FakeSession(scalar_results=[self._overtime(DecisionStatus.REJECTED)])

        with self.assertRaises(InvalidTransition):
            decide_overtime(db, overtime_id=11, approve=True, note=None, actor=SUPERVISOR)  # type: ignore[arg-type]

    def test_missing_overtime_is_not_found(self) -> None:
        with self.assertRaises(NotFound):
            decide_overtime(_FakeSession(), overtime_id=11, approve=True, note=None, actor=SUPERVISOR)  # type: ignore[arg-type]


if __name__ == "__main__":
    unittest.main()
