from __future__ import annotations

import logging
from datetime import date, datetime, timezone

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.actors import Actor
from app.errors import InvalidTransition, NotFound
from app.models import Absence, AbsenceStatus, DecisionStatus, Overtime

logger = logging.getLogger("app.overtime")


def list_absences(
    db: Session,
    *,
    team_id: int | None = None,
    worker_id: int | None = None,
    status: AbsenceStatus | None = None,
    start: date | None = None,
    end: date | None = None,
    limit: int = 100,
    offset: int = 0,
) -> list[Absence]:
    stmt = select(Absence)
    if team_id is not None:
        stmt = stmt.where(Absence.team_id == team_id)
    if worker_id is not None:
        stmt = stmt.where(Absence.worker_id == worker_id)
    if status is not None:
        stmt = stmt.where(Absence.status == status)
    if start is not None:
        stmt = stmt.where(Absence.day_date >= start)
    if end is not None:
        stmt = stmt.where(Absence.day_date <= end)
    stmt = stmt.order_by(Absence.day_date.desc(), Absence.id.desc()).limit(limit).offset(offset)
    return list(db.scalars(stmt).all())


def list_overtimes(
    db: Session,
    *,
    team_id: int | None = None,
    worker_id: int | None = None,
    status: DecisionStatus | None = None,
    start: date | None = None,
    end: date | None = None,
    limit: int = 100,
    offset: int = 0,
) -> list[Overtime]:
    stmt = select(Overtime)
    if team_id is not None:
        stmt = stmt.where(Overtime.team_id == team_id)
    if worker_id is not None:
        stmt = stmt.where(Overtime.worker_id == worker_id)
    if status is not None:
        stmt = stmt.where(Overtime.status == status)
    if start is not None:
        stmt = stmt.where(Overtime.day_date >= start)
    if end is not None:
        stmt = stmt.where(Overtime.day_date <= end)
    stmt = stmt.order_by(Overtime.day_date.desc(), Overtime.id.desc()).limit(limit).offset(offset)
    return list(db.scalars(stmt).all())


def decide_overtime(
    db: Session,
    *,
    overtime_id: int,
    approve: bool,
    note: str | None,
    actor: Actor,
) -> Overtime:
    overtime = db.scalar(select(Overtime).where(Overtime.id == overtime_id).with_for_update())
    if overtime is None:
        raise NotFound("Overtime not found")
    if overtime.status != DecisionStatus.PENDING:
        raise InvalidTransition(f"Overtime already {overtime.status.value.lower()}")

    overtime.status = DecisionStatus.APPROVED if approve else DecisionStatus.REJECTED
    overtime.decided_at = datetime.now(timezone.utc)
    overtime.decided_by = actor.label
    overtime.decision_note = note
    overtime.updated_by = actor.label
    db.commit()
    db.refresh(overtime)
    logger.info(
        "overtime_decided",
        extra={"overtime_id": overtime.id, "status": overtime.status.value, "actor": actor.label},
    )
    return overtime
