from __future__ import annotations

import logging
from datetime import date, datetime, timezone

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.actors import Actor
from app.errors import ApiError, DuplicatePendingJustification, InvalidTransition, NotFound
from app.models import (
    Absence,
    AbsenceStatus,
    DecisionStatus,
    Justification,
    JustificationType,
    Team,
    TeamJustification,
)

logger = logging.getLogger("app.justifications")

OPEN_ABSENCE_STATUSES = (AbsenceStatus.PENDING, AbsenceStatus.UNDER_REVIEW)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _get_active_type(db: Session, type_id: int) -> JustificationType:
    justification_type = db.get(JustificationType, type_id)
    if justification_type is None:
        raise NotFound("Justification type not found")
    if not justification_type.is_active:
        raise ApiError(422, "VALIDATION_ERROR", "Justification type is inactive")
    return justification_type


def list_justification_types(db: Session, *, include_inactive: bool = False) -> list[JustificationType]:
    stmt = select(JustificationType).order_by(JustificationType.name.asc())
    if not include_inactive:
        stmt = stmt.where(JustificationType.is_active.is_(True))
    return list(db.scalars(stmt).all())


def create_justification_type(
    db: Session,
    *,
    name: str,
    description: str | None,
    generates_absence: bool,
) -> JustificationType:
    normalized = name.strip()
    if not normalized:
        raise ApiError(422, "VALIDATION_ERROR", "Name is required")
    existing = db.scalar(select(JustificationType).where(JustificationType.name == normalized))
    if existing is not None:
        raise ApiError(409, "DUPLICATE_JUSTIFICATION_TYPE", "Justification type already exists")

    justification_type = JustificationType(
        name=normalized,
        description=description,
        generates_absence=generates_absence,
        is_active=True,
    )
    db.add(justification_type)
    db.commit()
    db.refresh(justification_type)
    return justification_type


def submit_justification(
    db: Session,
    *,
    absence_id: int,
    type_id: int,
    reason: str | None,
    attachment_refs: list[str],
    actor: Actor,
) -> Justification:
    absence = db.get(Absence, absence_id)
    if absence is None:
        raise NotFound("Absence not found")
    if absence.status == AbsenceStatus.SUPERSEDED:
        raise InvalidTransition("Absence was superseded by a later reconciliation and cannot be justified")
    if absence.status == AbsenceStatus.JUSTIFIED:
        raise InvalidTransition("Absence is already justified")
    _get_active_type(db, type_id)

    pending = db.scalar(
        select(Justification.id).where(
            Justification.absence_id == absence_id,
            Justification.status == DecisionStatus.PENDING,
        )
    )
    if pending is not None:
        raise DuplicatePendingJustification()

    justification = Justification(
        absence_id=absence_id,
        type_id=type_id,
        reason=reason,
        attachment_refs=list(attachment_refs),
        status=DecisionStatus.PENDING,
        created_by=actor.label,
    )
    db.add(justification)
    absence.status = AbsenceStatus.UNDER_REVIEW
    absence.updated_by = actor.label
    try:
        db.commit()
    except IntegrityError as exc:
        # Partial unique index on pending justifications lost a race.
        db.rollback()
        raise DuplicatePendingJustification() from exc
    db.refresh(justification)
    logger.info(
        "justification_submitted",
        extra={"justification_id": justification.id, "absence_id": absence_id, "actor": actor.label},
    )
    return justification


def decide_justification(
    db: Session,
    *,
    justification_id: int,
    approve: bool,
    actor: Actor,
) -> Justification:
    justification = db.scalar(
        select(Justification).where(Justification.id == justification_id).with_for_update()
    )
    if justification is None:
        raise NotFound("Justification not found")
    if justification.status != DecisionStatus.PENDING:
        raise InvalidTransition(f"Justification already {justification.status.value.lower()}")

    now = _utcnow()
    justification.status = DecisionStatus.APPROVED if approve else DecisionStatus.REJECTED
    justification.decided_at = now
    justification.decided_by = actor.label

    absence = db.get(Absence, justification.absence_id)
    if absence is not None:
        absence.status = AbsenceStatus.JUSTIFIED if approve else AbsenceStatus.UNJUSTIFIED
        absence.updated_by = actor.label

    db.commit()
    db.refresh(justification)
    logger.info(
        "justification_decided",
        extra={
            "justification_id": justification.id,
            "absence_id": justification.absence_id,
            "status": justification.status.value,
            "actor": actor.label,
        },
    )
    return justification


def submit_team_justification(
    db: Session,
    *,
    team_id: int,
    day: date,
    type_id: int,
    reason: str | None,
    attachment_refs: list[str],
    actor: Actor,
) -> TeamJustification:
    team = db.get(Team, team_id)
    if team is None or team.deleted_at is not None:
        raise NotFound("Team not found")
    _get_active_type(db, type_id)

    pending = db.scalar(
        select(TeamJustification.id).where(
            TeamJustification.team_id == team_id,
            TeamJustification.day_date == day,
            TeamJustification.status == DecisionStatus.PENDING,
        )
    )
    if pending is not None:
        raise DuplicatePendingJustification("A pending team justification already exists for this day.")

    team_justification = TeamJustification(
        team_id=team_id,
        day_date=day,
        type_id=type_id,
        reason=reason,
        attachment_refs=list(attachment_refs),
        status=DecisionStatus.PENDING,
        created_by=actor.label,
    )
    db.add(team_justification)
    try:
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        raise DuplicatePendingJustification("A pending team justification already exists for this day.") from exc
    db.refresh(team_justification)
    return team_justification


def decide_team_justification(
    db: Session,
    *,
    team_justification_id: int,
    approve: bool,
    actor: Actor,
) -> tuple[TeamJustification, list[int]]:
    """Decide a team-day justification.

    Approving a type that does not generate absences also justifies every
    open absence the team has on that day, together with any individual
    justification still pending on them. Returns the decided record and the
    ids of the absences it justified.
    """
    team_justification = db.scalar(
        select(TeamJustification).where(TeamJustification.id == team_justification_id).with_for_update()
    )
    if team_justification is None:
        raise NotFound("Team justification not found")
    if team_justification.status != DecisionStatus.PENDING:
        raise InvalidTransition(f"Team justification already {team_justification.status.value.lower()}")

    now = _utcnow()
    team_justification.status = DecisionStatus.APPROVED if approve else DecisionStatus.REJECTED
    team_justification.decided_at = now
    team_justification.decided_by = actor.label

    justified_ids: list[int] = []
    justification_type = db.get(JustificationType, team_justification.type_id)
    if approve and justification_type is not None and not justification_type.generates_absence:
        absences = db.scalars(
            select(Absence).where(
                Absence.team_id == team_justification.team_id,
                Absence.day_date == team_justification.day_date,
                Absence.status.in_(OPEN_ABSENCE_STATUSES),
            )
        ).all()
        for absence in absences:
            absence.status = AbsenceStatus.JUSTIFIED
            absence.updated_by = actor.label
            justified_ids.append(absence.id)
        if justified_ids:
            pending_individual = db.scalars(
                select(Justification).where(
                    Justification.absence_id.in_(justified_ids),
                    Justification.status == DecisionStatus.PENDING,
                )
            ).all()
            for justification in pending_individual:
                justification.status = DecisionStatus.APPROVED
                justification.decided_at = now
                justification.decided_by = actor.label

    db.commit()
    db.refresh(team_justification)
    logger.info(
        "team_justification_decided",
        extra={
            "team_justification_id": team_justification.id,
            "team_id": team_justification.team_id,
            "day": team_justification.day_date,
            "status": team_justification.status.value,
            "justified_absences": len(justified_ids),
            "actor": actor.label,
        },
    )
    return team_justification, justified_ids


def list_team_justifications(
    db: Session,
    *,
    team_id: int | None = None,
    status: DecisionStatus | None = None,
    start: date | None = None,
    end: date | None = None,
    limit: int = 100,
    offset: int = 0,
) -> list[TeamJustification]:
    stmt = select(TeamJustification)
    if team_id is not None:
        stmt = stmt.where(TeamJustification.team_id == team_id)
    if status is not None:
        stmt = stmt.where(TeamJustification.status == status)
    if start is not None:
        stmt = stmt.where(TeamJustification.day_date >= start)
    if end is not None:
        stmt = stmt.where(TeamJustification.day_date <= end)
    stmt = stmt.order_by(TeamJustification.day_date.desc(), TeamJustification.id.desc()).limit(limit).offset(offset)
    return list(db.scalars(stmt).all())
