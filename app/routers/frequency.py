from datetime import date

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.orm import Session

from app.actors import Actor
from app.audit import log_audit
from app.db import get_db
from app.errors import ApiError
from app.models import AbsenceStatus, DecisionStatus
from app.schemas import (
    AbsenceRead,
    JustificationCreate,
    JustificationRead,
    JustificationTypeCreate,
    JustificationTypeRead,
    OvertimeDecisionRequest,
    OvertimeRead,
    TeamJustificationCreate,
    TeamJustificationDecisionRead,
    TeamJustificationRead,
)
from app.security import require_operator
from app.services.adherence import consolidate_team, consolidate_worker, team_adherence
from app.services.justifications import (
    create_justification_type,
    decide_justification,
    decide_team_justification,
    list_justification_types,
    list_team_justifications,
    submit_justification,
    submit_team_justification,
)
from app.services.overtime import decide_overtime, list_absences, list_overtimes

router = APIRouter(tags=["frequency"])

MAX_REPORT_RANGE_DAYS = 366


def _request_id(request: Request) -> str | None:
    return getattr(request.state, "request_id", None)


def _report_range(
    start: date = Query(alias="from"),
    end: date = Query(alias="to"),
) -> tuple[date, date]:
    if start > end:
        raise ApiError(status_code=422, code="VALIDATION_ERROR", message="'from' must not be after 'to'.")
    if (end - start).days + 1 > MAX_REPORT_RANGE_DAYS:
        raise ApiError(
            status_code=422,
            code="VALIDATION_ERROR",
            message=f"Date range must not exceed {MAX_REPORT_RANGE_DAYS} days.",
        )
    return start, end


@router.get("/consolidated/worker/{worker_id}")
def get_worker_consolidation(
    worker_id: int,
    date_range: tuple[date, date] = Depends(_report_range),
    db: Session = Depends(get_db),
) -> dict:
    start, end = date_range
    return consolidate_worker(db, worker_id=worker_id, start=start, end=end)


@router.get("/consolidated/team/{team_id}")
def get_team_consolidation(
    team_id: int,
    date_range: tuple[date, date] = Depends(_report_range),
    db: Session = Depends(get_db),
) -> dict:
    start, end = date_range
    return consolidate_team(db, team_id=team_id, start=start, end=end)


@router.get("/adherence/team/{team_id}")
def get_team_adherence(
    team_id: int,
    date_range: tuple[date, date] = Depends(_report_range),
    db: Session = Depends(get_db),
) -> dict:
    start, end = date_range
    return team_adherence(db, team_id=team_id, start=start, end=end)


@router.get("/absences", response_model=list[AbsenceRead])
def get_absences(
    team_id: int | None = Query(default=None, ge=1),
    worker_id: int | None = Query(default=None, ge=1),
    status: AbsenceStatus | None = None,
    start: date | None = Query(default=None, alias="from"),
    end: date | None = Query(default=None, alias="to"),
    limit: int = Query(default=100, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
) -> list[AbsenceRead]:
    rows = list_absences(
        db,
        team_id=team_id,
        worker_id=worker_id,
        status=status,
        start=start,
        end=end,
        limit=limit,
        offset=offset,
    )
    return [AbsenceRead.model_validate(item) for item in rows]


@router.get("/overtimes", response_model=list[OvertimeRead])
def get_overtimes(
    team_id: int | None = Query(default=None, ge=1),
    worker_id: int | None = Query(default=None, ge=1),
    status: DecisionStatus | None = None,
    start: date | None = Query(default=None, alias="from"),
    end: date | None = Query(default=None, alias="to"),
    limit: int = Query(default=100, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
) -> list[OvertimeRead]:
    rows = list_overtimes(
        db,
        team_id=team_id,
        worker_id=worker_id,
        status=status,
        start=start,
        end=end,
        limit=limit,
        offset=offset,
    )
    return [OvertimeRead.model_validate(item) for item in rows]


@router.patch("/overtimes/{overtime_id}/decision", response_model=OvertimeRead)
def patch_overtime_decision(
    overtime_id: int,
    payload: OvertimeDecisionRequest,
    request: Request,
    actor: Actor = Depends(require_operator),
    db: Session = Depends(get_db),
) -> OvertimeRead:
    overtime = decide_overtime(db, overtime_id=overtime_id, approve=payload.approve, note=payload.note, actor=actor)
    log_audit(
        db,
        actor=actor,
        action="OVERTIME_APPROVED" if payload.approve else "OVERTIME_REJECTED",
        success=True,
        entity_type="overtime",
        entity_id=str(overtime.id),
        details={"worker_id": overtime.worker_id, "day": overtime.day_date.isoformat(), "note": payload.note},
        request_id=_request_id(request),
    )
    return OvertimeRead.model_validate(overtime)


@router.get("/justification-types", response_model=list[JustificationTypeRead])
def get_justification_types(
    include_inactive: bool = False,
    db: Session = Depends(get_db),
) -> list[JustificationTypeRead]:
    rows = list_justification_types(db, include_inactive=include_inactive)
    return [JustificationTypeRead.model_validate(item) for item in rows]


@router.post("/justification-types", response_model=JustificationTypeRead, status_code=201)
def post_justification_type(
    payload: JustificationTypeCreate,
    request: Request,
    actor: Actor = Depends(require_operator),
    db: Session = Depends(get_db),
) -> JustificationTypeRead:
    justification_type = create_justification_type(
        db,
        name=payload.name,
        description=payload.description,
        generates_absence=payload.generates_absence,
    )
    log_audit(
        db,
        actor=actor,
        action="JUSTIFICATION_TYPE_CREATED",
        success=True,
        entity_type="justification_type",
        entity_id=str(justification_type.id),
        details={"name": justification_type.name, "generates_absence": justification_type.generates_absence},
        request_id=_request_id(request),
    )
    return JustificationTypeRead.model_validate(justification_type)


@router.post("/absences/{absence_id}/justifications", response_model=JustificationRead, status_code=201)
def post_absence_justification(
    absence_id: int,
    payload: JustificationCreate,
    request: Request,
    actor: Actor = Depends(require_operator),
    db: Session = Depends(get_db),
) -> JustificationRead:
    justification = submit_justification(
        db,
        absence_id=absence_id,
        type_id=payload.type_id,
        reason=payload.reason,
        attachment_refs=payload.attachment_refs,
        actor=actor,
    )
    log_audit(
        db,
        actor=actor,
        action="JUSTIFICATION_SUBMITTED",
        success=True,
        entity_type="justification",
        entity_id=str(justification.id),
        details={"absence_id": absence_id, "type_id": payload.type_id},
        request_id=_request_id(request),
    )
    return JustificationRead.model_validate(justification)


def _decide_justification(db: Session, request: Request, *, justification_id: int, approve: bool, actor: Actor):
    justification = decide_justification(db, justification_id=justification_id, approve=approve, actor=actor)
    log_audit(
        db,
        actor=actor,
        action="JUSTIFICATION_APPROVED" if approve else "JUSTIFICATION_REJECTED",
        success=True,
        entity_type="justification",
        entity_id=str(justification.id),
        details={"absence_id": justification.absence_id},
        request_id=_request_id(request),
    )
    return JustificationRead.model_validate(justification)


@router.post("/justifications/{justification_id}/approve", response_model=JustificationRead)
def approve_justification(
    justification_id: int,
    request: Request,
    actor: Actor = Depends(require_operator),
    db: Session = Depends(get_db),
) -> JustificationRead:
    return _decide_justification(db, request, justification_id=justification_id, approve=True, actor=actor)


@router.post("/justifications/{justification_id}/reject", response_model=JustificationRead)
def reject_justification(
    justification_id: int,
    request: Request,
    actor: Actor = Depends(require_operator),
    db: Session = Depends(get_db),
) -> JustificationRead:
    return _decide_justification(db, request, justification_id=justification_id, approve=False, actor=actor)


@router.post("/teams/{team_id}/justifications", response_model=TeamJustificationRead, status_code=201)
def post_team_justification(
    team_id: int,
    payload: TeamJustificationCreate,
    request: Request,
    actor: Actor = Depends(require_operator),
    db: Session = Depends(get_db),
) -> TeamJustificationRead:
    team_justification = submit_team_justification(
        db,
        team_id=team_id,
        day=payload.day_date,
        type_id=payload.type_id,
        reason=payload.reason,
        attachment_refs=payload.attachment_refs,
        actor=actor,
    )
    log_audit(
        db,
        actor=actor,
        action="TEAM_JUSTIFICATION_SUBMITTED",
        success=True,
        entity_type="team_justification",
        entity_id=str(team_justification.id),
        details={"team_id": team_id, "day": payload.day_date.isoformat(), "type_id": payload.type_id},
        request_id=_request_id(request),
    )
    return TeamJustificationRead.model_validate(team_justification)


def _decide_team_justification(
    db: Session,
    request: Request,
    *,
    team_justification_id: int,
    approve: bool,
    actor: Actor,
) -> TeamJustificationDecisionRead:
    team_justification, justified_ids = decide_team_justification(
        db,
        team_justification_id=team_justification_id,
        approve=approve,
        actor=actor,
    )
    log_audit(
        db,
        actor=actor,
        action="TEAM_JUSTIFICATION_APPROVED" if approve else "TEAM_JUSTIFICATION_REJECTED",
        success=True,
        entity_type="team_justification",
        entity_id=str(team_justification.id),
        details={
            "team_id": team_justification.team_id,
            "day": team_justification.day_date.isoformat(),
            "justified_absence_ids": justified_ids,
        },
        request_id=_request_id(request),
    )
    base = TeamJustificationRead.model_validate(team_justification)
    return TeamJustificationDecisionRead(**base.model_dump(), justified_absence_ids=justified_ids)


@router.post("/team-justifications/{team_justification_id}/approve", response_model=TeamJustificationDecisionRead)
def approve_team_justification(
    team_justification_id: int,
    request: Request,
    actor: Actor = Depends(require_operator),
    db: Session = Depends(get_db),
) -> TeamJustificationDecisionRead:
    return _decide_team_justification(
        db,
        request,
        team_justification_id=team_justification_id,
        approve=True,
        actor=actor,
    )


@router.post("/team-justifications/{team_justification_id}/reject", response_model=TeamJustificationDecisionRead)
def reject_team_justification(
    team_justification_id: int,
    request: Request,
    actor: Actor = Depends(require_operator),
    db: Session = Depends(get_db),
) -> TeamJustificationDecisionRead:
    return _decide_team_justification(
        db,
        request,
        team_justification_id=team_justification_id,
        approve=False,
        actor=actor,
    )


@router.get("/team-justifications", response_model=list[TeamJustificationRead])
def get_team_justifications(
    team_id: int | None = Query(default=None, ge=1),
    status: DecisionStatus | None = None,
    start: date | None = Query(default=None, alias="from"),
    end: date | None = Query(default=None, alias="to"),
    limit: int = Query(default=100, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
) -> list[TeamJustificationRead]:
    rows = list_team_justifications(
        db,
        team_id=team_id,
        status=status,
        start=start,
        end=end,
        limit=limit,
        offset=offset,
    )
    return [TeamJustificationRead.model_validate(item) for item in rows]
