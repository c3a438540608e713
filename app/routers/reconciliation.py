from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from app.actors import FORCED_ACTOR, MANUAL_ACTOR, Actor
from app.audit import log_audit
from app.db import get_db
from app.schemas import (
    ForcedReconciliationRequest,
    ForcedReconciliationResponse,
    ManualReconciliationRequest,
    ManualReconciliationResponse,
    UnitResultRead,
)
from app.security import request_actor, require_local_origin
from app.services.reconciliation import BatchResult, ReconciliationOrchestrator

router = APIRouter(tags=["reconciliation"], dependencies=[Depends(require_local_origin)])


def get_orchestrator(request: Request) -> ReconciliationOrchestrator:
    return request.app.state.reconciliation_orchestrator


def _batch_message(batch: BatchResult, *, empty_message: str) -> str:
    if not batch.total_units:
        return empty_message
    if batch.success:
        return f"Reconciliation finished: {batch.succeeded} unit(s) processed."
    return f"Reconciliation finished with errors: {batch.failed} of {batch.total_units} unit(s) failed."


def _unit_results(batch: BatchResult) -> list[UnitResultRead]:
    return [UnitResultRead.model_validate(item.to_dict()) for item in batch.unit_results]


def _audit_batch(db: Session, request: Request, *, actor: Actor, action: str, batch: BatchResult, details: dict) -> None:
    log_audit(
        db,
        actor=actor,
        action=action,
        success=batch.success,
        entity_type="reconciliation_batch",
        details={
            **details,
            "total_units": batch.total_units,
            "succeeded": batch.succeeded,
            "failed": batch.failed,
            "failures": batch.failed_labels(),
        },
        request_id=getattr(request.state, "request_id", None),
    )


@router.post("/reconciliation/manual", response_model=ManualReconciliationResponse)
async def reconcile_manual(
    payload: ManualReconciliationRequest,
    request: Request,
    orchestrator: ReconciliationOrchestrator = Depends(get_orchestrator),
    actor: Actor = Depends(request_actor(MANUAL_ACTOR)),
    db: Session = Depends(get_db),
) -> ManualReconciliationResponse:
    batch = await orchestrator.run_manual(
        day=payload.reference_date,
        team_id=payload.team_id,
        all_teams=payload.all_teams,
        actor=actor,
    )
    _audit_batch(
        db,
        request,
        actor=actor,
        action="RECONCILIATION_MANUAL_RUN",
        batch=batch,
        details={
            "day": payload.reference_date.isoformat(),
            "team_id": payload.team_id,
            "all_teams": payload.all_teams,
        },
    )
    return ManualReconciliationResponse(
        success=batch.success,
        message=_batch_message(batch, empty_message="No team has a published schedule for the reference date."),
        teams_processed=len(batch.team_ids),
        successes=batch.succeeded,
        errors=batch.failed,
        results=_unit_results(batch),
    )


@router.post("/reconciliation/forced", response_model=ForcedReconciliationResponse)
async def reconcile_forced(
    request: Request,
    payload: ForcedReconciliationRequest | None = None,
    orchestrator: ReconciliationOrchestrator = Depends(get_orchestrator),
    db: Session = Depends(get_db),
) -> ForcedReconciliationResponse:
    payload = payload or ForcedReconciliationRequest()
    batch = await orchestrator.run_forced(
        start=payload.start_date,
        end=payload.end_date,
        history_days=payload.history_days,
        actor=FORCED_ACTOR,
        stop_event=getattr(request.app.state, "reconciliation_stop_event", None),
    )
    _audit_batch(
        db,
        request,
        actor=FORCED_ACTOR,
        action="RECONCILIATION_FORCED_RUN",
        batch=batch,
        details={
            "start_date": payload.start_date.isoformat() if payload.start_date else None,
            "end_date": payload.end_date.isoformat() if payload.end_date else None,
            "history_days": payload.history_days,
        },
    )
    return ForcedReconciliationResponse(
        success=batch.success,
        message=_batch_message(batch, empty_message="Every published day in the range is already reconciled."),
        teams_processed=len(batch.team_ids),
        days_processed=batch.total_units,
        successes=batch.succeeded,
        errors=batch.failed,
        results=_unit_results(batch),
    )
