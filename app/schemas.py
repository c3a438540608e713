from datetime import date, datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field

from app.models import AbsenceReason, AbsenceStatus, DecisionStatus, OvertimeKind


class ManualReconciliationRequest(BaseModel):
    team_id: int | None = Field(default=None, ge=1, alias="equipeId")
    reference_date: date = Field(alias="dataReferencia")
    all_teams: bool = Field(default=False, alias="todasEquipes")

    model_config = ConfigDict(populate_by_name=True)


class ForcedReconciliationRequest(BaseModel):
    start_date: date | None = Field(default=None, alias="dataInicio")
    end_date: date | None = Field(default=None, alias="dataFim")
    history_days: int | None = Field(default=None, ge=0, le=366, alias="diasHistorico")

    model_config = ConfigDict(populate_by_name=True)


class UnitResultRead(BaseModel):
    team_id: int = Field(alias="equipeId")
    day: date = Field(alias="data")
    success: bool
    error: str | None = None
    outcomes: dict[str, int] = Field(default_factory=dict)
    writes: dict[str, int] = Field(default_factory=dict)

    model_config = ConfigDict(populate_by_name=True)


class ManualReconciliationResponse(BaseModel):
    success: bool
    message: str
    teams_processed: int = Field(alias="equipesProcessadas")
    successes: int = Field(alias="sucessos")
    errors: int = Field(alias="erros")
    results: list[UnitResultRead] = Field(default_factory=list, alias="resultados")

    model_config = ConfigDict(populate_by_name=True)


class ForcedReconciliationResponse(ManualReconciliationResponse):
    days_processed: int = Field(alias="diasProcessados")


class AbsenceRead(BaseModel):
    id: int
    worker_id: int
    day_date: date
    team_id: int
    slot_id: int | None = None
    reason: AbsenceReason
    status: AbsenceStatus
    superseded_at: datetime | None = None
    created_by: str
    updated_by: str
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class OvertimeRead(BaseModel):
    id: int
    worker_id: int
    day_date: date
    team_id: int
    actual_shift_id: int | None = None
    kind: OvertimeKind
    planned_hours: Decimal
    actual_hours: Decimal
    diff_hours: Decimal
    status: DecisionStatus
    decided_at: datetime | None = None
    decided_by: str | None = None
    decision_note: str | None = None
    superseded_at: datetime | None = None
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class OvertimeDecisionRequest(BaseModel):
    approve: bool
    note: str | None = Field(default=None, max_length=1000)


class JustificationTypeCreate(BaseModel):
    name: str = Field(min_length=2, max_length=255)
    description: str | None = Field(default=None, max_length=1000)
    generates_absence: bool = True


class JustificationTypeRead(BaseModel):
    id: int
    name: str
    description: str | None = None
    generates_absence: bool
    is_active: bool

    model_config = ConfigDict(from_attributes=True)


class JustificationCreate(BaseModel):
    type_id: int = Field(ge=1)
    reason: str | None = Field(default=None, max_length=4000)
    attachment_refs: list[str] = Field(default_factory=list, max_length=20)


class JustificationRead(BaseModel):
    id: int
    absence_id: int
    type_id: int
    reason: str | None = None
    attachment_refs: list[str] = Field(default_factory=list)
    status: DecisionStatus
    decided_at: datetime | None = None
    decided_by: str | None = None
    created_by: str
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class TeamJustificationCreate(JustificationCreate):
    day_date: date


class TeamJustificationRead(BaseModel):
    id: int
    team_id: int
    day_date: date
    type_id: int
    reason: str | None = None
    attachment_refs: list[str] = Field(default_factory=list)
    status: DecisionStatus
    decided_at: datetime | None = None
    decided_by: str | None = None
    created_by: str
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class TeamJustificationDecisionRead(TeamJustificationRead):
    justified_absence_ids: list[int] = Field(default_factory=list)
