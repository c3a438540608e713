from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import inspect, text
from sqlalchemy.engine import Engine

EXPECTED_ALEMBIC_HEAD = "0004_overtime_supersede"

REQUIRED_TABLE_COLUMNS: dict[str, set[str]] = {
    "schedule_slots": {"id", "period_id", "worker_id", "day_date", "state", "planned_start", "planned_minutes"},
    "actual_shifts": {"id", "team_id", "worker_id", "day_date", "opened_at", "closed_at"},
    "absences": {"id", "worker_id", "day_date", "status", "reason", "superseded_at", "updated_by"},
    "overtimes": {
        "id",
        "worker_id",
        "day_date",
        "kind",
        "planned_hours",
        "actual_hours",
        "diff_hours",
        "status",
        "superseded_at",
    },
    "reconciliation_markers": {"team_id", "day_date", "mode", "last_run_at"},
    "justifications": {"id", "absence_id", "status"},
    "team_justifications": {"id", "team_id", "day_date", "status"},
    "alembic_version": {"version_num"},
}

REQUIRED_ENUM_VALUES: dict[str, set[str]] = {
    "absence_status": {"PENDING", "UNDER_REVIEW", "JUSTIFIED", "UNJUSTIFIED", "SUPERSEDED"},
    "decision_status": {"PENDING", "APPROVED", "REJECTED", "SUPERSEDED"},
    "reconciliation_mode": {"SCHEDULED", "MANUAL", "FORCED"},
    "overtime_kind": {"EXCESS_HOURS", "DAY_OFF_WORKED", "UNSCHEDULED_WORK"},
}

# ON CONFLICT targets of the reconciliation writes and the pending-justification guards.
REQUIRED_UNIQUE_KEYS: dict[str, set[str]] = {
    "absences": {"uq_absences_worker_day"},
    "overtimes": {"uq_overtimes_worker_day"},
    "reconciliation_markers": {"uq_reconciliation_markers_team_day"},
    "justifications": {"uq_justifications_absence_pending"},
    "team_justifications": {"uq_team_justifications_team_day_pending"},
}


@dataclass(frozen=True, slots=True)
class SchemaGuardResult:
    ok: bool
    checked_at_utc: datetime
    issues: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "ok": self.ok,
            "checked_at_utc": self.checked_at_utc.isoformat(),
            "issues": list(self.issues),
            "warnings": list(self.warnings),
            "issue_count": len(self.issues),
            "warning_count": len(self.warnings),
        }


def _check_columns(inspector: Any, issues: list[str]) -> None:
    for table_name, required_columns in REQUIRED_TABLE_COLUMNS.items():
        try:
            present = {str(item.get("name")) for item in inspector.get_columns(table_name)}
        except Exception as exc:  # pragma: no cover
            issues.append(f"TABLE_UNREADABLE:{table_name}:{exc.__class__.__name__}")
            continue
        missing = sorted(required_columns - present)
        if missing:
            issues.append(f"MISSING_COLUMNS:{table_name}:{','.join(missing)}")


def _check_unique_keys(inspector: Any, issues: list[str]) -> None:
    for table_name, required_names in REQUIRED_UNIQUE_KEYS.items():
        try:
            present = {str(item.get("name")) for item in inspector.get_unique_constraints(table_name)}
            present |= {str(item.get("name")) for item in inspector.get_indexes(table_name) if item.get("unique")}
        except Exception as exc:  # pragma: no cover
            issues.append(f"TABLE_UNREADABLE:{table_name}:{exc.__class__.__name__}")
            continue
        missing = sorted(required_names - present)
        if missing:
            issues.append(f"MISSING_UNIQUE_KEYS:{table_name}:{','.join(missing)}")


def _check_enums(inspector: Any, issues: list[str], warnings: list[str]) -> None:
    try:
        enums = inspector.get_enums() or []
    except Exception as exc:  # pragma: no cover
        warnings.append(f"ENUM_INSPECTION_FAILED:{exc.__class__.__name__}")
        return

    labels_by_name = {
        str(item.get("name")): {str(label) for label in item.get("labels") or []}
        for item in enums
        if item.get("name")
    }
    for enum_name, required_values in REQUIRED_ENUM_VALUES.items():
        if enum_name not in labels_by_name:
            warnings.append(f"ENUM_NOT_FOUND:{enum_name}")
            continue
        missing = sorted(required_values - labels_by_name[enum_name])
        if missing:
            issues.append(f"MISSING_ENUM_VALUES:{enum_name}:{','.join(missing)}")


def _check_alembic_head(engine: Engine, issues: list[str], warnings: list[str]) -> None:
    try:
        with engine.connect() as connection:
            row = connection.execute(text("SELECT version_num FROM alembic_version LIMIT 1")).scalar()
    except Exception as exc:  # pragma: no cover
        issues.append(f"ALEMBIC_VERSION_CHECK_FAILED:{exc.__class__.__name__}")
        return
    version = str(row).strip() if row is not None else ""
    if not version:
        issues.append("ALEMBIC_VERSION_EMPTY")
    elif version != EXPECTED_ALEMBIC_HEAD:
        warnings.append(f"ALEMBIC_VERSION_NOT_HEAD:{version}")


def verify_runtime_schema(engine: Engine) -> SchemaGuardResult:
    """Checks the live database carries what reconciliation writes depend on.

    Missing columns, unique keys or enum labels are issues. An older Alembic
    revision or an enum the inspector cannot see is only a warning.
    """
    issues: list[str] = []
    warnings: list[str] = []
    checked_at_utc = datetime.now(timezone.utc)
    inspector = inspect(engine)

    _check_columns(inspector, issues)
    _check_unique_keys(inspector, issues)
    _check_enums(inspector, issues, warnings)
    _check_alembic_head(engine, issues, warnings)

    return SchemaGuardResult(ok=not issues, checked_at_utc=checked_at_utc, issues=issues, warnings=warnings)
