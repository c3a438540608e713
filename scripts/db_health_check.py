#!/usr/bin/env python
from __future__ import annotations

import json
import os
from datetime import datetime, timezone
from pathlib import Path

from sqlalchemy import create_engine, text


EXPECTED_HEAD = "0004_overtime_supersede"


def load_env_if_exists() -> None:
    env_file = Path(".env")
    if not env_file.exists():
        return
    for raw_line in env_file.read_text(encoding="utf-8").splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, value = line.split("=", 1)
        os.environ.setdefault(key.strip(), value.strip())


def run() -> dict:
    load_env_if_exists()
    database_url = os.environ.get("DATABASE_URL")
    if not database_url:
        raise RuntimeError("DATABASE_URL not found (.env or env vars).")

    engine = create_engine(database_url)
    report: dict = {
        "generated_at_utc": datetime.now(timezone.utc).isoformat(),
        "checks": [],
    }

    def add(name: str, status: str, details: dict) -> None:
        report["checks"].append(
            {
                "name": name,
                "status": status,
                "details": details,
            }
        )

    with engine.connect() as conn:
        tables = set(
            conn.execute(
                text(
                    """
                    select table_name
                    from information_schema.tables
                    where table_schema='public'
                    """
                )
            ).scalars()
        )

        current_versions: list[str] = []
        if "alembic_version" in tables:
            current_versions = [
                row[0]
                for row in conn.execute(text("select version_num from alembic_version")).fetchall()
            ]
        add("alembic_version", "ok" if current_versions else "fail", {"current": current_versions})

        add(
            "migration_up_to_date",
            "ok" if EXPECTED_HEAD in current_versions else "warn",
            {"expected_head": EXPECTED_HEAD, "current": current_versions},
        )

        required_by_revision = {
            "0001+": ["teams", "workers", "schedule_periods", "schedule_slots", "actual_shifts"],
            "0002+": ["absences", "overtimes", "schedule_divergences", "reconciliation_markers"],
            "0003+": ["justification_types", "justifications", "team_justifications", "audit_logs"],
        }
        missing = {
            rev: [table for table in required if table not in tables]
            for rev, required in required_by_revision.items()
        }
        missing = {rev: tables_ for rev, tables_ in missing.items() if tables_}
        add("missing_tables_by_revision", "warn" if missing else "ok", missing)

        if {"absences", "actual_shifts"} <= tables:
            contradicted = conn.execute(
                text(
                    """
                    select a.id
                    from absences a
                    join actual_shifts s
                      on s.worker_id = a.worker_id
                     and s.day_date = a.day_date
                     and s.team_id = a.team_id
                    where a.status = 'PENDING'
                    limit 20
                    """
                )
            ).fetchall()
            add(
                "pending_absence_with_shift",
                "warn" if contradicted else "ok",
                {"sample_ids": [row[0] for row in contradicted]},
            )

        if "overtimes" in tables:
            non_positive = conn.execute(
                text(
                    """
                    select id
                    from overtimes
                    where kind = 'EXCESS_HOURS' and diff_hours <= 0
                    limit 20
                    """
                )
            ).fetchall()
            add(
                "excess_overtime_non_positive_diff",
                "fail" if non_positive else "ok",
                {"sample_ids": [row[0] for row in non_positive]},
            )

        if {"schedule_slots", "schedule_periods", "reconciliation_markers"} <= tables:
            unreconciled = conn.execute(
                text(
                    """
                    select distinct p.team_id, s.day_date
                    from schedule_slots s
                    join schedule_periods p on p.id = s.period_id
                    left join reconciliation_markers m
                      on m.team_id = p.team_id and m.day_date = s.day_date
                    where p.status = 'PUBLISHED'
                      and s.day_date >= current_date - 30
                      and s.day_date < current_date
                      and m.id is null
                    order by s.day_date
                    limit 50
                    """
                )
            ).fetchall()
            add(
                "published_days_without_marker",
                "warn" if unreconciled else "ok",
                {"sample": [[row[0], row[1].isoformat()] for row in unreconciled]},
            )

    return report


if __name__ == "__main__":
    print(json.dumps(run(), ensure_ascii=False, indent=2))
