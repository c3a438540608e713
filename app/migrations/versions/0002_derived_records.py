"""Absences, overtimes, schedule divergences and reconciliation markers

Revision ID: 0002_derived_records
Revises: 0001_master_and_schedule
Create Date: 2026-10-19 09:30:00
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "0002_derived_records"
down_revision: Union[str, None] = "0001_master_and_schedule"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

absence_status = postgresql.ENUM(
    "PENDING",
    "UNDER_REVIEW",
    "JUSTIFIED",
    "UNJUSTIFIED",
    "SUPERSEDED",
    name="absence_status",
    create_type=False,
)
absence_reason = postgresql.ENUM(
    "NO_SHIFT_OPENED",
    "SHIFT_OUTSIDE_WINDOW",
    name="absence_reason",
    create_type=False,
)
overtime_kind = postgresql.ENUM(
    "EXCESS_HOURS",
    "DAY_OFF_WORKED",
    "UNSCHEDULED_WORK",
    name="overtime_kind",
    create_type=False,
)
decision_status = postgresql.ENUM(
    "PENDING",
    "APPROVED",
    "REJECTED",
    name="decision_status",
    create_type=False,
)
reconciliation_mode = postgresql.ENUM(
    "SCHEDULED",
    "MANUAL",
    "FORCED",
    name="reconciliation_mode",
    create_type=False,
)


def upgrade() -> None:
    bind = op.get_bind()
    absence_status.create(bind, checkfirst=True)
    absence_reason.create(bind, checkfirst=True)
    overtime_kind.create(bind, checkfirst=True)
    decision_status.create(bind, checkfirst=True)
    reconciliation_mode.create(bind, checkfirst=True)

    op.create_table(
        "absences",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("worker_id", sa.Integer(), nullable=False),
        sa.Column("day_date", sa.Date(), nullable=False),
        sa.Column("team_id", sa.Integer(), nullable=False),
        sa.Column("slot_id", sa.Integer(), nullable=True),
        sa.Column("reason", absence_reason, nullable=False),
        sa.Column("status", absence_status, nullable=False, server_default=sa.text("'PENDING'")),
        sa.Column("superseded_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_by", sa.String(length=255), nullable=False),
        sa.Column("updated_by", sa.String(length=255), nullable=False),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("CURRENT_TIMESTAMP"),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("CURRENT_TIMESTAMP"),
        ),
        sa.ForeignKeyConstraint(["worker_id"], ["workers.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["team_id"], ["teams.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["slot_id"], ["schedule_slots.id"], ondelete="SET NULL"),
        sa.UniqueConstraint("worker_id", "day_date", name="uq_absences_worker_day"),
    )
    op.create_index("ix_absences_worker_id", "absences", ["worker_id"], unique=False)
    op.create_index("ix_absences_day_date", "absences", ["day_date"], unique=False)
    op.create_index("ix_absences_team_id", "absences", ["team_id"], unique=False)
    op.create_index("ix_absences_status", "absences", ["status"], unique=False)

    op.create_table(
        "overtimes",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("worker_id", sa.Integer(), nullable=False),
        sa.Column("day_date", sa.Date(), nullable=False),
        sa.Column("team_id", sa.Integer(), nullable=False),
        sa.Column("actual_shift_id", sa.Integer(), nullable=True),
        sa.Column("kind", overtime_kind, nullable=False),
        sa.Column("planned_hours", sa.Numeric(6, 2), nullable=False),
        sa.Column("actual_hours", sa.Numeric(6, 2), nullable=False),
        sa.Column("diff_hours", sa.Numeric(6, 2), nullable=False),
        sa.Column("status", decision_status, nullable=False, server_default=sa.text("'PENDING'")),
        sa.Column("decided_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("decided_by", sa.String(length=255), nullable=True),
        sa.Column("decision_note", sa.String(length=1000), nullable=True),
        sa.Column("created_by", sa.String(length=255), nullable=False),
        sa.Column("updated_by", sa.String(length=255), nullable=False),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("CURRENT_TIMESTAMP"),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("CURRENT_TIMESTAMP"),
        ),
        sa.ForeignKeyConstraint(["worker_id"], ["workers.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["team_id"], ["teams.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["actual_shift_id"], ["actual_shifts.id"], ondelete="SET NULL"),
        sa.UniqueConstraint("worker_id", "day_date", name="uq_overtimes_worker_day"),
    )
    op.create_index("ix_overtimes_worker_id", "overtimes", ["worker_id"], unique=False)
    op.create_index("ix_overtimes_day_date", "overtimes", ["day_date"], unique=False)
    op.create_index("ix_overtimes_team_id", "overtimes", ["team_id"], unique=False)
    op.create_index("ix_overtimes_status", "overtimes", ["status"], unique=False)

    op.create_table(
        "schedule_divergences",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("worker_id", sa.Integer(), nullable=False),
        sa.Column("day_date", sa.Date(), nullable=False),
        sa.Column("planned_team_id", sa.Integer(), nullable=False),
        sa.Column("actual_team_id", sa.Integer(), nullable=False),
        sa.Column("created_by", sa.String(length=255), nullable=False),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("CURRENT_TIMESTAMP"),
        ),
        sa.ForeignKeyConstraint(["worker_id"], ["workers.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["planned_team_id"], ["teams.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["actual_team_id"], ["teams.id"], ondelete="CASCADE"),
        sa.UniqueConstraint(
            "worker_id",
            "day_date",
            "planned_team_id",
            "actual_team_id",
            name="uq_schedule_divergences_worker_day_teams",
        ),
    )
    op.create_index("ix_schedule_divergences_worker_id", "schedule_divergences", ["worker_id"], unique=False)
    op.create_index("ix_schedule_divergences_day_date", "schedule_divergences", ["day_date"], unique=False)

    op.create_table(
        "reconciliation_markers",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("team_id", sa.Integer(), nullable=False),
        sa.Column("day_date", sa.Date(), nullable=False),
        sa.Column("mode", reconciliation_mode, nullable=False),
        sa.Column("last_run_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("last_run_by", sa.String(length=255), nullable=False),
        sa.ForeignKeyConstraint(["team_id"], ["teams.id"], ondelete="CASCADE"),
        sa.UniqueConstraint("team_id", "day_date", name="uq_reconciliation_markers_team_day"),
    )
    op.create_index("ix_reconciliation_markers_day_date", "reconciliation_markers", ["day_date"], unique=False)


def downgrade() -> None:
    op.drop_index("ix_reconciliation_markers_day_date", table_name="reconciliation_markers")
    op.drop_table("reconciliation_markers")
    op.drop_index("ix_schedule_divergences_day_date", table_name="schedule_divergences")
    op.drop_index("ix_schedule_divergences_worker_id", table_name="schedule_divergences")
    op.drop_table("schedule_divergences")
    op.drop_index("ix_overtimes_status", table_name="overtimes")
    op.drop_index("ix_overtimes_team_id", table_name="overtimes")
    op.drop_index("ix_overtimes_day_date", table_name="overtimes")
    op.drop_index("ix_overtimes_worker_id", table_name="overtimes")
    op.drop_table("overtimes")
    op.drop_index("ix_absences_status", table_name="absences")
    op.drop_index("ix_absences_team_id", table_name="absences")
    op.drop_index("ix_absences_day_date", table_name="absences")
    op.drop_index("ix_absences_worker_id", table_name="absences")
    op.drop_table("absences")

    bind = op.get_bind()
    reconciliation_mode.drop(bind, checkfirst=True)
    decision_status.drop(bind, checkfirst=True)
    overtime_kind.drop(bind, checkfirst=True)
    absence_reason.drop(bind, checkfirst=True)
    absence_status.drop(bind, checkfirst=True)
