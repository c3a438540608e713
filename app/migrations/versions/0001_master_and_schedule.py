"""Teams, workers, published schedules and actual shifts

Revision ID: 0001_master_and_schedule
Revises:
Create Date: 2026-10-19 09:00:00
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "0001_master_and_schedule"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

worker_status = postgresql.ENUM(
    "ACTIVE",
    "VACATION",
    "MEDICAL_LEAVE",
    "PARENTAL_LEAVE",
    "SUSPENDED",
    "TRAINING",
    "AWAY",
    "DISMISSED",
    "RETIRED",
    name="worker_status",
    create_type=False,
)
schedule_period_status = postgresql.ENUM(
    "DRAFT",
    "PUBLISHED",
    "ARCHIVED",
    name="schedule_period_status",
    create_type=False,
)
schedule_slot_state = postgresql.ENUM(
    "WORK",
    "DAY_OFF",
    "EXCEPTION",
    name="schedule_slot_state",
    create_type=False,
)
crew_role = postgresql.ENUM(
    "DRIVER",
    "PASSENGER",
    "CREW",
    name="crew_role",
    create_type=False,
)


def _timestamps() -> list[sa.Column]:
    return [
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
    ]


def upgrade() -> None:
    bind = op.get_bind()
    worker_status.create(bind, checkfirst=True)
    schedule_period_status.create(bind, checkfirst=True)
    schedule_slot_state.create(bind, checkfirst=True)
    crew_role.create(bind, checkfirst=True)

    op.create_table(
        "teams",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint("name", name="uq_teams_name"),
    )

    op.create_table(
        "workers",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("full_name", sa.String(length=255), nullable=False),
        sa.Column("registration", sa.String(length=64), nullable=False),
        sa.Column("status", worker_status, nullable=False, server_default=sa.text("'ACTIVE'")),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint("registration", name="uq_workers_registration"),
    )

    op.create_table(
        "schedule_periods",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("team_id", sa.Integer(), nullable=False),
        sa.Column("start_date", sa.Date(), nullable=False),
        sa.Column("end_date", sa.Date(), nullable=False),
        sa.Column("status", schedule_period_status, nullable=False, server_default=sa.text("'DRAFT'")),
        *_timestamps(),
        sa.ForeignKeyConstraint(["team_id"], ["teams.id"], ondelete="CASCADE"),
        sa.CheckConstraint("end_date >= start_date", name="ck_schedule_periods_range"),
    )
    op.create_index("ix_schedule_periods_team_id", "schedule_periods", ["team_id"], unique=False)
    op.create_index("ix_schedule_periods_start_date", "schedule_periods", ["start_date"], unique=False)
    op.create_index("ix_schedule_periods_end_date", "schedule_periods", ["end_date"], unique=False)

    op.create_table(
        "schedule_slots",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("period_id", sa.Integer(), nullable=False),
        sa.Column("worker_id", sa.Integer(), nullable=False),
        sa.Column("day_date", sa.Date(), nullable=False),
        sa.Column("state", schedule_slot_state, nullable=False),
        sa.Column("planned_start", sa.Time(timezone=False), nullable=True),
        sa.Column("planned_minutes", sa.Integer(), nullable=False, server_default=sa.text("480")),
        sa.ForeignKeyConstraint(["period_id"], ["schedule_periods.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["worker_id"], ["workers.id"], ondelete="CASCADE"),
        sa.UniqueConstraint("period_id", "worker_id", "day_date", name="uq_schedule_slots_period_worker_day"),
    )
    op.create_index("ix_schedule_slots_period_id", "schedule_slots", ["period_id"], unique=False)
    op.create_index("ix_schedule_slots_worker_id", "schedule_slots", ["worker_id"], unique=False)
    op.create_index("ix_schedule_slots_day_date", "schedule_slots", ["day_date"], unique=False)

    op.create_table(
        "actual_shifts",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("team_id", sa.Integer(), nullable=False),
        sa.Column("worker_id", sa.Integer(), nullable=False),
        sa.Column("day_date", sa.Date(), nullable=False),
        sa.Column("role", crew_role, nullable=False, server_default=sa.text("'CREW'")),
        sa.Column("opened_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("closed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("CURRENT_TIMESTAMP"),
        ),
        sa.ForeignKeyConstraint(["team_id"], ["teams.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["worker_id"], ["workers.id"], ondelete="CASCADE"),
    )
    op.create_index("ix_actual_shifts_team_id", "actual_shifts", ["team_id"], unique=False)
    op.create_index("ix_actual_shifts_worker_id", "actual_shifts", ["worker_id"], unique=False)
    op.create_index("ix_actual_shifts_day_date", "actual_shifts", ["day_date"], unique=False)


def downgrade() -> None:
    op.drop_index("ix_actual_shifts_day_date", table_name="actual_shifts")
    op.drop_index("ix_actual_shifts_worker_id", table_name="actual_shifts")
    op.drop_index("ix_actual_shifts_team_id", table_name="actual_shifts")
    op.drop_table("actual_shifts")
    op.drop_index("ix_schedule_slots_day_date", table_name="schedule_slots")
    op.drop_index("ix_schedule_slots_worker_id", table_name="schedule_slots")
    op.drop_index("ix_schedule_slots_period_id", table_name="schedule_slots")
    op.drop_table("schedule_slots")
    op.drop_index("ix_schedule_periods_end_date", table_name="schedule_periods")
    op.drop_index("ix_schedule_periods_start_date", table_name="schedule_periods")
    op.drop_index("ix_schedule_periods_team_id", table_name="schedule_periods")
    op.drop_table("schedule_periods")
    op.drop_table("workers")
    op.drop_table("teams")

    bind = op.get_bind()
    crew_role.drop(bind, checkfirst=True)
    schedule_slot_state.drop(bind, checkfirst=True)
    schedule_period_status.drop(bind, checkfirst=True)
    worker_status.drop(bind, checkfirst=True)
