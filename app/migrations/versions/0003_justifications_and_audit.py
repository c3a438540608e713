"""Justification types, individual and team justifications, audit log

Revision ID: 0003_justifications_and_audit
Revises: 0002_derived_records
Create Date: 2026-10-19 10:00:00
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "0003_justifications_and_audit"
down_revision: Union[str, None] = "0002_derived_records"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

decision_status = postgresql.ENUM(
    "PENDING",
    "APPROVED",
    "REJECTED",
    name="decision_status",
    create_type=False,
)
actor_kind = postgresql.ENUM(
    "SYSTEM",
    "OPERATOR",
    name="actor_kind",
    create_type=False,
)


def _justification_columns() -> list[sa.Column]:
    return [
        sa.Column("type_id", sa.Integer(), nullable=False),
        sa.Column("reason", sa.Text(), nullable=True),
        sa.Column(
            "attachment_refs",
            postgresql.JSONB(astext_type=sa.Text()),
            nullable=False,
            server_default=sa.text("'[]'::jsonb"),
        ),
        sa.Column("status", decision_status, nullable=False, server_default=sa.text("'PENDING'")),
        sa.Column("decided_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("decided_by", sa.String(length=255), nullable=True),
        sa.Column("created_by", sa.String(length=255), nullable=False),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("CURRENT_TIMESTAMP"),
        ),
    ]


def upgrade() -> None:
    bind = op.get_bind()
    actor_kind.create(bind, checkfirst=True)

    op.create_table(
        "justification_types",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("description", sa.String(length=1000), nullable=True),
        sa.Column("generates_absence", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("CURRENT_TIMESTAMP"),
        ),
        sa.UniqueConstraint("name", name="uq_justification_types_name"),
    )

    op.create_table(
        "justifications",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("absence_id", sa.Integer(), nullable=False),
        *_justification_columns(),
        sa.ForeignKeyConstraint(["absence_id"], ["absences.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["type_id"], ["justification_types.id"]),
    )
    op.create_index("ix_justifications_absence_id", "justifications", ["absence_id"], unique=False)
    op.create_index(
        "uq_justifications_absence_pending",
        "justifications",
        ["absence_id"],
        unique=True,
        postgresql_where=sa.text("status = 'PENDING'"),
    )

    op.create_table(
        "team_justifications",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("team_id", sa.Integer(), nullable=False),
        sa.Column("day_date", sa.Date(), nullable=False),
        *_justification_columns(),
        sa.ForeignKeyConstraint(["team_id"], ["teams.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["type_id"], ["justification_types.id"]),
    )
    op.create_index("ix_team_justifications_team_id", "team_justifications", ["team_id"], unique=False)
    op.create_index("ix_team_justifications_day_date", "team_justifications", ["day_date"], unique=False)
    op.create_index(
        "uq_team_justifications_team_day_pending",
        "team_justifications",
        ["team_id", "day_date"],
        unique=True,
        postgresql_where=sa.text("status = 'PENDING'"),
    )

    op.create_table(
        "audit_logs",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column(
            "ts_utc",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("CURRENT_TIMESTAMP"),
        ),
        sa.Column("actor_type", actor_kind, nullable=False),
        sa.Column("actor_id", sa.String(length=255), nullable=False),
        sa.Column("action", sa.String(length=255), nullable=False),
        sa.Column("entity_type", sa.String(length=255), nullable=True),
        sa.Column("entity_id", sa.String(length=255), nullable=True),
        sa.Column("success", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column(
            "details",
            postgresql.JSONB(astext_type=sa.Text()),
            nullable=False,
            server_default=sa.text("'{}'::jsonb"),
        ),
    )
    op.create_index("ix_audit_logs_ts_utc", "audit_logs", ["ts_utc"], unique=False)


def downgrade() -> None:
    op.drop_index("ix_audit_logs_ts_utc", table_name="audit_logs")
    op.drop_table("audit_logs")
    op.drop_index("uq_team_justifications_team_day_pending", table_name="team_justifications")
    op.drop_index("ix_team_justifications_day_date", table_name="team_justifications")
    op.drop_index("ix_team_justifications_team_id", table_name="team_justifications")
    op.drop_table("team_justifications")
    op.drop_index("uq_justifications_absence_pending", table_name="justifications")
    op.drop_index("ix_justifications_absence_id", table_name="justifications")
    op.drop_table("justifications")
    op.drop_table("justification_types")

    bind = op.get_bind()
    actor_kind.drop(bind, checkfirst=True)
