"""Let reconciliation supersede pending overtime

Revision ID: 0004_overtime_supersede
Revises: 0003_justifications_and_audit
Create Date: 2026-10-19 14:00:00
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "0004_overtime_supersede"
down_revision: Union[str, None] = "0003_justifications_and_audit"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.execute("ALTER TYPE decision_status ADD VALUE IF NOT EXISTS 'SUPERSEDED'")
    op.add_column("overtimes", sa.Column("superseded_at", sa.DateTime(timezone=True), nullable=True))


def downgrade() -> None:
    # PostgreSQL cannot drop an enum label; SUPERSEDED rows go back to REJECTED.
    op.execute("UPDATE overtimes SET status = 'REJECTED' WHERE status = 'SUPERSEDED'")
    op.drop_column("overtimes", "superseded_at")
