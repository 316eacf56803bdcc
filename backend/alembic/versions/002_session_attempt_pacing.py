"""Add last_attempt_at and failed_attempts to monitoring_sessions

Revision ID: 002
Revises: 001
Create Date: (run alembic upgrade head)

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

revision: str = "002"
down_revision: Union[str, None] = "001"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.add_column("monitoring_sessions", sa.Column("last_attempt_at", sa.DateTime(timezone=True), nullable=True))
    op.add_column(
        "monitoring_sessions",
        sa.Column("failed_attempts", sa.Integer(), nullable=False, server_default="0"),
    )


def downgrade() -> None:
    op.drop_column("monitoring_sessions", "failed_attempts")
    op.drop_column("monitoring_sessions", "last_attempt_at")
