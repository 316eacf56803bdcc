"""Route monitoring schema: routes, windows, daily sessions, poll records, quota counter, triple tests.

- monitoring_sessions: unique (route_id, session_date); concurrent get-or-create resolves on it.
- user_daily_usage: unique (user_id, usage_date); quota is a guarded increment on this row.
- poll_records: soft-deleted by retention, never removed.
"""
from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "routes",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("user_id", sa.String(64), nullable=False),
        sa.Column("origin_address", sa.String(500), nullable=False, server_default=""),
        sa.Column("origin_coordinates", sa.String(64), nullable=False),
        sa.Column("destination_address", sa.String(500), nullable=False, server_default=""),
        sa.Column("destination_coordinates", sa.String(64), nullable=False),
        sa.Column("provider", sa.String(32), nullable=False, server_default="google_maps"),
        sa.Column("monitoring_status", sa.String(16), nullable=False, server_default="active"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_routes_user_id", "routes", ["user_id"], unique=False)
    op.create_index("ix_routes_monitoring_status", "routes", ["monitoring_status"], unique=False)

    op.create_table(
        "monitoring_windows",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("route_id", sa.Integer(), sa.ForeignKey("routes.id", ondelete="CASCADE"), nullable=False),
        sa.Column("start_time", sa.Time(), nullable=False),
        sa.Column("end_time", sa.Time(), nullable=False),
        sa.Column("days_of_week_mask", sa.Integer(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("exclude_holidays", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.PrimaryKeyConstraint("id"),
        sa.CheckConstraint("start_time < end_time", name="ck_monitoring_windows_start_before_end"),
    )
    op.create_index("ix_monitoring_windows_route_id", "monitoring_windows", ["route_id"], unique=False)

    op.create_table(
        "monitoring_sessions",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("route_id", sa.Integer(), sa.ForeignKey("routes.id", ondelete="CASCADE"), nullable=False),
        sa.Column("session_date", sa.Date(), nullable=False),
        sa.Column("state", sa.String(16), nullable=False, server_default="pending"),
        sa.Column("first_poll_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_poll_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("quota_consumed", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("poll_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("is_holiday_excluded", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("route_id", "session_date", name="uq_monitoring_sessions_route_date"),
    )
    op.create_index("ix_monitoring_sessions_route_id", "monitoring_sessions", ["route_id"], unique=False)

    op.create_table(
        "poll_records",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("route_id", sa.Integer(), sa.ForeignKey("routes.id", ondelete="CASCADE"), nullable=False),
        sa.Column(
            "session_id", sa.Integer(), sa.ForeignKey("monitoring_sessions.id", ondelete="CASCADE"), nullable=False
        ),
        sa.Column("polled_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("travel_duration_seconds", sa.Integer(), nullable=False),
        sa.Column("distance_metres", sa.Integer(), nullable=False),
        sa.Column("provider", sa.String(32), nullable=False),
        sa.Column("is_rerouted", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("is_deleted", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("raw_provider_response", sa.Text(), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_poll_records_route_id", "poll_records", ["route_id"], unique=False)
    op.create_index("ix_poll_records_session_id", "poll_records", ["session_id"], unique=False)
    op.create_index("ix_poll_records_polled_at", "poll_records", ["polled_at"], unique=False)
    op.create_index("ix_poll_records_is_deleted", "poll_records", ["is_deleted"], unique=False)

    op.create_table(
        "user_daily_usage",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("user_id", sa.String(64), nullable=False),
        sa.Column("usage_date", sa.Date(), nullable=False),
        sa.Column("used", sa.Integer(), nullable=False, server_default="0"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("user_id", "usage_date", name="uq_user_daily_usage_user_date"),
    )

    op.create_table(
        "triple_test_sessions",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("origin", sa.String(500), nullable=False),
        sa.Column("destination", sa.String(500), nullable=False),
        sa.Column("provider", sa.String(32), nullable=False),
        sa.Column("scheduled_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_table(
        "triple_test_shots",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column(
            "session_id", sa.Integer(), sa.ForeignKey("triple_test_sessions.id", ondelete="CASCADE"), nullable=False
        ),
        sa.Column("shot_index", sa.Integer(), nullable=False),
        sa.Column("offset_seconds", sa.Integer(), nullable=False),
        sa.Column("fired_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("is_success", sa.Boolean(), nullable=True),
        sa.Column("duration_seconds", sa.Integer(), nullable=True),
        sa.Column("distance_metres", sa.Integer(), nullable=True),
        sa.Column("error_code", sa.String(32), nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("session_id", "shot_index", name="uq_triple_test_shots_session_index"),
    )
    op.create_index("ix_triple_test_shots_session_id", "triple_test_shots", ["session_id"], unique=False)


def downgrade() -> None:
    op.drop_index("ix_triple_test_shots_session_id", table_name="triple_test_shots")
    op.drop_table("triple_test_shots")
    op.drop_table("triple_test_sessions")
    op.drop_table("user_daily_usage")
    op.drop_index("ix_poll_records_is_deleted", table_name="poll_records")
    op.drop_index("ix_poll_records_polled_at", table_name="poll_records")
    op.drop_index("ix_poll_records_session_id", table_name="poll_records")
    op.drop_index("ix_poll_records_route_id", table_name="poll_records")
    op.drop_table("poll_records")
    op.drop_index("ix_monitoring_sessions_route_id", table_name="monitoring_sessions")
    op.drop_table("monitoring_sessions")
    op.drop_index("ix_monitoring_windows_route_id", table_name="monitoring_windows")
    op.drop_table("monitoring_windows")
    op.drop_index("ix_routes_monitoring_status", table_name="routes")
    op.drop_index("ix_routes_user_id", table_name="routes")
    op.drop_table("routes")
