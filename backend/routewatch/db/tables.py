"""
Single source of truth for database tables that exist after migrations.

Use these names when writing raw SQL. alembic/env.py asserts the models match this list.
"""
ALL_TABLE_NAMES = (
    "routes",
    "monitoring_windows",
    "monitoring_sessions",
    "poll_records",
    "user_daily_usage",
    "triple_test_sessions",
    "triple_test_shots",
)
