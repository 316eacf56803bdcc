from datetime import date, datetime, timezone

import pytest
from fastapi import HTTPException

from routewatch.config import Settings
from routewatch.core.clock import StaticHolidayCalendar, SystemClock, as_utc
from routewatch.core.errors import (
    ConflictError,
    InvalidRequestError,
    NotDueError,
    NotFoundError,
    ProviderFailure,
    QuotaExceededError,
    SessionClosedError,
    WindowIneligibleError,
    monitoring_error_to_http,
)


@pytest.mark.parametrize(
    "exc, status, code",
    [
        (QuotaExceededError("spent"), 429, "QUOTA_EXCEEDED"),
        (SessionClosedError("done"), 409, "SESSION_CLOSED"),
        (WindowIneligibleError("closed"), 422, "WINDOW_INELIGIBLE"),
        (NotFoundError("gone"), 404, "NOT_FOUND"),
        (NotDueError("soon"), 422, "NOT_DUE"),
        (InvalidRequestError("bad"), 422, "INVALID_REQUEST"),
        (ConflictError("taken", code="DUPLICATE_ROUTE"), 409, "DUPLICATE_ROUTE"),
        (ProviderFailure("TIMEOUT", "slow"), 502, "TIMEOUT"),
    ],
)
def test_error_mapping(exc, status, code):
    http = monitoring_error_to_http(exc)
    assert isinstance(http, HTTPException)
    assert http.status_code == status
    assert http.detail["error"] == code


def test_unknown_errors_propagate():
    with pytest.raises(RuntimeError):
        monitoring_error_to_http(RuntimeError("db down"))


def test_holiday_calendar_ignores_bad_entries():
    cal = StaticHolidayCalendar(["2026-12-25", "not-a-date", date(2026, 1, 1)])
    assert cal.is_holiday(date(2026, 12, 25))
    assert cal.is_holiday(date(2026, 1, 1))
    assert not cal.is_holiday(date(2026, 12, 24))


def test_system_clock_and_as_utc():
    clock = SystemClock("Europe/Dublin")
    assert clock.now_utc().tzinfo is timezone.utc
    assert clock.now_local().tzinfo is not None
    naive = datetime(2026, 3, 2, 8, 0)
    assert as_utc(naive) == datetime(2026, 3, 2, 8, 0, tzinfo=timezone.utc)
    assert as_utc(None) is None


def test_default_database_url_names_the_psycopg2_driver():
    default = Settings.model_fields["database_url"].default
    assert default.startswith("postgresql+psycopg2://")
