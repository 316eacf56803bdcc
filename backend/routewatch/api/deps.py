"""
Shared request dependencies. The caller is identified by the X-User-Id header (authentication lives in
front of this service). Clock, holiday calendar, session factory and job scheduler are dependencies so
tests can swap them.
"""
from apscheduler.schedulers.base import BaseScheduler
from fastapi import Header, HTTPException, Request

from routewatch.config import settings
from routewatch.core.clock import Clock, HolidayCalendar, StaticHolidayCalendar, SystemClock
from routewatch.db.session import SessionLocal


def get_user_id(x_user_id: str | None = Header(None, alias="X-User-Id")) -> str:
    user_id = (x_user_id or "").strip()
    if not user_id:
        raise HTTPException(status_code=401, detail="X-User-Id header required")
    return user_id


def get_clock() -> Clock:
    return SystemClock(settings.local_timezone)


def get_holidays() -> HolidayCalendar:
    return StaticHolidayCalendar(settings.holiday_dates)


def get_session_factory():
    """Factory for work that outlives the request (triple-test shot jobs)."""
    return SessionLocal


def get_job_scheduler(request: Request) -> BaseScheduler:
    """The app's APScheduler instance (triple-test shots are scheduled on it)."""
    return request.app.state.scheduler
