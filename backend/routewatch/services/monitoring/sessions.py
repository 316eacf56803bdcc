"""
Monitoring session lifecycle: one row per (route_id, session_date).

    (no row) --get_or_create--> pending --record_poll--> active --close--> completed

- get_or_create_session is insert-if-absent against uq_monitoring_sessions_route_date; the loser of a
  concurrent create rolls back and reads the winner's row (the race never surfaces).
- record_poll is a single guarded UPDATE (state != completed, and optionally last poll at least one
  interval ago) so concurrent polls add up without lost updates, a completed session rejects with
  SessionClosedError and a poll racing inside the interval rejects with NotDueError.
- record_failed_attempt stamps last_attempt_at and counts consecutive failures; success resets them.
- completed is terminal: closing again is a no-op and the row is never reopened.
"""
import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Iterable

from sqlalchemy import func, or_, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from routewatch.core.clock import HolidayCalendar
from routewatch.core.errors import (
    NotDueError,
    NotFoundError,
    QuotaExceededError,
    SessionClosedError,
    WindowIneligibleError,
)
from routewatch.models.monitoring_session import MonitoringSession, SessionState
from routewatch.models.monitoring_window import MonitoringWindow
from routewatch.models.route import Route, RouteStatus
from routewatch.services.monitoring.quota import get_quota_status, has_capacity
from routewatch.services.monitoring.window import Weekdays

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StartWindowResult:
    session_id: int
    session_state: str
    quota_remaining: int
    created: bool


def find_session(db: Session, route_id: int, session_date: date) -> MonitoringSession | None:
    return (
        db.query(MonitoringSession)
        .filter(MonitoringSession.route_id == route_id, MonitoringSession.session_date == session_date)
        .first()
    )


def get_or_create_session(
    db: Session, route_id: int, session_date: date, is_holiday: bool = False
) -> MonitoringSession:
    """Idempotent and safe under concurrent calls for the same key. Commits on create."""
    row = find_session(db, route_id, session_date)
    if row is not None:
        return row
    db.add(
        MonitoringSession(
            route_id=route_id,
            session_date=session_date,
            state=SessionState.PENDING.value,
            quota_consumed=0,
            poll_count=0,
            is_holiday_excluded=is_holiday,
        )
    )
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        row = find_session(db, route_id, session_date)
        if row is None:
            # Not the (route_id, session_date) race: surface it
            raise
        logger.info("Session create race for route %s on %s: using existing session %s", route_id, session_date, row.id)
        return row
    row = find_session(db, route_id, session_date)
    logger.info("Created monitoring session %s for route %s on %s", row.id, route_id, session_date)
    return row


def record_poll(
    db: Session,
    session_id: int,
    polled_at: datetime,
    units: int = 1,
    min_interval: timedelta | None = None,
) -> None:
    """
    Count one poll against the session inside the caller's transaction (caller commits).
    First call moves pending -> active and sets first_poll_at. With min_interval the UPDATE also requires
    the previous poll to be at least that long ago, so two racing polls cannot both land.
    """
    conditions = [
        MonitoringSession.id == session_id,
        MonitoringSession.state != SessionState.COMPLETED.value,
    ]
    if min_interval is not None:
        conditions.append(
            or_(
                MonitoringSession.last_poll_at.is_(None),
                MonitoringSession.last_poll_at <= polled_at - min_interval,
            )
        )
    stmt = (
        update(MonitoringSession)
        .where(*conditions)
        .values(
            poll_count=MonitoringSession.poll_count + 1,
            quota_consumed=MonitoringSession.quota_consumed + units,
            first_poll_at=func.coalesce(MonitoringSession.first_poll_at, polled_at),
            last_poll_at=polled_at,
            last_attempt_at=polled_at,
            failed_attempts=0,
            state=SessionState.ACTIVE.value,
        )
        .execution_options(synchronize_session=False)
    )
    if db.execute(stmt).rowcount == 1:
        return
    state = db.query(MonitoringSession.state).filter(MonitoringSession.id == session_id).scalar()
    if state is None:
        raise NotFoundError(f"session {session_id} not found")
    if state == SessionState.COMPLETED.value:
        raise SessionClosedError(f"session {session_id} is completed")
    raise NotDueError(f"session {session_id} was polled less than {min_interval} ago")


def record_failed_attempt(db: Session, session_id: int, attempted_at: datetime) -> None:
    """Note a failed provider call so the next try waits a full interval (caller commits)."""
    db.query(MonitoringSession).filter(
        MonitoringSession.id == session_id,
        MonitoringSession.state != SessionState.COMPLETED.value,
    ).update(
        {
            MonitoringSession.last_attempt_at: attempted_at,
            MonitoringSession.failed_attempts: MonitoringSession.failed_attempts + 1,
        },
        synchronize_session=False,
    )


def _windows_covering(windows: Iterable[MonitoringWindow], day: date) -> list[MonitoringWindow]:
    return [w for w in windows if w.is_active and Weekdays(w.days_of_week_mask & Weekdays.ALL).contains_day(day)]


def close_if_window_elapsed(
    db: Session, session: MonitoringSession, windows: Iterable[MonitoringWindow], now_local: datetime
) -> bool:
    """
    Complete the session when the day has rolled over, or when now is at/after the end of every active
    window covering the session's weekday. Returns True only when this call closed it.
    """
    if session.state == SessionState.COMPLETED.value:
        return False
    rolled_over = now_local.date() > session.session_date
    covering = _windows_covering(windows, session.session_date)
    tod = now_local.time().replace(tzinfo=None)
    elapsed = all(tod >= w.end_time for w in covering)
    if not (rolled_over or elapsed):
        return False
    return _complete(db, session.id, reason="rollover" if rolled_over else "window_elapsed")


def _complete(db: Session, session_id: int, reason: str) -> bool:
    n = (
        db.query(MonitoringSession)
        .filter(
            MonitoringSession.id == session_id,
            MonitoringSession.state != SessionState.COMPLETED.value,
        )
        .update({MonitoringSession.state: SessionState.COMPLETED.value}, synchronize_session=False)
    )
    db.commit()
    if n:
        logger.info("Session %s completed (%s)", session_id, reason)
    return n == 1


def close_elapsed_sessions(db: Session, now_local: datetime) -> int:
    """Scheduler sweep: complete every open session whose windows have elapsed. Returns count closed."""
    open_sessions = (
        db.query(MonitoringSession)
        .filter(
            MonitoringSession.state != SessionState.COMPLETED.value,
            MonitoringSession.session_date <= now_local.date(),
        )
        .all()
    )
    closed = 0
    windows_by_route: dict[int, list[MonitoringWindow]] = {}
    for s in open_sessions:
        if s.route_id not in windows_by_route:
            windows_by_route[s.route_id] = (
                db.query(MonitoringWindow).filter(MonitoringWindow.route_id == s.route_id).all()
            )
        if close_if_window_elapsed(db, s, windows_by_route[s.route_id], now_local):
            closed += 1
    return closed


def stop_session(db: Session, session_id: int, user_id: str) -> MonitoringSession:
    """User-initiated stop: completes the session if the caller owns it."""
    row = (
        db.query(MonitoringSession)
        .join(Route, Route.id == MonitoringSession.route_id)
        .filter(MonitoringSession.id == session_id, Route.user_id == user_id)
        .first()
    )
    if row is None:
        raise NotFoundError(f"session {session_id} not found")
    _complete(db, row.id, reason="stopped")
    db.refresh(row)
    return row


def start_window(
    db: Session,
    window_id: int,
    user_id: str,
    now_local: datetime,
    now_utc: datetime,
    holidays: HolidayCalendar | None = None,
) -> StartWindowResult:
    """
    Begin today's monitoring for the window's route. Idempotent: an existing session for the route
    today is returned as-is. A new session is refused when the user's quota is already spent.
    """
    window = (
        db.query(MonitoringWindow)
        .join(Route, Route.id == MonitoringWindow.route_id)
        .filter(
            MonitoringWindow.id == window_id,
            Route.user_id == user_id,
            Route.monitoring_status != RouteStatus.DELETED.value,
        )
        .first()
    )
    if window is None:
        raise NotFoundError(f"window {window_id} not found")

    today = now_local.date()
    is_holiday = bool(holidays and holidays.is_holiday(today))
    if not window.is_active or not Weekdays(window.days_of_week_mask & Weekdays.ALL).contains_day(today):
        raise WindowIneligibleError(f"window {window_id} does not run on {today.isoformat()}")
    if is_holiday and window.exclude_holidays:
        raise WindowIneligibleError(f"window {window_id} is excluded on holiday {today.isoformat()}")

    existing = find_session(db, window.route_id, today)
    if existing is None and not has_capacity(db, user_id, now_utc.date()):
        raise QuotaExceededError(f"daily quota exhausted for user {user_id}")

    session = existing or get_or_create_session(
        db, window.route_id, today, is_holiday=is_holiday and window.exclude_holidays
    )
    if session.state == SessionState.COMPLETED.value:
        raise SessionClosedError(f"session {session.id} for route {window.route_id} is completed")

    quota = get_quota_status(db, user_id, now_utc)
    logger.info(
        "Monitoring started for window %s, route %s, session %s (existing=%s)",
        window_id, window.route_id, session.id, existing is not None,
    )
    return StartWindowResult(
        session_id=session.id,
        session_state=session.state,
        quota_remaining=quota.remaining,
        created=existing is None,
    )
