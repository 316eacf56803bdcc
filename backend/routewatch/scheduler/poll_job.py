"""
Poll tick: every poll_tick_seconds close elapsed sessions, then dispatch execute_poll for each active
route with an eligible window onto a bounded pool. A route already in flight is skipped this tick.
execute_poll itself answers not_due until the route's next poll instant, so the tick can run more
often than the poll interval. A failed provider call is retried one interval later, at most
max_provider_retries times in a row per session.
"""
import logging
import threading
from collections import Counter
from concurrent.futures import ThreadPoolExecutor

from routewatch.config import settings
from routewatch.core.clock import Clock, HolidayCalendar, StaticHolidayCalendar, SystemClock
from routewatch.db.session import SessionLocal
from routewatch.services.monitoring.scheduler import PollOutcome, execute_poll
from routewatch.services.monitoring.sessions import close_elapsed_sessions
from routewatch.services.route_service import list_pollable_route_ids

logger = logging.getLogger(__name__)

_in_flight: set[int] = set()
_lock = threading.Lock()
_executor: ThreadPoolExecutor | None = None
_last_outcomes: Counter = Counter()


def _get_executor() -> ThreadPoolExecutor:
    global _executor
    if _executor is None:
        _executor = ThreadPoolExecutor(
            max_workers=settings.max_concurrent_polls,
            thread_name_prefix="route_poll",
        )
    return _executor


def default_clock() -> Clock:
    return SystemClock(settings.local_timezone)


def default_holidays() -> HolidayCalendar:
    return StaticHolidayCalendar(settings.holiday_dates)


def _poll_route_then_release(route_id: int, clock: Clock, holidays: HolidayCalendar) -> PollOutcome | None:
    """Poll one route in its own DB session; always drops it from the in-flight set."""
    db = SessionLocal()
    try:
        outcome = execute_poll(db, route_id, clock=clock, holidays=holidays)
        with _lock:
            _last_outcomes[outcome.status.value] += 1
        return outcome
    except Exception as e:
        logger.exception("Poll route %s failed: %s", route_id, e)
        db.rollback()
        return None
    finally:
        db.close()
        with _lock:
            _in_flight.discard(route_id)


def run_poll_tick(clock: Clock | None = None, holidays: HolidayCalendar | None = None) -> list[int]:
    """
    One tick. Cheap DB work only (session sweep, route selection) in this thread; provider calls run in
    the shared executor. Returns the route ids dispatched.
    """
    clock = clock or default_clock()
    holidays = holidays or default_holidays()
    now_local = clock.now_local()
    is_holiday = holidays.is_holiday(now_local.date())

    db = SessionLocal()
    try:
        try:
            closed = close_elapsed_sessions(db, now_local)
            if closed:
                logger.info("Poll tick: closed %s elapsed sessions", closed)
        except Exception as e:
            logger.warning("close_elapsed_sessions failed (tick continues): %s", e, exc_info=True)
            db.rollback()
        route_ids = list_pollable_route_ids(db, now_local, is_holiday)
    finally:
        db.close()

    with _lock:
        to_run = [rid for rid in route_ids if rid not in _in_flight]
        for rid in to_run:
            _in_flight.add(rid)

    if not to_run:
        return []
    executor = _get_executor()
    for rid in to_run:
        executor.submit(_poll_route_then_release, rid, clock, holidays)
    logger.debug("Poll tick: dispatched %s routes (%s skipped in flight)", len(to_run), len(route_ids) - len(to_run))
    return to_run


def get_poll_job_status() -> dict:
    with _lock:
        return {"in_flight": sorted(_in_flight), "outcomes": dict(_last_outcomes)}
