"""
Poll scheduling and execution for one route.

execute_poll order (each step short; only the provider call is slow and runs with no transaction open):
  1. window eligibility (pure)          -> window_ineligible
  2. session for (route, local date)    -> session_closed if completed
  3. retries for the day spent?         -> provider_failure (RETRIES_EXHAUSTED), provider never called
  4. next eligible instant reached?     -> not_due (paced off the last attempt, failed or not)
  5. quota pre-check                    -> quota_exceeded, provider never called
  6. provider call with timeout         -> provider_failure, attempt stamped on the session, no quota used
  7. one transaction: reserve quota + record_poll + insert poll record, all or nothing; record_poll
     re-checks the interval so a concurrent poll that landed first turns this one into not_due

Quota is reserved only after a successful response, in the same transaction as the record, so a failed
or timed-out call never costs the user anything and there is no release step.
"""
import logging
import statistics
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from sqlalchemy.orm import Session

from routewatch.config import settings
from routewatch.core.clock import Clock, HolidayCalendar, as_utc
from routewatch.core.constants import POLL_ERROR_RETRIES_EXHAUSTED
from routewatch.core.errors import NotDueError, PollOutcomeStatus, ProviderFailure, SessionClosedError
from routewatch.models.monitoring_session import MonitoringSession, SessionState
from routewatch.models.monitoring_window import MonitoringWindow
from routewatch.models.poll_record import PollRecord
from routewatch.models.route import Route, RouteStatus
from routewatch.services.monitoring.quota import ensure_usage_row, has_capacity, reserve_units
from routewatch.services.monitoring.sessions import (
    find_session,
    get_or_create_session,
    record_failed_attempt,
    record_poll,
)
from routewatch.services.monitoring.window import WindowLike, eligible_windows
from routewatch.services.providers import TrafficProvider, TravelResult, get_provider
from routewatch.services.route_service import get_owned_route

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PollOutcome:
    status: PollOutcomeStatus
    route_id: int
    session_id: int | None = None
    poll_record_id: int | None = None
    next_poll_at: datetime | None = None
    error_code: str | None = None
    duration_seconds: int | None = None
    distance_metres: int | None = None
    is_rerouted: bool = False

    @property
    def ok(self) -> bool:
        return self.status == PollOutcomeStatus.POLLED

    def to_dict(self) -> dict:
        return {
            "status": self.status.value,
            "route_id": self.route_id,
            "session_id": self.session_id,
            "poll_record_id": self.poll_record_id,
            "next_poll_at": self.next_poll_at.isoformat() if self.next_poll_at else None,
            "error_code": self.error_code,
            "duration_seconds": self.duration_seconds,
            "distance_metres": self.distance_metres,
            "is_rerouted": self.is_rerouted,
        }


def next_eligible_poll_time(
    window: WindowLike,
    last_poll_at: datetime | None,
    now_local: datetime,
    interval_minutes: int | None = None,
) -> datetime | None:
    """
    Next instant this window may be polled, or None when no further polls fit before end_time today.
    No prior poll today: max(window start today, now). Otherwise last_poll_at + interval, where
    last_poll_at is the latest attempt, failed or not.
    """
    interval = timedelta(minutes=interval_minutes or settings.poll_interval_minutes)
    tz = now_local.tzinfo
    start_dt = datetime.combine(now_local.date(), window.start_time, tzinfo=tz)
    end_dt = datetime.combine(now_local.date(), window.end_time, tzinfo=tz)

    last_local = None
    if last_poll_at is not None:
        if tz is None:
            last_local = last_poll_at.replace(tzinfo=None)
        else:
            last_local = as_utc(last_poll_at).astimezone(tz)
        if last_local.date() != now_local.date():
            last_local = None  # previous day's poll does not pace today

    candidate = max(start_dt, now_local) if last_local is None else last_local + interval
    if candidate >= end_dt:
        return None
    return candidate


def detect_reroute(
    db: Session, session_id: int, distance_metres: int, threshold_percent: int | None = None
) -> bool:
    """
    Reroute = this poll and the previous one are both at/above median(prior distances) * (1 + pct/100).
    Needs at least two prior records in the session.
    """
    pct = settings.reroute_distance_threshold_percent if threshold_percent is None else threshold_percent
    prior = [
        r[0]
        for r in db.query(PollRecord.distance_metres)
        .filter(PollRecord.session_id == session_id, PollRecord.is_deleted.is_(False))
        .order_by(PollRecord.polled_at.desc(), PollRecord.id.desc())
        .all()
    ]
    if len(prior) < 2:
        return False
    median = statistics.median(prior)
    threshold = median * (1.0 + pct / 100.0)
    return distance_metres >= threshold and prior[0] >= threshold


def _resolve_provider(provider_id: str, provider: TrafficProvider | None) -> TrafficProvider:
    if provider is not None:
        return provider
    try:
        return get_provider(provider_id)
    except KeyError as e:
        raise ProviderFailure("UNKNOWN_PROVIDER", str(e)) from e


def _pick_due_window(
    windows: list[MonitoringWindow], last_poll_at: datetime | None, now_local: datetime, interval_minutes: int | None
) -> tuple[MonitoringWindow | None, datetime | None]:
    """First eligible window whose next poll instant has arrived; else (None, earliest upcoming instant)."""
    upcoming: list[datetime] = []
    for w in windows:
        nxt = next_eligible_poll_time(w, last_poll_at, now_local, interval_minutes)
        if nxt is None:
            continue
        if nxt <= now_local:
            return w, nxt
        upcoming.append(nxt)
    return None, (min(upcoming) if upcoming else None)


def execute_poll(
    db: Session,
    route_id: int,
    *,
    clock: Clock,
    holidays: HolidayCalendar | None = None,
    provider: TrafficProvider | None = None,
    daily_limit: int | None = None,
    interval_minutes: int | None = None,
    timeout: float | None = None,
) -> PollOutcome:
    """Poll one route now if a window allows it. Expected rejections come back as PollOutcome, not raised."""
    route = db.get(Route, route_id)
    if route is None or route.monitoring_status == RouteStatus.DELETED.value:
        return PollOutcome(PollOutcomeStatus.NOT_FOUND, route_id)
    if route.monitoring_status != RouteStatus.ACTIVE.value:
        return PollOutcome(PollOutcomeStatus.WINDOW_INELIGIBLE, route_id)

    now_local = clock.now_local()
    today = now_local.date()
    is_holiday = bool(holidays and holidays.is_holiday(today))
    windows = eligible_windows(route.windows, now_local, is_holiday)
    if not windows:
        logger.debug("Route %s: no eligible window at %s", route_id, now_local.isoformat())
        return PollOutcome(PollOutcomeStatus.WINDOW_INELIGIBLE, route_id)

    existing = find_session(db, route_id, today)
    if existing is not None and existing.state == SessionState.COMPLETED.value:
        logger.info("Route %s: session %s already completed, poll rejected", route_id, existing.id)
        return PollOutcome(PollOutcomeStatus.SESSION_CLOSED, route_id, session_id=existing.id)

    existing_id = existing.id if existing is not None else None
    if existing is not None and existing.failed_attempts > settings.max_provider_retries:
        logger.debug("Route %s: %s failed attempts today, not retrying", route_id, existing.failed_attempts)
        return PollOutcome(
            PollOutcomeStatus.PROVIDER_FAILURE,
            route_id,
            session_id=existing_id,
            error_code=POLL_ERROR_RETRIES_EXHAUSTED,
        )

    window, next_at = _pick_due_window(windows, _last_attempt(existing), now_local, interval_minutes)
    if window is None:
        return PollOutcome(PollOutcomeStatus.NOT_DUE, route_id, session_id=existing_id, next_poll_at=next_at)

    user_id = route.user_id
    if not has_capacity(db, user_id, clock.now_utc().date(), daily_limit=daily_limit):
        logger.info("Route %s: quota exhausted for user %s, provider not called", route_id, user_id)
        return PollOutcome(PollOutcomeStatus.QUOTA_EXCEEDED, route_id, session_id=existing_id)

    session = existing or get_or_create_session(
        db, route_id, today, is_holiday=is_holiday and window.exclude_holidays
    )
    session_id = session.id
    origin, destination = route.origin_coordinates, route.destination_coordinates
    provider_id = route.provider
    # No transaction held across the provider call
    db.commit()

    try:
        prov = _resolve_provider(provider_id, provider)
        result = prov.fetch_travel_time(origin, destination, timeout or settings.provider_timeout_seconds)
    except ProviderFailure as e:
        logger.warning("Route %s: provider %s failed (%s), retry after the interval", route_id, provider_id, e.code)
        _note_failure(db, session_id, clock)
        return PollOutcome(PollOutcomeStatus.PROVIDER_FAILURE, route_id, session_id=session_id, error_code=e.code)
    except Exception as e:
        logger.warning(
            "Route %s: provider %s raised %s, retry after the interval", route_id, provider_id, e, exc_info=True
        )
        _note_failure(db, session_id, clock)
        return PollOutcome(PollOutcomeStatus.PROVIDER_FAILURE, route_id, session_id=session_id, error_code="EXCEPTION")

    polled_at = clock.now_utc().astimezone(timezone.utc)
    ensure_usage_row(db, user_id, polled_at.date())
    min_interval = timedelta(minutes=interval_minutes or settings.poll_interval_minutes)
    return _commit_poll(db, route_id, session_id, user_id, provider_id, polled_at, result, daily_limit, min_interval)


def _last_attempt(session: MonitoringSession | None) -> datetime | None:
    """Latest of last poll and last failed attempt: both pace the next try."""
    if session is None:
        return None
    stamps = [as_utc(t) for t in (session.last_poll_at, session.last_attempt_at) if t is not None]
    return max(stamps) if stamps else None


def _note_failure(db: Session, session_id: int, clock: Clock) -> None:
    try:
        record_failed_attempt(db, session_id, clock.now_utc().astimezone(timezone.utc))
        db.commit()
    except Exception:
        db.rollback()
        raise


def _commit_poll(
    db: Session,
    route_id: int,
    session_id: int,
    user_id: str,
    provider_id: str,
    polled_at: datetime,
    result: TravelResult,
    daily_limit: int | None,
    min_interval: timedelta | None = None,
) -> PollOutcome:
    """Reserve quota, advance the session and insert the record in one transaction."""
    try:
        if not reserve_units(db, user_id, polled_at.date(), 1, daily_limit):
            db.rollback()
            logger.info("Route %s: quota reached while polling, response discarded", route_id)
            return PollOutcome(PollOutcomeStatus.QUOTA_EXCEEDED, route_id, session_id=session_id)
        try:
            record_poll(db, session_id, polled_at, units=1, min_interval=min_interval)
        except SessionClosedError:
            db.rollback()
            logger.info("Route %s: session %s closed while polling, response discarded", route_id, session_id)
            return PollOutcome(PollOutcomeStatus.SESSION_CLOSED, route_id, session_id=session_id)
        except NotDueError:
            db.rollback()
            logger.info("Route %s: another poll landed inside the interval, response discarded", route_id)
            return PollOutcome(PollOutcomeStatus.NOT_DUE, route_id, session_id=session_id)
        rerouted = result.rerouted or detect_reroute(db, session_id, result.distance_metres)
        record = PollRecord(
            route_id=route_id,
            session_id=session_id,
            polled_at=polled_at,
            travel_duration_seconds=result.duration_seconds,
            distance_metres=result.distance_metres,
            provider=provider_id,
            is_rerouted=rerouted,
            is_deleted=False,
            raw_provider_response=result.raw_json,
        )
        db.add(record)
        db.commit()
    except Exception:
        db.rollback()
        raise
    if rerouted:
        logger.info("Reroute detected for route %s: %sm", route_id, result.distance_metres)
    logger.info(
        "Poll recorded for route %s session %s: %ss / %sm",
        route_id, session_id, result.duration_seconds, result.distance_metres,
    )
    return PollOutcome(
        PollOutcomeStatus.POLLED,
        route_id,
        session_id=session_id,
        poll_record_id=record.id,
        duration_seconds=result.duration_seconds,
        distance_metres=result.distance_metres,
        is_rerouted=rerouted,
    )


def check_now(
    db: Session,
    route_id: int,
    user_id: str,
    provider: TrafficProvider | None = None,
    timeout: float | None = None,
) -> TravelResult:
    """Live travel time for a route the user owns. Writes nothing and consumes no quota."""
    route = get_owned_route(db, route_id, user_id)
    prov = _resolve_provider(route.provider, provider)
    return prov.fetch_travel_time(
        route.origin_coordinates, route.destination_coordinates, timeout or settings.provider_timeout_seconds
    )
