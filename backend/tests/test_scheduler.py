import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from datetime import datetime, time, timedelta, timezone
from zoneinfo import ZoneInfo

import pytest
from sqlalchemy import func

from routewatch.config import settings
from routewatch.core.clock import StaticHolidayCalendar
from routewatch.core.errors import NotFoundError, PollOutcomeStatus, ProviderFailure
from routewatch.models import MonitoringSession, PollRecord, UserDailyUsage
from routewatch.services.monitoring.scheduler import check_now, execute_poll, next_eligible_poll_time
from routewatch.services.monitoring.sessions import close_if_window_elapsed, get_or_create_session
from routewatch.services.monitoring.window import Weekdays
from routewatch.services.providers import TravelResult
from tests.conftest import MONDAY, FailingProvider, FakeProvider, FixedClock, utc


@dataclass
class W:
    start_time: time = time(8, 0)
    end_time: time = time(9, 0)


def local(hh, mm=0):
    return datetime.combine(MONDAY, time(hh, mm), tzinfo=timezone.utc)


def test_next_poll_time_walks_the_window():
    w = W()
    assert next_eligible_poll_time(w, None, local(8, 0), 5) == local(8, 0)
    assert next_eligible_poll_time(w, local(8, 0), local(8, 0), 5) == local(8, 5)
    assert next_eligible_poll_time(w, local(8, 50), local(8, 52), 5) == local(8, 55)
    # 08:55 was the last eligible poll
    assert next_eligible_poll_time(w, local(8, 55), local(8, 56), 5) is None


def test_next_poll_time_before_start_and_after_end():
    w = W()
    assert next_eligible_poll_time(w, None, local(7, 30), 5) == local(8, 0)
    assert next_eligible_poll_time(w, None, local(8, 17), 5) == local(8, 17)
    assert next_eligible_poll_time(w, None, local(9, 0), 5) is None


def test_previous_day_poll_does_not_pace_today():
    w = W()
    yesterday = local(8, 55) - timedelta(days=1)
    assert next_eligible_poll_time(w, yesterday, local(8, 10), 5) == local(8, 10)


def test_last_poll_is_converted_to_local_zone():
    tz = ZoneInfo("America/New_York")
    now_local = datetime.combine(MONDAY, time(8, 2), tzinfo=tz)
    last_utc = utc(MONDAY, 13, 0)  # 08:00 EST
    assert next_eligible_poll_time(W(), last_utc, now_local, 5) == datetime.combine(MONDAY, time(8, 5), tzinfo=tz)


def test_execute_poll_records_and_activates(db, make_route, clock):
    route = make_route()
    provider = FakeProvider([TravelResult(duration_seconds=900, distance_metres=12000, raw_json='{"ok": 1}')])
    outcome = execute_poll(db, route.id, clock=clock, provider=provider)
    assert outcome.status == PollOutcomeStatus.POLLED
    assert outcome.duration_seconds == 900
    record = db.get(PollRecord, outcome.poll_record_id)
    assert record.session_id == outcome.session_id
    assert record.raw_provider_response == '{"ok": 1}'
    session = db.get(MonitoringSession, outcome.session_id)
    assert session.state == "active"
    assert session.poll_count == 1
    assert db.query(UserDailyUsage.used).filter_by(user_id="user-1").scalar() == 1


def test_execute_poll_paces_by_interval(db, make_route, clock):
    route = make_route()
    provider = FakeProvider()
    assert execute_poll(db, route.id, clock=clock, provider=provider).status == PollOutcomeStatus.POLLED
    clock.advance(minutes=2)
    outcome = execute_poll(db, route.id, clock=clock, provider=provider)
    assert outcome.status == PollOutcomeStatus.NOT_DUE
    assert outcome.next_poll_at == utc(MONDAY, 8, 5)
    clock.advance(minutes=3)
    assert execute_poll(db, route.id, clock=clock, provider=provider).status == PollOutcomeStatus.POLLED
    assert provider.calls == 2


def test_execute_poll_outside_window(db, make_route, clock):
    route = make_route(days=Weekdays.WEEKEND)
    provider = FakeProvider()
    assert execute_poll(db, route.id, clock=clock, provider=provider).status == PollOutcomeStatus.WINDOW_INELIGIBLE
    assert provider.calls == 0


def test_execute_poll_holiday_excluded(db, make_route, clock):
    route = make_route(exclude_holidays=True)
    holidays = StaticHolidayCalendar([MONDAY.isoformat()])
    outcome = execute_poll(db, route.id, clock=clock, holidays=holidays, provider=FakeProvider())
    assert outcome.status == PollOutcomeStatus.WINDOW_INELIGIBLE


def test_execute_poll_unknown_or_deleted_route(db, make_route, clock):
    assert execute_poll(db, 424242, clock=clock, provider=FakeProvider()).status == PollOutcomeStatus.NOT_FOUND
    route = make_route(status="deleted")
    assert execute_poll(db, route.id, clock=clock, provider=FakeProvider()).status == PollOutcomeStatus.NOT_FOUND


def test_provider_failure_consumes_no_quota_and_writes_nothing(db, make_route, clock):
    route = make_route()
    outcome = execute_poll(db, route.id, clock=clock, provider=FailingProvider("TIMEOUT"))
    assert outcome.status == PollOutcomeStatus.PROVIDER_FAILURE
    assert outcome.error_code == "TIMEOUT"
    assert db.query(func.count(PollRecord.id)).scalar() == 0
    used = db.query(UserDailyUsage.used).filter_by(user_id="user-1").scalar()
    assert not used
    session = db.get(MonitoringSession, outcome.session_id)
    assert session.poll_count == 0
    assert session.state == "pending"


def test_unexpected_provider_exception_is_isolated(db, make_route, clock):
    route = make_route()
    outcome = execute_poll(db, route.id, clock=clock, provider=FakeProvider([RuntimeError("boom")]))
    assert outcome.status == PollOutcomeStatus.PROVIDER_FAILURE
    assert outcome.error_code == "EXCEPTION"


def test_closed_session_rejects_poll(db, make_route, clock):
    route = make_route()
    session = get_or_create_session(db, route.id, MONDAY)
    close_if_window_elapsed(db, session, route.windows, utc(MONDAY + timedelta(days=1), 0))
    provider = FakeProvider()
    outcome = execute_poll(db, route.id, clock=clock, provider=provider)
    assert outcome.status == PollOutcomeStatus.SESSION_CLOSED
    assert provider.calls == 0


def test_reroute_flagged_after_sustained_distance_jump(db, make_route, clock):
    route = make_route()
    results = [TravelResult(1200, d) for d in (10000, 10000, 10000, 12000, 12000)]
    provider = FakeProvider(results)
    flags = []
    for _ in results:
        outcome = execute_poll(db, route.id, clock=clock, provider=provider)
        assert outcome.status == PollOutcomeStatus.POLLED
        flags.append(outcome.is_rerouted)
        clock.advance(minutes=5)
    # first jump has no elevated predecessor; the second one does
    assert flags == [False, False, False, False, True]


def test_concurrent_polls_respect_quota(session_factory, make_route):
    routes = [make_route(user_id="busy") for _ in range(6)]
    clock = FixedClock(utc(MONDAY, 8, 0))
    provider = FakeProvider()

    def poll(route_id):
        db = session_factory()
        try:
            return execute_poll(db, route_id, clock=clock, provider=provider, daily_limit=4).status
        finally:
            db.close()

    with ThreadPoolExecutor(max_workers=6) as pool:
        statuses = list(pool.map(poll, [r.id for r in routes]))

    assert statuses.count(PollOutcomeStatus.POLLED) == 4
    db = session_factory()
    try:
        assert db.query(func.count(PollRecord.id)).scalar() == 4
        assert db.query(UserDailyUsage.used).filter_by(user_id="busy").scalar() == 4
    finally:
        db.close()


def test_check_now_writes_nothing(db, make_route):
    route = make_route(user_id="u1")
    result = check_now(db, route.id, "u1", provider=FakeProvider([TravelResult(600, 8000)]))
    assert result.duration_seconds == 600
    assert db.query(func.count(PollRecord.id)).scalar() == 0
    with pytest.raises(NotFoundError):
        check_now(db, route.id, "u2", provider=FakeProvider())
    with pytest.raises(ProviderFailure):
        check_now(db, route.id, "u1", provider=FailingProvider("HTTP_ERROR"))


def test_failed_polls_are_paced_and_capped(db, make_route, clock):
    route = make_route()
    provider = FailingProvider("TIMEOUT")
    outcomes = []
    for _ in range(30):
        outcomes.append(execute_poll(db, route.id, clock=clock, provider=provider))
        clock.advance(minutes=1)

    # 08:00 plus one retry per interval, then the route is left alone for the day
    assert provider.calls == settings.max_provider_retries + 1
    failed = [o for o in outcomes if o.status == PollOutcomeStatus.PROVIDER_FAILURE]
    assert [o.error_code for o in failed[:4]] == ["TIMEOUT"] * 4
    assert failed[-1].error_code == "RETRIES_EXHAUSTED"
    assert outcomes[1].status == PollOutcomeStatus.NOT_DUE
    assert outcomes[1].next_poll_at == utc(MONDAY, 8, 5)
    session = db.get(MonitoringSession, outcomes[0].session_id)
    assert session.failed_attempts == settings.max_provider_retries + 1
    assert session.poll_count == 0


def test_successful_poll_resets_failed_attempts(db, make_route, clock):
    route = make_route()
    failure = ProviderFailure("HTTP_ERROR")
    provider = FakeProvider([failure, failure, TravelResult(1100, 15000)])
    statuses = []
    for _ in range(3):
        statuses.append(execute_poll(db, route.id, clock=clock, provider=provider).status)
        clock.advance(minutes=5)
    assert statuses == [
        PollOutcomeStatus.PROVIDER_FAILURE,
        PollOutcomeStatus.PROVIDER_FAILURE,
        PollOutcomeStatus.POLLED,
    ]
    session = db.query(MonitoringSession).filter_by(route_id=route.id).one()
    assert session.failed_attempts == 0
    assert session.poll_count == 1


def test_racing_polls_of_one_route_record_once(session_factory, make_route):
    route_id = make_route(user_id="racer").id
    clock = FixedClock(utc(MONDAY, 8, 0))
    both_in_flight = threading.Barrier(2, timeout=5)

    class SlowProvider(FakeProvider):
        def fetch_travel_time(self, origin, destination, timeout):
            both_in_flight.wait()
            return super().fetch_travel_time(origin, destination, timeout)

    provider = SlowProvider()

    def poll(_):
        db = session_factory()
        try:
            return execute_poll(db, route_id, clock=clock, provider=provider).status
        finally:
            db.close()

    with ThreadPoolExecutor(max_workers=2) as pool:
        statuses = sorted(s.value for s in pool.map(poll, range(2)))

    assert provider.calls == 2
    assert statuses == ["not_due", "polled"]
    db = session_factory()
    try:
        assert db.query(func.count(PollRecord.id)).scalar() == 1
        assert db.query(UserDailyUsage.used).filter_by(user_id="racer").scalar() == 1
        assert db.query(MonitoringSession.poll_count).filter_by(route_id=route_id).scalar() == 1
    finally:
        db.close()


def test_holiday_session_flag_follows_window_policy(db, make_route, clock):
    holidays = StaticHolidayCalendar([MONDAY.isoformat()])
    route = make_route(exclude_holidays=False)
    outcome = execute_poll(db, route.id, clock=clock, holidays=holidays, provider=FakeProvider())
    assert outcome.status == PollOutcomeStatus.POLLED
    assert db.get(MonitoringSession, outcome.session_id).is_holiday_excluded is False
