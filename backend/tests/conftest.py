"""
Shared fixtures: a SQLite file database per test, a fixed clock and a scripted provider.
SQLite is opened with check_same_thread=False and a busy timeout so concurrency tests can share it.
"""
import threading
from datetime import date, datetime, time, timedelta, timezone
from zoneinfo import ZoneInfo

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

import routewatch.models  # noqa: F401
from routewatch.core.errors import ProviderFailure
from routewatch.db.base import Base
from routewatch.models import MonitoringWindow, PollRecord, Route
from routewatch.services.monitoring.window import Weekdays
from routewatch.services.providers import TravelResult

# Monday
MONDAY = date(2026, 3, 2)


class FixedClock:
    def __init__(self, now_utc: datetime, tz: str = "UTC"):
        self.tz = ZoneInfo(tz)
        self.current = now_utc

    def now_utc(self) -> datetime:
        return self.current

    def now_local(self) -> datetime:
        return self.current.astimezone(self.tz)

    def set(self, now_utc: datetime) -> None:
        self.current = now_utc

    def advance(self, **kwargs) -> None:
        self.current = self.current + timedelta(**kwargs)


class FakeProvider:
    """Returns scripted results in order (repeating the last); an Exception item is raised instead."""

    provider_id = "mock"

    def __init__(self, results=None):
        self.results = list(results or [TravelResult(duration_seconds=1200, distance_metres=15000)])
        self.calls = 0
        self._lock = threading.Lock()

    def fetch_travel_time(self, origin: str, destination: str, timeout: float) -> TravelResult:
        with self._lock:
            idx = min(self.calls, len(self.results) - 1)
            self.calls += 1
            item = self.results[idx]
        if isinstance(item, Exception):
            raise item
        return item


class FailingProvider(FakeProvider):
    def __init__(self, code: str = "TIMEOUT"):
        super().__init__([ProviderFailure(code, "scripted failure")])


class RecordingScheduler:
    """Keeps add_job calls (by job id, like replace_existing) and runs them on demand, in run_date order."""

    def __init__(self):
        self.jobs = {}

    def add_job(self, func, trigger=None, args=None, kwargs=None, id=None, replace_existing=False, **options):
        self.jobs[id] = {
            "func": func,
            "trigger": trigger,
            "args": list(args or []),
            "kwargs": dict(kwargs or {}),
            **options,
        }

    def run_all(self):
        due = sorted(self.jobs.values(), key=lambda j: j["run_date"])
        self.jobs = {}
        return [j["func"](*j["args"], **j["kwargs"]) for j in due]


def utc(day: date, hh: int, mm: int = 0, ss: int = 0) -> datetime:
    return datetime.combine(day, time(hh, mm, ss), tzinfo=timezone.utc)


@pytest.fixture
def engine(tmp_path):
    eng = create_engine(
        f"sqlite:///{tmp_path / 'routewatch.db'}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )
    Base.metadata.create_all(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    s = session_factory()
    try:
        yield s
    finally:
        s.close()


@pytest.fixture
def clock():
    return FixedClock(utc(MONDAY, 8, 0))


@pytest.fixture
def make_route(db):
    def _make(
        user_id: str = "user-1",
        start: time = time(8, 0),
        end: time = time(9, 0),
        days: Weekdays = Weekdays.ALL,
        provider: str = "mock",
        exclude_holidays: bool = True,
        status: str = "active",
    ) -> Route:
        route = Route(
            user_id=user_id,
            origin_address="Origin",
            origin_coordinates="53.3498,-6.2603",
            destination_address="Destination",
            destination_coordinates="53.2707,-9.0568",
            provider=provider,
            monitoring_status=status,
        )
        route.windows = [
            MonitoringWindow(
                start_time=start,
                end_time=end,
                days_of_week_mask=int(days),
                is_active=True,
                exclude_holidays=exclude_holidays,
            )
        ]
        db.add(route)
        db.commit()
        return route

    return _make


def add_poll_records(db, route, session, polled_ats, durations=None, distance_metres=15000):
    durations = durations or [1200] * len(polled_ats)
    for at, d in zip(polled_ats, durations):
        db.add(
            PollRecord(
                route_id=route.id,
                session_id=session.id,
                polled_at=at,
                travel_duration_seconds=d,
                distance_metres=distance_metres,
                provider=route.provider,
                is_rerouted=False,
                is_deleted=False,
            )
        )
    db.commit()
