"""Clock and holiday calendar consumed by the scheduler. Both are injectable for tests."""
from datetime import date, datetime, timezone
from typing import Iterable, Protocol
from zoneinfo import ZoneInfo


class Clock(Protocol):
    def now_utc(self) -> datetime:
        ...

    def now_local(self) -> datetime:
        ...


class SystemClock:
    """Wall clock. Local instants are in the configured monitoring timezone."""

    def __init__(self, tz_name: str = "UTC"):
        self.tz = ZoneInfo(tz_name)

    def now_utc(self) -> datetime:
        return datetime.now(timezone.utc)

    def now_local(self) -> datetime:
        return datetime.now(self.tz)


class HolidayCalendar(Protocol):
    def is_holiday(self, day: date) -> bool:
        ...


class StaticHolidayCalendar:
    """Holiday set from config (ISO dates). Unparseable entries are ignored."""

    def __init__(self, dates: Iterable[str | date] = ()):
        self._dates: set[date] = set()
        for d in dates:
            if isinstance(d, date):
                self._dates.add(d)
                continue
            try:
                self._dates.add(date.fromisoformat(str(d).strip()))
            except ValueError:
                continue

    def is_holiday(self, day: date) -> bool:
        return day in self._dates


def as_utc(dt: datetime | None) -> datetime | None:
    """Attach UTC to naive datetimes read back from the DB (SQLite drops tzinfo)."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)
