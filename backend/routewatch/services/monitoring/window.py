"""
Window eligibility: a pure predicate over (window, local instant, holiday flag).

- Inactive windows fail closed.
- The instant's weekday must be in the window's Weekdays mask.
- start_time <= time-of-day < end_time (end is exclusive; windows never wrap midnight).
- Holidays exclude the window when its exclude_holidays policy is on.
Overlapping windows are not rejected here; each qualifies on its own. Window writes use
validate_window_fields and windows_overlap to keep one active window per route at any instant.
"""
import enum
from datetime import date, datetime, time
from typing import Iterable, Protocol


class Weekdays(enum.IntFlag):
    """Day-of-week set stored as a 7-bit mask: bit 0 = Monday .. bit 6 = Sunday."""

    NONE = 0
    MONDAY = 1 << 0
    TUESDAY = 1 << 1
    WEDNESDAY = 1 << 2
    THURSDAY = 1 << 3
    FRIDAY = 1 << 4
    SATURDAY = 1 << 5
    SUNDAY = 1 << 6

    WORKDAYS = MONDAY | TUESDAY | WEDNESDAY | THURSDAY | FRIDAY
    WEEKEND = SATURDAY | SUNDAY
    ALL = WORKDAYS | WEEKEND

    @classmethod
    def from_weekday(cls, weekday: int) -> "Weekdays":
        """Python weekday (Monday=0) to its flag."""
        if not 0 <= weekday <= 6:
            raise ValueError(f"weekday out of range: {weekday}")
        return cls(1 << weekday)

    @classmethod
    def for_date(cls, day: date) -> "Weekdays":
        return cls.from_weekday(day.weekday())

    @classmethod
    def of(cls, weekdays: Iterable[int]) -> "Weekdays":
        mask = cls.NONE
        for wd in weekdays:
            mask |= cls.from_weekday(wd)
        return mask

    def contains_day(self, day: date) -> bool:
        return bool(self & Weekdays.for_date(day))


class WindowLike(Protocol):
    start_time: time
    end_time: time
    days_of_week_mask: int
    is_active: bool
    exclude_holidays: bool


def is_eligible(window: WindowLike, now_local: datetime, is_holiday: bool = False) -> bool:
    """True when polling is allowed for this window at now_local. No side effects."""
    if not window.is_active:
        return False
    if not Weekdays(window.days_of_week_mask & Weekdays.ALL).contains_day(now_local.date()):
        return False
    tod = now_local.time().replace(tzinfo=None)
    if not (window.start_time <= tod < window.end_time):
        return False
    if is_holiday and _excludes_holidays(window):
        return False
    return True


def _excludes_holidays(window: WindowLike) -> bool:
    # Unset policy (e.g. a transient object) defaults to excluding holidays
    policy = getattr(window, "exclude_holidays", None)
    return True if policy is None else bool(policy)


def eligible_windows(windows: Iterable[WindowLike], now_local: datetime, is_holiday: bool = False) -> list:
    """Windows qualifying at now_local, earliest start first."""
    return sorted(
        (w for w in windows if is_eligible(w, now_local, is_holiday)),
        key=lambda w: (w.start_time, w.end_time),
    )


def validate_window_fields(start_time: time, end_time: time, days_of_week_mask: int) -> None:
    """Raise ValueError unless start < end on the same day and at least one weekday is set."""
    if not start_time < end_time:
        raise ValueError("end_time must be after start_time (windows never wrap midnight)")
    if not 0 < days_of_week_mask <= Weekdays.ALL:
        raise ValueError("days_of_week_mask must select at least one weekday (1..127)")


def windows_overlap(a: WindowLike, b: WindowLike) -> bool:
    """Share a weekday and a stretch of time-of-day (end exclusive)."""
    if not (a.days_of_week_mask & b.days_of_week_mask & Weekdays.ALL):
        return False
    return a.start_time < b.end_time and b.start_time < a.end_time
