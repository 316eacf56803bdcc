"""
Per-route travel-time baseline by weekday and 5-minute bucket of the local day.
Derived on demand from poll records; never stored.

A route needs poll records from at least baseline_min_session_count distinct sessions on the requested
weekday before any slot is returned. Below that the response has session_count set and no slots, which
callers read as "no baseline yet" rather than an error.
"""
import logging
import statistics
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timedelta, tzinfo
from typing import Iterable, Protocol
from zoneinfo import ZoneInfo

from sqlalchemy.orm import Session

from routewatch.config import settings
from routewatch.core.clock import as_utc
from routewatch.core.constants import BUCKET_MINUTES, OPTIMAL_BAND_FRACTION
from routewatch.models.poll_record import PollRecord

logger = logging.getLogger(__name__)

DAY_NAMES = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")


class BaselineRecordLike(Protocol):
    session_id: int
    polled_at: datetime
    travel_duration_seconds: int


@dataclass(frozen=True)
class BaselineSlot:
    bucket: int  # 0..287, minutes-of-day // 5
    mean_duration_seconds: float
    stddev_duration_seconds: float | None
    sample_count: int
    session_count: int

    @property
    def time_of_day(self) -> str:
        return bucket_label(self.bucket)

    def to_dict(self) -> dict:
        return {
            "bucket": self.bucket,
            "time_of_day": self.time_of_day,
            "mean_duration_seconds": round(self.mean_duration_seconds, 1),
            "stddev_duration_seconds": (
                round(self.stddev_duration_seconds, 1) if self.stddev_duration_seconds is not None else None
            ),
            "sample_count": self.sample_count,
            "session_count": self.session_count,
        }


@dataclass(frozen=True)
class BaselineResponse:
    route_id: int
    day_of_week: int  # 0 = Monday
    session_count: int
    slots: list[BaselineSlot] = field(default_factory=list)

    @property
    def has_baseline(self) -> bool:
        return bool(self.slots)

    def to_dict(self) -> dict:
        return {
            "route_id": self.route_id,
            "day_of_week": DAY_NAMES[self.day_of_week],
            "session_count": self.session_count,
            "has_baseline": self.has_baseline,
            "slots": [s.to_dict() for s in self.slots],
        }


@dataclass(frozen=True)
class OptimalDeparture:
    day_of_week: int
    start_bucket: int
    end_bucket: int  # inclusive
    min_mean_duration_seconds: float
    band_low_seconds: float
    band_high_seconds: float

    def to_dict(self) -> dict:
        return {
            "day_of_week": DAY_NAMES[self.day_of_week],
            "start_bucket": self.start_bucket,
            "end_bucket": self.end_bucket,
            "start_time": bucket_label(self.start_bucket),
            "end_time": bucket_label(self.end_bucket + 1),
            "min_mean_duration_seconds": round(self.min_mean_duration_seconds, 1),
            "band_low_seconds": round(self.band_low_seconds, 1),
            "band_high_seconds": round(self.band_high_seconds, 1),
        }


def bucket_of(local_dt: datetime) -> int:
    return (local_dt.hour * 60 + local_dt.minute) // BUCKET_MINUTES


def bucket_label(bucket: int) -> str:
    minutes = (bucket * BUCKET_MINUTES) % (24 * 60)
    return f"{minutes // 60:02d}:{minutes % 60:02d}"


def parse_day_of_week(value: str | int) -> int:
    """'monday' / 'Mon' / 0..6 -> 0..6 (Monday = 0). Raises ValueError otherwise."""
    if isinstance(value, int):
        day = value
    else:
        v = str(value).strip().lower()
        if v.isdigit():
            day = int(v)
        else:
            matches = [i for i, name in enumerate(DAY_NAMES) if len(v) >= 3 and name.startswith(v)]
            if len(matches) != 1:
                raise ValueError(f"invalid day of week: {value!r}")
            day = matches[0]
    if not 0 <= day <= 6:
        raise ValueError(f"invalid day of week: {value!r}")
    return day


def local_zone(tz: tzinfo | str | None) -> tzinfo:
    if tz is None:
        return ZoneInfo(settings.local_timezone)
    if isinstance(tz, str):
        return ZoneInfo(tz)
    return tz


def compute_baseline(
    route_id: int,
    day_of_week: int,
    records: Iterable[BaselineRecordLike],
    tz: tzinfo | str | None = None,
    min_session_count: int | None = None,
) -> BaselineResponse:
    """
    Pure aggregation. Soft-deleted records and records from other routes (when they carry route_id) are skipped.
    Stddev is the sample standard deviation and only reported for buckets with 2+ records.
    """
    zone = local_zone(tz)
    min_sessions = settings.baseline_min_session_count if min_session_count is None else min_session_count

    durations: dict[int, list[int]] = defaultdict(list)
    bucket_sessions: dict[int, set[int]] = defaultdict(set)
    sessions: set[int] = set()
    for r in records:
        if getattr(r, "is_deleted", False):
            continue
        rid = getattr(r, "route_id", None)
        if rid is not None and rid != route_id:
            continue
        local = as_utc(r.polled_at).astimezone(zone)
        if local.weekday() != day_of_week:
            continue
        b = bucket_of(local)
        durations[b].append(r.travel_duration_seconds)
        bucket_sessions[b].add(r.session_id)
        sessions.add(r.session_id)

    if len(sessions) < min_sessions:
        logger.debug(
            "Route %s %s: %s sessions < %s, no baseline",
            route_id, DAY_NAMES[day_of_week], len(sessions), min_sessions,
        )
        return BaselineResponse(route_id=route_id, day_of_week=day_of_week, session_count=len(sessions), slots=[])

    slots = []
    for b in sorted(durations):
        values = durations[b]
        slots.append(
            BaselineSlot(
                bucket=b,
                mean_duration_seconds=float(statistics.mean(values)),
                stddev_duration_seconds=float(statistics.stdev(values)) if len(values) >= 2 else None,
                sample_count=len(values),
                session_count=len(bucket_sessions[b]),
            )
        )
    return BaselineResponse(route_id=route_id, day_of_week=day_of_week, session_count=len(sessions), slots=slots)


def get_baseline(
    db: Session,
    route_id: int,
    day_of_week: int,
    now_utc: datetime,
    lookback_days: int | None = None,
    min_session_count: int | None = None,
    tz: tzinfo | str | None = None,
) -> BaselineResponse:
    """Baseline over the route's non-deleted records within the lookback window."""
    days = settings.baseline_lookback_days if lookback_days is None else lookback_days
    since = as_utc(now_utc) - timedelta(days=days)
    records = (
        db.query(PollRecord)
        .filter(
            PollRecord.route_id == route_id,
            PollRecord.is_deleted.is_(False),
            PollRecord.polled_at >= since,
        )
        .all()
    )
    return compute_baseline(route_id, day_of_week, records, tz=tz, min_session_count=min_session_count)


def find_optimal_window(
    baseline: BaselineResponse, band_fraction: float = OPTIMAL_BAND_FRACTION
) -> OptimalDeparture | None:
    """
    Longest run of consecutive buckets whose mean is within band_fraction of the lowest mean.
    Earliest run wins a tie. None when there is no baseline.
    """
    if not baseline.slots:
        return None
    min_mean = min(s.mean_duration_seconds for s in baseline.slots)
    threshold = min_mean * (1.0 + band_fraction)
    qualifying = sorted(s.bucket for s in baseline.slots if s.mean_duration_seconds <= threshold)

    best_start = best_end = cur_start = cur_end = qualifying[0]
    for b in qualifying[1:]:
        if b == cur_end + 1:
            cur_end = b
            continue
        if cur_end - cur_start > best_end - best_start:
            best_start, best_end = cur_start, cur_end
        cur_start = cur_end = b
    if cur_end - cur_start > best_end - best_start:
        best_start, best_end = cur_start, cur_end

    return OptimalDeparture(
        day_of_week=baseline.day_of_week,
        start_bucket=best_start,
        end_bucket=best_end,
        min_mean_duration_seconds=min_mean,
        band_low_seconds=min_mean * (1.0 - band_fraction),
        band_high_seconds=min_mean * (1.0 + band_fraction),
    )


def get_optimal_departure(db: Session, route_id: int, day_of_week: int, now_utc: datetime) -> OptimalDeparture | None:
    return find_optimal_window(get_baseline(db, route_id, day_of_week, now_utc))
