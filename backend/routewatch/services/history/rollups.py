"""
Admin rollups across all users: travel-time volatility by (weekday, bucket, provider) and today's
poll count/cost per provider. Read-only.
"""
import logging
import statistics
from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime, timezone, tzinfo

from sqlalchemy import func
from sqlalchemy.orm import Session

from routewatch.config import settings
from routewatch.core.clock import as_utc
from routewatch.core.constants import PROVIDER_GOOGLE_MAPS, PROVIDER_TOMTOM
from routewatch.models.poll_record import PollRecord
from routewatch.models.route import Route, RouteStatus
from routewatch.services.history.baseline import DAY_NAMES, bucket_label, bucket_of, local_zone
from routewatch.services.monitoring.quota import utc_day_bounds

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class VolatilitySlot:
    day_of_week: int
    bucket: int
    provider: str
    mean_duration_seconds: float
    stddev_duration_seconds: float | None
    route_count: int

    def to_dict(self) -> dict:
        return {
            "day_of_week": DAY_NAMES[self.day_of_week],
            "bucket": self.bucket,
            "time_of_day": bucket_label(self.bucket),
            "provider": self.provider,
            "mean_duration_seconds": round(self.mean_duration_seconds, 1),
            "stddev_duration_seconds": (
                round(self.stddev_duration_seconds, 1) if self.stddev_duration_seconds is not None else None
            ),
            "route_count": self.route_count,
        }


@dataclass(frozen=True)
class PollCostSummary:
    as_of_utc: datetime
    provider: str
    total_poll_count: int
    total_estimated_cost_usd: float

    def to_dict(self) -> dict:
        return {
            "as_of_utc": self.as_of_utc.isoformat(),
            "provider": self.provider,
            "total_poll_count": self.total_poll_count,
            "total_estimated_cost_usd": round(self.total_estimated_cost_usd, 6),
        }


def cost_per_poll(provider: str) -> float:
    rates = {
        PROVIDER_GOOGLE_MAPS: settings.cost_per_poll_google_maps,
        PROVIDER_TOMTOM: settings.cost_per_poll_tomtom,
    }
    return rates.get(provider, 0.0)


def get_global_volatility(db: Session, tz: tzinfo | str | None = None) -> list[VolatilitySlot]:
    """
    Non-deleted records of non-deleted routes grouped by local weekday, bucket and provider.
    Stddev (sample) only when a group has more than one record.
    """
    zone = local_zone(tz)
    rows = (
        db.query(PollRecord.route_id, PollRecord.polled_at, PollRecord.travel_duration_seconds, PollRecord.provider)
        .join(Route, Route.id == PollRecord.route_id)
        .filter(
            PollRecord.is_deleted.is_(False),
            Route.monitoring_status != RouteStatus.DELETED.value,
        )
        .all()
    )
    durations: dict[tuple[int, int, str], list[int]] = defaultdict(list)
    routes: dict[tuple[int, int, str], set[int]] = defaultdict(set)
    for route_id, polled_at, duration, provider in rows:
        local = as_utc(polled_at).astimezone(zone)
        key = (local.weekday(), bucket_of(local), provider)
        durations[key].append(duration)
        routes[key].add(route_id)

    out = []
    for key in sorted(durations):
        values = durations[key]
        out.append(
            VolatilitySlot(
                day_of_week=key[0],
                bucket=key[1],
                provider=key[2],
                mean_duration_seconds=float(statistics.mean(values)),
                stddev_duration_seconds=float(statistics.stdev(values)) if len(values) > 1 else None,
                route_count=len(routes[key]),
            )
        )
    return out


def get_poll_cost_summary(db: Session, now_utc: datetime) -> list[PollCostSummary]:
    """Per-provider count of today's (UTC) non-deleted poll records and the estimated spend."""
    now = as_utc(now_utc)
    start, end = utc_day_bounds(now.astimezone(timezone.utc).date())
    rows = (
        db.query(PollRecord.provider, func.count(PollRecord.id))
        .filter(
            PollRecord.is_deleted.is_(False),
            PollRecord.polled_at >= start,
            PollRecord.polled_at < end,
        )
        .group_by(PollRecord.provider)
        .order_by(PollRecord.provider)
        .all()
    )
    return [
        PollCostSummary(
            as_of_utc=now,
            provider=provider,
            total_poll_count=int(count),
            total_estimated_cost_usd=int(count) * cost_per_poll(provider),
        )
        for provider, count in rows
    ]
