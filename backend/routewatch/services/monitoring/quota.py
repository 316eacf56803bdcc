"""
Per-user daily poll quota (UTC day).

Usage is the count of the user's poll records for the day, mirrored in user_daily_usage so that
check-and-increment is one guarded UPDATE:

    UPDATE user_daily_usage SET used = used + :units
    WHERE user_id = :u AND usage_date = :d AND used + :units <= :limit

rowcount 1 means consumed; 0 means the limit would be exceeded and nothing changed. Concurrent
writers on the same (user, day) serialize on that row, so accepted units never exceed the limit.
"""
import enum
import logging
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone

from sqlalchemy import func, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from routewatch.config import settings
from routewatch.models.poll_record import PollRecord
from routewatch.models.route import Route
from routewatch.models.user_daily_usage import UserDailyUsage

logger = logging.getLogger(__name__)


class QuotaDecision(str, enum.Enum):
    CONSUMED = "consumed"
    QUOTA_EXCEEDED = "quota_exceeded"


@dataclass(frozen=True)
class QuotaStatus:
    daily_limit: int
    used_today: int
    remaining: int
    resets_at_utc: datetime

    def to_dict(self) -> dict:
        return {
            "daily_limit": self.daily_limit,
            "used_today": self.used_today,
            "remaining": self.remaining,
            "resets_at_utc": self.resets_at_utc.isoformat(),
        }


def _limit(daily_limit: int | None) -> int:
    return settings.daily_quota_limit if daily_limit is None else daily_limit


def utc_day_bounds(usage_date: date) -> tuple[datetime, datetime]:
    start = datetime.combine(usage_date, time.min, tzinfo=timezone.utc)
    return start, start + timedelta(days=1)


def count_user_poll_records(db: Session, user_id: str, usage_date: date) -> int:
    """Poll records created for this user's routes on the UTC day (soft-deleted rows still count)."""
    start, end = utc_day_bounds(usage_date)
    n = (
        db.query(func.count(PollRecord.id))
        .join(Route, Route.id == PollRecord.route_id)
        .filter(
            Route.user_id == user_id,
            PollRecord.polled_at >= start,
            PollRecord.polled_at < end,
        )
        .scalar()
    )
    return int(n or 0)


def ensure_usage_row(db: Session, user_id: str, usage_date: date) -> None:
    """
    Insert-if-absent for the (user, day) counter, seeded from the poll record count.
    Commits. A losing concurrent creator hits the unique constraint and keeps the winner's row.
    """
    exists = (
        db.query(UserDailyUsage.id)
        .filter(UserDailyUsage.user_id == user_id, UserDailyUsage.usage_date == usage_date)
        .first()
    )
    if exists:
        return
    used = count_user_poll_records(db, user_id, usage_date)
    db.add(UserDailyUsage(user_id=user_id, usage_date=usage_date, used=used))
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        logger.debug("user_daily_usage row for %s/%s created concurrently", user_id, usage_date)


def reserve_units(db: Session, user_id: str, usage_date: date, units: int, daily_limit: int | None = None) -> bool:
    """
    Guarded increment inside the caller's transaction (no commit). True when reserved.
    Call ensure_usage_row first; a missing row reserves nothing.
    """
    limit = _limit(daily_limit)
    stmt = (
        update(UserDailyUsage)
        .where(
            UserDailyUsage.user_id == user_id,
            UserDailyUsage.usage_date == usage_date,
            UserDailyUsage.used + units <= limit,
        )
        .values(used=UserDailyUsage.used + units)
        .execution_options(synchronize_session=False)
    )
    return db.execute(stmt).rowcount == 1


def try_consume(
    db: Session,
    user_id: str,
    usage_date: date,
    units: int = 1,
    daily_limit: int | None = None,
) -> QuotaDecision:
    """Atomically consume units for the user's UTC day, or reject with no mutation."""
    if units < 1:
        raise ValueError("units must be >= 1")
    limit = _limit(daily_limit)
    ensure_usage_row(db, user_id, usage_date)
    if reserve_units(db, user_id, usage_date, units, limit):
        db.commit()
        return QuotaDecision.CONSUMED
    db.rollback()
    logger.info("Quota exceeded for user %s on %s (limit=%s)", user_id, usage_date, limit)
    return QuotaDecision.QUOTA_EXCEEDED


def get_usage(db: Session, user_id: str, usage_date: date) -> int:
    row = (
        db.query(UserDailyUsage.used)
        .filter(UserDailyUsage.user_id == user_id, UserDailyUsage.usage_date == usage_date)
        .first()
    )
    if row is not None:
        return int(row[0])
    return count_user_poll_records(db, user_id, usage_date)


def has_capacity(db: Session, user_id: str, usage_date: date, units: int = 1, daily_limit: int | None = None) -> bool:
    """Read-only pre-check. Admission is still decided by reserve_units."""
    return get_usage(db, user_id, usage_date) + units <= _limit(daily_limit)


def get_quota_status(db: Session, user_id: str, now_utc: datetime, daily_limit: int | None = None) -> QuotaStatus:
    limit = _limit(daily_limit)
    today = now_utc.astimezone(timezone.utc).date()
    used = get_usage(db, user_id, today)
    _, resets_at = utc_day_bounds(today)
    return QuotaStatus(
        daily_limit=limit,
        used_today=used,
        remaining=max(0, limit - used),
        resets_at_utc=resets_at,
    )
