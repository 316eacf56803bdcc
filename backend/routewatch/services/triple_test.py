"""
Triple test: fire the same origin/destination query at several offsets from a scheduled instant and
compare. Each shot is its own APScheduler date job (run at scheduled_at + offset) that calls the provider
and saves that shot alone, so one shot failing or hanging never cancels or delays its siblings. Shots
still unresolved at startup are scheduled again.

The ideal shot is the successful shot with the lowest duration (lowest index on a tie). Averages cover
successful shots only; with no successes the ideal index and averages are None. Both are recomputed on
every read from whatever shots have resolved so far.
"""
import logging
import statistics
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Iterable

from apscheduler.schedulers.base import BaseScheduler
from sqlalchemy.orm import Session, sessionmaker

from routewatch.config import settings
from routewatch.core.clock import as_utc
from routewatch.core.constants import SHOT_ERROR_EXCEPTION, SHOT_ERROR_UNKNOWN_PROVIDER, TRIPLE_TEST_JOB_PREFIX
from routewatch.core.errors import NotFoundError, ProviderFailure
from routewatch.models.triple_test import TripleTestSession, TripleTestShot
from routewatch.services.providers import TrafficProvider, get_provider, list_providers

logger = logging.getLogger(__name__)

# A scheduled_at this far in the past still counts as "now" (request latency)
PAST_TOLERANCE_SECONDS = 5


@dataclass(frozen=True)
class ShotResult:
    shot_index: int
    offset_seconds: int
    fired_at: datetime | None
    is_success: bool | None
    duration_seconds: int | None = None
    distance_metres: int | None = None
    error_code: str | None = None

    def to_dict(self) -> dict:
        return {
            "shot_index": self.shot_index,
            "offset_seconds": self.offset_seconds,
            "fired_at": self.fired_at.isoformat() if self.fired_at else None,
            "is_success": self.is_success,
            "duration_seconds": self.duration_seconds,
            "distance_metres": self.distance_metres,
            "error_code": self.error_code,
        }


@dataclass(frozen=True)
class TripleTestSessionResult:
    session_id: int
    origin: str
    destination: str
    provider: str
    scheduled_at: datetime
    shots: list[ShotResult]
    ideal_shot_index: int | None
    average_duration_seconds: float | None
    average_distance_metres: float | None

    @property
    def is_complete(self) -> bool:
        return all(s.is_success is not None for s in self.shots)

    def to_dict(self) -> dict:
        return {
            "session_id": self.session_id,
            "origin": self.origin,
            "destination": self.destination,
            "provider": self.provider,
            "scheduled_at": self.scheduled_at.isoformat(),
            "shots": [s.to_dict() for s in self.shots],
            "ideal_shot_index": self.ideal_shot_index,
            "average_duration_seconds": self.average_duration_seconds,
            "average_distance_metres": self.average_distance_metres,
            "is_complete": self.is_complete,
        }


def summarize_shots(shots: Iterable[ShotResult]) -> tuple[int | None, float | None, float | None]:
    """(ideal_shot_index, average_duration_seconds, average_distance_metres) over successful shots."""
    ok = [s for s in shots if s.is_success and s.duration_seconds is not None]
    if not ok:
        return None, None, None
    ideal = min(ok, key=lambda s: (s.duration_seconds, s.shot_index))
    avg_duration = float(statistics.mean(s.duration_seconds for s in ok))
    distances = [s.distance_metres for s in ok if s.distance_metres is not None]
    avg_distance = float(statistics.mean(distances)) if distances else None
    return ideal.shot_index, avg_duration, avg_distance


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _validate_offsets(offsets: Iterable[int] | None) -> list[int]:
    values = list(settings.triple_test_offsets_seconds if offsets is None else offsets)
    if not values:
        raise ValueError("at least one shot offset is required")
    if any(o < 0 for o in values):
        raise ValueError("shot offsets must be >= 0")
    return values


def create_triple_test(
    db: Session,
    origin: str,
    destination: str,
    provider_id: str,
    scheduled_at: datetime,
    offsets: Iterable[int] | None = None,
    now: datetime | None = None,
) -> int:
    """Persist the session with one unresolved shot per offset. Returns the session id."""
    values = _validate_offsets(offsets)
    if provider_id not in list_providers():
        raise ValueError(f"unknown provider: {provider_id}")
    scheduled_at = as_utc(scheduled_at)
    now = as_utc(now) if now is not None else _utc_now()
    if scheduled_at < now - timedelta(seconds=PAST_TOLERANCE_SECONDS):
        raise ValueError("scheduled_at must not be in the past")
    row = TripleTestSession(
        origin=origin,
        destination=destination,
        provider=provider_id,
        scheduled_at=scheduled_at,
    )
    row.shots = [TripleTestShot(shot_index=i, offset_seconds=o) for i, o in enumerate(values)]
    db.add(row)
    db.commit()
    logger.info("Triple test %s created: %s shots from %s", row.id, len(values), scheduled_at.isoformat())
    return row.id


def shot_job_id(session_id: int, shot_index: int) -> str:
    return f"{TRIPLE_TEST_JOB_PREFIX}:{session_id}:{shot_index}"


def schedule_triple_test(
    scheduler: BaseScheduler,
    session_factory: sessionmaker | Callable[[], Session],
    session_id: int,
    *,
    provider: TrafficProvider | None = None,
    now: Callable[[], datetime] = _utc_now,
) -> list[str]:
    """
    Add one date job per unresolved shot, at scheduled_at + offset (or now, when that has passed).
    Job ids are stable per shot, so scheduling twice replaces rather than duplicates.
    """
    db = session_factory()
    try:
        row = db.get(TripleTestSession, session_id)
        if row is None:
            raise NotFoundError(f"triple test {session_id} not found")
        scheduled_at = as_utc(row.scheduled_at)
        pending = [(s.shot_index, s.offset_seconds) for s in row.shots if s.is_success is None]
    finally:
        db.close()

    current = now()
    job_ids = []
    for index, offset in pending:
        run_at = max(scheduled_at + timedelta(seconds=offset), current)
        job_id = shot_job_id(session_id, index)
        scheduler.add_job(
            fire_shot,
            "date",
            run_date=run_at,
            args=[session_factory, session_id, index],
            kwargs={"provider": provider},
            id=job_id,
            replace_existing=True,
            misfire_grace_time=None,
        )
        job_ids.append(job_id)
    logger.info("Triple test %s: %s shot jobs scheduled", session_id, len(job_ids))
    return job_ids


def fire_shot(
    session_factory: sessionmaker | Callable[[], Session],
    session_id: int,
    shot_index: int,
    *,
    provider: TrafficProvider | None = None,
    timeout: float | None = None,
    now: Callable[[], datetime] = _utc_now,
) -> ShotResult | None:
    """
    Scheduler job for one shot: call the provider and save this shot's outcome. Returns None when the
    shot is missing or already resolved. Never raises into the scheduler.
    """
    try:
        return _fire_shot(session_factory, session_id, shot_index, provider, timeout, now)
    except Exception as e:
        logger.exception("Triple test %s shot %s failed: %s", session_id, shot_index, e)
        return None


def _fire_shot(session_factory, session_id, shot_index, provider, timeout, now) -> ShotResult | None:
    db = session_factory()
    try:
        row = db.get(TripleTestSession, session_id)
        shot = (
            db.query(TripleTestShot)
            .filter(TripleTestShot.session_id == session_id, TripleTestShot.shot_index == shot_index)
            .first()
        )
        if row is None or shot is None:
            logger.warning("Triple test %s shot %s not found, skipping", session_id, shot_index)
            return None
        if shot.is_success is not None:
            logger.info("Triple test %s shot %s already resolved, skipping", session_id, shot_index)
            return None
        origin, destination, provider_id = row.origin, row.destination, row.provider
        offset_seconds = shot.offset_seconds
    finally:
        db.close()

    # No DB session held across the provider call
    fired_at = now()
    result = _call_provider(
        provider, provider_id, origin, destination, timeout, shot_index, offset_seconds, fired_at
    )

    db = session_factory()
    try:
        n = (
            db.query(TripleTestShot)
            .filter(
                TripleTestShot.session_id == session_id,
                TripleTestShot.shot_index == shot_index,
                TripleTestShot.is_success.is_(None),
            )
            .update(
                {
                    TripleTestShot.fired_at: result.fired_at,
                    TripleTestShot.is_success: result.is_success,
                    TripleTestShot.duration_seconds: result.duration_seconds,
                    TripleTestShot.distance_metres: result.distance_metres,
                    TripleTestShot.error_code: result.error_code,
                },
                synchronize_session=False,
            )
        )
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()
    logger.info(
        "Triple test %s shot %s: success=%s duration=%ss%s",
        session_id, shot_index, result.is_success, result.duration_seconds, "" if n else " (already saved)",
    )
    return result


def _call_provider(
    provider: TrafficProvider | None,
    provider_id: str,
    origin: str,
    destination: str,
    timeout: float | None,
    shot_index: int,
    offset_seconds: int,
    fired_at: datetime,
) -> ShotResult:
    if provider is None:
        try:
            provider = get_provider(provider_id)
        except KeyError:
            return ShotResult(shot_index, offset_seconds, fired_at, False, error_code=SHOT_ERROR_UNKNOWN_PROVIDER)
    try:
        travel = provider.fetch_travel_time(origin, destination, timeout or settings.provider_timeout_seconds)
    except ProviderFailure as e:
        return ShotResult(shot_index, offset_seconds, fired_at, False, error_code=e.code)
    except Exception:
        logger.warning("Triple test shot %s raised", shot_index, exc_info=True)
        return ShotResult(shot_index, offset_seconds, fired_at, False, error_code=SHOT_ERROR_EXCEPTION)
    return ShotResult(
        shot_index,
        offset_seconds,
        fired_at,
        True,
        duration_seconds=travel.duration_seconds,
        distance_metres=travel.distance_metres,
    )


def run_triple_test(
    session_factory: sessionmaker | Callable[[], Session],
    scheduler: BaseScheduler,
    origin: str,
    destination: str,
    provider_id: str,
    scheduled_at: datetime | None = None,
    offsets: Iterable[int] | None = None,
    *,
    provider: TrafficProvider | None = None,
    now: Callable[[], datetime] = _utc_now,
) -> TripleTestSessionResult:
    """Create the session and schedule its shots. Returns the session as stored (shots unresolved)."""
    current = now()
    db = session_factory()
    try:
        session_id = create_triple_test(
            db, origin, destination, provider_id, scheduled_at or current, offsets, now=current
        )
    finally:
        db.close()
    schedule_triple_test(scheduler, session_factory, session_id, provider=provider, now=now)
    db = session_factory()
    try:
        return get_triple_test_session(db, session_id)
    finally:
        db.close()


def resume_triple_tests(
    scheduler: BaseScheduler,
    session_factory: sessionmaker | Callable[[], Session],
    now: Callable[[], datetime] = _utc_now,
) -> int:
    """Schedule again every session that still has unresolved shots (after a restart). Returns sessions resumed."""
    db = session_factory()
    try:
        session_ids = [
            r[0]
            for r in db.query(TripleTestShot.session_id)
            .filter(TripleTestShot.is_success.is_(None))
            .distinct()
            .order_by(TripleTestShot.session_id)
            .all()
        ]
    finally:
        db.close()
    for session_id in session_ids:
        schedule_triple_test(scheduler, session_factory, session_id, now=now)
    if session_ids:
        logger.info("Resumed %s triple tests with unresolved shots", len(session_ids))
    return len(session_ids)


def get_triple_test_session(db: Session, session_id: int) -> TripleTestSessionResult:
    row = db.get(TripleTestSession, session_id)
    if row is None:
        raise NotFoundError(f"triple test {session_id} not found")
    shots = [
        ShotResult(
            shot_index=s.shot_index,
            offset_seconds=s.offset_seconds,
            fired_at=as_utc(s.fired_at),
            is_success=s.is_success,
            duration_seconds=s.duration_seconds,
            distance_metres=s.distance_metres,
            error_code=s.error_code,
        )
        for s in sorted(row.shots, key=lambda s: s.shot_index)
    ]
    ideal, avg_duration, avg_distance = summarize_shots(shots)
    return TripleTestSessionResult(
        session_id=row.id,
        origin=row.origin,
        destination=row.destination,
        provider=row.provider,
        scheduled_at=as_utc(row.scheduled_at),
        shots=shots,
        ideal_shot_index=ideal,
        average_duration_seconds=avg_duration,
        average_distance_metres=avg_distance,
    )
