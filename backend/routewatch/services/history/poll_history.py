"""Raw per-route history: paged poll records (newest first) and the route's daily sessions."""
from sqlalchemy.orm import Session

from routewatch.core.clock import as_utc
from routewatch.models.monitoring_session import MonitoringSession
from routewatch.models.poll_record import PollRecord
from routewatch.services.maintenance.retention import poll_records_query
from routewatch.services.paging import PagedResult, paginate
from routewatch.services.route_service import get_owned_route

POLL_HISTORY_PAGE_SIZE = 50


def _iso(dt):
    return as_utc(dt).isoformat() if dt is not None else None


def poll_record_to_dict(r: PollRecord) -> dict:
    return {
        "id": r.id,
        "session_id": r.session_id,
        "polled_at": _iso(r.polled_at),
        "travel_duration_seconds": r.travel_duration_seconds,
        "distance_metres": r.distance_metres,
        "provider": r.provider,
        "is_rerouted": r.is_rerouted,
    }


def session_to_dict(s: MonitoringSession) -> dict:
    return {
        "id": s.id,
        "session_date": s.session_date.isoformat(),
        "state": s.state,
        "first_poll_at": _iso(s.first_poll_at),
        "last_poll_at": _iso(s.last_poll_at),
        "poll_count": s.poll_count,
        "quota_consumed": s.quota_consumed,
        "is_holiday_excluded": s.is_holiday_excluded,
    }


def get_poll_history(
    db: Session, route_id: int, user_id: str, page: int | None = None, page_size: int | None = None
) -> PagedResult:
    """Pruned (soft-deleted) records are not returned."""
    get_owned_route(db, route_id, user_id)
    q = (
        poll_records_query(db)
        .filter(PollRecord.route_id == route_id)
        .order_by(PollRecord.polled_at.desc(), PollRecord.id.desc())
    )
    return paginate(q, page, page_size or POLL_HISTORY_PAGE_SIZE, poll_record_to_dict)


def get_sessions(db: Session, route_id: int, user_id: str) -> list[dict]:
    get_owned_route(db, route_id, user_id)
    rows = (
        db.query(MonitoringSession)
        .filter(MonitoringSession.route_id == route_id)
        .order_by(MonitoringSession.session_date.desc())
        .all()
    )
    return [session_to_dict(s) for s in rows]
