"""
Routes owned by a user: create (with its first window), list, update, soft-delete, plus the lookups
shared by the API and the poll tick.

A deleted route keeps its rows for history and retention; it just stops being visible or pollable, and
any open session for it is completed.
"""
import logging
from datetime import datetime, time

from sqlalchemy.orm import Session

from routewatch.core.errors import ConflictError, InvalidRequestError, NotFoundError
from routewatch.models.monitoring_session import MonitoringSession, SessionState
from routewatch.models.monitoring_window import MonitoringWindow
from routewatch.models.route import Route, RouteStatus
from routewatch.services.history.baseline import DAY_NAMES
from routewatch.services.monitoring.window import Weekdays, eligible_windows, validate_window_fields
from routewatch.services.paging import PagedResult, paginate
from routewatch.services.providers import list_providers

logger = logging.getLogger(__name__)

# Initial window when the caller gives none: weekday mornings
DEFAULT_WINDOW_START = time(7, 0)
DEFAULT_WINDOW_END = time(9, 0)
DEFAULT_DAYS_MASK = int(Weekdays.WORKDAYS)


def window_to_dict(w: MonitoringWindow) -> dict:
    mask = Weekdays(w.days_of_week_mask & Weekdays.ALL)
    return {
        "id": w.id,
        "route_id": w.route_id,
        "start_time": w.start_time.strftime("%H:%M"),
        "end_time": w.end_time.strftime("%H:%M"),
        "days_of_week_mask": w.days_of_week_mask,
        "days_of_week": [DAY_NAMES[i] for i in range(7) if mask & Weekdays.from_weekday(i)],
        "is_active": w.is_active,
        "exclude_holidays": w.exclude_holidays,
    }


def route_to_dict(r: Route) -> dict:
    return {
        "id": r.id,
        "origin_address": r.origin_address,
        "origin_coordinates": r.origin_coordinates,
        "destination_address": r.destination_address,
        "destination_coordinates": r.destination_coordinates,
        "provider": r.provider,
        "monitoring_status": r.monitoring_status,
        "created_at": r.created_at.isoformat() if r.created_at else None,
        "windows": [window_to_dict(w) for w in sorted(r.windows, key=lambda w: w.id)],
    }


def get_owned_route(db: Session, route_id: int, user_id: str) -> Route:
    """Route owned by user_id and not deleted. Raises NotFoundError otherwise (no ownership leak)."""
    route = (
        db.query(Route)
        .filter(
            Route.id == route_id,
            Route.user_id == user_id,
            Route.monitoring_status != RouteStatus.DELETED.value,
        )
        .first()
    )
    if route is None:
        raise NotFoundError(f"route {route_id} not found")
    return route


def list_pollable_route_ids(db: Session, now_local: datetime, is_holiday: bool = False) -> list[int]:
    """Active routes with at least one window eligible right now."""
    rows = (
        db.query(MonitoringWindow)
        .join(Route, Route.id == MonitoringWindow.route_id)
        .filter(
            Route.monitoring_status == RouteStatus.ACTIVE.value,
            MonitoringWindow.is_active.is_(True),
        )
        .all()
    )
    return sorted({w.route_id for w in eligible_windows(rows, now_local, is_holiday)})


def _check_coordinates(value: str) -> str:
    """'lat,lon' with lat in [-90, 90] and lon in [-180, 180]."""
    text = (value or "").strip()
    parts = text.split(",")
    try:
        lat, lon = (float(p) for p in parts)
    except ValueError:
        raise InvalidRequestError(f"coordinates must be 'lat,lon': {value!r}", code="INVALID_COORDINATES")
    if not (-90.0 <= lat <= 90.0 and -180.0 <= lon <= 180.0):
        raise InvalidRequestError(f"coordinates out of range: {value!r}", code="INVALID_COORDINATES")
    return text


def _check_provider(provider: str) -> str:
    if provider not in list_providers():
        raise InvalidRequestError(f"unknown provider: {provider}", code="UNKNOWN_PROVIDER")
    return provider


def _check_route_identity(db: Session, route: Route) -> None:
    if route.origin_coordinates == route.destination_coordinates:
        raise InvalidRequestError("origin and destination are the same point", code="SAME_COORDINATES")
    q = db.query(Route.id).filter(
        Route.user_id == route.user_id,
        Route.origin_coordinates == route.origin_coordinates,
        Route.destination_coordinates == route.destination_coordinates,
        Route.provider == route.provider,
        Route.monitoring_status != RouteStatus.DELETED.value,
    )
    if route.id is not None:
        q = q.filter(Route.id != route.id)
    if q.first() is not None:
        raise ConflictError("an identical route already exists", code="DUPLICATE_ROUTE")


def create_route(
    db: Session,
    user_id: str,
    origin_coordinates: str,
    destination_coordinates: str,
    provider: str,
    origin_address: str = "",
    destination_address: str = "",
    start_time: time = DEFAULT_WINDOW_START,
    end_time: time = DEFAULT_WINDOW_END,
    days_of_week_mask: int = DEFAULT_DAYS_MASK,
    exclude_holidays: bool = True,
) -> Route:
    """New active route with its first monitoring window, so the poll tick picks it up straight away."""
    try:
        validate_window_fields(start_time, end_time, days_of_week_mask)
    except ValueError as e:
        raise InvalidRequestError(str(e), code="INVALID_WINDOW")
    route = Route(
        user_id=user_id,
        origin_address=origin_address or "",
        origin_coordinates=_check_coordinates(origin_coordinates),
        destination_address=destination_address or "",
        destination_coordinates=_check_coordinates(destination_coordinates),
        provider=_check_provider(provider),
        monitoring_status=RouteStatus.ACTIVE.value,
    )
    _check_route_identity(db, route)
    route.windows = [
        MonitoringWindow(
            start_time=start_time,
            end_time=end_time,
            days_of_week_mask=days_of_week_mask,
            is_active=True,
            exclude_holidays=exclude_holidays,
        )
    ]
    db.add(route)
    db.commit()
    db.refresh(route)
    logger.info(
        "Route %s created for user %s with window %s-%s",
        route.id, user_id, start_time.strftime("%H:%M"), end_time.strftime("%H:%M"),
    )
    return route


def list_routes(db: Session, user_id: str, page: int | None = None, page_size: int | None = None) -> PagedResult:
    q = (
        db.query(Route)
        .filter(Route.user_id == user_id, Route.monitoring_status != RouteStatus.DELETED.value)
        .order_by(Route.created_at.desc(), Route.id.desc())
    )
    return paginate(q, page, page_size, route_to_dict)


def update_route(
    db: Session,
    route_id: int,
    user_id: str,
    *,
    origin_address: str | None = None,
    origin_coordinates: str | None = None,
    destination_address: str | None = None,
    destination_coordinates: str | None = None,
    provider: str | None = None,
    monitoring_status: str | None = None,
) -> Route:
    """Change only the fields given. Status may move between active and paused; deletion is delete_route."""
    route = get_owned_route(db, route_id, user_id)
    if monitoring_status not in (None, RouteStatus.ACTIVE.value, RouteStatus.PAUSED.value):
        raise InvalidRequestError(f"status must be active or paused: {monitoring_status}", code="INVALID_STATUS")
    try:
        with db.no_autoflush:
            if origin_address is not None:
                route.origin_address = origin_address
            if destination_address is not None:
                route.destination_address = destination_address
            if origin_coordinates is not None:
                route.origin_coordinates = _check_coordinates(origin_coordinates)
            if destination_coordinates is not None:
                route.destination_coordinates = _check_coordinates(destination_coordinates)
            if provider is not None:
                route.provider = _check_provider(provider)
            if monitoring_status is not None:
                route.monitoring_status = monitoring_status
            _check_route_identity(db, route)
    except Exception:
        db.rollback()
        raise
    db.commit()
    db.refresh(route)
    logger.info("Route %s updated by user %s", route.id, user_id)
    return route


def delete_route(db: Session, route_id: int, user_id: str) -> None:
    """Soft delete: status -> deleted, open sessions completed. Poll records stay for history and retention."""
    route = get_owned_route(db, route_id, user_id)
    route.monitoring_status = RouteStatus.DELETED.value
    closed = (
        db.query(MonitoringSession)
        .filter(
            MonitoringSession.route_id == route.id,
            MonitoringSession.state != SessionState.COMPLETED.value,
        )
        .update({MonitoringSession.state: SessionState.COMPLETED.value}, synchronize_session=False)
    )
    db.commit()
    logger.info("Route %s soft-deleted by user %s (%s open sessions completed)", route_id, user_id, closed)
