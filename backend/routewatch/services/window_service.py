"""
Monitoring windows of a route: list, add, edit, remove.

A window is in use once its route has a session on one of the window's weekdays. From then on its
times, days and holiday policy are frozen (history was collected under them); only is_active can
change, and removing it deactivates instead of deleting. Active windows of one route never overlap.
"""
import logging
from datetime import time

from sqlalchemy.orm import Session

from routewatch.core.errors import ConflictError, InvalidRequestError, NotFoundError
from routewatch.models.monitoring_session import MonitoringSession
from routewatch.models.monitoring_window import MonitoringWindow
from routewatch.models.route import Route, RouteStatus
from routewatch.services.monitoring.window import Weekdays, validate_window_fields, windows_overlap
from routewatch.services.route_service import get_owned_route, window_to_dict

logger = logging.getLogger(__name__)


def get_owned_window(db: Session, window_id: int, user_id: str) -> MonitoringWindow:
    window = (
        db.query(MonitoringWindow)
        .join(Route, Route.id == MonitoringWindow.route_id)
        .filter(
            MonitoringWindow.id == window_id,
            Route.user_id == user_id,
            Route.monitoring_status != RouteStatus.DELETED.value,
        )
        .first()
    )
    if window is None:
        raise NotFoundError(f"window {window_id} not found")
    return window


def window_in_use(db: Session, window: MonitoringWindow) -> bool:
    """True when the route has any session dated on one of this window's weekdays."""
    mask = Weekdays(window.days_of_week_mask & Weekdays.ALL)
    dates = (
        db.query(MonitoringSession.session_date)
        .filter(MonitoringSession.route_id == window.route_id)
        .distinct()
        .all()
    )
    return any(mask.contains_day(d) for (d,) in dates)


def _check_overlap(db: Session, window: MonitoringWindow) -> None:
    if not window.is_active:
        return
    others = (
        db.query(MonitoringWindow)
        .filter(
            MonitoringWindow.route_id == window.route_id,
            MonitoringWindow.is_active.is_(True),
        )
        .all()
    )
    for other in others:
        if other.id != window.id and windows_overlap(window, other):
            raise ConflictError(
                f"window overlaps active window {other.id} "
                f"({other.start_time:%H:%M}-{other.end_time:%H:%M})",
                code="WINDOW_OVERLAP",
            )


def _validated(start_time: time, end_time: time, days_of_week_mask: int) -> None:
    try:
        validate_window_fields(start_time, end_time, days_of_week_mask)
    except ValueError as e:
        raise InvalidRequestError(str(e), code="INVALID_WINDOW")


def list_windows(db: Session, route_id: int, user_id: str) -> list[dict]:
    get_owned_route(db, route_id, user_id)
    rows = (
        db.query(MonitoringWindow)
        .filter(MonitoringWindow.route_id == route_id)
        .order_by(MonitoringWindow.start_time, MonitoringWindow.id)
        .all()
    )
    return [window_to_dict(w) for w in rows]


def create_window(
    db: Session,
    route_id: int,
    user_id: str,
    start_time: time,
    end_time: time,
    days_of_week_mask: int,
    is_active: bool = True,
    exclude_holidays: bool = True,
) -> MonitoringWindow:
    get_owned_route(db, route_id, user_id)
    _validated(start_time, end_time, days_of_week_mask)
    window = MonitoringWindow(
        route_id=route_id,
        start_time=start_time,
        end_time=end_time,
        days_of_week_mask=days_of_week_mask,
        is_active=is_active,
        exclude_holidays=exclude_holidays,
    )
    _check_overlap(db, window)
    db.add(window)
    db.commit()
    db.refresh(window)
    logger.info("Window %s added to route %s (%s-%s)", window.id, route_id, start_time, end_time)
    return window


def update_window(
    db: Session,
    window_id: int,
    user_id: str,
    *,
    start_time: time | None = None,
    end_time: time | None = None,
    days_of_week_mask: int | None = None,
    is_active: bool | None = None,
    exclude_holidays: bool | None = None,
) -> MonitoringWindow:
    window = get_owned_window(db, window_id, user_id)
    schedule_change = {
        k: v
        for k, v in (
            ("start_time", start_time),
            ("end_time", end_time),
            ("days_of_week_mask", days_of_week_mask),
            ("exclude_holidays", exclude_holidays),
        )
        if v is not None and v != getattr(window, k)
    }
    if schedule_change and window_in_use(db, window):
        raise ConflictError(
            f"window {window_id} already has sessions; only is_active can change",
            code="WINDOW_IN_USE",
        )
    with db.no_autoflush:
        for k, v in schedule_change.items():
            setattr(window, k, v)
        if is_active is not None:
            window.is_active = is_active
        try:
            _validated(window.start_time, window.end_time, window.days_of_week_mask)
            _check_overlap(db, window)
        except Exception:
            db.rollback()
            raise
    db.commit()
    db.refresh(window)
    logger.info("Window %s updated (%s)", window_id, ", ".join(schedule_change) or "is_active")
    return window


def delete_window(db: Session, window_id: int, user_id: str) -> bool:
    """Returns True if the row was deleted, False if it was only deactivated (in use)."""
    window = get_owned_window(db, window_id, user_id)
    if window_in_use(db, window):
        window.is_active = False
        db.commit()
        logger.info("Window %s in use; deactivated instead of deleted", window_id)
        return False
    db.delete(window)
    db.commit()
    logger.info("Window %s deleted", window_id)
    return True
