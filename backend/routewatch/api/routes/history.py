"""Per-route history: weekday baseline, optimal departure window, raw poll records and sessions."""
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from routewatch.api.deps import get_clock, get_user_id
from routewatch.core.clock import Clock
from routewatch.core.errors import MonitoringError, monitoring_error_to_http
from routewatch.db.session import get_db
from routewatch.services.history.baseline import DAY_NAMES, get_baseline, get_optimal_departure, parse_day_of_week
from routewatch.services.history.poll_history import POLL_HISTORY_PAGE_SIZE, get_poll_history, get_sessions
from routewatch.services.route_service import get_owned_route

router = APIRouter()


def _day(day: str | None, clock: Clock) -> int:
    if day is None:
        return clock.now_local().weekday()
    try:
        return parse_day_of_week(day)
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))


@router.get("/routes/{route_id}/baseline")
def route_baseline(
    route_id: int,
    day: str | None = Query(None, description="Weekday name or 0-6 (Monday=0); default today"),
    db: Session = Depends(get_db),
    user_id: str = Depends(get_user_id),
    clock: Clock = Depends(get_clock),
) -> dict[str, Any]:
    """Empty slots with has_baseline=false means too few sessions yet, not an error."""
    dow = _day(day, clock)
    try:
        get_owned_route(db, route_id, user_id)
    except MonitoringError as e:
        raise monitoring_error_to_http(e)
    return get_baseline(db, route_id, dow, clock.now_utc()).to_dict()


@router.get("/routes/{route_id}/optimal-departure")
def route_optimal_departure(
    route_id: int,
    day: str | None = Query(None),
    db: Session = Depends(get_db),
    user_id: str = Depends(get_user_id),
    clock: Clock = Depends(get_clock),
) -> dict[str, Any]:
    dow = _day(day, clock)
    try:
        get_owned_route(db, route_id, user_id)
    except MonitoringError as e:
        raise monitoring_error_to_http(e)
    optimal = get_optimal_departure(db, route_id, dow, clock.now_utc())
    return {
        "route_id": route_id,
        "day_of_week": DAY_NAMES[dow],
        "optimal": optimal.to_dict() if optimal else None,
    }


@router.get("/routes/{route_id}/poll-history")
def route_poll_history(
    route_id: int,
    page: int = Query(1, ge=1),
    page_size: int = Query(POLL_HISTORY_PAGE_SIZE, ge=1, le=100),
    db: Session = Depends(get_db),
    user_id: str = Depends(get_user_id),
) -> dict[str, Any]:
    """Newest first. Records removed by retention pruning are not listed."""
    try:
        return get_poll_history(db, route_id, user_id, page, page_size).to_dict()
    except MonitoringError as e:
        raise monitoring_error_to_http(e)


@router.get("/routes/{route_id}/sessions")
def route_sessions(
    route_id: int,
    db: Session = Depends(get_db),
    user_id: str = Depends(get_user_id),
) -> dict[str, Any]:
    try:
        sessions = get_sessions(db, route_id, user_id)
    except MonitoringError as e:
        raise monitoring_error_to_http(e)
    return {"route_id": route_id, "sessions": sessions, "count": len(sessions)}
