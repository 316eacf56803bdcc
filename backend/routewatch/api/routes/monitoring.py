"""
Monitoring: start a window, stop a session, poll a route now, live check.
Expected rejections map to 4xx (quota -> 429) with {"error", "message"} detail.
"""
import logging
from typing import Any

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from routewatch.api.deps import get_clock, get_holidays, get_user_id
from routewatch.core.clock import Clock, HolidayCalendar
from routewatch.core.errors import (
    OUTCOME_STATUS_CODES,
    MonitoringError,
    PollOutcomeStatus,
    ProviderFailure,
    monitoring_error_to_http,
)
from routewatch.db.session import get_db
from routewatch.services.monitoring.scheduler import check_now, execute_poll
from routewatch.services.monitoring.sessions import start_window, stop_session
from routewatch.services.route_service import get_owned_route

router = APIRouter()
logger = logging.getLogger(__name__)


@router.post("/windows/{window_id}/start")
def start_monitoring_window(
    window_id: int,
    db: Session = Depends(get_db),
    user_id: str = Depends(get_user_id),
    clock: Clock = Depends(get_clock),
    holidays: HolidayCalendar = Depends(get_holidays),
) -> dict[str, Any]:
    """Open (or return) today's session for the window's route."""
    try:
        result = start_window(db, window_id, user_id, clock.now_local(), clock.now_utc(), holidays=holidays)
    except MonitoringError as e:
        raise monitoring_error_to_http(e)
    return {
        "session_id": result.session_id,
        "session_state": result.session_state,
        "quota_remaining": result.quota_remaining,
        "created": result.created,
    }


@router.post("/sessions/{session_id}/stop")
def stop_monitoring_session(
    session_id: int,
    db: Session = Depends(get_db),
    user_id: str = Depends(get_user_id),
) -> dict[str, Any]:
    try:
        row = stop_session(db, session_id, user_id)
    except MonitoringError as e:
        raise monitoring_error_to_http(e)
    return {"session_id": row.id, "session_state": row.state, "poll_count": row.poll_count}


@router.post("/routes/{route_id}/poll")
def poll_route(
    route_id: int,
    db: Session = Depends(get_db),
    user_id: str = Depends(get_user_id),
    clock: Clock = Depends(get_clock),
    holidays: HolidayCalendar = Depends(get_holidays),
) -> dict[str, Any]:
    """Run one poll through the same path as the scheduler tick."""
    try:
        get_owned_route(db, route_id, user_id)
    except MonitoringError as e:
        raise monitoring_error_to_http(e)
    outcome = execute_poll(db, route_id, clock=clock, holidays=holidays)
    if outcome.status != PollOutcomeStatus.POLLED:
        logger.info("Manual poll of route %s rejected: %s", route_id, outcome.status.value)
        raise HTTPException(
            status_code=OUTCOME_STATUS_CODES[outcome.status],
            detail={"error": outcome.status.value.upper(), **outcome.to_dict()},
        )
    return outcome.to_dict()


@router.post("/routes/{route_id}/check-now")
def check_route_now(
    route_id: int,
    db: Session = Depends(get_db),
    user_id: str = Depends(get_user_id),
) -> dict[str, Any]:
    """Live travel time. Not recorded and not counted against quota."""
    try:
        result = check_now(db, route_id, user_id)
    except (MonitoringError, ProviderFailure) as e:
        raise monitoring_error_to_http(e)
    return {
        "route_id": route_id,
        "duration_seconds": result.duration_seconds,
        "distance_metres": result.distance_metres,
        "rerouted": result.rerouted,
    }
