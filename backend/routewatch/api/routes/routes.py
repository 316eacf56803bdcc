"""Route and window management for the calling user."""
from datetime import time
from typing import Any, Literal

from fastapi import APIRouter, Depends, Query, Response
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from routewatch.api.deps import get_user_id
from routewatch.core.errors import MonitoringError, monitoring_error_to_http
from routewatch.db.session import get_db
from routewatch.services.route_service import (
    DEFAULT_DAYS_MASK,
    DEFAULT_WINDOW_END,
    DEFAULT_WINDOW_START,
    create_route,
    delete_route,
    get_owned_route,
    list_routes,
    route_to_dict,
    update_route,
    window_to_dict,
)
from routewatch.services.window_service import create_window, delete_window, list_windows, update_window

router = APIRouter()


class CreateRouteRequest(BaseModel):
    origin_address: str = Field("", max_length=500)
    origin_coordinates: str = Field(..., min_length=3, description='"lat,lon"')
    destination_address: str = Field("", max_length=500)
    destination_coordinates: str = Field(..., min_length=3, description='"lat,lon"')
    provider: str = "google_maps"
    # First monitoring window
    start_time: time = DEFAULT_WINDOW_START
    end_time: time = DEFAULT_WINDOW_END
    days_of_week_mask: int = DEFAULT_DAYS_MASK
    exclude_holidays: bool = True


class UpdateRouteRequest(BaseModel):
    origin_address: str | None = Field(None, max_length=500)
    origin_coordinates: str | None = None
    destination_address: str | None = Field(None, max_length=500)
    destination_coordinates: str | None = None
    provider: str | None = None
    monitoring_status: Literal["active", "paused"] | None = None


class CreateWindowRequest(BaseModel):
    start_time: time
    end_time: time
    days_of_week_mask: int = DEFAULT_DAYS_MASK
    is_active: bool = True
    exclude_holidays: bool = True


class UpdateWindowRequest(BaseModel):
    start_time: time | None = None
    end_time: time | None = None
    days_of_week_mask: int | None = None
    is_active: bool | None = None
    exclude_holidays: bool | None = None


@router.get("/routes")
def get_routes(
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    db: Session = Depends(get_db),
    user_id: str = Depends(get_user_id),
) -> dict[str, Any]:
    return list_routes(db, user_id, page, page_size).to_dict()


@router.post("/routes", status_code=201)
def add_route(
    body: CreateRouteRequest,
    db: Session = Depends(get_db),
    user_id: str = Depends(get_user_id),
) -> dict[str, Any]:
    try:
        route = create_route(db, user_id, **body.model_dump())
    except MonitoringError as e:
        raise monitoring_error_to_http(e)
    return route_to_dict(route)


@router.get("/routes/{route_id}")
def get_route(
    route_id: int,
    db: Session = Depends(get_db),
    user_id: str = Depends(get_user_id),
) -> dict[str, Any]:
    try:
        return route_to_dict(get_owned_route(db, route_id, user_id))
    except MonitoringError as e:
        raise monitoring_error_to_http(e)


@router.patch("/routes/{route_id}")
def edit_route(
    route_id: int,
    body: UpdateRouteRequest,
    db: Session = Depends(get_db),
    user_id: str = Depends(get_user_id),
) -> dict[str, Any]:
    try:
        route = update_route(db, route_id, user_id, **body.model_dump(exclude_none=True))
    except MonitoringError as e:
        raise monitoring_error_to_http(e)
    return route_to_dict(route)


@router.delete("/routes/{route_id}", status_code=204)
def remove_route(
    route_id: int,
    db: Session = Depends(get_db),
    user_id: str = Depends(get_user_id),
) -> Response:
    try:
        delete_route(db, route_id, user_id)
    except MonitoringError as e:
        raise monitoring_error_to_http(e)
    return Response(status_code=204)


@router.get("/routes/{route_id}/windows")
def get_windows(
    route_id: int,
    db: Session = Depends(get_db),
    user_id: str = Depends(get_user_id),
) -> dict[str, Any]:
    try:
        windows = list_windows(db, route_id, user_id)
    except MonitoringError as e:
        raise monitoring_error_to_http(e)
    return {"route_id": route_id, "windows": windows}


@router.post("/routes/{route_id}/windows", status_code=201)
def add_window(
    route_id: int,
    body: CreateWindowRequest,
    db: Session = Depends(get_db),
    user_id: str = Depends(get_user_id),
) -> dict[str, Any]:
    try:
        window = create_window(db, route_id, user_id, **body.model_dump())
    except MonitoringError as e:
        raise monitoring_error_to_http(e)
    return window_to_dict(window)


@router.patch("/windows/{window_id}")
def edit_window(
    window_id: int,
    body: UpdateWindowRequest,
    db: Session = Depends(get_db),
    user_id: str = Depends(get_user_id),
) -> dict[str, Any]:
    """Once the route has sessions on the window's days, only is_active may change (409 otherwise)."""
    try:
        window = update_window(db, window_id, user_id, **body.model_dump(exclude_none=True))
    except MonitoringError as e:
        raise monitoring_error_to_http(e)
    return window_to_dict(window)


@router.delete("/windows/{window_id}")
def remove_window(
    window_id: int,
    db: Session = Depends(get_db),
    user_id: str = Depends(get_user_id),
) -> dict[str, Any]:
    """An in-use window is deactivated rather than deleted; the response says which."""
    try:
        deleted = delete_window(db, window_id, user_id)
    except MonitoringError as e:
        raise monitoring_error_to_http(e)
    return {"window_id": window_id, "deleted": deleted, "deactivated": not deleted}
