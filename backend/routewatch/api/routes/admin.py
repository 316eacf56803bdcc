"""
Admin: triple tests, global rollups, manual prune.
Each triple-test shot is a scheduler job at scheduled_at + offset; poll GET /admin/triple-tests/{id} for results.
"""
import logging
from datetime import datetime, timedelta, timezone
from typing import Any

from apscheduler.schedulers.base import BaseScheduler
from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field, field_validator
from sqlalchemy.orm import Session

from routewatch.api.deps import get_clock, get_job_scheduler, get_session_factory
from routewatch.config import settings
from routewatch.core.clock import Clock
from routewatch.core.errors import MonitoringError, monitoring_error_to_http
from routewatch.db.session import get_db
from routewatch.scheduler.poll_job import get_poll_job_status
from routewatch.services.history.rollups import get_global_volatility, get_poll_cost_summary
from routewatch.services.maintenance.retention import prune_older_than
from routewatch.services.providers import list_providers
from routewatch.services.triple_test import create_triple_test, get_triple_test_session, schedule_triple_test

router = APIRouter()
logger = logging.getLogger(__name__)


class TripleTestRequest(BaseModel):
    origin: str = Field(..., min_length=3, description='"lat,lon"')
    destination: str = Field(..., min_length=3, description='"lat,lon"')
    provider: str = "google_maps"
    scheduled_at: datetime | None = None  # default: now; must not be in the past
    offsets_seconds: list[int] | None = Field(None, max_length=10)

    @field_validator("offsets_seconds")
    @classmethod
    def non_negative(cls, v: list[int] | None) -> list[int] | None:
        if v is not None and (not v or any(o < 0 for o in v)):
            raise ValueError("offsets_seconds must be a non-empty list of values >= 0")
        return v


class PruneRequest(BaseModel):
    older_than_days: int | None = Field(None, ge=1)
    batch_size: int | None = Field(None, ge=1)


@router.post("/triple-tests", status_code=202)
def start_triple_test(
    body: TripleTestRequest,
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
    session_factory=Depends(get_session_factory),
    scheduler: BaseScheduler = Depends(get_job_scheduler),
) -> dict[str, Any]:
    if body.provider not in list_providers():
        raise HTTPException(status_code=422, detail=f"Unknown provider: {body.provider}")
    now = clock.now_utc()
    scheduled_at = body.scheduled_at or now
    if scheduled_at.tzinfo is None:
        scheduled_at = scheduled_at.replace(tzinfo=timezone.utc)
    try:
        session_id = create_triple_test(
            db, body.origin, body.destination, body.provider, scheduled_at, body.offsets_seconds, now=now
        )
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))
    schedule_triple_test(scheduler, session_factory, session_id, now=clock.now_utc)
    return get_triple_test_session(db, session_id).to_dict()


@router.get("/triple-tests/{session_id}")
def triple_test_detail(session_id: int, db: Session = Depends(get_db)) -> dict[str, Any]:
    try:
        return get_triple_test_session(db, session_id).to_dict()
    except MonitoringError as e:
        raise monitoring_error_to_http(e)


@router.get("/volatility")
def global_volatility(db: Session = Depends(get_db)) -> dict[str, Any]:
    slots = get_global_volatility(db)
    return {"slots": [s.to_dict() for s in slots], "count": len(slots)}


@router.get("/poll-cost")
def poll_cost(db: Session = Depends(get_db), clock: Clock = Depends(get_clock)) -> dict[str, Any]:
    rows = get_poll_cost_summary(db, clock.now_utc())
    return {
        "providers": [r.to_dict() for r in rows],
        "total_estimated_cost_usd": round(sum(r.total_estimated_cost_usd for r in rows), 6),
    }


@router.post("/prune")
def prune_poll_records(
    body: PruneRequest | None = None,
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
) -> dict[str, Any]:
    """Same soft-delete as the nightly job; rerunning with the same cutoff prunes 0."""
    body = body or PruneRequest()
    days = body.older_than_days or settings.retention_days
    cutoff = clock.now_utc() - timedelta(days=days)
    n = prune_older_than(db, cutoff, batch_size=body.batch_size)
    return {"pruned": n, "cutoff": cutoff.isoformat()}


@router.get("/poll-job")
def poll_job_status() -> dict[str, Any]:
    return get_poll_job_status()
