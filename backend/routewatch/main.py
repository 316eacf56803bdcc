"""
FastAPI app entrypoint.

Route monitoring: windowed traffic polling under a per-user daily quota, weekday baselines,
triple tests and nightly retention. The poll tick and nightly prune run in-process on APScheduler.
"""
import logging
import os
from contextlib import asynccontextmanager
from pathlib import Path

from apscheduler.schedulers.background import BackgroundScheduler
from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

# Load .env from backend/ before any app code
load_dotenv(Path(__file__).resolve().parent.parent / ".env")

from routewatch.api.routes import account, admin, history, monitoring, routes
from routewatch.config import settings
from routewatch.core.constants import NIGHTLY_PRUNE_JOB_ID, POLL_TICK_JOB_ID
from routewatch.db.session import SessionLocal
from routewatch.scheduler.poll_job import run_poll_tick
from routewatch.scheduler.prune_job import run_nightly_prune
from routewatch.services.triple_test import resume_triple_tests

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

_scheduler = BackgroundScheduler(timezone="UTC")


@asynccontextmanager
async def lifespan(app: FastAPI):
    if os.getenv("DISABLE_SCHEDULER", "").lower() not in ("1", "true", "yes"):
        _scheduler.add_job(
            run_poll_tick,
            "interval",
            seconds=settings.poll_tick_seconds,
            id=POLL_TICK_JOB_ID,
            max_instances=1,
            coalesce=True,
        )
        _scheduler.add_job(
            run_nightly_prune,
            "cron",
            hour=settings.prune_cron_hour,
            minute=settings.prune_cron_minute,
            id=NIGHTLY_PRUNE_JOB_ID,
        )
        _scheduler.start()
        logger.info(
            "Scheduler started: poll tick every %ss, prune at %02d:%02d UTC",
            settings.poll_tick_seconds, settings.prune_cron_hour, settings.prune_cron_minute,
        )
        try:
            resume_triple_tests(_scheduler, SessionLocal)
        except Exception as e:
            logger.warning("Resuming triple tests failed: %s", e, exc_info=True)
    yield
    if _scheduler.running:
        _scheduler.shutdown(wait=False)


app = FastAPI(title="RouteWatch", version="0.1.0", lifespan=lifespan)
# Jobs added while the scheduler is disabled stay pending (not run)
app.state.scheduler = _scheduler

# CORS: dev origins + optional CORS_ORIGINS env (comma-separated)
_cors_origins = [
    "http://localhost:5173",
    "http://127.0.0.1:5173",
    "http://localhost:3000",
    "http://127.0.0.1:3000",
]
_cors_extra = os.getenv("CORS_ORIGINS", "")
if _cors_extra:
    _cors_origins.extend(o.strip() for o in _cors_extra.split(",") if o.strip())
app.add_middleware(
    CORSMiddleware,
    allow_origins=_cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(routes.router, tags=["routes"])
app.include_router(monitoring.router, tags=["monitoring"])
app.include_router(history.router, tags=["history"])
app.include_router(account.router, tags=["account"])
app.include_router(admin.router, prefix="/admin", tags=["admin"])


@app.get("/", include_in_schema=False)
def root():
    return {"message": "RouteWatch API", "docs": "/docs", "health": "/health"}


@app.get("/health")
def health() -> dict[str, str]:
    return {"status": "ok"}
