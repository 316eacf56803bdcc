"""Nightly retention: soft-delete poll records older than retention_days."""
import logging
from datetime import datetime, timedelta, timezone

from routewatch.config import settings
from routewatch.db.session import SessionLocal
from routewatch.services.maintenance.retention import prune_older_than

logger = logging.getLogger(__name__)


def run_nightly_prune() -> int:
    cutoff = datetime.now(timezone.utc) - timedelta(days=settings.retention_days)
    db = SessionLocal()
    try:
        n = prune_older_than(db, cutoff)
        logger.info("Nightly prune: %s poll records older than %s", n, cutoff.date().isoformat())
        return n
    except Exception as e:
        logger.exception("Nightly prune failed: %s", e)
        db.rollback()
        return 0
    finally:
        db.close()
