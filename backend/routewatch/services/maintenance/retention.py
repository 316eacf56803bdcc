"""
Poll record retention. Old records are soft-deleted and their raw payload cleared; rows are never removed.
Runs in small batches, each its own short transaction, so live poll writes are not blocked.
"""
import logging
from datetime import datetime

from sqlalchemy.orm import Query, Session

from routewatch.config import settings
from routewatch.core.clock import as_utc
from routewatch.models.poll_record import PollRecord

logger = logging.getLogger(__name__)


def poll_records_query(db: Session, include_deleted: bool = False) -> Query:
    """Poll records, hiding soft-deleted rows unless include_deleted is set."""
    q = db.query(PollRecord)
    if not include_deleted:
        q = q.filter(PollRecord.is_deleted.is_(False))
    return q


def prune_older_than(db: Session, cutoff: datetime, batch_size: int | None = None) -> int:
    """
    Soft-delete non-deleted records with polled_at < cutoff and clear their payload.
    Returns count pruned. Already-deleted rows are never touched, so a rerun with the same cutoff returns 0.
    """
    size = batch_size or settings.prune_batch_size
    if size < 1:
        raise ValueError("batch_size must be >= 1")
    cutoff_utc = as_utc(cutoff)
    total = 0
    while True:
        ids = [
            r.id
            for r in poll_records_query(db, include_deleted=True)
            .with_entities(PollRecord.id)
            .filter(PollRecord.is_deleted.is_(False), PollRecord.polled_at < cutoff_utc)
            .order_by(PollRecord.id)
            .limit(size)
            .all()
        ]
        if not ids:
            break
        n = (
            poll_records_query(db, include_deleted=True)
            .filter(PollRecord.id.in_(ids), PollRecord.is_deleted.is_(False))
            .update(
                {PollRecord.is_deleted: True, PollRecord.raw_provider_response: None},
                synchronize_session=False,
            )
        )
        db.commit()
        total += n
        if len(ids) < size:
            break
    if total:
        logger.info("Pruned %s poll records (polled_at < %s)", total, cutoff_utc.isoformat())
    else:
        logger.debug("Prune found nothing older than %s", cutoff_utc.isoformat())
    return total
