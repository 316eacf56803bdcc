#!/usr/bin/env python3
"""
Soft-delete poll records older than N days (default RETENTION_DAYS) and clear their payloads.
Same operation as the nightly job. Safe to rerun.
Run: cd backend && python scripts/prune_poll_records.py [--days 90] [--dry-run]
"""
import argparse
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

# backend/scripts/ -> backend/
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from routewatch.config import settings
from routewatch.db.session import SessionLocal
from routewatch.models.poll_record import PollRecord
from routewatch.services.maintenance.retention import poll_records_query, prune_older_than


def main():
    parser = argparse.ArgumentParser(description="Soft-delete old poll records")
    parser.add_argument("--days", type=int, default=settings.retention_days, help="Retention in days")
    parser.add_argument("--batch-size", type=int, default=None, help="Rows per transaction")
    parser.add_argument("--dry-run", action="store_true", help="Only report how many rows would be pruned")
    args = parser.parse_args()

    cutoff = datetime.now(timezone.utc) - timedelta(days=args.days)
    db = SessionLocal()
    try:
        if args.dry_run:
            n = poll_records_query(db).filter(PollRecord.polled_at < cutoff).count()
            print(f"Would prune {n} poll records older than {cutoff.isoformat()}")
            return
        n = prune_older_than(db, cutoff, batch_size=args.batch_size)
        print(f"Pruned {n} poll records older than {cutoff.isoformat()}")
    finally:
        db.close()


if __name__ == "__main__":
    main()
