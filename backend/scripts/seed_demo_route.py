#!/usr/bin/env python3
"""
Create a demo route on the mock provider with an all-week window covering the next hour,
so the poll tick has something to do locally.
Run: cd backend && python scripts/seed_demo_route.py [--user demo]
"""
import argparse
import sys
from datetime import datetime, time, timedelta
from pathlib import Path
from zoneinfo import ZoneInfo

# backend/scripts/ -> backend/
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from routewatch.config import settings
from routewatch.core.constants import PROVIDER_MOCK
from routewatch.core.errors import MonitoringError
from routewatch.db.session import SessionLocal
from routewatch.services.monitoring.window import Weekdays
from routewatch.services.route_service import create_route


def main():
    parser = argparse.ArgumentParser(description="Seed a demo route + window")
    parser.add_argument("--user", default="demo", help="Owner user id (X-User-Id)")
    args = parser.parse_args()

    now_local = datetime.now(ZoneInfo(settings.local_timezone))
    start = now_local.replace(second=0, microsecond=0).time()
    end_dt = now_local + timedelta(hours=1)
    end = end_dt.time().replace(second=0, microsecond=0) if end_dt.date() == now_local.date() else time(23, 59)

    db = SessionLocal()
    try:
        route = create_route(
            db,
            args.user,
            origin_coordinates="53.3498,-6.2603",
            destination_coordinates="53.2707,-9.0568",
            provider=PROVIDER_MOCK,
            origin_address="Demo origin",
            destination_address="Demo destination",
            start_time=start,
            end_time=end,
            days_of_week_mask=int(Weekdays.ALL),
            exclude_holidays=False,
        )
        print(f"Route {route.id} for user {args.user}: window {start}-{end} ({settings.local_timezone})")
    except MonitoringError as e:
        print(f"Not created: {e.code}: {e}")
        sys.exit(1)
    finally:
        db.close()


if __name__ == "__main__":
    main()
