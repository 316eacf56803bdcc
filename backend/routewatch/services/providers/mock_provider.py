"""Deterministic provider for local development: duration derived from the coordinates and minute."""
import hashlib
from datetime import datetime, timezone

from routewatch.core.constants import PROVIDER_MOCK
from routewatch.services.providers.types import TravelResult

BASE_DURATION_SECONDS = 1200
BASE_DISTANCE_METRES = 15_000


class MockTrafficProvider:
    provider_id = PROVIDER_MOCK

    def fetch_travel_time(self, origin: str, destination: str, timeout: float) -> TravelResult:
        h = hashlib.sha256(f"{origin}|{destination}".encode()).digest()
        minute = datetime.now(timezone.utc).minute
        # Rush-hour shaped wobble: +0..600s depending on the minute of the hour
        wobble = (h[0] * 3 + abs(30 - minute) * 20) % 600
        return TravelResult(
            duration_seconds=BASE_DURATION_SECONDS + wobble,
            distance_metres=BASE_DISTANCE_METRES + h[1] * 10,
            rerouted=False,
            raw_json=None,
        )
