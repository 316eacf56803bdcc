"""Google Maps Distance Matrix provider (traffic-aware duration)."""
import logging
from typing import Any

import httpx

from routewatch.config import settings
from routewatch.core.constants import PROVIDER_GOOGLE_MAPS
from routewatch.core.errors import ProviderFailure
from routewatch.services.providers.types import TravelResult, dump_raw

logger = logging.getLogger(__name__)

DISTANCE_MATRIX_URL = "https://maps.googleapis.com/maps/api/distancematrix/json"


def _parse_response(data: dict[str, Any]) -> TravelResult:
    """Parse Distance Matrix JSON. Prefers duration_in_traffic over duration."""
    if not isinstance(data, dict):
        raise ProviderFailure("BAD_RESPONSE", "not a JSON object")
    rows = data.get("rows") or []
    elements = (rows[0].get("elements") or []) if rows and isinstance(rows[0], dict) else []
    element = elements[0] if elements and isinstance(elements[0], dict) else None
    if not element or element.get("status") != "OK":
        status = (element or {}).get("status") or data.get("status") or "UNKNOWN"
        raise ProviderFailure("NO_ROUTE", f"element status {status}")
    duration = (element.get("duration_in_traffic") or element.get("duration") or {}).get("value")
    distance = (element.get("distance") or {}).get("value")
    if duration is None or distance is None:
        raise ProviderFailure("BAD_RESPONSE", "missing duration or distance")
    return TravelResult(
        duration_seconds=int(duration),
        distance_metres=int(distance),
        rerouted=False,
        raw_json=dump_raw(data),
    )


class GoogleMapsProvider:
    provider_id = PROVIDER_GOOGLE_MAPS

    def __init__(self, api_key: str | None = None):
        self._api_key = api_key

    @property
    def api_key(self) -> str:
        return self._api_key if self._api_key is not None else settings.google_maps_api_key

    def fetch_travel_time(self, origin: str, destination: str, timeout: float) -> TravelResult:
        if not self.api_key:
            raise ProviderFailure("NOT_CONFIGURED", "GOOGLE_MAPS_API_KEY is not set")
        params = {
            "origins": origin,
            "destinations": destination,
            "departure_time": "now",
            "traffic_model": "best_guess",
            "key": self.api_key,
        }
        try:
            with httpx.Client(timeout=timeout) as client:
                resp = client.get(DISTANCE_MATRIX_URL, params=params)
                resp.raise_for_status()
                data = resp.json()
        except httpx.TimeoutException as e:
            raise ProviderFailure("TIMEOUT", str(e)) from e
        except (httpx.HTTPError, ValueError) as e:
            raise ProviderFailure("HTTP_ERROR", str(e)) from e
        result = _parse_response(data)
        logger.debug(
            "Google Distance Matrix: %s -> %s = %ss / %sm",
            origin, destination, result.duration_seconds, result.distance_metres,
        )
        return result
