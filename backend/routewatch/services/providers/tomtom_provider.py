"""TomTom Routing API provider. Live traffic; reports reroutes via the deviation flag."""
import logging
from typing import Any

import httpx

from routewatch.config import settings
from routewatch.core.constants import PROVIDER_TOMTOM
from routewatch.core.errors import ProviderFailure
from routewatch.services.providers.types import TravelResult, dump_raw

logger = logging.getLogger(__name__)

ROUTING_URL = "https://api.tomtom.com/routing/1/calculateRoute/{locations}/json"


def _parse_response(data: dict[str, Any]) -> TravelResult:
    if not isinstance(data, dict):
        raise ProviderFailure("BAD_RESPONSE", "not a JSON object")
    routes = data.get("routes") or []
    if not routes or not isinstance(routes[0], dict):
        raise ProviderFailure("NO_ROUTE", "no routes in response")
    summary = routes[0].get("summary") or {}
    duration = summary.get("travelTimeInSeconds")
    distance = summary.get("lengthInMeters")
    if duration is None or distance is None:
        raise ProviderFailure("BAD_RESPONSE", "missing travelTimeInSeconds or lengthInMeters")
    return TravelResult(
        duration_seconds=int(duration),
        distance_metres=int(distance),
        rerouted=bool(summary.get("deviationDistance")),
        raw_json=dump_raw(data),
    )


class TomTomProvider:
    provider_id = PROVIDER_TOMTOM

    def __init__(self, api_key: str | None = None):
        self._api_key = api_key

    @property
    def api_key(self) -> str:
        return self._api_key if self._api_key is not None else settings.tomtom_api_key

    def fetch_travel_time(self, origin: str, destination: str, timeout: float) -> TravelResult:
        if not self.api_key:
            raise ProviderFailure("NOT_CONFIGURED", "TOMTOM_API_KEY is not set")
        url = ROUTING_URL.format(locations=f"{origin}:{destination}")
        params = {"key": self.api_key, "traffic": "true", "travelMode": "car"}
        try:
            with httpx.Client(timeout=timeout) as client:
                resp = client.get(url, params=params)
                resp.raise_for_status()
                data = resp.json()
        except httpx.TimeoutException as e:
            raise ProviderFailure("TIMEOUT", str(e)) from e
        except (httpx.HTTPError, ValueError) as e:
            raise ProviderFailure("HTTP_ERROR", str(e)) from e
        result = _parse_response(data)
        logger.debug(
            "TomTom routing: %s -> %s = %ss / %sm",
            origin, destination, result.duration_seconds, result.distance_metres,
        )
        return result
