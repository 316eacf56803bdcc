"""Normalized travel-time result. Same shape regardless of Google Maps/TomTom/etc."""
import json
from dataclasses import dataclass
from typing import Any


@dataclass(frozen=True)
class TravelResult:
    duration_seconds: int
    distance_metres: int
    rerouted: bool = False
    raw_json: str | None = None


def dump_raw(payload: Any) -> str | None:
    """Serialize a provider response for poll_records.raw_provider_response."""
    if payload is None:
        return None
    try:
        return json.dumps(payload, separators=(",", ":"))
    except (TypeError, ValueError):
        return None
