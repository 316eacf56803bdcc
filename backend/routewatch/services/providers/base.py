"""Protocol for traffic providers. All clients return the same normalized shape."""
from typing import Protocol

from routewatch.services.providers.types import TravelResult


class TrafficProvider(Protocol):
    """Interface for Google Maps, TomTom, etc. Same contract; only fetch differs."""

    @property
    def provider_id(self) -> str:
        """Unique id (e.g. 'google_maps', 'tomtom'), stored on poll records."""
        ...

    def fetch_travel_time(self, origin: str, destination: str, timeout: float) -> TravelResult:
        """
        Live travel time between two "lat,lon" coordinates.
        Raises ProviderFailure(code) on error or timeout; never returns None.
        """
        ...
