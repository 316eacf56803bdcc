"""
Traffic providers: Google Maps, TomTom, mock.
Each provider fetches data in its own way but returns the same normalized TravelResult
so polling and triple tests stay provider-agnostic.
"""
from routewatch.services.providers.base import TrafficProvider
from routewatch.services.providers.registry import get_provider, list_providers, register
from routewatch.services.providers.types import TravelResult

__all__ = [
    "TrafficProvider",
    "TravelResult",
    "get_provider",
    "list_providers",
    "register",
]
