"""Registry of traffic providers keyed by the provider id stored on routes. Add new clients here."""
import logging

from routewatch.services.providers.base import TrafficProvider

logger = logging.getLogger(__name__)

_providers: dict[str, TrafficProvider] = {}


def register(name: str, provider: TrafficProvider) -> None:
    """Register (or replace) the client for a provider id such as 'google_maps'."""
    _providers[name] = provider
    logger.info("Registered traffic provider: %s", name)


def get_provider(name: str) -> TrafficProvider:
    """Client for a route's provider id. Raises KeyError if unknown."""
    if name not in _providers:
        raise KeyError(f"Unknown provider: {name}. Available: {sorted(_providers)}")
    return _providers[name]


def list_providers() -> list[str]:
    return sorted(_providers)


def _init_registry() -> None:
    from routewatch.services.providers.google_maps_provider import GoogleMapsProvider
    from routewatch.services.providers.mock_provider import MockTrafficProvider
    from routewatch.services.providers.tomtom_provider import TomTomProvider

    for provider in (GoogleMapsProvider(), TomTomProvider(), MockTrafficProvider()):
        register(provider.provider_id, provider)


# Built-in clients are available as soon as the package is imported
_init_registry()
