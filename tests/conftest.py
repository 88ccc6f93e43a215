from __future__ import annotations

import asyncio
from typing import Optional

import pytest

from catalog import ListingLocationInput
from config import MapSettings
from geocoding import GeocodeResult, GeocodingError
from leaflet_provider import LeafletMapProvider
from provider import LatLng, ProviderLoadError, Route, RouteError

USER = LatLng(47.3769, 8.5417)


class FakeProvider(LeafletMapProvider):
    """Leaflet model without the network: loading and routing are scripted."""

    def __init__(self, settings: Optional[MapSettings] = None, *, loaded: bool = False):
        super().__init__(settings or MapSettings())
        self._loaded = loaded
        self.load_hangs = False
        self.load_error: Optional[str] = None
        self.routing_error: Optional[str] = None
        self.route_status = "OK"
        self.route_gate: Optional[asyncio.Event] = None
        self.load_calls = 0
        self.routing_calls = 0
        self.route_requests: list[tuple] = []

    async def ensure_loaded(self) -> None:
        self.load_calls += 1
        if self.load_hangs:
            await asyncio.sleep(3600)
        if self.load_error:
            raise ProviderLoadError(self.load_error)
        self._loaded = True

    async def ensure_routing_loaded(self) -> None:
        self.routing_calls += 1
        if self.routing_error:
            raise ProviderLoadError(self.routing_error)
        self._routing_loaded = True

    async def compute_route(self, origin, destination, mode="driving", alternatives=False):
        self.route_requests.append((origin, destination, mode, alternatives))
        if self.route_gate is not None:
            await self.route_gate.wait()
        if self.route_status != "OK":
            raise RouteError(self.route_status)
        return Route(origin, destination, [origin, destination], 2500.0, 420.0)


class FakeGeocoder:
    def __init__(self, results: Optional[dict] = None, error: Optional[Exception] = None):
        self.results = results or {}
        self.error = error
        self.gate: Optional[asyncio.Event] = None
        self.calls: list[str] = []

    async def geocode(self, address: str) -> GeocodeResult:
        self.calls.append(address)
        if self.gate is not None:
            await self.gate.wait()
        await asyncio.sleep(0)
        if self.error is not None:
            raise self.error
        if address not in self.results:
            raise GeocodingError(f"No results for {address!r}")
        lat, lng = self.results[address]
        return GeocodeResult(lat, lng, address)


def make_listing(listing_id: str, **kwargs) -> ListingLocationInput:
    kwargs.setdefault("title", f"Service {listing_id}")
    kwargs.setdefault("url", f"/service/{listing_id}")
    return ListingLocationInput(id=listing_id, **kwargs)


@pytest.fixture
def provider() -> FakeProvider:
    return FakeProvider()


@pytest.fixture
def geocoder() -> FakeGeocoder:
    return FakeGeocoder()
