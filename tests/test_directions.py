from __future__ import annotations

import asyncio

import pytest

from conftest import USER, FakeProvider
from directions import (
    ROUTE_COLORS,
    DirectionsOrchestrator,
    DirectionsState,
    IllegalTransition,
    route_color,
)
from jitter import CoordinateCache, apply_jitter
from resolver import ResolvedCoordinate


def _orchestrator(provider, cache=None, located=None):
    cache = cache if cache is not None else CoordinateCache()
    map_handle = provider.create_map(USER, 12)
    lookups = []

    async def locate(listing_id):
        lookups.append(listing_id)
        return (located or {}).get(listing_id)

    orchestrator = DirectionsOrchestrator(provider, map_handle, cache, locate, fit_padding=50)
    return orchestrator, map_handle, cache, lookups


def _cached(cache, listing_id, lat=47.37, lng=8.54):
    return cache.add(apply_jitter(ResolvedCoordinate(listing_id, lat, lng, "direct")))


def test_route_targets_cached_coordinate() -> None:
    provider = FakeProvider(loaded=True)
    orchestrator, map_handle, cache, lookups = _orchestrator(provider)
    coord = _cached(cache, "svc1")

    session = asyncio.run(orchestrator.show_route("svc1", USER))

    origin, destination, mode, alternatives = provider.route_requests[0]
    assert origin == USER
    assert (destination.lat, destination.lng) == (coord.lat, coord.lng)
    assert (mode, alternatives) == ("driving", False)
    assert lookups == []
    assert session.target_listing_id == "svc1"
    assert session.color == route_color("svc1")
    assert map_handle.routes == [session.renderer]
    assert map_handle.fitted[1] == 50
    assert orchestrator.state is DirectionsState.IDLE


def test_uncached_listing_uses_locate_fallback() -> None:
    provider = FakeProvider(loaded=True)
    cache = CoordinateCache()
    located = {"svc9": apply_jitter(ResolvedCoordinate("svc9", 1.0, 1.0, "owner-fallback"))}
    orchestrator, _, _, lookups = _orchestrator(provider, cache, located)

    session = asyncio.run(orchestrator.show_route("svc9", USER))

    assert session is not None
    assert lookups == ["svc9"]
    destination = provider.route_requests[0][1]
    assert (destination.lat, destination.lng) == (located["svc9"].lat, located["svc9"].lng)


def test_no_destination_aborts_without_request() -> None:
    provider = FakeProvider(loaded=True)
    orchestrator, map_handle, _, _ = _orchestrator(provider)

    assert asyncio.run(orchestrator.show_route("ghost", USER)) is None
    assert provider.route_requests == []
    assert map_handle.routes == []
    assert orchestrator.state is DirectionsState.IDLE


def test_second_request_while_calculating_is_dropped() -> None:
    provider = FakeProvider(loaded=True)
    orchestrator, map_handle, cache, _ = _orchestrator(provider)
    _cached(cache, "svc1")
    _cached(cache, "svc2", 47.40, 8.50)

    async def scenario():
        provider.route_gate = asyncio.Event()
        first = asyncio.ensure_future(orchestrator.show_route("svc1", USER))
        for _ in range(3):
            await asyncio.sleep(0)
        assert orchestrator.is_calculating
        second = await orchestrator.show_route("svc2", USER)
        provider.route_gate.set()
        return await first, second

    first, second = asyncio.run(scenario())

    assert second is None
    assert first.target_listing_id == "svc1"
    assert len(provider.route_requests) == 1
    assert map_handle.routes == [first.renderer]


def test_new_route_replaces_previous_one() -> None:
    provider = FakeProvider(loaded=True)
    orchestrator, map_handle, cache, _ = _orchestrator(provider)
    _cached(cache, "svc1")
    _cached(cache, "svc2", 47.40, 8.50)

    async def scenario():
        a = await orchestrator.show_route("svc1", USER)
        b = await orchestrator.show_route("svc2", USER)
        return a, b

    a, b = asyncio.run(scenario())

    assert a.renderer.map is None
    assert map_handle.routes == [b.renderer]
    assert orchestrator.session is b


def test_failed_route_clears_session_and_gate() -> None:
    provider = FakeProvider(loaded=True)
    orchestrator, map_handle, cache, _ = _orchestrator(provider)
    _cached(cache, "svc1")
    _cached(cache, "svc2", 47.40, 8.50)

    async def scenario():
        await orchestrator.show_route("svc1", USER)
        provider.route_status = "NoRoute"
        failed = await orchestrator.show_route("svc2", USER)
        provider.route_status = "OK"
        retried = await orchestrator.show_route("svc2", USER)
        return failed, retried

    failed, retried = asyncio.run(scenario())

    assert failed is None
    assert retried is not None
    assert map_handle.routes == [retried.renderer]
    assert orchestrator.last_error is None


def test_failure_leaves_no_route_on_map() -> None:
    provider = FakeProvider(loaded=True)
    provider.route_status = "NoRoute"
    orchestrator, map_handle, cache, _ = _orchestrator(provider)
    _cached(cache, "svc1")

    assert asyncio.run(orchestrator.show_route("svc1", USER)) is None
    assert orchestrator.session is None
    assert orchestrator.last_error == "NoRoute"
    assert map_handle.routes == []
    assert map_handle.fitted is None


def test_illegal_transition_is_rejected() -> None:
    provider = FakeProvider(loaded=True)
    orchestrator, _, _, _ = _orchestrator(provider)
    with pytest.raises(IllegalTransition):
        orchestrator._transition(DirectionsState.IDLE)


def test_route_color_is_stable_palette_entry() -> None:
    assert route_color("svc1") == route_color("svc1")
    assert route_color("svc1") in ROUTE_COLORS


def test_dispose_discards_route_in_flight() -> None:
    provider = FakeProvider(loaded=True)
    orchestrator, map_handle, cache, _ = _orchestrator(provider)
    _cached(cache, "svc1")

    async def scenario():
        provider.route_gate = asyncio.Event()
        pending = asyncio.ensure_future(orchestrator.show_route("svc1", USER))
        for _ in range(3):
            await asyncio.sleep(0)
        orchestrator.dispose()
        provider.route_gate.set()
        return await pending

    assert asyncio.run(scenario()) is None
    assert map_handle.routes == []
    assert map_handle.fitted is None
    assert orchestrator.session is None
    assert orchestrator.state is DirectionsState.IDLE
