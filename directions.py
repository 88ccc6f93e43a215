"""
Directions between the user and one listing.

Only one route is ever on the map and only one calculation runs at a time.
A request that arrives while another is calculating is dropped, not queued.
Destinations come from the CoordinateCache whenever the listing has been
rendered, so the route ends on the marker the user clicked.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, Optional

from jitter import CoordinateCache, JitteredCoordinate, listing_hash
from provider import DirectionsRendererHandle, LatLng, MapHandle, MapProvider, RouteError

logger = logging.getLogger(__name__)

ROUTE_COLORS = [
    "#2563eb",
    "#16a34a",
    "#9333ea",
    "#ea580c",
    "#0891b2",
    "#db2777",
    "#65a30d",
    "#ca8a04",
]


def route_color(listing_id: str) -> str:
    return ROUTE_COLORS[abs(listing_hash(listing_id)) % len(ROUTE_COLORS)]


class DirectionsState(str, Enum):
    IDLE = "idle"
    CALCULATING = "calculating"


_ALLOWED = {
    DirectionsState.IDLE: {DirectionsState.CALCULATING},
    DirectionsState.CALCULATING: {DirectionsState.IDLE},
}


class IllegalTransition(Exception):
    def __init__(self, current: DirectionsState, target: DirectionsState):
        super().__init__(f"{current.value} -> {target.value}")
        self.current = current
        self.target = target


@dataclass
class DirectionsSession:
    target_listing_id: str
    renderer: DirectionsRendererHandle
    color: str


class DirectionsOrchestrator:
    def __init__(
        self,
        provider: MapProvider,
        map_handle: MapHandle,
        cache: CoordinateCache,
        locate: Callable[[str], Awaitable[Optional[JitteredCoordinate]]],
        fit_padding: int = 50,
    ):
        self.provider = provider
        self.map = map_handle
        self.cache = cache
        self.locate = locate
        self.fit_padding = fit_padding
        self.state = DirectionsState.IDLE
        self.session: Optional[DirectionsSession] = None
        self.last_error: Optional[str] = None
        self.disposed = False

    def _transition(self, target: DirectionsState) -> None:
        if target not in _ALLOWED[self.state]:
            raise IllegalTransition(self.state, target)
        self.state = target

    @property
    def is_calculating(self) -> bool:
        return self.state is DirectionsState.CALCULATING

    async def show_route(self, listing_id: str, origin: LatLng) -> Optional[DirectionsSession]:
        """
        Route from origin to the listing's marker.

        Returns the new session, or None when the request was dropped, had no
        destination, or the provider failed.
        """
        try:
            self._transition(DirectionsState.CALCULATING)
        except IllegalTransition:
            logger.debug(f"[directions] Busy, dropping request for {listing_id}")
            return None

        try:
            destination = self.cache.get(listing_id)
            if destination is None:
                destination = await self.locate(listing_id)
            if self.disposed:
                return None
            if destination is None:
                logger.info(f"[directions] No coordinate for {listing_id}, not routing")
                return None

            self.clear()
            target = LatLng(destination.lat, destination.lng)
            try:
                route = await self.provider.compute_route(
                    origin, target, mode="driving", alternatives=False
                )
            except RouteError as e:
                self.last_error = e.status
                logger.warning(f"[directions] Route to {listing_id} failed: {e}")
                return None
        finally:
            self._transition(DirectionsState.IDLE)

        if self.disposed:
            logger.debug(f"[directions] Widget hidden, discarding route to {listing_id}")
            return None

        color = route_color(listing_id)
        renderer = self.provider.create_directions_renderer(color)
        renderer.set_map(self.map)
        renderer.set_route(route)
        self.session = DirectionsSession(listing_id, renderer, color)
        self.last_error = None
        self.map.fit_bounds(route.bounds, self.fit_padding)
        logger.info(
            f"[directions] Route to {listing_id}: "
            f"{route.distance_m / 1000:.1f} km, {route.duration_s / 60:.0f} min"
        )
        return self.session

    def clear(self) -> None:
        """Detach the current route from the map, if any."""
        if self.session is not None:
            self.session.renderer.set_map(None)
        self.session = None

    def dispose(self) -> None:
        """Clear the route; calculations still in flight draw nothing."""
        self.disposed = True
        self.clear()
