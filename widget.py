"""
The nearby-services map widget.

MapWidget ties the pieces together for one visible session:

  bootstrap -> resolve every listing (concurrently) -> jitter -> cluster
            -> render markers/overlays -> route on demand

Everything the session owns lives in a single WidgetState, created by show()
and torn down by hide().
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Optional

from bootstrap import BootstrapState, MapBootstrap
from catalog import ListingLocationInput
from clustering import Bounds, Cluster, build_clusters, grid_step_for_zoom
from config import MapSettings
from directions import DirectionsOrchestrator, DirectionsSession
from geocoding import Geocoder
from jitter import CoordinateCache, JitteredCoordinate, apply_jitter
from notifications import LoggingNotifier, Notifier
from overlays import OverlayManager
from provider import LatLng, MapHandle, MapProvider
from resolver import CoordinateResolver

logger = logging.getLogger(__name__)


@dataclass
class WidgetState:
    """Handles owned by one visible session."""
    bootstrap: MapBootstrap
    user: LatLng
    user_name: str = ""
    listings: dict[str, ListingLocationInput] = field(default_factory=dict)
    cache: CoordinateCache = field(default_factory=CoordinateCache)
    map: Optional[MapHandle] = None
    overlays: Optional[OverlayManager] = None
    directions: Optional[DirectionsOrchestrator] = None
    clusters: list[Cluster] = field(default_factory=list)
    bounds: Optional[Bounds] = None
    generation: int = 0
    initial_fit_done: bool = False
    zoom_task: Optional[asyncio.Task] = None


class MapWidget:
    def __init__(
        self,
        provider: MapProvider,
        geocoder: Optional[Geocoder] = None,
        settings: Optional[MapSettings] = None,
        notifier: Optional[Notifier] = None,
    ):
        self.provider = provider
        self.resolver = CoordinateResolver(geocoder)
        self.settings = settings or MapSettings()
        self.notifier = notifier or LoggingNotifier()
        self.state: Optional[WidgetState] = None

    # ── Lifecycle ───────────────────────────────────────────────────────

    @property
    def is_ready(self) -> bool:
        return (
            self.state is not None
            and self.state.bootstrap.state is BootstrapState.READY
            and self.state.map is not None
        )

    @property
    def error_message(self) -> Optional[str]:
        return self.state.bootstrap.error_message if self.state else None

    @property
    def fallback_url(self) -> Optional[str]:
        return self.state.bootstrap.fallback_url if self.state else None

    async def show(
        self,
        listings: list[ListingLocationInput],
        user: Optional[LatLng],
        user_name: str = "",
    ) -> BootstrapState:
        """Make the widget visible: bootstrap the provider and render the listings."""
        if self.state is not None:
            await self.set_listings(listings)
            return self.state.bootstrap.state

        if user is None:
            self.notifier.notify("Map unavailable", "Choose a search location to see services on the map.")
            return BootstrapState.NOT_STARTED
        if not self.provider.is_configured():
            self.notifier.notify("Map unavailable", "The map is not configured for this site.")
            return BootstrapState.NOT_STARTED

        state = WidgetState(
            bootstrap=MapBootstrap(self.provider, self.settings.bootstrap_timeout),
            user=user,
            user_name=user_name,
            listings={l.id: l for l in listings},
        )
        self.state = state

        status = await state.bootstrap.start((user.lat, user.lng))
        if self.state is not state:
            return status
        if status is not BootstrapState.READY:
            return status

        state.map = self.provider.create_map(user, self.settings.default_zoom)
        state.map.add_listener("zoom_changed", self._on_zoom_changed)
        state.overlays = OverlayManager(self.provider, state.map, self.settings.max_overlay_items)
        state.directions = DirectionsOrchestrator(
            self.provider,
            state.map,
            state.cache,
            self._locate_by_id,
            self.settings.fit_padding,
        )
        await self.refresh()
        return status

    def hide(self) -> None:
        """Tear the session down: markers, overlays, route, cache, pending work."""
        state = self.state
        if state is None:
            return
        self.state = None
        if state.zoom_task is not None:
            state.zoom_task.cancel()
        if state.overlays is not None:
            state.overlays.dispose()
        if state.directions is not None:
            state.directions.dispose()
        state.cache.clear()
        logger.info("[widget] Hidden")

    # ── Rendering ───────────────────────────────────────────────────────

    async def set_listings(self, listings: list[ListingLocationInput]) -> Optional[list[Cluster]]:
        state = self.state
        if state is None:
            return None
        state.listings = {l.id: l for l in listings}
        if not self.is_ready:
            return None
        return await self.refresh()

    async def refresh(self) -> Optional[list[Cluster]]:
        """
        One render pass over the current listing set.

        Returns the rendered clusters, or None when the pass was superseded by
        a newer one (or by hide()) while coordinates were still resolving.
        """
        state = self.state
        if state is None or not self.is_ready:
            return None
        state.generation += 1
        generation = state.generation
        listings = list(state.listings.values())
        by_id = dict(state.listings)

        located = await asyncio.gather(*(self._locate(l, state.cache) for l in listings))

        if self.state is not state or state.generation != generation:
            logger.debug(f"[widget] Discarding stale render pass {generation}")
            return None

        points = [p for p in located if p is not None]
        step = (
            grid_step_for_zoom(state.map.zoom)
            if self.settings.zoom_dependent_grid
            else self.settings.grid_step
        )
        clusters, bounds = build_clusters(
            points,
            user=(state.user.lat, state.user.lng),
            step=step,
            order_key=lambda c: by_id[c.listing_id].created,
        )
        state.overlays.render(clusters, state.user, by_id, state.user_name)
        state.clusters = clusters
        state.bounds = bounds

        if points and not state.initial_fit_done and bounds is not None:
            state.map.fit_bounds(bounds, self.settings.fit_padding)
            state.initial_fit_done = True

        logger.info(
            f"[widget] Rendered {len(points)}/{len(listings)} listings in {len(clusters)} clusters"
        )
        return clusters

    async def _locate(
        self, listing: ListingLocationInput, cache: CoordinateCache
    ) -> Optional[JitteredCoordinate]:
        cached = cache.get(listing.id)
        if cached is not None:
            return cached
        resolved = await self.resolver.resolve(listing)
        if resolved is None:
            return None
        return cache.add(
            apply_jitter(resolved, self.settings.jitter_amplitude, self.settings.jitter_phi)
        )

    async def _locate_by_id(self, listing_id: str) -> Optional[JitteredCoordinate]:
        state = self.state
        if state is None or listing_id not in state.listings:
            return None
        return await self._locate(state.listings[listing_id], state.cache)

    def _on_zoom_changed(self) -> None:
        state = self.state
        if state is None:
            return
        if state.zoom_task is not None:
            state.zoom_task.cancel()
        state.zoom_task = asyncio.get_running_loop().create_task(self._debounced_refresh())
        state.zoom_task.add_done_callback(_log_task_failure)

    async def zoom_to(self, zoom: int) -> None:
        """Change the zoom and wait for the debounced re-render it triggers."""
        state = self.state
        if state is None or state.map is None:
            return
        state.map.zoom = zoom
        if state.zoom_task is not None:
            await asyncio.gather(state.zoom_task, return_exceptions=True)

    async def _debounced_refresh(self) -> None:
        await asyncio.sleep(self.settings.zoom_debounce)
        await self.refresh()

    # ── Interaction ─────────────────────────────────────────────────────

    def open_listing(self, listing_id: str) -> bool:
        if not self.is_ready:
            return False
        return self.state.overlays.open_listing(listing_id)

    def rendered_coordinate(self, listing_id: str) -> Optional[JitteredCoordinate]:
        return self.state.cache.get(listing_id) if self.state else None

    @property
    def session(self) -> Optional[DirectionsSession]:
        if self.state is None or self.state.directions is None:
            return None
        return self.state.directions.session

    async def show_route(self, listing_id: str) -> Optional[DirectionsSession]:
        """Route from the user to listing_id; None if dropped, unavailable or failed."""
        if not self.is_ready:
            return None
        state = self.state
        if not state.bootstrap.routing_available:
            logger.info("[widget] Directions unavailable, routing library not loaded")
            return None
        return await state.directions.show_route(listing_id, state.user)

    def describe(self) -> dict:
        """Plain-data snapshot of what is on the map."""
        state = self.state
        if state is None:
            return {"state": BootstrapState.NOT_STARTED.value, "clusters": []}
        session = self.session
        return {
            "state": state.bootstrap.state.value,
            "routing_available": state.bootstrap.routing_available,
            "error": state.bootstrap.error_message,
            "fallback_url": state.bootstrap.fallback_url,
            "user": {"lat": state.user.lat, "lng": state.user.lng, "name": state.user_name},
            "clusters": [
                {
                    "key": list(c.key),
                    "lat": c.centroid_lat,
                    "lng": c.centroid_lng,
                    "members": [
                        {"id": m.listing_id, "lat": m.lat, "lng": m.lng, "source": m.source}
                        for m in c.members
                    ],
                }
                for c in state.clusters
            ],
            "route": (
                {"listing_id": session.target_listing_id, "color": session.color}
                if session else None
            ),
        }


def _log_task_failure(task: asyncio.Task) -> None:
    if task.cancelled():
        return
    error = task.exception()
    if error is not None:
        logger.error(f"[widget] Zoom re-render failed: {error!r}")
