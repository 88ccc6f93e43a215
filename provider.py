"""
Map/directions provider capability interface.

The widget only ever talks to a MapProvider and the handles it returns. The
Leaflet adapter in leaflet_provider.py is the concrete implementation; tests
drive the same interface with controllable doubles.
"""

from dataclasses import dataclass, field
from typing import Callable, Optional, Protocol

from clustering import Bounds


class ProviderLoadError(Exception):
    """The map script or the routing sub-library could not be loaded."""


class RouteError(Exception):
    """The directions provider answered with a non-OK status."""

    def __init__(self, status: str, message: str = ""):
        super().__init__(f"{status}: {message}" if message else status)
        self.status = status


@dataclass(frozen=True)
class LatLng:
    lat: float
    lng: float


MARKER_USER = "user"
MARKER_SINGLE = "single"
MARKER_CLUSTER = "cluster"


@dataclass
class MarkerOptions:
    position: LatLng
    title: str = ""
    kind: str = MARKER_SINGLE
    label: Optional[str] = None
    scale: int = 12
    fill_color: str = "#ef4444"
    stroke_color: str = "#ffffff"
    z_index: int = 500


@dataclass
class Route:
    """A computed route: the path to draw plus its bounding region."""
    origin: LatLng
    destination: LatLng
    path: list[LatLng] = field(default_factory=list)
    distance_m: float = 0.0
    duration_s: float = 0.0

    @property
    def bounds(self) -> Bounds:
        points = self.path or [self.origin, self.destination]
        bounds = Bounds.around(points[0].lat, points[0].lng)
        for p in points[1:]:
            bounds.extend(p.lat, p.lng)
        return bounds


class MapHandle(Protocol):
    zoom: int

    def add_listener(self, event: str, callback: Callable[..., None]) -> None: ...

    def fit_bounds(self, bounds: Bounds, padding: int) -> None: ...


class MarkerHandle(Protocol):
    def add_listener(self, event: str, callback: Callable[[], None]) -> None: ...

    def set_map(self, map_handle: Optional[MapHandle]) -> None: ...


class InfoOverlayHandle(Protocol):
    is_open: bool

    def open(self, map_handle: MapHandle, anchor: MarkerHandle) -> None: ...

    def close(self) -> None: ...


class DirectionsRendererHandle(Protocol):
    def set_map(self, map_handle: Optional[MapHandle]) -> None: ...

    def set_route(self, route: Route) -> None: ...


class MapProvider(Protocol):
    """Everything the widget needs from the external mapping library."""

    def is_configured(self) -> bool: ...

    def is_loaded(self) -> bool: ...

    async def ensure_loaded(self) -> None:
        """Load the map script; raise ProviderLoadError on failure."""
        ...

    def is_routing_loaded(self) -> bool: ...

    async def ensure_routing_loaded(self) -> None:
        """Load the routing sub-library; raise ProviderLoadError on failure."""
        ...

    def external_link(self, lat: float, lng: float) -> str:
        """Deep link to the provider's own site, used when the map cannot load."""
        ...

    def create_map(self, center: LatLng, zoom: int) -> MapHandle: ...

    def create_marker(self, map_handle: MapHandle, options: MarkerOptions) -> MarkerHandle: ...

    def create_info_overlay(
        self, content: str, anchor: Optional[MarkerHandle] = None
    ) -> InfoOverlayHandle: ...

    def create_directions_renderer(self, color: str) -> DirectionsRendererHandle: ...

    async def compute_route(
        self, origin: LatLng, destination: LatLng, mode: str = "driving", alternatives: bool = False
    ) -> Route:
        """Compute a route or raise RouteError."""
        ...
