"""
Leaflet + OSRM implementation of the MapProvider interface.

Map elements live in a small in-memory model (LeafletMap and friends) that
mirrors what the browser library would hold. The model is rendered into a
self-contained HTML page with all JS inline; script availability is checked
against the CDN, and routes come from an OSRM server.
"""

import asyncio
import json
import logging
import os
from datetime import datetime
from html import escape
from typing import Callable, Optional

import aiohttp

from clustering import Bounds
from config import MapSettings
from provider import LatLng, MarkerOptions, ProviderLoadError, Route, RouteError

logger = logging.getLogger(__name__)

_OSRM_PROFILES = {"driving": "driving", "walking": "foot", "cycling": "bike"}


# ── In-memory map model ─────────────────────────────────────────────────────

class LeafletMap:
    def __init__(self, center: LatLng, zoom: int):
        self.center = center
        self._zoom = zoom
        self.markers: list["LeafletMarker"] = []
        self.routes: list["LeafletRouteRenderer"] = []
        self.fitted: Optional[tuple[Bounds, int]] = None
        self._listeners: dict[str, list[Callable[..., None]]] = {}

    @property
    def zoom(self) -> int:
        return self._zoom

    @zoom.setter
    def zoom(self, value: int) -> None:
        changed = value != self._zoom
        self._zoom = value
        if changed:
            self._fire("zoom_changed")

    def add_listener(self, event: str, callback: Callable[..., None]) -> None:
        self._listeners.setdefault(event, []).append(callback)

    def _fire(self, event: str) -> None:
        for callback in list(self._listeners.get(event, [])):
            callback()

    def click(self) -> None:
        """Background click on empty map area."""
        self._fire("click")

    def fit_bounds(self, bounds: Bounds, padding: int) -> None:
        self.fitted = (bounds, padding)
        self.center = LatLng(*bounds.center)

    @property
    def open_overlays(self) -> list["LeafletPopup"]:
        return [m.popup for m in self.markers if m.popup is not None and m.popup.is_open]


class LeafletMarker:
    def __init__(self, options: MarkerOptions):
        self.options = options
        self.map: Optional[LeafletMap] = None
        self.popup: Optional["LeafletPopup"] = None
        self._listeners: dict[str, list[Callable[[], None]]] = {}

    def set_map(self, map_handle: Optional[LeafletMap]) -> None:
        if self.map is not None and self in self.map.markers:
            self.map.markers.remove(self)
        self.map = map_handle
        if map_handle is not None:
            map_handle.markers.append(self)

    def add_listener(self, event: str, callback: Callable[[], None]) -> None:
        self._listeners.setdefault(event, []).append(callback)

    def click(self) -> None:
        for callback in list(self._listeners.get("click", [])):
            callback()


class LeafletPopup:
    def __init__(self, content: str, anchor: Optional[LeafletMarker] = None):
        self.content = content
        self.is_open = False
        self.anchor = anchor
        if anchor is not None:
            anchor.popup = self

    def open(self, map_handle: LeafletMap, anchor: LeafletMarker) -> None:
        anchor.popup = self
        self.anchor = anchor
        self.is_open = True

    def close(self) -> None:
        self.is_open = False


class LeafletRouteRenderer:
    def __init__(self, color: str):
        self.color = color
        self.map: Optional[LeafletMap] = None
        self.route: Optional[Route] = None

    def set_map(self, map_handle: Optional[LeafletMap]) -> None:
        if self.map is not None and self in self.map.routes:
            self.map.routes.remove(self)
        self.map = map_handle
        if map_handle is not None:
            map_handle.routes.append(self)

    def set_route(self, route: Route) -> None:
        self.route = route


# ── Provider ────────────────────────────────────────────────────────────────

class LeafletMapProvider:
    def __init__(self, settings: MapSettings, session: Optional[aiohttp.ClientSession] = None):
        self.settings = settings
        self._session = session
        self._owns_session = session is None
        self._loaded = False
        self._routing_loaded = False

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()

    def is_configured(self) -> bool:
        return bool(self.settings.map_script_url and self.settings.tile_url)

    def is_loaded(self) -> bool:
        return self._loaded

    def is_routing_loaded(self) -> bool:
        return self._routing_loaded

    async def _check_asset(self, url: str) -> None:
        """HEAD the asset; anything but a 200 counts as blocked."""
        session = await self._get_session()
        try:
            async with session.head(
                url,
                timeout=aiohttp.ClientTimeout(total=self.settings.http_timeout),
                allow_redirects=True,
            ) as resp:
                if resp.status != 200:
                    raise ProviderLoadError(f"HTTP {resp.status} for {url}")
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise ProviderLoadError(f"Could not reach {url}: {e}") from e

    async def ensure_loaded(self) -> None:
        await self._check_asset(self.settings.map_script_url)
        await self._check_asset(self.settings.map_style_url)
        self._loaded = True
        logger.info("[leaflet] Map library reachable")

    async def ensure_routing_loaded(self) -> None:
        await self._check_asset(self.settings.routing_script_url)
        self._routing_loaded = True
        logger.info("[leaflet] Routing library reachable")

    def external_link(self, lat: float, lng: float) -> str:
        return f"https://www.openstreetmap.org/?mlat={lat:.5f}&mlon={lng:.5f}#map=13/{lat:.5f}/{lng:.5f}"

    def create_map(self, center: LatLng, zoom: int) -> LeafletMap:
        return LeafletMap(center, zoom)

    def create_marker(self, map_handle: LeafletMap, options: MarkerOptions) -> LeafletMarker:
        marker = LeafletMarker(options)
        marker.set_map(map_handle)
        return marker

    def create_info_overlay(self, content: str, anchor: Optional[LeafletMarker] = None) -> LeafletPopup:
        return LeafletPopup(content, anchor)

    def create_directions_renderer(self, color: str) -> LeafletRouteRenderer:
        return LeafletRouteRenderer(color)

    async def compute_route(
        self, origin: LatLng, destination: LatLng, mode: str = "driving", alternatives: bool = False
    ) -> Route:
        profile = _OSRM_PROFILES.get(mode, "driving")
        coords = f"{origin.lng},{origin.lat};{destination.lng},{destination.lat}"
        url = f"{self.settings.routing_url.rstrip('/')}/route/v1/{profile}/{coords}"
        params = {
            "overview": "full",
            "geometries": "geojson",
            "alternatives": "true" if alternatives else "false",
        }
        session = await self._get_session()
        try:
            async with session.get(
                url, params=params, timeout=aiohttp.ClientTimeout(total=self.settings.http_timeout)
            ) as resp:
                data = await resp.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise RouteError("NETWORK_ERROR", str(e)) from e
        except ValueError as e:
            raise RouteError("INVALID_RESPONSE", "response was not JSON") from e
        return parse_osrm_route(data, origin, destination)

    # ── HTML output ─────────────────────────────────────────────────────

    def to_html(self, map_handle: LeafletMap, title: str = "Nearby Services") -> str:
        markers = [
            {
                "lat": m.options.position.lat,
                "lng": m.options.position.lng,
                "title": m.options.title,
                "kind": m.options.kind,
                "label": m.options.label,
                "radius": m.options.scale,
                "fill": m.options.fill_color,
                "stroke": m.options.stroke_color,
                "z": m.options.z_index,
                "popup": m.popup.content if m.popup else None,
                "open": bool(m.popup and m.popup.is_open),
            }
            for m in map_handle.markers
        ]
        routes = [
            {"color": r.color, "path": [[p.lat, p.lng] for p in r.route.path]}
            for r in map_handle.routes
            if r.route is not None
        ]
        fit = None
        if map_handle.fitted:
            bounds, padding = map_handle.fitted
            fit = {
                "bounds": [[bounds.south, bounds.west], [bounds.north, bounds.east]],
                "padding": padding,
            }
        data = {
            "center": [map_handle.center.lat, map_handle.center.lng],
            "zoom": map_handle.zoom,
            "fit": fit,
            "markers": markers,
            "routes": routes,
        }
        generated_at = datetime.now().strftime("%B %d, %Y at %I:%M %p")
        # keep popup markup from closing the inline <script>
        data_json = json.dumps(data).replace("</", "<\\/")
        return _build_html(data_json, escape(title), generated_at, self.settings)

    def write_html(self, map_handle: LeafletMap, path: str, title: str = "Nearby Services") -> str:
        os.makedirs(os.path.dirname(os.path.abspath(path)), exist_ok=True)
        with open(path, "w") as f:
            f.write(self.to_html(map_handle, title))
        return path


def parse_osrm_route(data, origin: LatLng, destination: LatLng) -> Route:
    if not isinstance(data, dict):
        raise RouteError("INVALID_RESPONSE", "unexpected payload")
    code = data.get("code", "")
    if code != "Ok":
        raise RouteError(code or "UNKNOWN_ERROR", data.get("message", ""))
    routes = data.get("routes") or []
    if not routes:
        raise RouteError("ZERO_RESULTS")
    try:
        best = routes[0]
        coordinates = (best.get("geometry") or {}).get("coordinates") or []
        path = [LatLng(float(lat), float(lng)) for lng, lat in coordinates]
        distance_m = float(best.get("distance", 0.0))
        duration_s = float(best.get("duration", 0.0))
    except (AttributeError, KeyError, ValueError, TypeError) as e:
        raise RouteError("INVALID_RESPONSE", str(e)) from e
    return Route(
        origin=origin,
        destination=destination,
        path=path or [origin, destination],
        distance_m=distance_m,
        duration_s=duration_s,
    )


def _build_html(data_json: str, title: str, generated_at: str, settings: MapSettings) -> str:
    return f"""<!DOCTYPE html>
<html lang="en">
<head>
<meta charset="UTF-8">
<meta name="viewport" content="width=device-width, initial-scale=1.0">
<title>{title}</title>
<link rel="stylesheet" href="{settings.map_style_url}">
<script src="{settings.map_script_url}"></script>
<style>
  html, body {{ margin: 0; height: 100%; font-family: system-ui, sans-serif; }}
  #map {{ width: 100%; height: calc(100% - 2rem); }}
  footer {{ height: 2rem; line-height: 2rem; padding: 0 0.75rem; font-size: 12px; color: #666; }}
  .overlay {{ font-size: 13px; }}
  .overlay.single {{ width: 220px; }}
  .overlay.cluster {{ width: 260px; }}
  .overlay .card-img {{ width: 100%; height: 100px; object-fit: cover; border-radius: 6px; margin-bottom: 8px; }}
  .overlay .price {{ color: #3b82f6; font-weight: 600; }}
  .overlay .price.muted {{ color: #666; font-weight: 400; }}
  .overlay .hint {{ color: #888; font-size: 11px; margin: 6px 0; }}
  .overlay .details {{ display: block; background: #0f172a; color: #fff; text-align: center;
                       padding: 8px; border-radius: 6px; text-decoration: none; }}
  .overlay .heading {{ font-weight: bold; padding-bottom: 6px; border-bottom: 2px solid #e5e7eb; }}
  .overlay .rows {{ max-height: 220px; overflow-y: auto; }}
  .overlay .row {{ display: flex; justify-content: space-between; padding: 8px 0; border-bottom: 1px solid #eee; }}
  .overlay .row .title {{ max-width: 150px; overflow: hidden; text-overflow: ellipsis; white-space: nowrap; }}
  .overlay .more {{ text-align: center; color: #888; font-size: 11px; padding-top: 6px; }}
  .cluster-label {{ color: #fff; font-size: 11px; font-weight: bold; text-align: center; }}
</style>
</head>
<body>
<div id="map"></div>
<footer>Generated {generated_at} &middot; locations are approximate</footer>
<script>
const DATA = {data_json};

const map = L.map('map', {{ zoomControl: true }}).setView(DATA.center, DATA.zoom);
L.tileLayer('{settings.tile_url}', {{
  maxZoom: 19,
  attribution: '&copy; OpenStreetMap contributors',
}}).addTo(map);

if (DATA.fit) {{
  map.fitBounds(DATA.fit.bounds, {{ padding: [DATA.fit.padding, DATA.fit.padding] }});
}}

// ── Markers ────────────────────────────────
let openPopup = null;
DATA.markers.forEach(m => {{
  const marker = L.circleMarker([m.lat, m.lng], {{
    radius: m.radius,
    fillColor: m.fill,
    color: m.stroke,
    weight: m.kind === 'user' ? 3 : 2,
    fillOpacity: 1,
  }}).addTo(map);
  marker.bindTooltip(m.title);
  if (m.label) {{
    marker.bindTooltip(m.label, {{ permanent: true, direction: 'center', className: 'cluster-label' }});
  }}
  if (m.popup) {{
    marker.bindPopup(m.popup, {{ autoClose: true, closeOnClick: true }});
    if (m.open) marker.openPopup();
  }}
}});

// ── Routes ─────────────────────────────────
DATA.routes.forEach(r => {{
  L.polyline(r.path, {{ color: r.color, weight: 5, opacity: 0.85 }}).addTo(map);
}});
</script>
</body>
</html>"""
