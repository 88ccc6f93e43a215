"""
Configuration for the nearby-provider map.
Override values via environment variables or fill in directly.

External services (all free, no key required by default):
  - Nominatim geocoding: https://nominatim.openstreetmap.org
  - OSRM routing:        https://router.project-osrm.org
  - Leaflet (map script) served from unpkg
"""

import os
from dataclasses import dataclass, field


@dataclass
class APIKeys:
    """API keys - set via environment variables or fill in directly."""
    catalog: str = os.getenv("CATALOG_API_KEY", "")


@dataclass
class MapSettings:
    """Tuning knobs for the map widget."""
    # Privacy jitter: 0.005 deg spans ~550 m, so offsets stay within ~±275 m
    jitter_amplitude: float = 0.005
    jitter_phi: float = 1.618

    # Clustering
    grid_step: float = 0.008              # ~500-800 m cells
    zoom_dependent_grid: bool = True      # finer cells when zoomed in

    # Bootstrap
    bootstrap_timeout: float = 10.0       # seconds before the map script is given up on

    # Viewport
    fit_padding: int = 50                 # px on every side
    default_center: tuple = (46.8182, 8.2275)   # Switzerland
    default_zoom: int = 12
    zoom_debounce: float = 0.25           # seconds

    # Overlays
    max_overlay_items: int = 10

    # Collaborators
    geocoder_url: str = os.getenv("GEOCODER_URL", "https://nominatim.openstreetmap.org")
    geocoder_user_agent: str = os.getenv("GEOCODER_USER_AGENT", "nearby-provider-map/1.0")
    geocoder_concurrency: int = 2
    routing_url: str = os.getenv("ROUTING_URL", "https://router.project-osrm.org")
    map_script_url: str = "https://unpkg.com/leaflet@1.9.4/dist/leaflet.js"
    map_style_url: str = "https://unpkg.com/leaflet@1.9.4/dist/leaflet.css"
    routing_script_url: str = (
        "https://unpkg.com/leaflet-routing-machine@3.2.12/dist/leaflet-routing-machine.js"
    )
    tile_url: str = "https://{s}.tile.openstreetmap.org/{z}/{x}/{y}.png"
    http_timeout: float = 15.0


@dataclass
class AppConfig:
    """Top-level configuration."""
    keys: APIKeys = field(default_factory=APIKeys)
    map: MapSettings = field(default_factory=MapSettings)

    # Catalog endpoint returning a JSON array of services
    catalog_url: str = os.getenv("CATALOG_URL", "")

    # Output
    output_dir: str = os.path.expanduser("~/nearby-map/output")
    map_filename: str = "map.html"
    data_filename: str = "clusters.json"
