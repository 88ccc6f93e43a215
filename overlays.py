"""
Markers and info overlays on the map.

OverlayManager owns every visual element it creates. Each render pass tears
the previous set down before building the new one, and at most one info
overlay is open at a time: activating an overlay always closes the others
first.
"""

import logging
from html import escape
from typing import Mapping, Optional

from catalog import ListingLocationInput
from clustering import Cluster
from provider import (
    MARKER_CLUSTER,
    MARKER_SINGLE,
    MARKER_USER,
    InfoOverlayHandle,
    LatLng,
    MapHandle,
    MapProvider,
    MarkerHandle,
    MarkerOptions,
)

logger = logging.getLogger(__name__)

USER_COLOR = "#3b82f6"
LISTING_COLOR = "#ef4444"


# ── Overlay Content ─────────────────────────────────────────────────────────

def _price_html(listing: ListingLocationInput) -> str:
    if listing.price_type == "fixed":
        return f'<div class="price">CHF {escape(str(listing.price))}</div>'
    if listing.price_type == "list":
        first = listing.list_price if listing.list_price is not None else "N/A"
        return f'<div class="price">From CHF {escape(str(first))}</div>'
    return '<div class="price muted">Contact for pricing</div>'


def listing_card(listing: ListingLocationInput) -> str:
    img = (
        f'<img src="{escape(listing.image_url)}" class="card-img"/>'
        if listing.image_url else ""
    )
    return (
        '<div class="overlay single">'
        f"{img}"
        f"<strong>{escape(listing.title)}</strong>"
        f"{_price_html(listing)}"
        '<div class="hint">Approximate Location</div>'
        f'<a class="details" href="{escape(listing.url)}">View Details</a>'
        "</div>"
    )


def cluster_list(listings: list[ListingLocationInput], max_items: int = 10) -> str:
    rows = "".join(
        '<div class="row">'
        f'<span class="title">{escape(l.title)}</span>'
        f'<a href="{escape(l.url)}">View</a>'
        "</div>"
        for l in listings[:max_items]
    )
    more = (
        f'<div class="more">+ {len(listings) - max_items} more</div>'
        if len(listings) > max_items else ""
    )
    return (
        '<div class="overlay cluster">'
        f'<div class="heading">{len(listings)} Services in this area</div>'
        f'<div class="rows">{rows}</div>'
        f"{more}"
        "</div>"
    )


def user_card(name: str) -> str:
    return (
        f'<div class="overlay user"><strong>{escape(name)}</strong>'
        '<br/><small>Your search location</small></div>'
    )


# ── Lifecycle ───────────────────────────────────────────────────────────────

class OverlayManager:
    def __init__(self, provider: MapProvider, map_handle: MapHandle, max_overlay_items: int = 10):
        self.provider = provider
        self.map = map_handle
        self.max_overlay_items = max_overlay_items
        self.markers: list[MarkerHandle] = []
        self.overlays: list[InfoOverlayHandle] = []
        self.active: Optional[InfoOverlayHandle] = None
        # listing id -> (marker, overlay) showing it
        self.listing_elements: dict[str, tuple[MarkerHandle, InfoOverlayHandle]] = {}
        map_handle.add_listener("click", self.close_active)

    def render(
        self,
        clusters: list[Cluster],
        user: Optional[LatLng],
        listings: Mapping[str, ListingLocationInput],
        user_name: str = "",
    ) -> None:
        self.dispose()

        if user is not None:
            marker = self.provider.create_marker(self.map, MarkerOptions(
                position=user,
                title="Your Location",
                kind=MARKER_USER,
                scale=10,
                fill_color=USER_COLOR,
                z_index=9999,
            ))
            self._attach(marker, user_card(user_name or "Your Location"))

        for cluster in clusters:
            members = [listings[m.listing_id] for m in cluster.members if m.listing_id in listings]
            count = cluster.size
            if cluster.is_single:
                title = members[0].title if members else cluster.members[0].listing_id
                content = listing_card(members[0]) if members else ""
            else:
                title = f"{count} Services"
                content = cluster_list(members, self.max_overlay_items)

            marker = self.provider.create_marker(self.map, MarkerOptions(
                position=LatLng(cluster.centroid_lat, cluster.centroid_lng),
                title=title,
                kind=MARKER_SINGLE if cluster.is_single else MARKER_CLUSTER,
                label=None if cluster.is_single else str(count),
                scale=12 if cluster.is_single else 16,
                fill_color=LISTING_COLOR,
                z_index=500 if cluster.is_single else 1000 + count,
            ))
            overlay = self._attach(marker, content)
            for member in cluster.members:
                self.listing_elements[member.listing_id] = (marker, overlay)

        logger.debug(f"[overlays] Rendered {len(self.markers)} markers")

    def _attach(self, marker: MarkerHandle, content: str) -> InfoOverlayHandle:
        overlay = self.provider.create_info_overlay(content, marker)
        marker.add_listener("click", lambda: self.activate(overlay, marker))
        self.markers.append(marker)
        self.overlays.append(overlay)
        return overlay

    def open_listing(self, listing_id: str) -> bool:
        """Open the overlay of the marker showing listing_id, if it is rendered."""
        elements = self.listing_elements.get(listing_id)
        if elements is None:
            return False
        marker, overlay = elements
        self.activate(overlay, marker)
        return True

    def activate(self, overlay: InfoOverlayHandle, marker: MarkerHandle) -> None:
        self.close_active()
        overlay.open(self.map, marker)
        self.active = overlay

    def close_active(self, *_args) -> None:
        for overlay in self.overlays:
            overlay.close()
        self.active = None

    def dispose(self) -> None:
        for overlay in self.overlays:
            overlay.close()
        for marker in self.markers:
            marker.set_map(None)
        self.markers = []
        self.overlays = []
        self.listing_elements = {}
        self.active = None
