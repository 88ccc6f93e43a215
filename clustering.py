"""
Grid clustering of jittered listing coordinates.

Coordinates are snapped to a lat/lng grid; everything sharing a cell becomes
one cluster. The centroid is the mean of the members, not the cell corner, so
markers sit where the listings actually are.
"""

import logging
from dataclasses import dataclass
from typing import Callable, Iterable, Optional

from jitter import JitteredCoordinate

logger = logging.getLogger(__name__)

DEFAULT_GRID_STEP = 0.008


@dataclass(frozen=True)
class Cluster:
    key: tuple[float, float]
    centroid_lat: float
    centroid_lng: float
    members: tuple[JitteredCoordinate, ...]

    @property
    def size(self) -> int:
        return len(self.members)

    @property
    def is_single(self) -> bool:
        return len(self.members) == 1


@dataclass
class Bounds:
    south: float
    west: float
    north: float
    east: float

    @classmethod
    def around(cls, lat: float, lng: float) -> "Bounds":
        return cls(lat, lng, lat, lng)

    def extend(self, lat: float, lng: float) -> None:
        self.south = min(self.south, lat)
        self.north = max(self.north, lat)
        self.west = min(self.west, lng)
        self.east = max(self.east, lng)

    def contains(self, lat: float, lng: float) -> bool:
        return self.south <= lat <= self.north and self.west <= lng <= self.east

    @property
    def center(self) -> tuple[float, float]:
        return (self.south + self.north) / 2, (self.west + self.east) / 2


def grid_step_for_zoom(zoom: Optional[int]) -> float:
    """Finer cells as the map zooms in."""
    zoom = zoom or 12
    if zoom >= 15:
        return 0.002
    if zoom >= 13:
        return 0.004
    if zoom >= 11:
        return 0.008
    return 0.015


def grid_key(lat: float, lng: float, step: float = DEFAULT_GRID_STEP) -> tuple[float, float]:
    return (
        round(round(lat / step) * step, 4),
        round(round(lng / step) * step, 4),
    )


def build_clusters(
    points: Iterable[JitteredCoordinate],
    user: Optional[tuple[float, float]] = None,
    step: float = DEFAULT_GRID_STEP,
    order_key: Optional[Callable[[JitteredCoordinate], object]] = None,
) -> tuple[list[Cluster], Optional[Bounds]]:
    """
    Group points into grid clusters.

    Returns (clusters, bounds). Clusters are ordered by key; members inside a
    cluster are ordered by order_key (the widget passes listing creation time),
    with the listing id as a tie-breaker. Bounds cover the user coordinate and
    every centroid, or are None when there is nothing to cover.
    """
    if order_key is None:
        order_key = lambda c: c.listing_id

    cells: dict[tuple[float, float], list[JitteredCoordinate]] = {}
    for point in points:
        cells.setdefault(grid_key(point.lat, point.lng, step), []).append(point)

    bounds = Bounds.around(*user) if user else None
    clusters = []
    for key in sorted(cells):
        items = cells[key]
        count = len(items)
        center_lat = sum(i.lat for i in items) / count
        center_lng = sum(i.lng for i in items) / count
        members = tuple(sorted(items, key=lambda c: (order_key(c), c.listing_id)))
        clusters.append(Cluster(key, center_lat, center_lng, members))

        if bounds is None:
            bounds = Bounds.around(center_lat, center_lng)
        else:
            bounds.extend(center_lat, center_lng)

    multi = sum(1 for c in clusters if not c.is_single)
    logger.debug(f"[clustering] {len(clusters)} clusters ({multi} multi-member), step={step}")
    return clusters, bounds
