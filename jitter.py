"""
Location privacy jitter.

Every listing is displaced by a small offset derived only from its id, so the
same listing lands on the same spot on every render without storing anything.
The first jittered value computed for a listing is kept in the CoordinateCache
and reused for routing, so the route ends exactly on the marker.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from resolver import ResolvedCoordinate

logger = logging.getLogger(__name__)

DEFAULT_AMPLITUDE = 0.005
DEFAULT_PHI = 1.618

_INT32_MAX = 2147483647


@dataclass(frozen=True)
class JitteredCoordinate:
    listing_id: str
    lat: float
    lng: float
    source: str
    offset_lat: float
    offset_lng: float

    @property
    def original(self) -> tuple[float, float]:
        return self.lat - self.offset_lat, self.lng - self.offset_lng


def listing_hash(listing_id: str) -> int:
    """Rolling 32-bit hash (h * 31 + c) over the id's UTF-16 code units, signed."""
    units = listing_id.encode("utf-16-le")
    h = 0
    for i in range(0, len(units), 2):
        code = units[i] | (units[i + 1] << 8)
        h = ((h << 5) - h + code) & 0xFFFFFFFF
    return h - 0x100000000 if h & 0x80000000 else h


def jitter_seed(listing_id: str) -> float:
    # abs(-2**31) would overshoot 1.0
    return (abs(listing_hash(listing_id)) % _INT32_MAX) / _INT32_MAX


def jitter_offsets(
    listing_id: str,
    amplitude: float = DEFAULT_AMPLITUDE,
    phi: float = DEFAULT_PHI,
) -> tuple[float, float]:
    seed = jitter_seed(listing_id)
    offset_lat = (seed - 0.5) * amplitude
    offset_lng = ((seed * phi) % 1 - 0.5) * amplitude
    return offset_lat, offset_lng


def apply_jitter(
    coord: ResolvedCoordinate,
    amplitude: float = DEFAULT_AMPLITUDE,
    phi: float = DEFAULT_PHI,
) -> JitteredCoordinate:
    offset_lat, offset_lng = jitter_offsets(coord.listing_id, amplitude, phi)
    return JitteredCoordinate(
        listing_id=coord.listing_id,
        lat=coord.lat + offset_lat,
        lng=coord.lng + offset_lng,
        source=coord.source,
        offset_lat=offset_lat,
        offset_lng=offset_lng,
    )


class CoordinateCache:
    """Append-only listing id -> JitteredCoordinate map for one visible session."""

    def __init__(self):
        self._entries: dict[str, JitteredCoordinate] = {}

    def get(self, listing_id: str) -> Optional[JitteredCoordinate]:
        return self._entries.get(listing_id)

    def add(self, coord: JitteredCoordinate) -> JitteredCoordinate:
        """Store coord unless the listing is already cached; returns the cached value."""
        existing = self._entries.get(coord.listing_id)
        if existing is not None:
            return existing
        self._entries[coord.listing_id] = coord
        return coord

    def clear(self) -> None:
        self._entries.clear()

    def __contains__(self, listing_id: str) -> bool:
        return listing_id in self._entries

    def __len__(self) -> int:
        return len(self._entries)
