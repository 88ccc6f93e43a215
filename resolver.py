"""
Coordinate resolution for listings.

Each listing is resolved through a fixed chain, stopping at the first stage
that yields two finite numbers:

  1. direct coordinates on the listing
  2. geocoding of the primary address
  3. the owner's fallback coordinates

Listings that fail every stage are left off the map.
"""

import asyncio
import logging
import math
from dataclasses import dataclass
from typing import Any, Optional

from catalog import ListingLocationInput
from geocoding import Geocoder, GeocodingError

logger = logging.getLogger(__name__)

SOURCE_DIRECT = "direct"
SOURCE_GEOCODED = "geocoded"
SOURCE_OWNER = "owner-fallback"


@dataclass(frozen=True)
class ResolvedCoordinate:
    listing_id: str
    lat: float
    lng: float
    source: str


def parse_coordinate(value: Any) -> Optional[float]:
    """Parse a raw coordinate value; None unless it is a finite number."""
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value.strip()) if isinstance(value, str) else float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


def _pair(lat: Any, lng: Any) -> Optional[tuple[float, float]]:
    plat, plng = parse_coordinate(lat), parse_coordinate(lng)
    if plat is None or plng is None:
        return None
    return plat, plng


class CoordinateResolver:
    def __init__(self, geocoder: Optional[Geocoder] = None):
        self.geocoder = geocoder

    async def resolve(self, listing: ListingLocationInput) -> Optional[ResolvedCoordinate]:
        direct = _pair(listing.lat, listing.lng)
        if direct:
            return ResolvedCoordinate(listing.id, direct[0], direct[1], SOURCE_DIRECT)

        geocoded = await self._geocode(listing)
        if geocoded:
            return ResolvedCoordinate(listing.id, geocoded[0], geocoded[1], SOURCE_GEOCODED)

        owner = _pair(listing.owner_lat, listing.owner_lng)
        if owner:
            return ResolvedCoordinate(listing.id, owner[0], owner[1], SOURCE_OWNER)

        logger.debug(f"[resolver] {listing.id}: no usable location, omitting")
        return None

    async def _geocode(self, listing: ListingLocationInput) -> Optional[tuple[float, float]]:
        address = listing.primary_address
        if not address or self.geocoder is None:
            return None
        try:
            result = await self.geocoder.geocode(address)
        except GeocodingError as e:
            logger.warning(f"[resolver] {listing.id}: geocoding failed: {e}")
            return None
        except Exception as e:
            logger.warning(f"[resolver] {listing.id}: geocoder error: {e!r}")
            return None
        return _pair(result.lat, result.lng)

    async def resolve_batch(
        self, listings: list[ListingLocationInput]
    ) -> list[ResolvedCoordinate]:
        """Resolve every listing concurrently; returns only the resolved ones, in input order."""
        results = await asyncio.gather(*(self.resolve(l) for l in listings))
        resolved = [r for r in results if r is not None]
        logger.info(f"[resolver] Resolved {len(resolved)}/{len(listings)} listings")
        return resolved
