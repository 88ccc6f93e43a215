"""
Geocoding collaborator: free-text address -> coordinates.

NominatimGeocoder talks to an OSM Nominatim instance over aiohttp. Successful
lookups are memoized per address for the lifetime of the geocoder, and a
semaphore caps the number of requests in flight (Nominatim's usage policy is
strict about bursts).
"""

import asyncio
import logging
import math
from dataclasses import dataclass
from typing import Optional, Protocol

import aiohttp

logger = logging.getLogger(__name__)


class GeocodingError(Exception):
    """Raised when an address cannot be turned into coordinates."""


@dataclass(frozen=True)
class GeocodeResult:
    lat: float
    lng: float
    display_name: str = ""


class Geocoder(Protocol):
    """Interface for geocoding services."""

    async def geocode(self, address: str) -> GeocodeResult:
        """Resolve an address or raise GeocodingError."""
        ...


class NominatimGeocoder:
    """Geocoder backed by the Nominatim /search endpoint."""

    def __init__(
        self,
        base_url: str,
        user_agent: str,
        concurrency: int = 2,
        timeout: float = 15.0,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.user_agent = user_agent
        self.timeout = timeout
        self._session = session
        self._owns_session = session is None
        self._semaphore = asyncio.Semaphore(concurrency)
        self._memo: dict[str, GeocodeResult] = {}

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(headers={"User-Agent": self.user_agent})
            self._owns_session = True
        return self._session

    async def geocode(self, address: str) -> GeocodeResult:
        key = address.strip().lower()
        if not key:
            raise GeocodingError("Empty address")
        if key in self._memo:
            return self._memo[key]

        session = await self._get_session()
        params = {"q": address, "format": "json", "limit": "1"}
        async with self._semaphore:
            try:
                async with session.get(
                    f"{self.base_url}/search",
                    params=params,
                    timeout=aiohttp.ClientTimeout(total=self.timeout),
                ) as resp:
                    if resp.status != 200:
                        raise GeocodingError(f"HTTP {resp.status} for {address!r}")
                    data = await resp.json(content_type=None)
            except (aiohttp.ClientError, asyncio.TimeoutError) as e:
                raise GeocodingError(f"Request failed for {address!r}: {e}") from e
            except ValueError as e:
                raise GeocodingError(f"Invalid JSON for {address!r}") from e

        result = _parse_search_response(data, address)
        self._memo[key] = result
        return result

    async def close(self) -> None:
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()


def _parse_search_response(data, address: str) -> GeocodeResult:
    if not isinstance(data, list) or not data:
        raise GeocodingError(f"No results for {address!r}")
    first = data[0]
    try:
        lat = float(first["lat"])
        lng = float(first["lon"])
    except (KeyError, TypeError, ValueError) as e:
        raise GeocodingError(f"Malformed result for {address!r}") from e
    if not (math.isfinite(lat) and math.isfinite(lng)):
        raise GeocodingError(f"Non-finite coordinates for {address!r}")
    return GeocodeResult(lat=lat, lng=lng, display_name=first.get("display_name", ""))
