"""
Catalog collaborator: listings that may be placed on the map.

The catalog is consumed read-only. Each service record is normalized into an
immutable ListingLocationInput carrying the raw location candidates (which may
be strings, numbers or missing) plus the display fields the overlays need.
"""

import json
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Optional

import requests

from config import APIKeys

logger = logging.getLogger(__name__)

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


# ── Listing Model ───────────────────────────────────────────────────────────

@dataclass(frozen=True)
class ListingLocationInput:
    """Normalized listing as supplied by the catalog."""
    id: str
    title: str = ""
    lat: Any = None                      # direct coordinates, unparsed
    lng: Any = None
    owner_lat: Any = None                # owner's fallback coordinates, unparsed
    owner_lng: Any = None
    addresses: tuple = ()                # free-text, first is primary
    created_at: Optional[str] = None     # ISO format
    price: Optional[float] = None
    price_type: str = ""                 # "fixed" | "list" | other
    list_price: Optional[float] = None   # first entry of a price list
    image_url: str = ""
    url: str = ""

    @property
    def primary_address(self) -> Optional[str]:
        return self.addresses[0] if self.addresses else None

    @property
    def created(self) -> datetime:
        """Creation time; unknown or malformed timestamps sort first."""
        if not self.created_at:
            return _EPOCH
        try:
            created = datetime.fromisoformat(self.created_at.replace("Z", "+00:00"))
        except (ValueError, TypeError):
            return _EPOCH
        if created.tzinfo is None:
            created = created.replace(tzinfo=timezone.utc)
        return created


def normalize_service(item: dict) -> Optional[ListingLocationInput]:
    """Turn one catalog service record into a ListingLocationInput."""
    listing_id = item.get("id")
    if listing_id in (None, ""):
        return None

    owner = item.get("owner") or {}
    locations = item.get("locations") or []
    if isinstance(locations, str):
        locations = [locations]

    price_list = item.get("priceList") or []
    list_price = None
    if isinstance(price_list, list) and price_list and isinstance(price_list[0], dict):
        list_price = price_list[0].get("price")

    images = item.get("images") or []

    return ListingLocationInput(
        id=str(listing_id),
        title=item.get("title", "") or "",
        lat=item.get("locationLat"),
        lng=item.get("locationLng"),
        owner_lat=owner.get("locationLat"),
        owner_lng=owner.get("locationLng"),
        addresses=tuple(str(a) for a in locations if a),
        created_at=item.get("createdAt"),
        price=item.get("price"),
        price_type=item.get("priceType", "") or "",
        list_price=list_price,
        image_url=images[0] if images else "",
        url=item.get("url") or f"/service/{listing_id}",
    )


def normalize_all(items: list) -> list[ListingLocationInput]:
    listings = []
    for item in items:
        try:
            listing = normalize_service(item)
            if listing:
                listings.append(listing)
        except (AttributeError, TypeError) as e:
            logger.debug(f"[catalog] Skipping item: {e}")
    return listings


# ── Catalog Fetcher ─────────────────────────────────────────────────────────

class CatalogFetcher:
    """Fetches services from the marketplace catalog API."""

    source_name = "catalog"

    def __init__(self, base_url: str, keys: APIKeys):
        self.base_url = base_url.rstrip("/")
        self.keys = keys
        self.session = requests.Session()
        self.session.headers.update({"Accept": "application/json"})
        if keys.catalog:
            self.session.headers.update({"Authorization": f"Bearer {keys.catalog}"})

    def fetch(self) -> list[ListingLocationInput]:
        """Fetch all services. Returns normalized listings, empty on failure."""
        if not self.base_url:
            logger.warning("Catalog URL not set. Skipping.")
            return []

        data = self._safe_request("GET", f"{self.base_url}/api/services")
        if not data:
            return []

        items = data if isinstance(data, list) else data.get("services", data.get("results", []))
        listings = normalize_all(items)
        logger.info(f"[catalog] Fetched {len(listings)} listings")
        return listings

    def _safe_request(self, method: str, url: str, **kwargs) -> Optional[Any]:
        """Make an API request with error handling."""
        try:
            resp = self.session.request(method, url, timeout=30, **kwargs)
            resp.raise_for_status()
            return resp.json()
        except requests.exceptions.HTTPError as e:
            logger.error(f"[{self.source_name}] HTTP {e.response.status_code}: {e}")
        except requests.exceptions.RequestException as e:
            logger.error(f"[{self.source_name}] Request failed: {e}")
        except ValueError:
            logger.error(f"[{self.source_name}] Invalid JSON response")
        return None


def load_listings_file(path: str) -> list[ListingLocationInput]:
    """Load catalog records from a JSON file (array or {"services": [...]})."""
    with open(path) as f:
        data = json.load(f)
    items = data if isinstance(data, list) else data.get("services", [])
    listings = normalize_all(items)
    logger.info(f"Loaded {len(listings)} listings from {path}")
    return listings
