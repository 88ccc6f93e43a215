#!/usr/bin/env python3
"""
Nearby Services Map — Main Entry Point

Loads service listings, places them on a map around a search location
(geocoding, privacy jitter, clustering) and writes a self-contained
Leaflet HTML map. Optionally draws a driving route to one listing.

Usage:
    python main.py --demo                          # Sample services around Zurich
    python main.py --listings services.json        # Listings from a JSON file
    python main.py --catalog-url https://...       # Listings from the catalog API
    python main.py --demo --route-to svc_3_1       # Also route to a listing
    python main.py --demo --open                   # Open the map in a browser

Environment Variables:
    CATALOG_URL         — catalog base URL (serves /api/services)
    CATALOG_API_KEY     — catalog bearer token
    GEOCODER_URL        — Nominatim base URL
    ROUTING_URL         — OSRM base URL
"""

import argparse
import asyncio
import json
import logging
import os
import sys
import webbrowser
from datetime import datetime, timedelta, timezone

from bootstrap import BootstrapState
from catalog import CatalogFetcher, ListingLocationInput, load_listings_file
from config import AppConfig
from geocoding import NominatimGeocoder
from leaflet_provider import LeafletMapProvider
from provider import LatLng
from widget import MapWidget

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(message)s",
    datefmt="%H:%M:%S",
)
logger = logging.getLogger(__name__)


def generate_demo_data() -> list[ListingLocationInput]:
    """Sample services around Zurich with the usual mix of location quality."""
    import random

    rng = random.Random(7)
    areas = [
        ("Altstadt",     47.3717, 8.5423, "Marktgasse 12, 8001 Zürich"),
        ("Enge",         47.3625, 8.5310, "Bederstrasse 4, 8002 Zürich"),
        ("Oerlikon",     47.4111, 8.5446, "Schaffhauserstrasse 350, 8050 Zürich"),
        ("Wiedikon",     47.3713, 8.5195, "Birmensdorferstrasse 60, 8004 Zürich"),
        ("Seefeld",      47.3580, 8.5550, "Seefeldstrasse 90, 8008 Zürich"),
        ("Wipkingen",    47.3930, 8.5290, "Röschibachstrasse 20, 8037 Zürich"),
        ("Hottingen",    47.3700, 8.5610, "Gemeindestrasse 25, 8032 Zürich"),
        ("Altstetten",   47.3910, 8.4890, "Badenerstrasse 600, 8048 Zürich"),
    ]
    titles = [
        "House Cleaning", "Dog Walking", "Bike Repair", "Math Tutoring",
        "Window Cleaning", "Moving Help", "Garden Care", "Photography",
        "Computer Support", "Yoga Lessons", "Tailoring", "Piano Lessons",
    ]
    now = datetime.now(timezone.utc)

    listings = []
    for i, (area, lat, lng, address) in enumerate(areas):
        for j in range(rng.randint(1, 4)):
            quality = rng.choice(["direct", "direct", "address", "owner", "none"])
            plat = lat + rng.uniform(-0.004, 0.004)
            plng = lng + rng.uniform(-0.004, 0.004)
            price_type = rng.choice(["fixed", "list", "quote"])
            price = rng.randint(30, 180)
            listings.append(ListingLocationInput(
                id=f"svc_{i}_{j}",
                title=f"{rng.choice(titles)} in {area}",
                lat=f"{plat:.6f}" if quality == "direct" else None,
                lng=f"{plng:.6f}" if quality == "direct" else None,
                owner_lat=f"{plat:.6f}" if quality == "owner" else None,
                owner_lng=f"{plng:.6f}" if quality == "owner" else None,
                addresses=(address,) if quality == "address" else (),
                created_at=(now - timedelta(days=rng.randint(0, 90))).isoformat(),
                price=price if price_type == "fixed" else None,
                price_type=price_type,
                list_price=price if price_type == "list" else None,
                url=f"/service/svc_{i}_{j}",
            ))
    return listings


async def run(args, config: AppConfig, listings: list[ListingLocationInput]) -> int:
    provider = LeafletMapProvider(config.map)
    geocoder = None
    if not args.no_geocode:
        geocoder = NominatimGeocoder(
            config.map.geocoder_url,
            config.map.geocoder_user_agent,
            concurrency=config.map.geocoder_concurrency,
            timeout=config.map.http_timeout,
        )
    widget = MapWidget(provider, geocoder, config.map)
    if args.lat is None or args.lng is None:
        logger.info("No search location given, centering on the default map area")
        user = LatLng(*config.map.default_center)
    else:
        user = LatLng(args.lat, args.lng)

    try:
        status = await widget.show(listings, user, args.location_name)
        if status is BootstrapState.FAILED:
            logger.error(widget.error_message)
            print(f"\nOpen the area instead: {widget.fallback_url}")
            return 1
        if status is not BootstrapState.READY:
            return 1

        if args.zoom is not None and args.zoom != widget.state.map.zoom:
            await widget.zoom_to(args.zoom)

        if args.route_to:
            session = await widget.show_route(args.route_to)
            if session:
                widget.open_listing(args.route_to)
            else:
                logger.warning(f"No route drawn to {args.route_to}")

        os.makedirs(config.output_dir, exist_ok=True)
        html_path = provider.write_html(
            widget.state.map, os.path.join(config.output_dir, config.map_filename)
        )
        json_path = os.path.join(config.output_dir, config.data_filename)
        with open(json_path, "w") as f:
            json.dump({
                "generated_at": datetime.now(timezone.utc).isoformat(),
                "total_listings": len(listings),
                **widget.describe(),
            }, f, indent=2)

        logger.info(f"Map saved to: {html_path}")
        logger.info(f"Cluster data saved to: {json_path}")
        if args.open:
            webbrowser.open(f"file://{os.path.abspath(html_path)}")
        print(f"\n✅ Map ready: {html_path}")
        return 0
    finally:
        widget.hide()
        if geocoder is not None:
            await geocoder.close()
        await provider.close()


def main():
    parser = argparse.ArgumentParser(description="Nearby Services Map")
    source = parser.add_mutually_exclusive_group()
    source.add_argument("--demo", action="store_true", help="Use sample services around Zurich")
    source.add_argument("--listings", help="JSON file with catalog services")
    source.add_argument("--catalog-url", help="Catalog base URL (defaults to $CATALOG_URL)")
    parser.add_argument("--lat", type=float, help="Search location latitude")
    parser.add_argument("--lng", type=float, help="Search location longitude")
    parser.add_argument("--location-name", default="", help="Label for the search location")
    parser.add_argument("--zoom", type=int, help="Map zoom level (changes cluster size)")
    parser.add_argument("--route-to", help="Listing id to draw a driving route to")
    parser.add_argument("--no-geocode", action="store_true", help="Skip address geocoding")
    parser.add_argument("--output-dir", help="Where to write the map")
    parser.add_argument("--open", action="store_true", help="Open the map in a browser")
    args = parser.parse_args()

    config = AppConfig()
    if args.output_dir:
        config.output_dir = args.output_dir

    if args.demo:
        logger.info("Running in DEMO mode with sample data...")
        listings = generate_demo_data()
    elif args.listings:
        listings = load_listings_file(args.listings)
    else:
        url = args.catalog_url or config.catalog_url
        if not url:
            logger.error(
                "No listing source configured!\n"
                "Set CATALOG_URL, pass --catalog-url or --listings,\n"
                "or run with --demo to test with sample data."
            )
            sys.exit(1)
        listings = CatalogFetcher(url, config.keys).fetch()

    if not listings:
        logger.warning("No listings to show. Try --demo to test the map.")
        sys.exit(0)

    sys.exit(asyncio.run(run(args, config, listings)))


if __name__ == "__main__":
    main()
