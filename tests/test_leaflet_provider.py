from __future__ import annotations

import asyncio
import json

import pytest

from config import MapSettings
from geocoding import GeocodingError, NominatimGeocoder, _parse_search_response
from leaflet_provider import LeafletMapProvider, parse_osrm_route
from provider import LatLng, MarkerOptions, Route, RouteError

A = LatLng(47.3769, 8.5417)
B = LatLng(47.39, 8.51)


def test_parse_osrm_route_flips_lng_lat() -> None:
    data = {
        "code": "Ok",
        "routes": [{
            "distance": 3200.5,
            "duration": 480.0,
            "geometry": {"coordinates": [[8.5417, 47.3769], [8.53, 47.38], [8.51, 47.39]]},
        }],
    }
    route = parse_osrm_route(data, A, B)

    assert route.path[1] == LatLng(47.38, 8.53)
    assert route.distance_m == 3200.5
    bounds = route.bounds
    assert (bounds.south, bounds.north) == (47.3769, 47.39)
    assert (bounds.west, bounds.east) == (8.51, 8.5417)


@pytest.mark.parametrize(
    "data, status",
    [
        ({"code": "NoRoute", "message": "Impossible route"}, "NoRoute"),
        ({"code": "Ok", "routes": []}, "ZERO_RESULTS"),
        ({}, "UNKNOWN_ERROR"),
        ([], "INVALID_RESPONSE"),
        ({"code": "Ok", "routes": [{"geometry": {"coordinates": [[1, 2, 3]]}}]}, "INVALID_RESPONSE"),
        ({"code": "Ok", "routes": [{"distance": None}]}, "INVALID_RESPONSE"),
        ({"code": "Ok", "routes": ["bogus"]}, "INVALID_RESPONSE"),
    ],
)
def test_parse_osrm_route_errors(data, status) -> None:
    with pytest.raises(RouteError) as exc:
        parse_osrm_route(data, A, B)
    assert exc.value.status == status


def test_route_bounds_fall_back_to_endpoints() -> None:
    bounds = Route(A, B).bounds
    assert bounds.contains(A.lat, A.lng)
    assert bounds.contains(B.lat, B.lng)


def test_to_html_embeds_markers_popups_and_routes(tmp_path) -> None:
    provider = LeafletMapProvider(MapSettings())
    map_handle = provider.create_map(A, 12)
    marker = provider.create_marker(map_handle, MarkerOptions(position=B, title="Bike Repair"))
    popup = provider.create_info_overlay("<b>Bike Repair</b>", marker)
    popup.open(map_handle, marker)
    renderer = provider.create_directions_renderer("#2563eb")
    renderer.set_map(map_handle)
    renderer.set_route(Route(A, B, [A, B]))

    html = provider.to_html(map_handle, title="Services <near> you")

    assert "Services &lt;near&gt; you" in html
    assert "L.circleMarker" in html
    payload = html.split("const DATA = ", 1)[1].split(";\n", 1)[0]
    data = json.loads(payload)
    assert data["markers"][0]["title"] == "Bike Repair"
    assert data["markers"][0]["open"] is True
    assert data["routes"][0]["color"] == "#2563eb"
    assert data["routes"][0]["path"] == [[A.lat, A.lng], [B.lat, B.lng]]

    path = provider.write_html(map_handle, str(tmp_path / "out" / "map.html"))
    assert "L.circleMarker" in (tmp_path / "out" / "map.html").read_text()
    assert path.endswith("map.html")


def test_marker_set_map_detaches() -> None:
    provider = LeafletMapProvider(MapSettings())
    map_handle = provider.create_map(A, 12)
    marker = provider.create_marker(map_handle, MarkerOptions(position=B))
    assert map_handle.markers == [marker]
    marker.set_map(None)
    assert map_handle.markers == []


def test_external_link_points_at_osm() -> None:
    link = LeafletMapProvider(MapSettings()).external_link(47.3769, 8.5417)
    assert link.startswith("https://www.openstreetmap.org/?mlat=47.37690&mlon=8.54170")


def test_parse_search_response() -> None:
    result = _parse_search_response(
        [{"lat": "47.37", "lon": "8.54", "display_name": "Zürich"}], "Zürich"
    )
    assert (result.lat, result.lng, result.display_name) == (47.37, 8.54, "Zürich")


@pytest.mark.parametrize("data", [[], {}, [{"lat": "x", "lon": "1"}], [{"lat": "nan", "lon": "1"}]])
def test_parse_search_response_errors(data) -> None:
    with pytest.raises(GeocodingError):
        _parse_search_response(data, "somewhere")


def test_empty_address_fails_without_request() -> None:
    geocoder = NominatimGeocoder("https://nominatim.example", "tests/1.0")
    with pytest.raises(GeocodingError):
        asyncio.run(geocoder.geocode("   "))
