from __future__ import annotations

from clustering import build_clusters
from conftest import USER, FakeProvider, make_listing
from jitter import apply_jitter
from overlays import OverlayManager, cluster_list, listing_card, user_card
from provider import MARKER_CLUSTER, MARKER_SINGLE, MARKER_USER
from resolver import ResolvedCoordinate


def _setup(listings):
    provider = FakeProvider(loaded=True)
    map_handle = provider.create_map(USER, 12)
    manager = OverlayManager(provider, map_handle, max_overlay_items=10)
    points = [
        apply_jitter(ResolvedCoordinate(l.id, float(l.lat), float(l.lng), "direct"))
        for l in listings
    ]
    clusters, _ = build_clusters(points, step=0.008)
    by_id = {l.id: l for l in listings}
    return provider, map_handle, manager, clusters, by_id


LISTINGS = [
    make_listing("a1", lat=47.37, lng=8.54, price_type="fixed", price=80),
    make_listing("a2", lat=47.3701, lng=8.5401),
    make_listing("b", lat=46.20, lng=6.14, price_type="list", list_price=25),
]


def test_render_creates_user_and_cluster_markers() -> None:
    _, map_handle, manager, clusters, by_id = _setup(LISTINGS)
    manager.render(clusters, USER, by_id, "Zürich")

    kinds = sorted(m.options.kind for m in map_handle.markers)
    assert kinds == sorted([MARKER_USER, MARKER_CLUSTER, MARKER_SINGLE])
    cluster_marker = next(m for m in map_handle.markers if m.options.kind == MARKER_CLUSTER)
    assert cluster_marker.options.label == "2"
    assert cluster_marker.options.title == "2 Services"
    assert cluster_marker.options.z_index == 1002
    user_marker = next(m for m in map_handle.markers if m.options.kind == MARKER_USER)
    assert user_marker.options.z_index == 9999


def test_only_one_overlay_open_at_a_time() -> None:
    _, map_handle, manager, clusters, by_id = _setup(LISTINGS)
    manager.render(clusters, USER, by_id)
    marker_a, marker_b = [m for m in map_handle.markers if m.options.kind != MARKER_USER]

    marker_a.click()
    assert marker_a.popup.is_open
    assert manager.active is marker_a.popup

    marker_b.click()
    assert not marker_a.popup.is_open
    assert marker_b.popup.is_open
    assert map_handle.open_overlays == [marker_b.popup]
    assert manager.active is marker_b.popup


def test_background_click_closes_active_overlay() -> None:
    _, map_handle, manager, clusters, by_id = _setup(LISTINGS)
    manager.render(clusters, USER, by_id)
    map_handle.markers[0].click()

    map_handle.click()

    assert manager.active is None
    assert map_handle.open_overlays == []


def test_render_tears_down_previous_pass() -> None:
    _, map_handle, manager, clusters, by_id = _setup(LISTINGS)
    manager.render(clusters, USER, by_id)
    old_markers = list(map_handle.markers)
    old_markers[1].click()

    manager.render(clusters, USER, by_id)

    assert len(map_handle.markers) == len(old_markers)
    assert all(m.map is None for m in old_markers)
    assert not old_markers[1].popup.is_open
    assert manager.active is None


def test_dispose_removes_everything() -> None:
    _, map_handle, manager, clusters, by_id = _setup(LISTINGS)
    manager.render(clusters, USER, by_id)
    map_handle.markers[0].click()

    manager.dispose()

    assert map_handle.markers == []
    assert manager.markers == []
    assert manager.overlays == []
    assert manager.active is None
    assert manager.listing_elements == {}


def test_open_listing_opens_its_marker() -> None:
    _, map_handle, manager, clusters, by_id = _setup(LISTINGS)
    manager.render(clusters, USER, by_id)

    assert manager.open_listing("b")
    marker, overlay = manager.listing_elements["b"]
    assert overlay.is_open
    assert marker.options.title == "Service b"
    assert not manager.open_listing("missing")


def test_listing_card_price_lines_and_escaping() -> None:
    fixed = listing_card(make_listing("x", title="<Cleaning>", price_type="fixed", price=80))
    assert "CHF 80" in fixed
    assert "&lt;Cleaning&gt;" in fixed
    assert "Approximate Location" in fixed

    listed = listing_card(make_listing("y", price_type="list", list_price=25))
    assert "From CHF 25" in listed

    quote = listing_card(make_listing("z", price_type="quote"))
    assert "Contact for pricing" in quote


def test_cluster_list_truncates() -> None:
    listings = [make_listing(f"s{i}") for i in range(13)]
    html = cluster_list(listings, max_items=10)
    assert "13 Services in this area" in html
    assert html.count('class="row"') == 10
    assert "+ 3 more" in html


def test_user_card() -> None:
    assert "Your search location" in user_card("Zürich")
