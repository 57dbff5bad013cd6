"""Tests for the map surface, selection state and layer reconciler."""

from unittest.mock import MagicMock

import pytest

from cumble.errors import RenderSurfaceInitError, SurfaceStateError
from cumble.mapping.collision import ResolvedPoint
from cumble.mapping.geometry_utils import LngLatBounds
from cumble.mapping.reconciler import (
    MapLayerReconciler,
    ReconcilerState,
    compute_viewport_fit,
)
from cumble.mapping.reference_data import CityCentroidRecord, NeighborhoodRecord
from cumble.mapping.selection import SelectionState
from cumble.mapping.styles import USER_LAYER_ID, USER_SOURCE_ID, build_user_paint
from cumble.mapping.surface import MapSurface, camera_for_bounds


NEIGHBORHOODS = [
    NeighborhoodRecord("Back Bay", "Boston", "Massachusetts", 42.3503, -71.0810),
    NeighborhoodRecord("Beacon Hill", "Boston", "Massachusetts", 42.3588, -71.0707),
    NeighborhoodRecord("Fremont", "Seattle", "Washington", 47.6510, -122.3505),
]
CITIES = [
    CityCentroidRecord("Boston", "Massachusetts", 42.3545, -71.0758),
    CityCentroidRecord("Seattle", "Washington", 47.6510, -122.3505),
    CityCentroidRecord("Denver", "Colorado", 39.7392, -104.9903),
]


def _point(uid, lat, lng, name="Ann Lee", city="Boston", neighborhood="Back Bay"):
    return ResolvedPoint(
        user_id=uid,
        display_name=name,
        lng=lng,
        lat=lat,
        profile_url=f"/user/{uid}",
        city=city,
        neighborhood=neighborhood,
    )


POINTS = [
    _point("u1", 42.3503, -71.0810),
    _point("u2", 47.6510, -122.3505, name="Bo Kim", city="Seattle", neighborhood="Fremont"),
]


def _feature(point):
    return {
        "type": "Feature",
        "geometry": {"type": "Point", "coordinates": [point.lng, point.lat]},
        "properties": {"name": point.display_name, "profileUrl": point.profile_url},
    }


@pytest.fixture
def surface():
    return MapSurface(access_token="pk.test-token")


@pytest.fixture
def navigate():
    return MagicMock()


@pytest.fixture
def reconciler(surface, navigate):
    rec = MapLayerReconciler(surface, on_navigate=navigate)
    assert rec.mount() is True
    return rec


# =============================================================================
# MapSurface
# =============================================================================


class TestMapSurface:
    def test_attach_requires_token(self):
        with pytest.raises(RenderSurfaceInitError):
            MapSurface(access_token="").attach()

    def test_attach_requires_public_token(self):
        with pytest.raises(RenderSurfaceInitError):
            MapSurface(access_token="sk.secret").attach()

    def test_attach_adds_navigation_and_loads_style(self, surface):
        surface.attach()
        assert surface.controls == ["navigation"]
        assert surface.loaded()
        assert surface.style_url == "mapbox://styles/mapbox/streets-v12"

    def test_layer_needs_loaded_style(self):
        surface = MapSurface(access_token="pk.x", auto_load=False)
        surface.attach()
        surface.add_source("s", {"type": "FeatureCollection", "features": []})
        with pytest.raises(SurfaceStateError):
            surface.add_layer({"id": "l", "source": "s"})

    def test_layer_needs_existing_source(self, surface):
        surface.attach()
        with pytest.raises(SurfaceStateError):
            surface.add_layer({"id": "l", "source": "missing"})

    def test_duplicate_source_rejected(self, surface):
        surface.attach()
        surface.add_source("s", {})
        with pytest.raises(SurfaceStateError):
            surface.add_source("s", {})

    def test_source_in_use_cannot_be_removed(self, surface):
        surface.attach()
        surface.add_source("s", {})
        surface.add_layer({"id": "l", "source": "s"})
        with pytest.raises(SurfaceStateError):
            surface.remove_source("s")

    def test_layer_events_only_fire_for_existing_layer(self, surface):
        handler = MagicMock()
        surface.attach()
        surface.on("click", "l", handler)
        assert surface.fire("click", "l", {}) == 0
        surface.add_source("s", {})
        surface.add_layer({"id": "l", "source": "s"})
        assert surface.fire("click", "l", {}) == 1
        handler.assert_called_once_with({})

    def test_load_fires_once(self):
        surface = MapSurface(access_token="pk.x", auto_load=False)
        handler = MagicMock()
        surface.on("load", None, handler)
        surface.attach()
        surface.load_style()
        surface.load_style()
        handler.assert_called_once()

    def test_removed_surface_cannot_reattach(self, surface):
        surface.attach()
        surface.remove()
        assert not surface.loaded()
        with pytest.raises(RenderSurfaceInitError):
            surface.attach()


class TestCameraForBounds:
    def test_single_point_lands_on_max_zoom(self):
        bounds = LngLatBounds(-71.081, 42.3503, -71.081, 42.3503)
        (lng, lat), zoom = camera_for_bounds(bounds, 800, 450, padding=50, max_zoom=14)
        assert zoom == 14
        assert lng == pytest.approx(-71.081)
        assert lat == pytest.approx(42.3503)

    def test_wide_bounds_stay_below_max_zoom(self):
        bounds = LngLatBounds(-122.35, 42.35, -71.08, 47.65)
        _, zoom = camera_for_bounds(bounds, 1024, 640, padding=50, max_zoom=5)
        assert 0 < zoom < 5

    def test_zoom_is_capped(self):
        bounds = LngLatBounds(-71.09, 42.35, -71.07, 42.36)
        _, zoom = camera_for_bounds(bounds, 1024, 640, padding=50, max_zoom=5)
        assert zoom == 5


# =============================================================================
# SelectionState
# =============================================================================


class TestSelectionState:
    def test_set_city_notifies_and_clears_highlight(self):
        selection = SelectionState(highlighted="Back Bay")
        listener = MagicMock()
        selection.on_filter_change(listener)
        assert selection.set_city("Boston") is True
        assert selection.highlighted is None
        listener.assert_called_once_with(selection)

    def test_unchanged_city_does_not_notify(self):
        selection = SelectionState(city="Boston")
        listener = MagicMock()
        selection.on_filter_change(listener)
        assert selection.set_city("Boston") is False
        listener.assert_not_called()

    def test_empty_city_means_all(self):
        selection = SelectionState(city="Boston")
        selection.set_city("")
        assert selection.city is None
        assert not selection.filter_active

    def test_highlight_notifies_highlight_listeners_only(self):
        selection = SelectionState()
        on_filter, on_highlight = MagicMock(), MagicMock()
        selection.on_filter_change(on_filter)
        selection.on_highlight_change(on_highlight)
        selection.set_highlighted("u1")
        on_highlight.assert_called_once_with(selection)
        on_filter.assert_not_called()


# =============================================================================
# Viewport fit
# =============================================================================


class TestComputeViewportFit:
    def test_city_filter_frames_city_neighborhoods(self):
        fit = compute_viewport_fit(POINTS, "Boston", NEIGHBORHOODS, CITIES)
        assert fit.scope == "city"
        assert fit.max_zoom == 14
        assert fit.padding == 50
        assert fit.bounds == LngLatBounds(-71.0810, 42.3503, -71.0707, 42.3588)

    def test_city_without_neighborhoods_uses_centroid(self):
        fit = compute_viewport_fit(POINTS, "Denver", NEIGHBORHOODS, CITIES)
        assert fit.bounds.is_point
        assert fit.bounds.center == (-104.9903, 39.7392)

    def test_unknown_city_skips_fit(self):
        assert compute_viewport_fit(POINTS, "Atlantis", NEIGHBORHOODS, CITIES) is None

    def test_all_cities_frames_every_point(self):
        fit = compute_viewport_fit(POINTS, None, NEIGHBORHOODS, CITIES)
        assert fit.scope == "all"
        assert fit.max_zoom == 5
        assert fit.bounds == LngLatBounds(-122.3505, 42.3503, -71.0810, 47.6510)

    def test_nothing_to_frame(self):
        assert compute_viewport_fit([], None) is None


# =============================================================================
# MapLayerReconciler
# =============================================================================


class TestReconcilerLifecycle:
    def test_mount_failure_leaves_map_unavailable(self):
        rec = MapLayerReconciler(MapSurface(access_token=""))
        assert rec.mount() is False
        assert rec.available is False
        assert "MAPBOX_ACCESS_TOKEN" in rec.error
        assert rec.reconcile(POINTS) is None
        doc = rec.document()
        assert doc["available"] is False
        assert doc["layers"] == []

    def test_mount_runs_once(self, reconciler, surface):
        assert reconciler.mount() is True
        assert surface.controls == ["navigation"]

    def test_dispose_is_idempotent(self, reconciler, surface):
        reconciler.reconcile(POINTS)
        reconciler.dispose()
        reconciler.dispose()
        assert reconciler.state == ReconcilerState.DISPOSED
        assert reconciler.surface is None
        assert surface.get_layer(USER_LAYER_ID) is None
        assert surface.listener_count("click", USER_LAYER_ID) == 0

    def test_reconcile_after_dispose_is_ignored(self, reconciler):
        reconciler.dispose()
        assert reconciler.reconcile(POINTS) is None
        assert reconciler.document()["available"] is False

    def test_pending_inputs_apply_on_style_load(self):
        surface = MapSurface(access_token="pk.x", auto_load=False)
        rec = MapLayerReconciler(surface)
        rec.mount()
        assert rec.reconcile(POINTS) is None
        assert surface.get_source(USER_SOURCE_ID) is None

        surface.load_style()

        assert len(surface.get_source(USER_SOURCE_ID)["data"]["features"]) == 2
        assert surface.get_layer(USER_LAYER_ID) is not None


class TestReconcile:
    def test_first_reconcile_adds_source_and_layer(self, reconciler, surface):
        fit = reconciler.reconcile(POINTS)
        source = surface.get_source(USER_SOURCE_ID)
        assert [f["properties"]["user_id"] for f in source["data"]["features"]] == [
            "u1",
            "u2",
        ]
        layer = surface.get_layer(USER_LAYER_ID)
        assert layer["type"] == "circle"
        assert layer["paint"] == build_user_paint(None)
        assert fit.scope == "all"

    def test_reconcile_is_idempotent(self, reconciler, surface):
        reconciler.reconcile(POINTS)
        first = surface.to_document()
        reconciler.reconcile(POINTS)
        assert surface.to_document() == first
        assert len(first["layers"]) == 1
        assert surface.listener_count("click", USER_LAYER_ID) == 1
        assert surface.listener_count("mouseenter", USER_LAYER_ID) == 1

    def test_new_points_replace_old_ones(self, reconciler, surface):
        reconciler.reconcile(POINTS)
        reconciler.reconcile(POINTS[1:])
        features = surface.get_source(USER_SOURCE_ID)["data"]["features"]
        assert [f["properties"]["user_id"] for f in features] == ["u2"]

    def test_empty_points_keep_viewport(self, reconciler, surface):
        before = surface.viewport
        assert reconciler.reconcile([]) is None
        assert surface.viewport == before
        assert surface.get_source(USER_SOURCE_ID)["data"]["features"] == []

    def test_city_filter_fits_city(self, reconciler, surface):
        fit = reconciler.reconcile(
            POINTS, SelectionState(city="Boston"), NEIGHBORHOODS, CITIES
        )
        assert fit.scope == "city"
        doc = surface.to_document()
        assert doc["fit"]["maxZoom"] == 14
        assert doc["fit"]["padding"] == 50
        assert doc["fit"]["bounds"] == [[-71.0810, 42.3503], [-71.0707, 42.3588]]

    def test_highlight_restyles_without_touching_data(self, reconciler, surface):
        reconciler.reconcile(POINTS)
        data_before = surface.get_source(USER_SOURCE_ID)["data"]
        reconciler.restyle(SelectionState(highlighted="u1"))
        paint = surface.get_layer(USER_LAYER_ID)["paint"]
        assert paint["circle-color"][0] == "case"
        assert paint == build_user_paint("u1")
        assert surface.get_source(USER_SOURCE_ID)["data"] == data_before

    def test_stray_layer_without_source_is_replaced(self, reconciler, surface):
        surface.add_source("other", {})
        surface.add_layer({"id": USER_LAYER_ID, "source": "other"})
        reconciler.reconcile(POINTS)
        assert surface.get_layer(USER_LAYER_ID)["source"] == USER_SOURCE_ID


class TestInteraction:
    def test_hover_shows_single_label(self, reconciler, surface):
        reconciler.reconcile(POINTS)
        surface.fire("mouseenter", USER_LAYER_ID, _feature(POINTS[0]))
        surface.fire("mouseenter", USER_LAYER_ID, _feature(POINTS[1]))
        assert surface.cursor == "pointer"
        assert surface.popup.html == "<strong>Bo Kim</strong>"
        assert (surface.popup.lng, surface.popup.lat) == (-122.3505, 47.6510)

    def test_popup_in_document(self, reconciler, surface):
        reconciler.reconcile(POINTS)
        surface.fire("mouseenter", USER_LAYER_ID, _feature(POINTS[1]))
        assert surface.to_document()["popup"] == {
            "lngLat": [-122.3505, 47.6510],
            "html": "<strong>Bo Kim</strong>",
            "offset": 15,
            "closeButton": False,
        }

    def test_hover_label_is_escaped(self, reconciler, surface):
        reconciler.reconcile([_point("u9", 1.0, 1.0, name="<b>x</b>")])
        surface.fire("mouseenter", USER_LAYER_ID, _feature(_point("u9", 1.0, 1.0, name="<b>x</b>")))
        assert surface.popup.html == "<strong>&lt;b&gt;x&lt;/b&gt;</strong>"

    def test_mouseleave_clears_label(self, reconciler, surface):
        reconciler.reconcile(POINTS)
        surface.fire("mouseenter", USER_LAYER_ID, _feature(POINTS[0]))
        surface.fire("mouseleave", USER_LAYER_ID)
        assert surface.cursor == ""
        assert surface.popup is None

    def test_click_navigates_to_profile(self, reconciler, surface, navigate):
        reconciler.reconcile(POINTS)
        surface.fire("click", USER_LAYER_ID, _feature(POINTS[0]))
        navigate.assert_called_once_with("/user/u1")
