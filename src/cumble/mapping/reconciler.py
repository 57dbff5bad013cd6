"""Keep the user layer on a MapSurface in sync with resolved points."""

import html
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from ..errors import RenderSurfaceInitError
from .collision import ResolvedPoint
from .geometry_utils import LngLatBounds, feature_collection, get_bounding_box
from .map_data_builder import MapDataBuilder
from .reference_data import CityCentroidRecord, NeighborhoodRecord
from .selection import SelectionState
from .styles import USER_LAYER_ID, USER_SOURCE_ID, build_user_paint
from .surface import MapSurface, Viewport

logger = logging.getLogger(__name__)


class ReconcilerState(str, Enum):
    UNINITIALIZED = "uninitialized"
    READY = "ready"
    DISPOSED = "disposed"


@dataclass(frozen=True)
class ViewportFit:
    """A fitBounds request computed from the current inputs."""

    bounds: LngLatBounds
    padding: int
    max_zoom: float
    scope: str  # "city" | "all"


def compute_viewport_fit(
    points: Sequence[ResolvedPoint],
    city: Optional[str],
    neighborhoods: Sequence[NeighborhoodRecord] = (),
    cities: Sequence[CityCentroidRecord] = (),
    padding: int = 50,
    city_max_zoom: float = 14,
    all_max_zoom: float = 5,
) -> Optional[ViewportFit]:
    """
    Decide where the camera should go.

    With a city filter the camera frames that city's reference
    neighborhoods (or its centroid when it has none); without one it frames
    every rendered point. Returns None when there is nothing to frame.
    """
    if city:
        coords = [(n.lng, n.lat) for n in neighborhoods if n.city_name == city]
        if not coords:
            coords = [(c.lng, c.lat) for c in cities if c.city_name == city][:1]
        bounds = get_bounding_box(coords)
        if bounds is None:
            return None
        return ViewportFit(bounds, padding, city_max_zoom, "city")

    bounds = get_bounding_box((p.lng, p.lat) for p in points)
    if bounds is None:
        return None
    return ViewportFit(bounds, padding, all_max_zoom, "all")


class MapLayerReconciler:
    """
    Own the user point layer on one surface.

    Lifecycle: UNINITIALIZED → READY (mount) → DISPOSED (dispose). Every
    reconcile replaces the whole feature collection, so calling it twice
    with the same inputs leaves the surface unchanged.
    """

    def __init__(
        self,
        surface: MapSurface,
        on_navigate: Optional[Callable[[str], None]] = None,
        padding: int = 50,
        city_max_zoom: float = 14,
        all_max_zoom: float = 5,
    ):
        self.surface: Optional[MapSurface] = surface
        self.on_navigate = on_navigate
        self.padding = padding
        self.city_max_zoom = city_max_zoom
        self.all_max_zoom = all_max_zoom

        self.state = ReconcilerState.UNINITIALIZED
        self.error: Optional[str] = None
        self.last_fit: Optional[ViewportFit] = None

        self._points: List[ResolvedPoint] = []
        self._selection = SelectionState()
        self._neighborhoods: Sequence[NeighborhoodRecord] = ()
        self._cities: Sequence[CityCentroidRecord] = ()
        self._pending = False
        self._listeners: List[Tuple[str, Optional[str], Callable]] = []

    @property
    def available(self) -> bool:
        """True once mounted on a working surface."""
        return self.state == ReconcilerState.READY

    # ── lifecycle ──────────────────────────────────────────────────

    def mount(self) -> bool:
        """
        Attach the surface. Runs once; later calls are ignored.

        A surface that fails to initialize leaves the reconciler
        non-interactive instead of raising.

        Returns:
            True if the reconciler is READY
        """
        if self.state != ReconcilerState.UNINITIALIZED or self.surface is None:
            return self.available
        if self.error:
            return False

        self._listen("load", None, self._on_style_load)
        try:
            self.surface.attach()
        except RenderSurfaceInitError as e:
            logger.error(f"Map surface failed to initialize: {e}")
            self.error = str(e)
            self._detach_listeners()
            return False

        self.state = ReconcilerState.READY
        return True

    def dispose(self) -> None:
        """Detach listeners and release the surface. Idempotent."""
        if self.state == ReconcilerState.DISPOSED:
            return
        if self.surface is not None:
            self._detach_listeners()
            self.surface.remove_popup()
            self.surface.remove()
        self.surface = None
        self._pending = False
        self.state = ReconcilerState.DISPOSED

    # ── reconciliation ─────────────────────────────────────────────

    def reconcile(
        self,
        points: Sequence[ResolvedPoint],
        selection: Optional[SelectionState] = None,
        neighborhoods: Sequence[NeighborhoodRecord] = (),
        cities: Sequence[CityCentroidRecord] = (),
    ) -> Optional[ViewportFit]:
        """
        Replace the rendered points and refit the viewport.

        Before the style has loaded the inputs are kept and applied on the
        "load" event.

        Returns:
            The viewport fit applied, or None
        """
        self._points = list(points)
        self._selection = selection or SelectionState()
        self._neighborhoods = neighborhoods
        self._cities = cities

        if self.state != ReconcilerState.READY:
            return None
        if not self.surface.loaded():
            self._pending = True
            return None
        return self._apply()

    def restyle(self, selection: SelectionState) -> None:
        """Re-apply highlight paint without touching the data."""
        self._selection = selection
        if self.state != ReconcilerState.READY or not self.surface.loaded():
            return
        if self.surface.get_layer(USER_LAYER_ID) is None:
            return
        for name, value in build_user_paint(selection.highlighted).items():
            self.surface.set_paint_property(USER_LAYER_ID, name, value)

    def _on_style_load(self, _feature=None) -> None:
        if self._pending and self.state == ReconcilerState.READY:
            self._pending = False
            self._apply()

    def _apply(self) -> Optional[ViewportFit]:
        surface = self.surface
        data = feature_collection(MapDataBuilder.to_geojson_features(self._points))

        if surface.get_source(USER_SOURCE_ID) is not None:
            surface.set_source_data(USER_SOURCE_ID, data)
        else:
            # A stray layer without its source cannot be reused
            if surface.get_layer(USER_LAYER_ID) is not None:
                surface.remove_layer(USER_LAYER_ID)
            surface.add_source(USER_SOURCE_ID, data)

        if surface.get_layer(USER_LAYER_ID) is None:
            surface.add_layer(
                {
                    "id": USER_LAYER_ID,
                    "type": "circle",
                    "source": USER_SOURCE_ID,
                    "paint": build_user_paint(self._selection.highlighted),
                }
            )
        else:
            self.restyle(self._selection)

        self._ensure_layer_listeners()
        return self.fit_viewport()

    def fit_viewport(self) -> Optional[ViewportFit]:
        """Fit the camera to the current inputs; skipped when nothing to frame."""
        fit = compute_viewport_fit(
            self._points,
            self._selection.city,
            self._neighborhoods,
            self._cities,
            padding=self.padding,
            city_max_zoom=self.city_max_zoom,
            all_max_zoom=self.all_max_zoom,
        )
        if fit is None:
            return None
        self.surface.fit_bounds(fit.bounds, padding=fit.padding, max_zoom=fit.max_zoom)
        self.last_fit = fit
        return fit

    # ── interaction ────────────────────────────────────────────────

    def _ensure_layer_listeners(self) -> None:
        registered = {(event, layer) for event, layer, _ in self._listeners}
        if ("mouseenter", USER_LAYER_ID) in registered:
            return
        self._listen("mouseenter", USER_LAYER_ID, self._on_mouseenter)
        self._listen("mouseleave", USER_LAYER_ID, self._on_mouseleave)
        self._listen("click", USER_LAYER_ID, self._on_click)

    def _on_mouseenter(self, feature: Optional[Dict[str, Any]]) -> None:
        if not feature or self.surface is None:
            return
        self.surface.cursor = "pointer"
        # Only one label at a time
        self.surface.remove_popup()
        lng, lat = feature["geometry"]["coordinates"][:2]
        name = feature.get("properties", {}).get("name", "")
        self.surface.show_popup(lng, lat, f"<strong>{html.escape(name)}</strong>")

    def _on_mouseleave(self, _feature=None) -> None:
        if self.surface is None:
            return
        self.surface.cursor = ""
        self.surface.remove_popup()

    def _on_click(self, feature: Optional[Dict[str, Any]]) -> None:
        if not feature:
            return
        url = feature.get("properties", {}).get("profileUrl")
        if url and self.on_navigate:
            self.on_navigate(url)

    def _listen(self, event: str, layer_id: Optional[str], handler: Callable) -> None:
        self.surface.on(event, layer_id, handler)
        self._listeners.append((event, layer_id, handler))

    def _detach_listeners(self) -> None:
        for event, layer_id, handler in self._listeners:
            self.surface.off(event, layer_id, handler)
        self._listeners.clear()

    # ── output ─────────────────────────────────────────────────────

    @property
    def viewport(self) -> Optional[Viewport]:
        return self.surface.viewport if self.surface is not None else None

    def document(self) -> Dict[str, Any]:
        """Map document for the browser; empty when the surface is unavailable."""
        if not self.available:
            return {
                "available": False,
                "error": self.error,
                "sources": {},
                "layers": [],
                "fit": None,
            }
        doc = self.surface.to_document()
        doc["available"] = True
        doc["error"] = None
        return doc
