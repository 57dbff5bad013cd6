"""Server-side model of a Mapbox GL map.

The surface keeps the same imperative vocabulary as mapbox-gl (sources,
layers, paint properties, layer-scoped listeners, a popup, fitBounds) and
enforces its lifecycle rules, so the rest of the code never has to. Its
state is serialized with ``to_document()`` and replayed by the browser
page.
"""

import copy
import logging
import math
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Tuple

from ..errors import RenderSurfaceInitError, SurfaceStateError
from .geometry_utils import LngLatBounds

logger = logging.getLogger(__name__)

Handler = Callable[[Optional[Dict[str, Any]]], None]

TILE_SIZE = 512  # Mapbox GL world size at zoom 0
MAX_MERCATOR_LAT = 85.051129


@dataclass
class Popup:
    lng: float
    lat: float
    html: str
    offset: int = 15
    close_button: bool = False


@dataclass
class Viewport:
    center: Tuple[float, float]  # (lng, lat)
    zoom: float
    bounds: Optional[LngLatBounds] = None
    padding: int = 0
    max_zoom: Optional[float] = None


@dataclass
class _Listener:
    event: str
    layer_id: Optional[str]
    handler: Handler


def _mercator_y(lat: float) -> float:
    lat = max(min(lat, MAX_MERCATOR_LAT), -MAX_MERCATOR_LAT)
    rad = math.radians(lat)
    return math.log(math.tan(math.pi / 4 + rad / 2))


def camera_for_bounds(
    bounds: LngLatBounds,
    width: int,
    height: int,
    padding: int = 0,
    max_zoom: Optional[float] = None,
) -> Tuple[Tuple[float, float], float]:
    """
    Center and zoom that fit ``bounds`` in a width x height canvas.

    Returns:
        ((lng, lat), zoom), zoom capped at max_zoom
    """
    inner_w = max(width - 2 * padding, 1)
    inner_h = max(height - 2 * padding, 1)

    lng_span = bounds.max_lng - bounds.min_lng
    y_span = _mercator_y(bounds.max_lat) - _mercator_y(bounds.min_lat)

    zooms = []
    if lng_span > 0:
        zooms.append(math.log2(inner_w * 360 / (TILE_SIZE * lng_span)))
    if y_span > 0:
        zooms.append(math.log2(inner_h * 2 * math.pi / (TILE_SIZE * y_span)))

    # A single point has no extent; fitBounds then lands on maxZoom
    zoom = min(zooms) if zooms else (max_zoom if max_zoom is not None else 22)
    if max_zoom is not None:
        zoom = min(zoom, max_zoom)
    zoom = max(zoom, 0)

    center_y = (_mercator_y(bounds.max_lat) + _mercator_y(bounds.min_lat)) / 2
    center_lat = math.degrees(2 * math.atan(math.exp(center_y)) - math.pi / 2)
    center_lng = (bounds.min_lng + bounds.max_lng) / 2
    return (center_lng, center_lat), zoom


class MapSurface:
    """Imperative map surface with Mapbox GL semantics."""

    STYLE_URL = "mapbox://styles/{username}/{style}"

    def __init__(
        self,
        access_token: str,
        style: str = "streets-v12",
        username: str = "mapbox",
        center: Tuple[float, float] = (-95.7129, 37.0902),
        zoom: float = 3,
        width: int = 1024,
        height: int = 640,
        auto_load: bool = True,
    ):
        """
        Initialize the surface (not yet attached).

        Args:
            access_token: Mapbox public access token
            style: Mapbox style ID
            username: Mapbox username (default "mapbox" for standard styles)
            center: Initial (lng, lat)
            zoom: Initial zoom
            width: Container width in pixels, used for fitBounds
            height: Container height in pixels
            auto_load: Fire "load" right after attach. When False the owner
                calls load_style(), like waiting for the style event.
        """
        self.access_token = access_token
        self.style = style
        self.username = username
        self.width = width
        self.height = height
        self.auto_load = auto_load

        self.viewport = Viewport(center=center, zoom=zoom)
        self.cursor = ""
        self.popup: Optional[Popup] = None
        self.controls: List[str] = []

        self._attached = False
        self._removed = False
        self._style_loaded = False
        self._sources: Dict[str, Dict[str, Any]] = {}
        self._layers: Dict[str, Dict[str, Any]] = {}
        self._listeners: List[_Listener] = []

    # ── lifecycle ──────────────────────────────────────────────────

    @property
    def attached(self) -> bool:
        return self._attached

    def attach(self) -> None:
        """
        Attach to the container and start loading the style.

        Raises:
            RenderSurfaceInitError: missing or non-public access token, or
                the surface was already removed
        """
        if self._removed:
            raise RenderSurfaceInitError("Surface was removed")
        if not self.access_token:
            raise RenderSurfaceInitError("MAPBOX_ACCESS_TOKEN is not set")
        if not self.access_token.startswith("pk."):
            raise RenderSurfaceInitError(
                "Mapbox GL needs a public access token (pk.*)"
            )
        self._attached = True
        self.controls.append("navigation")
        logger.debug(f"Map surface attached with style {self.style_url}")
        if self.auto_load:
            self.load_style()

    def load_style(self) -> None:
        """Mark the style loaded and fire "load" listeners once."""
        if not self._attached or self._style_loaded:
            return
        self._style_loaded = True
        self.fire("load")

    def loaded(self) -> bool:
        return self._attached and self._style_loaded

    def remove(self) -> None:
        """Release the surface. Safe to call more than once."""
        self._listeners.clear()
        self._layers.clear()
        self._sources.clear()
        self.popup = None
        self._attached = False
        self._style_loaded = False
        self._removed = True

    @property
    def style_url(self) -> str:
        return self.STYLE_URL.format(username=self.username, style=self.style)

    # ── sources ────────────────────────────────────────────────────

    def add_source(self, source_id: str, data: Dict[str, Any]) -> None:
        self._require_attached()
        if source_id in self._sources:
            raise SurfaceStateError(f"Source already exists: {source_id}")
        self._sources[source_id] = {"type": "geojson", "data": copy.deepcopy(data)}

    def get_source(self, source_id: str) -> Optional[Dict[str, Any]]:
        return self._sources.get(source_id)

    def set_source_data(self, source_id: str, data: Dict[str, Any]) -> None:
        """GeoJSONSource.setData: replace the whole collection in place."""
        source = self._sources.get(source_id)
        if source is None:
            raise SurfaceStateError(f"No such source: {source_id}")
        source["data"] = copy.deepcopy(data)

    def remove_source(self, source_id: str) -> None:
        users = [lid for lid, layer in self._layers.items() if layer["source"] == source_id]
        if users:
            raise SurfaceStateError(
                f"Source {source_id} is still used by layers {users}"
            )
        self._sources.pop(source_id, None)

    # ── layers ─────────────────────────────────────────────────────

    def add_layer(self, layer: Dict[str, Any]) -> None:
        self._require_attached()
        if not self._style_loaded:
            raise SurfaceStateError("Style is not done loading")
        layer_id = layer["id"]
        if layer_id in self._layers:
            raise SurfaceStateError(f"Layer already exists: {layer_id}")
        if layer.get("source") not in self._sources:
            raise SurfaceStateError(f"Layer {layer_id} references unknown source")
        self._layers[layer_id] = {
            "id": layer_id,
            "type": layer.get("type", "circle"),
            "source": layer["source"],
            "paint": dict(layer.get("paint", {})),
            "layout": dict(layer.get("layout", {})),
        }

    def get_layer(self, layer_id: str) -> Optional[Dict[str, Any]]:
        return self._layers.get(layer_id)

    def remove_layer(self, layer_id: str) -> None:
        self._layers.pop(layer_id, None)

    def set_paint_property(self, layer_id: str, name: str, value: Any) -> None:
        layer = self._layers.get(layer_id)
        if layer is None:
            raise SurfaceStateError(f"No such layer: {layer_id}")
        layer["paint"][name] = value

    # ── events ─────────────────────────────────────────────────────

    def on(self, event: str, layer_id: Optional[str], handler: Handler) -> None:
        self._listeners.append(_Listener(event, layer_id, handler))

    def off(self, event: str, layer_id: Optional[str], handler: Handler) -> None:
        self._listeners = [
            lsn
            for lsn in self._listeners
            if not (lsn.event == event and lsn.layer_id == layer_id and lsn.handler == handler)
        ]

    def listener_count(self, event: str, layer_id: Optional[str] = None) -> int:
        return sum(
            1 for lsn in self._listeners if lsn.event == event and lsn.layer_id == layer_id
        )

    def fire(
        self,
        event: str,
        layer_id: Optional[str] = None,
        feature: Optional[Dict[str, Any]] = None,
    ) -> int:
        """
        Dispatch an event (e.g. relayed from the browser).

        Layer-scoped events only reach handlers of an existing layer.

        Returns:
            Number of handlers called
        """
        if layer_id is not None and layer_id not in self._layers:
            return 0
        handlers = [
            lsn.handler
            for lsn in self._listeners
            if lsn.event == event and lsn.layer_id == layer_id
        ]
        for handler in handlers:
            handler(feature)
        return len(handlers)

    # ── popup & camera ─────────────────────────────────────────────

    def show_popup(self, lng: float, lat: float, html: str) -> Popup:
        self.popup = Popup(lng=lng, lat=lat, html=html)
        return self.popup

    def remove_popup(self) -> None:
        self.popup = None

    def fit_bounds(
        self,
        bounds: LngLatBounds,
        padding: int = 0,
        max_zoom: Optional[float] = None,
    ) -> Viewport:
        center, zoom = camera_for_bounds(
            bounds, self.width, self.height, padding=padding, max_zoom=max_zoom
        )
        self.viewport = Viewport(
            center=center,
            zoom=zoom,
            bounds=bounds,
            padding=padding,
            max_zoom=max_zoom,
        )
        return self.viewport

    # ── serialization ──────────────────────────────────────────────

    def to_document(self) -> Dict[str, Any]:
        """JSON-ready snapshot of the map for the browser page."""
        vp = self.viewport
        return {
            "style": self.style_url,
            "center": list(vp.center),
            "zoom": vp.zoom,
            "fit": (
                {
                    "bounds": vp.bounds.to_list(),
                    "padding": vp.padding,
                    "maxZoom": vp.max_zoom,
                }
                if vp.bounds
                else None
            ),
            "sources": copy.deepcopy(self._sources),
            "layers": [copy.deepcopy(layer) for layer in self._layers.values()],
            "popup": (
                {
                    "lngLat": [self.popup.lng, self.popup.lat],
                    "html": self.popup.html,
                    "offset": self.popup.offset,
                    "closeButton": self.popup.close_button,
                }
                if self.popup
                else None
            ),
        }

    def _require_attached(self) -> None:
        if not self._attached:
            raise SurfaceStateError("Surface is not attached")
