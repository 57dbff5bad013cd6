# src/cumble/__init__.py
from typing import Any, Callable, Dict, Optional

from .config.settings import CumbleSettings, get_settings
from .mapping.controller import MapController, ReferenceSource, UsersSource
from .mapping.reconciler import MapLayerReconciler
from .mapping.surface import MapSurface


class RoommateMap:
    """
    Public interface: one map view wired from settings.

    Usage:
        async with RoommateMap(users_source, reference_source) as rm:
            doc = await rm.open(city="Boston")
    """

    def __init__(
        self,
        users_source: UsersSource,
        reference_source: ReferenceSource,
        settings: Optional[CumbleSettings] = None,
        on_navigate: Optional[Callable[[str], None]] = None,
    ):
        self.settings = settings or get_settings()
        s = self.settings
        self.surface = MapSurface(
            access_token=s.MAPBOX_ACCESS_TOKEN,
            style=s.MAPBOX_STYLE,
            username=s.MAPBOX_USERNAME,
            center=(s.MAP_CENTER_LNG, s.MAP_CENTER_LAT),
            zoom=s.MAP_INITIAL_ZOOM,
        )
        self.reconciler = MapLayerReconciler(
            self.surface,
            on_navigate=on_navigate,
            padding=s.MAP_PADDING,
            city_max_zoom=s.CITY_MAX_ZOOM,
            all_max_zoom=s.ALL_CITIES_MAX_ZOOM,
        )
        self.controller = MapController(
            self.reconciler,
            users_source,
            reference_source,
            delta=s.COLLISION_DELTA,
            precision=s.COLLISION_PRECISION,
        )

    async def open(
        self, *, city: Optional[str] = None, highlighted: Optional[str] = None
    ) -> Dict[str, Any]:
        """Apply the selection, load both feeds and return the map document."""
        self.controller.set_city(city)
        self.controller.set_highlighted(highlighted)
        await self.controller.load()
        return self.document()

    def document(self) -> Dict[str, Any]:
        doc = self.reconciler.document()
        doc["error"] = doc["error"] or self.controller.error
        doc["loading"] = self.controller.loading
        doc["stats"] = dict(self.controller.stats)
        doc["city"] = self.controller.selection.city
        doc["highlighted"] = self.controller.selection.highlighted
        return doc

    def close(self) -> None:
        self.controller.close()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        self.close()


__all__ = ["RoommateMap", "CumbleSettings", "get_settings"]
