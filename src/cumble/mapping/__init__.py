"""Roommate map: neighborhood matching and map layer reconciliation.

Users are placed at their primary neighborhood (or their city center),
spread apart when they share a coordinate, and drawn as one point layer
that is replaced wholesale whenever users, reference data or the city
filter change.
"""

from .reference_data import (
    ReferenceDataStore,
    ReferenceData,
    NeighborhoodRecord,
    CityCentroidRecord,
)
from .city_index import distinct_cities, distinct_states, cities_in_state
from .location_resolver import (
    LocationResolver,
    Coordinate,
    ResolvedPointCandidate,
    resolve,
)
from .collision import ResolvedPoint, offset_collisions, collision_key
from .map_data_builder import MapDataBuilder, neighborhood_features
from .selection import SelectionState
from .surface import MapSurface, Viewport, Popup, camera_for_bounds
from .reconciler import (
    MapLayerReconciler,
    ReconcilerState,
    ViewportFit,
    compute_viewport_fit,
)
from .controller import MapController
from .mapbox_client import MapboxClient, MapGenerationResult
from .map_generator import RoommateMapGenerator, RoommateMapResult
from .geometry_utils import LngLatBounds, get_bounding_box

__all__ = [
    "ReferenceDataStore",
    "ReferenceData",
    "NeighborhoodRecord",
    "CityCentroidRecord",
    "distinct_cities",
    "distinct_states",
    "cities_in_state",
    "LocationResolver",
    "Coordinate",
    "ResolvedPointCandidate",
    "resolve",
    "ResolvedPoint",
    "offset_collisions",
    "collision_key",
    "MapDataBuilder",
    "neighborhood_features",
    "SelectionState",
    "MapSurface",
    "Viewport",
    "Popup",
    "camera_for_bounds",
    "MapLayerReconciler",
    "ReconcilerState",
    "ViewportFit",
    "compute_viewport_fit",
    "MapController",
    "MapboxClient",
    "MapGenerationResult",
    "RoommateMapGenerator",
    "RoommateMapResult",
    "LngLatBounds",
    "get_bounding_box",
]
