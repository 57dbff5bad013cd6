"""Geometry helpers for point features and viewport bounds."""

from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Tuple

from shapely.geometry import MultiPoint


@dataclass(frozen=True)
class LngLatBounds:
    """Axis-aligned bounds in (lng, lat) order, like mapboxgl.LngLatBounds."""

    min_lng: float
    min_lat: float
    max_lng: float
    max_lat: float

    def to_list(self) -> List[List[float]]:
        """[[sw_lng, sw_lat], [ne_lng, ne_lat]] as fitBounds expects."""
        return [[self.min_lng, self.min_lat], [self.max_lng, self.max_lat]]

    @property
    def center(self) -> Tuple[float, float]:
        return (
            (self.min_lng + self.max_lng) / 2,
            (self.min_lat + self.max_lat) / 2,
        )

    @property
    def is_point(self) -> bool:
        return self.min_lng == self.max_lng and self.min_lat == self.max_lat


def point_geometry(lng: float, lat: float) -> Dict[str, Any]:
    return {"type": "Point", "coordinates": [lng, lat]}


def point_feature(lng: float, lat: float, properties: Dict[str, Any]) -> Dict[str, Any]:
    """GeoJSON Point feature. Note: GeoJSON uses (lon, lat)."""
    return {
        "type": "Feature",
        "geometry": point_geometry(lng, lat),
        "properties": properties,
    }


def feature_collection(features: List[Dict[str, Any]]) -> Dict[str, Any]:
    return {"type": "FeatureCollection", "features": list(features)}


def get_bounding_box(
    coordinates: Iterable[Tuple[float, float]],
) -> Optional[LngLatBounds]:
    """
    Bounding box of (lng, lat) pairs.

    Args:
        coordinates: Iterable of (lng, lat)

    Returns:
        LngLatBounds, or None when there are no coordinates
    """
    points = [(float(lng), float(lat)) for lng, lat in coordinates]
    if not points:
        return None
    min_lng, min_lat, max_lng, max_lat = MultiPoint(points).bounds
    return LngLatBounds(min_lng, min_lat, max_lng, max_lat)


def _round_nested(coords, precision: int):
    if coords and isinstance(coords[0], (list, tuple)):
        return [_round_nested(c, precision) for c in coords]
    return [round(value, precision) for value in coords]


def reduce_coordinate_precision(
    geometry: Dict[str, Any], precision: int = 5
) -> Dict[str, Any]:
    """Copy of a GeoJSON geometry with coordinates rounded (5 places is about 1 m)."""
    return {**geometry, "coordinates": _round_nested(geometry["coordinates"], precision)}
