"""Build GeoJSON features for map rendering."""

from typing import Any, Dict, Iterable, List, Optional, Tuple

from ..models.schemas import UserRecord
from .collision import DEFAULT_DELTA, DEFAULT_PRECISION, ResolvedPoint, offset_collisions
from .geometry_utils import feature_collection, point_feature
from .location_resolver import LocationResolver
from .reference_data import ReferenceData


class MapDataBuilder:
    """Build map data from users and one reference-data load."""

    def __init__(
        self,
        reference: ReferenceData,
        users: Iterable[UserRecord],
        delta: float = DEFAULT_DELTA,
        precision: int = DEFAULT_PRECISION,
    ):
        """
        Initialize the map data builder.

        Args:
            reference: Neighborhood and city-centroid tables
            users: User records in listing order
            delta: Collision offset step in degrees
            precision: Decimal places for the collision key
        """
        self.reference = reference
        self.users = list(users)
        self.delta = delta
        self.precision = precision
        self.resolver = LocationResolver(reference.neighborhoods, reference.cities)

    def build_points(self) -> Tuple[List[ResolvedPoint], Dict[str, Any]]:
        """
        Resolve and offset every user.

        Points keep the user listing order, which is what makes the
        collision offsets stable between passes.

        Returns:
            Tuple of (points list, stats dict)
        """
        candidates, stats = self.resolver.resolve_all(self.users)
        points = offset_collisions(candidates, delta=self.delta, precision=self.precision)
        stats["rendered"] = len(points)
        stats["offset_applied"] = sum(
            1 for c, p in zip(candidates, points) if (c.lat, c.lng) != (p.lat, p.lng)
        )
        return points, stats

    @staticmethod
    def to_geojson_features(points: List[ResolvedPoint]) -> List[Dict[str, Any]]:
        """
        Convert ResolvedPoints to GeoJSON Point features.

        Properties carry what the hover label and click navigation need.
        """
        return [
            point_feature(
                p.lng,
                p.lat,
                {
                    "user_id": p.user_id,
                    "name": p.display_name,
                    "profileUrl": p.profile_url,
                    "city": p.city,
                    "neighborhood": p.neighborhood,
                    "source": p.source,
                },
            )
            for p in points
        ]

    def build_feature_collection(self) -> Tuple[Dict[str, Any], Dict[str, Any]]:
        points, stats = self.build_points()
        return feature_collection(self.to_geojson_features(points)), stats


def neighborhood_features(
    reference: ReferenceData, city: Optional[str] = None
) -> Dict[str, Any]:
    """Reference neighborhoods as a FeatureCollection, optionally for one city."""
    records = reference.neighborhoods_in(city) if city else reference.neighborhoods
    return feature_collection(
        [
            point_feature(
                n.lng,
                n.lat,
                {
                    "neighborhood": n.name,
                    "city": n.city_name,
                    "state": n.state_name,
                    "zip": n.zip,
                },
            )
            for n in records
        ]
    )
