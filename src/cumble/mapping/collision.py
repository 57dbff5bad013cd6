"""Spread markers that resolve to the same coordinate."""

from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional

from .location_resolver import ResolvedPointCandidate

DEFAULT_DELTA = 0.005  # ~500m at mid-latitudes
DEFAULT_PRECISION = 5  # ~1m


@dataclass(frozen=True)
class ResolvedPoint:
    """A user marker ready for rendering."""

    user_id: Optional[str]
    display_name: str
    lng: float
    lat: float
    profile_url: str
    source: str = "neighborhood"
    city: str = ""
    neighborhood: Optional[str] = None


def collision_key(lat: float, lng: float, precision: int = DEFAULT_PRECISION) -> str:
    """Fixed-format key so numerically equal coordinates always collide."""
    # + 0.0 folds -0.0 into 0.0
    lat_r = round(lat, precision) + 0.0
    lng_r = round(lng, precision) + 0.0
    return f"{lat_r:.{precision}f},{lng_r:.{precision}f}"


def offset_collisions(
    candidates: Iterable[ResolvedPointCandidate],
    delta: float = DEFAULT_DELTA,
    precision: int = DEFAULT_PRECISION,
) -> List[ResolvedPoint]:
    """
    Offset the Nth duplicate of a coordinate by N * delta on both axes.

    Occurrence counts live only for this call; the same input order always
    produces the same output.
    """
    counts: Dict[str, int] = {}
    points = []

    for c in candidates:
        key = collision_key(c.lat, c.lng, precision)
        n = counts.get(key, 0)
        counts[key] = n + 1

        points.append(
            ResolvedPoint(
                user_id=c.user_id,
                display_name=c.display_name,
                lng=c.lng + n * delta,
                lat=c.lat + n * delta,
                profile_url=c.profile_url,
                source=c.source,
                city=c.city,
                neighborhood=c.neighborhood,
            )
        )

    return points
