"""Resolve a single display coordinate per user."""

import logging
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from ..models.schemas import UserRecord
from .reference_data import CityCentroidRecord, NeighborhoodRecord

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Coordinate:
    lat: float
    lng: float


@dataclass(frozen=True)
class ResolvedPointCandidate:
    """A user with a resolved coordinate, before collision offsetting."""

    user_id: Optional[str]
    display_name: str
    lat: float
    lng: float
    profile_url: str
    source: str = "neighborhood"  # "neighborhood" | "city"
    city: str = ""
    neighborhood: Optional[str] = None


def resolve(
    user: UserRecord,
    neighborhoods: Sequence[NeighborhoodRecord],
    cities: Sequence[CityCentroidRecord],
) -> Optional[Coordinate]:
    """
    Resolve a user to a coordinate.

    1. Primary neighborhood match on (city, neighborhoods[0]); the first
       match in source order wins.
    2. Otherwise the user's city centroid.
    3. Otherwise None; the user is left off the map.
    """
    primary = user.primary_neighborhood
    if primary is not None:
        for n in neighborhoods:
            if n.city_name == user.city and n.name == primary:
                return Coordinate(lat=n.lat, lng=n.lng)

    for c in cities:
        if c.city_name == user.city:
            return Coordinate(lat=c.lat, lng=c.lng)

    return None


class LocationResolver:
    """Indexed resolver for many users against one reference load."""

    def __init__(
        self,
        neighborhoods: Sequence[NeighborhoodRecord],
        cities: Sequence[CityCentroidRecord],
    ):
        # First occurrence wins, matching the linear scan in resolve()
        self._by_neighborhood: Dict[Tuple[str, str], NeighborhoodRecord] = {}
        for n in neighborhoods:
            self._by_neighborhood.setdefault((n.city_name, n.name), n)

        self._by_city: Dict[str, CityCentroidRecord] = {}
        for c in cities:
            self._by_city.setdefault(c.city_name, c)

    def resolve(self, user: UserRecord) -> Tuple[Optional[Coordinate], Optional[str]]:
        """
        Returns:
            Tuple of (coordinate or None, "neighborhood" | "city" | None)
        """
        primary = user.primary_neighborhood
        if primary is not None:
            match = self._by_neighborhood.get((user.city, primary))
            if match:
                return Coordinate(lat=match.lat, lng=match.lng), "neighborhood"

        centroid = self._by_city.get(user.city)
        if centroid:
            return Coordinate(lat=centroid.lat, lng=centroid.lng), "city"

        return None, None

    def resolve_all(
        self, users: Iterable[UserRecord]
    ) -> Tuple[List[ResolvedPointCandidate], Dict[str, int]]:
        """
        Resolve every user, keeping input order.

        Returns:
            Tuple of (candidates, stats dict)
        """
        candidates = []
        stats = {
            "total_users": 0,
            "neighborhood_matches": 0,
            "centroid_fallbacks": 0,
            "unmapped": 0,
        }

        for user in users:
            stats["total_users"] += 1
            coordinate, source = self.resolve(user)
            if coordinate is None:
                stats["unmapped"] += 1
                continue

            if source == "neighborhood":
                stats["neighborhood_matches"] += 1
            else:
                stats["centroid_fallbacks"] += 1

            candidates.append(
                ResolvedPointCandidate(
                    user_id=user.id,
                    display_name=user.display_name,
                    lat=coordinate.lat,
                    lng=coordinate.lng,
                    profile_url=user.profile_url,
                    source=source,
                    city=user.city,
                    neighborhood=user.primary_neighborhood,
                )
            )

        if stats["unmapped"]:
            logger.debug(f"{stats['unmapped']} users had no neighborhood or city match")

        return candidates, stats
