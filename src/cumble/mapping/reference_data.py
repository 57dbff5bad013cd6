"""Neighborhood and city-centroid reference data loaded from CSV."""

import io
import logging
import math
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Tuple

import httpx
import pandas as pd

from ..errors import LoadError

logger = logging.getLogger(__name__)

# Accepted header spellings → canonical column
NEIGHBORHOOD_COLUMNS = {
    "neighborhood": "name",
    "name": "name",
    "city_name": "city_name",
    "city": "city_name",
    "state_name": "state_name",
    "state": "state_name",
    "lat": "lat",
    "latitude": "lat",
    "lng": "lng",
    "lon": "lng",
    "longitude": "lng",
    "zip": "zip",
    "zip_code": "zip",
}

CITY_COLUMNS = {
    "city": "city_name",
    "city_name": "city_name",
    "state_id": "state_id",
    "state": "state_id",
    "lat": "lat",
    "latitude": "lat",
    "lng": "lng",
    "lon": "lng",
    "longitude": "lng",
}


@dataclass(frozen=True)
class NeighborhoodRecord:
    """A named neighborhood point inside a city."""

    name: str
    city_name: str
    state_name: str
    lat: float
    lng: float
    zip: Optional[str] = None


@dataclass(frozen=True)
class CityCentroidRecord:
    """City center used when a user's neighborhood cannot be matched."""

    city_name: str
    state_id: str
    lat: float
    lng: float


@dataclass(frozen=True)
class ReferenceData:
    """One load cycle worth of reference data."""

    neighborhoods: Tuple[NeighborhoodRecord, ...] = ()
    cities: Tuple[CityCentroidRecord, ...] = ()
    dropped_rows: int = field(default=0, compare=False)

    def neighborhoods_in(self, city: str) -> List[NeighborhoodRecord]:
        return [n for n in self.neighborhoods if n.city_name == city]


def _clean_str(value) -> str:
    if value is None:
        return ""
    if isinstance(value, float) and math.isnan(value):
        return ""
    return str(value).strip()


def _read_frame(text: str, columns: Dict[str, str], label: str) -> pd.DataFrame:
    """Parse header-delimited text into a frame with canonical column names."""
    if not text or not text.strip():
        raise LoadError(f"{label} CSV is empty")

    try:
        frame = pd.read_csv(io.StringIO(text), dtype=str, keep_default_na=False)
    except (pd.errors.ParserError, pd.errors.EmptyDataError, UnicodeDecodeError) as e:
        raise LoadError(f"Could not parse {label} CSV: {e}") from e

    rename = {}
    for col in frame.columns:
        canonical = columns.get(str(col).strip().lower())
        # First spelling wins if a file carries both (e.g. "city" and "city_name")
        if canonical and canonical not in rename.values():
            rename[col] = canonical
    frame = frame[list(rename)].rename(columns=rename)
    return frame


def _coordinates(frame: pd.DataFrame) -> pd.DataFrame:
    frame = frame.copy()
    frame["lat"] = pd.to_numeric(frame["lat"], errors="coerce").astype(float)
    frame["lng"] = pd.to_numeric(frame["lng"], errors="coerce").astype(float)
    # NaN and inf both fail the comparison
    finite = (frame["lat"].abs() < math.inf) & (frame["lng"].abs() < math.inf)
    return frame[finite]


def parse_neighborhoods(text: str) -> Tuple[List[NeighborhoodRecord], int]:
    """
    Parse the neighborhood CSV.

    Rows missing name, city, lat or lng, or with non-numeric coordinates,
    are dropped silently.

    Returns:
        Tuple of (records in source order, number of dropped rows)
    """
    frame = _read_frame(text, NEIGHBORHOOD_COLUMNS, "neighborhood")
    missing = {"name", "city_name", "lat", "lng"} - set(frame.columns)
    if missing:
        raise LoadError(f"Neighborhood CSV missing columns: {sorted(missing)}")

    total = len(frame)
    for col in ("name", "city_name"):
        frame[col] = frame[col].map(_clean_str)
    frame = frame[(frame["name"] != "") & (frame["city_name"] != "")]
    frame = _coordinates(frame)

    has_state = "state_name" in frame.columns
    has_zip = "zip" in frame.columns
    records = [
        NeighborhoodRecord(
            name=row["name"],
            city_name=row["city_name"],
            state_name=_clean_str(row["state_name"]) if has_state else "",
            lat=float(row["lat"]),
            lng=float(row["lng"]),
            zip=(_clean_str(row["zip"]) or None) if has_zip else None,
        )
        for row in frame.to_dict("records")
    ]
    return records, total - len(records)


def parse_city_centroids(text: str) -> Tuple[List[CityCentroidRecord], int]:
    """Parse a city-centroid CSV; rows missing city, lat or lng are dropped."""
    frame = _read_frame(text, CITY_COLUMNS, "city")
    missing = {"city_name", "lat", "lng"} - set(frame.columns)
    if missing:
        raise LoadError(f"City CSV missing columns: {sorted(missing)}")

    total = len(frame)
    frame["city_name"] = frame["city_name"].map(_clean_str)
    frame = frame[frame["city_name"] != ""]
    frame = _coordinates(frame)

    has_state = "state_id" in frame.columns
    records = [
        CityCentroidRecord(
            city_name=row["city_name"],
            state_id=_clean_str(row["state_id"]) if has_state else "",
            lat=float(row["lat"]),
            lng=float(row["lng"]),
        )
        for row in frame.to_dict("records")
    ]
    return records, total - len(records)


def derive_city_centroids(
    neighborhoods: List[NeighborhoodRecord],
) -> List[CityCentroidRecord]:
    """
    Build one centroid per city as the mean of its neighborhood points.

    Cities keep first-seen order; the state comes from the city's first row.
    """
    sums: Dict[str, List[float]] = {}
    states: Dict[str, str] = {}
    for n in neighborhoods:
        acc = sums.setdefault(n.city_name, [0.0, 0.0, 0])
        acc[0] += n.lat
        acc[1] += n.lng
        acc[2] += 1
        states.setdefault(n.city_name, n.state_name)

    return [
        CityCentroidRecord(
            city_name=city,
            state_id=states[city],
            lat=lat_sum / count,
            lng=lng_sum / count,
        )
        for city, (lat_sum, lng_sum, count) in sums.items()
    ]


class ReferenceDataStore:
    """Load reference tables from text, disk, or a URL."""

    def load_text(
        self, neighborhoods_csv: str, cities_csv: Optional[str] = None
    ) -> ReferenceData:
        """
        Parse reference CSV text into validated records.

        Args:
            neighborhoods_csv: Neighborhood CSV text
            cities_csv: Optional city-centroid CSV text. When absent,
                centroids are derived from the neighborhood table.

        Returns:
            ReferenceData

        Raises:
            LoadError: if the text is empty or lacks required columns
        """
        neighborhoods, dropped = parse_neighborhoods(neighborhoods_csv)
        if cities_csv is not None:
            cities, dropped_cities = parse_city_centroids(cities_csv)
            dropped += dropped_cities
        else:
            cities = derive_city_centroids(neighborhoods)

        if dropped:
            logger.debug(f"Dropped {dropped} invalid reference rows")
        logger.info(
            f"Loaded {len(neighborhoods)} neighborhoods across {len(cities)} cities"
        )
        return ReferenceData(
            neighborhoods=tuple(neighborhoods),
            cities=tuple(cities),
            dropped_rows=dropped,
        )

    def load_path(
        self, neighborhoods_path: str, cities_path: Optional[str] = None
    ) -> ReferenceData:
        try:
            neighborhoods_csv = Path(neighborhoods_path).read_text(encoding="utf-8")
            cities_csv = (
                Path(cities_path).read_text(encoding="utf-8") if cities_path else None
            )
        except (OSError, UnicodeDecodeError) as e:
            raise LoadError(f"Reference data unavailable: {e}") from e
        return self.load_text(neighborhoods_csv, cities_csv)

    async def fetch(
        self,
        neighborhoods_url: str,
        cities_url: Optional[str] = None,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = 30.0,
    ) -> ReferenceData:
        """Fetch reference CSVs over HTTP and parse them."""
        owns_client = client is None
        client = client or httpx.AsyncClient(timeout=timeout)
        try:
            response = await client.get(neighborhoods_url)
            response.raise_for_status()
            neighborhoods_csv = response.text

            cities_csv = None
            if cities_url:
                response = await client.get(cities_url)
                response.raise_for_status()
                cities_csv = response.text
        except httpx.HTTPError as e:
            raise LoadError(f"Reference data fetch failed: {e}") from e
        finally:
            if owns_client:
                await client.aclose()

        return self.load_text(neighborhoods_csv, cities_csv)
