"""Mapbox Static Images API client for roommate point snapshots."""

import json
import logging
import urllib.parse
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Literal, Optional, Tuple

import httpx

from .geometry_utils import reduce_coordinate_precision

logger = logging.getLogger(__name__)

Camera = Tuple[float, float, float]
DEFAULT_PIN_COLOR = "#DC2626"


@dataclass
class MapGenerationResult:
    """Outcome of one Static Images request."""

    success: bool
    image_path: Optional[str]
    image_url: Optional[str]
    strategy_used: Literal["geojson", "markers", "none"]
    error_message: Optional[str]
    points_rendered: int
    url_length: int

    @classmethod
    def failed(
        cls, message: str, url: Optional[str] = None, strategy: str = "none"
    ) -> "MapGenerationResult":
        return cls(
            success=False,
            image_path=None,
            image_url=url,
            strategy_used=strategy,
            error_message=message,
            points_rendered=0,
            url_length=len(url) if url else 0,
        )


def _pin_color(feature: Dict[str, Any]) -> str:
    return (feature.get("properties") or {}).get("marker-color", DEFAULT_PIN_COLOR)


class MapboxClient:
    """Client for Mapbox Static Images API.

    Points go out as a GeoJSON overlay while the URL stays short enough;
    larger sets are sent as bare ``pin-s`` markers, which cost roughly a
    third of the characters per point.
    """

    BASE_URL = "https://api.mapbox.com/styles/v1"
    MAX_URL_LENGTH = 8192  # Mapbox CDN limit
    SAFE_URL_LENGTH = 6000

    def __init__(
        self,
        access_token: str,
        style: str = "streets-v12",
        username: str = "mapbox",
        timeout: float = 60.0,
    ):
        self.access_token = access_token
        self.style = style
        self.username = username
        self.http_client = httpx.Client(timeout=timeout)

    def generate_static_map(
        self,
        geojson_features: List[Dict[str, Any]],
        width: int = 800,
        height: int = 450,
        padding: int = 50,
        retina: bool = True,
        camera: Optional[Camera] = None,
        output_path: Optional[str] = None,
    ) -> MapGenerationResult:
        """
        Render point features, picking the first overlay encoding that fits.

        Args:
            geojson_features: Point features carrying a "marker-color" property
            width: Image width in pixels
            height: Image height in pixels
            padding: Pixels around the fitted points (only with the auto camera)
            retina: Request an @2x image
            camera: (lng, lat, zoom); None lets Mapbox fit all overlays
            output_path: File to write the PNG to (optional)

        Returns:
            MapGenerationResult describing the request
        """
        points = [f for f in geojson_features if f.get("geometry")]
        if not points:
            return MapGenerationResult.failed("No features to render")

        strategies = (
            ("geojson", self._geojson_overlay, self.SAFE_URL_LENGTH),
            ("markers", self._marker_overlay, self.MAX_URL_LENGTH),
        )
        url = ""
        for name, encode, limit in strategies:
            url = self._build_url(encode(points), width, height, padding, retina, camera)
            logger.debug(f"{name} URL length: {len(url)}")
            if len(url) <= limit:
                return self._fetch(url, output_path, name, len(points))
            logger.info(f"{name} overlay too long ({len(url)} chars)")

        return MapGenerationResult.failed(
            f"URL too long even with markers ({len(url)} chars). "
            f"Filter to a single city to render this map."
        )

    @staticmethod
    def _geojson_overlay(points: List[Dict[str, Any]]) -> str:
        # the Static API only understands SimpleStyle properties
        collection = {
            "type": "FeatureCollection",
            "features": [
                {
                    "type": "Feature",
                    "geometry": reduce_coordinate_precision(p["geometry"], 5),
                    "properties": {"marker-color": _pin_color(p), "marker-size": "small"},
                }
                for p in points
            ],
        }
        encoded = urllib.parse.quote(json.dumps(collection, separators=(",", ":")))
        return f"geojson({encoded})"

    @staticmethod
    def _marker_overlay(points: List[Dict[str, Any]]) -> str:
        pins = []
        for p in points:
            lng, lat = p["geometry"]["coordinates"][:2]
            pins.append(f"pin-s+{_pin_color(p).lstrip('#')}({lng:.4f},{lat:.4f})")
        return ",".join(pins)

    def _build_url(
        self,
        overlay: str,
        width: int,
        height: int,
        padding: int,
        retina: bool,
        camera: Optional[Camera],
    ) -> str:
        size = f"{width}x{height}" + ("@2x" if retina else "")
        params = {"access_token": self.access_token}
        if camera is None:
            position = "auto"
            params = {"padding": padding, **params}
        else:
            lng, lat, zoom = camera
            position = f"{lng:.5f},{lat:.5f},{zoom:.2f}"
        query = "&".join(f"{k}={v}" for k, v in params.items())
        return (
            f"{self.BASE_URL}/{self.username}/{self.style}/static/"
            f"{overlay}/{position}/{size}?{query}"
        )

    def _fetch(
        self, url: str, output_path: Optional[str], strategy: str, point_count: int
    ) -> MapGenerationResult:
        logger.info(f"Requesting static map ({strategy}, {point_count} points)")
        try:
            response = self.http_client.get(url)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            message = f"HTTP {e.response.status_code}: {e.response.text[:500]}"
            logger.error(f"Mapbox API error: {message}")
            return MapGenerationResult.failed(message, url, strategy)
        except httpx.TimeoutException:
            logger.error("Mapbox API timeout")
            return MapGenerationResult.failed("Request timed out", url, strategy)
        except httpx.HTTPError as e:
            logger.error(f"Mapbox request failed: {e}")
            return MapGenerationResult.failed(str(e), url, strategy)

        content_type = response.headers.get("content-type", "")
        if not content_type.startswith("image"):
            return MapGenerationResult.failed(
                f"Unexpected content type: {content_type}", url, strategy
            )

        if output_path:
            target = Path(output_path)
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(response.content)
            logger.info(f"Map saved to: {output_path}")

        return MapGenerationResult(
            success=True,
            image_path=output_path,
            image_url=url,
            strategy_used=strategy,
            error_message=None,
            points_rendered=point_count,
            url_length=len(url),
        )

    def close(self):
        self.http_client.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
