"""Static map snapshots of the roommate map."""

import json
import logging
from dataclasses import asdict, dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

from ..models.schemas import UserRecord
from .map_data_builder import MapDataBuilder
from .mapbox_client import Camera, MapboxClient, MapGenerationResult
from .reconciler import compute_viewport_fit
from .reference_data import ReferenceData
from .styles import get_marker_color
from .surface import camera_for_bounds

logger = logging.getLogger(__name__)

DEFAULT_OUTPUT_DIR = Path(__file__).parent.parent / "map_outputs"


@dataclass
class StaticMapOptions:
    style: str = "streets-v12"
    width: int = 800
    height: int = 450
    padding: int = 50
    retina: bool = True
    city_max_zoom: float = 14
    all_max_zoom: float = 5


@dataclass
class RoommateMapResult:
    """Image path plus the metadata written next to it."""

    success: bool
    image_path: Optional[str]
    metadata: Dict[str, Any]
    generation_result: Optional[MapGenerationResult]


class RoommateMapGenerator:
    """Render resolved user points to a PNG via the Static Images API.

    Colors and camera follow the interactive map: highlighted users first,
    then city-fallback points, then exact neighborhood matches. With a city
    filter the camera frames that city; otherwise it frames every point.
    """

    def __init__(
        self,
        reference: ReferenceData,
        users: List[UserRecord],
        mapbox_token: str,
        output_dir: Optional[str] = None,
        city: Optional[str] = None,
        highlighted: Optional[str] = None,
        **options,
    ):
        self.reference = reference
        self.users = users
        self.mapbox_token = mapbox_token
        self.output_dir = Path(output_dir) if output_dir else DEFAULT_OUTPUT_DIR
        self.city = city or None
        self.highlighted = highlighted
        self.options = StaticMapOptions(**options)

        self.output_dir.mkdir(parents=True, exist_ok=True)

    def _color_features(self, builder: MapDataBuilder, points) -> List[Dict[str, Any]]:
        features = builder.to_geojson_features(points)
        for feature in features:
            props = feature["properties"]
            lit = bool(self.highlighted) and self.highlighted in (
                props.get("user_id"),
                props.get("neighborhood"),
            )
            props["marker-color"] = "#" + get_marker_color(props["source"], lit)
        return features

    def _camera(self, points) -> Optional[Camera]:
        opts = self.options
        fit = compute_viewport_fit(
            points,
            self.city,
            self.reference.neighborhoods,
            self.reference.cities,
            padding=opts.padding,
            city_max_zoom=opts.city_max_zoom,
            all_max_zoom=opts.all_max_zoom,
        )
        if fit is None:
            return None
        (lng, lat), zoom = camera_for_bounds(
            fit.bounds, opts.width, opts.height, opts.padding, fit.max_zoom
        )
        return (lng, lat, zoom)

    def generate(self, run_id: Optional[str] = None) -> RoommateMapResult:
        """
        Resolve users, render the snapshot and write ``{run_id}_map_metadata.json``.

        Args:
            run_id: Filename prefix; defaults to a timestamp
        """
        run_id = run_id or datetime.now().strftime("%Y%m%d_%H%M%S")
        builder = MapDataBuilder(self.reference, self.users)
        points, stats = builder.build_points()
        logger.info(
            f"[{run_id}] {stats['rendered']}/{stats['total_users']} users placed, "
            f"{stats['unmapped']} unmapped"
        )

        if not points:
            logger.warning(f"[{run_id}] nothing to draw")
            return RoommateMapResult(
                success=False,
                image_path=None,
                metadata={"error": "No features to render", "stats": stats},
                generation_result=None,
            )

        camera = self._camera(points)
        opts = self.options
        image_path = self.output_dir / f"{run_id}_map.png"
        with MapboxClient(access_token=self.mapbox_token, style=opts.style) as client:
            outcome = client.generate_static_map(
                geojson_features=self._color_features(builder, points),
                width=opts.width,
                height=opts.height,
                padding=opts.padding,
                retina=opts.retina,
                camera=camera,
                output_path=str(image_path),
            )

        metadata = {
            "run_id": run_id,
            "generated_at": datetime.now().isoformat(),
            "city": self.city,
            "highlighted": self.highlighted,
            "camera": list(camera) if camera else None,
            "stats": stats,
            "strategy_used": outcome.strategy_used,
            "points_rendered": outcome.points_rendered,
            "url_length": outcome.url_length,
            "options": asdict(opts),
        }
        if outcome.success:
            logger.info(f"[{run_id}] map written to {image_path}")
        else:
            metadata["error"] = outcome.error_message
            logger.error(f"[{run_id}] map generation failed: {outcome.error_message}")

        (self.output_dir / f"{run_id}_map_metadata.json").write_text(
            json.dumps(metadata, indent=2)
        )

        return RoommateMapResult(
            success=outcome.success,
            image_path=outcome.image_path,
            metadata=metadata,
            generation_result=outcome,
        )
