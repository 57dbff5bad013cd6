"""Color and style constants for the roommate map."""

from dataclasses import dataclass
from typing import Any, Dict, List, Optional


@dataclass
class MarkerStyle:
    """Style configuration for a circle marker."""

    color: str  # Hex without # (e.g., "DC2626")
    radius: float
    stroke_color: str  # Hex without #
    stroke_width: float

    def to_circle_paint(self) -> Dict[str, Any]:
        """Convert to Mapbox GL circle-layer paint properties."""
        return {
            "circle-radius": self.radius,
            "circle-color": f"#{self.color}",
            "circle-stroke-width": self.stroke_width,
            "circle-stroke-color": f"#{self.stroke_color}",
        }


STYLES = {
    "user": MarkerStyle(
        color="DC2626",  # Red
        radius=8,
        stroke_color="FFFFFF",
        stroke_width=2,
    ),
    "user_highlighted": MarkerStyle(
        color="F59E0B",  # Amber
        radius=11,
        stroke_color="FFFFFF",
        stroke_width=3,
    ),
}

# Static Images API pin colors
MARKER_COLORS = {
    "neighborhood": "DC2626",
    "city": "F97316",  # centroid fallback, lower precision
    "highlighted": "F59E0B",
}

USER_LAYER_ID = "user-points"
USER_SOURCE_ID = "users"


def _match_expression(highlighted: List[str]) -> List[Any]:
    """True when a feature's user id or neighborhood is highlighted."""
    values = ["literal", highlighted]
    return [
        "any",
        ["in", ["get", "user_id"], values],
        ["in", ["get", "neighborhood"], values],
    ]


def build_user_paint(highlighted: Optional[str] = None) -> Dict[str, Any]:
    """
    Paint properties for the user layer.

    Without a highlight this is the flat default style; with one, color and
    radius switch on a ``case`` expression so only styling changes.
    """
    base = STYLES["user"]
    if not highlighted:
        return base.to_circle_paint()

    hl = STYLES["user_highlighted"]
    match = _match_expression([highlighted])
    return {
        "circle-radius": ["case", match, hl.radius, base.radius],
        "circle-color": ["case", match, f"#{hl.color}", f"#{base.color}"],
        "circle-stroke-width": ["case", match, hl.stroke_width, base.stroke_width],
        "circle-stroke-color": f"#{base.stroke_color}",
    }


def get_marker_color(source: str, highlighted: bool = False) -> str:
    """Get pin color hex for a resolved point."""
    if highlighted:
        return MARKER_COLORS["highlighted"]
    return MARKER_COLORS.get(source, MARKER_COLORS["neighborhood"])
