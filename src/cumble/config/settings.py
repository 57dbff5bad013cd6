# src/cumble/config/settings.py
from pathlib import Path
from typing import Literal, Optional

from pydantic import Field
from pydantic_settings import BaseSettings

# .env is at repo root ~/cumble/.env
# This file: ~/cumble/src/cumble/config/settings.py (4 levels deep)
_ENV_FILE = Path(__file__).parent.parent.parent.parent / ".env"
_DATA_DIR = Path(__file__).parent.parent / "data"


class CumbleSettings(BaseSettings):
    # Mapbox
    MAPBOX_ACCESS_TOKEN: str = Field(
        default="", description="Mapbox public access token (pk.*)"
    )
    MAPBOX_STYLE: str = Field(default="streets-v12", description="Mapbox style ID")
    MAPBOX_USERNAME: str = "mapbox"

    # Initial camera (USA center)
    MAP_CENTER_LNG: float = -95.7129
    MAP_CENTER_LAT: float = 37.0902
    MAP_INITIAL_ZOOM: float = 3

    # Viewport fitting
    MAP_PADDING: int = Field(default=50, description="Padding around fitted bounds in pixels")
    CITY_MAX_ZOOM: float = 14  # city filter active
    ALL_CITIES_MAX_ZOOM: float = 5  # country-scale view

    # Collision offsetting
    COLLISION_DELTA: float = Field(
        default=0.005, description="Degrees added per duplicate (~500m)"
    )
    COLLISION_PRECISION: int = Field(
        default=5, description="Decimal places used for the collision key (~1m)"
    )

    # Reference data
    NEIGHBORHOODS_CSV_PATH: str = str(_DATA_DIR / "usneighborhoods.csv")
    NEIGHBORHOODS_CSV_URL: Optional[str] = None
    CITY_CENTROIDS_CSV_PATH: Optional[str] = None

    # Identity
    ALLOWED_EMAIL_DOMAIN: str = "caltech.edu"

    # Profile persistence
    PROFILE_STORE: Literal["memory", "postgres"] = "memory"
    DB_NAME: Optional[str] = None
    DB_USER: Optional[str] = None
    DB_PASSWORD: Optional[str] = None
    DB_HOST: Optional[str] = None
    DB_PORT: str = "5432"

    # Collaborator API (render_static_map.py pulls users from here)
    API_BASE_URL: str = "http://localhost:8080"
    HTTP_TIMEOUT: float = 30.0

    # Static map snapshots
    MAP_WIDTH: int = Field(default=800, description="Map image width in pixels")
    MAP_HEIGHT: int = Field(
        default=450, description="Map image height in pixels (16:9 ratio)"
    )
    MAP_RETINA: bool = Field(default=True, description="Generate @2x retina images")

    class Config:
        env_file = _ENV_FILE
        extra = "ignore"  # Ignore extra environment variables


settings = CumbleSettings()


def get_settings() -> CumbleSettings:
    """Get the settings instance."""
    return settings
