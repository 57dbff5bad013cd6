#!/usr/bin/env python3
"""
Roommate map server.

Serves the map page, the map document consumed by the page, and the
user/profile endpoints backed by a ProfileStore.

Usage:
    cumble-server --port 8080
    python -m cumble.server --port 8080 --store postgres
"""

import argparse
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

import uvicorn
from fastapi import Depends, FastAPI, Header, Query, Request
from fastapi.responses import HTMLResponse, JSONResponse
from jinja2 import Environment, FileSystemLoader, select_autoescape
from pydantic import ValidationError

from . import RoommateMap
from .config.settings import CumbleSettings, get_settings
from .errors import DataLoadError, IdentityError, PersistenceError
from .mapping.city_index import cities_in_state, distinct_cities, distinct_states
from .mapping.map_data_builder import neighborhood_features
from .mapping.reference_data import ReferenceData, ReferenceDataStore
from .models.schemas import ProfileData, ProfileLookup, UserRecord
from .utils.identity import (
    Identity,
    email_for_username,
    guard_redirect,
    identity_from_headers,
    is_own_profile,
    validate_institutional_email,
)
from .utils.profile_store import InMemoryProfileStore, ProfileStore, strip_primary_id
from .utils.user_listing import search_and_sort

logger = logging.getLogger(__name__)

TPL = Path(__file__).resolve().parent / "templates"


def _env():
    return Environment(
        loader=FileSystemLoader(str(TPL)), autoescape=select_autoescape(["html"])
    )


def build_store(settings: CumbleSettings) -> ProfileStore:
    """Profile store selected by PROFILE_STORE."""
    if settings.PROFILE_STORE == "postgres":
        from .utils.db_connector import PostgresProfileStore

        store = PostgresProfileStore(settings)
        store.ensure_schema()
        return store
    logger.info("Using in-memory profile store")
    return InMemoryProfileStore()


def current_identity(
    x_firebase_uid: Optional[str] = Header(default=None),
    x_user_email: Optional[str] = Header(default=None),
) -> Optional[Identity]:
    return identity_from_headers(x_firebase_uid, x_user_email)


def create_app(
    settings: Optional[CumbleSettings] = None,
    store: Optional[ProfileStore] = None,
    reference: Optional[ReferenceData] = None,
) -> FastAPI:
    """
    Build the FastAPI app.

    Args:
        settings: Defaults to the environment-loaded settings
        store: Profile store; chosen from settings when omitted
        reference: Preloaded reference data; loaded lazily when omitted
    """
    settings = settings or get_settings()
    store = store if store is not None else build_store(settings)
    env = _env()

    app = FastAPI(title="Cumble Roommate Map")
    app.state.settings = settings
    app.state.store = store
    app.state.reference = reference

    async def get_reference() -> ReferenceData:
        if app.state.reference is None:
            loader = ReferenceDataStore()
            if settings.NEIGHBORHOODS_CSV_URL:
                app.state.reference = await loader.fetch(
                    settings.NEIGHBORHOODS_CSV_URL, timeout=settings.HTTP_TIMEOUT
                )
            else:
                app.state.reference = loader.load_path(
                    settings.NEIGHBORHOODS_CSV_PATH, settings.CITY_CENTROIDS_CSV_PATH
                )
        return app.state.reference

    def list_users() -> List[UserRecord]:
        return [UserRecord.model_validate(p) for p in store.list_profiles()]

    # ── error mapping ──────────────────────────────────────────────

    @app.exception_handler(IdentityError)
    async def identity_error_handler(request: Request, exc: IdentityError):
        return JSONResponse(
            status_code=exc.status_code, content={"success": False, "message": str(exc)}
        )

    @app.exception_handler(DataLoadError)
    async def data_load_error_handler(request: Request, exc: DataLoadError):
        logger.error(f"Data unavailable for {request.url.path}: {exc}")
        return JSONResponse(status_code=503, content={"message": str(exc)})

    @app.exception_handler(PersistenceError)
    async def persistence_error_handler(request: Request, exc: PersistenceError):
        logger.error(f"Store error for {request.url.path}: {exc}")
        return JSONResponse(
            status_code=500, content={"success": False, "message": "Internal server error"}
        )

    # ── users and profiles ─────────────────────────────────────────

    @app.get("/api/users")
    def get_users():
        return [user.to_listing() for user in list_users()]

    @app.get("/api/users/list")
    def get_user_list(
        q: str = "",
        sort: str = "name",
        direction: str = "asc",
    ):
        try:
            users = search_and_sort(list_users(), q, sort, direction)
        except ValueError as e:
            return JSONResponse(status_code=400, content={"message": str(e)})
        return [user.to_list_row() for user in users]

    @app.get("/api/user")
    def get_user(
        username: Optional[str] = None,
        identity: Optional[Identity] = Depends(current_identity),
    ):
        if not username:
            return JSONResponse(
                status_code=400, content={"message": "Missing username parameter"}
            )
        profile = store.get_by_email(
            email_for_username(username, settings.ALLOWED_EMAIL_DOMAIN)
        )
        if profile is None:
            return JSONResponse(status_code=404, content={"message": "User not found"})
        profile["is_own_profile"] = is_own_profile(identity, username)
        return profile

    @app.get("/api/profile")
    def get_profile(firebase_id: Optional[str] = None):
        if not firebase_id:
            return JSONResponse(
                status_code=400,
                content={"success": False, "message": "Missing firebase_id"},
            )
        try:
            profile = store.get_by_firebase_id(firebase_id)
        except PersistenceError as e:
            logger.error(f"Profile lookup failed for {firebase_id}: {e}")
            return JSONResponse(
                status_code=500,
                content={"success": False, "message": "Error fetching profile"},
            )
        return ProfileLookup(exists=profile is not None, profile=profile).model_dump(
            exclude_none=True
        )

    @app.post("/api/profile")
    async def save_profile(
        request: Request, identity: Optional[Identity] = Depends(current_identity)
    ):
        try:
            body: Dict[str, Any] = await request.json()
        except ValueError:
            return JSONResponse(
                status_code=400, content={"success": False, "message": "Invalid JSON body"}
            )
        if not isinstance(body, dict):
            return JSONResponse(
                status_code=400, content={"success": False, "message": "Expected an object"}
            )
        try:
            profile = ProfileData.model_validate(strip_primary_id(body))
        except ValidationError as e:
            return JSONResponse(
                status_code=400, content={"success": False, "message": str(e)}
            )

        if not profile.firebase_id:
            return JSONResponse(
                status_code=400,
                content={"success": False, "message": "Missing firebase_id"},
            )
        if identity is not None and identity.uid != profile.firebase_id:
            raise IdentityError("Cannot edit another user's profile", status_code=403)

        try:
            store.upsert(profile.firebase_id, profile.model_dump(exclude_unset=True))
        except PersistenceError as e:
            logger.error(f"Profile save failed for {profile.firebase_id}: {e}")
            return JSONResponse(
                status_code=500,
                content={"success": False, "message": "Error saving profile"},
            )
        return {"success": True}

    @app.get("/api/email/check")
    def check_email(email: str = Query(...)):
        """Signup rule: the address must belong to the institutional domain."""
        normalized = validate_institutional_email(email, settings.ALLOWED_EMAIL_DOMAIN)
        return {"valid": True, "email": normalized}

    @app.get("/api/guard")
    def get_guard(path: str = "/", identity: Optional[Identity] = Depends(current_identity)):
        has_profile = bool(identity) and (
            store.get_by_firebase_id(identity.uid) is not None
        )
        return {"redirect": guard_redirect(identity, path, has_profile)}

    # ── reference selectors ────────────────────────────────────────

    @app.get("/api/cities")
    async def get_cities(source: str = "reference", state: Optional[str] = None):
        if source == "users":
            return distinct_cities(list_users(), key="city")
        reference = await get_reference()
        if state:
            return cities_in_state(reference.neighborhoods, state)
        return distinct_cities(reference.neighborhoods)

    @app.get("/api/states")
    async def get_states():
        reference = await get_reference()
        return distinct_states(reference.neighborhoods)

    @app.get("/api/neighborhoods")
    async def get_neighborhoods(city: Optional[str] = None):
        reference = await get_reference()
        return neighborhood_features(reference, city)

    # ── map ────────────────────────────────────────────────────────

    @app.get("/api/map")
    async def get_map(city: Optional[str] = None, highlight: Optional[str] = None):
        async def users_source() -> List[UserRecord]:
            try:
                return list_users()
            except PersistenceError as e:
                raise DataLoadError(f"User list unavailable: {e}") from e

        async with RoommateMap(users_source, get_reference, settings=settings) as rm:
            return await rm.open(city=city, highlighted=highlight)

    @app.get("/", response_class=HTMLResponse)
    async def index():
        html = env.get_template("map.html").render(
            mapbox_token=settings.MAPBOX_ACCESS_TOKEN,
            style_url=f"mapbox://styles/{settings.MAPBOX_USERNAME}/{settings.MAPBOX_STYLE}",
            center=[settings.MAP_CENTER_LNG, settings.MAP_CENTER_LAT],
            zoom=settings.MAP_INITIAL_ZOOM,
        )
        return HTMLResponse(html)

    return app


def main():
    """Main entry point for the map server."""
    parser = argparse.ArgumentParser(description="Cumble roommate map server")
    parser.add_argument(
        "--port",
        type=int,
        default=8080,
        help="Port to run the server on (default: 8080)",
    )
    parser.add_argument(
        "--host",
        type=str,
        default="0.0.0.0",
        help="Host to bind the server to (default: 0.0.0.0)",
    )
    parser.add_argument(
        "--store",
        choices=["memory", "postgres"],
        default=None,
        help="Profile store (default: PROFILE_STORE setting)",
    )
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")

    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.debug else logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    settings = get_settings()
    if args.store:
        settings = settings.model_copy(update={"PROFILE_STORE": args.store})
    if not settings.MAPBOX_ACCESS_TOKEN:
        logger.warning("MAPBOX_ACCESS_TOKEN not configured; the map will be unavailable")

    app = create_app(settings)
    logger.info(f"Serving on http://{args.host}:{args.port}")
    uvicorn.run(app, host=args.host, port=args.port)


if __name__ == "__main__":
    main()
