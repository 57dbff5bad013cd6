"""Async client for the user and profile collaborators."""

import logging
from typing import Any, Dict, List, Optional

import httpx

from ..config.settings import CumbleSettings
from ..errors import DataLoadError, PersistenceError
from ..models.schemas import ProfileData, ProfileLookup, UserRecord

logger = logging.getLogger(__name__)


class CumbleApiClient:
    """Thin wrapper over the /api/* endpoints."""

    def __init__(
        self,
        base_url: str,
        timeout: float = 30.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        """
        Args:
            base_url: Server root, e.g. "http://localhost:8080"
            timeout: HTTP request timeout in seconds
            client: Optional preconfigured client (tests pass an ASGI transport)
        """
        self.http_client = client or httpx.AsyncClient(
            base_url=base_url.rstrip("/"), timeout=timeout
        )

    @classmethod
    def from_settings(cls, settings: CumbleSettings) -> "CumbleApiClient":
        return cls(settings.API_BASE_URL, timeout=settings.HTTP_TIMEOUT)

    async def list_users(self) -> List[UserRecord]:
        """
        GET /api/users

        Raises:
            DataLoadError: network failure, non-2xx, or a non-array body
        """
        try:
            response = await self.http_client.get("/api/users")
            response.raise_for_status()
            data = response.json()
        except (httpx.HTTPError, ValueError) as e:
            raise DataLoadError(f"User list fetch failed: {e}") from e

        if not isinstance(data, list):
            raise DataLoadError("/api/users did not return an array")

        users = []
        for item in data:
            try:
                users.append(UserRecord.model_validate(item))
            except ValueError as e:
                logger.warning(f"Skipping malformed user record: {e}")
        return users

    async def get_user(self, username: str) -> Optional[Dict[str, Any]]:
        """GET /api/user?username=... → profile dict, or None on 404."""
        try:
            response = await self.http_client.get(
                "/api/user", params={"username": username}
            )
            if response.status_code == 404:
                return None
            response.raise_for_status()
            return response.json()
        except (httpx.HTTPError, ValueError) as e:
            raise DataLoadError(f"User lookup failed: {e}") from e

    async def get_profile(self, firebase_id: str) -> ProfileLookup:
        try:
            response = await self.http_client.get(
                "/api/profile", params={"firebase_id": firebase_id}
            )
            response.raise_for_status()
            return ProfileLookup.model_validate(response.json())
        except (httpx.HTTPError, ValueError) as e:
            raise PersistenceError(f"Profile lookup failed: {e}") from e

    async def save_profile(self, profile: ProfileData) -> None:
        """
        POST /api/profile

        Raises:
            PersistenceError: the caller keeps its form state and may retry
        """
        try:
            response = await self.http_client.post(
                "/api/profile", json=profile.model_dump(exclude_none=True)
            )
            response.raise_for_status()
            body = response.json()
        except (httpx.HTTPError, ValueError) as e:
            raise PersistenceError(f"Profile save failed: {e}") from e

        if not body.get("success"):
            raise PersistenceError(body.get("message") or "Profile save failed")

    async def aclose(self) -> None:
        await self.http_client.aclose()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.aclose()
