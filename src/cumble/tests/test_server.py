"""Tests for the HTTP endpoints and the async API client."""

from unittest.mock import MagicMock

import httpx
import pytest
from fastapi.testclient import TestClient

from cumble.clients.api_client import CumbleApiClient
from cumble.config.settings import CumbleSettings
from cumble.errors import DataLoadError, PersistenceError
from cumble.mapping.reference_data import ReferenceDataStore
from cumble.models.schemas import ProfileData
from cumble.server import create_app
from cumble.utils.profile_store import InMemoryProfileStore


SAMPLE_CSV = """neighborhood,city_name,state_name,lat,lng
Back Bay,Boston,Massachusetts,42.3503,-71.0810
Beacon Hill,Boston,Massachusetts,42.3588,-71.0707
Kendall Square,Cambridge,Massachusetts,42.3629,-71.0901
Fremont,Seattle,Washington,47.6510,-122.3505
"""

PROFILES = [
    {
        "firebase_id": "fb-ann",
        "first_name": "Ann",
        "last_name": "Lee",
        "email": "alee@caltech.edu",
        "phone_number": "555-0100",
        "country": "USA",
        "state": "Massachusetts",
        "city": "Boston",
        "neighborhoods": ["Back Bay"],
    },
    {
        "firebase_id": "fb-bo",
        "first_name": "Bo",
        "last_name": "Kim",
        "email": "bkim@caltech.edu",
        "country": "USA",
        "state": "Massachusetts",
        "city": "Boston",
        "neighborhoods": ["Back Bay"],
    },
    {
        "firebase_id": "fb-cy",
        "first_name": "Cy",
        "last_name": "Park",
        "email": "cpark@caltech.edu",
        "country": "USA",
        "state": "Washington",
        "city": "Seattle",
        "neighborhoods": [],
    },
]


def _settings(**overrides):
    values = {"MAPBOX_ACCESS_TOKEN": "pk.test"}
    values.update(overrides)
    return CumbleSettings(**values)


@pytest.fixture
def store():
    return InMemoryProfileStore(PROFILES)


@pytest.fixture
def app(store):
    reference = ReferenceDataStore().load_text(SAMPLE_CSV)
    return create_app(settings=_settings(), store=store, reference=reference)


@pytest.fixture
def http(app):
    return TestClient(app)


# =============================================================================
# Users
# =============================================================================


class TestUsersEndpoints:
    def test_users_are_sanitized(self, http):
        response = http.get("/api/users")
        assert response.status_code == 200
        users = response.json()
        assert len(users) == 3
        assert set(users[0]) == {
            "_id",
            "first_name",
            "last_name",
            "email",
            "country",
            "city",
            "neighborhoods",
        }

    def test_user_by_username(self, http):
        response = http.get("/api/user", params={"username": "alee"})
        assert response.status_code == 200
        body = response.json()
        assert body["phone_number"] == "555-0100"
        assert body["is_own_profile"] is False

    def test_user_own_profile_flag(self, http):
        response = http.get(
            "/api/user",
            params={"username": "alee"},
            headers={"X-Firebase-Uid": "fb-ann", "X-User-Email": "alee@caltech.edu"},
        )
        assert response.json()["is_own_profile"] is True

    def test_user_not_found(self, http):
        assert http.get("/api/user", params={"username": "nobody"}).status_code == 404

    def test_user_missing_username(self, http):
        assert http.get("/api/user").status_code == 400

    def test_user_list_search_and_sort(self, http):
        response = http.get(
            "/api/users/list", params={"q": "boston", "sort": "name", "direction": "desc"}
        )
        assert [u["first_name"] for u in response.json()] == ["Bo", "Ann"]

    def test_user_list_rows_carry_state(self, http):
        rows = http.get("/api/users/list", params={"sort": "state"}).json()
        assert [u["state"] for u in rows] == [
            "Massachusetts",
            "Massachusetts",
            "Washington",
        ]

    def test_user_list_bad_sort(self, http):
        assert http.get("/api/users/list", params={"sort": "age"}).status_code == 400

    def test_store_failure_is_500(self, app):
        broken = MagicMock()
        broken.list_profiles.side_effect = PersistenceError("db down")
        app = create_app(settings=_settings(), store=broken, reference=app.state.reference)
        response = TestClient(app).get("/api/users")
        assert response.status_code == 500
        assert response.json()["message"] == "Internal server error"


# =============================================================================
# Profiles
# =============================================================================


class TestProfileEndpoints:
    def test_lookup_requires_firebase_id(self, http):
        response = http.get("/api/profile")
        assert response.status_code == 400
        assert response.json() == {"success": False, "message": "Missing firebase_id"}

    def test_lookup_missing_profile(self, http):
        response = http.get("/api/profile", params={"firebase_id": "fb-new"})
        assert response.json() == {"success": True, "exists": False}

    def test_lookup_existing_profile(self, http):
        body = http.get("/api/profile", params={"firebase_id": "fb-ann"}).json()
        assert body["exists"] is True
        assert body["profile"]["email"] == "alee@caltech.edu"

    def test_save_requires_firebase_id(self, http):
        response = http.post("/api/profile", json={"first_name": "Dee"})
        assert response.status_code == 400

    def test_save_malformed_json_body(self, http):
        response = http.post(
            "/api/profile",
            content=b"{not json",
            headers={"content-type": "application/json"},
        )
        assert response.status_code == 400
        assert response.json() == {"success": False, "message": "Invalid JSON body"}

    def test_save_creates_and_strips_client_id(self, http, store):
        response = http.post(
            "/api/profile",
            json={
                "_id": "client-chosen",
                "firebase_id": "fb-dee",
                "first_name": "Dee",
                "email": "dee@caltech.edu",
                "neighborhoods": ["Fremont", ""],
            },
        )
        assert response.json() == {"success": True}
        saved = store.get_by_firebase_id("fb-dee")
        assert saved["_id"] != "client-chosen"
        assert saved["neighborhoods"] == ["Fremont"]

    def test_save_merges_into_existing(self, http, store):
        http.post("/api/profile", json={"firebase_id": "fb-ann", "city": "Cambridge"})
        saved = store.get_by_firebase_id("fb-ann")
        assert saved["city"] == "Cambridge"
        assert saved["first_name"] == "Ann"

    def test_save_for_another_user_is_forbidden(self, http):
        response = http.post(
            "/api/profile",
            json={"firebase_id": "fb-ann", "city": "Seattle"},
            headers={"X-Firebase-Uid": "fb-bo"},
        )
        assert response.status_code == 403

    def test_save_failure(self, app):
        broken = MagicMock()
        broken.upsert.side_effect = PersistenceError("db down")
        app = create_app(settings=_settings(), store=broken, reference=app.state.reference)
        response = TestClient(app).post("/api/profile", json={"firebase_id": "fb-ann"})
        assert response.status_code == 500
        assert response.json() == {"success": False, "message": "Error saving profile"}


# =============================================================================
# Identity
# =============================================================================


class TestIdentityEndpoints:
    def test_guard_sends_anonymous_to_signin(self, http):
        assert http.get("/api/guard", params={"path": "/"}).json() == {
            "redirect": "/signin"
        }

    def test_guard_leaves_open_paths_alone(self, http):
        assert http.get("/api/guard", params={"path": "/signup"}).json() == {
            "redirect": None
        }

    def test_guard_sends_new_user_to_profile_edit(self, http):
        response = http.get(
            "/api/guard", params={"path": "/"}, headers={"X-Firebase-Uid": "fb-new"}
        )
        assert response.json() == {"redirect": "/profile/edit"}

    def test_guard_lets_known_user_through(self, http):
        response = http.get(
            "/api/guard", params={"path": "/"}, headers={"X-Firebase-Uid": "fb-ann"}
        )
        assert response.json() == {"redirect": None}

    def test_email_check(self, http):
        ok = http.get("/api/email/check", params={"email": "New@Caltech.edu"})
        assert ok.json() == {"valid": True, "email": "new@caltech.edu"}
        bad = http.get("/api/email/check", params={"email": "someone@gmail.com"})
        assert bad.status_code == 403
        assert bad.json()["success"] is False


# =============================================================================
# Reference selectors and map
# =============================================================================


class TestMapEndpoints:
    def test_cities_from_reference_and_users(self, http):
        assert http.get("/api/cities").json() == ["Boston", "Cambridge", "Seattle"]
        assert http.get("/api/cities", params={"source": "users"}).json() == [
            "Boston",
            "Seattle",
        ]

    def test_states_and_cities_in_state(self, http):
        assert http.get("/api/states").json() == ["Massachusetts", "Washington"]
        assert http.get("/api/cities", params={"state": "Massachusetts"}).json() == [
            "Boston",
            "Cambridge",
        ]

    def test_neighborhoods_for_city(self, http):
        body = http.get("/api/neighborhoods", params={"city": "Boston"}).json()
        assert [f["properties"]["neighborhood"] for f in body["features"]] == [
            "Back Bay",
            "Beacon Hill",
        ]

    def test_map_document(self, http):
        doc = http.get("/api/map").json()
        assert doc["available"] is True
        assert doc["loading"] is False
        features = doc["sources"]["users"]["data"]["features"]
        assert len(features) == 3
        assert doc["fit"]["maxZoom"] == 5
        assert doc["layers"][0]["id"] == "user-points"

    def test_map_document_with_city_filter(self, http):
        doc = http.get("/api/map", params={"city": "Boston", "highlight": "Back Bay"}).json()
        assert doc["fit"]["maxZoom"] == 14
        assert doc["fit"]["padding"] == 50
        assert doc["highlighted"] == "Back Bay"
        assert doc["layers"][0]["paint"]["circle-color"][0] == "case"

    def test_map_without_token_is_unavailable(self, store):
        reference = ReferenceDataStore().load_text(SAMPLE_CSV)
        app = create_app(
            settings=_settings(MAPBOX_ACCESS_TOKEN=""), store=store, reference=reference
        )
        doc = TestClient(app).get("/api/map").json()
        assert doc["available"] is False
        assert doc["stats"]["rendered"] == 3

    def test_reference_unavailable(self, store, tmp_path):
        app = create_app(
            settings=_settings(NEIGHBORHOODS_CSV_PATH=str(tmp_path / "missing.csv")),
            store=store,
        )
        http = TestClient(app)
        assert http.get("/api/states").status_code == 503
        doc = http.get("/api/map").json()
        assert doc["loading"] is True
        assert "reference" in doc["error"]

    def test_undecodable_reference_csv(self, store, tmp_path):
        path = tmp_path / "latin1.csv"
        path.write_bytes(
            "neighborhood,city_name,state_name,lat,lng\n"
            "São Paulo Sq,Boston,Massachusetts,42.35,-71.08\n".encode("latin-1")
        )
        app = create_app(
            settings=_settings(NEIGHBORHOODS_CSV_PATH=str(path)), store=store
        )
        http = TestClient(app)
        assert http.get("/api/states").status_code == 503
        doc = http.get("/api/map").json()
        assert doc["loading"] is True
        assert "reference" in doc["error"]

    def test_index_page(self, http):
        response = http.get("/")
        assert response.status_code == 200
        assert "mapbox-gl" in response.text
        assert "pk.test" in response.text


# =============================================================================
# CumbleApiClient against the app
# =============================================================================


class TestApiClient:
    def _client(self, app):
        transport = httpx.ASGITransport(app=app)
        return CumbleApiClient(
            "http://test",
            client=httpx.AsyncClient(transport=transport, base_url="http://test"),
        )

    @pytest.mark.asyncio
    async def test_list_users(self, app):
        async with self._client(app) as api:
            users = await api.list_users()
        assert [u.username for u in users] == ["alee", "bkim", "cpark"]

    @pytest.mark.asyncio
    async def test_get_user_missing_is_none(self, app):
        async with self._client(app) as api:
            assert await api.get_user("nobody") is None
            assert (await api.get_user("alee"))["first_name"] == "Ann"

    @pytest.mark.asyncio
    async def test_profile_round_trip(self, app):
        async with self._client(app) as api:
            await api.save_profile(
                ProfileData(firebase_id="fb-eve", first_name="Eve", email="eve@caltech.edu")
            )
            lookup = await api.get_profile("fb-eve")
        assert lookup.exists is True
        assert lookup.profile["first_name"] == "Eve"

    @pytest.mark.asyncio
    async def test_save_without_firebase_id_raises(self, app):
        async with self._client(app) as api:
            with pytest.raises(PersistenceError):
                await api.save_profile(ProfileData(first_name="Nobody"))

    @pytest.mark.asyncio
    async def test_from_settings(self):
        api = CumbleApiClient.from_settings(
            _settings(API_BASE_URL="http://users.internal:9000/", HTTP_TIMEOUT=5.0)
        )
        assert api.http_client.base_url.host == "users.internal"
        assert api.http_client.base_url.port == 9000
        assert api.http_client.timeout.read == 5.0
        await api.aclose()

    @pytest.mark.asyncio
    async def test_network_failure_raises_data_load_error(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        api = CumbleApiClient(
            "http://test",
            client=httpx.AsyncClient(
                transport=httpx.MockTransport(handler), base_url="http://test"
            ),
        )
        with pytest.raises(DataLoadError):
            await api.list_users()
        await api.aclose()
