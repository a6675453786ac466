"""
Tests for the profile API (auth overridden, store faked).
"""

from datetime import timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi.testclient import TestClient

from conftest import FakeClock
from link.db.client import SupabaseDocumentStore
from link.profile.catalog import DEFAULT_CATALOG
from link.profile.errors import (
    InvalidStageTransition,
    ProfileSyncError,
    RemoteUnavailable,
    SubsystemNotInitialized,
    WriteInFlight,
)
from link.web import api
from link.web.app import create_app

TOTAL_WEIGHT = DEFAULT_CATALOG.total_required_weight()


@pytest.fixture
def app(monkeypatch, coordinator, store, user_id):
    async def _connect(access_token=None):
        return store

    monkeypatch.setattr(SupabaseDocumentStore, "connect", _connect)
    monkeypatch.setattr(api, "_new_coordinator", lambda document_store: coordinator)
    api.get_registry.cache_clear()

    app = create_app()

    async def _user():
        return api.AuthenticatedUser(id=user_id, access_token="test-token")

    app.dependency_overrides[api.get_current_user] = _user
    yield app
    app.dependency_overrides.clear()
    api.get_registry.cache_clear()


@pytest.fixture
def client(app):
    return TestClient(app)


class TestState:
    def test_first_request_resolves_remote_state(self, client, store):
        response = client.get("/profile/state")

        assert response.status_code == 200
        data = response.json()
        assert data["user_id"] == "user-1"
        assert data["stage"] == "genderComplete"
        assert data["step"] == 4
        assert data["total_steps"] == 21
        assert data["profile_completion"] == pytest.approx(7 / TOTAL_WEIGHT)
        assert not data["is_complete"]
        assert len(store.subscriptions) == 1

    def test_coordinator_reused_across_requests(self, client, store):
        client.get("/profile/state")
        client.get("/profile/state")

        assert store.fetch_count == 1
        assert len(store.subscriptions) == 1
        assert len(api.get_registry()) == 1

    def test_refreshes_after_remote_change(self, client, store, clock, user_id):
        client.get("/profile/state")
        store.documents[user_id]["occupation"] = "Engineer"
        clock.advance(minutes=6)
        store.notify(user_id, {"commit_timestamp": "c1"})

        data = client.get("/profile/state").json()

        assert data["profile_completion"] == pytest.approx(8 / TOTAL_WEIGHT)
        photos = next(f for f in data["incomplete_fields"] if f["field"] == "profilePictures")
        assert photos == {
            "field": "profilePictures",
            "displayName": "Photos",
            "message": "Add 4 more photos (2 of 6)",
            "required": 6,
            "current": 2,
        }

    def test_serves_cached_state_when_refresh_fails(self, client, store, clock, user_id):
        client.get("/profile/state")
        clock.advance(minutes=6)
        store.notify(user_id, {"commit_timestamp": "c1"})
        store.fail_fetch = RemoteUnavailable("offline")

        response = client.get("/profile/state")

        assert response.status_code == 200
        assert response.json()["stage"] == "genderComplete"

    def test_missing_profile_is_forbidden(self, client, store, user_id):
        del store.documents[user_id]

        assert client.get("/profile/state").status_code == 403
        assert len(api.get_registry()) == 0

    def test_store_down_on_first_use(self, client, store):
        store.fail_fetch = RemoteUnavailable("offline")

        assert client.get("/profile/state").status_code == 503
        assert len(api.get_registry()) == 0

        store.fail_fetch = None
        assert client.get("/profile/state").json()["stage"] == "genderComplete"


class TestSave:
    def test_save_fields(self, client, store):
        response = client.patch("/profile", json={"fields": {"occupation": "Engineer"}})

        assert response.status_code == 200
        assert response.json()["profile_completion"] == pytest.approx(8 / TOTAL_WEIGHT)
        assert store.documents["user-1"]["occupation"] == "Engineer"

    def test_save_completes_stage(self, client):
        response = client.patch(
            "/profile",
            json={"fields": {"sexuality": "straight"}, "completes": "sexualityComplete"},
        )
        data = response.json()
        assert data["stage"] == "sexualityComplete"
        assert data["step"] == 5

    def test_stage_field_rejected(self, client):
        response = client.patch("/profile", json={"fields": {"setupProgress": "complete"}})
        assert response.status_code == 400

    def test_unknown_stage_rejected(self, client):
        response = client.patch("/profile", json={"fields": {}, "completes": "almostDone"})
        assert response.status_code == 422

    def test_store_down(self, client, store):
        client.get("/profile/state")
        store.fail_writes = RemoteUnavailable("offline")
        response = client.patch("/profile", json={"fields": {"occupation": "Engineer"}})
        assert response.status_code == 503


class TestStage:
    def test_advance(self, client, store):
        response = client.post("/profile/stage", json={"stage": "heightComplete"})

        assert response.status_code == 200
        assert response.json()["step"] == 7
        assert store.documents["user-1"]["setupProgress"] == "heightComplete"

    def test_backwards_is_bad_request(self, client):
        response = client.post("/profile/stage", json={"stage": "nameEntered"})
        assert response.status_code == 400

    def test_reset(self, client, store):
        client.post("/profile/stage", json={"stage": "complete"})

        response = client.post("/profile/reset")

        assert response.json()["stage"] == "initial"
        assert store.documents["user-1"]["setupProgress"] == "initial"


class TestLogout:
    def test_logout_clears_local_state(self, client, coordinator, memory_store, store):
        client.patch("/profile", json={"fields": {"occupation": "Engineer"}})

        response = client.post("/profile/logout")

        assert response.json() == {"success": True}
        assert coordinator.user_id is None
        assert memory_store.snapshot() == {}
        assert store.subscriptions[0].closed
        assert len(api.get_registry()) == 0

    def test_logout_without_coordinator(self, client, store):
        response = client.post("/profile/logout")

        assert response.json() == {"success": True}
        assert store.fetch_count == 0
        assert len(api.get_registry()) == 0


class TestAuth:
    def test_missing_token(self):
        client = TestClient(create_app())
        assert client.get("/profile/state").status_code == 401

    def test_malformed_token(self):
        client = TestClient(create_app())
        response = client.get("/profile/state", headers={"Authorization": "Token abc"})
        assert response.status_code == 401

    def test_health(self):
        client = TestClient(create_app())
        assert client.get("/health").json() == {"status": "healthy"}


def _fake_coordinator():
    coordinator = MagicMock()
    coordinator.close = AsyncMock()
    return coordinator


class TestCoordinatorRegistry:
    @pytest.mark.asyncio
    async def test_idle_coordinators_closed(self):
        clock = FakeClock()
        registry = api.CoordinatorRegistry(timedelta(minutes=30), max_size=10, clock=clock)
        idle, busy = _fake_coordinator(), _fake_coordinator()
        await registry.add("idle", idle)
        await registry.add("busy", busy)

        clock.advance(minutes=20)
        registry.get("busy")
        clock.advance(minutes=20)

        assert await registry.evict_idle() == ["idle"]
        idle.close.assert_awaited_once()
        busy.close.assert_not_awaited()
        assert "idle" not in registry
        assert "busy" in registry

    @pytest.mark.asyncio
    async def test_capacity_evicts_least_recently_used(self):
        registry = api.CoordinatorRegistry(timedelta(minutes=30), max_size=2, clock=FakeClock())
        first, second, third = _fake_coordinator(), _fake_coordinator(), _fake_coordinator()
        await registry.add("a", first)
        await registry.add("b", second)
        registry.get("a")

        await registry.add("c", third)

        assert len(registry) == 2
        assert "b" not in registry
        second.close.assert_awaited_once()
        first.close.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_pop_and_close_all(self):
        registry = api.CoordinatorRegistry(timedelta(minutes=30), max_size=10, clock=FakeClock())
        kept, popped = _fake_coordinator(), _fake_coordinator()
        await registry.add("kept", kept)
        await registry.add("popped", popped)

        assert registry.pop("popped") is popped
        assert registry.pop("missing") is None
        await registry.close_all()

        kept.close.assert_awaited_once()
        popped.close.assert_not_awaited()
        assert len(registry) == 0


class TestErrorMapping:
    @pytest.mark.parametrize("error,status", [
        (WriteInFlight("busy"), 409),
        (InvalidStageTransition("complete", "initial"), 400),
        (SubsystemNotInitialized("no user"), 401),
        (RemoteUnavailable("offline"), 503),
        (ProfileSyncError("unexpected"), 500),
    ])
    def test_status_codes(self, error, status):
        assert api._http_error(error).status_code == status
