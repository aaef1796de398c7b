"""Tests for the REST API using FastAPI's TestClient."""
import asyncio

import pytest
from fastapi.testclient import TestClient

from campus_checkin.api import create_app
from campus_checkin.config import Settings
from campus_checkin.db import Database
from campus_checkin.models import NetworkStatus
from campus_checkin.service import build_service
from tests.conftest import FAST_RETRY, future, seed_event, seed_user

API_KEY = "test-key"


def headers(user_id=None):
    values = {"X-API-Key": API_KEY}
    if user_id:
        values["X-User-Id"] = user_id
    return values


@pytest.fixture
def settings(db_path):
    return Settings(api_key=API_KEY, database_path=db_path, retry=FAST_RETRY)


@pytest.fixture
def seeded(db_path):
    """Seed an event owned by admin-1 with one RSVP, plus two users."""
    database = Database(db_path)

    async def seed():
        await seed_event(database, created_by="admin-1", rsvps=["u1"])
        await seed_user(database, "admin-1", name="Dana Admin", role="admin")
        await seed_user(database, "u1", name="Ada Lovelace", push_token="ExponentPushToken[u1]")

    asyncio.run(seed())
    return database


@pytest.fixture
def service(settings):
    return build_service(settings)


@pytest.fixture
def client(settings, service, seeded):
    with TestClient(create_app(settings, service)) as test_client:
        yield test_client


class TestAuth:

    def test_healthz_is_open(self, client):
        assert client.get("/healthz").json() == {"status": "ok"}

    def test_missing_api_key(self, client):
        assert client.get("/api/events").status_code == 422

    def test_wrong_api_key(self, client):
        response = client.get("/api/events", headers={"X-API-Key": "nope"})
        assert response.status_code == 401


class TestEvents:

    def test_list_events(self, client):
        response = client.get("/api/events", headers=headers())
        assert response.status_code == 200
        body = response.json()
        assert [event["id"] for event in body["events"]] == ["evt-1"]
        assert body["error"] is None

    def test_list_events_refresh(self, client):
        response = client.get("/api/events", params={"refresh": "true"}, headers=headers())
        assert [event["id"] for event in response.json()["events"]] == ["evt-1"]

    def test_get_missing_event(self, client):
        response = client.get("/api/events/ghost", headers=headers())
        assert response.status_code == 404
        assert response.json() == {"detail": "Event not found", "code": "not-found"}

    def test_create_event_as_admin(self, client):
        response = client.post(
            "/api/events",
            json={
                "title": "Poetry Slam",
                "description": "Open floor",
                "date": future(4).isoformat(),
                "location": "Library",
            },
            headers=headers("admin-1"),
        )
        assert response.status_code == 201
        body = response.json()
        assert body["created_by"] == "admin-1"
        assert body["rsvps"] == []

    def test_create_event_as_student_is_forbidden(self, client):
        response = client.post(
            "/api/events",
            json={"title": "x", "description": "y", "date": future(4).isoformat(), "location": "z"},
            headers=headers("u1"),
        )
        assert response.status_code == 403
        assert response.json()["detail"] == "Only organizers can create events."

    def test_create_event_with_blank_title(self, client):
        response = client.post(
            "/api/events",
            json={"title": "", "description": "y", "date": future(4).isoformat(), "location": "z"},
            headers=headers("admin-1"),
        )
        assert response.status_code == 400

    def test_update_and_delete(self, client):
        response = client.patch("/api/events/evt-1", json={"title": "Renamed"}, headers=headers("admin-1"))
        assert response.status_code == 200
        assert response.json()["title"] == "Renamed"
        assert response.json()["rsvps"] == ["u1"]

        assert client.delete("/api/events/evt-1", headers=headers("u1")).status_code == 403
        assert client.delete("/api/events/evt-1", headers=headers("admin-1")).status_code == 204
        assert client.get("/api/events/evt-1", headers=headers()).status_code == 404

    def test_patch_cannot_null_title(self, client):
        response = client.patch("/api/events/evt-1", json={"title": None}, headers=headers("admin-1"))
        assert response.status_code == 400
        assert client.get("/api/events/evt-1", headers=headers()).json()["title"] == "Career Fair"

    def test_events_created_by_user(self, client):
        response = client.get("/api/users/admin-1/events", params={"created": "true"}, headers=headers())
        assert [event["id"] for event in response.json()["events"]] == ["evt-1"]

    def test_my_events(self, client):
        response = client.get("/api/users/u1/events", headers=headers())
        assert [event["id"] for event in response.json()["events"]] == ["evt-1"]


class TestRsvpAndCheckIn:

    def test_rsvp_round_trip(self, client):
        assert client.post("/api/events/evt-1/rsvp", headers=headers("u2")).json()["rsvp"] is True
        assert "u2" in client.get("/api/events/evt-1", headers=headers()).json()["rsvps"]
        assert client.delete("/api/events/evt-1/rsvp", headers=headers("u2")).json()["rsvp"] is False
        assert "u2" not in client.get("/api/events/evt-1", headers=headers()).json()["rsvps"]

    def test_token_and_check_in(self, client):
        token = client.get("/api/events/evt-1/token", headers=headers("u1")).json()["token"]

        first = client.post("/api/checkin", json={"token": token}, headers=headers())
        assert first.json() == {
            "success": True,
            "message": "Successfully checked in Ada Lovelace",
            "user_name": "Ada Lovelace",
        }
        second = client.post("/api/checkin", json={"token": token}, headers=headers())
        assert second.json()["success"] is False
        assert second.json()["message"] == "Ada Lovelace is already checked in"

        attendance = client.get("/api/events/evt-1/attendance", headers=headers()).json()
        assert attendance["summary"] == "1/1 attended"
        assert attendance["attendance_rate"] == 100.0

    def test_token_requires_rsvp(self, client):
        response = client.get("/api/events/evt-1/token", headers=headers("u9"))
        assert response.status_code == 400
        assert response.json()["detail"] == "RSVP for this event to get a check-in code."

    def test_bad_token(self, client):
        response = client.post("/api/checkin", json={"token": "nonsense"}, headers=headers())
        assert response.status_code == 200
        assert response.json()["message"] == "Invalid QR code format: unable to parse JSON"

    def test_offline_rsvp_is_unavailable(self, client, service):
        service.connectivity.update(NetworkStatus(is_connected=False))
        response = client.post("/api/events/evt-1/rsvp", headers=headers("u2"))
        assert response.status_code == 503
        assert response.json()["code"] == "unavailable"
        assert client.get("/api/connectivity", headers=headers()).json()["online"] is False


class TestNotifications:

    def test_owner_gets_messages(self, client):
        response = client.post(
            "/api/events/evt-1/notifications",
            json={"title": "Reminder", "body": "Starts in 1 hour"},
            headers=headers("admin-1"),
        )
        body = response.json()
        assert [message["to"] for message in body["messages"]] == ["ExponentPushToken[u1]"]
        assert body["no_token_count"] == 0

    def test_non_owner_is_forbidden(self, client):
        response = client.post(
            "/api/events/evt-1/notifications",
            json={"title": "Spam", "body": "Spam"},
            headers=headers("u1"),
        )
        assert response.status_code == 403

    def test_admin_builds_user_messages(self, client):
        response = client.post(
            "/api/users/u1/notifications",
            json={"title": "Welcome", "body": "Thanks for joining", "data": {"kind": "welcome"}},
            headers=headers("admin-1"),
        )
        assert response.status_code == 200
        messages = response.json()["messages"]
        assert [message["to"] for message in messages] == ["ExponentPushToken[u1]"]
        assert messages[0]["data"] == {"kind": "welcome"}

    def test_student_cannot_build_user_messages(self, client):
        response = client.post(
            "/api/users/u1/notifications",
            json={"title": "Spam", "body": "Spam"},
            headers=headers("u1"),
        )
        assert response.status_code == 403


class TestPushTokens:

    def test_register_own_token(self, client, seeded):
        response = client.put(
            "/api/users/u1/push-token", json={"token": "ExpoPushToken[new]"}, headers=headers("u1")
        )
        assert response.status_code == 204
        user = asyncio.run(seeded.get("users", "u1"))
        assert user.data["pushToken"] == "ExpoPushToken[new]"

    def test_register_for_someone_else(self, client):
        response = client.put(
            "/api/users/u1/push-token", json={"token": "ExpoPushToken[new]"}, headers=headers("u2")
        )
        assert response.status_code == 403

    def test_register_malformed_token(self, client):
        response = client.put("/api/users/u1/push-token", json={"token": "abc"}, headers=headers("u1"))
        assert response.status_code == 400
