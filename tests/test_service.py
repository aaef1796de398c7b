"""Tests for the service facade: offline guard, permissions, token issuance."""
import pytest

from campus_checkin.config import Settings
from campus_checkin.errors import OfflineError, PermissionDeniedError, ValidationError
from campus_checkin.models import CreateEventInput, NetworkStatus
from campus_checkin.service import build_documents, build_service
from campus_checkin.store_client import HttpDocumentStore
from campus_checkin.token_codec import decode_token
from tests.conftest import FAST_RETRY, future, seed_event, seed_user


@pytest.fixture
def settings(db_path):
    return Settings(api_key="test-key", database_path=db_path, retry=FAST_RETRY)


@pytest.fixture
def service(settings, database):
    return build_service(settings, database)


def go_offline(service):
    service.connectivity.update(NetworkStatus(is_connected=False, type="none"))


class TestOfflineGuard:

    @pytest.mark.parametrize("call", [
        lambda s: s.rsvp("evt-1", "u1"),
        lambda s: s.cancel_rsvp("evt-1", "u1"),
        lambda s: s.check_in("{}"),
        lambda s: s.delete_event("evt-1", "admin-1"),
    ])
    def test_writes_are_refused_offline(self, run, service, database, call):
        async def scenario():
            await seed_event(database, rsvps=["u1"])
            go_offline(service)
            await call(service)

        with pytest.raises(OfflineError):
            run(scenario())
        assert run(service.get_event("evt-1")).rsvps == frozenset({"u1"})

    def test_offline_message(self, run, service):
        go_offline(service)
        with pytest.raises(OfflineError) as excinfo:
            run(service.rsvp("evt-1", "u1"))
        assert excinfo.value.user_message == "You're offline. Please connect to the internet to RSVP."

    def test_reads_still_work_offline(self, run, service, database):
        async def scenario():
            await seed_event(database)
            go_offline(service)
            return await service.get_event("evt-1")

        assert run(scenario()).id == "evt-1"

    def test_connectivity_status(self, service):
        go_offline(service)
        service.connectivity.enqueue("rsvp", {"eventId": "evt-1"})
        assert service.connectivity_status() == {
            "online": False,
            "is_connected": False,
            "is_internet_reachable": None,
            "type": "none",
            "pending_operations": 1,
        }


class TestPermissions:

    def _input(self):
        return CreateEventInput(title="Open Mic", description="Bring a song", date=future(5), location="Quad")

    def test_admin_can_create(self, run, service, database):
        async def scenario():
            await seed_user(database, "admin-1", role="admin")
            return await service.create_event(self._input(), "admin-1")

        event = run(scenario())
        assert event.created_by == "admin-1"

    @pytest.mark.parametrize("user_id", ["student-1", "nobody", ""])
    def test_non_admin_cannot_create(self, run, service, database, user_id):
        async def scenario():
            await seed_user(database, "student-1")
            await service.create_event(self._input(), user_id)

        with pytest.raises(PermissionDeniedError):
            run(scenario())

    def test_only_owner_updates(self, run, service, database):
        async def scenario():
            await seed_event(database, created_by="admin-1")
            with pytest.raises(PermissionDeniedError):
                await service.update_event("evt-1", {"title": "Hijacked"}, "admin-2")
            return await service.update_event("evt-1", {"title": "Renamed"}, "admin-1")

        assert run(scenario()).title == "Renamed"

    def test_only_owner_deletes(self, run, service, database):
        async def scenario():
            await seed_event(database, created_by="admin-1")
            with pytest.raises(PermissionDeniedError):
                await service.delete_event("evt-1", "student-1")
            await service.delete_event("evt-1", "admin-1")
            return await service.attendance.find("evt-1")

        assert run(scenario()) is None

    def test_only_owner_builds_notification_batch(self, run, service, database):
        async def scenario():
            await seed_event(database, created_by="admin-1", rsvps=["u1"])
            await seed_user(database, "u1", push_token="ExponentPushToken[u1]")
            with pytest.raises(PermissionDeniedError):
                await service.notification_batch("evt-1", "t", "b", "admin-2")
            return await service.notification_batch("evt-1", "t", "b", "admin-1")

        assert run(scenario()).tokens == ["ExponentPushToken[u1]"]

    def test_only_admin_builds_user_notification_batch(self, run, service, database):
        async def scenario():
            await seed_user(database, "admin-1", role="admin")
            await seed_user(database, "u1", push_token="ExponentPushToken[u1]")
            with pytest.raises(PermissionDeniedError):
                await service.user_notification_batch("u1", "t", "b", None, "u1")
            return await service.user_notification_batch("u1", "t", "b", {"kind": "reminder"}, "admin-1")

        batch = run(scenario())
        assert batch.tokens == ["ExponentPushToken[u1]"]
        assert batch.data == {"kind": "reminder"}


class TestPushTokens:

    def test_register_own_token(self, run, service, database):
        async def scenario():
            await seed_user(database, "u1")
            await service.register_push_token("u1", "ExpoPushToken[abc]", "u1")
            return await database.get("users", "u1")

        assert run(scenario()).data["pushToken"] == "ExpoPushToken[abc]"

    def test_cannot_register_for_someone_else(self, run, service, database):
        async def scenario():
            await seed_user(database, "u1")
            with pytest.raises(PermissionDeniedError):
                await service.register_push_token("u1", "ExpoPushToken[abc]", "u2")
            return await database.get("users", "u1")

        assert "pushToken" not in run(scenario()).data

    def test_malformed_token_is_rejected(self, run, service, database):
        async def scenario():
            await seed_user(database, "u1")
            await service.register_push_token("u1", "not-a-token", "u1")

        with pytest.raises(ValidationError):
            run(scenario())

    def test_refused_offline(self, run, service):
        go_offline(service)
        with pytest.raises(OfflineError):
            run(service.register_push_token("u1", "ExpoPushToken[abc]", "u1"))


class TestTokens:

    def test_issue_token_for_rsvpd_user(self, run, service, database):
        async def scenario():
            await seed_event(database, rsvps=["u1"])
            return await service.issue_token("evt-1", "u1")

        result = decode_token(run(scenario()))
        assert result.is_valid
        assert (result.data.user_id, result.data.event_id) == ("u1", "evt-1")

    def test_issue_token_requires_rsvp(self, run, service, database):
        async def scenario():
            await seed_event(database)
            await service.issue_token("evt-1", "u1")

        with pytest.raises(ValidationError) as excinfo:
            run(scenario())
        assert excinfo.value.user_message == "RSVP for this event to get a check-in code."

    def test_rsvp_then_check_in(self, run, service, database):
        async def scenario():
            await seed_event(database)
            await seed_user(database, "u1", name="Grace Hopper")
            await service.rsvp("evt-1", "u1")
            token = await service.issue_token("evt-1", "u1")
            outcome = await service.check_in(token)
            return outcome, await service.attendance_for("evt-1")

        outcome, snapshot = run(scenario())
        assert outcome.message == "Successfully checked in Grace Hopper"
        assert snapshot.summary == "1/1 attended"
        assert snapshot.attendance_rate == 100.0


class TestComposition:

    def test_sqlite_backend_by_default(self, settings):
        assert build_documents(settings).__class__.__name__ == "Database"

    def test_http_backend(self, run, settings):
        settings.store_backend = "http"
        settings.store_base_url = "http://store.test"
        documents = build_documents(settings)
        assert isinstance(documents, HttpDocumentStore)
        run(documents.close())

    def test_http_backend_needs_url(self, settings):
        settings.store_backend = "http"
        with pytest.raises(RuntimeError):
            build_documents(settings)

    def test_start_and_close(self, run, service, database):
        async def scenario():
            await seed_event(database)
            await service.start()
            events = service.upcoming_events()
            await service.close()
            return events

        assert [event.id for event in run(scenario())] == ["evt-1"]
