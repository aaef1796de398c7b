"""Core orchestration logic for the campus check-in service."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Mapping, Optional

from .attendance_store import AttendanceStore
from .checkin import USERS_COLLECTION, CheckInService
from .config import Settings
from .connectivity import ConnectivityMonitor, HttpReachabilityPoller
from .db import Database
from .errors import OfflineError, PermissionDeniedError, invalid_argument
from .models import (
    AttendanceSnapshot,
    CheckInOutcome,
    CreateEventInput,
    ErrorContext,
    Event,
    User,
)
from .notifications import PushBatch, PushRecipientService, is_push_token
from .retry import with_retry
from .store_client import DocumentStore, HttpDocumentStore
from .token_codec import encode_token

logger = logging.getLogger(__name__)


class CampusCheckinService:
    """High-level service that guards writes and exposes query helpers.

    Writes are refused while the connectivity monitor reports offline.
    Creating events needs an admin; editing or deleting needs the organizer.
    """

    def __init__(
        self,
        settings: Settings,
        documents: DocumentStore,
        attendance: AttendanceStore,
        checkin: CheckInService,
        connectivity: ConnectivityMonitor,
        push: PushRecipientService,
    ) -> None:
        self.settings = settings
        self.documents = documents
        self.attendance = attendance
        self.checkin = checkin
        self.connectivity = connectivity
        self.push = push

    async def start(self) -> None:
        await self.connectivity.start()
        await self.attendance.start()

    async def close(self) -> None:
        await self.attendance.close()
        await self.connectivity.close()
        await self.documents.close()

    # region Guards
    def _require_online(self, action: str) -> None:
        if not self.connectivity.online:
            raise OfflineError(action)

    async def get_user(self, user_id: str) -> Optional[User]:
        document = await with_retry(
            lambda: self.documents.get(USERS_COLLECTION, user_id),
            ErrorContext(operation="getUser", user_id=user_id),
            self.settings.retry,
        )
        return User.from_document(document.id, document.data) if document else None

    async def _require_admin(self, user_id: str, message: str = "Only organizers can create events.") -> None:
        user = await self.get_user(user_id) if user_id else None
        if user is None or not user.is_admin:
            raise PermissionDeniedError(message)

    async def _require_owner(self, event_id: str, user_id: str) -> Event:
        event = await self.attendance.get_by_id(event_id)
        if event.created_by != user_id:
            raise PermissionDeniedError("Only the organizer may modify this event.")
        return event

    # endregion

    # region Events
    def upcoming_events(self) -> List[Event]:
        return self.attendance.list()

    async def refresh_events(self) -> List[Event]:
        return await self.attendance.refresh()

    async def get_event(self, event_id: str) -> Event:
        return await self.attendance.get_by_id(event_id)

    async def create_event(self, event_input: CreateEventInput, acting_user: str) -> Event:
        self._require_online("create events")
        await self._require_admin(acting_user)
        return await self.attendance.create(event_input, acting_user)

    async def update_event(self, event_id: str, updates: Mapping[str, Any], acting_user: str) -> Event:
        self._require_online("update events")
        await self._require_owner(event_id, acting_user)
        await self.attendance.update(event_id, updates)
        return await self.attendance.get_by_id(event_id)

    async def delete_event(self, event_id: str, acting_user: str) -> None:
        self._require_online("delete events")
        await self._require_owner(event_id, acting_user)
        await self.attendance.delete(event_id)
        logger.info("Deleted event %s by %s", event_id, acting_user)

    async def events_by_creator(self, creator_id: str) -> List[Event]:
        return await self.attendance.events_by_creator(creator_id)

    def my_events(self, user_id: str) -> List[Event]:
        return self.attendance.my_events(user_id)

    # endregion

    # region RSVP and check-in
    async def rsvp(self, event_id: str, user_id: str) -> None:
        self._require_online("RSVP")
        await self.attendance.add_rsvp(user_id, event_id)

    async def cancel_rsvp(self, event_id: str, user_id: str) -> None:
        self._require_online("cancel RSVP")
        await self.attendance.remove_rsvp(user_id, event_id)

    async def is_user_rsvpd(self, event_id: str, user_id: str) -> bool:
        if self.attendance.is_user_rsvpd(user_id, event_id):
            return True
        event = await self.attendance.find(event_id)
        return event is not None and event.has_rsvp(user_id)

    async def issue_token(self, event_id: str, user_id: str) -> str:
        """Return a fresh QR payload for an attendee who has RSVP'd."""

        if not await self.is_user_rsvpd(event_id, user_id):
            raise invalid_argument("RSVP for this event to get a check-in code.")
        return encode_token(user_id, event_id)

    async def check_in(self, token: str) -> CheckInOutcome:
        self._require_online("check in attendees")
        return await self.checkin.validate_and_check_in(token)

    async def attendance_for(self, event_id: str) -> AttendanceSnapshot:
        return AttendanceSnapshot.from_event(await self.attendance.get_by_id(event_id))

    # endregion

    async def notification_batch(self, event_id: str, title: str, body: str, acting_user: str) -> PushBatch:
        await self._require_owner(event_id, acting_user)
        return await self.push.batch_for_event(event_id, title, body)

    async def user_notification_batch(
        self, user_id: str, title: str, body: str, data: Optional[Dict[str, Any]], acting_user: str
    ) -> PushBatch:
        await self._require_admin(acting_user, "Only organizers can send notifications.")
        return await self.push.batch_for_user(user_id, title, body, data)

    async def register_push_token(self, user_id: str, token: str, acting_user: str) -> None:
        self._require_online("register for notifications")
        if user_id != acting_user:
            raise PermissionDeniedError("You can only register your own device.")
        if not is_push_token(token):
            raise invalid_argument("Invalid push token format.")
        await self.push.store_push_token(user_id, token)

    def connectivity_status(self) -> Dict[str, Any]:
        status = self.connectivity.status
        return {
            "online": self.connectivity.online,
            "is_connected": status.is_connected,
            "is_internet_reachable": status.is_internet_reachable,
            "type": status.type,
            "pending_operations": len(self.connectivity.pending),
        }


def build_documents(settings: Settings) -> DocumentStore:
    if settings.store_backend == "http":
        if not settings.store_base_url:
            raise RuntimeError("STORE_BASE_URL must be configured when STORE_BACKEND=http")
        return HttpDocumentStore(settings.store_base_url, settings.store_token)
    return Database(settings.database_path)


def build_service(settings: Settings, documents: Optional[DocumentStore] = None) -> CampusCheckinService:
    documents = documents or build_documents(settings)
    poller = (
        HttpReachabilityPoller(settings.connectivity_check_url, settings.connectivity_interval_seconds)
        if settings.connectivity_check_url
        else None
    )
    attendance = AttendanceStore(documents, settings.retry)
    return CampusCheckinService(
        settings=settings,
        documents=documents,
        attendance=attendance,
        checkin=CheckInService(attendance, documents, settings.retry),
        connectivity=ConnectivityMonitor(poller),
        push=PushRecipientService(attendance, documents, settings.retry),
    )


__all__ = ["CampusCheckinService", "build_documents", "build_service"]
