"""Verification-token validation and event check-in."""

from __future__ import annotations

import logging
from typing import Optional

from .attendance_store import AttendanceStore
from .errors import AppError
from .models import AttendanceSnapshot, CheckInOutcome, ErrorContext, TokenValidation, User
from .retry import DEFAULT_RETRY_CONFIG, RetryConfig, handle_error, log_error, with_retry
from .store_client import DocumentStore
from .token_codec import decode_token

logger = logging.getLogger(__name__)

USERS_COLLECTION = "users"

MISSING_IDS_MESSAGE = "Invalid QR code: missing user or event information"
EVENT_NOT_FOUND_MESSAGE = "Event not found"
NOT_RSVPD_MESSAGE = "User has not RSVP'd for this event"


class CheckInService:
    """Moves a user from RSVP'd to checked in.

    Business-rule rejections come back as ``CheckInOutcome`` values. The
    check-in itself is a set-union on the event's ``checkedIn`` field, so
    replaying the same token after a retried failure cannot double count.
    """

    def __init__(
        self,
        store: AttendanceStore,
        documents: DocumentStore,
        retry_config: RetryConfig = DEFAULT_RETRY_CONFIG,
    ) -> None:
        self.store = store
        self._documents = documents
        self._retry_config = retry_config

    def validate_token(self, token: str) -> TokenValidation:
        return decode_token(token)

    async def validate_and_check_in(self, token: str) -> CheckInOutcome:
        validation = self.validate_token(token)
        if not validation.is_valid or validation.data is None:
            return CheckInOutcome(success=False, message=validation.error or "Invalid QR code")
        return await self.check_in_user(validation.data.user_id, validation.data.event_id)

    async def check_in_user(self, user_id: str, event_id: str) -> CheckInOutcome:
        if not user_id or not event_id:
            return CheckInOutcome(success=False, message=MISSING_IDS_MESSAGE)

        context = ErrorContext(operation="checkInUser", user_id=user_id, metadata={"event_id": event_id})
        try:
            event = await self.store.find(event_id)
            if event is None:
                return CheckInOutcome(success=False, message=EVENT_NOT_FOUND_MESSAGE)

            if not event.has_rsvp(user_id):
                return CheckInOutcome(success=False, message=NOT_RSVPD_MESSAGE)

            user_name = await self.resolve_user_name(user_id)
            if event.is_checked_in(user_id):
                return CheckInOutcome(
                    success=False,
                    message=f"{user_name or 'User'} is already checked in",
                    user_name=user_name,
                )

            await self.store.add_check_in(user_id, event_id)
        except AppError as exc:
            return CheckInOutcome(success=False, message=handle_error(exc, context))

        logger.info("Checked in user %s to event %s", user_id, event_id)
        return CheckInOutcome(
            success=True,
            message=f"Successfully checked in {user_name or 'user'}",
            user_name=user_name,
        )

    async def resolve_user_name(self, user_id: str) -> Optional[str]:
        """Best-effort display-name lookup; any failure resolves to None."""

        context = ErrorContext(operation="getUserName", user_id=user_id)
        try:
            document = await with_retry(
                lambda: self._documents.get(USERS_COLLECTION, user_id),
                context,
                self._retry_config,
            )
        except AppError as exc:
            log_error(exc, context)
            return None
        if document is None:
            return None
        return User.from_document(document.id, document.data).name or None

    async def get_check_in_status(self, user_id: str, event_id: str) -> bool:
        if not user_id or not event_id:
            return False
        try:
            event = await self.store.find(event_id)
        except AppError as exc:
            handle_error(exc, ErrorContext("getCheckInStatus", user_id, {"event_id": event_id}))
            return False
        return event is not None and event.is_checked_in(user_id)

    async def get_event_attendance(self, event_id: str) -> Optional[AttendanceSnapshot]:
        if not event_id:
            return None
        try:
            event = await self.store.find(event_id)
        except AppError as exc:
            handle_error(exc, ErrorContext("getEventAttendance", metadata={"event_id": event_id}))
            return None
        return AttendanceSnapshot.from_event(event) if event else None


__all__ = [
    "CheckInService",
    "USERS_COLLECTION",
    "MISSING_IDS_MESSAGE",
    "EVENT_NOT_FOUND_MESSAGE",
    "NOT_RSVPD_MESSAGE",
]
