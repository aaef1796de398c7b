"""Build push-notification recipient batches and summarise delivery results.

Delivering the batch is someone else's job; this module only decides who
should receive a message and turns the per-recipient results back into counts.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional

from .attendance_store import AttendanceStore
from .checkin import USERS_COLLECTION
from .models import ErrorContext, User, now_ms
from .retry import DEFAULT_RETRY_CONFIG, RetryConfig, with_retry
from .store_client import DocumentStore, Query, chunked

logger = logging.getLogger(__name__)

USER_LOOKUP_BATCH_SIZE = 30
PUSH_TOKEN_PREFIXES = ("ExponentPushToken[", "ExpoPushToken[")


def is_push_token(token: Optional[str]) -> bool:
    return bool(token) and token.startswith(PUSH_TOKEN_PREFIXES)


@dataclass(slots=True)
class PushBatch:
    tokens: List[str]
    title: str
    body: str
    data: Dict[str, Any] = field(default_factory=dict)
    no_token_count: int = 0
    invalid_tokens: List[str] = field(default_factory=list)

    def messages(self) -> List[Dict[str, Any]]:
        return [
            {
                "to": token,
                "sound": "default",
                "title": self.title,
                "body": self.body,
                "data": self.data,
                "priority": "high",
            }
            for token in self.tokens
        ]


@dataclass(slots=True)
class DeliveryReport:
    sent_count: int = 0
    failed_count: int = 0
    no_token_count: int = 0
    errors: List[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return self.failed_count == 0


def summarize_delivery(batch: PushBatch, results: Iterable[Mapping[str, Any]]) -> DeliveryReport:
    """Turn per-recipient ``{"status": "ok" | "error", ...}`` results into counts."""

    report = DeliveryReport(failed_count=len(batch.invalid_tokens), no_token_count=batch.no_token_count)
    for index, item in enumerate(results):
        if item.get("status") == "ok":
            report.sent_count += 1
            continue
        report.failed_count += 1
        details = item.get("details") or {}
        reason = details.get("error") or item.get("message") or "Unknown error"
        report.errors.append(reason)
        if reason == "DeviceNotRegistered":
            logger.warning("Push token %d is no longer registered", index)
        else:
            logger.error("Push delivery failed for token %d: %s", index, reason)
    return report


class PushRecipientService:
    """Resolves the push tokens that belong to an event's RSVP list."""

    def __init__(
        self,
        store: AttendanceStore,
        documents: DocumentStore,
        retry_config: RetryConfig = DEFAULT_RETRY_CONFIG,
    ) -> None:
        self._store = store
        self._documents = documents
        self._retry_config = retry_config

    async def _users(self, user_ids: List[str]) -> List[User]:
        users: List[User] = []
        for batch in chunked(user_ids, USER_LOOKUP_BATCH_SIZE):
            documents = await with_retry(
                lambda batch=batch: self._documents.query(USERS_COLLECTION, Query(where=("uid", "in", batch))),
                ErrorContext(operation="getPushRecipients", metadata={"batch_size": len(batch)}),
                self._retry_config,
            )
            users.extend(User.from_document(doc.id, doc.data) for doc in documents)
        return users

    def _batch(self, users: List[User], requested: int, title: str, body: str, data: Dict[str, Any]) -> PushBatch:
        tokens: List[str] = []
        invalid: List[str] = []
        without_token = 0
        for user in users:
            if not user.push_token:
                without_token += 1
            elif is_push_token(user.push_token):
                tokens.append(user.push_token)
            else:
                logger.warning("Invalid push token format for user %s", user.uid)
                invalid.append(user.push_token)

        not_found = requested - len(users)
        if not_found > 0:
            logger.warning("%d recipients not found in users collection", not_found)
        return PushBatch(
            tokens=tokens,
            title=title,
            body=body,
            data=data,
            no_token_count=without_token + max(not_found, 0),
            invalid_tokens=invalid,
        )

    async def batch_for_event(self, event_id: str, title: str, body: str) -> PushBatch:
        rsvps = await self._store.event_rsvps(event_id)
        data = {"eventId": event_id}
        if not rsvps:
            return PushBatch(tokens=[], title=title, body=body, data=data)
        users = await self._users(rsvps)
        batch = self._batch(users, len(rsvps), title, body, data)
        logger.info(
            "Prepared %d push tokens for event %s (%d without tokens)",
            len(batch.tokens),
            event_id,
            batch.no_token_count,
        )
        return batch

    async def batch_for_user(
        self, user_id: str, title: str, body: str, data: Optional[Dict[str, Any]] = None
    ) -> PushBatch:
        users = await self._users([user_id])
        return self._batch(users, 1, title, body, dict(data or {}))

    async def store_push_token(self, user_id: str, token: str) -> None:
        await with_retry(
            lambda: self._documents.update(
                USERS_COLLECTION, user_id, {"pushToken": token, "updatedAt": now_ms()}
            ),
            ErrorContext(operation="storePushToken", user_id=user_id),
            self._retry_config,
        )


__all__ = [
    "USER_LOOKUP_BATCH_SIZE",
    "is_push_token",
    "PushBatch",
    "DeliveryReport",
    "summarize_delivery",
    "PushRecipientService",
]
