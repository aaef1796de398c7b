"""Dataclasses representing campus check-in domain models."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional

TOKEN_FORMAT_VERSION = "1.0"


def now_ms() -> int:
    return int(time.time() * 1000)


def to_millis(value: datetime) -> int:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return round(value.timestamp() * 1000)


def from_millis(value: Optional[int]) -> Optional[datetime]:
    if value is None:
        return None
    return datetime.fromtimestamp(value / 1000, tz=timezone.utc)


@dataclass(slots=True)
class User:
    uid: str
    email: str
    name: str
    role: str = "student"
    push_token: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"

    @classmethod
    def from_document(cls, uid: str, data: Mapping[str, Any]) -> "User":
        return cls(
            uid=data.get("uid") or uid,
            email=data.get("email", ""),
            name=data.get("name", ""),
            role=data.get("role", "student"),
            push_token=data.get("pushToken"),
            created_at=from_millis(data.get("createdAt")),
            updated_at=from_millis(data.get("updatedAt")),
        )


@dataclass(slots=True)
class Event:
    """An event document. ``checked_in`` is always a subset of ``rsvps``."""

    id: str
    title: str
    description: str
    date: datetime
    location: str
    created_by: str
    rsvps: frozenset[str] = frozenset()
    checked_in: frozenset[str] = frozenset()
    image_url: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    def has_rsvp(self, user_id: str) -> bool:
        return user_id in self.rsvps

    def is_checked_in(self, user_id: str) -> bool:
        return user_id in self.checked_in

    @classmethod
    def from_document(cls, event_id: str, data: Mapping[str, Any]) -> "Event":
        return cls(
            id=event_id,
            title=data.get("title", ""),
            description=data.get("description", ""),
            date=from_millis(data.get("date")) or datetime.fromtimestamp(0, tz=timezone.utc),
            location=data.get("location", ""),
            created_by=data.get("createdBy", ""),
            rsvps=frozenset(data.get("rsvps") or ()),
            checked_in=frozenset(data.get("checkedIn") or ()),
            image_url=data.get("imageUrl"),
            created_at=from_millis(data.get("createdAt")),
            updated_at=from_millis(data.get("updatedAt")),
        )

    def to_document(self) -> Dict[str, Any]:
        return {
            "title": self.title,
            "description": self.description,
            "date": to_millis(self.date),
            "location": self.location,
            "createdBy": self.created_by,
            "rsvps": sorted(self.rsvps),
            "checkedIn": sorted(self.checked_in),
            "imageUrl": self.image_url,
            "createdAt": to_millis(self.created_at) if self.created_at else None,
            "updatedAt": to_millis(self.updated_at) if self.updated_at else None,
        }


@dataclass(slots=True)
class CreateEventInput:
    title: str
    description: str
    date: datetime
    location: str
    image_url: str | None = None

    def missing_fields(self) -> List[str]:
        required = {
            "title": self.title,
            "description": self.description,
            "date": self.date,
            "location": self.location,
        }
        return [name for name, value in required.items() if not value]


@dataclass(slots=True, frozen=True)
class VerificationToken:
    """The (user, event) pair carried by a QR code. Never persisted."""

    user_id: str
    event_id: str
    issued_at: int
    format_version: str = TOKEN_FORMAT_VERSION


class TokenErrorKind(str, Enum):
    PARSE = "parse"
    SCHEMA = "schema"
    TYPE = "type"
    CLOCK = "clock"


@dataclass(slots=True)
class TokenValidation:
    is_valid: bool
    data: VerificationToken | None = None
    error: str | None = None
    error_kind: TokenErrorKind | None = None


@dataclass(slots=True)
class CheckInOutcome:
    success: bool
    message: str
    user_name: str | None = None


@dataclass(slots=True)
class AttendanceSnapshot:
    event_id: str
    total_rsvps: int
    total_checked_in: int
    attendance_rate: float
    rsvp_users: List[str]
    checked_in_users: List[str]

    @classmethod
    def from_event(cls, event: Event) -> "AttendanceSnapshot":
        total_rsvps = len(event.rsvps)
        total_checked_in = len(event.checked_in)
        rate = (total_checked_in / total_rsvps * 100.0) if total_rsvps else 0.0
        return cls(
            event_id=event.id,
            total_rsvps=total_rsvps,
            total_checked_in=total_checked_in,
            attendance_rate=rate,
            rsvp_users=sorted(event.rsvps),
            checked_in_users=sorted(event.checked_in),
        )

    @property
    def summary(self) -> str:
        return f"{self.total_checked_in}/{self.total_rsvps} attended"


@dataclass(slots=True)
class ErrorContext:
    """Logging context attached to every retried operation."""

    operation: str
    user_id: str | None = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    def with_metadata(self, **extra: Any) -> "ErrorContext":
        return ErrorContext(self.operation, self.user_id, {**self.metadata, **extra})


PENDING_OPERATION_TYPES = ("rsvp", "cancelRsvp", "createEvent", "updateEvent", "deleteEvent")


@dataclass(slots=True)
class PendingOperation:
    id: str
    type: str
    payload: Dict[str, Any]
    issued_at: int


@dataclass(slots=True)
class NetworkStatus:
    is_connected: bool
    is_internet_reachable: bool | None = None
    type: str = "unknown"

    @property
    def online(self) -> bool:
        return self.is_connected and self.is_internet_reachable is not False


__all__ = [
    "TOKEN_FORMAT_VERSION",
    "now_ms",
    "to_millis",
    "from_millis",
    "User",
    "Event",
    "CreateEventInput",
    "VerificationToken",
    "TokenErrorKind",
    "TokenValidation",
    "CheckInOutcome",
    "AttendanceSnapshot",
    "ErrorContext",
    "PENDING_OPERATION_TYPES",
    "PendingOperation",
    "NetworkStatus",
]
