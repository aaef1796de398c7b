"""Encode and validate the verification token carried by an attendee QR code."""

from __future__ import annotations

import json
import math
from typing import Any, Callable

from .models import (
    TOKEN_FORMAT_VERSION,
    TokenErrorKind,
    TokenValidation,
    VerificationToken,
    now_ms,
)

REQUIRED_FIELDS = ("userId", "eventId", "timestamp", "version")

PARSE_ERROR = "Invalid QR code format: unable to parse JSON"
SCHEMA_ERROR = "Missing required fields in QR code data"
TYPE_ERROR = "Invalid data types in QR code"
CLOCK_ERROR = "Invalid timestamp: QR code is from the future"


def encode_token(user_id: str, event_id: str, *, now: Callable[[], int] = now_ms) -> str:
    """Return the JSON payload to embed in a QR image."""

    payload = {
        "userId": user_id,
        "eventId": event_id,
        "timestamp": now(),
        "version": TOKEN_FORMAT_VERSION,
    }
    return json.dumps(payload)


def _is_number(value: Any) -> bool:
    if isinstance(value, bool):
        return False
    if isinstance(value, float):
        return math.isfinite(value)
    return isinstance(value, int)


def _non_empty_str(value: Any) -> bool:
    return isinstance(value, str) and bool(value)


def _invalid(kind: TokenErrorKind, message: str) -> TokenValidation:
    return TokenValidation(is_valid=False, error=message, error_kind=kind)


def decode_token(token: str, *, now: Callable[[], int] = now_ms) -> TokenValidation:
    """Parse and validate a scanned token string.

    Checks run in order: JSON syntax, required fields, field types, then the
    timestamp must not be in the future. There is no lower bound on the
    timestamp, so an old token stays valid for as long as the RSVP holds.
    """

    try:
        data = json.loads(token)
    except (TypeError, ValueError):
        return _invalid(TokenErrorKind.PARSE, PARSE_ERROR)
    if not isinstance(data, dict):
        return _invalid(TokenErrorKind.PARSE, PARSE_ERROR)

    if not all(data.get(name) for name in REQUIRED_FIELDS):
        return _invalid(TokenErrorKind.SCHEMA, SCHEMA_ERROR)

    if not (
        _non_empty_str(data["userId"])
        and _non_empty_str(data["eventId"])
        and _is_number(data["timestamp"])
        and _non_empty_str(data["version"])
    ):
        return _invalid(TokenErrorKind.TYPE, TYPE_ERROR)

    if data["timestamp"] > now():
        return _invalid(TokenErrorKind.CLOCK, CLOCK_ERROR)

    return TokenValidation(
        is_valid=True,
        data=VerificationToken(
            user_id=data["userId"],
            event_id=data["eventId"],
            issued_at=int(data["timestamp"]),
            format_version=data["version"],
        ),
    )


__all__ = [
    "REQUIRED_FIELDS",
    "PARSE_ERROR",
    "SCHEMA_ERROR",
    "TYPE_ERROR",
    "CLOCK_ERROR",
    "encode_token",
    "decode_token",
]
