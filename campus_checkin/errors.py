"""Error taxonomy for backing-store and auth failures.

Raw failures carry a string ``code`` (``permission-denied``,
``auth/too-many-requests`` ...) or only a message. ``classify_error`` turns any
exception into one of a closed set of ``AppError`` subclasses that know their
kind, whether they are worth retrying, and the sentence to show a user.
"""

from __future__ import annotations

import time
from enum import Enum
from typing import Dict, Optional

from .models import ErrorContext


class ErrorKind(str, Enum):
    AUTH_CREDENTIALS = "auth_credentials"
    AUTH_TRANSIENT = "auth_transient"
    STORE_PERMISSION = "store_permission"
    STORE_NOT_FOUND = "store_not_found"
    STORE_TRANSIENT = "store_transient"
    STORE_VALIDATION = "store_validation"
    UNCLASSIFIED = "unclassified"


AUTH_ERROR_MESSAGES: Dict[str, str] = {
    "auth/email-already-in-use": "This email is already registered. Please sign in or use a different email.",
    "auth/invalid-email": "Please enter a valid email address.",
    "auth/operation-not-allowed": "This sign-in method is not enabled. Please contact support.",
    "auth/weak-password": "Password is too weak. Please use at least 6 characters.",
    "auth/user-disabled": "This account has been disabled. Please contact support.",
    "auth/user-not-found": "No account found with this email. Please sign up.",
    "auth/wrong-password": "Incorrect password. Please try again.",
    "auth/invalid-credential": "Invalid email or password. Please try again.",
    "auth/too-many-requests": "Too many failed attempts. Please wait a moment and try again.",
    "auth/network-request-failed": "Network error. Please check your connection and try again.",
    "auth/requires-recent-login": "Please sign in again to complete this action.",
    "auth/credential-already-in-use": "This credential is already associated with another account.",
}

STORE_ERROR_MESSAGES: Dict[str, str] = {
    "permission-denied": "You don't have permission to perform this action.",
    "not-found": "The requested item was not found.",
    "already-exists": "This item already exists.",
    "resource-exhausted": "Too many requests. Please wait a moment and try again.",
    "failed-precondition": "Operation failed. Please try again.",
    "aborted": "Operation was cancelled. Please try again.",
    "out-of-range": "Invalid data provided.",
    "unimplemented": "This feature is not available.",
    "internal": "An internal error occurred. Please try again.",
    "unavailable": "Service is temporarily unavailable. Please try again later.",
    "data-loss": "Data may have been lost. Please try again.",
    "unauthenticated": "Please sign in to continue.",
    "cancelled": "Operation was cancelled.",
    "unknown": "An unknown error occurred. Please try again.",
    "invalid-argument": "Invalid data provided. Please check your input.",
    "deadline-exceeded": "Request timed out. Please try again.",
}

AUTH_FALLBACK_MESSAGE = "Authentication error. Please try again."
NETWORK_MESSAGE = "Network error. Please check your connection and try again."
GENERIC_MESSAGE = "An unexpected error occurred. Please try again."

CODE_KINDS: Dict[str, ErrorKind] = {
    "auth/network-request-failed": ErrorKind.AUTH_TRANSIENT,
    "auth/too-many-requests": ErrorKind.AUTH_TRANSIENT,
    "permission-denied": ErrorKind.STORE_PERMISSION,
    "unauthenticated": ErrorKind.STORE_PERMISSION,
    "not-found": ErrorKind.STORE_NOT_FOUND,
    "already-exists": ErrorKind.STORE_NOT_FOUND,
    "unavailable": ErrorKind.STORE_TRANSIENT,
    "deadline-exceeded": ErrorKind.STORE_TRANSIENT,
    "resource-exhausted": ErrorKind.STORE_TRANSIENT,
    "aborted": ErrorKind.STORE_TRANSIENT,
    "internal": ErrorKind.STORE_TRANSIENT,
    "invalid-argument": ErrorKind.STORE_VALIDATION,
    "out-of-range": ErrorKind.STORE_VALIDATION,
    "failed-precondition": ErrorKind.STORE_VALIDATION,
}

RETRYABLE_KINDS = frozenset(
    {ErrorKind.AUTH_TRANSIENT, ErrorKind.STORE_TRANSIENT}
)

NETWORK_HINTS = ("network", "offline", "connection")
TRANSIENT_HINTS = NETWORK_HINTS + ("timeout", "unavailable")


class AppError(RuntimeError):
    """A classified failure with a user-safe message attached."""

    def __init__(
        self,
        code: str,
        message: str,
        *,
        kind: ErrorKind,
        user_message: Optional[str] = None,
        retryable: Optional[bool] = None,
        context: Optional[ErrorContext] = None,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.kind = kind
        self.user_message = user_message or message_for_code(code, message)
        self.retryable = kind in RETRYABLE_KINDS if retryable is None else retryable
        self.context = context
        self.timestamp = time.time()

    def __str__(self) -> str:
        return f"{self.code}: {self.message}"


class AuthError(AppError):
    """Credential or auth-service failure."""


class StoreError(AppError):
    """Backing-store permission, lookup or availability failure."""


class ValidationError(AppError):
    """The store rejected the request's arguments or preconditions."""


class UnclassifiedError(AppError):
    """A failure without a recognised code."""


class EventNotFoundError(StoreError):
    def __init__(self, event_id: str) -> None:
        super().__init__("not-found", "Event not found", kind=ErrorKind.STORE_NOT_FOUND, user_message="Event not found")
        self.event_id = event_id


class PermissionDeniedError(StoreError):
    def __init__(self, message: str) -> None:
        super().__init__(
            "permission-denied", message, kind=ErrorKind.STORE_PERMISSION, user_message=message
        )


class OfflineError(StoreError):
    def __init__(self, action: str) -> None:
        message = f"You're offline. Please connect to the internet to {action}."
        super().__init__(
            "unavailable", message, kind=ErrorKind.STORE_TRANSIENT, user_message=message
        )


def invalid_argument(message: str) -> ValidationError:
    return ValidationError(
        "invalid-argument", message, kind=ErrorKind.STORE_VALIDATION, user_message=message
    )


def normalize_code(code: str) -> str:
    return code.removeprefix("firestore/")


def error_code(exc: BaseException) -> Optional[str]:
    code = getattr(exc, "code", None)
    return code if isinstance(code, str) and code else None


def kind_for(code: Optional[str], message: str) -> ErrorKind:
    if code is not None:
        code = normalize_code(code)
        if code in CODE_KINDS:
            return CODE_KINDS[code]
        if code.startswith("auth/"):
            return ErrorKind.AUTH_CREDENTIALS
    return ErrorKind.UNCLASSIFIED


def message_for_code(code: Optional[str], message: str) -> str:
    if code is not None:
        if code.startswith("auth/"):
            return AUTH_ERROR_MESSAGES.get(code, AUTH_FALLBACK_MESSAGE)
        known = STORE_ERROR_MESSAGES.get(normalize_code(code))
        if known:
            return known
    lowered = message.lower()
    if any(hint in lowered for hint in NETWORK_HINTS):
        return NETWORK_MESSAGE
    return message or GENERIC_MESSAGE


def _class_for(kind: ErrorKind) -> type[AppError]:
    if kind in (ErrorKind.AUTH_CREDENTIALS, ErrorKind.AUTH_TRANSIENT):
        return AuthError
    if kind is ErrorKind.STORE_VALIDATION:
        return ValidationError
    if kind is ErrorKind.UNCLASSIFIED:
        return UnclassifiedError
    return StoreError


def classify_error(exc: BaseException, context: Optional[ErrorContext] = None) -> AppError:
    """Return ``exc`` as an ``AppError``; already-classified errors pass through."""

    if isinstance(exc, AppError):
        if context is not None and exc.context is None:
            exc.context = context
        return exc

    message = str(exc) or exc.__class__.__name__
    code = error_code(exc)
    kind = kind_for(code, message)
    retryable = None
    if kind is ErrorKind.UNCLASSIFIED:
        lowered = message.lower()
        retryable = any(hint in lowered for hint in TRANSIENT_HINTS)
    return _class_for(kind)(
        code or "unknown",
        message,
        kind=kind,
        user_message=message_for_code(code, message),
        retryable=retryable,
        context=context,
    )


def is_retryable(exc: BaseException) -> bool:
    return classify_error(exc).retryable


def get_user_message(exc: BaseException) -> str:
    return classify_error(exc).user_message


__all__ = [
    "ErrorKind",
    "AUTH_ERROR_MESSAGES",
    "STORE_ERROR_MESSAGES",
    "GENERIC_MESSAGE",
    "NETWORK_MESSAGE",
    "AppError",
    "AuthError",
    "StoreError",
    "ValidationError",
    "UnclassifiedError",
    "EventNotFoundError",
    "PermissionDeniedError",
    "OfflineError",
    "invalid_argument",
    "classify_error",
    "is_retryable",
    "get_user_message",
]
