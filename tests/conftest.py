"""Pytest fixtures: a throwaway SQLite document store and a fault-injecting wrapper."""
import asyncio
from collections import defaultdict, deque
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from campus_checkin.db import Database
from campus_checkin.models import to_millis
from campus_checkin.retry import RetryConfig
from campus_checkin.store_client import DocumentStore, DocumentStoreError

FAST_RETRY = RetryConfig(max_retries=3, initial_delay_ms=1, max_delay_ms=2, multiplier=2)


class FlakyStore(DocumentStore):
    """Delegates to a real store, raising queued errors first and counting calls."""

    def __init__(self, inner: DocumentStore) -> None:
        self.inner = inner
        self.calls = defaultdict(int)
        self._failures = defaultdict(deque)

    def fail(self, method: str, *codes: str) -> None:
        for code in codes:
            self._failures[method].append(DocumentStoreError(code, f"injected {code}"))

    def _maybe_fail(self, method: str) -> None:
        self.calls[method] += 1
        if self._failures[method]:
            raise self._failures[method].popleft()

    async def get(self, collection, doc_id):
        self._maybe_fail("get")
        return await self.inner.get(collection, doc_id)

    async def set(self, collection, doc_id, data):
        self._maybe_fail("set")
        await self.inner.set(collection, doc_id, data)

    async def update(self, collection, doc_id, fields):
        self._maybe_fail("update")
        await self.inner.update(collection, doc_id, fields)

    async def delete(self, collection, doc_id):
        self._maybe_fail("delete")
        await self.inner.delete(collection, doc_id)

    async def query(self, collection, query):
        self._maybe_fail("query")
        return await self.inner.query(collection, query)

    def watch(self, collection, query):
        return self.inner.watch(collection, query)


@pytest.fixture
def run():
    """Run a coroutine to completion on a fresh event loop."""
    return asyncio.run


@pytest.fixture
def db_path(tmp_path: Path) -> Path:
    return tmp_path / "store.db"


@pytest.fixture
def database(db_path: Path) -> Database:
    return Database(db_path)


@pytest.fixture
def flaky(database: Database) -> FlakyStore:
    return FlakyStore(database)


def future(days: int = 7) -> datetime:
    return datetime.now(timezone.utc) + timedelta(days=days)


async def seed_event(
    store: DocumentStore,
    event_id: str = "evt-1",
    *,
    title: str = "Career Fair",
    created_by: str = "admin-1",
    rsvps=(),
    checked_in=(),
    days_ahead: int = 7,
) -> None:
    """Helper: write an event document directly to the store."""
    now = to_millis(datetime.now(timezone.utc))
    await store.set("events", event_id, {
        "title": title,
        "description": "Meet employers",
        "date": to_millis(future(days_ahead)),
        "location": "Student Union",
        "createdBy": created_by,
        "rsvps": list(rsvps),
        "checkedIn": list(checked_in),
        "imageUrl": None,
        "createdAt": now,
        "updatedAt": now,
    })


async def seed_user(
    store: DocumentStore,
    uid: str,
    name: str = "Ada Lovelace",
    role: str = "student",
    push_token=None,
) -> None:
    """Helper: write a user document directly to the store."""
    data = {"uid": uid, "email": f"{uid}@campus.edu", "name": name, "role": role}
    if push_token is not None:
        data["pushToken"] = push_token
    await store.set("users", uid, data)


async def eventually(predicate, timeout: float = 2.0) -> None:
    """Helper: yield to the loop until ``predicate()`` holds or ``timeout`` passes."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met before timeout")
        await asyncio.sleep(0.01)
