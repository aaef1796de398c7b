"""Live replica of upcoming events plus point reads and RSVP mutations."""

from __future__ import annotations

import asyncio
import logging
import uuid
from collections.abc import AsyncIterator
from typing import Any, Callable, Dict, List, Mapping, Optional

from .errors import EventNotFoundError, invalid_argument
from .models import CreateEventInput, ErrorContext, Event, from_millis, now_ms, to_millis
from .retry import DEFAULT_RETRY_CONFIG, RetryConfig, handle_error, log_error, with_retry
from .store_client import ArrayRemove, ArrayUnion, DocumentStore, Query

logger = logging.getLogger(__name__)

EVENTS_COLLECTION = "events"

UPDATABLE_FIELDS: Dict[str, str] = {
    "title": "title",
    "description": "description",
    "date": "date",
    "location": "location",
    "image_url": "imageUrl",
}

REQUIRED_FIELDS = ("title", "description", "date", "location")

_CLOSED = object()


class AttendanceStore:
    """Holds the canonical in-process view of upcoming events.

    The view is fed by a live query (``date >= now``, ascending). If that
    stream fails the store publishes an empty list instead of raising, so
    consumers see no events rather than a crash or stale data. Every read and
    write against the backing store goes through ``with_retry``; callers are
    responsible for checking that the acting user may edit or delete an event.
    """

    def __init__(
        self,
        documents: DocumentStore,
        retry_config: RetryConfig = DEFAULT_RETRY_CONFIG,
        *,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        self._documents = documents
        self._retry_config = retry_config
        self._clock = clock
        self._events: List[Event] = []
        self._listeners: List[asyncio.Queue] = []
        self._task: Optional[asyncio.Task] = None
        self._ready: Optional[asyncio.Event] = None
        self.last_error: Optional[str] = None

    async def __aenter__(self) -> "AttendanceStore":
        await self.start()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    def _upcoming_query(self) -> Query:
        return Query(where=("date", ">=", self._clock()), order_by="date")

    async def _retry(self, operation: Callable[[], Any], context: ErrorContext) -> Any:
        return await with_retry(operation, context, self._retry_config)

    # region Subscription
    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> None:
        """Open the live subscription and wait for its first snapshot."""

        if self.running:
            return
        self._ready = asyncio.Event()
        self._task = asyncio.create_task(self._run(self._upcoming_query()))
        await self._ready.wait()

    async def _run(self, query: Query) -> None:
        try:
            async for documents in self._documents.watch(EVENTS_COLLECTION, query):
                self.last_error = None
                self._publish([Event.from_document(doc.id, doc.data) for doc in documents])
        except Exception as exc:
            self.last_error = handle_error(exc, ErrorContext(operation="subscribeToEvents"))
            self._publish([])
        finally:
            if self._ready is not None:
                self._ready.set()

    def _publish(self, events: List[Event]) -> None:
        self._events = events
        if self._ready is not None:
            self._ready.set()
        for queue in self._listeners:
            queue.put_nowait(list(events))

    async def close(self) -> None:
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        for queue in self._listeners:
            queue.put_nowait(_CLOSED)

    async def stream(self) -> AsyncIterator[List[Event]]:
        """Yield the current snapshot, then every snapshot published after it.

        The stream ends when the store is closed.
        """

        queue: asyncio.Queue = asyncio.Queue()
        queue.put_nowait(list(self._events))
        self._listeners.append(queue)
        try:
            while True:
                item = await queue.get()
                if item is _CLOSED:
                    return
                yield item
        finally:
            self._listeners.remove(queue)

    async def my_events_stream(self, user_id: str) -> AsyncIterator[List[Event]]:
        async for events in self.stream():
            yield [event for event in events if event.has_rsvp(user_id)]

    # endregion

    # region Cached views
    def list(self) -> List[Event]:
        return list(self._events)

    def cached(self, event_id: str) -> Optional[Event]:
        return next((event for event in self._events if event.id == event_id), None)

    def my_events(self, user_id: str) -> List[Event]:
        return [event for event in self._events if event.has_rsvp(user_id)]

    def is_user_rsvpd(self, user_id: str, event_id: str) -> bool:
        event = self.cached(event_id)
        return event is not None and event.has_rsvp(user_id)

    # endregion

    # region Point reads
    async def refresh(self) -> List[Event]:
        documents = await self._retry(
            lambda: self._documents.query(EVENTS_COLLECTION, self._upcoming_query()),
            ErrorContext(operation="getEvents"),
        )
        self._publish([Event.from_document(doc.id, doc.data) for doc in documents])
        return self.list()

    async def find(self, event_id: str) -> Optional[Event]:
        document = await self._retry(
            lambda: self._documents.get(EVENTS_COLLECTION, event_id),
            ErrorContext(operation="getEventById", metadata={"event_id": event_id}),
        )
        return Event.from_document(document.id, document.data) if document else None

    async def get_by_id(self, event_id: str) -> Event:
        event = await self.find(event_id)
        if event is None:
            error = EventNotFoundError(event_id)
            log_error(error, ErrorContext(operation="getEventById", metadata={"event_id": event_id}))
            raise error
        return event

    async def events_by_creator(self, creator_id: str) -> List[Event]:
        documents = await self._retry(
            lambda: self._documents.query(
                EVENTS_COLLECTION,
                Query(where=("createdBy", "==", creator_id), order_by="createdAt", descending=True),
            ),
            ErrorContext(operation="getEventsByCreator", user_id=creator_id),
        )
        return [Event.from_document(doc.id, doc.data) for doc in documents]

    async def event_rsvps(self, event_id: str) -> List[str]:
        return sorted((await self.get_by_id(event_id)).rsvps)

    # endregion

    # region Mutations
    async def create(self, event_input: CreateEventInput, creator_id: str) -> Event:
        missing = event_input.missing_fields()
        if missing:
            raise invalid_argument(
                "Missing required fields: title, description, date, and location are required"
            )
        if not creator_id:
            raise invalid_argument("Creator ID is required")

        now = self._clock()
        event_id = uuid.uuid4().hex
        created = from_millis(now)
        data = Event(
            id=event_id,
            title=event_input.title,
            description=event_input.description,
            date=event_input.date,
            location=event_input.location,
            created_by=creator_id,
            image_url=event_input.image_url,
            created_at=created,
            updated_at=created,
        ).to_document()
        # Client-side id keeps the write safe to retry.
        await self._retry(
            lambda: self._documents.set(EVENTS_COLLECTION, event_id, data),
            ErrorContext(operation="createEvent", user_id=creator_id, metadata={"event_id": event_id}),
        )
        logger.info("Created event %s (%s) by %s", event_input.title, event_id, creator_id)
        return Event.from_document(event_id, data)

    async def update(self, event_id: str, fields: Mapping[str, Any]) -> None:
        unknown = sorted(set(fields) - set(UPDATABLE_FIELDS))
        if unknown:
            raise invalid_argument(f"Cannot update fields: {', '.join(unknown)}")
        cleared = [name for name in REQUIRED_FIELDS if name in fields and not fields[name]]
        if cleared:
            raise invalid_argument(f"Required fields cannot be empty: {', '.join(cleared)}")

        changes: Dict[str, Any] = {}
        for name, value in fields.items():
            if name == "date":
                value = to_millis(value)
            changes[UPDATABLE_FIELDS[name]] = value
        changes["updatedAt"] = self._clock()
        await self._retry(
            lambda: self._documents.update(EVENTS_COLLECTION, event_id, changes),
            ErrorContext(operation="updateEvent", metadata={"event_id": event_id}),
        )

    async def delete(self, event_id: str) -> None:
        await self._retry(
            lambda: self._documents.delete(EVENTS_COLLECTION, event_id),
            ErrorContext(operation="deleteEvent", metadata={"event_id": event_id}),
        )

    async def _mutate_membership(self, operation: str, user_id: str, event_id: str, fields: Dict[str, Any]) -> None:
        if not user_id or not event_id:
            raise invalid_argument("User ID and Event ID are required")
        await self.get_by_id(event_id)
        fields["updatedAt"] = self._clock()
        await self._retry(
            lambda: self._documents.update(EVENTS_COLLECTION, event_id, fields),
            ErrorContext(operation=operation, user_id=user_id, metadata={"event_id": event_id}),
        )

    async def add_rsvp(self, user_id: str, event_id: str) -> None:
        await self._mutate_membership("addRSVP", user_id, event_id, {"rsvps": ArrayUnion(user_id)})

    async def remove_rsvp(self, user_id: str, event_id: str) -> None:
        # Dropping the RSVP also drops any check-in so checkedIn stays a subset of rsvps.
        await self._mutate_membership(
            "removeRSVP",
            user_id,
            event_id,
            {"rsvps": ArrayRemove(user_id), "checkedIn": ArrayRemove(user_id)},
        )

    async def add_check_in(self, user_id: str, event_id: str) -> None:
        await self._retry(
            lambda: self._documents.update(
                EVENTS_COLLECTION,
                event_id,
                {"checkedIn": ArrayUnion(user_id), "updatedAt": self._clock()},
            ),
            ErrorContext(operation="checkInUser.update", user_id=user_id, metadata={"event_id": event_id}),
        )

    # endregion


__all__ = ["AttendanceStore", "EVENTS_COLLECTION", "UPDATABLE_FIELDS"]
