"""Online/offline signal derived from network status events."""

from __future__ import annotations

import asyncio
import logging
import uuid
from collections.abc import AsyncIterable, AsyncIterator
from typing import Any, Dict, List, Optional

import httpx

from .models import PENDING_OPERATION_TYPES, NetworkStatus, PendingOperation, now_ms

logger = logging.getLogger(__name__)


class HttpReachabilityPoller:
    """Yield a ``NetworkStatus`` every ``interval`` seconds by polling ``url``.

    A transport failure means no connection at all; a response of any status
    means the network is up, and a 5xx marks the internet as unreachable.
    """

    def __init__(
        self,
        url: str,
        interval: float = 30.0,
        timeout: float = 5.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.url = url
        self.interval = interval
        self._client = httpx.AsyncClient(timeout=timeout, transport=transport)

    async def check(self) -> NetworkStatus:
        try:
            response = await self._client.get(self.url)
        except httpx.TransportError as exc:
            logger.debug("Reachability check failed: %s", exc)
            return NetworkStatus(is_connected=False, is_internet_reachable=False, type="none")
        return NetworkStatus(
            is_connected=True,
            is_internet_reachable=response.status_code < 500,
            type="http",
        )

    async def __aiter__(self) -> AsyncIterator[NetworkStatus]:
        while True:
            yield await self.check()
            await asyncio.sleep(self.interval)

    async def close(self) -> None:
        await self._client.aclose()


class ConnectivityMonitor:
    """Tracks whether the service can currently reach the network.

    Also holds a queue of operations that callers may record while offline.
    Nothing replays that queue; see DESIGN.md.
    """

    def __init__(self, source: Optional[AsyncIterable[NetworkStatus]] = None) -> None:
        self._source = source
        self._status = NetworkStatus(is_connected=True, is_internet_reachable=True)
        self._listeners: List[asyncio.Queue] = []
        self._pending: List[PendingOperation] = []
        self._task: Optional[asyncio.Task] = None

    @property
    def status(self) -> NetworkStatus:
        return self._status

    @property
    def online(self) -> bool:
        return self._status.online

    def update(self, status: NetworkStatus) -> None:
        was_online = self.online
        self._status = status
        if self.online != was_online:
            logger.info("Connectivity changed: online=%s type=%s", self.online, status.type)
            for queue in self._listeners:
                queue.put_nowait(self.online)

    async def watch(self) -> AsyncIterator[bool]:
        """Yield the current online flag, then every transition."""

        queue: asyncio.Queue = asyncio.Queue()
        queue.put_nowait(self.online)
        self._listeners.append(queue)
        try:
            while True:
                yield await queue.get()
        finally:
            self._listeners.remove(queue)

    async def start(self) -> None:
        if self._source is None or self._task is not None:
            return
        self._task = asyncio.create_task(self._consume(self._source))

    async def _consume(self, source: AsyncIterable[NetworkStatus]) -> None:
        try:
            async for status in source:
                self.update(status)
        except Exception:
            logger.exception("Connectivity source failed; keeping last known status")

    async def close(self) -> None:
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        close = getattr(self._source, "close", None)
        if close is not None:
            await close()

    # region Pending operations
    def enqueue(self, op_type: str, payload: Dict[str, Any]) -> PendingOperation:
        if op_type not in PENDING_OPERATION_TYPES:
            raise ValueError(f"unknown pending operation type: {op_type}")
        operation = PendingOperation(
            id=f"{now_ms()}-{uuid.uuid4().hex[:9]}",
            type=op_type,
            payload=dict(payload),
            issued_at=now_ms(),
        )
        self._pending.append(operation)
        return operation

    @property
    def pending(self) -> List[PendingOperation]:
        return list(self._pending)

    def clear(self) -> None:
        self._pending.clear()

    # endregion


__all__ = ["ConnectivityMonitor", "HttpReachabilityPoller"]
