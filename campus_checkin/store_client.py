"""Document store capability and an HTTP client for a remote store.

The engine needs only a small surface from its backing store: point reads and
writes by id, atomic set-union / set-remove on array fields, one-shot queries,
and a live query that pushes a fresh result set whenever it changes.

``HttpDocumentStore`` speaks the following REST protocol::

    GET    /v1/{collection}/{id}        -> {"id": ..., "data": {...}}
    PUT    /v1/{collection}/{id}        {"data": {...}}
    PATCH  /v1/{collection}/{id}        {"set": {}, "union": {}, "remove": {}}
    DELETE /v1/{collection}/{id}
    POST   /v1/{collection}:query       {"where": [...], "orderBy": [...]}
    POST   /v1/{collection}:listen      same body, NDJSON stream of snapshots

Error bodies look like ``{"error": {"code": "not-found", "message": "..."}}``.
"""

from __future__ import annotations

import json
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

import httpx

QUERY_OPERATORS = ("==", ">=", "<=", ">", "<", "in", "array-contains")

STATUS_CODES: Dict[int, str] = {
    400: "invalid-argument",
    401: "unauthenticated",
    403: "permission-denied",
    404: "not-found",
    409: "aborted",
    412: "failed-precondition",
    416: "out-of-range",
    429: "resource-exhausted",
    499: "cancelled",
    500: "internal",
    501: "unimplemented",
    503: "unavailable",
    504: "deadline-exceeded",
}


class DocumentStoreError(RuntimeError):
    """Raised when the backing store rejects or fails a call."""

    def __init__(self, code: str, message: str) -> None:
        super().__init__(message)
        self.code = code
        self.message = message


@dataclass(frozen=True, init=False)
class ArrayUnion:
    """Field update that adds values not already present."""

    values: Tuple[Any, ...]

    def __init__(self, *values: Any) -> None:
        object.__setattr__(self, "values", tuple(values))


@dataclass(frozen=True, init=False)
class ArrayRemove:
    """Field update that removes every occurrence of the values."""

    values: Tuple[Any, ...]

    def __init__(self, *values: Any) -> None:
        object.__setattr__(self, "values", tuple(values))


@dataclass(slots=True, frozen=True)
class Query:
    where: Optional[Tuple[str, str, Any]] = None
    order_by: Optional[str] = None
    descending: bool = False

    def __post_init__(self) -> None:
        if self.where is not None and self.where[1] not in QUERY_OPERATORS:
            raise ValueError(f"unsupported query operator: {self.where[1]}")

    def to_json(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {}
        if self.where is not None:
            body["where"] = list(self.where)
        if self.order_by:
            body["orderBy"] = [self.order_by, "desc" if self.descending else "asc"]
        return body


@dataclass(slots=True)
class Document:
    id: str
    data: Dict[str, Any] = field(default_factory=dict)


class DocumentStore(ABC):
    """Interface for the document operations the engine relies on."""

    @abstractmethod
    async def get(self, collection: str, doc_id: str) -> Optional[Document]:
        """Return a document, or None if it does not exist."""

    @abstractmethod
    async def set(self, collection: str, doc_id: str, data: Mapping[str, Any]) -> None:
        """Create or replace a document."""

    @abstractmethod
    async def update(self, collection: str, doc_id: str, fields: Mapping[str, Any]) -> None:
        """Atomically apply field updates to an existing document.

        Values may be ``ArrayUnion`` / ``ArrayRemove``. Raises
        ``DocumentStoreError("not-found")`` if the document is missing.
        """

    @abstractmethod
    async def delete(self, collection: str, doc_id: str) -> None:
        """Delete a document; deleting a missing document is not an error."""

    @abstractmethod
    async def query(self, collection: str, query: Query) -> List[Document]:
        """Return the current result set for ``query``."""

    @abstractmethod
    def watch(self, collection: str, query: Query) -> AsyncIterator[List[Document]]:
        """Yield the result set for ``query`` now and after every change."""

    async def close(self) -> None:
        return None


def split_update(fields: Mapping[str, Any]) -> Dict[str, Dict[str, Any]]:
    body: Dict[str, Dict[str, Any]] = {"set": {}, "union": {}, "remove": {}}
    for name, value in fields.items():
        if isinstance(value, ArrayUnion):
            body["union"][name] = list(value.values)
        elif isinstance(value, ArrayRemove):
            body["remove"][name] = list(value.values)
        else:
            body["set"][name] = value
    return body


def _raise_for_error(response: httpx.Response) -> None:
    if response.is_success:
        return
    code = STATUS_CODES.get(response.status_code, "unknown")
    message = response.reason_phrase or f"HTTP {response.status_code}"
    try:
        payload = response.json()
    except ValueError:
        payload = {}
    error = payload.get("error") if isinstance(payload, dict) else None
    if isinstance(error, dict):
        code = error.get("code") or code
        message = error.get("message") or message
    raise DocumentStoreError(code, message)


def _documents(payload: Mapping[str, Any]) -> List[Document]:
    return [Document(item["id"], dict(item.get("data") or {})) for item in payload.get("documents", [])]


class HttpDocumentStore(DocumentStore):
    """Async wrapper around a REST document store."""

    def __init__(
        self,
        base_url: str,
        token: Optional[str] = None,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        headers = {"Content-Type": "application/json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/") + "/v1",
            headers=headers,
            timeout=timeout,
            transport=transport,
        )

    async def close(self) -> None:
        await self._client.aclose()

    async def _request(self, method: str, path: str, body: Optional[Mapping[str, Any]] = None) -> httpx.Response:
        try:
            response = await self._client.request(method, path, json=body)
        except httpx.TimeoutException as exc:
            raise DocumentStoreError("deadline-exceeded", f"request timed out: {exc}") from exc
        except httpx.TransportError as exc:
            raise DocumentStoreError("unavailable", f"connection failed: {exc}") from exc
        return response

    async def get(self, collection: str, doc_id: str) -> Optional[Document]:
        response = await self._request("GET", f"/{collection}/{doc_id}")
        if response.status_code == 404:
            return None
        _raise_for_error(response)
        data = response.json()
        return Document(data.get("id", doc_id), dict(data.get("data") or {}))

    async def set(self, collection: str, doc_id: str, data: Mapping[str, Any]) -> None:
        response = await self._request("PUT", f"/{collection}/{doc_id}", {"data": dict(data)})
        _raise_for_error(response)

    async def update(self, collection: str, doc_id: str, fields: Mapping[str, Any]) -> None:
        response = await self._request("PATCH", f"/{collection}/{doc_id}", split_update(fields))
        _raise_for_error(response)

    async def delete(self, collection: str, doc_id: str) -> None:
        response = await self._request("DELETE", f"/{collection}/{doc_id}")
        if response.status_code == 404:
            return
        _raise_for_error(response)

    async def query(self, collection: str, query: Query) -> List[Document]:
        response = await self._request("POST", f"/{collection}:query", query.to_json())
        _raise_for_error(response)
        return _documents(response.json())

    async def watch(self, collection: str, query: Query) -> AsyncIterator[List[Document]]:
        """Yield snapshots from the store's NDJSON listen stream."""

        try:
            async with self._client.stream(
                "POST", f"/{collection}:listen", json=query.to_json(), timeout=None
            ) as response:
                if not response.is_success:
                    await response.aread()
                    _raise_for_error(response)
                async for line in response.aiter_lines():
                    if not line.strip():
                        continue
                    payload = json.loads(line)
                    error = payload.get("error")
                    if error:
                        raise DocumentStoreError(error.get("code", "unknown"), error.get("message", "listen failed"))
                    yield _documents(payload)
        except httpx.TransportError as exc:
            raise DocumentStoreError("unavailable", f"listen stream failed: {exc}") from exc


def chunked(values: Sequence[Any], size: int) -> List[List[Any]]:
    return [list(values[i : i + size]) for i in range(0, len(values), size)]


__all__ = [
    "QUERY_OPERATORS",
    "DocumentStoreError",
    "ArrayUnion",
    "ArrayRemove",
    "Query",
    "Document",
    "DocumentStore",
    "HttpDocumentStore",
    "split_update",
    "chunked",
]
