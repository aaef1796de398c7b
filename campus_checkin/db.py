"""SQLite-backed document store with live queries."""

from __future__ import annotations

import asyncio
import json
import logging
import sqlite3
from collections.abc import AsyncIterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, Iterator, List, Mapping, Optional, Tuple

from .store_client import (
    ArrayRemove,
    ArrayUnion,
    Document,
    DocumentStore,
    DocumentStoreError,
    Query,
)

logger = logging.getLogger(__name__)

Connection = sqlite3.Connection


def _matches(data: Mapping[str, Any], where: Optional[Tuple[str, str, Any]]) -> bool:
    if where is None:
        return True
    name, op, expected = where
    if name not in data:
        return False
    actual = data[name]
    try:
        if op == "==":
            return actual == expected
        if op == ">=":
            return actual >= expected
        if op == "<=":
            return actual <= expected
        if op == ">":
            return actual > expected
        if op == "<":
            return actual < expected
        if op == "in":
            return actual in expected
        if op == "array-contains":
            return isinstance(actual, list) and expected in actual
    except TypeError:
        return False
    raise DocumentStoreError("invalid-argument", f"unsupported operator {op}")


def _apply_update(data: Dict[str, Any], fields: Mapping[str, Any]) -> Dict[str, Any]:
    updated = dict(data)
    for name, value in fields.items():
        if isinstance(value, ArrayUnion):
            current = list(updated.get(name) or [])
            current.extend(item for item in dict.fromkeys(value.values) if item not in current)
            updated[name] = current
        elif isinstance(value, ArrayRemove):
            updated[name] = [item for item in updated.get(name) or [] if item not in value.values]
        else:
            updated[name] = value
    return updated


def run_query(documents: List[Document], query: Query) -> List[Document]:
    results = [doc for doc in documents if _matches(doc.data, query.where)]
    if query.order_by:
        key = query.order_by
        present = [doc for doc in results if doc.data.get(key) is not None]
        missing = [doc for doc in results if doc.data.get(key) is None]
        present.sort(key=lambda doc: doc.data[key], reverse=query.descending)
        results = present + missing
    return results


class Database(DocumentStore):
    """Lightweight document store over a single SQLite table.

    Every write is a single-row transaction, so array unions and removes are
    atomic. Live queries registered through ``watch`` are re-evaluated after
    each write to their collection.
    """

    def __init__(self, path: Path) -> None:
        self._path = path
        if str(self._path) != ":memory:":
            self._path.parent.mkdir(parents=True, exist_ok=True)
        self._shared: Optional[Connection] = None
        self._watchers: Dict[str, List[Tuple[Query, asyncio.Queue]]] = {}
        self._initialize()

    @contextmanager
    def connect(self) -> Iterator[Connection]:
        if str(self._path) == ":memory:":
            if self._shared is None:
                self._shared = sqlite3.connect(":memory:", isolation_level=None, check_same_thread=False)
            yield self._shared
            return
        conn = sqlite3.connect(self._path, isolation_level=None)
        try:
            yield conn
        finally:
            conn.close()

    def _initialize(self) -> None:
        with self.connect() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS documents (
                    collection TEXT NOT NULL,
                    id TEXT NOT NULL,
                    data TEXT NOT NULL,
                    PRIMARY KEY (collection, id)
                )
                """
            )

    # region Reads
    def _load(self, conn: Connection, collection: str, doc_id: str) -> Optional[Dict[str, Any]]:
        row = conn.execute(
            "SELECT data FROM documents WHERE collection = ? AND id = ?",
            (collection, doc_id),
        ).fetchone()
        return json.loads(row[0]) if row else None

    def _all(self, collection: str) -> List[Document]:
        with self.connect() as conn:
            rows = conn.execute(
                "SELECT id, data FROM documents WHERE collection = ? ORDER BY id",
                (collection,),
            ).fetchall()
        return [Document(row[0], json.loads(row[1])) for row in rows]

    async def get(self, collection: str, doc_id: str) -> Optional[Document]:
        with self.connect() as conn:
            data = self._load(conn, collection, doc_id)
        return Document(doc_id, data) if data is not None else None

    async def query(self, collection: str, query: Query) -> List[Document]:
        return run_query(self._all(collection), query)

    # endregion

    # region Writes
    async def set(self, collection: str, doc_id: str, data: Mapping[str, Any]) -> None:
        with self.connect() as conn:
            conn.execute(
                """
                INSERT INTO documents (collection, id, data) VALUES (?, ?, ?)
                ON CONFLICT(collection, id) DO UPDATE SET data=excluded.data
                """,
                (collection, doc_id, json.dumps(dict(data))),
            )
        self._notify(collection)

    async def update(self, collection: str, doc_id: str, fields: Mapping[str, Any]) -> None:
        with self.connect() as conn:
            conn.execute("BEGIN IMMEDIATE")
            try:
                data = self._load(conn, collection, doc_id)
                if data is None:
                    raise DocumentStoreError("not-found", f"No document to update: {collection}/{doc_id}")
                conn.execute(
                    "UPDATE documents SET data = ? WHERE collection = ? AND id = ?",
                    (json.dumps(_apply_update(data, fields)), collection, doc_id),
                )
            except BaseException:
                conn.execute("ROLLBACK")
                raise
            conn.execute("COMMIT")
        self._notify(collection)

    async def delete(self, collection: str, doc_id: str) -> None:
        with self.connect() as conn:
            conn.execute(
                "DELETE FROM documents WHERE collection = ? AND id = ?",
                (collection, doc_id),
            )
        self._notify(collection)

    # endregion

    # region Live queries
    async def watch(self, collection: str, query: Query) -> AsyncIterator[List[Document]]:
        queue: asyncio.Queue = asyncio.Queue()
        entry = (query, queue)
        self._watchers.setdefault(collection, []).append(entry)
        queue.put_nowait(run_query(self._all(collection), query))
        try:
            while True:
                item = await queue.get()
                if isinstance(item, Exception):
                    raise item
                yield item
        finally:
            self._watchers[collection].remove(entry)

    def _notify(self, collection: str) -> None:
        watchers = self._watchers.get(collection)
        if not watchers:
            return
        documents = self._all(collection)
        for query, queue in watchers:
            queue.put_nowait(run_query(documents, query))

    def fail_watchers(self, collection: str, error: Exception) -> None:
        """Terminate every live query on ``collection`` with ``error``."""

        for _, queue in self._watchers.get(collection, []):
            queue.put_nowait(error)
        logger.warning("Failed %s live queries on %s: %s", len(self._watchers.get(collection, [])), collection, error)

    def watcher_count(self, collection: str) -> int:
        return len(self._watchers.get(collection, []))

    # endregion

    async def close(self) -> None:
        if self._shared is not None:
            self._shared.close()
            self._shared = None


__all__ = ["Database", "run_query"]
