"""
In-memory document store implementation for testing.

This module provides a simple in-memory DocumentStore backend for:
- Unit tests
- Integration tests of the gRPC servicer
- Local development without a MongoDB deployment

Invariants:
    - All data is lost on process exit
    - Unique indexes are enforced the same way MongoDB enforces them
    - Documents come back in insertion order (the store-native order here)

How to change safely:
    - This is test-only code, changes don't affect production
    - Keep filter semantics a strict subset of MongoDB's
    - Add features to help with testing scenarios
"""

from __future__ import annotations

import asyncio
import copy
import itertools
import logging
from collections.abc import AsyncGenerator
from dataclasses import dataclass, field
from typing import Any

from .base import (
    Document,
    IndexKeys,
    StoreConnectionError,
    StoreError,
    WriteOutcome,
)

logger = logging.getLogger(__name__)

_MISSING = object()

_COMPARATORS = {
    "$eq": lambda a, b: a == b,
    "$gt": lambda a, b: a > b,
    "$gte": lambda a, b: a >= b,
    "$lt": lambda a, b: a < b,
    "$lte": lambda a, b: a <= b,
}


@dataclass
class IndexSpec:
    """An index definition on an in-memory table."""
    name: str
    keys: IndexKeys
    unique: bool = False

    def key_of(self, document: Document) -> tuple[Any, ...]:
        return tuple(document.get(k) for k, _ in self.keys)


@dataclass
class InMemoryTable:
    """In-memory table storage."""
    documents: list[Document] = field(default_factory=list)
    indexes: dict[str, IndexSpec] = field(default_factory=dict)


def _compare(value: Any, op: str, operand: Any) -> bool:
    if op not in _COMPARATORS:
        raise StoreError(f"Unsupported query operator: {op}")
    if value is _MISSING:
        return False
    # MongoDB only compares values of the same BSON type class
    if op != "$eq" and type(value) is not type(operand):
        return False
    return _COMPARATORS[op](value, operand)


def matches(document: Document, query: Document) -> bool:
    """Evaluate a filter (equality, comparison operators, $and) on a document."""
    for key, condition in query.items():
        if key == "$and":
            if not all(matches(document, clause) for clause in condition):
                return False
            continue

        value = document.get(key, _MISSING)
        if isinstance(condition, dict) and condition and all(k.startswith("$") for k in condition):
            if not all(_compare(value, op, operand) for op, operand in condition.items()):
                return False
        elif value is _MISSING or value != condition:
            return False
    return True


class InMemoryDocumentStore:
    """In-memory implementation of DocumentStore for testing.

    Attributes:
        tables: Storage for table data
        max_observed_in_flight: Highest number of concurrent operations seen
        open_cursors: Number of find iterations not yet finished or closed

    Thread safety:
        Uses an asyncio lock around mutations. Safe to use from
        multiple coroutines.

    Example:
        >>> store = InMemoryDocumentStore()
        >>> await store.connect()
        >>> await store.create_index("t", [("hash", 1)], name="hash_1", unique=True)
        >>> (await store.insert("t", {"hash": "a"})).status
        <WriteStatus.OK: 'ok'>
        >>> (await store.insert("t", {"hash": "a"})).status
        <WriteStatus.CONFLICT: 'conflict'>
    """

    def __init__(self, latency: float = 0.0) -> None:
        """Initialize the in-memory store.

        Args:
            latency: Seconds every operation sleeps, to surface concurrency in tests
        """
        self.latency = latency
        self.tables: dict[str, InMemoryTable] = {}
        self.max_observed_in_flight = 0
        self.open_cursors = 0
        self._in_flight = 0
        self._ids = itertools.count(1)
        self._connected = False
        self._lock = asyncio.Lock()
        self._failures: dict[tuple[str, str], StoreError] = {}

    @property
    def is_connected(self) -> bool:
        """Whether connected (always true after connect())."""
        return self._connected

    async def connect(self) -> None:
        """Connect (no-op for in-memory)."""
        self._connected = True
        logger.debug("InMemoryDocumentStore connected")

    async def close(self) -> None:
        """Close and clear all data."""
        self._connected = False
        self.tables.clear()
        logger.debug("InMemoryDocumentStore closed")

    # =========================================================================
    # Testing helpers
    # =========================================================================

    def fail_on(self, operation: str, hash_value: str, error: StoreError | None = None) -> None:
        """Make ``operation`` fail for documents whose hash is ``hash_value``.

        Args:
            operation: One of insert, replace, delete, find
            hash_value: Hash key that triggers the failure
            error: Error to report (a generic StoreError by default)
        """
        self._failures[(operation, hash_value)] = error or StoreError(
            f"injected {operation} failure for {hash_value}"
        )

    def documents(self, table: str) -> list[Document]:
        """Return copies of all documents of a table."""
        return [copy.deepcopy(d) for d in self._table(table, create=False).documents]

    # =========================================================================
    # DocumentStore protocol
    # =========================================================================

    def _table(self, table: str, create: bool = True) -> InMemoryTable:
        if not self._connected:
            raise StoreConnectionError("Not connected", table)
        if table not in self.tables:
            if not create:
                return InMemoryTable()
            self.tables[table] = InMemoryTable()
        return self.tables[table]

    def _injected(self, operation: str, document: Document) -> StoreError | None:
        return self._failures.get((operation, document.get("hash")))

    def _enter(self) -> None:
        self._in_flight += 1
        self.max_observed_in_flight = max(self.max_observed_in_flight, self._in_flight)

    async def _pause(self) -> None:
        if self.latency:
            await asyncio.sleep(self.latency)

    def _exit(self) -> None:
        self._in_flight -= 1

    def _violates_unique(
        self,
        tbl: InMemoryTable,
        document: Document,
        ignore: Document | None = None,
    ) -> bool:
        for index in tbl.indexes.values():
            if not index.unique:
                continue
            key = index.key_of(document)
            for existing in tbl.documents:
                if existing is not ignore and index.key_of(existing) == key:
                    return True
        return False

    async def insert(self, table: str, document: Document) -> WriteOutcome:
        """Insert a document, reporting unique index violations as CONFLICT."""
        self._enter()
        try:
            await self._pause()
            injected = self._injected("insert", document)
            if injected is not None:
                return WriteOutcome.failure(injected)

            async with self._lock:
                tbl = self._table(table)
                if self._violates_unique(tbl, document):
                    return WriteOutcome.conflict()
                stored = copy.deepcopy(document)
                stored.setdefault("_id", next(self._ids))
                tbl.documents.append(stored)
            return WriteOutcome.ok()
        finally:
            self._exit()

    async def replace(
        self,
        table: str,
        match: Document,
        document: Document,
        upsert: bool = False,
    ) -> int:
        """Replace the first document matching ``match``."""
        self._enter()
        try:
            await self._pause()
            injected = self._injected("replace", match)
            if injected is not None:
                raise injected

            async with self._lock:
                tbl = self._table(table)
                for position, existing in enumerate(tbl.documents):
                    if matches(existing, match):
                        if self._violates_unique(tbl, document, ignore=existing):
                            raise StoreError("replace violates a unique index", table)
                        stored = copy.deepcopy(document)
                        stored["_id"] = existing["_id"]
                        tbl.documents[position] = stored
                        return 1

                if not upsert:
                    return 0
                if self._violates_unique(tbl, document):
                    raise StoreError("upsert violates a unique index", table)
                stored = copy.deepcopy(document)
                stored.setdefault("_id", next(self._ids))
                tbl.documents.append(stored)
                return 1
        finally:
            self._exit()

    async def delete(self, table: str, match: Document) -> int:
        """Delete the first document matching ``match``."""
        self._enter()
        try:
            await self._pause()
            injected = self._injected("delete", match)
            if injected is not None:
                raise injected

            async with self._lock:
                tbl = self._table(table, create=False)
                for position, existing in enumerate(tbl.documents):
                    if matches(existing, match):
                        del tbl.documents[position]
                        return 1
                return 0
        finally:
            self._exit()

    async def find(
        self,
        table: str,
        query: Document,
        batch_size: int | None = None,
    ) -> AsyncGenerator[Document, None]:
        """Iterate matching documents in insertion order."""
        self._enter()
        try:
            await self._pause()
            injected = self._injected("find", query)
            if injected is not None:
                raise injected

            async with self._lock:
                snapshot = [
                    copy.deepcopy(d)
                    for d in self._table(table, create=False).documents
                    if matches(d, query)
                ]
        finally:
            self._exit()

        self.open_cursors += 1
        try:
            for document in snapshot:
                yield document
        finally:
            self.open_cursors -= 1

    async def create_index(
        self,
        table: str,
        keys: IndexKeys,
        name: str,
        unique: bool = False,
    ) -> None:
        """Create an index; an identical index already present is kept."""
        async with self._lock:
            tbl = self._table(table)
            existing = tbl.indexes.get(name)
            if existing is not None:
                if existing.keys != list(keys) or existing.unique != unique:
                    raise StoreError(
                        f"Index {name} already exists with different options", table
                    )
                return

            spec = IndexSpec(name=name, keys=list(keys), unique=unique)
            if unique:
                seen = set()
                for document in tbl.documents:
                    key = spec.key_of(document)
                    if key in seen:
                        raise StoreError(f"Duplicate key while building index {name}", table)
                    seen.add(key)
            tbl.indexes[name] = spec

    async def list_tables(self) -> list[str]:
        """List table names."""
        if not self._connected:
            raise StoreConnectionError("Not connected")
        return list(self.tables)

    async def drop_table(self, table: str) -> None:
        """Drop a table; missing tables are ignored."""
        async with self._lock:
            if not self._connected:
                raise StoreConnectionError("Not connected", table)
            self.tables.pop(table, None)
