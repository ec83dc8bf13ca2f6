"""
Base protocol and types for the document store abstraction.

This module defines the DocumentStore protocol that all backends must
implement, the tagged result of an insert, and the error hierarchy shared
by backends and coordinators.

Invariants:
    - insert() never raises for a duplicate key, it returns a CONFLICT outcome
    - Documents passed to a backend are never mutated by it
    - Every backend error is a StoreError subclass

How to change safely:
    - Protocol changes require updating all implementations
    - Coordinators must not depend on backend-specific error codes
    - Keep filters limited to equality, $gte/$gt/$lt/$lte and $and
"""

from __future__ import annotations

from abc import abstractmethod
from collections.abc import AsyncGenerator
from dataclasses import dataclass
from enum import Enum
from typing import Any, Protocol, runtime_checkable

Document = dict[str, Any]
IndexKeys = list[tuple[str, int]]

ASCENDING = 1
DESCENDING = -1


class StoreError(Exception):
    """Base exception for document store operations."""

    def __init__(self, message: str, table: str | None = None) -> None:
        super().__init__(message)
        self.table = table


class StoreConnectionError(StoreError):
    """Connection to the document store failed."""
    pass


class StoreTimeoutError(StoreError):
    """Document store operation timed out."""
    pass


class StoreDecodeError(StoreError):
    """A stored document does not have the expected shape."""
    pass


class InvalidRequestError(StoreError):
    """A request cannot be fulfilled as given (e.g. empty table name)."""
    pass


class NotSupportedError(StoreError):
    """The operation is not supported by this store."""

    def __init__(self, message: str = "not supported", table: str | None = None) -> None:
        super().__init__(message, table)


class WriteStatus(Enum):
    """Result kinds of an insert."""

    OK = "ok"
    CONFLICT = "conflict"
    FAILURE = "failure"


@dataclass(frozen=True)
class WriteOutcome:
    """Tagged result of an insert.

    Attributes:
        status: OK, CONFLICT (unique index violated) or FAILURE
        error: The failure, set only when status is FAILURE
    """

    status: WriteStatus
    error: StoreError | None = None

    @classmethod
    def ok(cls) -> WriteOutcome:
        return cls(WriteStatus.OK)

    @classmethod
    def conflict(cls) -> WriteOutcome:
        return cls(WriteStatus.CONFLICT)

    @classmethod
    def failure(cls, error: StoreError) -> WriteOutcome:
        return cls(WriteStatus.FAILURE, error)

    @property
    def is_conflict(self) -> bool:
        return self.status is WriteStatus.CONFLICT


@runtime_checkable
class DocumentStore(Protocol):
    """Protocol for document store backends.

    A table maps to one collection of documents. Backends must:
    - Reject inserts violating a unique index with a CONFLICT outcome
    - Be safe for concurrent use from multiple coroutines
    - Yield query results lazily, in store-native order

    Example:
        >>> store = MongoDocumentStore(config)
        >>> await store.connect()
        >>> outcome = await store.insert("index_1", {"hash": "h", "range": "", "value": b"v"})
        >>> outcome.status
        <WriteStatus.OK: 'ok'>
    """

    @abstractmethod
    async def connect(self) -> None:
        """Establish and verify the session.

        Raises:
            StoreConnectionError: If the store is unreachable or rejects credentials
        """
        ...

    @abstractmethod
    async def close(self) -> None:
        """Release the session."""
        ...

    @abstractmethod
    async def insert(self, table: str, document: Document) -> WriteOutcome:
        """Insert one document.

        Returns:
            OK when written, CONFLICT on a unique index violation,
            FAILURE with the wrapped error otherwise
        """
        ...

    @abstractmethod
    async def replace(
        self,
        table: str,
        match: Document,
        document: Document,
        upsert: bool = False,
    ) -> int:
        """Replace the first document matching ``match``.

        Returns:
            Number of documents replaced or inserted (0 or 1)

        Raises:
            StoreError: If the replace fails
        """
        ...

    @abstractmethod
    async def delete(self, table: str, match: Document) -> int:
        """Delete the first document matching ``match``.

        Returns:
            Number of documents deleted (0 or 1)

        Raises:
            StoreError: If the delete fails
        """
        ...

    @abstractmethod
    def find(
        self,
        table: str,
        query: Document,
        batch_size: int | None = None,
    ) -> AsyncGenerator[Document, None]:
        """Iterate documents matching ``query`` in store-native order.

        The iterator must release its cursor when closed early.

        Raises:
            StoreError: If the query or cursor fails
        """
        ...

    @abstractmethod
    async def create_index(
        self,
        table: str,
        keys: IndexKeys,
        name: str,
        unique: bool = False,
    ) -> None:
        """Create an index; creating an identical index again is a no-op.

        Raises:
            StoreError: If the index cannot be created
        """
        ...

    @abstractmethod
    async def list_tables(self) -> list[str]:
        """List table names."""
        ...

    @abstractmethod
    async def drop_table(self, table: str) -> None:
        """Drop a table and its indexes. Dropping a missing table succeeds."""
        ...

    @property
    @abstractmethod
    def is_connected(self) -> bool:
        """Whether connect() succeeded and close() has not been called."""
        ...
