"""
MongoDB document store implementation.

This module provides the production DocumentStore backend on top of the
asyncio client of pymongo. One client is created at startup and shared by
every request for the lifetime of the process.

Invariants:
    - connect() pings the deployment; a server never starts without a session
    - Duplicate key errors (code 11000) become CONFLICT outcomes
    - pymongo errors never leak: they are wrapped in StoreError subclasses
    - BSON decoding failures surface as StoreDecodeError
    - Cursors are closed when iteration ends, fails, or is abandoned

How to change safely:
    - Test against a real MongoDB (tests/e2e) before deploying
    - Keep timeout handling in the client options, not in coordinators
    - Never pass caller documents to pymongo without copying (insert adds _id)
"""

from __future__ import annotations

import logging
from collections.abc import AsyncGenerator
from typing import Any

from bson.errors import BSONError
from pymongo import AsyncMongoClient
from pymongo.errors import (
    ConnectionFailure,
    DuplicateKeyError,
    OperationFailure,
    PyMongoError,
)

from .base import (
    Document,
    IndexKeys,
    StoreConnectionError,
    StoreDecodeError,
    StoreError,
    StoreTimeoutError,
    WriteOutcome,
)

logger = logging.getLogger(__name__)

DUPLICATE_KEY_CODE = 11000
NAMESPACE_NOT_FOUND_CODE = 26


def _wrap(error: PyMongoError, action: str, table: str | None = None) -> StoreError:
    """Translate a pymongo error into the store error hierarchy."""
    if error.timeout:
        return StoreTimeoutError(f"{action} timed out: {error}", table)
    if isinstance(error, ConnectionFailure):
        return StoreConnectionError(f"{action} failed, connection lost: {error}", table)
    return StoreError(f"{action} failed: {error}", table)


class MongoDocumentStore:
    """MongoDB implementation of the DocumentStore protocol.

    Attributes:
        config: MongoConfig with connection settings

    Thread safety:
        The pymongo client pools connections internally and is safe for
        concurrent use by many coroutines; no locking is done here.

    Example:
        >>> store = MongoDocumentStore(MongoConfig(database="cortex"))
        >>> await store.connect()
        >>> await store.list_tables()
        ['index_2609', 'chunks_2609']
    """

    def __init__(self, config: Any, client: AsyncMongoClient | None = None) -> None:
        """Initialize the MongoDB store.

        Args:
            config: MongoConfig instance
            client: Pre-built client (tests); created in connect() otherwise
        """
        self.config = config
        self._client = client
        self._connected = False

    @property
    def is_connected(self) -> bool:
        """Whether connected to MongoDB."""
        return self._connected and self._client is not None

    def _client_options(self) -> dict[str, Any]:
        options: dict[str, Any] = {
            "host": self.config.addresses,
            "port": self.config.port,
            "connectTimeoutMS": self.config.connect_timeout_ms,
            "serverSelectionTimeoutMS": self.config.server_selection_timeout_ms,
        }
        if self.config.timeout_ms:
            options["timeoutMS"] = self.config.timeout_ms

        if self.config.has_credentials:
            options["username"] = self.config.username
            options["password"] = self.config.password
            options["authSource"] = self.config.auth_source

        if self.config.tls:
            options["tls"] = True
            if self.config.tls_ca_file:
                options["tlsCAFile"] = self.config.tls_ca_file
            if self.config.tls_allow_invalid_hostnames:
                options["tlsAllowInvalidHostnames"] = True

        return options

    async def connect(self) -> None:
        """Create the client and verify the deployment answers a ping.

        Raises:
            StoreConnectionError: If the ping fails
        """
        if self._connected:
            return

        if self._client is None:
            self._client = AsyncMongoClient(**self._client_options())

        try:
            await self._client.admin.command("ping")
        except PyMongoError as e:
            logger.error(
                "Unable to ping MongoDB",
                extra={"addresses": self.config.addresses, "port": self.config.port},
                exc_info=True,
            )
            await self._client.close()
            self._client = None
            raise StoreConnectionError(f"Failed to connect to MongoDB: {e}") from e

        self._connected = True
        logger.info(
            "Connected to MongoDB",
            extra={
                "addresses": self.config.addresses,
                "port": self.config.port,
                "database": self.config.database,
                "auth": self.config.has_credentials,
            },
        )

    async def close(self) -> None:
        """Close the client."""
        if self._client is not None:
            try:
                await self._client.close()
            except PyMongoError as e:
                logger.warning(f"Error closing MongoDB client: {e}")
            self._client = None
        self._connected = False
        logger.info("MongoDB connection closed")

    def _collection(self, table: str) -> Any:
        if self._client is None:
            raise StoreConnectionError("Not connected to MongoDB", table)
        return self._client[self.config.database][table]

    async def insert(self, table: str, document: Document) -> WriteOutcome:
        """Insert a document, reporting unique index violations as CONFLICT."""
        collection = self._collection(table)
        try:
            await collection.insert_one(dict(document))
        except DuplicateKeyError:
            return WriteOutcome.conflict()
        except OperationFailure as e:
            if e.code == DUPLICATE_KEY_CODE:
                return WriteOutcome.conflict()
            return WriteOutcome.failure(_wrap(e, "insert", table))
        except PyMongoError as e:
            return WriteOutcome.failure(_wrap(e, "insert", table))
        return WriteOutcome.ok()

    async def replace(
        self,
        table: str,
        match: Document,
        document: Document,
        upsert: bool = False,
    ) -> int:
        """Replace the first document matching ``match``."""
        collection = self._collection(table)
        try:
            result = await collection.replace_one(match, dict(document), upsert=upsert)
        except PyMongoError as e:
            raise _wrap(e, "replace", table) from e
        if result.upserted_id is not None:
            return 1
        return result.matched_count

    async def delete(self, table: str, match: Document) -> int:
        """Delete the first document matching ``match``."""
        collection = self._collection(table)
        try:
            result = await collection.delete_one(match)
        except PyMongoError as e:
            raise _wrap(e, "delete", table) from e
        return result.deleted_count

    async def find(
        self,
        table: str,
        query: Document,
        batch_size: int | None = None,
    ) -> AsyncGenerator[Document, None]:
        """Iterate matching documents, closing the cursor on exit."""
        collection = self._collection(table)
        cursor = collection.find(query)
        if batch_size:
            cursor = cursor.batch_size(batch_size)
        try:
            async for document in cursor:
                yield document
        except PyMongoError as e:
            raise _wrap(e, "find", table) from e
        except BSONError as e:
            raise StoreDecodeError(f"find returned an undecodable document: {e}", table) from e
        finally:
            await cursor.close()

    async def create_index(
        self,
        table: str,
        keys: IndexKeys,
        name: str,
        unique: bool = False,
    ) -> None:
        """Create an index; MongoDB treats an identical index as a no-op."""
        collection = self._collection(table)
        try:
            await collection.create_index(keys, name=name, unique=unique)
        except PyMongoError as e:
            raise _wrap(e, "create index", table) from e

    async def list_tables(self) -> list[str]:
        """List collection names of the configured database."""
        if self._client is None:
            raise StoreConnectionError("Not connected to MongoDB")
        try:
            return await self._client[self.config.database].list_collection_names()
        except PyMongoError as e:
            raise _wrap(e, "list collections") from e

    async def drop_table(self, table: str) -> None:
        """Drop a collection with its indexes."""
        collection = self._collection(table)
        try:
            await collection.drop()
        except OperationFailure as e:
            # Servers before 7.0 report a missing namespace as an error
            if e.code != NAMESPACE_NOT_FOUND_CODE:
                raise _wrap(e, "drop", table) from e
        except PyMongoError as e:
            raise _wrap(e, "drop", table) from e
