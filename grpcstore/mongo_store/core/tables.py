"""
Table lifecycle: creation, listing, deletion and description of tables.

A table is one collection. Creating it builds the unique index that
guarantees at most one document per (hash, range), plus an ordering index
over (hash, range, value desc) that serves value-equality scans.

Invariants:
    - create_table is idempotent
    - delete_table is unconditional and irreversible
    - describe_table always reports the table as active
    - update_table has no effect
"""

from __future__ import annotations

import logging

from ..store.base import ASCENDING, DESCENDING, DocumentStore, InvalidRequestError, StoreError
from .documents import HASH_FIELD, RANGE_FIELD, VALUE_FIELD, TableDesc, TableStatus

logger = logging.getLogger(__name__)

UNIQUE_INDEX_NAME = "hash_range_unique"
ORDER_INDEX_NAME = "hash_range_value_order"

UNIQUE_INDEX_KEYS = [(HASH_FIELD, ASCENDING), (RANGE_FIELD, ASCENDING)]
ORDER_INDEX_KEYS = [(HASH_FIELD, ASCENDING), (RANGE_FIELD, ASCENDING), (VALUE_FIELD, DESCENDING)]


def _require_name(name: str) -> None:
    if not name:
        raise InvalidRequestError("table name is required")


class TableManager:
    """Manages tables of a document store.

    Attributes:
        store: Shared document store handle

    Example:
        >>> tables = TableManager(store)
        >>> await tables.create_table(TableDesc(name="index_2609"))
        >>> await tables.list_tables()
        ['index_2609']
    """

    def __init__(self, store: DocumentStore) -> None:
        self.store = store

    async def create_table(self, desc: TableDesc) -> None:
        """Create a table with its uniqueness and ordering indexes.

        Raises:
            InvalidRequestError: If the name is empty
            StoreError: If an index cannot be created
        """
        _require_name(desc.name)
        logger.info("Creating table", extra={"table": desc.name})
        try:
            await self.store.create_index(
                desc.name, UNIQUE_INDEX_KEYS, name=UNIQUE_INDEX_NAME, unique=True
            )
            await self.store.create_index(desc.name, ORDER_INDEX_KEYS, name=ORDER_INDEX_NAME)
        except StoreError as e:
            logger.error(f"Failed to create table: {e}", extra={"table": desc.name})
            raise

    async def list_tables(self) -> list[str]:
        """List table names in store order.

        Raises:
            StoreError: If the listing fails
        """
        logger.info("Listing tables")
        try:
            return await self.store.list_tables()
        except StoreError as e:
            logger.error(f"Failed to list tables: {e}")
            raise

    async def delete_table(self, name: str) -> None:
        """Drop a table and everything in it.

        Raises:
            InvalidRequestError: If the name is empty
            StoreError: If the drop fails
        """
        _require_name(name)
        logger.info("Deleting table", extra={"table": name})
        try:
            await self.store.drop_table(name)
        except StoreError as e:
            logger.error(f"Failed to delete table: {e}", extra={"table": name})
            raise

    async def describe_table(self, name: str) -> TableStatus:
        """Describe a table. No activity tracking exists: always active."""
        logger.info("Describing table", extra={"table": name})
        return TableStatus(desc=TableDesc(name=name), is_active=True)

    async def update_table(self, current: TableDesc, expected: TableDesc) -> None:
        """Accept a table update without changing anything."""
        logger.debug(
            "Ignoring table update",
            extra={"table": current.name or expected.name},
        )
