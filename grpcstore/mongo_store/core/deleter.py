"""
Delete coordinator: removal of index entries by exact coordinate.

Invariants:
    - Only the document at exactly (hash, range) is removed
    - A failing entry aborts the batch; earlier deletions are not rolled back
    - Deleting an absent entry succeeds
    - Chunks cannot be deleted
"""

from __future__ import annotations

import logging

from ..store.base import DocumentStore, NotSupportedError, StoreError
from .batch import fan_out
from .documents import IndexEntry

logger = logging.getLogger(__name__)


class DeleteCoordinator:
    """Deletes index entries from a document store.

    Attributes:
        store: Shared document store handle
        max_in_flight: Maximum concurrent store operations per batch
    """

    def __init__(self, store: DocumentStore, max_in_flight: int = 16) -> None:
        self.store = store
        self.max_in_flight = max_in_flight

    async def delete_index_entry(self, entry: IndexEntry) -> None:
        """Delete the entry at (table, hash, range).

        Raises:
            StoreError: If the delete fails
        """
        try:
            deleted = await self.store.delete(entry.table, entry.match())
        except StoreError as e:
            logger.error(
                f"Failed to delete index entry: {e}",
                extra={"table": entry.table, "hash": entry.hash},
            )
            raise

        logger.debug(
            "Index entry deleted",
            extra={"table": entry.table, "hash": entry.hash, "found": bool(deleted)},
        )

    async def delete_index_batch(self, entries: list[IndexEntry]) -> None:
        """Delete a batch of index entries.

        Raises:
            StoreError: The first entry failure; remaining entries are abandoned
        """
        await fan_out(
            entries, self.delete_index_entry, self.max_in_flight, key=lambda e: e.coordinate
        )

    async def delete_chunks(self, chunk_id: str) -> None:
        """Chunk deletion is not supported; the store is never contacted.

        Raises:
            NotSupportedError: Always
        """
        logger.warning("Delete chunks requested but not supported", extra={"chunk_id": chunk_id})
        raise NotSupportedError()
