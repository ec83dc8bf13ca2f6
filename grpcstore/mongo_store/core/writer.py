"""
Write coordinator: insert-or-replace of index entries and chunks.

Each entry is inserted first. A duplicate-key conflict means the
coordinate already exists under the table's unique index, so the entry is
written again as a replace of the existing document. First writes of a key
cost one round trip, overwrites two.

Invariants:
    - An acknowledgement means every entry of the batch is durable
    - A failing entry aborts the batch; earlier entries are not rolled back
    - No retries: failures surface to the caller immediately
    - Chunks are stored with the empty range and replaced by key alone
"""

from __future__ import annotations

import logging

from ..store.base import DocumentStore, StoreError, WriteStatus
from .batch import fan_out
from .documents import Chunk, IndexEntry

logger = logging.getLogger(__name__)


class WriteCoordinator:
    """Writes index entries and chunks to a document store.

    Attributes:
        store: Shared document store handle
        max_in_flight: Maximum concurrent store operations per batch

    Example:
        >>> writer = WriteCoordinator(store, max_in_flight=8)
        >>> await writer.write_index_batch([IndexEntry("index_1", "h", b"r", b"v")])
    """

    def __init__(self, store: DocumentStore, max_in_flight: int = 16) -> None:
        self.store = store
        self.max_in_flight = max_in_flight

    async def _upsert(self, table: str, document: dict, match: dict) -> bool:
        """Insert, falling back to a replace on conflict.

        Returns:
            True if an existing document was overwritten
        """
        outcome = await self.store.insert(table, document)

        if outcome.status is WriteStatus.OK:
            return False

        if outcome.status is WriteStatus.CONFLICT:
            # Upsert guards against a concurrent delete between the two calls
            await self.store.replace(table, match, document, upsert=True)
            return True

        raise outcome.error or StoreError("insert failed", table)

    async def write_index_entry(self, entry: IndexEntry) -> None:
        """Insert or replace one index entry.

        Raises:
            StoreError: If the insert fails for a reason other than a conflict,
                or the fallback replace fails
        """
        try:
            overwritten = await self._upsert(
                entry.table, entry.to_document(), entry.match()
            )
        except StoreError as e:
            logger.error(
                f"Failed to write index entry: {e}",
                extra={"table": entry.table, "hash": entry.hash},
            )
            raise

        logger.debug(
            "Index entry written",
            extra={"table": entry.table, "hash": entry.hash, "overwrite": overwritten},
        )

    async def write_index_batch(self, entries: list[IndexEntry]) -> None:
        """Insert or replace a batch of index entries.

        Raises:
            StoreError: The first entry failure; remaining entries are abandoned
        """
        if entries:
            logger.info(
                "Performing index batch write",
                extra={"entries": len(entries), "tables": sorted({e.table for e in entries})},
            )
        await fan_out(
            entries, self.write_index_entry, self.max_in_flight, key=lambda e: e.coordinate
        )

    async def put_chunk(self, chunk: Chunk) -> None:
        """Insert or replace one chunk, matched by key alone on conflict.

        Raises:
            StoreError: If the chunk cannot be written
        """
        try:
            overwritten = await self._upsert(
                chunk.table, chunk.to_document(), chunk.match()
            )
        except StoreError as e:
            logger.error(
                f"Failed to put chunk: {e}",
                extra={"table": chunk.table, "hash": chunk.key},
            )
            raise

        logger.debug(
            "Chunk written",
            extra={"table": chunk.table, "hash": chunk.key, "overwrite": overwritten},
        )

    async def put_chunks(self, chunks: list[Chunk]) -> None:
        """Insert or replace a batch of chunks.

        Raises:
            StoreError: The first chunk failure; remaining chunks are abandoned
        """
        if chunks:
            logger.info(
                "Performing put chunks",
                extra={"chunks": len(chunks), "tables": sorted({c.table for c in chunks})},
            )
        await fan_out(chunks, self.put_chunk, self.max_in_flight, key=lambda c: c.coordinate)
