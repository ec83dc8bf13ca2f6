"""
Unit tests for the delete coordinator.
"""

import pytest

from grpcstore.mongo_store.core.deleter import DeleteCoordinator
from grpcstore.mongo_store.core.documents import IndexEntry, IndexQuery, TableDesc
from grpcstore.mongo_store.core.query import QueryPlanner
from grpcstore.mongo_store.core.tables import TableManager
from grpcstore.mongo_store.core.writer import WriteCoordinator
from grpcstore.mongo_store.store.base import NotSupportedError, StoreError
from grpcstore.mongo_store.store.memory import InMemoryDocumentStore

TABLE = "index_2609"


class TestDeleteCoordinator:
    """Tests for DeleteCoordinator."""

    @pytest.fixture
    def store(self):
        """Create a fresh store."""
        return InMemoryDocumentStore()

    async def _seed(self, store, *entries):
        await store.connect()
        await TableManager(store).create_table(TableDesc(name=TABLE))
        await WriteCoordinator(store).write_index_batch(list(entries))

    async def _ranges(self, store, hash_value="h"):
        rows = await QueryPlanner(store).query_index_rows(IndexQuery(TABLE, hash_value))
        return [row.range for row in rows]

    @pytest.mark.asyncio
    async def test_delete_then_query_is_empty(self, store):
        await self._seed(store, IndexEntry(TABLE, "h", b"r", b"v"))
        deleter = DeleteCoordinator(store)

        await deleter.delete_index_batch([IndexEntry(TABLE, "h", b"r")])

        assert await self._ranges(store) == []

    @pytest.mark.asyncio
    async def test_delete_matches_exact_range(self, store):
        await self._seed(
            store,
            IndexEntry(TABLE, "h", b"b", b"1"),
            IndexEntry(TABLE, "h", b"ba", b"2"),
        )
        deleter = DeleteCoordinator(store)

        await deleter.delete_index_entry(IndexEntry(TABLE, "h", b"b"))

        assert await self._ranges(store) == [b"ba"]

    @pytest.mark.asyncio
    async def test_delete_ignores_value(self, store):
        await self._seed(store, IndexEntry(TABLE, "h", b"r", b"v"))
        deleter = DeleteCoordinator(store)

        await deleter.delete_index_entry(IndexEntry(TABLE, "h", b"r", b"something else"))

        assert await self._ranges(store) == []

    @pytest.mark.asyncio
    async def test_delete_absent_entry(self, store):
        await self._seed(store)
        deleter = DeleteCoordinator(store)

        await deleter.delete_index_batch([IndexEntry(TABLE, "nope", b"r")])

    @pytest.mark.asyncio
    async def test_failure_aborts_without_rollback(self, store):
        await self._seed(
            store,
            IndexEntry(TABLE, "h1", b"r", b"1"),
            IndexEntry(TABLE, "h2", b"r", b"2"),
            IndexEntry(TABLE, "h3", b"r", b"3"),
        )
        store.fail_on("delete", "h2")
        deleter = DeleteCoordinator(store, max_in_flight=1)

        with pytest.raises(StoreError):
            await deleter.delete_index_batch(
                [
                    IndexEntry(TABLE, "h1", b"r"),
                    IndexEntry(TABLE, "h2", b"r"),
                    IndexEntry(TABLE, "h3", b"r"),
                ]
            )

        assert await self._ranges(store, "h1") == []
        assert await self._ranges(store, "h2") == [b"r"]
        assert await self._ranges(store, "h3") == [b"r"]

    @pytest.mark.asyncio
    async def test_delete_chunks_not_supported(self, store):
        await store.connect()
        deleter = DeleteCoordinator(store)

        with pytest.raises(NotSupportedError, match="not supported"):
            await deleter.delete_chunks("fp:1:2")

        assert store.tables == {}
