"""
Integration tests for the gRPC servicer with the in-memory store.

The servicer is called directly with a stand-in context, so status codes
and message translation are checked without a network.

Tests cover:
- Message translation for every RPC
- Error to status code mapping
"""

import logging

import grpc
import pytest

from grpcstore.mongo_store.api import messages
from grpcstore.mongo_store.api.grpc_server import GrpcStoreServicer, status_for
from grpcstore.mongo_store.api.messages import Empty
from grpcstore.mongo_store.store.base import (
    InvalidRequestError,
    NotSupportedError,
    StoreConnectionError,
    StoreDecodeError,
    StoreError,
    StoreTimeoutError,
)
from grpcstore.mongo_store.store.memory import InMemoryDocumentStore

TABLE = "index_2609"
CHUNKS = "chunks_2609"


class Aborted(Exception):
    """Raised by FakeContext.abort, as grpc.aio does."""


class FakeContext:
    """Records the status an RPC aborted with."""

    def __init__(self):
        self.code = None
        self.details = None

    async def abort(self, code, details=""):
        self.code = code
        self.details = details
        raise Aborted(details)


def _entry(hash_value, range_value=b"", value=b"", table=TABLE):
    return messages.IndexEntry(
        tableName=table, hashValue=hash_value, rangeValue=range_value, value=value
    )


class TestStatusFor:
    """Tests for status_for."""

    @pytest.mark.parametrize(
        "error,code",
        [
            (NotSupportedError(), grpc.StatusCode.UNIMPLEMENTED),
            (InvalidRequestError("bad"), grpc.StatusCode.INVALID_ARGUMENT),
            (StoreConnectionError("down"), grpc.StatusCode.UNAVAILABLE),
            (StoreTimeoutError("slow"), grpc.StatusCode.DEADLINE_EXCEEDED),
            (StoreDecodeError("corrupt"), grpc.StatusCode.DATA_LOSS),
            (StoreError("other"), grpc.StatusCode.INTERNAL),
        ],
    )
    def test_mapping(self, error, code):
        assert status_for(error) == code


class TestGrpcStoreServicer:
    """Tests for GrpcStoreServicer."""

    @pytest.fixture
    def store(self):
        return InMemoryDocumentStore()

    @pytest.fixture
    def servicer(self, store):
        return GrpcStoreServicer(store, max_in_flight=4, page_size=2)

    async def _setup(self, store, servicer):
        await store.connect()
        for name in (TABLE, CHUNKS):
            request = messages.CreateTableRequest(desc=messages.TableDesc(name=name))
            await servicer.CreateTable(request, FakeContext())

    async def _query(self, servicer, **fields):
        request = messages.QueryIndexRequest(tableName=TABLE, **fields)
        responses = [r async for r in servicer.QueryIndex(request, FakeContext())]
        return responses

    @pytest.mark.asyncio
    async def test_write_and_query(self, store, servicer):
        await self._setup(store, servicer)

        reply = await servicer.WriteIndex(
            messages.WriteIndexRequest(
                writes=[
                    _entry("h", b"a", b"1"),
                    _entry("h", b"b", b"2"),
                    _entry("h", b"ba", b"3"),
                ]
            ),
            FakeContext(),
        )
        responses = await self._query(servicer, hashValue="h", rangeValuePrefix=b"b")

        assert isinstance(reply, Empty)
        rows = [(r.rangeValue, r.value) for resp in responses for r in resp.rows]
        assert sorted(rows) == [(b"b", b"2"), (b"ba", b"3")]

    @pytest.mark.asyncio
    async def test_query_streams_pages(self, store, servicer):
        await self._setup(store, servicer)
        await servicer.WriteIndex(
            messages.WriteIndexRequest(writes=[_entry("h", bytes([i])) for i in range(5)]),
            FakeContext(),
        )

        responses = await self._query(servicer, hashValue="h")

        assert [len(r.rows) for r in responses] == [2, 2, 1]

    @pytest.mark.asyncio
    async def test_empty_query_sends_one_empty_response(self, store, servicer):
        await self._setup(store, servicer)

        responses = await self._query(servicer, hashValue="missing")

        assert len(responses) == 1
        assert len(responses[0].rows) == 0

    @pytest.mark.asyncio
    async def test_delete_index(self, store, servicer):
        await self._setup(store, servicer)
        await servicer.WriteIndex(
            messages.WriteIndexRequest(writes=[_entry("h", b"r", b"v")]), FakeContext()
        )

        await servicer.DeleteIndex(
            messages.DeleteIndexRequest(deletes=[_entry("h", b"r")]), FakeContext()
        )

        responses = await self._query(servicer, hashValue="h")
        assert sum(len(r.rows) for r in responses) == 0

    @pytest.mark.asyncio
    async def test_put_and_get_chunks(self, store, servicer):
        await self._setup(store, servicer)
        await servicer.PutChunks(
            messages.PutChunksRequest(
                chunks=[messages.Chunk(tableName=CHUNKS, key="fp:1", encoded=b"one")]
            ),
            FakeContext(),
        )

        request = messages.GetChunksRequest(
            chunks=[
                messages.Chunk(tableName=CHUNKS, key="fp:1"),
                messages.Chunk(tableName=CHUNKS, key="fp:2"),
            ]
        )
        responses = [r async for r in servicer.GetChunks(request, FakeContext())]

        chunks = [(c.key, c.encoded, c.tableName) for r in responses for c in r.chunks]
        assert chunks == [("fp:1", b"one", CHUNKS), ("fp:2", b"", CHUNKS)]

    @pytest.mark.asyncio
    async def test_delete_chunks_unimplemented(self, store, servicer):
        await self._setup(store, servicer)
        context = FakeContext()

        with pytest.raises(Aborted):
            await servicer.DeleteChunks(messages.ChunkID(chunkID="fp:1"), context)

        assert context.code == grpc.StatusCode.UNIMPLEMENTED

    @pytest.mark.asyncio
    async def test_empty_table_name_is_invalid(self, store, servicer):
        await self._setup(store, servicer)
        context = FakeContext()

        with pytest.raises(Aborted):
            await servicer.WriteIndex(
                messages.WriteIndexRequest(writes=[_entry("h", table="")]), context
            )

        assert context.code == grpc.StatusCode.INVALID_ARGUMENT

    @pytest.mark.asyncio
    async def test_store_unavailable(self, store, servicer):
        await self._setup(store, servicer)
        store.fail_on("insert", "h", StoreConnectionError("down"))
        context = FakeContext()

        with pytest.raises(Aborted):
            await servicer.WriteIndex(messages.WriteIndexRequest(writes=[_entry("h")]), context)

        assert context.code == grpc.StatusCode.UNAVAILABLE

    @pytest.mark.asyncio
    async def test_query_timeout(self, store, servicer):
        await self._setup(store, servicer)
        store.fail_on("find", "h", StoreTimeoutError("slow"))
        context = FakeContext()

        with pytest.raises(Aborted):
            async for _ in servicer.QueryIndex(
                messages.QueryIndexRequest(tableName=TABLE, hashValue="h"), context
            ):
                pass

        assert context.code == grpc.StatusCode.DEADLINE_EXCEEDED

    @pytest.mark.asyncio
    async def test_corrupt_document_is_data_loss(self, store, servicer):
        await self._setup(store, servicer)
        await store.insert(TABLE, {"hash": "h", "range": "xyz", "value": b""})
        context = FakeContext()

        with pytest.raises(Aborted):
            async for _ in servicer.QueryIndex(
                messages.QueryIndexRequest(tableName=TABLE, hashValue="h"), context
            ):
                pass

        assert context.code == grpc.StatusCode.DATA_LOSS

    @pytest.mark.asyncio
    async def test_generic_failure_is_internal(self, store, servicer):
        await self._setup(store, servicer)
        store.fail_on("delete", "h")
        context = FakeContext()

        with pytest.raises(Aborted):
            await servicer.DeleteIndex(
                messages.DeleteIndexRequest(deletes=[_entry("h")]), context
            )

        assert context.code == grpc.StatusCode.INTERNAL

    @pytest.mark.asyncio
    async def test_unexpected_error_is_internal(self, store, servicer, monkeypatch, caplog):
        await self._setup(store, servicer)

        async def broken(entries):
            raise RuntimeError("bug")

        monkeypatch.setattr(servicer.writer, "write_index_batch", broken)
        context = FakeContext()

        with caplog.at_level(logging.ERROR), pytest.raises(Aborted):
            await servicer.WriteIndex(messages.WriteIndexRequest(writes=[_entry("h")]), context)

        assert context.code == grpc.StatusCode.INTERNAL
        assert "WriteIndex failed: bug" in caplog.text

    @pytest.mark.asyncio
    async def test_unexpected_stream_error_is_internal(self, store, servicer, monkeypatch):
        await self._setup(store, servicer)

        async def broken(chunks):
            raise RuntimeError("bug")
            yield

        monkeypatch.setattr(servicer.planner, "get_chunks", broken)
        context = FakeContext()
        request = messages.GetChunksRequest(
            chunks=[messages.Chunk(tableName=CHUNKS, key="fp:1")]
        )

        with pytest.raises(Aborted):
            async for _ in servicer.GetChunks(request, context):
                pass

        assert context.code == grpc.StatusCode.INTERNAL

    @pytest.mark.asyncio
    async def test_closed_stream_closes_cursor(self, store, servicer):
        await self._setup(store, servicer)
        await servicer.WriteIndex(
            messages.WriteIndexRequest(writes=[_entry("h", bytes([i])) for i in range(5)]),
            FakeContext(),
        )
        stream = servicer.QueryIndex(
            messages.QueryIndexRequest(tableName=TABLE, hashValue="h"), FakeContext()
        )

        first = await stream.__anext__()
        open_while_streaming = store.open_cursors
        await stream.aclose()

        assert len(first.rows) == 2
        assert open_while_streaming == 1
        assert store.open_cursors == 0

    @pytest.mark.asyncio
    async def test_table_lifecycle(self, store, servicer):
        await self._setup(store, servicer)
        desc = messages.TableDesc(name="index_2610", provisionedRead=5)
        desc.tags["owner"] = "ingester"

        await servicer.CreateTable(messages.CreateTableRequest(desc=desc), FakeContext())
        listed = await servicer.ListTables(Empty(), FakeContext())
        described = await servicer.DescribeTable(
            messages.DescribeTableRequest(tableName="index_2610"), FakeContext()
        )
        await servicer.UpdateTable(
            messages.UpdateTableRequest(current=desc, expected=desc), FakeContext()
        )
        await servicer.DeleteTable(
            messages.DeleteTableRequest(tableName="index_2610"), FakeContext()
        )
        after = await servicer.ListTables(Empty(), FakeContext())

        assert list(listed.tableNames) == [TABLE, CHUNKS, "index_2610"]
        assert described.desc.name == "index_2610"
        assert described.isActive
        assert list(after.tableNames) == [TABLE, CHUNKS]

    @pytest.mark.asyncio
    async def test_list_tables_failure(self, servicer):
        context = FakeContext()

        with pytest.raises(Aborted):
            await servicer.ListTables(Empty(), context)

        assert context.code == grpc.StatusCode.UNAVAILABLE

    @pytest.mark.asyncio
    async def test_stop_is_noop(self, store, servicer):
        await self._setup(store, servicer)

        assert isinstance(await servicer.Stop(Empty(), FakeContext()), Empty)
        assert store.is_connected
