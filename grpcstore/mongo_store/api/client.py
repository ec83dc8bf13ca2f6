"""
Async gRPC client for the ``grpc_store`` service.

Used by the integration and e2e suites and handy for poking a running
server. Calls go through per-method multicallables, so no generated stub
is required.
"""

from __future__ import annotations

import logging
from typing import Any

from grpc import aio as grpc_aio

from ..core.documents import Chunk, IndexEntry, IndexQuery, Row, TableDesc, TableStatus
from . import messages
from .messages import Empty

logger = logging.getLogger(__name__)


class GrpcStoreClient:
    """Async client speaking the ``grpc_store`` protocol.

    Example:
        >>> async with GrpcStoreClient("localhost", 6688) as client:
        ...     await client.create_table("index_1")
        ...     await client.write_index([IndexEntry("index_1", "h", b"r", b"v")])
        ...     rows = await client.query_index(IndexQuery("index_1", "h"))
    """

    def __init__(
        self,
        host: str = "localhost",
        port: int = 6688,
        *,
        max_message_size: int = 64 * 1024 * 1024,
    ) -> None:
        self._host = host
        self._port = port
        self._max_message_size = max_message_size
        self._channel: grpc_aio.Channel | None = None
        self._calls: dict[str, Any] = {}

    async def connect(self) -> None:
        """Open the channel."""
        if self._channel is not None:
            return

        address = f"{self._host}:{self._port}"
        self._channel = grpc_aio.insecure_channel(
            address,
            options=[
                ("grpc.max_send_message_length", self._max_message_size),
                ("grpc.max_receive_message_length", self._max_message_size),
            ],
        )
        for method, (request_cls, response_cls, streaming) in messages.METHODS.items():
            factory = self._channel.unary_stream if streaming else self._channel.unary_unary
            self._calls[method] = factory(
                messages.method_path(method),
                request_serializer=request_cls.SerializeToString,
                response_deserializer=response_cls.FromString,
            )
        logger.debug(f"Connected to grpc_store at {address}")

    async def close(self) -> None:
        """Close the channel."""
        if self._channel:
            await self._channel.close()
            self._channel = None
            self._calls = {}

    async def __aenter__(self) -> GrpcStoreClient:
        await self.connect()
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()

    def _call(self, method: str) -> Any:
        if self._channel is None:
            raise RuntimeError("Not connected. Call connect() first.")
        return self._calls[method]

    async def write_index(self, entries: list[IndexEntry]) -> None:
        request = messages.WriteIndexRequest(
            writes=[
                messages.IndexEntry(
                    tableName=e.table, hashValue=e.hash, rangeValue=e.range, value=e.value
                )
                for e in entries
            ]
        )
        await self._call("WriteIndex")(request)

    async def delete_index(self, entries: list[IndexEntry]) -> None:
        request = messages.DeleteIndexRequest(
            deletes=[
                messages.IndexEntry(tableName=e.table, hashValue=e.hash, rangeValue=e.range)
                for e in entries
            ]
        )
        await self._call("DeleteIndex")(request)

    async def query_index(self, query: IndexQuery) -> list[Row]:
        """Run a query and collect every streamed page."""
        request = messages.QueryIndexRequest(
            tableName=query.table,
            hashValue=query.hash,
            rangeValueStart=query.range_start,
            rangeValuePrefix=query.range_prefix,
            valueEqual=query.value_equal,
        )
        rows: list[Row] = []
        async for response in self._call("QueryIndex")(request):
            rows.extend(Row(range=r.rangeValue, value=r.value) for r in response.rows)
        return rows

    async def put_chunks(self, chunks: list[Chunk]) -> None:
        request = messages.PutChunksRequest(
            chunks=[
                messages.Chunk(tableName=c.table, key=c.key, encoded=c.encoded) for c in chunks
            ]
        )
        await self._call("PutChunks")(request)

    async def get_chunks(self, chunks: list[Chunk]) -> list[Chunk]:
        request = messages.GetChunksRequest(
            chunks=[messages.Chunk(tableName=c.table, key=c.key) for c in chunks]
        )
        found: list[Chunk] = []
        async for response in self._call("GetChunks")(request):
            found.extend(
                Chunk(table=c.tableName, key=c.key, encoded=c.encoded) for c in response.chunks
            )
        return found

    async def delete_chunks(self, chunk_id: str) -> None:
        await self._call("DeleteChunks")(messages.ChunkID(chunkID=chunk_id))

    async def list_tables(self) -> list[str]:
        response = await self._call("ListTables")(Empty())
        return list(response.tableNames)

    async def create_table(self, name: str) -> None:
        request = messages.CreateTableRequest(desc=messages.TableDesc(name=name))
        await self._call("CreateTable")(request)

    async def delete_table(self, name: str) -> None:
        await self._call("DeleteTable")(messages.DeleteTableRequest(tableName=name))

    async def describe_table(self, name: str) -> TableStatus:
        response = await self._call("DescribeTable")(messages.DescribeTableRequest(tableName=name))
        return TableStatus(desc=TableDesc(name=response.desc.name), is_active=response.isActive)

    async def update_table(self, name: str) -> None:
        desc = messages.TableDesc(name=name)
        await self._call("UpdateTable")(messages.UpdateTableRequest(current=desc, expected=desc))

    async def stop(self) -> None:
        await self._call("Stop")(Empty())

