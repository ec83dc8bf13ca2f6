"""
gRPC server implementation for the Mongo gRPC store.

This module provides the gRPC API server that handles all storage calls.
It uses grpc.aio and registers the ``grpc_store`` service through a
generic handler built from the message classes in ``messages``.

Invariants:
    - Every RPC is served by exactly one coordinator
    - Store errors map to gRPC status codes, never to partial OK replies
    - Streaming replies are sent page by page as the cursor advances
    - All errors are logged with structured context
    - Unexpected errors are reported as INTERNAL
    - A cancelled stream closes its cursor before the handler returns

How to change safely:
    - Add new RPCs without modifying existing ones
    - Keep message translation here; decision logic belongs in core/
    - Test with both the in-memory store and a real MongoDB
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import aclosing
from typing import Any

import grpc
from grpc import aio as grpc_aio

from ..core.deleter import DeleteCoordinator
from ..core.documents import Chunk, IndexEntry, IndexQuery, TableDesc
from ..core.query import QueryPlanner
from ..core.tables import TableManager
from ..core.writer import WriteCoordinator
from ..store.base import (
    DocumentStore,
    InvalidRequestError,
    NotSupportedError,
    StoreConnectionError,
    StoreDecodeError,
    StoreError,
    StoreTimeoutError,
)
from . import messages
from .messages import Empty

logger = logging.getLogger(__name__)


def status_for(error: StoreError) -> grpc.StatusCode:
    """Map a store error to the gRPC status reported to the caller."""
    if isinstance(error, NotSupportedError):
        return grpc.StatusCode.UNIMPLEMENTED
    if isinstance(error, InvalidRequestError):
        return grpc.StatusCode.INVALID_ARGUMENT
    if isinstance(error, StoreConnectionError):
        return grpc.StatusCode.UNAVAILABLE
    if isinstance(error, StoreTimeoutError):
        return grpc.StatusCode.DEADLINE_EXCEEDED
    if isinstance(error, StoreDecodeError):
        return grpc.StatusCode.DATA_LOSS
    return grpc.StatusCode.INTERNAL


def _table_desc(message: Any) -> TableDesc:
    return TableDesc(
        name=message.name,
        use_on_demand_io=message.useOnDemandIOMode,
        provisioned_read=message.provisionedRead,
        provisioned_write=message.provisionedWrite,
        tags=dict(message.tags),
    )


def _index_entries(entries: Any) -> list[IndexEntry]:
    return [
        IndexEntry(
            table=e.tableName,
            hash=e.hashValue,
            range=e.rangeValue,
            value=e.value,
        )
        for e in entries
    ]


def _chunks(chunks: Any) -> list[Chunk]:
    return [Chunk(table=c.tableName, key=c.key, encoded=c.encoded) for c in chunks]


class GrpcStoreServicer:
    """gRPC service implementation of ``grpc_store``.

    Translates request messages into core types, dispatches to one
    coordinator, and translates results and errors back.

    Attributes:
        writer: Index and chunk writes
        planner: Index queries and chunk reads
        deleter: Index deletes
        tables: Table lifecycle
    """

    def __init__(
        self,
        store: DocumentStore,
        max_in_flight: int = 16,
        page_size: int = 1000,
    ) -> None:
        """Initialize the servicer.

        Args:
            store: Shared document store handle
            max_in_flight: Maximum concurrent store operations per batch
            page_size: Maximum rows per streamed response message
        """
        self.writer = WriteCoordinator(store, max_in_flight=max_in_flight)
        self.planner = QueryPlanner(store, page_size=page_size)
        self.deleter = DeleteCoordinator(store, max_in_flight=max_in_flight)
        self.tables = TableManager(store)

    async def _abort(self, context: Any, method: str, error: StoreError) -> None:
        code = status_for(error)
        logger.error(
            f"{method} failed: {error}",
            extra={"method": method, "code": code.name, "table": error.table},
        )
        await context.abort(code, str(error))

    async def _abort_unexpected(self, context: Any, method: str, error: Exception) -> None:
        logger.error(
            f"{method} failed: {error}",
            exc_info=True,
            extra={"method": method, "code": grpc.StatusCode.INTERNAL.name},
        )
        await context.abort(grpc.StatusCode.INTERNAL, str(error))

    async def WriteIndex(self, request: Any, context: Any) -> Empty:
        try:
            await self.writer.write_index_batch(_index_entries(request.writes))
        except StoreError as e:
            await self._abort(context, "WriteIndex", e)
        except Exception as e:
            await self._abort_unexpected(context, "WriteIndex", e)
        return Empty()

    async def QueryIndex(self, request: Any, context: Any) -> AsyncIterator[Any]:
        try:
            query = IndexQuery(
                table=request.tableName,
                hash=request.hashValue,
                range_start=request.rangeValueStart,
                range_prefix=request.rangeValuePrefix,
                value_equal=request.valueEqual,
            )
            async with aclosing(self.planner.query_index(query)) as pages:
                async for page in pages:
                    yield messages.QueryIndexResponse(
                        rows=[messages.Row(rangeValue=r.range, value=r.value) for r in page]
                    )
        except StoreError as e:
            await self._abort(context, "QueryIndex", e)
        except Exception as e:
            await self._abort_unexpected(context, "QueryIndex", e)

    async def DeleteIndex(self, request: Any, context: Any) -> Empty:
        try:
            await self.deleter.delete_index_batch(_index_entries(request.deletes))
        except StoreError as e:
            await self._abort(context, "DeleteIndex", e)
        except Exception as e:
            await self._abort_unexpected(context, "DeleteIndex", e)
        return Empty()

    async def PutChunks(self, request: Any, context: Any) -> Empty:
        try:
            await self.writer.put_chunks(_chunks(request.chunks))
        except StoreError as e:
            await self._abort(context, "PutChunks", e)
        except Exception as e:
            await self._abort_unexpected(context, "PutChunks", e)
        return Empty()

    async def GetChunks(self, request: Any, context: Any) -> AsyncIterator[Any]:
        try:
            async with aclosing(self.planner.get_chunks(_chunks(request.chunks))) as pages:
                async for page in pages:
                    yield messages.GetChunksResponse(
                        chunks=[
                            messages.Chunk(encoded=c.encoded, key=c.key, tableName=c.table)
                            for c in page
                        ]
                    )
        except StoreError as e:
            await self._abort(context, "GetChunks", e)
        except Exception as e:
            await self._abort_unexpected(context, "GetChunks", e)

    async def DeleteChunks(self, request: Any, context: Any) -> Empty:
        try:
            await self.deleter.delete_chunks(request.chunkID)
        except StoreError as e:
            await self._abort(context, "DeleteChunks", e)
        except Exception as e:
            await self._abort_unexpected(context, "DeleteChunks", e)
        return Empty()

    async def ListTables(self, request: Any, context: Any) -> Any:
        try:
            names = await self.tables.list_tables()
        except StoreError as e:
            await self._abort(context, "ListTables", e)
            return messages.ListTablesResponse()
        except Exception as e:
            await self._abort_unexpected(context, "ListTables", e)
            return messages.ListTablesResponse()
        return messages.ListTablesResponse(tableNames=names)

    async def CreateTable(self, request: Any, context: Any) -> Empty:
        try:
            await self.tables.create_table(_table_desc(request.desc))
        except StoreError as e:
            await self._abort(context, "CreateTable", e)
        except Exception as e:
            await self._abort_unexpected(context, "CreateTable", e)
        return Empty()

    async def DeleteTable(self, request: Any, context: Any) -> Empty:
        try:
            await self.tables.delete_table(request.tableName)
        except StoreError as e:
            await self._abort(context, "DeleteTable", e)
        except Exception as e:
            await self._abort_unexpected(context, "DeleteTable", e)
        return Empty()

    async def DescribeTable(self, request: Any, context: Any) -> Any:
        try:
            status = await self.tables.describe_table(request.tableName)
        except Exception as e:
            await self._abort_unexpected(context, "DescribeTable", e)
            return messages.DescribeTableResponse()
        return messages.DescribeTableResponse(
            desc=messages.TableDesc(name=status.desc.name),
            isActive=status.is_active,
        )

    async def UpdateTable(self, request: Any, context: Any) -> Empty:
        try:
            await self.tables.update_table(
                _table_desc(request.current), _table_desc(request.expected)
            )
        except Exception as e:
            await self._abort_unexpected(context, "UpdateTable", e)
        return Empty()

    async def Stop(self, request: Any, context: Any) -> Empty:
        logger.info("Stop requested; nothing to release per call")
        return Empty()


def build_generic_handler(servicer: GrpcStoreServicer) -> grpc.GenericRpcHandler:
    """Build the generic handler registering every ``grpc_store`` method."""
    handlers = {}
    for method, (request_cls, response_cls, streaming) in messages.METHODS.items():
        behaviour = getattr(servicer, method)
        factory = (
            grpc.unary_stream_rpc_method_handler
            if streaming
            else grpc.unary_unary_rpc_method_handler
        )
        handlers[method] = factory(
            behaviour,
            request_deserializer=request_cls.FromString,
            response_serializer=response_cls.SerializeToString,
        )
    return grpc.method_handlers_generic_handler(messages.SERVICE_NAME, handlers)


class GrpcServer:
    """gRPC server wrapper for the Mongo gRPC store.

    This class manages the gRPC server lifecycle including:
    - Server initialization
    - Service registration
    - Graceful shutdown

    Example:
        >>> server = GrpcServer(servicer, port=6688)
        >>> await server.start()
        >>> # Server is now running
        >>> await server.stop()
    """

    def __init__(
        self,
        servicer: GrpcStoreServicer,
        host: str = "localhost",
        port: int = 6688,
        max_message_size: int = 64 * 1024 * 1024,
    ) -> None:
        """Initialize the gRPC server.

        Args:
            servicer: GrpcStoreServicer instance
            host: Host to bind to
            port: Port to listen on (0 picks a free port)
            max_message_size: Maximum message size in bytes
        """
        self.servicer = servicer
        self.host = host
        self.port = port
        self.max_message_size = max_message_size
        self._server: grpc_aio.Server | None = None
        self._running = False

    async def start(self) -> None:
        """Start the gRPC server.

        Raises:
            RuntimeError: If the address cannot be bound
        """
        if self._running:
            logger.warning("Server already running")
            return

        self._server = grpc_aio.server(
            options=[
                ("grpc.max_send_message_length", self.max_message_size),
                ("grpc.max_receive_message_length", self.max_message_size),
            ]
        )
        self._server.add_generic_rpc_handlers((build_generic_handler(self.servicer),))

        address = f"{self.host}:{self.port}"
        bound_port = self._server.add_insecure_port(address)
        if bound_port == 0:
            raise RuntimeError(f"Failed to bind gRPC server to {address}")
        self.port = bound_port

        await self._server.start()
        self._running = True
        logger.info(
            f"gRPC server listening on {self.host}:{self.port}",
            extra={"host": self.host, "port": self.port},
        )

    async def wait_for_termination(self) -> None:
        """Block until the server stops."""
        if self._server is not None:
            await self._server.wait_for_termination()

    async def stop(self, grace_period: float = 5.0) -> None:
        """Stop the gRPC server gracefully.

        Args:
            grace_period: Time to wait for pending RPCs to complete
        """
        if not self._running:
            return

        logger.info("Stopping gRPC server")
        self._running = False

        if self._server:
            await self._server.stop(grace_period)
            self._server = None

    @property
    def is_running(self) -> bool:
        """Whether the server is running."""
        return self._running
