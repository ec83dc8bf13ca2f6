"""
Query planner: filter construction and paged result streaming.

A query scans one hash of one table, optionally narrowed by a range start,
a range prefix and a value equality. Results are pulled from the store
cursor and handed out in pages, so a caller streaming them never holds
more than one page per call in memory.

Filter construction (first matching row wins):

    prefix  start  value | filter
    ------  -----  ----- | -------------------------------------------------
    yes     -      no    | hash, lower <= range < prefix+0xFF
    yes     -      yes   | hash, lower <= range < prefix+0xFF, value
    no      yes    no    | hash, range >= start
    no      yes    yes   | hash, range >= start, value
    no      no     no    | hash
    no      no     yes   | hash, value

where lower = max(start, prefix).

Invariants:
    - Results come in store-native order, no sort is applied
    - A cursor or decode error aborts the query
    - Every non-failing query yields at least one (possibly empty) page
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator

from ..store.base import Document as StoredDocument
from ..store.base import DocumentStore, StoreError
from .documents import (
    HASH_FIELD,
    RANGE_FIELD,
    VALUE_FIELD,
    Chunk,
    IndexQuery,
    Row,
    encode_range,
    from_document,
)

logger = logging.getLogger(__name__)

PREFIX_SENTINEL = b"\xff"


def prefix_upper_bound(prefix: bytes) -> bytes:
    """Exclusive upper bound of all ranges starting with ``prefix``.

    Ranges continuing the prefix with a 0xFF byte sort at or above the
    bound and are not matched.
    """
    return bytes(prefix) + PREFIX_SENTINEL


def build_query_filter(query: IndexQuery) -> StoredDocument:
    """Build the store filter for an index query."""
    query_filter: StoredDocument = {HASH_FIELD: query.hash}

    if query.range_prefix:
        lower = max(bytes(query.range_start), bytes(query.range_prefix))
        query_filter[RANGE_FIELD] = {
            "$gte": encode_range(lower),
            "$lt": encode_range(prefix_upper_bound(query.range_prefix)),
        }
    elif query.range_start:
        query_filter[RANGE_FIELD] = {"$gte": encode_range(query.range_start)}

    if query.value_equal:
        query_filter[VALUE_FIELD] = bytes(query.value_equal)

    return query_filter


class QueryPlanner:
    """Runs index queries and chunk lookups against a document store.

    Attributes:
        store: Shared document store handle
        page_size: Maximum rows (or chunks) per yielded page

    Example:
        >>> planner = QueryPlanner(store, page_size=500)
        >>> async for page in planner.query_index(IndexQuery("index_1", "h", range_prefix=b"b")):
        ...     for row in page:
        ...         print(row.range, row.value)
    """

    def __init__(self, store: DocumentStore, page_size: int = 1000) -> None:
        self.store = store
        self.page_size = page_size

    async def query_index(self, query: IndexQuery) -> AsyncIterator[list[Row]]:
        """Yield pages of rows matching ``query``.

        Raises:
            StoreError: On cursor failure
            StoreDecodeError: On a malformed stored document
        """
        query_filter = build_query_filter(query)
        logger.debug(
            "Querying index",
            extra={"table": query.table, "hash": query.hash, "filter_fields": sorted(query_filter)},
        )

        page: list[Row] = []
        emitted = False
        cursor = self.store.find(query.table, query_filter, batch_size=self.page_size)
        try:
            async for raw in cursor:
                page.append(Row.from_document(raw))
                if len(page) >= self.page_size:
                    yield page
                    emitted = True
                    page = []
        except StoreError as e:
            logger.error(
                f"Failed to query index: {e}",
                extra={"table": query.table, "hash": query.hash},
            )
            raise
        finally:
            await cursor.aclose()

        if page or not emitted:
            yield page

    async def query_index_rows(self, query: IndexQuery) -> list[Row]:
        """Collect all rows of a query. Memory grows with the result set."""
        rows: list[Row] = []
        async for page in self.query_index(query):
            rows.extend(page)
        return rows

    async def get_chunks(self, chunks: list[Chunk]) -> AsyncIterator[list[Chunk]]:
        """Yield pages of the requested chunks with their stored payloads.

        A chunk without a stored document comes back with an empty payload.

        Raises:
            StoreError: On cursor failure
            StoreDecodeError: On a malformed stored document
        """
        logger.info("Performing get chunks", extra={"chunks": len(chunks)})

        page: list[Chunk] = []
        emitted = False
        for requested in chunks:
            found = requested
            cursor = self.store.find(requested.table, requested.match(), batch_size=1)
            try:
                async for raw in cursor:
                    document = from_document(raw)
                    found = Chunk(table=requested.table, key=document.hash, encoded=document.value)
            except StoreError as e:
                logger.error(
                    f"Failed to get chunk: {e}",
                    extra={"table": requested.table, "hash": requested.key},
                )
                raise
            finally:
                await cursor.aclose()

            page.append(found)
            if len(page) >= self.page_size:
                yield page
                emitted = True
                page = []

        if page or not emitted:
            yield page
