"""
Core translation layer between storage coordinates and documents.

This module contains the only decision logic of the server:
- documents: the {hash, range, value} shape and its encoding
- writer: insert-or-replace of index entries and chunks
- query: filter construction and paged result streaming
- deleter: removal of index entries
- tables: table lifecycle

Invariants:
    - Coordinators receive their store handle at construction
    - Batches fan out with a bounded number of store operations in flight
    - Nothing here retries; failures surface to the caller

How to change safely:
    - Filter changes must keep the six predicate combinations distinct
    - Keep the stored range encoding order-preserving
"""

from .deleter import DeleteCoordinator
from .documents import (
    Chunk,
    Document,
    IndexEntry,
    IndexQuery,
    Row,
    TableDesc,
    TableStatus,
    decode_range,
    encode_range,
    from_document,
    to_document,
)
from .query import QueryPlanner, build_query_filter
from .tables import TableManager
from .writer import WriteCoordinator

__all__ = [
    # Mapping
    "Document",
    "IndexEntry",
    "IndexQuery",
    "Row",
    "Chunk",
    "TableDesc",
    "TableStatus",
    "to_document",
    "from_document",
    "encode_range",
    "decode_range",
    # Coordinators
    "WriteCoordinator",
    "QueryPlanner",
    "build_query_filter",
    "DeleteCoordinator",
    "TableManager",
]
