"""
Document store abstraction for the Mongo gRPC store.

This module provides a pluggable document store interface supporting:
- MongoDB (production)
- In-memory (for testing)

Coordinators receive one store handle at construction and never look it
up globally.

Invariants:
    - Duplicate-key conflicts are reported as WriteOutcome.conflict()
    - All backend failures surface as StoreError subclasses
    - Query results are yielded lazily, never fully buffered by the backend

How to change safely:
    - New backends must implement the DocumentStore protocol
    - Run the unit suite against every backend that gains a feature
"""

from .base import (
    ASCENDING,
    DESCENDING,
    Document,
    DocumentStore,
    InvalidRequestError,
    NotSupportedError,
    StoreConnectionError,
    StoreDecodeError,
    StoreError,
    StoreTimeoutError,
    WriteOutcome,
    WriteStatus,
)
from .memory import InMemoryDocumentStore
from .mongo import MongoDocumentStore

__all__ = [
    # Protocol and types
    "DocumentStore",
    "Document",
    "WriteOutcome",
    "WriteStatus",
    "ASCENDING",
    "DESCENDING",
    # Errors
    "StoreError",
    "StoreConnectionError",
    "StoreTimeoutError",
    "StoreDecodeError",
    "InvalidRequestError",
    "NotSupportedError",
    # Implementations
    "MongoDocumentStore",
    "InMemoryDocumentStore",
]
