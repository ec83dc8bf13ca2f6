"""
Mongo gRPC Store - index and chunk storage over gRPC, backed by MongoDB.

This package implements the remote storage contract of a composite-key
index store and an overwrite blob store:
- Index entries addressed by (table, hash, range)
- Chunks addressed by (table, key), range pinned to an empty sentinel
- One MongoDB collection per table, one document per entry

Architecture:
    ┌─────────────┐     ┌─────────────┐     ┌──────────────────┐
    │   Caller    │────▶│    gRPC     │────▶│   Coordinators   │
    │  (cortex)   │     │  Servicer   │     │ write/query/del  │
    └─────────────┘     └─────────────┘     └────────┬─────────┘
                                                     │
                                                     ▼
                                            ┌──────────────────┐
                                            │  DocumentStore   │
                                            │ (MongoDB / mem)  │
                                            └──────────────────┘

Invariants:
    - (hash, range) is unique per table, enforced by a unique index
    - The adapter keeps no state of its own beyond one store handle
    - Duplicate-key conflicts on write become replaces, never errors
    - DeleteChunks is not supported

How to change safely:
    - Keep the stored document shape {hash, range, value} stable
    - Range encoding changes require rewriting existing collections
    - New RPCs must not change the semantics of existing ones
"""

from ._version import __version__

__all__ = ["__version__"]
