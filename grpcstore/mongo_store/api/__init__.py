"""
API module for the Mongo gRPC store.

This module provides the external interface:
- gRPC server speaking the grpc_store protocol
- An async client for the same protocol

Invariants:
    - Request fields are interpreted, never reinterpreted per caller
    - Store errors become gRPC status codes

How to change safely:
    - gRPC changes must be backward compatible
    - Add new RPC methods, don't modify existing ones
"""

from .client import GrpcStoreClient
from .grpc_server import GrpcServer, GrpcStoreServicer, build_generic_handler, status_for

__all__ = [
    "GrpcServer",
    "GrpcStoreServicer",
    "GrpcStoreClient",
    "build_generic_handler",
    "status_for",
]
