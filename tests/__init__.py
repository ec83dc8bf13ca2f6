"""
Mongo gRPC Store Test Suite.

This package contains:
- unit/: Unit tests (no external dependencies, in-memory store)
- integration/: Integration tests (gRPC servicer and a real grpc.aio server)
- e2e/: End-to-end tests (real MongoDB, opt-in)
"""
