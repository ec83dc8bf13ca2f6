"""
E2E test fixtures for the Mongo gRPC store.

These tests require a running MongoDB. Connection settings come from the
usual MONGO_* environment variables, e.g.:

    docker run -d -p 27017:27017 mongo:7
    MONGO_STORE_E2E_TESTS=1 pytest tests/e2e
"""

import uuid

import pytest

from grpcstore.mongo_store.config import MongoConfig


@pytest.fixture
def mongo_config() -> MongoConfig:
    """MongoDB settings for an isolated test database."""
    config = MongoConfig.from_env()
    return MongoConfig(
        addresses=config.addresses,
        port=config.port,
        database=f"e2e_{uuid.uuid4().hex[:8]}",
        username=config.username,
        password=config.password,
        auth_source=config.auth_source,
        server_selection_timeout_ms=5000,
    )


@pytest.fixture
def table_name() -> str:
    """Generate unique table name for test isolation."""
    return f"index_{uuid.uuid4().hex[:8]}"
