"""
Shared fixtures for unit tests.
"""

import pytest

CONFIG_ENV_VARS = [
    "MONGO_ADDRESSES",
    "MONGO_PORT",
    "MONGO_DATABASE",
    "MONGO_USERNAME",
    "MONGO_PASSWORD",
    "MONGO_AUTH_SOURCE",
    "MONGO_TLS",
    "MONGO_TLS_CA_FILE",
    "MONGO_TLS_ALLOW_INVALID_HOSTNAMES",
    "MONGO_CONNECT_TIMEOUT_MS",
    "MONGO_TIMEOUT_MS",
    "MONGO_SERVER_SELECTION_TIMEOUT_MS",
    "GRPC_BIND",
    "GRPC_MAX_MESSAGE_SIZE",
    "GRPC_GRACE_PERIOD_SECONDS",
    "STORE_MAX_IN_FLIGHT",
    "STORE_PAGE_SIZE",
    "LOG_LEVEL",
    "LOG_FORMAT",
]


@pytest.fixture
def clean_env(monkeypatch):
    """Remove every configuration variable from the environment."""
    for name in CONFIG_ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    return monkeypatch
