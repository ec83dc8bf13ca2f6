"""
Configuration management for the Mongo gRPC store.

Configuration comes from three layers, later ones winning:
    1. Environment variables (``ServerConfig.from_env``)
    2. A YAML file (``-config.file``), optionally with ``${VAR}`` expansion
    3. Command line flags (applied through ``ServerConfig.with_overrides``)

Invariants:
    - All settings have sensible defaults for local development
    - A database name is always required
    - Secrets are never logged or exposed in error messages

How to change safely:
    - Add new settings with defaults that maintain backward compatibility
    - Every new setting needs an env var, a YAML key and a test
    - YAML parsing is strict: renaming a key breaks existing config files
"""

from __future__ import annotations

import dataclasses
import logging
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

logger = logging.getLogger(__name__)

_ENV_REFERENCE = re.compile(r"\$\{([^}]*)\}|\$([A-Za-z_][A-Za-z0-9_]*)")


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() == "true"


@dataclass(frozen=True)
class MongoConfig:
    """MongoDB connection configuration.

    Attributes:
        addresses: Host (or comma-separated hosts) of the MongoDB deployment
        port: Port MongoDB listens on
        database: Database holding one collection per table
        username: Username for authentication (optional)
        password: Password for authentication (optional)
        auth_source: Database to authenticate against
        tls: Whether to connect over TLS
        tls_ca_file: Path to the CA bundle used to verify the server
        tls_allow_invalid_hostnames: Skip server hostname verification
        connect_timeout_ms: Timeout for establishing a socket
        timeout_ms: Client-side timeout applied to every operation (0 = none)
        server_selection_timeout_ms: How long to wait for a usable server
    """

    addresses: str = "localhost"
    port: int = 27017
    database: str = "cortex"
    username: str | None = None
    password: str | None = None
    auth_source: str = "admin"
    tls: bool = False
    tls_ca_file: str | None = None
    tls_allow_invalid_hostnames: bool = False
    connect_timeout_ms: int = 10000
    timeout_ms: int = 0
    server_selection_timeout_ms: int = 30000

    @property
    def has_credentials(self) -> bool:
        """Whether authentication should be attempted."""
        return bool(self.username or self.password)

    @classmethod
    def from_env(cls) -> MongoConfig:
        """Load configuration from environment variables."""
        return cls(
            addresses=os.getenv("MONGO_ADDRESSES", "localhost"),
            port=int(os.getenv("MONGO_PORT", "27017")),
            database=os.getenv("MONGO_DATABASE", "cortex"),
            username=os.getenv("MONGO_USERNAME") or None,
            password=os.getenv("MONGO_PASSWORD") or None,
            auth_source=os.getenv("MONGO_AUTH_SOURCE", "admin"),
            tls=_env_bool("MONGO_TLS", "false"),
            tls_ca_file=os.getenv("MONGO_TLS_CA_FILE") or None,
            tls_allow_invalid_hostnames=_env_bool("MONGO_TLS_ALLOW_INVALID_HOSTNAMES", "false"),
            connect_timeout_ms=int(os.getenv("MONGO_CONNECT_TIMEOUT_MS", "10000")),
            timeout_ms=int(os.getenv("MONGO_TIMEOUT_MS", "0")),
            server_selection_timeout_ms=int(
                os.getenv("MONGO_SERVER_SELECTION_TIMEOUT_MS", "30000")
            ),
        )


@dataclass(frozen=True)
class GrpcConfig:
    """gRPC server configuration.

    Attributes:
        bind_address: Address to bind gRPC server (host:port)
        max_message_size: Maximum message size in bytes, both directions
        grace_period_seconds: Time given to in-flight RPCs on shutdown
    """

    bind_address: str = "localhost:6688"
    max_message_size: int = 64 * 1024 * 1024  # 64MB
    grace_period_seconds: float = 5.0

    @property
    def host(self) -> str:
        return self.bind_address.rsplit(":", 1)[0]

    @property
    def port(self) -> int:
        return int(self.bind_address.rsplit(":", 1)[1])

    @classmethod
    def from_env(cls) -> GrpcConfig:
        """Load configuration from environment variables."""
        return cls(
            bind_address=os.getenv("GRPC_BIND", "localhost:6688"),
            max_message_size=int(os.getenv("GRPC_MAX_MESSAGE_SIZE", str(64 * 1024 * 1024))),
            grace_period_seconds=float(os.getenv("GRPC_GRACE_PERIOD_SECONDS", "5.0")),
        )


@dataclass(frozen=True)
class StoreConfig:
    """Request processing limits.

    Attributes:
        max_in_flight: Maximum concurrent store operations per batch
        page_size: Maximum rows per streamed response message
    """

    max_in_flight: int = 16
    page_size: int = 1000

    @classmethod
    def from_env(cls) -> StoreConfig:
        """Load configuration from environment variables."""
        return cls(
            max_in_flight=int(os.getenv("STORE_MAX_IN_FLIGHT", "16")),
            page_size=int(os.getenv("STORE_PAGE_SIZE", "1000")),
        )


@dataclass(frozen=True)
class ObservabilityConfig:
    """Logging configuration.

    Attributes:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        log_format: Log format (json, text)
    """

    log_level: str = "INFO"
    log_format: str = "json"

    @classmethod
    def from_env(cls) -> ObservabilityConfig:
        """Load configuration from environment variables."""
        return cls(
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            log_format=os.getenv("LOG_FORMAT", "json"),
        )


@dataclass(frozen=True)
class ServerConfig:
    """Complete server configuration.

    Attributes:
        mongo: MongoDB connection configuration
        grpc: gRPC server configuration
        store: Batch and streaming limits
        observability: Logging configuration
    """

    mongo: MongoConfig = field(default_factory=MongoConfig)
    grpc: GrpcConfig = field(default_factory=GrpcConfig)
    store: StoreConfig = field(default_factory=StoreConfig)
    observability: ObservabilityConfig = field(default_factory=ObservabilityConfig)

    @classmethod
    def from_env(cls, *, validate: bool = True) -> ServerConfig:
        """Load complete configuration from environment variables.

        Args:
            validate: Whether to validate before returning

        Returns:
            ServerConfig with all sections populated from environment.

        Raises:
            ValueError: If configuration is invalid.
        """
        config = cls(
            mongo=MongoConfig.from_env(),
            grpc=GrpcConfig.from_env(),
            store=StoreConfig.from_env(),
            observability=ObservabilityConfig.from_env(),
        )
        if validate:
            config.validate()
        return config

    @classmethod
    def from_yaml(
        cls,
        path: str | Path,
        expand_env: bool = False,
        base: ServerConfig | None = None,
    ) -> ServerConfig:
        """Load configuration from a YAML file.

        Sections missing from the file keep the values of ``base``
        (environment-derived config when not given).

        Args:
            path: YAML file path
            expand_env: Replace ``${VAR}`` references before parsing
            base: Configuration the file is layered over

        Raises:
            ValueError: If the file cannot be read, parsed, or has unknown keys
        """
        try:
            text = Path(path).read_text(encoding="utf-8")
        except OSError as e:
            raise ValueError(f"Error reading config file {path}: {e}") from e

        if expand_env:
            text = expand_env_references(text)

        try:
            raw = yaml.safe_load(text) or {}
        except yaml.YAMLError as e:
            raise ValueError(f"Error parsing config file {path}: {e}") from e

        if not isinstance(raw, dict):
            raise ValueError(f"Config file {path} must contain a mapping at the top level")

        config = base if base is not None else cls.from_env(validate=False)
        sections = {f.name for f in dataclasses.fields(cls)}
        unknown = set(raw) - sections
        if unknown:
            raise ValueError(f"Unknown config sections in {path}: {', '.join(sorted(unknown))}")

        updates: dict[str, Any] = {}
        for name, values in raw.items():
            if values is None:
                continue
            if not isinstance(values, dict):
                raise ValueError(f"Config section '{name}' must be a mapping")
            updates[name] = _replace_strict(getattr(config, name), values, name)

        return dataclasses.replace(config, **updates)

    def with_overrides(self, **sections: dict[str, Any]) -> ServerConfig:
        """Return a copy with per-section values replaced.

        ``None`` values are ignored so unset flags leave the config alone.

        Example:
            >>> config.with_overrides(mongo={"port": 27018})
        """
        updates: dict[str, Any] = {}
        for name, values in sections.items():
            values = {k: v for k, v in values.items() if v is not None}
            if values:
                updates[name] = _replace_strict(getattr(self, name), values, name)
        return dataclasses.replace(self, **updates) if updates else self

    def validate(self) -> None:
        """Validate configuration consistency.

        Raises:
            ValueError: If configuration is invalid.
        """
        if not self.mongo.database:
            raise ValueError("MONGO_DATABASE is required")
        if not self.mongo.addresses:
            raise ValueError("MONGO_ADDRESSES is required")
        if not 0 < self.mongo.port < 65536:
            raise ValueError(f"Invalid MongoDB port: {self.mongo.port}")
        if self.mongo.password and not self.mongo.username:
            raise ValueError("MONGO_PASSWORD is set but MONGO_USERNAME is empty")

        try:
            grpc_port = self.grpc.port
        except (IndexError, ValueError):
            raise ValueError(f"Invalid GRPC_BIND '{self.grpc.bind_address}', expected host:port")
        if not 0 <= grpc_port < 65536:
            raise ValueError(f"Invalid gRPC listen port: {grpc_port}")

        if self.store.max_in_flight < 1:
            raise ValueError("STORE_MAX_IN_FLIGHT must be at least 1")
        if self.store.page_size < 1:
            raise ValueError("STORE_PAGE_SIZE must be at least 1")

    def log_config(self) -> None:
        """Log configuration (redacting secrets)."""
        logger.info(
            "Server configuration loaded",
            extra={
                "mongo_addresses": self.mongo.addresses,
                "mongo_port": self.mongo.port,
                "mongo_database": self.mongo.database,
                "mongo_auth": self.mongo.has_credentials,
                "mongo_tls": self.mongo.tls,
                "grpc_bind": self.grpc.bind_address,
                "max_in_flight": self.store.max_in_flight,
                "page_size": self.store.page_size,
                "log_level": self.observability.log_level,
            },
        )


def _replace_strict(section: Any, values: dict[str, Any], name: str) -> Any:
    """Replace fields of a section dataclass, rejecting unknown keys."""
    known = {f.name: f for f in dataclasses.fields(section)}
    unknown = set(values) - set(known)
    if unknown:
        raise ValueError(f"Unknown keys in config section '{name}': {', '.join(sorted(unknown))}")

    coerced = {}
    for key, value in values.items():
        default = getattr(section, key)
        # Expanded env references arrive as strings
        if isinstance(default, bool) and isinstance(value, str):
            value = value.lower() == "true"
        elif isinstance(default, int) and not isinstance(default, bool) and isinstance(value, str):
            value = int(value)
        elif isinstance(default, float) and isinstance(value, (str, int)):
            value = float(value)
        coerced[key] = value
    return dataclasses.replace(section, **coerced)


def expand_env_references(text: str) -> str:
    """Replace ``${VAR}`` or ``$VAR`` with values from the environment.

    The replacement is case-sensitive. References to undefined variables
    are replaced by the empty string. A default value can be given with
    ``${VAR:default value}``; it is used when VAR is unset or empty.
    """

    def substitute(match: re.Match[str]) -> str:
        reference = match.group(1) if match.group(1) is not None else match.group(2)
        key, sep, default = reference.partition(":")
        value = os.getenv(key, "")
        if not value and sep:
            value = default
        return value

    return _ENV_REFERENCE.sub(substitute, text)
