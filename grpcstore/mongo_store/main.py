"""
Mongo gRPC Store - Main entry point.

This module starts the server with all components:
- MongoDB session (must succeed before anything listens)
- gRPC server speaking the grpc_store protocol

Usage:
    python -m grpcstore.mongo_store.main -config.file=store.yaml -config.expand-env

Configuration comes from environment variables, an optional YAML file and
command line flags. See config.py for all available settings.

Invariants:
    - The server refuses to start without a working MongoDB session
    - Graceful shutdown lets in-flight RPCs finish within the grace period
    - One store handle is shared by every coordinator

How to change safely:
    - Keep flag names stable; deployments pass them verbatim
    - Test shutdown sequence thoroughly
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import signal
import sys
from collections.abc import Sequence
from typing import Any

import json_log_formatter

from .api import GrpcServer, GrpcStoreServicer
from .config import ServerConfig
from .store import DocumentStore, MongoDocumentStore, StoreConnectionError

logger = logging.getLogger(__name__)


def setup_logging(config: ServerConfig) -> None:
    """Configure logging based on configuration.

    Args:
        config: Server configuration
    """
    level = getattr(logging, config.observability.log_level.upper(), logging.INFO)

    if config.observability.log_format == "json":
        formatter: logging.Formatter = json_log_formatter.JSONFormatter()
    else:
        formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    handler = logging.StreamHandler()
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers = [handler]

    # Reduce noise from libraries
    logging.getLogger("pymongo").setLevel(logging.WARNING)
    logging.getLogger("grpc").setLevel(logging.WARNING)


def build_arg_parser() -> argparse.ArgumentParser:
    """Build the command line parser.

    Flags accept one or two leading dashes, so ``-mongo-store.port=27018``
    and ``--mongo-store.port 27018`` are equivalent.
    """
    parser = argparse.ArgumentParser(
        prog="mongo-store",
        description="gRPC index and chunk store backed by MongoDB",
        allow_abbrev=False,
    )

    def flag(name: str, **kwargs: Any) -> None:
        parser.add_argument(f"-{name}", f"--{name}", **kwargs)

    flag("config.file", dest="config_file", help="YAML configuration file to load")
    flag(
        "config.expand-env",
        dest="expand_env",
        action="store_true",
        help="Expand ${VAR} and ${VAR:default} references in the configuration file",
    )
    flag("mongo-store.addresses", dest="addresses", help="Host address of MongoDB")
    flag("mongo-store.port", dest="port", type=int, help="Port that MongoDB is running on")
    flag("mongo-store.database", dest="database", help="Database to use in MongoDB")
    flag("mongo-store.username", dest="username", help="Username to authenticate with")
    flag("mongo-store.password", dest="password", help="Password to authenticate with")
    flag(
        "grpc.http_listen_port",
        dest="listen_port",
        type=int,
        help="Port on which the gRPC store should listen",
    )
    flag("log.level", dest="log_level", help="Logging level (DEBUG, INFO, WARNING, ERROR)")
    return parser


def load_config(argv: Sequence[str] | None = None) -> ServerConfig:
    """Resolve configuration from environment, YAML file and flags.

    Raises:
        ValueError: If the resulting configuration is invalid
    """
    args = build_arg_parser().parse_args(argv)

    config = ServerConfig.from_env(validate=False)
    if args.config_file:
        config = ServerConfig.from_yaml(args.config_file, expand_env=args.expand_env, base=config)

    bind_address = None
    if args.listen_port is not None:
        bind_address = f"{config.grpc.host}:{args.listen_port}"

    config = config.with_overrides(
        mongo={
            "addresses": args.addresses,
            "port": args.port,
            "database": args.database,
            "username": args.username,
            "password": args.password,
        },
        grpc={"bind_address": bind_address},
        observability={"log_level": args.log_level},
    )
    config.validate()
    return config


class Server:
    """Mongo gRPC store orchestrator.

    Manages the lifecycle of all server components:
    - MongoDB session
    - gRPC server

    Attributes:
        config: Server configuration
        store: Document store handle
        servicer: gRPC service implementation

    Example:
        >>> server = Server()
        >>> await server.start()
        >>> # Server is running
        >>> await server.stop()
    """

    def __init__(
        self,
        config: ServerConfig | None = None,
        store: DocumentStore | None = None,
    ) -> None:
        """Initialize the server.

        Args:
            config: Optional server configuration (loaded from env if not provided)
            store: Optional store (a MongoDB store is built from config otherwise)
        """
        self.config = config or ServerConfig.from_env()
        self.store: DocumentStore = store or MongoDocumentStore(self.config.mongo)
        self.servicer: GrpcStoreServicer | None = None
        self.grpc_server: GrpcServer | None = None
        self._running = False
        self._started = asyncio.Event()
        self._shutdown_event = asyncio.Event()

    async def start(self) -> None:
        """Start the server and block until shutdown is requested.

        Raises:
            StoreConnectionError: If MongoDB cannot be reached
        """
        if self._running:
            logger.warning("Server already running")
            return

        logger.info("Starting Mongo gRPC store")
        self.config.log_config()

        try:
            await self.store.connect()

            self.servicer = GrpcStoreServicer(
                self.store,
                max_in_flight=self.config.store.max_in_flight,
                page_size=self.config.store.page_size,
            )
            self.grpc_server = GrpcServer(
                servicer=self.servicer,
                host=self.config.grpc.host,
                port=self.config.grpc.port,
                max_message_size=self.config.grpc.max_message_size,
            )
            await self.grpc_server.start()

            self._running = True
            self._started.set()
            logger.info("Mongo gRPC store started successfully")

            await self._shutdown_event.wait()

        except Exception as e:
            logger.error(f"Server startup failed: {e}", exc_info=True)
            # Release partially started components
            self._running = True
            await self.stop()
            raise

    async def wait_started(self) -> None:
        """Block until start() has brought every component up."""
        await self._started.wait()

    async def stop(self) -> None:
        """Stop the server gracefully."""
        if not self._running:
            return

        logger.info("Stopping Mongo gRPC store")

        if self.grpc_server:
            await self.grpc_server.stop(self.config.grpc.grace_period_seconds)

        await self.store.close()

        self._running = False
        logger.info("Mongo gRPC store stopped")

    def request_shutdown(self) -> None:
        """Request graceful shutdown."""
        self._shutdown_event.set()


def main(argv: Sequence[str] | None = None) -> None:
    """Main entry point."""
    try:
        config = load_config(argv)
    except ValueError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(1)

    setup_logging(config)

    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)

    server = Server(config)

    def handle_signal(sig: int) -> None:
        logger.info(f"Received signal {sig}, initiating shutdown")
        server.request_shutdown()

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, handle_signal, sig)

    exit_code = 0
    try:
        loop.run_until_complete(server.start())
    except StoreConnectionError as e:
        print(f"Failed to create storage client: {e}", file=sys.stderr)
        exit_code = 1
    except KeyboardInterrupt:
        pass
    finally:
        loop.run_until_complete(server.stop())
        loop.close()

    if exit_code:
        sys.exit(exit_code)


if __name__ == "__main__":
    main()
