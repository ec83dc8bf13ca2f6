"""
Unit tests for command line parsing and logging setup.
"""

import logging

import json_log_formatter
import pytest

from grpcstore.mongo_store.config import ObservabilityConfig, ServerConfig
from grpcstore.mongo_store.main import build_arg_parser, load_config, setup_logging


class TestArgParser:
    """Tests for flag parsing."""

    def test_single_dash_with_equals(self):
        args = build_arg_parser().parse_args(
            ["-mongo-store.port=27018", "-mongo-store.addresses=db1", "-log.level=DEBUG"]
        )

        assert args.port == 27018
        assert args.addresses == "db1"
        assert args.log_level == "DEBUG"

    def test_double_dash_with_separate_value(self):
        args = build_arg_parser().parse_args(["--grpc.http_listen_port", "7001"])

        assert args.listen_port == 7001

    def test_unset_flags_are_none(self):
        args = build_arg_parser().parse_args([])

        assert args.config_file is None
        assert args.expand_env is False
        assert args.port is None
        assert args.listen_port is None

    def test_unknown_flag_exits(self):
        with pytest.raises(SystemExit):
            build_arg_parser().parse_args(["-mongo-store.shards=3"])


class TestLoadConfig:
    """Tests for layered configuration loading."""

    def test_flags_override_yaml_and_env(self, clean_env, tmp_path):
        clean_env.delenv("DB_USER", raising=False)
        clean_env.setenv("MONGO_DATABASE", "from_env")
        clean_env.setenv("MONGO_PORT", "27001")
        path = tmp_path / "store.yaml"
        path.write_text("mongo:\n  port: 27002\n  username: ${DB_USER:cortex}\n")

        config = load_config(
            [
                f"-config.file={path}",
                "-config.expand-env",
                "-mongo-store.port=27003",
                "-mongo-store.password=secret",
            ]
        )

        assert config.mongo.database == "from_env"
        assert config.mongo.port == 27003
        assert config.mongo.username == "cortex"
        assert config.mongo.password == "secret"

    def test_listen_port_keeps_host(self, clean_env):
        clean_env.setenv("GRPC_BIND", "0.0.0.0:6688")

        config = load_config(["-grpc.http_listen_port=9095"])

        assert config.grpc.bind_address == "0.0.0.0:9095"

    def test_invalid_result_rejected(self, clean_env):
        with pytest.raises(ValueError):
            load_config(["-mongo-store.password=secret"])


class TestSetupLogging:
    """Tests for setup_logging."""

    @pytest.fixture(autouse=True)
    def restore_root_logger(self):
        root = logging.getLogger()
        handlers, level = list(root.handlers), root.level
        yield
        root.handlers = handlers
        root.setLevel(level)

    def test_json_format(self):
        setup_logging(ServerConfig(observability=ObservabilityConfig("DEBUG", "json")))

        root = logging.getLogger()
        assert root.level == logging.DEBUG
        assert isinstance(root.handlers[0].formatter, json_log_formatter.JSONFormatter)
        assert logging.getLogger("pymongo").level == logging.WARNING

    def test_text_format(self):
        setup_logging(ServerConfig(observability=ObservabilityConfig("warning", "text")))

        root = logging.getLogger()
        assert root.level == logging.WARNING
        assert not isinstance(root.handlers[0].formatter, json_log_formatter.JSONFormatter)
