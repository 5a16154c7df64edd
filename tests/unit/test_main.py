"""
Unit tests for the server entry point.

Tests cover:
- Logging setup for json and text formats
- Server start/stop without binding a socket
"""

import logging

import json_log_formatter
import pytest

from dbaas.privdb_server.config import ObservabilityConfig, ServerConfig, StorageConfig, StoreBackend
from dbaas.privdb_server.main import Server, setup_logging


@pytest.fixture
def restore_root_logger():
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield
    root.handlers = handlers
    root.setLevel(level)


class TestSetupLogging:
    """Tests for setup_logging."""

    def test_json_format(self, restore_root_logger):
        config = ServerConfig(observability=ObservabilityConfig(log_level="DEBUG", log_format="json"))

        setup_logging(config)

        root = logging.getLogger()
        assert root.level == logging.DEBUG
        assert isinstance(root.handlers[0].formatter, json_log_formatter.JSONFormatter)
        assert logging.getLogger("uvicorn.access").level == logging.WARNING

    def test_text_format(self, restore_root_logger):
        config = ServerConfig(observability=ObservabilityConfig(log_level="warning", log_format="text"))

        setup_logging(config)

        root = logging.getLogger()
        assert root.level == logging.WARNING
        assert not isinstance(root.handlers[0].formatter, json_log_formatter.JSONFormatter)


class TestServer:
    """Tests for the Server orchestrator."""

    def test_start_builds_app(self):
        server = Server(ServerConfig(storage=StorageConfig(backend=StoreBackend.MEMORY)))

        app = server.start()

        assert server.manager is not None
        assert any(route.path == "/health" for route in app.routes)
        server.stop()
        assert server.manager is None

    def test_start_creates_data_dir(self, tmp_path):
        data_dir = tmp_path / "nested" / "privdb"
        config = ServerConfig(
            storage=StorageConfig(backend=StoreBackend.SQLITE, data_dir=str(data_dir), wal_mode=False)
        )
        server = Server(config)

        server.start()

        assert (data_dir / "privileges.db").exists()
        server.stop()

    def test_serve_requires_start(self):
        server = Server(ServerConfig(storage=StorageConfig(backend=StoreBackend.MEMORY)))

        with pytest.raises(RuntimeError):
            server.serve()
