"""
Unit tests for configuration loading.

Tests cover:
- Defaults
- Environment overrides
- Validation failures
"""

import logging

import pytest

from dbaas.privdb_server.config import (
    HttpConfig,
    ObservabilityConfig,
    ServerConfig,
    StorageConfig,
    StoreBackend,
)


class TestStorageConfig:
    """Tests for StorageConfig."""

    def test_defaults(self, monkeypatch):
        for var in ("PRIVDB_STORE_BACKEND", "DATA_DIR", "PRIVDB_DB_NAME", "SQLITE_WAL_MODE"):
            monkeypatch.delenv(var, raising=False)

        config = StorageConfig.from_env()

        assert config.backend == StoreBackend.SQLITE
        assert config.data_dir == "/var/lib/privdb"
        assert config.db_name == "privileges.db"
        assert config.wal_mode is True

    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("PRIVDB_STORE_BACKEND", "MEMORY")
        monkeypatch.setenv("DATA_DIR", "/tmp/privdb")
        monkeypatch.setenv("SQLITE_WAL_MODE", "false")
        monkeypatch.setenv("SQLITE_BUSY_TIMEOUT_MS", "250")

        config = StorageConfig.from_env()

        assert config.backend == StoreBackend.MEMORY
        assert config.data_dir == "/tmp/privdb"
        assert config.wal_mode is False
        assert config.busy_timeout_ms == 250

    def test_unknown_backend(self, monkeypatch):
        monkeypatch.setenv("PRIVDB_STORE_BACKEND", "postgres")

        with pytest.raises(ValueError, match="PRIVDB_STORE_BACKEND"):
            StorageConfig.from_env()


class TestHttpConfig:
    def test_cors_origins_split(self, monkeypatch):
        monkeypatch.setenv("HTTP_CORS_ORIGINS", "http://a.example, http://b.example,")
        monkeypatch.setenv("HTTP_PORT", "9000")

        config = HttpConfig.from_env()

        assert config.cors_origins == ("http://a.example", "http://b.example")
        assert config.port == 9000


class TestServerConfig:
    """Tests for ServerConfig."""

    def test_from_env_validates(self, monkeypatch, tmp_path):
        monkeypatch.setenv("PRIVDB_STORE_BACKEND", "sqlite")
        monkeypatch.setenv("DATA_DIR", str(tmp_path))
        monkeypatch.setenv("LOG_FORMAT", "text")

        config = ServerConfig.from_env()

        assert config.storage.data_dir == str(tmp_path)
        assert config.observability.log_format == "text"

    def test_invalid_log_format(self):
        config = ServerConfig(observability=ObservabilityConfig(log_format="xml"))

        with pytest.raises(ValueError, match="LOG_FORMAT"):
            config.validate()

    def test_invalid_port(self):
        config = ServerConfig(
            storage=StorageConfig(backend=StoreBackend.MEMORY),
            http=HttpConfig(port=70000),
        )

        with pytest.raises(ValueError, match="HTTP_PORT"):
            config.validate()

    def test_missing_data_dir_warns(self, caplog, tmp_path):
        config = ServerConfig(storage=StorageConfig(data_dir=str(tmp_path / "missing")))

        with caplog.at_level(logging.WARNING):
            config.validate()

        assert "Data directory does not exist" in caplog.text

    def test_log_config(self, caplog):
        config = ServerConfig(storage=StorageConfig(backend=StoreBackend.MEMORY))

        with caplog.at_level(logging.INFO):
            config.log_config()

        record = caplog.records[-1]
        assert record.getMessage() == "Server configuration loaded"
        assert record.store_backend == "memory"
        assert record.data_dir is None
