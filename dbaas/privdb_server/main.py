"""
PrivDB Server - Main entry point.

This module starts the PrivDB admin server:
- Record store (memory or SQLite, per PRIVDB_STORE_BACKEND)
- Privilege manager on top of it
- FastAPI admin API served by uvicorn

Usage:
    python -m dbaas.privdb_server.main

Configuration is entirely via environment variables.
See config.py for all available settings.

Invariants:
    - The record store is open before the HTTP server accepts requests
    - The record store is closed on shutdown, even after a failure

How to change safely:
    - Keep setup_logging idempotent; tests call it more than once
"""

from __future__ import annotations

import logging
import sys
from pathlib import Path

import json_log_formatter
import uvicorn
from fastapi import FastAPI

from .api import create_app
from .config import ServerConfig, StoreBackend
from .privileges import PrivilegeManager

logger = logging.getLogger(__name__)


def setup_logging(config: ServerConfig) -> None:
    """Configure logging based on configuration.

    Args:
        config: Server configuration
    """
    level = getattr(logging, config.observability.log_level.upper(), logging.INFO)

    formatter: logging.Formatter
    if config.observability.log_format == "json":
        formatter = json_log_formatter.JSONFormatter()
    else:
        formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    handler = logging.StreamHandler()
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers = [handler]

    # Reduce noise from libraries
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)


class Server:
    """PrivDB Server orchestrator.

    Attributes:
        config: Server configuration
        manager: Privilege manager (set by start())
        app: FastAPI application (set by start())

    Example:
        >>> server = Server()
        >>> server.start()
        >>> server.serve()  # blocks until shutdown
        >>> server.stop()
    """

    def __init__(self, config: ServerConfig | None = None) -> None:
        self.config = config or ServerConfig.from_env()
        self.manager: PrivilegeManager | None = None
        self.app: FastAPI | None = None

    def start(self) -> FastAPI:
        """Open the record store and build the HTTP application."""
        logger.info("Starting PrivDB server")
        self.config.log_config()

        if self.config.storage.backend == StoreBackend.SQLITE:
            Path(self.config.storage.data_dir).mkdir(parents=True, exist_ok=True)

        self.manager = PrivilegeManager.from_config(self.config)
        self.app = create_app(self.manager, self.config)
        return self.app

    def serve(self) -> None:
        """Run uvicorn until it is interrupted."""
        if self.app is None:
            raise RuntimeError("Server.start() must be called before serve()")
        logger.info(f"Admin API listening on {self.config.http.host}:{self.config.http.port}")
        uvicorn.run(
            self.app,
            host=self.config.http.host,
            port=self.config.http.port,
            log_config=None,
        )

    def stop(self) -> None:
        """Close the record store."""
        if self.manager is not None:
            self.manager.close()
            self.manager = None
        logger.info("PrivDB server stopped")


def main() -> None:
    """Main entry point."""
    # Load configuration
    try:
        config = ServerConfig.from_env()
    except ValueError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(1)

    setup_logging(config)

    server = Server(config)
    try:
        server.start()
        server.serve()
    finally:
        server.stop()


if __name__ == "__main__":
    main()
