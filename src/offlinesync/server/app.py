"""FastAPI application for the offlinesync reference authority.

This module creates and configures the FastAPI application with:
- REST API for records with revision-checked writes
- Health endpoint used as the clients' reachability probe

Usage:
    uvicorn offlinesync.server.app:app_factory --factory --host 0.0.0.0 --port 8000
"""

from __future__ import annotations

import logging
import os
import sys
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI

from offlinesync.server.api.router import router as api_router
from offlinesync.server.database import Database

# Configuration from environment variables with defaults
DB_PATH = Path(os.environ.get("OFFLINESYNC_DB_PATH", "offlinesync-server.db"))
LOG_PATH = Path(os.environ.get("OFFLINESYNC_LOG_PATH", "offlinesync-server.log"))
TOKEN = os.environ.get("OFFLINESYNC_TOKEN") or None

logger = logging.getLogger(__name__)


def setup_logging(log_path: Path | None = None) -> None:
    """Configure logging to output to stdout and optionally a file.

    Args:
        log_path: Path to the log file (None = stdout only).
    """
    log_format = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    formatter = logging.Formatter(log_format)

    # Root logger for offlinesync
    root_logger = logging.getLogger("offlinesync")
    root_logger.setLevel(logging.INFO)

    # Stdout handler
    stdout_handler = logging.StreamHandler(sys.stdout)
    stdout_handler.setFormatter(formatter)
    root_logger.addHandler(stdout_handler)

    if log_path is None:
        return

    # File handler
    file_handler = logging.FileHandler(log_path, encoding="utf-8")
    file_handler.setFormatter(formatter)
    root_logger.addHandler(file_handler)

    # Also capture uvicorn logs to file
    for uvicorn_name in ("uvicorn", "uvicorn.error", "uvicorn.access"):
        uvicorn_logger = logging.getLogger(uvicorn_name)
        uvicorn_logger.addHandler(file_handler)


def create_app(db: Database, token: str | None = None) -> FastAPI:
    """Create FastAPI application with a custom database.

    This is primarily used for testing with isolated databases.

    Args:
        db: Database instance.
        token: Bearer token required on record routes (None = open access).

    Returns:
        Configured FastAPI application.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        """Application lifespan handler for startup/shutdown."""
        # Startup
        logger.info("=" * 60)
        logger.info("offlinesync reference authority starting")
        logger.info("=" * 60)
        logger.info("  Database: %s", db.path)
        logger.info("  Auth:     %s", "bearer token" if token else "disabled")
        logger.info("=" * 60)

        yield

        # Shutdown
        logger.info("offlinesync reference authority shutting down")
        db.close()

    application = FastAPI(
        title="offlinesync Server",
        description="Reference record authority for offline-first clients",
        version="0.1.0",
        lifespan=lifespan,
    )

    application.state.db = db
    application.state.token = token

    application.include_router(api_router)

    return application


def app_factory() -> FastAPI:
    """Factory function for uvicorn --factory mode."""
    setup_logging(LOG_PATH)
    return create_app(db=Database(DB_PATH), token=TOKEN)
