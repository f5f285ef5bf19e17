"""Command-line interface for offlinesync.

This module provides the main CLI entry point and assembles all commands.

Commands:
- configure: Store the server URL and token
- enqueue: Queue a local change
- status: Show queue, conflict and connectivity status
- sync: Send queued changes to the server
- conflicts: List open conflicts
- resolve: Resolve a conflict
- retry: Retry a failed operation
- clear-queue: Drop pending and failed operations
- serve: Run the reference record server
"""

from __future__ import annotations

import logging
import sys

import click

from offlinesync.client.cli.config import (
    get_config_dir,
    get_config_file,
    get_data_dir,
    load_config,
    save_config,
)
from offlinesync.client.cli.configure import configure
from offlinesync.client.cli.conflicts import conflicts, resolve
from offlinesync.client.cli.queue import clear_queue, enqueue, retry, status
from offlinesync.client.cli.server import serve
from offlinesync.client.cli.sync import sync


_log_handler: logging.Handler | None = None


def setup_logging(verbose: bool) -> None:
    """Send offlinesync logs to stderr."""
    global _log_handler

    logger = logging.getLogger("offlinesync")
    logger.setLevel(logging.DEBUG if verbose else logging.WARNING)

    # Replace the handler of a previous invocation (stderr may have changed)
    if _log_handler is not None:
        logger.removeHandler(_log_handler)
    _log_handler = logging.StreamHandler(sys.stderr)
    _log_handler.setFormatter(logging.Formatter("%(levelname)s %(name)s: %(message)s"))
    logger.addHandler(_log_handler)


@click.group()
@click.version_option(package_name="offlinesync")
@click.option("--verbose", "-v", is_flag=True, help="Show debug logs.")
def cli(verbose: bool) -> None:
    """offlinesync - Offline-first record sync with manual conflict resolution."""
    setup_logging(verbose)


# Setup
cli.add_command(configure)

# Queue commands
cli.add_command(enqueue)
cli.add_command(status)
cli.add_command(retry)
cli.add_command(clear_queue)

# Sync commands
cli.add_command(sync)
cli.add_command(conflicts)
cli.add_command(resolve)

# Server command
cli.add_command(serve)


def main() -> None:
    """Entry point for the CLI."""
    cli()


__all__ = [
    # Main entry points
    "cli",
    "main",
    # Config utilities
    "get_config_dir",
    "get_config_file",
    "get_data_dir",
    "load_config",
    "save_config",
]
