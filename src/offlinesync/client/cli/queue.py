"""Queue commands for offlinesync CLI.

Commands:
- enqueue: Record a local create/update/delete
- status: Show engine status and queued operations
- retry: Move a failed operation back to pending
- clear-queue: Drop pending and failed operations
"""

from __future__ import annotations

import asyncio
import json
import sys
from datetime import datetime
from typing import Any

import click

from offlinesync.client.cli.context import open_engine


def parse_json_object(
    ctx: click.Context, param: click.Parameter, value: str | None
) -> dict[str, Any] | None:
    """Click callback turning a JSON option into a dict."""
    if value is None:
        return None
    try:
        data = json.loads(value)
    except json.JSONDecodeError as e:
        raise click.BadParameter(f"invalid JSON: {e}") from e
    if not isinstance(data, dict):
        raise click.BadParameter("must be a JSON object")
    return data


def format_time(timestamp: float | None) -> str:
    """Format a Unix timestamp for display."""
    if timestamp is None:
        return "never"
    return datetime.fromtimestamp(timestamp).strftime("%Y-%m-%d %H:%M:%S")


@click.command()
@click.argument("entity_type")
@click.argument("entity_id")
@click.argument("kind", type=click.Choice(["create", "update", "delete"]))
@click.option(
    "--data",
    "-d",
    callback=parse_json_object,
    help="Record (create) or patch (update) as a JSON object.",
)
@click.option(
    "--base-revision",
    type=int,
    default=None,
    help="Revision the change is based on (default: cached revision).",
)
def enqueue(
    entity_type: str,
    entity_id: str,
    kind: str,
    data: dict[str, Any] | None,
    base_revision: int | None,
) -> None:
    """Queue a local change to ENTITY_TYPE/ENTITY_ID.

    Works offline; the change is sent on the next sync.

    Examples:

        offlinesync enqueue farmers F-1 create --data '{"name": "Ada"}'

        offlinesync enqueue farmers F-1 update --data '{"county": "Bong"}'
    """
    from offlinesync.client.sync import StorageExhaustedError

    if kind != "delete" and data is None:
        click.echo(f"Error: --data is required for {kind}.", err=True)
        sys.exit(1)

    async def run() -> int:
        async with open_engine() as engine:
            return await engine.enqueue(entity_type, entity_id, kind, data, base_revision)

    try:
        op_id = asyncio.run(run())
    except StorageExhaustedError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)
    click.echo(f"Queued operation #{op_id}: {kind} {entity_type}/{entity_id}")


@click.command()
@click.option("--operations", "-o", is_flag=True, help="List queued operations.")
@click.option("--check", is_flag=True, help="Probe the server to report connectivity.")
def status(operations: bool, check: bool) -> None:
    """Show sync status."""
    from offlinesync.client.cli.config import is_configured

    async def run() -> None:
        async with open_engine(connect=check and is_configured()) as engine:
            current = engine.status
            online = "online" if current.is_online else "offline"
            if not check:
                online += " (not checked)"
            click.echo(f"State:        {current.state.value}")
            click.echo(f"Connectivity: {online}")
            click.echo(f"Queued:       {current.queued_operations}")
            click.echo(f"Conflicts:    {len(current.pending_conflicts)}")
            click.echo(f"Failed:       {current.failed_operations}")
            click.echo(f"Last sync:    {format_time(current.last_sync_time)}")

            if operations:
                ops = engine.list_operations()
                if ops:
                    click.echo("")
                for op in ops:
                    line = (
                        f"  #{op.id:<5} {op.state.value:<10} {op.kind.value:<6} "
                        f"{op.entity_type}/{op.entity_id} base={op.base_revision}"
                    )
                    if op.last_error:
                        line += f"  ({op.last_error})"
                    click.echo(line)

    asyncio.run(run())


@click.command()
@click.argument("operation_id", type=int)
def retry(operation_id: int) -> None:
    """Move failed operation OPERATION_ID back to pending."""
    from offlinesync.client.sync import OperationNotFoundError

    async def run() -> None:
        async with open_engine() as engine:
            await engine.retry_operation(operation_id)

    try:
        asyncio.run(run())
    except OperationNotFoundError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)
    click.echo(f"Operation #{operation_id} will be retried on the next sync.")


@click.command("clear-queue")
@click.option("--yes", "-y", is_flag=True, help="Do not ask for confirmation.")
def clear_queue(yes: bool) -> None:
    """Drop all pending and failed operations.

    Operations waiting on a conflict are kept; resolve them instead.
    """
    if not yes:
        click.confirm("Discard all pending and failed operations?", abort=True)

    async def run() -> int:
        async with open_engine() as engine:
            return await engine.clear_queue()

    removed = asyncio.run(run())
    click.echo(f"Removed {removed} operation(s).")
