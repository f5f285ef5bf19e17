"""Conflict commands for offlinesync CLI.

Commands:
- conflicts: List open conflicts
- resolve: Apply a decision to a conflict
"""

from __future__ import annotations

import asyncio
import json
import sys
from typing import Any

import click

from offlinesync.client.cli.context import open_engine
from offlinesync.client.cli.queue import format_time, parse_json_object


def _dump(value: dict[str, Any] | None) -> str:
    if value is None:
        return "(missing)"
    return json.dumps(value, sort_keys=True)


@click.command()
def conflicts() -> None:
    """List conflicts waiting for a decision."""

    async def run() -> None:
        async with open_engine() as engine:
            pending = engine.pending_conflicts
            if not pending:
                click.echo("No open conflicts.")
                return
            for conflict in pending:
                click.echo(
                    f"#{conflict.id} {conflict.kind.value} "
                    f"{conflict.entity_type}/{conflict.entity_id} "
                    f"(detected {format_time(conflict.detected_at)})"
                )
                click.echo(f"    local:  {_dump(conflict.local_value)}")
                click.echo(
                    f"    remote: {_dump(conflict.remote_value)} "
                    f"[revision {conflict.remote_revision}]"
                )

    asyncio.run(run())


@click.command()
@click.argument("conflict_id", type=int)
@click.argument(
    "choice",
    type=click.Choice(["keep-local", "keep-remote", "merged", "discard"]),
)
@click.option(
    "--merged",
    "merged_payload",
    callback=parse_json_object,
    help="Reconciled value for 'merged' (default: remote overlaid with local).",
)
def resolve(conflict_id: int, choice: str, merged_payload: dict[str, Any] | None) -> None:
    """Resolve conflict CONFLICT_ID.

    \b
    keep-local   re-send the local change on top of the remote revision
    keep-remote  drop the local change and adopt the remote value
    merged       send a reconciled value (see --merged)
    discard      drop the local change
    """
    from offlinesync.client.sync import ConflictNotFoundError, default_merge

    async def run() -> dict[str, Any] | None:
        async with open_engine() as engine:
            payload = merged_payload
            if choice == "merged" and payload is None:
                conflict = next(
                    (c for c in engine.pending_conflicts if c.id == conflict_id), None
                )
                if conflict is None:
                    raise ConflictNotFoundError(f"Conflict #{conflict_id} is not open")
                payload = default_merge(conflict.local_value, conflict.remote_value)
            await engine.resolve_conflict(conflict_id, choice, payload)
            return payload

    try:
        payload = asyncio.run(run())
    except ConflictNotFoundError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    click.echo(f"Conflict #{conflict_id} resolved: {choice}")
    if choice == "merged":
        click.echo(f"    merged: {_dump(payload)}")
