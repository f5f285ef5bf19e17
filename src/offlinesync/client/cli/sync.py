"""Sync command for offlinesync CLI.

Commands:
- sync: Run one sync cycle against the configured server
"""

from __future__ import annotations

import asyncio
import sys

import click

from offlinesync.client.cli.config import is_configured
from offlinesync.client.cli.context import open_engine


@click.command()
def sync() -> None:
    """Send queued changes to the server.

    Conflicting changes are kept aside; list them with 'offlinesync conflicts'.
    """
    from offlinesync.client.sync import SyncReport

    if not is_configured():
        click.echo("Error: No server configured. Run 'offlinesync configure' first.", err=True)
        sys.exit(1)

    async def run() -> tuple[bool, SyncReport | None, int]:
        async with open_engine(connect=True) as engine:
            if not engine.is_online:
                return False, None, 0
            report = await engine.sync_now()
            return True, report, len(engine.pending_conflicts)

    online, report, open_conflicts = asyncio.run(run())

    if not online:
        click.echo("Error: Server is unreachable. Changes stay queued.", err=True)
        sys.exit(1)
    if report is None:
        click.echo("A sync is already running.")
        return

    click.echo(
        f"Synced: {report.committed} committed, {report.conflicted} conflicts, "
        f"{report.deferred} deferred, {report.failed} failed."
    )
    if report.auto_resolved:
        click.echo(f"{report.auto_resolved} conflict(s) settled by the configured policy.")
    for error in report.errors:
        click.echo(f"  error: {error}", err=True)
    if open_conflicts:
        click.echo(f"{open_conflicts} conflict(s) need your decision: run 'offlinesync conflicts'.")
