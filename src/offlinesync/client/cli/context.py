"""Engine wiring shared by CLI commands."""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from offlinesync.client.api import RemoteClient
from offlinesync.client.cli.config import (
    get_data_dir,
    get_engine_config,
    get_server_config,
)
from offlinesync.client.sync import ConnectivityMonitor, SyncEngine


@asynccontextmanager
async def open_engine(connect: bool = False) -> AsyncIterator[SyncEngine]:
    """Open the local engine for one CLI command.

    Args:
        connect: Probe the server first. Without it the engine stays
            offline, so the command never touches the network.
    """
    async with RemoteClient(get_server_config()) as remote:
        monitor = ConnectivityMonitor(probe=remote.health_check, probe_interval=0, online=connect)
        if connect:
            # Probe before the engine subscribes, so no background cycle starts
            await monitor.probe_once()
        engine = SyncEngine.open(get_data_dir(), remote, get_engine_config(), monitor=monitor)
        try:
            yield engine
        finally:
            await engine.close()
