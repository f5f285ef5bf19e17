"""Connectivity monitoring.

This module provides:
- ConnectivityMonitor: Online/offline signal for the sync engine

The effective signal combines two inputs:
1. Host transition events (``set_host_online``), e.g. the OS network state
2. Optional periodic reachability probes against the remote authority,
   which catch "connected to Wi-Fi but no internet" false positives

Effective online = host online AND last probe succeeded (when probing).
Listeners are called on every change of the effective signal.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Awaitable, Callable

from offlinesync.client.sync.types import ConnectivityCallback

logger = logging.getLogger(__name__)

ProbeFunc = Callable[[], Awaitable[bool]]

# Log every Nth failed probe while offline
PROBE_LOG_EVERY = 10


class ConnectivityMonitor:
    """Observes online/offline transitions.

    Usage:
        monitor = ConnectivityMonitor(probe=client.health_check, probe_interval=30)
        monitor.add_listener(lambda online: print("online" if online else "offline"))
        await monitor.start()

        # Feed host events
        monitor.set_host_online(True)

        await monitor.stop()
    """

    def __init__(
        self,
        probe: ProbeFunc | None = None,
        probe_interval: float = 30.0,
        online: bool = False,
    ) -> None:
        """Initialize the monitor.

        Args:
            probe: Async reachability check (e.g. RemoteClient.health_check)
            probe_interval: Seconds between probes (0 = no periodic probing)
            online: Initial host connectivity state
        """
        self._probe = probe
        self._probe_interval = probe_interval
        self._host_online = online
        self._reachable = True  # Optimistic until a probe says otherwise
        self._listeners: list[ConnectivityCallback] = []
        self._task: asyncio.Task[None] | None = None
        self._failed_probes = 0

    @property
    def is_online(self) -> bool:
        """Effective connectivity signal."""
        return self._host_online and self._reachable

    @property
    def awaiting_probe(self) -> bool:
        """Host is online but the authority was last seen unreachable."""
        return self._host_online and not self._reachable and self._probe is not None

    def add_listener(self, callback: ConnectivityCallback) -> Callable[[], None]:
        """Register a transition listener.

        Returns:
            Function removing the listener.
        """
        self._listeners.append(callback)

        def remove() -> None:
            with contextlib.suppress(ValueError):
                self._listeners.remove(callback)

        return remove

    def _update(self, host_online: bool, reachable: bool) -> None:
        was_online = self.is_online
        self._host_online = host_online
        self._reachable = reachable
        now_online = self.is_online
        if now_online == was_online:
            return

        logger.info("Connectivity changed: %s", "online" if now_online else "offline")
        for callback in list(self._listeners):
            callback(now_online)

    def set_host_online(self, online: bool) -> None:
        """Feed a host connectivity transition event.

        A host coming back online also resets authority reachability.
        """
        reachable = True if online and not self._host_online else self._reachable
        self._update(online, reachable)

    def report_unreachable(self) -> None:
        """Mark the authority unreachable after a network failure.

        Only effective when a probe is configured. The monitor comes back
        online on the next successful probe (periodic, or probe_once() from
        the engine) or on the next host offline to online transition.
        """
        if self._probe is None:
            return
        self._update(self._host_online, False)

    async def probe_once(self) -> bool:
        """Run the reachability probe and update the signal.

        Returns:
            True if the authority answered.
        """
        if self._probe is None:
            return self.is_online
        try:
            reachable = bool(await self._probe())
        except Exception as e:
            logger.debug("Reachability probe raised: %s", e)
            reachable = False

        if reachable:
            if self._failed_probes:
                logger.info("Remote authority reachable again")
            self._failed_probes = 0
        else:
            self._failed_probes += 1
            if self._failed_probes % PROBE_LOG_EVERY == 1:
                logger.warning(
                    "Remote authority unreachable (%d failed probes)",
                    self._failed_probes,
                )
        self._update(self._host_online, reachable)
        return reachable

    async def _probe_loop(self) -> None:
        while True:
            if self._host_online:
                await self.probe_once()
            await asyncio.sleep(self._probe_interval)

    async def start(self) -> None:
        """Start periodic probing (no-op without a probe or interval)."""
        if self._probe is None or self._probe_interval <= 0 or self._task is not None:
            return
        self._task = asyncio.create_task(self._probe_loop(), name="ConnectivityProbe")
        logger.debug("Connectivity probing every %.0fs", self._probe_interval)

    async def stop(self) -> None:
        """Stop periodic probing."""
        if self._task is None:
            return
        self._task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._task
        self._task = None
