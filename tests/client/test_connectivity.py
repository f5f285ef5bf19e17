"""Tests for the connectivity monitor."""

from __future__ import annotations

import asyncio
import logging
from unittest.mock import AsyncMock

import pytest

from offlinesync.client.sync.connectivity import ConnectivityMonitor


class TestHostEvents:
    """Tests for host transition events."""

    def test_initial_state(self) -> None:
        """The monitor starts with the given host state."""
        assert ConnectivityMonitor().is_online is False
        assert ConnectivityMonitor(online=True).is_online is True

    def test_listeners_called_on_change_only(self) -> None:
        """Listeners see transitions, not repeated states."""
        monitor = ConnectivityMonitor()
        events: list[bool] = []
        monitor.add_listener(events.append)

        monitor.set_host_online(True)
        monitor.set_host_online(True)
        monitor.set_host_online(False)

        assert events == [True, False]

    def test_remove_listener(self) -> None:
        """The returned function unregisters the listener."""
        monitor = ConnectivityMonitor()
        events: list[bool] = []
        remove = monitor.add_listener(events.append)

        remove()
        remove()
        monitor.set_host_online(True)

        assert events == []

    def test_report_unreachable_without_probe(self) -> None:
        """Without a probe nothing could bring the monitor back, so it is ignored."""
        monitor = ConnectivityMonitor(online=True)
        monitor.report_unreachable()
        assert monitor.is_online is True

    def test_host_reconnect_resets_reachability(self) -> None:
        """A new host connection clears an unreachable report without probing."""
        probe = AsyncMock(return_value=False)
        monitor = ConnectivityMonitor(probe=probe, probe_interval=0, online=True)
        events: list[bool] = []
        monitor.add_listener(events.append)

        monitor.report_unreachable()
        monitor.set_host_online(False)
        monitor.set_host_online(True)

        assert monitor.is_online is True
        assert events == [False, True]
        probe.assert_not_awaited()

    def test_repeated_host_online_keeps_unreachable(self) -> None:
        """Only an offline to online edge resets reachability."""
        monitor = ConnectivityMonitor(probe=AsyncMock(return_value=True), online=True)

        monitor.report_unreachable()
        monitor.set_host_online(True)

        assert monitor.is_online is False
        assert monitor.awaiting_probe is True


class TestProbing:
    """Tests for reachability probes."""

    async def test_probe_failure_goes_offline(self) -> None:
        """A failed probe overrides an online host."""
        probe = AsyncMock(return_value=False)
        monitor = ConnectivityMonitor(probe=probe, probe_interval=0, online=True)
        events: list[bool] = []
        monitor.add_listener(events.append)

        assert await monitor.probe_once() is False
        assert monitor.is_online is False
        assert events == [False]

    async def test_probe_success_recovers(self) -> None:
        """A successful probe after report_unreachable goes back online."""
        probe = AsyncMock(return_value=True)
        monitor = ConnectivityMonitor(probe=probe, probe_interval=0, online=True)

        monitor.report_unreachable()
        assert monitor.is_online is False
        assert monitor.awaiting_probe is True

        await monitor.probe_once()
        assert monitor.is_online is True
        assert monitor.awaiting_probe is False

    async def test_probe_exception_is_unreachable(self) -> None:
        """A probe that raises counts as a failure."""
        probe = AsyncMock(side_effect=OSError("no route to host"))
        monitor = ConnectivityMonitor(probe=probe, probe_interval=0, online=True)

        assert await monitor.probe_once() is False
        assert monitor.is_online is False

    async def test_host_offline_wins(self) -> None:
        """Probe success does not matter while the host is offline."""
        probe = AsyncMock(return_value=True)
        monitor = ConnectivityMonitor(probe=probe, probe_interval=0, online=False)

        await monitor.probe_once()

        assert monitor.is_online is False

    async def test_failed_probes_logged_sparingly(self, caplog: pytest.LogCaptureFixture) -> None:
        """Repeated failures are not logged on every probe."""
        probe = AsyncMock(return_value=False)
        monitor = ConnectivityMonitor(probe=probe, probe_interval=0, online=True)

        with caplog.at_level(logging.WARNING, logger="offlinesync.client.sync.connectivity"):
            for _ in range(5):
                await monitor.probe_once()

        warnings = [r for r in caplog.records if "unreachable" in r.getMessage()]
        assert len(warnings) == 1

    async def test_start_stop_loop(self) -> None:
        """The probe loop runs periodically until stopped."""
        probe = AsyncMock(return_value=True)
        monitor = ConnectivityMonitor(probe=probe, probe_interval=0.01, online=True)

        await monitor.start()
        await asyncio.sleep(0.05)
        await monitor.stop()

        assert probe.await_count >= 2
        calls = probe.await_count
        await asyncio.sleep(0.03)
        assert probe.await_count == calls

    async def test_start_without_interval_is_noop(self) -> None:
        """Probing is disabled with a zero interval."""
        probe = AsyncMock(return_value=True)
        monitor = ConnectivityMonitor(probe=probe, probe_interval=0, online=True)

        await monitor.start()
        await monitor.stop()

        probe.assert_not_awaited()
