"""Shared fixtures: an in-memory remote authority and engine factories."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncGenerator, Callable
from pathlib import Path
from typing import Any

import pytest

from offlinesync.client.api import (
    NotFoundError,
    RemoteRecord,
    RevisionMismatchError,
    TransportError,
)
from offlinesync.client.sync import ConnectivityMonitor, SyncEngine
from offlinesync.core.config import EngineConfig

Key = tuple[str, str]


class FakeRemote:
    """In-memory remote authority with failure injection.

    Attributes:
        records: Live records by (entity_type, entity_id)
        write_failures: Exceptions raised by the next writes, before applying
        lose_acks: Number of next writes applied but answered with a timeout
        gate: When set, get() waits on it (to hold a cycle open)
        calls: Log of (method, entity_type, entity_id)
    """

    def __init__(self, supports_field_diff: bool = True) -> None:
        self.records: dict[Key, RemoteRecord] = {}
        self.supports_field_diff = supports_field_diff
        self.write_failures: list[Exception] = []
        self.read_failures: list[Exception] = []
        self.lose_acks = 0
        self.reachable = True
        self.gate: asyncio.Event | None = None
        self.calls: list[tuple[str, str, str]] = []
        self._tombstones: dict[Key, int] = {}
        self._history: dict[Key, list[tuple[int, set[str]]]] = {}

    # === Server-side helpers (another client writing) ===

    def seed(self, entity_type: str, entity_id: str, data: dict[str, Any], revision: int = 1) -> RemoteRecord:
        record = RemoteRecord(entity_type, entity_id, dict(data), revision)
        self.records[(entity_type, entity_id)] = record
        self._history[(entity_type, entity_id)] = [(revision, set(data))]
        return record

    def server_update(self, entity_type: str, entity_id: str, patch: dict[str, Any]) -> RemoteRecord:
        key = (entity_type, entity_id)
        current = self.records[key]
        record = RemoteRecord(
            entity_type, entity_id, {**current.data, **patch}, current.revision + 1, "other-client"
        )
        self.records[key] = record
        self._history.setdefault(key, []).append((record.revision, set(patch)))
        return record

    def server_delete(self, entity_type: str, entity_id: str) -> None:
        key = (entity_type, entity_id)
        self._tombstones[key] = self.records.pop(key).revision + 1

    def writes(self) -> list[tuple[str, str, str]]:
        return [c for c in self.calls if c[0] in ("create", "update", "delete")]

    # === RemoteAuthority ===

    def _before_write(self, method: str, entity_type: str, entity_id: str) -> None:
        self.calls.append((method, entity_type, entity_id))
        if self.write_failures:
            raise self.write_failures.pop(0)

    def _after_write(self) -> None:
        if self.lose_acks:
            self.lose_acks -= 1
            raise TransportError("request timed out")

    def _store(self, record: RemoteRecord, fields: set[str]) -> RemoteRecord:
        key = (record.entity_type, record.entity_id)
        self.records[key] = record
        self._history.setdefault(key, []).append((record.revision, fields))
        return record

    async def get(self, entity_type: str, entity_id: str) -> RemoteRecord | None:
        self.calls.append(("get", entity_type, entity_id))
        if self.gate is not None:
            await self.gate.wait()
        if self.read_failures:
            raise self.read_failures.pop(0)
        return self.records.get((entity_type, entity_id))

    async def create(
        self, entity_type: str, entity_id: str, payload: dict[str, Any], idempotency_key: str
    ) -> RemoteRecord:
        self._before_write("create", entity_type, entity_id)
        key = (entity_type, entity_id)
        current = self.records.get(key)
        if current is not None:
            if current.last_operation == idempotency_key:
                return current
            raise RevisionMismatchError("revision-mismatch", current)
        revision = self._tombstones.pop(key, 0) + 1
        record = self._store(
            RemoteRecord(entity_type, entity_id, dict(payload), revision, idempotency_key),
            set(payload),
        )
        self._after_write()
        return record

    async def update(
        self,
        entity_type: str,
        entity_id: str,
        base_revision: int,
        payload: dict[str, Any],
        idempotency_key: str,
    ) -> RemoteRecord:
        self._before_write("update", entity_type, entity_id)
        current = self.records.get((entity_type, entity_id))
        if current is None:
            raise NotFoundError("not found", 404)
        if current.last_operation == idempotency_key:
            return current
        if current.revision != base_revision:
            raise RevisionMismatchError("revision-mismatch", current)
        record = self._store(
            RemoteRecord(
                entity_type,
                entity_id,
                {**current.data, **payload},
                current.revision + 1,
                idempotency_key,
            ),
            set(payload),
        )
        self._after_write()
        return record

    async def delete(
        self, entity_type: str, entity_id: str, base_revision: int, idempotency_key: str
    ) -> bool:
        self._before_write("delete", entity_type, entity_id)
        current = self.records.get((entity_type, entity_id))
        if current is None:
            return False
        if current.revision != base_revision:
            raise RevisionMismatchError("revision-mismatch", current)
        self.server_delete(entity_type, entity_id)
        self._after_write()
        return True

    async def changed_fields(
        self, entity_type: str, entity_id: str, since_revision: int
    ) -> set[str] | None:
        self.calls.append(("changed_fields", entity_type, entity_id))
        if not self.supports_field_diff:
            return None
        history = self._history.get((entity_type, entity_id))
        if history is None:
            return None
        fields: set[str] = set()
        for revision, changed in history:
            if revision > since_revision:
                fields |= changed
        return fields

    async def health_check(self) -> bool:
        return self.reachable


def fast_config(**overrides: Any) -> EngineConfig:
    """Engine config without delays or background timers."""
    values: dict[str, Any] = {
        "initial_backoff": 0.0,
        "max_backoff": 0.0,
        "auto_sync_interval": 0.0,
        "probe_interval": 0.0,
    }
    values.update(overrides)
    return EngineConfig(**values)


EngineFactory = Callable[..., SyncEngine]


@pytest.fixture
def remote() -> FakeRemote:
    """In-memory remote authority."""
    return FakeRemote()


@pytest.fixture
async def make_engine(tmp_path: Path, remote: FakeRemote) -> AsyncGenerator[EngineFactory, None]:
    """Factory building engines over tmp_path; all are closed at teardown.

    Engines are online by default and have no reachability probe.
    """
    engines: list[SyncEngine] = []

    def factory(
        online: bool = True,
        data_dir: Path | None = None,
        probe: bool = False,
        **config: Any,
    ) -> SyncEngine:
        monitor = ConnectivityMonitor(
            probe=remote.health_check if probe else None,
            probe_interval=0,
            online=online,
        )
        engine = SyncEngine.open(
            data_dir or tmp_path / "data",
            remote,
            config=fast_config(**config),
            monitor=monitor,
        )
        engines.append(engine)
        return engine

    yield factory

    for engine in engines:
        await engine.close()


@pytest.fixture
async def engine(make_engine: EngineFactory) -> SyncEngine:
    """Online engine with default settings."""
    return make_engine()
