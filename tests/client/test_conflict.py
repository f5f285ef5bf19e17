"""Tests for the conflict resolution store."""

from __future__ import annotations

from collections.abc import Iterator
from pathlib import Path

import pytest

from offlinesync.client.sync.conflict import ConflictStore
from offlinesync.client.sync.types import ConflictNotFoundError
from offlinesync.core.types import OperationKind, Resolution


@pytest.fixture
def store(tmp_path: Path) -> Iterator[ConflictStore]:
    """Conflict store backed by a temporary database."""
    s = ConflictStore(tmp_path / "conflicts.db")
    yield s
    s.close()


def add_conflict(store: ConflictStore, operation_id: int = 1, entity_id: str = "F-1") -> int:
    conflict = store.add(
        operation_id,
        "farmers",
        entity_id,
        OperationKind.UPDATE,
        {"name": "local"},
        {"name": "remote"},
        6,
    )
    return conflict.id


class TestAdd:
    """Tests for recording conflicts."""

    def test_add_and_get(self, store: ConflictStore) -> None:
        """A recorded conflict keeps both sides."""
        conflict_id = add_conflict(store)

        conflict = store.get(conflict_id)

        assert conflict is not None
        assert conflict.operation_id == 1
        assert conflict.kind is OperationKind.UPDATE
        assert conflict.local_value == {"name": "local"}
        assert conflict.remote_value == {"name": "remote"}
        assert conflict.remote_revision == 6
        assert conflict.resolution is Resolution.UNRESOLVED

    def test_remote_missing(self, store: ConflictStore) -> None:
        """A conflict against a deleted record has no remote value."""
        conflict = store.add(1, "farmers", "F-1", OperationKind.UPDATE, {"a": 1}, None, None)
        assert conflict.remote_value is None
        assert conflict.remote_revision is None

    def test_redetection_refreshes(self, store: ConflictStore) -> None:
        """Re-detecting the same operation updates the open conflict."""
        first = add_conflict(store)
        again = store.add(1, "farmers", "F-1", OperationKind.UPDATE, {"name": "local"}, {"name": "newer"}, 7)

        assert again.id == first
        assert again.remote_revision == 7
        assert store.count_open() == 1


class TestResolve:
    """Tests for closing conflicts."""

    def test_resolve_moves_to_history(self, store: ConflictStore) -> None:
        """Resolving closes the conflict and writes one audit record."""
        conflict_id = add_conflict(store)

        record = store.resolve(conflict_id, Resolution.KEEP_REMOTE, resolved_at=123.0)

        assert record.choice is Resolution.KEEP_REMOTE
        assert record.resolved_at == 123.0
        assert store.get(conflict_id) is None
        assert store.count_open() == 0
        assert [r.conflict_id for r in store.history()] == [conflict_id]

    def test_resolve_twice_raises(self, store: ConflictStore) -> None:
        """A conflict is resolved exactly once."""
        conflict_id = add_conflict(store)
        store.resolve(conflict_id, Resolution.DISCARDED)

        with pytest.raises(ConflictNotFoundError):
            store.resolve(conflict_id, Resolution.KEEP_LOCAL)
        assert len(store.history()) == 1

    def test_resolve_unknown_raises(self, store: ConflictStore) -> None:
        """Unknown ids raise ConflictNotFoundError."""
        with pytest.raises(ConflictNotFoundError):
            store.resolve(42, Resolution.DISCARDED)

    def test_unresolved_is_not_a_resolution(self, store: ConflictStore) -> None:
        """UNRESOLVED cannot be recorded as a resolution."""
        conflict_id = add_conflict(store)
        with pytest.raises(ValueError):
            store.resolve(conflict_id, Resolution.UNRESOLVED)
        assert store.get(conflict_id) is not None

    def test_history_by_entity(self, store: ConflictStore) -> None:
        """History can be filtered by entity id."""
        a = add_conflict(store, operation_id=1, entity_id="F-1")
        b = add_conflict(store, operation_id=2, entity_id="F-2")
        store.resolve(a, Resolution.MERGED)
        store.resolve(b, Resolution.KEEP_LOCAL)

        assert [r.conflict_id for r in store.history("F-2")] == [b]

    def test_list_open_oldest_first(self, store: ConflictStore) -> None:
        """Open conflicts are listed in detection order."""
        a = add_conflict(store, operation_id=1)
        b = add_conflict(store, operation_id=2, entity_id="F-2")
        assert [c.id for c in store.list_open()] == [a, b]
