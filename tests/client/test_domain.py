"""Tests for sync domain modules.

Tests for:
- domain/detection.py - Conflict detection decision table
- domain/merge.py - Patches, field diffs and merge suggestions
- retry.py - Backoff schedule
"""

from __future__ import annotations

import time
from typing import Any

import pytest

from offlinesync.client.api import RemoteRecord
from offlinesync.client.sync.domain import (
    ConflictDetector,
    DetectionOutcome,
    apply_patch,
    changed_fields,
    default_merge,
    patch_fields,
)
from offlinesync.client.sync.retry import compute_backoff, next_attempt_at
from offlinesync.client.sync.types import QueuedOperation
from offlinesync.core.types import CreateConflictPolicy, OperationKind


def make_op(
    kind: OperationKind,
    payload: dict[str, Any] | None = None,
    base_revision: int | None = None,
) -> QueuedOperation:
    """Create a queued operation for testing."""
    return QueuedOperation(
        id=1,
        position=1,
        entity_type="farmers",
        entity_id="F-1",
        kind=kind,
        payload=payload,
        base_revision=base_revision,
        created_at=time.time(),
    )


def make_remote(revision: int, last_operation: str | None = None) -> RemoteRecord:
    """Create a remote record for testing."""
    return RemoteRecord("farmers", "F-1", {"name": "Ada", "county": "Bong"}, revision, last_operation)


class TestConflictDetector:
    """Tests for the detection decision table."""

    def test_update_on_matching_revision_applies(self) -> None:
        """An update on the current revision is safe."""
        result = ConflictDetector().check(
            make_op(OperationKind.UPDATE, {"name": "Ada L."}, 5), make_remote(5)
        )
        assert result.outcome is DetectionOutcome.APPLY
        assert result.base_revision == 5

    def test_update_on_stale_revision_conflicts(self) -> None:
        """A revision mismatch without field information is a conflict."""
        result = ConflictDetector().check(
            make_op(OperationKind.UPDATE, {"name": "Ada L."}, 5), make_remote(6)
        )
        assert result.outcome is DetectionOutcome.CONFLICT
        assert result.is_conflict
        assert result.remote is not None
        assert result.remote.revision == 6

    def test_update_disjoint_fields_auto_merges(self) -> None:
        """Remote changes to other fields do not block a stale update."""
        result = ConflictDetector().check(
            make_op(OperationKind.UPDATE, {"name": "Ada L."}, 5),
            make_remote(6),
            changed_fields={"county"},
        )
        assert result.outcome is DetectionOutcome.AUTO_MERGE
        assert result.base_revision == 6

    def test_update_overlapping_fields_conflicts(self) -> None:
        """Remote changes to the same field are a conflict."""
        result = ConflictDetector().check(
            make_op(OperationKind.UPDATE, {"name": "Ada L."}, 5),
            make_remote(6),
            changed_fields={"name"},
        )
        assert result.outcome is DetectionOutcome.CONFLICT

    def test_auto_merge_disabled(self) -> None:
        """With auto-merge off, any mismatch is a conflict."""
        detector = ConflictDetector(auto_merge=False)
        op = make_op(OperationKind.UPDATE, {"name": "Ada L."}, 5)

        assert detector.wants_field_diff(op, make_remote(6)) is False
        result = detector.check(op, make_remote(6), changed_fields={"county"})
        assert result.outcome is DetectionOutcome.CONFLICT

    def test_wants_field_diff_only_on_mismatch(self) -> None:
        """A field diff is only useful for stale updates."""
        detector = ConflictDetector()
        op = make_op(OperationKind.UPDATE, {"name": "x"}, 5)
        assert detector.wants_field_diff(op, make_remote(6)) is True
        assert detector.wants_field_diff(op, make_remote(5)) is False
        assert detector.wants_field_diff(op, None) is False
        assert detector.wants_field_diff(make_op(OperationKind.DELETE, None, 5), make_remote(6)) is False

    def test_update_unknown_base_conflicts(self) -> None:
        """An update without a confirmed base never overwrites blindly."""
        result = ConflictDetector().check(
            make_op(OperationKind.UPDATE, {"name": "x"}, None), make_remote(3)
        )
        assert result.outcome is DetectionOutcome.CONFLICT

    def test_update_missing_remote_conflicts(self) -> None:
        """Updating a record deleted remotely is a conflict."""
        result = ConflictDetector().check(make_op(OperationKind.UPDATE, {"name": "x"}, 5), None)
        assert result.outcome is DetectionOutcome.CONFLICT
        assert result.remote is None

    def test_create_on_missing_applies(self) -> None:
        """Creating a new entity is safe."""
        result = ConflictDetector().check(make_op(OperationKind.CREATE, {"name": "x"}), None)
        assert result.outcome is DetectionOutcome.APPLY

    def test_create_on_existing_conflicts_by_default(self) -> None:
        """A create over an existing entity asks the user by default."""
        result = ConflictDetector().check(make_op(OperationKind.CREATE, {"name": "x"}), make_remote(2))
        assert result.outcome is DetectionOutcome.CONFLICT

    def test_create_on_existing_keep_remote_policy(self) -> None:
        """The keep-remote policy adopts the existing entity."""
        detector = ConflictDetector(create_policy=CreateConflictPolicy.KEEP_REMOTE)
        result = detector.check(make_op(OperationKind.CREATE, {"name": "x"}), make_remote(2))
        assert result.outcome is DetectionOutcome.ADOPT_REMOTE

    def test_delete_matching_applies(self) -> None:
        """Deleting the current revision is safe."""
        result = ConflictDetector().check(make_op(OperationKind.DELETE, None, 4), make_remote(4))
        assert result.outcome is DetectionOutcome.APPLY

    def test_delete_stale_conflicts(self) -> None:
        """Deleting a record that changed remotely is a conflict."""
        result = ConflictDetector().check(make_op(OperationKind.DELETE, None, 4), make_remote(5))
        assert result.outcome is DetectionOutcome.CONFLICT

    def test_delete_missing_is_noop(self) -> None:
        """Deleting a record already gone is a no-op."""
        result = ConflictDetector().check(make_op(OperationKind.DELETE, None, 4), None)
        assert result.outcome is DetectionOutcome.NO_OP

    def test_already_applied_wins(self) -> None:
        """A lost acknowledgement is recognized by the idempotency key."""
        result = ConflictDetector().check(
            make_op(OperationKind.UPDATE, {"name": "x"}, 5),
            make_remote(6, last_operation="client:1"),
            idempotency_key="client:1",
        )
        assert result.outcome is DetectionOutcome.ALREADY_APPLIED
        assert result.base_revision == 6


class TestMerge:
    """Tests for patch and merge helpers."""

    def test_apply_patch_does_not_mutate(self) -> None:
        """Patching returns a new dict."""
        base = {"a": 1, "b": 2}
        merged = apply_patch(base, {"b": 3, "c": 4})
        assert merged == {"a": 1, "b": 3, "c": 4}
        assert base == {"a": 1, "b": 2}

    def test_apply_patch_none(self) -> None:
        """Missing base or patch are treated as empty."""
        assert apply_patch(None, {"a": 1}) == {"a": 1}
        assert apply_patch({"a": 1}, None) == {"a": 1}

    def test_changed_fields(self) -> None:
        """Added, removed and modified keys are reported."""
        assert changed_fields({"a": 1, "b": 2, "c": 3}, {"a": 1, "b": 5, "d": 4}) == {"b", "c", "d"}

    def test_patch_fields(self) -> None:
        """A patch touches its keys."""
        assert patch_fields({"a": 1, "b": None}) == {"a", "b"}
        assert patch_fields(None) == set()

    def test_default_merge_prefers_local_changes(self) -> None:
        """Local values overlay the remote record."""
        merged = default_merge({"name": "local"}, {"name": "remote", "county": "Bong"})
        assert merged == {"name": "local", "county": "Bong"}

    def test_default_merge_keeps_server_metadata(self) -> None:
        """Ids and creation timestamps always come from the remote side."""
        merged = default_merge(
            {"id": "local-id", "createdAt": "yesterday", "name": "local"},
            {"id": "F-1", "createdAt": "2024-01-01", "name": "remote"},
        )
        assert merged == {"id": "F-1", "createdAt": "2024-01-01", "name": "local"}


class TestBackoff:
    """Tests for the retry schedule."""

    @pytest.mark.parametrize(
        ("attempts", "expected"),
        [(0, 0.0), (1, 1.0), (2, 2.0), (3, 4.0), (7, 60.0), (20, 60.0)],
    )
    def test_compute_backoff(self, attempts: int, expected: float) -> None:
        """Delay doubles per attempt and is capped."""
        assert compute_backoff(attempts, 1.0, 60.0, 2.0) == expected

    def test_next_attempt_at(self) -> None:
        """The absolute retry time is now plus the delay."""
        assert next_attempt_at(2, 1.0, 60.0, 2.0, now=100.0) == 102.0
