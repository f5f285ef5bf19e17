"""Shared types and dataclasses for sync operations.

This module provides:
- SyncError, StorageExhaustedError, EngineBusyError, ...: Exception classes
- QueuedOperation, OperationBatch: Queue records
- CachedRecord: Last confirmed copy of a remote entity
- Conflict, ResolutionRecord: Conflict and audit records
- OperationOutcome, OperationResult, SyncReport: Per-operation and per-cycle results
- SyncProgress, SyncStatus: Observable engine status
- Type aliases for callbacks
"""

from __future__ import annotations

import json
import sqlite3
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from offlinesync.core.types import (
    OperationKind,
    OperationState,
    Resolution,
    SyncState,
)

EntityKey = tuple[str, str]


class SyncError(Exception):
    """Base exception for sync engine errors."""


class StorageExhaustedError(SyncError):
    """The local durable store cannot accept more operations."""


class EngineBusyError(SyncError):
    """The requested action is not allowed while a sync cycle is running."""


class ConflictNotFoundError(SyncError):
    """No open conflict with this id (unknown or already resolved)."""


class OperationNotFoundError(SyncError):
    """No queued operation with this id."""


def _load_json(value: str | None) -> Any:
    return json.loads(value) if value is not None else None


@dataclass
class QueuedOperation:
    """One pending local mutation.

    Attributes:
        id: Unique id, monotonically increasing, never reused.
        position: Ordering key within the queue (inherited on re-issue).
        entity_type: Type of the target record (e.g. "farmers").
        entity_id: Id of the target record.
        kind: create, update or delete.
        payload: Full record (create), partial patch (update) or None (delete).
        base_revision: Confirmed remote revision the mutation was formed on.
        created_at: Client timestamp.
        attempts: Number of failed transport attempts.
        state: Lifecycle state.
        last_error: Reason of the last failure.
        next_attempt_at: Earliest time the operation may be retried.
    """

    id: int
    position: int
    entity_type: str
    entity_id: str
    kind: OperationKind
    payload: dict[str, Any] | None
    base_revision: int | None
    created_at: float
    attempts: int = 0
    state: OperationState = OperationState.PENDING
    last_error: str | None = None
    next_attempt_at: float = 0.0

    @property
    def entity_key(self) -> EntityKey:
        """Key grouping operations on the same entity."""
        return (self.entity_type, self.entity_id)

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> QueuedOperation:
        """Create QueuedOperation from database row."""
        return cls(
            id=row["id"],
            position=row["position"],
            entity_type=row["entity_type"],
            entity_id=row["entity_id"],
            kind=OperationKind(row["kind"]),
            payload=_load_json(row["payload"]),
            base_revision=row["base_revision"],
            created_at=row["created_at"],
            attempts=row["attempts"],
            state=OperationState(row["state"]),
            last_error=row["last_error"],
            next_attempt_at=row["next_attempt_at"],
        )

    def __repr__(self) -> str:
        return (
            f"QueuedOperation(#{self.id}, {self.kind.value} "
            f"{self.entity_type}:{self.entity_id}, base={self.base_revision}, "
            f"{self.state.value})"
        )


@dataclass
class OperationBatch:
    """Dispatchable operations for a single entity, in queue order."""

    entity_type: str
    entity_id: str
    operations: list[QueuedOperation] = field(default_factory=list)

    @property
    def entity_key(self) -> EntityKey:
        return (self.entity_type, self.entity_id)

    def __len__(self) -> int:
        return len(self.operations)


@dataclass
class CachedRecord:
    """Last confirmed copy of a remote entity."""

    entity_type: str
    entity_id: str
    data: dict[str, Any]
    revision: int
    fetched_at: float

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> CachedRecord:
        """Create CachedRecord from database row."""
        return cls(
            entity_type=row["entity_type"],
            entity_id=row["entity_id"],
            data=json.loads(row["data"]),
            revision=row["revision"],
            fetched_at=row["fetched_at"],
        )


@dataclass
class Conflict:
    """A queued operation whose base assumption about remote state no longer holds.

    Attributes:
        id: Conflict id.
        operation_id: Id of the originating queued operation.
        entity_type: Type of the entity.
        entity_id: Id of the entity.
        kind: Kind of the originating operation.
        local_value: Queued payload merged onto the cached base (None for delete).
        remote_value: Current remote data (None when missing remotely).
        remote_revision: Current remote revision (None when missing remotely).
        detected_at: Detection timestamp.
        resolution: Resolution state.
    """

    id: int
    operation_id: int
    entity_type: str
    entity_id: str
    kind: OperationKind
    local_value: dict[str, Any] | None
    remote_value: dict[str, Any] | None
    remote_revision: int | None
    detected_at: float
    resolution: Resolution = Resolution.UNRESOLVED

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> Conflict:
        """Create Conflict from database row."""
        return cls(
            id=row["id"],
            operation_id=row["operation_id"],
            entity_type=row["entity_type"],
            entity_id=row["entity_id"],
            kind=OperationKind(row["kind"]),
            local_value=_load_json(row["local_value"]),
            remote_value=_load_json(row["remote_value"]),
            remote_revision=row["remote_revision"],
            detected_at=row["detected_at"],
        )


@dataclass
class ResolutionRecord:
    """Audit entry written when a conflict is resolved."""

    conflict_id: int
    operation_id: int
    entity_type: str
    entity_id: str
    choice: Resolution
    resolved_at: float

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> ResolutionRecord:
        """Create ResolutionRecord from database row."""
        return cls(
            conflict_id=row["conflict_id"],
            operation_id=row["operation_id"],
            entity_type=row["entity_type"],
            entity_id=row["entity_id"],
            choice=Resolution(row["choice"]),
            resolved_at=row["resolved_at"],
        )


class OperationOutcome(str, Enum):
    """What happened to one operation during a cycle."""

    COMMITTED = "committed"
    ALREADY_APPLIED = "already-applied"  # Lost ack, server already had it
    NO_OP = "no-op"  # Delete of an entity already gone
    CONFLICTED = "conflicted"
    AUTO_RESOLVED = "auto-resolved"  # Conflict settled by the configured policy
    DEFERRED = "deferred"  # Transport error, retried later
    FAILED = "failed"  # Dead letter

    @property
    def is_success(self) -> bool:
        return self in (
            OperationOutcome.COMMITTED,
            OperationOutcome.ALREADY_APPLIED,
            OperationOutcome.NO_OP,
        )


@dataclass
class OperationResult:
    """Result of processing one queued operation."""

    operation_id: int
    outcome: OperationOutcome
    revision: int | None = None
    conflict_id: int | None = None
    error: str | None = None


@dataclass
class SyncReport:
    """Summary of one sync cycle."""

    started_at: float
    finished_at: float = 0.0
    results: list[OperationResult] = field(default_factory=list)

    def _count(self, *outcomes: OperationOutcome) -> int:
        return sum(1 for r in self.results if r.outcome in outcomes)

    @property
    def committed(self) -> int:
        return self._count(
            OperationOutcome.COMMITTED,
            OperationOutcome.ALREADY_APPLIED,
            OperationOutcome.NO_OP,
        )

    @property
    def conflicted(self) -> int:
        return self._count(OperationOutcome.CONFLICTED)

    @property
    def auto_resolved(self) -> int:
        return self._count(OperationOutcome.AUTO_RESOLVED)

    @property
    def deferred(self) -> int:
        return self._count(OperationOutcome.DEFERRED)

    @property
    def failed(self) -> int:
        return self._count(OperationOutcome.FAILED)

    @property
    def errors(self) -> list[str]:
        return [r.error for r in self.results if r.error]

    @property
    def success(self) -> bool:
        """True when every processed operation reached a successful state."""
        return all(r.outcome.is_success for r in self.results)


@dataclass
class SyncProgress:
    """Progress information for a running cycle."""

    total: int
    completed: int = 0
    current: str = ""

    @property
    def percentage(self) -> int:
        """Get progress percentage."""
        if self.total == 0:
            return 100
        return round(self.completed / self.total * 100)


@dataclass
class SyncStatus:
    """Observable engine status.

    Counts always reflect ground truth so a UI can render
    "N queued, M need your attention" without catching exceptions.
    """

    is_online: bool = False
    is_syncing: bool = False
    queued_operations: int = 0
    pending_conflicts: list[Conflict] = field(default_factory=list)
    failed_operations: int = 0
    last_sync_time: float | None = None
    progress: SyncProgress | None = None
    updated_at: float = field(default_factory=time.time)

    @property
    def state(self) -> SyncState:
        """Coarse state for status icons."""
        if self.is_syncing:
            return SyncState.SYNCING
        if not self.is_online:
            return SyncState.OFFLINE
        if self.pending_conflicts:
            return SyncState.CONFLICTS
        return SyncState.IDLE


# Type aliases for callbacks
StatusCallback = Callable[[SyncStatus], None]
ConnectivityCallback = Callable[[bool], None]
