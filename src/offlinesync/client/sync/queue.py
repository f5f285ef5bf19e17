"""Durable operation queue for offline writes.

This module provides:
- OperationQueue: Crash-safe, ordered log of pending local mutations

Operations are stored in SQLite and ordered by ``position``. A fresh
operation's position equals its id; an operation re-issued by conflict
resolution inherits the position of the operation it replaces, so it stays
in front of later operations on the same entity.

Ordering rule:
    Operations on the same entity are dispatched strictly in position order.
    An entity whose earliest operation is conflicted, failed, in flight or
    still backing off is blocked: none of its later operations are returned
    by dequeue_batch() until the earlier one leaves the queue or becomes
    pending again. Independent entities are never blocked by each other.

Persistence (SQLite):
    Every mutation commits immediately (autocommit, WAL mode). Multi-statement
    changes run in an explicit IMMEDIATE transaction, or join the caller's
    transaction when the database is shared with other stores.

    Crash recovery: operations left in ``syncing`` when the process died are
    reset to ``pending`` on open. They are never dropped; the idempotency key
    sent with each write lets the server recognize a replay.
"""

from __future__ import annotations

import json
import logging
import sqlite3
import time
from contextlib import AbstractContextManager
from pathlib import Path
from typing import TYPE_CHECKING, Any

from offlinesync.client.storage import LocalDatabase
from offlinesync.client.sync.types import (
    OperationBatch,
    OperationNotFoundError,
    QueuedOperation,
    StorageExhaustedError,
)
from offlinesync.core.types import OperationKind, OperationState

if TYPE_CHECKING:
    from collections.abc import Iterable

logger = logging.getLogger(__name__)


def is_storage_full(exc: sqlite3.Error) -> bool:
    """Check whether a SQLite error means the disk or database is full."""
    code = getattr(exc, "sqlite_errorcode", None)
    if code is not None:
        return bool(code == sqlite3.SQLITE_FULL)
    return "full" in str(exc).lower()


def _state_values(states: Iterable[OperationState]) -> list[str]:
    return [OperationState(s).value for s in states]


class OperationQueue:
    """SQLite-backed ordered queue of local mutations.

    Attributes:
        max_size: Maximum number of queued operations (0 = unlimited)
    """

    def __init__(self, db: LocalDatabase | Path | str, max_size: int = 0) -> None:
        """Open (or create) the queue tables.

        Args:
            db: Shared LocalDatabase, or a path to SQLite DB (":memory:" for a
                throwaway queue)
            max_size: Maximum number of operations (0 = unlimited)
        """
        self._db = LocalDatabase.ensure(db)
        self._max_size = max_size
        self._lock = self._db.lock
        self._conn = self._db.conn

        self._create_tables()
        self._recover()

    @property
    def database(self) -> LocalDatabase:
        return self._db

    def _create_tables(self) -> None:
        """Create database tables if they don't exist."""
        self._conn.executescript("""
            CREATE TABLE IF NOT EXISTS operations (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                position INTEGER NOT NULL,
                entity_type TEXT NOT NULL,
                entity_id TEXT NOT NULL,
                kind TEXT NOT NULL,
                payload TEXT,
                base_revision INTEGER,
                created_at REAL NOT NULL,
                attempts INTEGER NOT NULL DEFAULT 0,
                state TEXT NOT NULL DEFAULT 'pending',
                last_error TEXT,
                next_attempt_at REAL NOT NULL DEFAULT 0
            );

            CREATE INDEX IF NOT EXISTS idx_operations_entity
                ON operations (entity_type, entity_id, position);
        """)

    def _recover(self) -> None:
        """Reset operations interrupted mid-cycle so they are retried."""
        with self._lock:
            cursor = self._conn.execute(
                "UPDATE operations SET state = ? WHERE state = ?",
                (OperationState.PENDING.value, OperationState.SYNCING.value),
            )
        if cursor.rowcount:
            logger.info(
                "Recovered %d operations interrupted during a sync cycle",
                cursor.rowcount,
            )
        total = len(self)
        if total:
            logger.info("Loaded %d queued operations from %s", total, self._db.path)

    def transaction(self) -> AbstractContextManager[sqlite3.Connection]:
        """Run several statements atomically (joins an outer transaction)."""
        return self._db.transaction()

    def close(self) -> None:
        """Close the database connection."""
        self._db.close()

    # === Writes ===

    def enqueue(
        self,
        entity_type: str,
        entity_id: str,
        kind: OperationKind,
        payload: dict[str, Any] | None = None,
        base_revision: int | None = None,
    ) -> QueuedOperation:
        """Append an operation at the end of the queue.

        Args:
            entity_type: Type of the target record
            entity_id: Id of the target record
            kind: create, update or delete
            payload: Change set (None for delete)
            base_revision: Confirmed revision the change was formed on

        Returns:
            The stored operation with its assigned id and position

        Raises:
            StorageExhaustedError: If the queue is full or the disk is full
        """
        kind = OperationKind(kind)
        with self._lock:
            if self._max_size > 0 and len(self) >= self._max_size:
                raise StorageExhaustedError(
                    f"Operation queue is full (max_size={self._max_size})"
                )
            try:
                with self.transaction() as conn:
                    cursor = conn.execute(
                        """
                        INSERT INTO operations (
                            position, entity_type, entity_id, kind, payload,
                            base_revision, created_at
                        ) VALUES (0, ?, ?, ?, ?, ?, ?)
                        """,
                        (
                            entity_type,
                            entity_id,
                            kind.value,
                            json.dumps(payload) if payload is not None else None,
                            base_revision,
                            time.time(),
                        ),
                    )
                    op_id = cursor.lastrowid
                    conn.execute(
                        "UPDATE operations SET position = id WHERE id = ?", (op_id,)
                    )
            except sqlite3.Error as e:
                if is_storage_full(e):
                    raise StorageExhaustedError(f"Local storage is full: {e}") from e
                raise

            op = self._require(op_id)
        logger.debug("Queued %r (queue size: %d)", op, len(self))
        return op

    def _set_state(self, op_id: int, state: OperationState, **extra: Any) -> None:
        assignments = ["state = ?"]
        values: list[Any] = [state.value]
        for column, value in extra.items():
            assignments.append(f"{column} = ?")
            values.append(value)
        values.append(op_id)
        with self._lock:
            self._conn.execute(
                f"UPDATE operations SET {', '.join(assignments)} WHERE id = ?",
                values,
            )

    def mark_syncing(self, op_id: int) -> None:
        """Mark an operation as in flight."""
        self._set_state(op_id, OperationState.SYNCING)

    def mark_conflicted(self, op_id: int) -> None:
        """Mark an operation as waiting for a conflict decision."""
        self._set_state(op_id, OperationState.CONFLICTED)

    def mark_failed(self, op_id: int, reason: str) -> None:
        """Move an operation to the dead-letter state."""
        self._set_state(op_id, OperationState.FAILED, last_error=reason)
        logger.debug("Operation #%d failed: %s", op_id, reason)

    def record_attempt(
        self,
        op_id: int,
        error: str,
        next_attempt_at: float,
    ) -> QueuedOperation | None:
        """Record a failed transport attempt and put the operation back to pending.

        Returns:
            The updated operation, or None if it is no longer queued
        """
        with self._lock:
            self._conn.execute(
                """
                UPDATE operations
                SET attempts = attempts + 1, state = ?, last_error = ?, next_attempt_at = ?
                WHERE id = ?
                """,
                (OperationState.PENDING.value, error, next_attempt_at, op_id),
            )
            return self.get(op_id)

    def remove(self, op_id: int) -> bool:
        """Remove an operation (committed or discarded).

        Returns:
            True if an operation was removed
        """
        with self._lock:
            cursor = self._conn.execute("DELETE FROM operations WHERE id = ?", (op_id,))
        return cursor.rowcount > 0

    def reissue(
        self,
        op_id: int,
        kind: OperationKind,
        payload: dict[str, Any] | None,
        base_revision: int | None,
    ) -> QueuedOperation:
        """Replace an operation with a fresh pending one at the same position.

        Raises:
            OperationNotFoundError: If the operation is not queued
        """
        with self.transaction() as conn:
            old = self.get(op_id)
            if old is None:
                raise OperationNotFoundError(f"Operation #{op_id} is not queued")
            conn.execute("DELETE FROM operations WHERE id = ?", (op_id,))
            cursor = conn.execute(
                """
                INSERT INTO operations (
                    position, entity_type, entity_id, kind, payload,
                    base_revision, created_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    old.position,
                    old.entity_type,
                    old.entity_id,
                    OperationKind(kind).value,
                    json.dumps(payload) if payload is not None else None,
                    base_revision,
                    time.time(),
                ),
            )
            new_id = cursor.lastrowid
        op = self._require(new_id)
        logger.debug("Re-issued operation #%d as %r", op_id, op)
        return op

    def rebase(
        self,
        entity_type: str,
        entity_id: str,
        after_position: int,
        from_revision: int | None,
        to_revision: int | None,
    ) -> int:
        """Move later operations on an entity onto a new base revision.

        Only operations formed on ``from_revision`` are touched: they were
        built on top of the write that has just been confirmed.

        Returns:
            Number of operations rebased
        """
        with self._lock:
            cursor = self._conn.execute(
                """
                UPDATE operations SET base_revision = ?
                WHERE entity_type = ? AND entity_id = ? AND position > ?
                  AND base_revision IS ? AND state != ?
                """,
                (
                    to_revision,
                    entity_type,
                    entity_id,
                    after_position,
                    from_revision,
                    OperationState.CONFLICTED.value,
                ),
            )
        if cursor.rowcount:
            logger.debug(
                "Rebased %d operations on %s:%s from revision %s to %s",
                cursor.rowcount, entity_type, entity_id, from_revision, to_revision,
            )
        return cursor.rowcount

    def retry(self, op_id: int) -> QueuedOperation:
        """Give a failed operation a fresh set of attempts.

        Raises:
            OperationNotFoundError: If the operation is not queued
        """
        with self._lock:
            op = self.get(op_id)
            if op is None:
                raise OperationNotFoundError(f"Operation #{op_id} is not queued")
            if op.state is not OperationState.FAILED:
                return op
            self._set_state(
                op_id,
                OperationState.PENDING,
                attempts=0,
                next_attempt_at=0.0,
                last_error=None,
            )
            retried = self._require(op_id)
        logger.info("Operation #%d moved back to pending", op_id)
        return retried

    def clear(self, states: Iterable[OperationState] | None = None) -> int:
        """Remove operations from the queue.

        Args:
            states: Only remove operations in these states (None = all)

        Returns:
            Number of operations removed
        """
        with self._lock:
            if states is None:
                cursor = self._conn.execute("DELETE FROM operations")
            else:
                values = _state_values(states)
                placeholders = ", ".join("?" for _ in values)
                cursor = self._conn.execute(
                    f"DELETE FROM operations WHERE state IN ({placeholders})",
                    values,
                )
        logger.info("Cleared %d operations from queue", cursor.rowcount)
        return cursor.rowcount

    # === Reads ===

    def get(self, op_id: int) -> QueuedOperation | None:
        """Get an operation by id."""
        with self._lock:
            row = self._conn.execute(
                "SELECT * FROM operations WHERE id = ?", (op_id,)
            ).fetchone()
        return QueuedOperation.from_row(row) if row else None

    def _require(self, op_id: int | None) -> QueuedOperation:
        op = self.get(op_id) if op_id is not None else None
        if op is None:
            raise OperationNotFoundError(f"Operation #{op_id} is not queued")
        return op

    def list_operations(
        self, states: Iterable[OperationState] | None = None
    ) -> list[QueuedOperation]:
        """List operations in queue order."""
        query = "SELECT * FROM operations"
        values: list[str] = []
        if states is not None:
            values = _state_values(states)
            query += f" WHERE state IN ({', '.join('?' for _ in values)})"
        query += " ORDER BY position, id"
        with self._lock:
            rows = self._conn.execute(query, values).fetchall()
        return [QueuedOperation.from_row(row) for row in rows]

    def count(self, states: Iterable[OperationState] | None = None) -> int:
        """Count operations, optionally filtered by state."""
        query = "SELECT COUNT(*) FROM operations"
        values: list[str] = []
        if states is not None:
            values = _state_values(states)
            query += f" WHERE state IN ({', '.join('?' for _ in values)})"
        with self._lock:
            row = self._conn.execute(query, values).fetchone()
        return int(row[0])

    def dequeue_batch(self, now: float | None = None) -> list[OperationBatch]:
        """Snapshot the dispatchable operations, grouped per entity.

        Batches are returned in the order their entity first appears in the
        queue; operations inside a batch are in queue order.

        Args:
            now: Reference time for backoff checks (default: time.time())
        """
        now = time.time() if now is None else now
        blocked: set[tuple[str, str]] = set()
        batches: dict[tuple[str, str], OperationBatch] = {}

        for op in self.list_operations():
            key = op.entity_key
            if key in blocked:
                continue
            if op.state is not OperationState.PENDING or op.next_attempt_at > now:
                blocked.add(key)
                continue
            batch = batches.get(key)
            if batch is None:
                batch = batches[key] = OperationBatch(op.entity_type, op.entity_id)
            batch.operations.append(op)

        return list(batches.values())

    def __len__(self) -> int:
        """Get number of queued operations (all states)."""
        return self.count()

    def __bool__(self) -> bool:
        return len(self) > 0
