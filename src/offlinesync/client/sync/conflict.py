"""Resolution store for conflicts awaiting a user decision.

Open conflicts live in the ``conflicts`` table. Resolving one deletes the
open row and appends an audit entry to ``resolutions`` in the same
transaction, so a conflict is either open or resolved, never both, and each
conflict gets exactly one recorded resolution.
"""

from __future__ import annotations

import json
import logging
import time
from pathlib import Path
from typing import Any

from offlinesync.client.storage import LocalDatabase
from offlinesync.client.sync.types import (
    Conflict,
    ConflictNotFoundError,
    ResolutionRecord,
)
from offlinesync.core.types import OperationKind, Resolution

logger = logging.getLogger(__name__)


def _dump(value: dict[str, Any] | None) -> str | None:
    return json.dumps(value) if value is not None else None


class ConflictStore:
    """SQLite-backed store of open conflicts and their resolution history."""

    def __init__(self, db: LocalDatabase | Path | str) -> None:
        self._db = LocalDatabase.ensure(db)
        self._lock = self._db.lock
        self._conn = self._db.conn
        self._conn.executescript("""
            CREATE TABLE IF NOT EXISTS conflicts (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                operation_id INTEGER NOT NULL UNIQUE,
                entity_type TEXT NOT NULL,
                entity_id TEXT NOT NULL,
                kind TEXT NOT NULL,
                local_value TEXT,
                remote_value TEXT,
                remote_revision INTEGER,
                detected_at REAL NOT NULL
            );

            -- Append-only audit log
            CREATE TABLE IF NOT EXISTS resolutions (
                conflict_id INTEGER PRIMARY KEY,
                operation_id INTEGER NOT NULL,
                entity_type TEXT NOT NULL,
                entity_id TEXT NOT NULL,
                choice TEXT NOT NULL,
                resolved_at REAL NOT NULL
            );
        """)

    @property
    def database(self) -> LocalDatabase:
        return self._db

    def close(self) -> None:
        """Close the database connection."""
        self._db.close()

    def add(
        self,
        operation_id: int,
        entity_type: str,
        entity_id: str,
        kind: OperationKind,
        local_value: dict[str, Any] | None,
        remote_value: dict[str, Any] | None,
        remote_revision: int | None,
    ) -> Conflict:
        """Record a new conflict for a queued operation.

        If the operation already has an open conflict (the engine re-detected
        it), the stored conflict is refreshed with the new remote state.
        """
        now = time.time()
        with self._lock:
            self._conn.execute(
                """
                INSERT INTO conflicts (
                    operation_id, entity_type, entity_id, kind,
                    local_value, remote_value, remote_revision, detected_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(operation_id) DO UPDATE SET
                    local_value = excluded.local_value,
                    remote_value = excluded.remote_value,
                    remote_revision = excluded.remote_revision,
                    detected_at = excluded.detected_at
                """,
                (
                    operation_id,
                    entity_type,
                    entity_id,
                    OperationKind(kind).value,
                    _dump(local_value),
                    _dump(remote_value),
                    remote_revision,
                    now,
                ),
            )
            conflict = self.get_by_operation(operation_id)
        if conflict is None:
            raise ConflictNotFoundError(f"Conflict for operation #{operation_id} was not stored")
        logger.info(
            "Conflict #%d on %s:%s (operation #%d, remote revision %s)",
            conflict.id, entity_type, entity_id, operation_id, remote_revision,
        )
        return conflict

    def get(self, conflict_id: int) -> Conflict | None:
        """Get an open conflict by id."""
        with self._lock:
            row = self._conn.execute(
                "SELECT * FROM conflicts WHERE id = ?", (conflict_id,)
            ).fetchone()
        return Conflict.from_row(row) if row else None

    def get_by_operation(self, operation_id: int) -> Conflict | None:
        """Get the open conflict raised by a queued operation."""
        with self._lock:
            row = self._conn.execute(
                "SELECT * FROM conflicts WHERE operation_id = ?", (operation_id,)
            ).fetchone()
        return Conflict.from_row(row) if row else None

    def list_open(self) -> list[Conflict]:
        """List open conflicts, oldest first."""
        with self._lock:
            rows = self._conn.execute(
                "SELECT * FROM conflicts ORDER BY detected_at, id"
            ).fetchall()
        return [Conflict.from_row(row) for row in rows]

    def count_open(self) -> int:
        """Number of open conflicts."""
        with self._lock:
            row = self._conn.execute("SELECT COUNT(*) FROM conflicts").fetchone()
        return int(row[0])

    def resolve(
        self,
        conflict_id: int,
        choice: Resolution,
        resolved_at: float | None = None,
    ) -> ResolutionRecord:
        """Close a conflict and append its resolution to the audit log.

        Raises:
            ConflictNotFoundError: If the conflict is unknown or already resolved
            ValueError: If ``choice`` is UNRESOLVED
        """
        choice = Resolution(choice)
        if choice is Resolution.UNRESOLVED:
            raise ValueError("A resolution must be terminal")
        resolved_at = time.time() if resolved_at is None else resolved_at

        with self._db.transaction() as conn:
            row = conn.execute(
                "SELECT * FROM conflicts WHERE id = ?", (conflict_id,)
            ).fetchone()
            if row is None:
                raise ConflictNotFoundError(f"Conflict #{conflict_id} is not open")
            conn.execute("DELETE FROM conflicts WHERE id = ?", (conflict_id,))
            conn.execute(
                """
                INSERT INTO resolutions (
                    conflict_id, operation_id, entity_type, entity_id, choice, resolved_at
                ) VALUES (?, ?, ?, ?, ?, ?)
                """,
                (
                    conflict_id,
                    row["operation_id"],
                    row["entity_type"],
                    row["entity_id"],
                    choice.value,
                    resolved_at,
                ),
            )

        logger.info(
            "Resolved conflict #%d on %s:%s with %s",
            conflict_id, row["entity_type"], row["entity_id"], choice.value,
        )
        return ResolutionRecord(
            conflict_id=conflict_id,
            operation_id=row["operation_id"],
            entity_type=row["entity_type"],
            entity_id=row["entity_id"],
            choice=choice,
            resolved_at=resolved_at,
        )

    def history(self, entity_id: str | None = None) -> list[ResolutionRecord]:
        """Resolution audit log, oldest first."""
        with self._lock:
            if entity_id is None:
                rows = self._conn.execute(
                    "SELECT * FROM resolutions ORDER BY resolved_at, conflict_id"
                ).fetchall()
            else:
                rows = self._conn.execute(
                    "SELECT * FROM resolutions WHERE entity_id = ? "
                    "ORDER BY resolved_at, conflict_id",
                    (entity_id,),
                ).fetchall()
        return [ResolutionRecord.from_row(row) for row in rows]
