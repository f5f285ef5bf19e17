"""Local record cache and sync state for the engine.

This module provides:
- RecordCache: SQLite-based cache of confirmed remote records

Architecture:
    A cached record always holds a value this client has *confirmed*: either
    fetched from the remote authority or returned by a successful commit.
    Queued (speculative) values never land here; they live in the operation
    queue until the server accepts them.

    The ``sync_state`` key/value table carries the scalars that must survive
    a restart: ``last_sync_time`` and the ``client_id`` used to build
    idempotency keys.
"""

from __future__ import annotations

import json
import logging
import time
import uuid
from pathlib import Path
from typing import Any

from offlinesync.client.storage import LocalDatabase
from offlinesync.client.sync.types import CachedRecord

logger = logging.getLogger(__name__)


class RecordCache:
    """SQLite-based cache of confirmed remote records."""

    def __init__(self, db: LocalDatabase | Path | str) -> None:
        """Initialize the cache tables.

        Args:
            db: Shared LocalDatabase, or a path to SQLite database file (or ":memory:").
        """
        self._db = LocalDatabase.ensure(db)
        self._lock = self._db.lock
        self._conn = self._db.conn
        self._create_tables()

    @property
    def database(self) -> LocalDatabase:
        return self._db

    def _create_tables(self) -> None:
        """Create database tables if they don't exist."""
        self._conn.executescript("""
            CREATE TABLE IF NOT EXISTS records (
                entity_type TEXT NOT NULL,
                entity_id TEXT NOT NULL,
                data TEXT NOT NULL,
                revision INTEGER NOT NULL,
                fetched_at REAL NOT NULL,
                PRIMARY KEY (entity_type, entity_id)
            );

            -- Key-value sync state
            CREATE TABLE IF NOT EXISTS sync_state (
                key TEXT PRIMARY KEY,
                value TEXT
            );
        """)

    def close(self) -> None:
        """Close the database connection."""
        self._db.close()

    # === Record operations ===

    def get(self, entity_type: str, entity_id: str) -> CachedRecord | None:
        """Get a cached record.

        Returns:
            CachedRecord if found, None otherwise.
        """
        with self._lock:
            row = self._conn.execute(
                "SELECT * FROM records WHERE entity_type = ? AND entity_id = ?",
                (entity_type, entity_id),
            ).fetchone()
        if row is None:
            return None
        return CachedRecord.from_row(row)

    def list_records(self, entity_type: str | None = None) -> list[CachedRecord]:
        """List cached records, optionally of one entity type."""
        with self._lock:
            if entity_type is None:
                rows = self._conn.execute(
                    "SELECT * FROM records ORDER BY entity_type, entity_id"
                ).fetchall()
            else:
                rows = self._conn.execute(
                    "SELECT * FROM records WHERE entity_type = ? ORDER BY entity_id",
                    (entity_type,),
                ).fetchall()
        return [CachedRecord.from_row(row) for row in rows]

    def put(
        self,
        entity_type: str,
        entity_id: str,
        data: dict[str, Any],
        revision: int,
    ) -> CachedRecord:
        """Store a confirmed record (upsert).

        Args:
            entity_type: Type of the entity.
            entity_id: Id of the entity.
            data: Confirmed data.
            revision: Confirmed remote revision.
        """
        now = time.time()
        with self._lock:
            self._conn.execute(
                """
                INSERT OR REPLACE INTO records (entity_type, entity_id, data, revision, fetched_at)
                VALUES (?, ?, ?, ?, ?)
                """,
                (entity_type, entity_id, json.dumps(data), revision, now),
            )
        logger.debug("Cached %s:%s at revision %d", entity_type, entity_id, revision)
        return CachedRecord(entity_type, entity_id, data, revision, now)

    def remove(self, entity_type: str, entity_id: str) -> None:
        """Forget a record (deleted remotely or locally confirmed delete)."""
        with self._lock:
            self._conn.execute(
                "DELETE FROM records WHERE entity_type = ? AND entity_id = ?",
                (entity_type, entity_id),
            )

    def count(self) -> int:
        """Number of cached records."""
        with self._lock:
            row = self._conn.execute("SELECT COUNT(*) FROM records").fetchone()
        return int(row[0])

    # === Sync state ===

    def get_state(self, key: str) -> str | None:
        """Get a sync state value."""
        with self._lock:
            row = self._conn.execute(
                "SELECT value FROM sync_state WHERE key = ?",
                (key,),
            ).fetchone()
        return row["value"] if row else None

    def set_state(self, key: str, value: str) -> None:
        """Set a sync state value."""
        with self._lock:
            self._conn.execute(
                "INSERT OR REPLACE INTO sync_state (key, value) VALUES (?, ?)",
                (key, value),
            )

    def get_last_sync_time(self) -> float | None:
        """Get timestamp of the last cycle that committed something."""
        value = self.get_state("last_sync_time")
        return float(value) if value else None

    def set_last_sync_time(self, timestamp: float) -> None:
        """Set timestamp of the last cycle that committed something."""
        self.set_state("last_sync_time", str(timestamp))

    def get_client_id(self) -> str:
        """Get this client's stable id, creating it on first use."""
        with self._lock:
            client_id = self.get_state("client_id")
            if client_id is None:
                client_id = uuid.uuid4().hex
                self.set_state("client_id", client_id)
                logger.info("Generated client id %s", client_id)
        return client_id
