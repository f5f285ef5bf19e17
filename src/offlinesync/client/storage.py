"""SQLite connection shared by the client stores.

The operation queue, the record cache and the conflict store can live in one
database file behind one connection. Sharing the connection lets a conflict
resolution touch all three in a single transaction.
"""

from __future__ import annotations

import logging
import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Iterator

logger = logging.getLogger(__name__)


class LocalDatabase:
    """One autocommit SQLite connection with a reentrant transaction helper.

    Attributes:
        path: Database file (or ":memory:")
        conn: The connection (autocommit, WAL mode, rows as sqlite3.Row)
        lock: Lock serializing access from several threads
    """

    def __init__(self, db_path: Path | str) -> None:
        self.path = db_path
        if str(db_path) != ":memory:":
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)

        self.lock = threading.RLock()
        self.conn = sqlite3.connect(
            str(db_path),
            check_same_thread=False,
            isolation_level=None,  # Autocommit mode
        )
        self.conn.row_factory = sqlite3.Row
        self.conn.execute("PRAGMA journal_mode=WAL")
        self._closed = False

    @classmethod
    def ensure(cls, db: LocalDatabase | Path | str) -> LocalDatabase:
        """Return ``db`` itself, or open a database at that path."""
        if isinstance(db, LocalDatabase):
            return db
        return cls(db)

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """Run statements atomically.

        Nested use joins the outer transaction; only the outermost block
        commits or rolls back.
        """
        with self.lock:
            if self.conn.in_transaction:
                yield self.conn
                return
            self.conn.execute("BEGIN IMMEDIATE")
            try:
                yield self.conn
            except BaseException:
                self.conn.execute("ROLLBACK")
                raise
            self.conn.execute("COMMIT")

    def close(self) -> None:
        """Close the connection (safe to call from every store sharing it)."""
        with self.lock:
            if self._closed:
                return
            self._closed = True
            self.conn.close()
        logger.debug("Closed local database %s", self.path)
