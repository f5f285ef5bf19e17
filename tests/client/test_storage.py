"""Tests for the shared local database."""

from __future__ import annotations

import sqlite3
from collections.abc import Iterator
from pathlib import Path

import pytest

from offlinesync.client.state import RecordCache
from offlinesync.client.storage import LocalDatabase
from offlinesync.client.sync.conflict import ConflictStore
from offlinesync.client.sync.queue import OperationQueue
from offlinesync.core.types import OperationKind


@pytest.fixture
def db(tmp_path: Path) -> Iterator[LocalDatabase]:
    """Database in a fresh data directory."""
    d = LocalDatabase(tmp_path / "data" / "sync.db")
    yield d
    d.close()


class TestLocalDatabase:
    """Tests for LocalDatabase."""

    def test_creates_parent_directory(self, db: LocalDatabase, tmp_path: Path) -> None:
        """The data directory is created on open."""
        assert (tmp_path / "data").is_dir()

    def test_ensure(self, db: LocalDatabase, tmp_path: Path) -> None:
        """An open database is reused, a path is opened."""
        assert LocalDatabase.ensure(db) is db

        other = LocalDatabase.ensure(tmp_path / "other.db")
        try:
            assert other is not db
            assert other.path == tmp_path / "other.db"
        finally:
            other.close()

    def test_close_twice(self, tmp_path: Path) -> None:
        """Every store sharing the database may close it."""
        d = LocalDatabase(tmp_path / "sync.db")
        d.close()
        d.close()

    def test_transaction_commits(self, db: LocalDatabase) -> None:
        """Statements in a transaction are visible afterwards."""
        db.conn.execute("CREATE TABLE t (x INTEGER)")
        with db.transaction() as conn:
            conn.execute("INSERT INTO t VALUES (1)")

        assert db.conn.in_transaction is False
        assert db.conn.execute("SELECT COUNT(*) FROM t").fetchone()[0] == 1

    def test_nested_transaction_rolls_back_outer(self, db: LocalDatabase) -> None:
        """An inner block joins the outer one, so a later failure undoes both."""
        db.conn.execute("CREATE TABLE t (x INTEGER)")

        with pytest.raises(RuntimeError):
            with db.transaction() as outer:
                outer.execute("INSERT INTO t VALUES (1)")
                with db.transaction() as inner:
                    inner.execute("INSERT INTO t VALUES (2)")
                assert db.conn.in_transaction is True
                raise RuntimeError("boom")

        assert db.conn.execute("SELECT COUNT(*) FROM t").fetchone()[0] == 0


class TestSharedStores:
    """Tests for stores sharing one database."""

    def test_rollback_spans_stores(self, db: LocalDatabase) -> None:
        """Queue, cache and conflict changes roll back together."""
        queue = OperationQueue(db)
        cache = RecordCache(db)
        conflicts = ConflictStore(db)

        with pytest.raises(RuntimeError):
            with db.transaction():
                op = queue.enqueue("farmers", "F-1", OperationKind.UPDATE, {"name": "Ada"}, 5)
                cache.put("farmers", "F-1", {"name": "Ada"}, 5)
                conflicts.add(
                    op.id, "farmers", "F-1", OperationKind.UPDATE,
                    {"name": "Ada"}, {"name": "Ada R."}, 6,
                )
                raise RuntimeError("crash before commit")

        assert queue.count() == 0
        assert cache.get("farmers", "F-1") is None
        assert conflicts.count_open() == 0

    def test_closing_one_store_closes_database(self, db: LocalDatabase) -> None:
        """Stores hand their close to the shared database."""
        queue = OperationQueue(db)
        cache = RecordCache(db)

        assert queue.database is db
        assert cache.database is db

        queue.close()
        cache.close()

        with pytest.raises(sqlite3.ProgrammingError):
            db.conn.execute("SELECT 1")
