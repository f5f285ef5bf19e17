"""Server database using SQLAlchemy with SQLite.

This module provides:
- Record storage with monotonically increasing revisions
- Optimistic concurrency on base revisions
- Idempotent replays keyed by operation id
- Per-revision change log for field-level diffs
"""

from __future__ import annotations

import json
import threading
from datetime import UTC, datetime
from pathlib import Path
from typing import TYPE_CHECKING, Any

from sqlalchemy import create_engine, select
from sqlalchemy.orm import Session

from offlinesync.server.models import Base, Record, RecordChange

if TYPE_CHECKING:
    from sqlalchemy import Engine

# Fields the server owns; clients may not write them
RESERVED_FIELDS = frozenset({"revision", "last_operation"})


class ConflictError(Exception):
    """Raised when a write is based on a stale revision.

    Attributes:
        current: The record as it is now (None if it does not exist).
    """

    def __init__(self, message: str, current: Record | None = None) -> None:
        super().__init__(message)
        self.current = current


class RecordNotFoundError(LookupError):
    """Raised when the target record does not exist."""


class InvalidPayloadError(ValueError):
    """Raised when a payload cannot be stored."""


def load_data(record: Record) -> dict[str, Any]:
    """Decode the JSON data of a record."""
    return dict(json.loads(record.data or "{}"))


def _validate_payload(payload: Any) -> dict[str, Any]:
    if not isinstance(payload, dict):
        raise InvalidPayloadError("Payload must be a JSON object")
    reserved = RESERVED_FIELDS & payload.keys()
    if reserved:
        raise InvalidPayloadError(f"Reserved fields cannot be written: {sorted(reserved)}")
    return payload


class Database:
    """SQLAlchemy database for the reference authority.

    Uses SQLite with WAL mode for better concurrency with multiple readers.
    Writes are serialized so the revision check and the update are atomic.
    """

    def __init__(self, db_path: Path) -> None:
        """Initialize the database.

        Args:
            db_path: Path to the SQLite database file.
        """
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._write_lock = threading.Lock()

        # Create engine with check_same_thread=False for multi-threaded access
        self._engine: Engine = create_engine(
            f"sqlite:///{self._db_path}",
            connect_args={"check_same_thread": False},
            echo=False,
        )

        # Enable WAL mode
        with self._engine.connect() as conn:
            conn.exec_driver_sql("PRAGMA journal_mode=WAL")

        # Create tables if they don't exist
        Base.metadata.create_all(self._engine)

    @property
    def path(self) -> Path:
        return self._db_path

    def close(self) -> None:
        """Close the database connection."""
        self._engine.dispose()

    def _session(self) -> Session:
        """Create a new database session."""
        return Session(self._engine)

    @staticmethod
    def _find(session: Session, entity_type: str, entity_id: str) -> Record | None:
        stmt = select(Record).where(
            Record.entity_type == entity_type,
            Record.entity_id == entity_id,
        )
        return session.execute(stmt).scalar_one_or_none()

    @staticmethod
    def _detach(session: Session, record: Record) -> Record:
        session.refresh(record)
        session.expunge(record)
        return record

    def _log_change(
        self,
        session: Session,
        record: Record,
        action: str,
        fields: set[str],
        operation_id: str | None,
    ) -> None:
        session.add(
            RecordChange(
                entity_type=record.entity_type,
                entity_id=record.entity_id,
                action=action,
                revision=record.revision,
                fields=json.dumps(sorted(fields)),
                operation_id=operation_id,
            )
        )

    # === Record operations ===

    def get_record(self, entity_type: str, entity_id: str) -> Record | None:
        """Get a live record.

        Returns:
            Record if it exists and is not deleted, None otherwise.
        """
        with self._session() as session:
            record = self._find(session, entity_type, entity_id)
            if record is None or record.deleted_at is not None:
                return None
            session.expunge(record)
            return record

    def create_record(
        self,
        entity_type: str,
        entity_id: str,
        payload: dict[str, Any],
        operation_id: str | None = None,
    ) -> Record:
        """Create a record at revision 1 (or continue a deleted record's revisions).

        Returns:
            The created record, or the current one if ``operation_id`` was
            already applied.

        Raises:
            ConflictError: If a live record already exists.
            InvalidPayloadError: If the payload is not storable.
        """
        payload = _validate_payload(payload)
        with self._write_lock, self._session() as session:
            record = self._find(session, entity_type, entity_id)

            if record is not None and record.deleted_at is None:
                if operation_id and record.last_operation == operation_id:
                    return self._detach(session, record)
                session.expunge(record)
                raise ConflictError(
                    f"Record already exists: {entity_type}/{entity_id}", record
                )

            if record is None:
                record = Record(
                    entity_type=entity_type,
                    entity_id=entity_id,
                    data=json.dumps(payload),
                    revision=1,
                    last_operation=operation_id,
                )
                session.add(record)
            else:
                # Revive tombstone
                record.data = json.dumps(payload)
                record.revision += 1
                record.last_operation = operation_id
                record.created_at = datetime.now(UTC)
                record.deleted_at = None

            session.flush()
            self._log_change(session, record, "CREATED", set(payload), operation_id)
            session.commit()
            return self._detach(session, record)

    def update_record(
        self,
        entity_type: str,
        entity_id: str,
        base_revision: int,
        payload: dict[str, Any],
        operation_id: str | None = None,
    ) -> Record:
        """Apply a partial update on top of ``base_revision``.

        Returns:
            The updated record, or the current one if ``operation_id`` was
            already applied.

        Raises:
            ConflictError: If the record moved past base_revision.
            RecordNotFoundError: If the record does not exist.
            InvalidPayloadError: If the payload is not storable.
        """
        payload = _validate_payload(payload)
        with self._write_lock, self._session() as session:
            record = self._find(session, entity_type, entity_id)
            if record is None or record.deleted_at is not None:
                raise RecordNotFoundError(f"Record not found: {entity_type}/{entity_id}")

            if operation_id and record.last_operation == operation_id:
                return self._detach(session, record)

            if record.revision != base_revision:
                session.expunge(record)
                raise ConflictError(
                    f"Conflict detected: expected revision {base_revision}, "
                    f"but current revision is {record.revision}",
                    record,
                )

            data = load_data(record)
            data.update(payload)
            record.data = json.dumps(data)
            record.revision += 1
            record.last_operation = operation_id

            self._log_change(session, record, "UPDATED", set(payload), operation_id)
            session.commit()
            return self._detach(session, record)

    def delete_record(
        self,
        entity_type: str,
        entity_id: str,
        base_revision: int,
        operation_id: str | None = None,
    ) -> None:
        """Delete a record if it is still at ``base_revision``.

        Replaying the operation that deleted the record succeeds again.

        Raises:
            ConflictError: If the record moved past base_revision.
            RecordNotFoundError: If the record does not exist.
        """
        with self._write_lock, self._session() as session:
            record = self._find(session, entity_type, entity_id)
            if record is None:
                raise RecordNotFoundError(f"Record not found: {entity_type}/{entity_id}")

            if record.deleted_at is not None:
                if operation_id and record.last_operation == operation_id:
                    return
                raise RecordNotFoundError(f"Record not found: {entity_type}/{entity_id}")

            if record.revision != base_revision:
                session.expunge(record)
                raise ConflictError(
                    f"Conflict detected: expected revision {base_revision}, "
                    f"but current revision is {record.revision}",
                    record,
                )

            fields = set(load_data(record))
            record.data = "{}"
            record.revision += 1
            record.last_operation = operation_id
            record.deleted_at = datetime.now(UTC)

            self._log_change(session, record, "DELETED", fields, operation_id)
            session.commit()

    def changed_fields_since(
        self,
        entity_type: str,
        entity_id: str,
        since_revision: int,
    ) -> set[str] | None:
        """Fields written after ``since_revision``.

        Returns:
            Set of field names, or None if the record does not exist.
        """
        with self._session() as session:
            record = self._find(session, entity_type, entity_id)
            if record is None or record.deleted_at is not None:
                return None
            stmt = select(RecordChange.fields).where(
                RecordChange.entity_type == entity_type,
                RecordChange.entity_id == entity_id,
                RecordChange.revision > since_revision,
            )
            fields: set[str] = set()
            for raw in session.execute(stmt).scalars():
                fields.update(json.loads(raw))
            return fields

