"""Shared types for offlinesync.

This module defines enums used by the client engine, the CLI and the
reference server. All enums are string-valued so they can be stored in
SQLite and sent as JSON without conversion.
"""

from __future__ import annotations

from enum import Enum


class SyncState(str, Enum):
    """Coarse state of the sync engine, as shown to the user."""

    IDLE = "idle"
    SYNCING = "syncing"
    CONFLICTS = "conflicts"  # Idle, but conflicts need a decision
    OFFLINE = "offline"


class OperationKind(str, Enum):
    """Kind of mutation carried by a queued operation."""

    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


class OperationState(str, Enum):
    """Lifecycle state of a queued operation."""

    PENDING = "pending"
    SYNCING = "syncing"
    FAILED = "failed"  # Dead letter, needs user action
    CONFLICTED = "conflicted"


class ResolutionChoice(str, Enum):
    """Choice offered to the user when resolving a conflict."""

    KEEP_LOCAL = "keep-local"
    KEEP_REMOTE = "keep-remote"
    MERGED = "merged"
    DISCARD = "discard"


class Resolution(str, Enum):
    """Recorded resolution of a conflict."""

    UNRESOLVED = "unresolved"
    KEEP_LOCAL = "keep-local"
    KEEP_REMOTE = "keep-remote"
    MERGED = "merged"
    DISCARDED = "discarded"

    @classmethod
    def from_choice(cls, choice: ResolutionChoice) -> Resolution:
        """Map a user choice to the resolution recorded for audit."""
        if choice is ResolutionChoice.DISCARD:
            return cls.DISCARDED
        return cls(choice.value)


class CreateConflictPolicy(str, Enum):
    """What to do when a local create hits an entity that already exists remotely."""

    MANUAL = "manual"  # Always ask the user
    KEEP_REMOTE = "keep-remote"  # Adopt the remote entity, drop the local create


class ConflictPolicy(str, Enum):
    """How a revision conflict is settled when it is detected."""

    MANUAL = "manual"  # Park it until resolve_conflict()
    CLIENT_WINS = "client-wins"  # Re-issue the local change (keep-local)
    SERVER_WINS = "server-wins"  # Adopt the remote value (keep-remote)
    MERGE = "merge"  # Re-issue the remote value overlaid with the local change
