"""Conflict detection for queued operations.

Decides, for one queued operation and the current remote state of its
entity, whether the operation can be committed or must become a conflict.

Decision table:
    | Operation | Remote state                         | Outcome          |
    |-----------|--------------------------------------|------------------|
    | any       | last write carries our key           | ALREADY_APPLIED  |
    | create    | missing                              | APPLY            |
    | create    | exists (policy manual)               | CONFLICT         |
    | create    | exists (policy keep-remote)          | ADOPT_REMOTE     |
    | update    | revision == base                     | APPLY            |
    | update    | revision != base, disjoint fields    | AUTO_MERGE       |
    | update    | revision != base / unknown base      | CONFLICT         |
    | update    | missing                              | CONFLICT         |
    | delete    | revision == base                     | APPLY            |
    | delete    | revision != base / unknown base      | CONFLICT         |
    | delete    | missing                              | NO_OP            |

AUTO_MERGE is only possible when the remote authority can report which
fields changed since the operation's base revision. Without that report a
revision mismatch is always a whole-record conflict.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum, auto
from typing import TYPE_CHECKING

from offlinesync.client.sync.domain.merge import patch_fields
from offlinesync.core.types import CreateConflictPolicy, OperationKind

if TYPE_CHECKING:
    from offlinesync.client.api import RemoteRecord
    from offlinesync.client.sync.types import QueuedOperation


class DetectionOutcome(Enum):
    """Result of checking an operation against remote state."""

    APPLY = auto()  # Safe to commit on base_revision
    AUTO_MERGE = auto()  # Field-disjoint, commit on the current remote revision
    ALREADY_APPLIED = auto()  # Lost ack: the server already has this write
    NO_OP = auto()  # Nothing to do (delete of a missing entity)
    ADOPT_REMOTE = auto()  # Create hit an existing entity, policy keeps remote
    CONFLICT = auto()  # Needs a decision


@dataclass
class Detection:
    """What the engine should do with an operation."""

    outcome: DetectionOutcome
    base_revision: int | None = None  # Revision the commit is sent against
    remote: RemoteRecord | None = None
    reason: str = ""

    @property
    def is_conflict(self) -> bool:
        return self.outcome is DetectionOutcome.CONFLICT


class ConflictDetector:
    """Compares queued operations with remote state.

    Attributes:
        create_policy: Handling of creates that hit an existing entity
        auto_merge: Whether field-disjoint updates may skip the conflict
    """

    def __init__(
        self,
        create_policy: CreateConflictPolicy = CreateConflictPolicy.MANUAL,
        auto_merge: bool = True,
    ) -> None:
        self.create_policy = CreateConflictPolicy(create_policy)
        self.auto_merge = auto_merge

    def wants_field_diff(self, op: QueuedOperation, remote: RemoteRecord | None) -> bool:
        """Whether a per-field diff from the server could avoid a conflict."""
        return (
            self.auto_merge
            and op.kind is OperationKind.UPDATE
            and remote is not None
            and op.base_revision is not None
            and remote.revision != op.base_revision
            and bool(op.payload)
        )

    def check(
        self,
        op: QueuedOperation,
        remote: RemoteRecord | None,
        changed_fields: set[str] | None = None,
        idempotency_key: str | None = None,
    ) -> Detection:
        """Check an operation against the current remote record.

        Args:
            op: The queued operation
            remote: Current remote record, or None if it does not exist
            changed_fields: Fields changed remotely since op.base_revision,
                or None if the authority cannot tell
            idempotency_key: Key the operation is committed with

        Returns:
            The detection result. Does not modify anything.
        """
        if (
            remote is not None
            and idempotency_key is not None
            and remote.last_operation == idempotency_key
        ):
            return Detection(
                DetectionOutcome.ALREADY_APPLIED,
                base_revision=remote.revision,
                remote=remote,
                reason="server already applied this operation",
            )

        if op.kind is OperationKind.CREATE:
            if remote is None:
                return Detection(DetectionOutcome.APPLY)
            if self.create_policy is CreateConflictPolicy.KEEP_REMOTE:
                return Detection(
                    DetectionOutcome.ADOPT_REMOTE,
                    base_revision=remote.revision,
                    remote=remote,
                    reason="entity already exists remotely",
                )
            return Detection(
                DetectionOutcome.CONFLICT,
                remote=remote,
                reason="entity already exists remotely",
            )

        if remote is None:
            if op.kind is OperationKind.DELETE:
                return Detection(DetectionOutcome.NO_OP, reason="entity already gone")
            return Detection(DetectionOutcome.CONFLICT, reason="entity deleted remotely")

        if op.base_revision is not None and op.base_revision == remote.revision:
            return Detection(
                DetectionOutcome.APPLY,
                base_revision=remote.revision,
                remote=remote,
            )

        if (
            changed_fields is not None
            and self.wants_field_diff(op, remote)
            and not patch_fields(op.payload) & changed_fields
        ):
            return Detection(
                DetectionOutcome.AUTO_MERGE,
                base_revision=remote.revision,
                remote=remote,
                reason="remote changes touch other fields",
            )

        if op.base_revision is None:
            reason = "no confirmed base revision"
        else:
            reason = f"remote revision {remote.revision} != base {op.base_revision}"
        return Detection(DetectionOutcome.CONFLICT, remote=remote, reason=reason)
