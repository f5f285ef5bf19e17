"""Offline-first sync of record mutations.

Architecture:
    enqueue() → OperationQueue → SyncEngine cycle → RemoteAuthority
                                      ↓
                               ConflictStore → resolve_conflict()

Components:
- **OperationQueue**: Durable, ordered log of pending mutations
- **ConflictDetector**: Decision table comparing an operation with remote state
- **ConflictStore**: Open conflicts and the resolution audit log
- **ConnectivityMonitor**: Online/offline signal (host events + probes)
- **SyncEngine**: Orchestrates cycles and publishes SyncStatus

All public symbols are re-exported here.
"""

from offlinesync.client.sync.conflict import ConflictStore
from offlinesync.client.sync.connectivity import ConnectivityMonitor
from offlinesync.client.sync.domain import (
    ConflictDetector,
    Detection,
    DetectionOutcome,
    default_merge,
)
from offlinesync.client.sync.engine import SyncEngine
from offlinesync.client.sync.queue import OperationQueue
from offlinesync.client.sync.retry import (
    DEFAULT_BACKOFF_MULTIPLIER,
    DEFAULT_INITIAL_BACKOFF,
    DEFAULT_MAX_ATTEMPTS,
    DEFAULT_MAX_BACKOFF,
    compute_backoff,
    next_attempt_at,
)
from offlinesync.client.sync.types import (
    CachedRecord,
    Conflict,
    ConflictNotFoundError,
    EngineBusyError,
    OperationBatch,
    OperationNotFoundError,
    OperationOutcome,
    OperationResult,
    QueuedOperation,
    ResolutionRecord,
    StatusCallback,
    StorageExhaustedError,
    SyncError,
    SyncProgress,
    SyncReport,
    SyncStatus,
)

__all__ = [
    # Engine
    "SyncEngine",
    # Components
    "ConflictDetector",
    "ConflictStore",
    "ConnectivityMonitor",
    "Detection",
    "DetectionOutcome",
    "OperationQueue",
    "default_merge",
    # Retry
    "DEFAULT_BACKOFF_MULTIPLIER",
    "DEFAULT_INITIAL_BACKOFF",
    "DEFAULT_MAX_ATTEMPTS",
    "DEFAULT_MAX_BACKOFF",
    "compute_backoff",
    "next_attempt_at",
    # Types
    "CachedRecord",
    "Conflict",
    "ConflictNotFoundError",
    "EngineBusyError",
    "OperationBatch",
    "OperationNotFoundError",
    "OperationOutcome",
    "OperationResult",
    "QueuedOperation",
    "ResolutionRecord",
    "StatusCallback",
    "StorageExhaustedError",
    "SyncError",
    "SyncProgress",
    "SyncReport",
    "SyncStatus",
]
