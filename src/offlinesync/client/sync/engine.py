"""Sync engine: drives offline writes to the remote authority.

This module provides:
- SyncEngine: Orchestrator owning the sync cycle and the observable status

The engine is the "brain" of the client:
1. UI actions append operations through enqueue()
2. A trigger (connectivity transition, timer, sync_now()) starts a cycle
3. The cycle snapshots the queue, checks each operation against remote state
   with the ConflictDetector and commits what is safe
4. Conflicts are parked in the ConflictStore until resolve_conflict(), or
   settled at once when EngineConfig.conflict_policy is not manual

State machine:
    Idle --[online, work queued, not syncing]--> Syncing --> Idle
    (Idle with open conflicts is reported as SyncState.CONFLICTS)

Concurrency:
    Everything runs on one asyncio event loop. The ``_syncing`` flag is
    checked and set with no await in between, so concurrent triggers collapse
    into a single cycle. Within a cycle, operations on one entity run in
    queue order; different entities run concurrently up to
    ``EngineConfig.max_concurrency``.

Error handling:
    | Failure                      | Operation becomes                   |
    |------------------------------|-------------------------------------|
    | Revision mismatch            | conflicted + Conflict record        |
    | Revision mismatch, policy    | re-issued or dropped, resolution    |
    | Transport error / timeout    | pending, attempts+1, backoff        |
    | Transport error, max reached | failed (dead letter)                |
    | Validation rejection         | failed (dead letter), not retried   |
"""

from __future__ import annotations

import asyncio
import contextlib
import dataclasses
import logging
import time
from pathlib import Path
from typing import TYPE_CHECKING, Any

from offlinesync.client.api import (
    APIError,
    AuthenticationError,
    NotFoundError,
    RevisionMismatchError,
    TransportError,
    ValidationRejectedError,
)
from offlinesync.client.state import RecordCache
from offlinesync.client.storage import LocalDatabase
from offlinesync.client.sync.conflict import ConflictStore
from offlinesync.client.sync.connectivity import ConnectivityMonitor
from offlinesync.client.sync.domain import (
    ConflictDetector,
    Detection,
    DetectionOutcome,
    apply_patch,
    default_merge,
)
from offlinesync.client.sync.queue import OperationQueue
from offlinesync.client.sync.retry import next_attempt_at
from offlinesync.client.sync.types import (
    CachedRecord,
    Conflict,
    ConflictNotFoundError,
    EngineBusyError,
    OperationBatch,
    OperationOutcome,
    OperationResult,
    QueuedOperation,
    ResolutionRecord,
    StatusCallback,
    SyncProgress,
    SyncReport,
    SyncStatus,
)
from offlinesync.core.config import EngineConfig
from offlinesync.core.types import (
    ConflictPolicy,
    OperationKind,
    OperationState,
    Resolution,
    ResolutionChoice,
)

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable
    from contextlib import AbstractContextManager

    from offlinesync.client.api import RemoteAuthority, RemoteRecord

logger = logging.getLogger(__name__)

DB_FILENAME = "offlinesync.db"


class SyncEngine:
    """Offline-first sync orchestrator.

    The engine owns the stores it is given and closes them in close().

    Usage:
        async with RemoteClient(ServerConfig("https://records.example.com")) as remote:
            engine = SyncEngine.open(data_dir, remote)
            await engine.start()

            op_id = await engine.enqueue("farmers", "F-1", "update", {"county": "Bong"})
            engine.monitor.set_host_online(True)  # schedules a cycle
            await engine.wait_idle()

            for conflict in engine.status.pending_conflicts:
                await engine.resolve_conflict(conflict.id, "keep-remote")

            await engine.close()
    """

    def __init__(
        self,
        queue: OperationQueue,
        cache: RecordCache,
        conflicts: ConflictStore,
        remote: RemoteAuthority,
        monitor: ConnectivityMonitor | None = None,
        config: EngineConfig | None = None,
        detector: ConflictDetector | None = None,
    ) -> None:
        """Initialize the engine with its collaborators.

        Args:
            queue: Durable operation queue
            cache: Confirmed record cache and sync state
            conflicts: Resolution store
            remote: Remote authority client
            monitor: Connectivity monitor (default: probes remote.health_check)
            config: Engine tunables
            detector: Conflict detector (default: built from config)
        """
        self._config = config or EngineConfig()
        self._queue = queue
        self._cache = cache
        self._conflicts = conflicts
        self._remote = remote
        self._monitor = monitor or ConnectivityMonitor(
            probe=remote.health_check,
            probe_interval=self._config.probe_interval,
        )
        self._detector = detector or ConflictDetector(
            create_policy=self._config.create_conflict_policy,
            auto_merge=self._config.auto_merge,
        )

        self._client_id = cache.get_client_id()
        self._last_sync_time = cache.get_last_sync_time()

        self._syncing = False
        self._progress: SyncProgress | None = None
        self._subscribers: list[StatusCallback] = []
        self._tasks: set[asyncio.Task[Any]] = set()
        self._timer: asyncio.Task[None] | None = None
        self._closed = False

        self._remove_listener = self._monitor.add_listener(self._on_connectivity_change)
        self._status = self._build_status()

    @classmethod
    def open(
        cls,
        data_dir: Path | str,
        remote: RemoteAuthority,
        config: EngineConfig | None = None,
        monitor: ConnectivityMonitor | None = None,
    ) -> SyncEngine:
        """Create an engine whose stores share one SQLite database in ``data_dir``."""
        config = config or EngineConfig()
        db = LocalDatabase(Path(data_dir) / DB_FILENAME)
        return cls(
            queue=OperationQueue(db, max_size=config.max_queue_size),
            cache=RecordCache(db),
            conflicts=ConflictStore(db),
            remote=remote,
            monitor=monitor,
            config=config,
        )

    # === Properties ===

    @property
    def config(self) -> EngineConfig:
        return self._config

    @property
    def monitor(self) -> ConnectivityMonitor:
        return self._monitor

    @property
    def client_id(self) -> str:
        return self._client_id

    @property
    def status(self) -> SyncStatus:
        """Latest published status snapshot."""
        return self._status

    @property
    def is_online(self) -> bool:
        return self._monitor.is_online

    @property
    def is_syncing(self) -> bool:
        return self._syncing

    @property
    def queued_operations(self) -> int:
        return self._status.queued_operations

    @property
    def pending_conflicts(self) -> list[Conflict]:
        return self._status.pending_conflicts

    @property
    def last_sync_time(self) -> float | None:
        return self._last_sync_time

    # === Status plumbing ===

    def subscribe(self, callback: StatusCallback) -> Callable[[], None]:
        """Register a status observer.

        Returns:
            Function removing the observer.
        """
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            with contextlib.suppress(ValueError):
                self._subscribers.remove(callback)

        return unsubscribe

    def _build_status(self) -> SyncStatus:
        return SyncStatus(
            is_online=self._monitor.is_online,
            is_syncing=self._syncing,
            queued_operations=self._queue.count(),
            pending_conflicts=self._conflicts.list_open(),
            failed_operations=self._queue.count([OperationState.FAILED]),
            last_sync_time=self._last_sync_time,
            progress=dataclasses.replace(self._progress) if self._progress else None,
        )

    def _publish(self) -> None:
        if self._closed:
            return
        self._status = self._build_status()
        for callback in list(self._subscribers):
            try:
                callback(self._status)
            except Exception:
                logger.exception("Status subscriber failed")

    # === Lifecycle ===

    async def start(self) -> None:
        """Start probing, the auto-sync timer and publish the initial status."""
        await self._monitor.start()
        if self._config.auto_sync_interval > 0 and self._timer is None:
            self._timer = asyncio.create_task(self._auto_sync_loop(), name="AutoSync")
        self._publish()
        self._schedule_sync("startup")

    async def close(self) -> None:
        """Stop background work and close the stores.

        A cycle interrupted here leaves its in-flight operations in
        ``syncing``; they are reset to ``pending`` when the queue is reopened.
        """
        if self._closed:
            return
        self._remove_listener()
        if self._timer is not None:
            self._timer.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._timer
            self._timer = None
        await self._monitor.stop()

        for task in list(self._tasks):
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)

        self._closed = True
        self._queue.close()
        self._cache.close()
        self._conflicts.close()
        logger.debug("Sync engine closed")

    async def wait_idle(self) -> None:
        """Wait until scheduled cycles have finished."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def _auto_sync_loop(self) -> None:
        while True:
            await asyncio.sleep(self._config.auto_sync_interval)
            self._schedule_sync("timer")

    def _on_connectivity_change(self, online: bool) -> None:
        self._publish()
        if online:
            self._schedule_sync("connectivity")

    def _schedule_sync(self, reason: str) -> None:
        """Start a background cycle if one could do useful work."""
        if self._closed or self._syncing:
            return
        if not self.is_online and not self._monitor.awaiting_probe:
            return
        if not self._queue.dequeue_batch():
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("No running event loop, cannot schedule sync (%s)", reason)
            return

        logger.debug("Scheduling sync cycle (%s)", reason)
        task = loop.create_task(self._run_scheduled(reason))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _run_scheduled(self, reason: str) -> None:
        try:
            await self.sync_now()
        except Exception:
            logger.exception("Scheduled sync cycle failed (%s)", reason)

    # === Public operations ===

    async def enqueue(
        self,
        entity_type: str,
        entity_id: str,
        kind: OperationKind | str,
        payload: dict[str, Any] | None = None,
        base_revision: int | None = None,
    ) -> int:
        """Queue a local mutation.

        Args:
            entity_type: Type of the target record
            entity_id: Id of the target record
            kind: create, update or delete
            payload: Full record (create) or patch (update); ignored for delete
            base_revision: Revision the change was formed on
                (default: the cached revision)

        Returns:
            Id of the queued operation

        Raises:
            ValueError: If create/update comes without a payload
            StorageExhaustedError: If the operation could not be stored
        """
        kind = OperationKind(kind)
        if kind is OperationKind.DELETE:
            payload = None
        elif payload is None:
            raise ValueError(f"A {kind.value} operation needs a payload")

        if kind is OperationKind.CREATE:
            base_revision = None
        elif base_revision is None:
            cached = self._cache.get(entity_type, entity_id)
            base_revision = cached.revision if cached else None

        op = self._queue.enqueue(entity_type, entity_id, kind, payload, base_revision)
        logger.info("Queued %s of %s:%s as #%d", kind.value, entity_type, entity_id, op.id)
        self._publish()
        self._schedule_sync("enqueue")
        return op.id

    async def sync_now(self) -> SyncReport | None:
        """Run one sync cycle now.

        If the authority was reported unreachable while the host is online,
        it is probed first.

        Returns:
            The cycle report, or None if offline or a cycle is already running.
        """
        if self._syncing:
            logger.debug("Sync already in progress, ignoring trigger")
            return None
        if self._monitor.awaiting_probe:
            await self._monitor.probe_once()
            if self._syncing:
                logger.debug("Sync already in progress, ignoring trigger")
                return None
        if not self.is_online:
            logger.debug("Offline, not syncing")
            return None
        self._syncing = True

        report = SyncReport(started_at=time.time())
        try:
            batches = self._queue.dequeue_batch()
            total = sum(len(batch) for batch in batches)
            self._progress = SyncProgress(total=total)
            self._publish()
            logger.info(
                "Sync cycle started: %d operations on %d entities",
                total, len(batches),
            )

            semaphore = asyncio.Semaphore(self._config.max_concurrency)

            async def run(batch: OperationBatch) -> list[OperationResult]:
                async with semaphore:
                    return await self._sync_entity(batch)

            for results in await asyncio.gather(*(run(batch) for batch in batches)):
                report.results.extend(results)
        finally:
            report.finished_at = time.time()
            if report.committed:
                self._last_sync_time = report.finished_at
                self._cache.set_last_sync_time(report.finished_at)
            self._progress = None
            self._syncing = False
            self._publish()

        logger.info(
            "Sync cycle finished in %.2fs: %d committed, %d conflicts, %d deferred, %d failed",
            report.finished_at - report.started_at,
            report.committed, report.conflicted, report.deferred, report.failed,
        )
        if report.auto_resolved:
            # Re-issued operations wait for a new cycle
            self._schedule_sync("auto-resolved conflicts")
        return report

    async def resolve_conflict(
        self,
        conflict_id: int,
        choice: ResolutionChoice | str,
        merged_payload: dict[str, Any] | None = None,
    ) -> ResolutionRecord:
        """Apply a user decision to an open conflict.

        Args:
            conflict_id: Id of the open conflict
            choice: keep-local, keep-remote, merged or discard
            merged_payload: Reconciled payload (required for merged)

        Returns:
            The audit record of the resolution

        Raises:
            ConflictNotFoundError: If the conflict is unknown or already resolved
            ValueError: If merged is chosen without a payload
        """
        choice = ResolutionChoice(choice)
        conflict = self._conflicts.get(conflict_id)
        if conflict is None:
            raise ConflictNotFoundError(f"Conflict #{conflict_id} is not open")
        if choice is ResolutionChoice.MERGED and merged_payload is None:
            raise ValueError("A merged resolution needs a merged payload")

        record = self._resolve(conflict, choice, merged_payload)
        self._publish()
        self._schedule_sync("conflict resolved")
        return record

    async def clear_queue(self) -> int:
        """Drop every pending and failed operation.

        Conflicted operations stay: they belong to open conflicts, which
        only resolve_conflict() may close.

        Returns:
            Number of operations removed

        Raises:
            EngineBusyError: If a sync cycle is running
        """
        if self._syncing:
            raise EngineBusyError("Cannot clear the queue while syncing")
        removed = self._queue.clear([OperationState.PENDING, OperationState.FAILED])
        self._publish()
        return removed

    async def retry_operation(self, op_id: int) -> QueuedOperation:
        """Move a failed (dead-letter) operation back to pending.

        Raises:
            OperationNotFoundError: If the operation is not queued
        """
        op = self._queue.retry(op_id)
        self._publish()
        self._schedule_sync("retry")
        return op

    async def refresh(self, entity_type: str, entity_id: str) -> CachedRecord | None:
        """Fetch a record from the authority and update the cache.

        Raises:
            TransportError: If the authority cannot be reached
        """
        remote = await self._remote.get(entity_type, entity_id)
        self._remember(entity_type, entity_id, remote)
        if remote is None:
            return None
        return self._cache.get(entity_type, entity_id)

    def get_cached(self, entity_type: str, entity_id: str) -> CachedRecord | None:
        """Last confirmed copy of a record."""
        return self._cache.get(entity_type, entity_id)

    def list_operations(
        self, states: Iterable[OperationState] | None = None
    ) -> list[QueuedOperation]:
        """Queued operations in queue order."""
        return self._queue.list_operations(states)

    def resolution_history(self, entity_id: str | None = None) -> list[ResolutionRecord]:
        """Audit log of resolved conflicts."""
        return self._conflicts.history(entity_id)

    # === Cycle internals ===

    def _idempotency_key(self, op: QueuedOperation) -> str:
        return f"{self._client_id}:{op.id}"

    def _remember(self, entity_type: str, entity_id: str, remote: RemoteRecord | None) -> None:
        if remote is None:
            self._cache.remove(entity_type, entity_id)
        else:
            self._cache.put(entity_type, entity_id, remote.data, remote.revision)

    async def _sync_entity(self, batch: OperationBatch) -> list[OperationResult]:
        """Process one entity's operations in order, stopping at the first miss."""
        results: list[OperationResult] = []
        for index, queued in enumerate(batch.operations):
            # Re-read: an earlier commit may have rebased this operation
            op = self._queue.get(queued.id)
            if op is None or op.state is not OperationState.PENDING:
                self._advance_progress(len(batch.operations) - index, "")
                break

            result = await self._process(op)
            results.append(result)
            self._advance_progress(1, f"{op.kind.value} {op.entity_type}:{op.entity_id}")

            if not result.outcome.is_success:
                # Later operations on this entity must wait for this one
                self._advance_progress(len(batch.operations) - index - 1, "")
                break
        return results

    def _advance_progress(self, count: int, current: str) -> None:
        if self._progress is None or count <= 0:
            return
        self._progress.completed += count
        if current:
            self._progress.current = current
        self._publish()

    async def _process(self, op: QueuedOperation) -> OperationResult:
        """Detect, commit and record the outcome of one operation."""
        key = self._idempotency_key(op)
        self._queue.mark_syncing(op.id)
        logger.debug("Processing %r", op)

        try:
            remote = await self._remote.get(op.entity_type, op.entity_id)
            changed = None
            if op.base_revision is not None and self._detector.wants_field_diff(op, remote):
                changed = await self._remote.changed_fields(
                    op.entity_type, op.entity_id, op.base_revision
                )
            detection = self._detector.check(op, remote, changed, key)
            return await self._apply(op, detection, key)

        except RevisionMismatchError as e:
            # The record moved between our read and our write
            detection = self._detector.check(op, e.current, idempotency_key=key)
            if detection.outcome in (DetectionOutcome.APPLY, DetectionOutcome.AUTO_MERGE):
                detection = Detection(DetectionOutcome.CONFLICT, remote=e.current)
            return await self._apply(op, detection, key)

        except NotFoundError:
            # Update of a record deleted between our read and our write
            return self._open_conflict(op, None)

        except ValidationRejectedError as e:
            self._queue.mark_failed(op.id, f"Rejected by server: {e}")
            logger.error("Operation #%d rejected by server: %s", op.id, e)
            return OperationResult(op.id, OperationOutcome.FAILED, error=str(e))

        except AuthenticationError as e:
            logger.error("Authentication failed for operation #%d: %s", op.id, e)
            return self._defer(op, str(e))

        except TransportError as e:
            if e.status_code is None:
                self._monitor.report_unreachable()
            return self._defer(op, str(e))

        except APIError as e:
            return self._defer(op, str(e))

        except BaseException:
            # Unexpected failure or cancellation: leave the operation retryable
            current = self._queue.get(op.id)
            if current is not None and current.state is OperationState.SYNCING:
                self._queue.record_attempt(op.id, "interrupted", current.next_attempt_at)
            raise

    async def _apply(
        self,
        op: QueuedOperation,
        detection: Detection,
        key: str,
    ) -> OperationResult:
        outcome = detection.outcome

        if outcome is DetectionOutcome.ALREADY_APPLIED:
            logger.info("Operation #%d was already applied by the server", op.id)
            revision = self._confirm(op, detection.remote)
            return OperationResult(op.id, OperationOutcome.ALREADY_APPLIED, revision=revision)

        if outcome is DetectionOutcome.NO_OP:
            logger.debug("Operation #%d is a no-op: %s", op.id, detection.reason)
            self._confirm(op, None)
            return OperationResult(op.id, OperationOutcome.NO_OP)

        if outcome is DetectionOutcome.ADOPT_REMOTE:
            return self._adopt_remote(op, detection.remote)

        if outcome is DetectionOutcome.CONFLICT:
            logger.info("Operation #%d conflicts: %s", op.id, detection.reason)
            return self._open_conflict(op, detection.remote)

        if outcome is DetectionOutcome.AUTO_MERGE:
            logger.info(
                "Operation #%d auto-merged onto revision %s", op.id, detection.base_revision
            )

        record: RemoteRecord | None = None
        base_revision = detection.base_revision
        if op.kind is OperationKind.CREATE:
            record = await self._remote.create(
                op.entity_type, op.entity_id, op.payload or {}, key
            )
        elif base_revision is None:
            logger.info("Operation #%d has no base revision to write on", op.id)
            return self._open_conflict(op, detection.remote)
        elif op.kind is OperationKind.UPDATE:
            record = await self._remote.update(
                op.entity_type, op.entity_id, base_revision, op.payload or {}, key
            )
        else:
            await self._remote.delete(op.entity_type, op.entity_id, base_revision, key)

        revision = self._confirm(op, record)
        logger.debug("Committed %r -> revision %s", op, revision)
        return OperationResult(op.id, OperationOutcome.COMMITTED, revision=revision)

    def _confirm(self, op: QueuedOperation, record: RemoteRecord | None) -> int | None:
        """Bookkeeping after the server holds the operation's effect."""
        if op.kind is OperationKind.DELETE or record is None:
            self._cache.remove(op.entity_type, op.entity_id)
            revision = None
        else:
            self._cache.put(op.entity_type, op.entity_id, record.data, record.revision)
            revision = record.revision
        self._queue.remove(op.id)
        self._queue.rebase(
            op.entity_type, op.entity_id, op.position, op.base_revision, revision
        )
        return revision

    def _adopt_remote(self, op: QueuedOperation, remote: RemoteRecord | None) -> OperationResult:
        """Create hit an existing entity and policy says keep the remote one."""
        with self._atomic():
            conflict = self._conflicts.add(
                op.id,
                op.entity_type,
                op.entity_id,
                op.kind,
                dict(op.payload or {}),
                remote.data if remote else None,
                remote.revision if remote else None,
            )
            self._remember(op.entity_type, op.entity_id, remote)
            self._queue.remove(op.id)
            self._conflicts.resolve(conflict.id, Resolution.KEEP_REMOTE)
        logger.info(
            "Create of %s:%s dropped, entity already exists remotely",
            op.entity_type, op.entity_id,
        )
        return OperationResult(op.id, OperationOutcome.NO_OP, conflict_id=conflict.id)

    def _open_conflict(self, op: QueuedOperation, remote: RemoteRecord | None) -> OperationResult:
        """Park the operation behind a new conflict, or settle it by policy."""
        cached = self._cache.get(op.entity_type, op.entity_id)
        if op.kind is OperationKind.UPDATE:
            local_value: dict[str, Any] | None = apply_patch(
                cached.data if cached else None, op.payload
            )
        elif op.kind is OperationKind.CREATE:
            local_value = dict(op.payload or {})
        else:
            local_value = None

        with self._atomic():
            conflict = self._conflicts.add(
                op.id,
                op.entity_type,
                op.entity_id,
                op.kind,
                local_value,
                remote.data if remote else None,
                remote.revision if remote else None,
            )
            self._queue.mark_conflicted(op.id)
            # A successful read refreshes the cache
            self._remember(op.entity_type, op.entity_id, remote)

            if self._config.conflict_policy is ConflictPolicy.MANUAL:
                return OperationResult(
                    op.id, OperationOutcome.CONFLICTED, conflict_id=conflict.id
                )

            choice, merged_payload = self._policy_choice(conflict, op)
            self._resolve(conflict, choice, merged_payload)

        logger.info(
            "Conflict #%d settled with %s by the %s policy",
            conflict.id, choice.value, self._config.conflict_policy.value,
        )
        return OperationResult(op.id, OperationOutcome.AUTO_RESOLVED, conflict_id=conflict.id)

    def _defer(self, op: QueuedOperation, error: str) -> OperationResult:
        """Record a transport failure; give up after max_attempts."""
        attempts = op.attempts + 1
        if attempts >= self._config.max_attempts:
            self._queue.record_attempt(op.id, error, 0.0)
            self._queue.mark_failed(op.id, f"Gave up after {attempts} attempts: {error}")
            logger.error(
                "Operation #%d failed after %d attempts: %s", op.id, attempts, error
            )
            return OperationResult(op.id, OperationOutcome.FAILED, error=error)

        retry_at = next_attempt_at(
            attempts,
            initial_backoff=self._config.initial_backoff,
            max_backoff=self._config.max_backoff,
            backoff_multiplier=self._config.backoff_multiplier,
        )
        self._queue.record_attempt(op.id, error, retry_at)
        delay = max(0.0, retry_at - time.time())
        logger.warning(
            "Operation #%d attempt %d/%d failed: %s. Retrying in %.1fs",
            op.id, attempts, self._config.max_attempts, error, delay,
        )
        return OperationResult(op.id, OperationOutcome.DEFERRED, error=error)

    # === Resolution internals ===

    def _atomic(self) -> AbstractContextManager[object]:
        """One transaction across the stores, when they share a database."""
        db = self._queue.database
        if db is self._conflicts.database and db is self._cache.database:
            return db.transaction()
        return contextlib.nullcontext()

    def _resolve(
        self,
        conflict: Conflict,
        choice: ResolutionChoice,
        merged_payload: dict[str, Any] | None = None,
    ) -> ResolutionRecord:
        """Apply a resolution to the queue and cache and record it.

        The queue change and the audit record commit together: after a crash
        the conflict is either still open with its operation conflicted, or
        resolved with its effect queued.
        """
        with self._atomic():
            op = self._queue.get(conflict.operation_id)

            if choice is ResolutionChoice.KEEP_LOCAL:
                self._requeue(conflict, op, self._local_payload(conflict, op))
            elif choice is ResolutionChoice.MERGED:
                self._requeue(conflict, op, merged_payload, merged=True)
            elif choice is ResolutionChoice.KEEP_REMOTE:
                if op is not None:
                    self._queue.remove(op.id)
                if conflict.remote_value is None or conflict.remote_revision is None:
                    self._cache.remove(conflict.entity_type, conflict.entity_id)
                else:
                    self._cache.put(
                        conflict.entity_type,
                        conflict.entity_id,
                        conflict.remote_value,
                        conflict.remote_revision,
                    )
            elif op is not None:
                self._queue.remove(op.id)

            return self._conflicts.resolve(conflict.id, Resolution.from_choice(choice))

    def _policy_choice(
        self, conflict: Conflict, op: QueuedOperation
    ) -> tuple[ResolutionChoice, dict[str, Any] | None]:
        """Resolution the configured conflict policy picks."""
        policy = self._config.conflict_policy
        if policy is ConflictPolicy.CLIENT_WINS:
            return ResolutionChoice.KEEP_LOCAL, None
        if policy is ConflictPolicy.SERVER_WINS or op.kind is OperationKind.DELETE:
            # A delete has no fields to merge
            return ResolutionChoice.KEEP_REMOTE, None
        return ResolutionChoice.MERGED, default_merge(
            self._local_payload(conflict, op), conflict.remote_value
        )

    def _local_payload(
        self, conflict: Conflict, op: QueuedOperation | None
    ) -> dict[str, Any] | None:
        """Payload to re-issue for keep-local."""
        if op is not None and op.kind is OperationKind.UPDATE and conflict.remote_value is not None:
            return op.payload
        return conflict.local_value

    def _requeue(
        self,
        conflict: Conflict,
        op: QueuedOperation | None,
        payload: dict[str, Any] | None,
        merged: bool = False,
    ) -> QueuedOperation | None:
        """Re-issue a conflicted operation against the conflict's remote revision."""
        remote_missing = conflict.remote_value is None
        kind = conflict.kind

        if kind is OperationKind.DELETE and not merged:
            if remote_missing:
                # Already gone remotely, the delete is satisfied
                if op is not None:
                    self._queue.remove(op.id)
                return None
        elif remote_missing:
            kind = OperationKind.CREATE
        else:
            kind = OperationKind.UPDATE

        base_revision = None if kind is OperationKind.CREATE else conflict.remote_revision
        if kind is OperationKind.DELETE:
            payload = None

        if op is None:
            logger.warning(
                "Operation #%d behind conflict #%d is gone, queueing a new one",
                conflict.operation_id, conflict.id,
            )
            return self._queue.enqueue(
                conflict.entity_type, conflict.entity_id, kind, payload, base_revision
            )

        new_op = self._queue.reissue(op.id, kind, payload, base_revision)
        self._queue.rebase(
            op.entity_type,
            op.entity_id,
            op.position,
            op.base_revision,
            conflict.remote_revision,
        )
        logger.info("Re-queued operation #%d as #%d", op.id, new_op.id)
        return new_op
