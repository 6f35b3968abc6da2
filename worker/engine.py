"""
Sync engine: drains the persistent queue against the remote store.

One drain attempts every ready operation once, in stored order, and commits
each outcome to the store before moving to the next:

- applied: removed from the queue
- remote unreachable: kept unchanged, counted against the circuit breaker
- transient failure: retry metadata updated (back-off), kept; moved to the
  dead letter queue once max_retries is reached
- rejected: moved to the dead letter queue

Committing per item means an operation enqueued while a drain is awaiting the
remote store is never overwritten by the drain's view of the queue.
"""

import asyncio
import os
import sqlite3
import time
from dataclasses import dataclass, field
from typing import Callable, List, Optional

from remote.client import apply_mutation
from remote.exceptions import (
    RemoteConnectionError,
    RemoteRejection,
    RemoteTemporaryError,
    translate_http_exception,
)
from shared.log import create_logger
from sync_queue.dlq import DeadLetterQueue
from sync_queue.models import DEFAULT_PRIMARY_KEY, InvalidOperationError, QueuedOperation
from sync_queue.operations import SyncState, load_sync_state, save_sync_state
from sync_queue.store import PersistentQueueStore, QueueStorageError
from worker.backoff import (
    DEFAULT_BASE,
    DEFAULT_CAP,
    DEFAULT_MAX_RETRIES,
    calculate_delay,
    get_retry_params,
)
from worker.circuit_breaker import CircuitBreaker
from worker.notifier import ERROR, SUCCESS, WARNING, Notifier, emit, log_notifier
from worker.stats import SyncStats

log_trace, log_debug, log_info, log_warn, log_error = create_logger("Engine")

# Drain skip reasons
SKIP_BUSY = 'busy'
SKIP_OFFLINE = 'offline'
SKIP_CIRCUIT_OPEN = 'circuit_open'
SKIP_EMPTY = 'empty'


@dataclass
class DrainResult:
    """
    Outcome of one drain() call.

    synced: applied and removed from the queue
    failed: attempted and kept for retry
    dead_lettered: moved to the dead letter queue
    deferred: not attempted (back-off pending, or pass stopped early)
    pending: queue length after the pass
    skipped: reason the drain did not run (None when it ran)
    error: drain-level failure message (storage unreadable/unwritable)
    """
    synced: int = 0
    failed: int = 0
    dead_lettered: int = 0
    deferred: int = 0
    pending: int = 0
    skipped: Optional[str] = None
    error: Optional[str] = None
    synced_ids: List[str] = field(default_factory=list)
    stopped_early: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.skipped is None and self.error is None and self.failed == 0 and self.dead_lettered == 0

    def to_dict(self) -> dict:
        return {
            'synced': self.synced,
            'failed': self.failed,
            'dead_lettered': self.dead_lettered,
            'deferred': self.deferred,
            'pending': self.pending,
            'skipped': self.skipped,
            'error': self.error,
            'success': self.success,
        }


class SyncEngine:
    """
    Drains queued operations to the remote store.

    Args:
        store: Persistent queue store
        remote: RemoteStore implementation
        monitor: Object with an is_online attribute (ConnectivityMonitor)
        dlq: Dead letter queue for rejected and exhausted operations
        breaker: Circuit breaker (default: a fresh CircuitBreaker)
        notifier: Receives sync notices (default: log_notifier)
        data_dir: Directory for stats.json and sync_state.json (None = not persisted)
        max_retries: Transient failures before an operation is dead-lettered
        item_timeout: Seconds allowed for one remote call
        backoff_base: Base delay for per-operation back-off
        backoff_cap: Maximum per-operation back-off delay
        primary_key: Primary key field in payloads
        clock: Time source, injectable for tests

    Usage:
        engine = SyncEngine(store, remote, monitor, dlq)
        result = await engine.drain()
        print(result.synced, result.pending)
    """

    def __init__(
        self,
        store: PersistentQueueStore,
        remote,
        monitor,
        dlq: DeadLetterQueue,
        breaker: Optional[CircuitBreaker] = None,
        notifier: Optional[Notifier] = None,
        data_dir: Optional[str] = None,
        max_retries: int = DEFAULT_MAX_RETRIES,
        item_timeout: float = 30.0,
        backoff_base: float = DEFAULT_BASE,
        backoff_cap: float = DEFAULT_CAP,
        primary_key: str = DEFAULT_PRIMARY_KEY,
        clock: Callable[[], float] = time.time,
    ):
        self.store = store
        self.remote = remote
        self.monitor = monitor
        self.dlq = dlq
        self.breaker = breaker or CircuitBreaker()
        self._notifier = notifier or log_notifier
        self.data_dir = data_dir
        self.max_retries = max_retries
        self.item_timeout = item_timeout
        self.backoff_base = backoff_base
        self.backoff_cap = backoff_cap
        self.primary_key = primary_key
        self._clock = clock

        self._syncing = False
        self._idle = asyncio.Event()
        self._idle.set()

        self.stats = SyncStats()
        self._state = load_sync_state(data_dir) if data_dir else SyncState()

        self._pending_count = 0
        self.store.subscribe(self._on_store_change)
        try:
            self._pending_count = self.store.count()
        except QueueStorageError as e:
            log_error(f"Could not read queue on start: {e}")

    # =========================================================================
    # Observable state
    # =========================================================================

    @property
    def is_syncing(self) -> bool:
        return self._syncing

    @property
    def pending_count(self) -> int:
        return self._pending_count

    @property
    def last_sync_time(self) -> Optional[float]:
        return self._state.last_sync_time

    @property
    def state(self) -> SyncState:
        return self._state

    def _on_store_change(self, count: int) -> None:
        self._pending_count = count

    def refresh_pending_count(self) -> int:
        """Re-read the queue length from the store."""
        try:
            self._pending_count = self.store.count()
        except QueueStorageError as e:
            log_error(f"Could not read queue length: {e}")
        return self._pending_count

    async def wait_idle(self) -> None:
        """Wait until no drain is in flight."""
        await self._idle.wait()

    def next_retry_delay(self) -> Optional[float]:
        """Seconds until the earliest backed-off operation is ready (None if none waits)."""
        try:
            operations = self.store.load()
        except QueueStorageError:
            return None
        now = self._clock()
        waiting = [op.next_retry_at - now for op in operations if not op.is_ready(now)]
        if not waiting:
            return None
        return max(0.0, min(waiting))

    # =========================================================================
    # Drain
    # =========================================================================

    async def drain(self) -> DrainResult:
        """
        Attempt every ready queued operation once.

        Returns immediately with `skipped` set if a drain is already running,
        the device is offline, the circuit breaker is open or the queue is
        empty.
        """
        # Busy guard: checked and set before the first suspension point
        if self._syncing:
            log_trace("Drain requested while another is running")
            return DrainResult(skipped=SKIP_BUSY, pending=self._pending_count)
        if not self.monitor.is_online:
            return DrainResult(skipped=SKIP_OFFLINE, pending=self._pending_count)
        if not self.breaker.can_execute():
            log_debug(f"Circuit open, drain skipped ({self.breaker.seconds_until_retry():.0f}s left)")
            return DrainResult(skipped=SKIP_CIRCUIT_OPEN, pending=self._pending_count)

        self._syncing = True
        self._idle.clear()
        try:
            return await self._drain_locked()
        finally:
            self._syncing = False
            self._idle.set()

    async def _drain_locked(self) -> DrainResult:
        try:
            operations = self.store.load()
        except QueueStorageError as e:
            log_error(f"Drain aborted, queue unreadable: {e}")
            emit(self._notifier, "Sync Failed",
                 "Failed to sync offline changes. Will retry automatically.", ERROR)
            return DrainResult(error=str(e), pending=self._pending_count)

        self._pending_count = len(operations)
        if not operations:
            return DrainResult(skipped=SKIP_EMPTY)

        log_debug(f"Draining {len(operations)} queued operation(s)")
        result = DrainResult()
        drain_stats = SyncStats()

        try:
            for index, op in enumerate(operations):
                if not self.monitor.is_online:
                    result.stopped_early = SKIP_OFFLINE
                    result.deferred += len(operations) - index
                    log_info("Went offline during drain, remaining operations kept")
                    break
                if not self.breaker.can_execute():
                    result.stopped_early = SKIP_CIRCUIT_OPEN
                    result.deferred += len(operations) - index
                    log_warn("Circuit opened during drain, remaining operations kept")
                    break
                if not op.is_ready(self._clock()):
                    result.deferred += 1
                    continue

                await self._process(op, result, drain_stats)
        except QueueStorageError as e:
            log_error(f"Drain stopped, queue could not be updated: {e}")
            result.error = str(e)

        result.pending = self.refresh_pending_count()
        self._finish(result, drain_stats)
        return result

    async def _process(self, op: QueuedOperation, result: DrainResult, drain_stats: SyncStats) -> None:
        start = time.perf_counter()
        try:
            mutation = op.to_mutation(self.primary_key)
            await asyncio.wait_for(
                apply_mutation(self.remote, op.target_collection, mutation, idempotency_key=op.id),
                timeout=self.item_timeout,
            )
        except asyncio.CancelledError:
            raise
        except asyncio.TimeoutError:
            error = RemoteTemporaryError(f"No response within {self.item_timeout:.0f}s")
            self._handle_failure(op, error, result, drain_stats, time.perf_counter() - start)
        except InvalidOperationError as e:
            error = RemoteRejection(str(e))
            self._handle_failure(op, error, result, drain_stats, time.perf_counter() - start)
        except Exception as e:
            error = translate_http_exception(e)
            self._handle_failure(op, error, result, drain_stats, time.perf_counter() - start)
        else:
            self.store.remove(op.id)
            self.breaker.record_success()
            drain_stats.record_success(time.perf_counter() - start)
            result.synced += 1
            result.synced_ids.append(op.id)
            log_trace(f"Synced {op.describe()}")

    def _handle_failure(
        self,
        op: QueuedOperation,
        error: Exception,
        result: DrainResult,
        drain_stats: SyncStats,
        elapsed: float,
    ) -> None:
        error_type = type(error).__name__

        if isinstance(error, RemoteConnectionError):
            # Says nothing about the operation: keep it as is, no retry consumed
            self.breaker.record_failure()
            drain_stats.record_failure(error_type, elapsed, connectivity=True)
            result.failed += 1
            log_debug(f"Remote unreachable for {op.describe()}: {error}")
            return

        if isinstance(error, RemoteRejection):
            self.breaker.record_success()
            self._dead_letter(op, error, op.retry_count)
            drain_stats.record_failure(error_type, elapsed, to_dlq=True)
            result.dead_lettered += 1
            return

        base, cap, max_retries = get_retry_params(
            error, self.backoff_base, self.backoff_cap, self.max_retries
        )
        retry_count = op.retry_count + 1
        if max_retries and retry_count >= max_retries:
            log_warn(f"{op.describe()} failed {retry_count} times, giving up")
            self._dead_letter(op, error, retry_count)
            drain_stats.record_failure(error_type, elapsed, to_dlq=True)
            result.dead_lettered += 1
            return

        delay = calculate_delay(retry_count - 1, base, cap)
        updated = op.model_copy(update={
            'retry_count': retry_count,
            'next_retry_at': self._clock() + delay,
            'last_error_type': error_type,
            'last_error': str(error)[:500],
        })
        self.store.upsert(updated)
        drain_stats.record_failure(error_type, elapsed)
        result.failed += 1
        log_debug(
            f"{op.describe()} failed ({error_type}), retry {retry_count}/{max_retries} "
            f"in {delay:.1f}s"
        )

    def _dead_letter(self, op: QueuedOperation, error: Exception, retry_count: int) -> None:
        # DLQ first: a crash in between leaves a duplicate, never a loss
        try:
            self.dlq.add(op, error, retry_count)
        except sqlite3.Error as e:
            raise QueueStorageError(f"Dead letter queue unwritable: {e}") from e
        self.store.remove(op.id)

    # =========================================================================
    # Bookkeeping
    # =========================================================================

    def _finish(self, result: DrainResult, drain_stats: SyncStats) -> None:
        self.stats.merge(drain_stats)

        state = self._state
        state.last_sync_time = self._clock()
        state.last_synced = result.synced
        state.last_failed = result.failed
        state.last_dead_lettered = result.dead_lettered
        state.drain_count += 1
        if result.failed and not result.synced:
            state.consecutive_failed_drains += 1
        else:
            state.consecutive_failed_drains = 0

        if self.data_dir:
            try:
                save_sync_state(self.data_dir, state)
                drain_stats.save_to_file(os.path.join(self.data_dir, 'stats.json'))
            except OSError as e:
                log_warn(f"Could not persist sync state: {e}")

        log_info(
            f"Drain finished: {result.synced} synced, {result.failed} failed, "
            f"{result.dead_lettered} dead-lettered, {result.pending} pending"
        )
        self._notify(result)

    def _notify(self, result: DrainResult) -> None:
        if result.dead_lettered:
            emit(
                self._notifier,
                "Sync Rejected",
                f"{result.dead_lettered} change(s) were rejected by the server and need attention",
                ERROR,
            )

        if result.synced and result.pending == 0:
            emit(self._notifier, "Sync Complete",
                 f"Successfully synced {result.synced} change(s)", SUCCESS)
        elif result.synced:
            emit(self._notifier, "Partial Sync",
                 f"{result.synced} synced, {result.pending} pending", WARNING)
        elif result.failed or result.error:
            emit(self._notifier, "Sync Failed",
                 "Failed to sync offline changes. Will retry automatically.", ERROR)


__all__ = [
    'SKIP_BUSY',
    'SKIP_OFFLINE',
    'SKIP_CIRCUIT_OPEN',
    'SKIP_EMPTY',
    'DrainResult',
    'SyncEngine',
]
