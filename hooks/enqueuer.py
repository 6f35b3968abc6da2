"""
Public write API.

Features call queue_operation() for every remote write. The operation is
persisted to the local queue before anything else happens, then, when
online, a drain runs immediately so the caller learns whether the write has
already reached the remote store.
"""

import time
from dataclasses import dataclass
from typing import Any, Mapping, Optional, Union

from shared.log import create_logger
from sync_queue.models import (
    DEFAULT_PRIMARY_KEY,
    DEFAULT_PRIORITY,
    OperationKind,
    create_operation,
)
from sync_queue.store import PersistentQueueStore, QueueStorageError
from worker.engine import SKIP_BUSY

log_trace, log_debug, log_info, log_warn, log_error = create_logger("Enqueue")

# Persisting should stay well under this; slower enqueues are logged
ENQUEUE_TARGET_MS = 100


@dataclass
class EnqueueResult:
    """
    synced: the operation has been applied remotely (and left the queue)
    queued: the operation is held in the local queue for a later drain
    error: storage failure message (neither synced nor queued)
    """
    synced: bool
    queued: bool
    error: Optional[str] = None
    operation_id: Optional[str] = None

    def to_dict(self) -> dict:
        data = {'synced': self.synced, 'queued': self.queued}
        if self.error is not None:
            data['error'] = self.error
        return data


class OperationEnqueuer:
    """
    Accepts writes from features.

    Args:
        store: Persistent queue store
        monitor: Connectivity signal (is_online)
        scheduler: SyncScheduler used for the online fast path; when None the
            engine is drained directly, after any pass already running
        engine: SyncEngine, used when no scheduler is given
        default_priority: Priority for operations that do not pass one
        primary_key: Primary key field required in update/delete payloads

    Usage:
        enqueuer = OperationEnqueuer(store, monitor, scheduler=scheduler)
        result = await enqueuer.queue_operation('farmers', 'insert', {'id': 'F1'})
        if result.queued:
            show_pending_badge()
    """

    def __init__(
        self,
        store: PersistentQueueStore,
        monitor,
        scheduler=None,
        engine=None,
        default_priority: int = DEFAULT_PRIORITY,
        primary_key: str = DEFAULT_PRIMARY_KEY,
    ):
        if scheduler is None and engine is None:
            raise ValueError("OperationEnqueuer needs a scheduler or an engine")
        self.store = store
        self.monitor = monitor
        self.scheduler = scheduler
        self.engine = engine if engine is not None else scheduler.engine
        self.default_priority = default_priority
        self.primary_key = primary_key

    async def queue_operation(
        self,
        target_collection: str,
        kind: Union[str, OperationKind],
        payload: Mapping[str, Any],
        priority: Optional[int] = None,
    ) -> EnqueueResult:
        """
        Persist a write and, when online, try to deliver it right away.

        Args:
            target_collection: Remote collection name
            kind: insert, update or delete
            payload: Full record for insert/update; at least the primary key for delete
            priority: Higher drains first (default: configured default priority)

        Returns:
            EnqueueResult

        Raises:
            InvalidOperationError: kind unknown, collection empty, payload not a
                mapping or not JSON serializable, or update/delete payload
                without the primary key
        """
        start = time.perf_counter()
        op = create_operation(
            target_collection,
            kind,
            payload,
            priority=self.default_priority if priority is None else priority,
            primary_key=self.primary_key,
        )

        try:
            self.store.append(op)
        except QueueStorageError as e:
            log_error(f"Could not queue {op.describe()}: {e}")
            return EnqueueResult(synced=False, queued=False, error=str(e))

        elapsed_ms = (time.perf_counter() - start) * 1000
        if elapsed_ms > ENQUEUE_TARGET_MS:
            log_warn(f"Enqueue of {op.describe()} took {elapsed_ms:.1f}ms")

        if not self.monitor.is_online:
            log_debug(f"Offline, {op.describe()} queued")
            self.engine.refresh_pending_count()
            return EnqueueResult(synced=False, queued=True, operation_id=op.id)

        if self.scheduler is not None:
            result = await self.scheduler.request_drain('enqueue')
        else:
            result = await self.engine.drain()
            while result.skipped == SKIP_BUSY:
                # The running pass loaded the queue before this append
                await self.engine.wait_idle()
                result = await self.engine.drain()
        self.engine.refresh_pending_count()

        if op.id in result.synced_ids:
            return EnqueueResult(synced=True, queued=False, operation_id=op.id)

        log_debug(f"{op.describe()} not applied yet, kept in queue")
        return EnqueueResult(synced=False, queued=True, operation_id=op.id)


__all__ = ['EnqueueResult', 'OperationEnqueuer', 'ENQUEUE_TARGET_MS']
