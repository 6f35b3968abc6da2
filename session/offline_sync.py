"""
Offline sync session.

Composition root for one data directory: owns the queue store handle, the
dead letter queue, the connectivity monitor, the engine, the scheduler and
the enqueuer, and tears them down together.

Usage:
    config = FieldSyncConfig(data_dir='/data/fieldsync', remote_url='https://db.example.org')
    async with OfflineSyncSession(config) as session:
        await session.queue_operation('farmers', 'insert', {'id': 'F1', 'name': 'Amina'})
        print(session.status().to_dict())
"""

import functools
import os
from dataclasses import dataclass
from typing import Any, Mapping, Optional, Union

from connectivity.monitor import ConnectivityMonitor
from hooks.enqueuer import EnqueueResult, OperationEnqueuer
from remote.client import RestRemoteStore
from remote.health import check_remote_health
from shared.log import create_logger
from sync_queue.dlq import DeadLetterQueue
from sync_queue.models import OperationKind
from sync_queue.store import CorruptionEvent, PersistentQueueStore
from validation.config import FieldSyncConfig
from worker.circuit_breaker import CircuitBreaker
from worker.engine import DrainResult, SyncEngine
from worker.notifier import WARNING, Notifier, emit, log_notifier
from worker.scheduler import SyncScheduler

log_trace, log_debug, log_info, log_warn, log_error = create_logger("Session")


@dataclass
class SyncStatus:
    """Snapshot of the observable sync state."""
    is_online: bool
    is_syncing: bool
    pending_count: int
    last_sync_time: Optional[float]
    dead_letter_count: int

    def to_dict(self) -> dict:
        return {
            'isOnline': self.is_online,
            'isSyncing': self.is_syncing,
            'pendingCount': self.pending_count,
            'lastSyncTime': self.last_sync_time,
            'deadLetterCount': self.dead_letter_count,
        }


class OfflineSyncSession:
    """
    Lifecycle-scoped owner of every sync component.

    Args:
        config: FieldSyncConfig
        remote: RemoteStore to drain against (default: RestRemoteStore built
            from config.remote_url; closed with the session)
        monitor: ConnectivityMonitor (default: a new one, online)
        notifier: Receives user-facing notices (default: log_notifier)
    """

    def __init__(
        self,
        config: FieldSyncConfig,
        remote=None,
        monitor: Optional[ConnectivityMonitor] = None,
        notifier: Optional[Notifier] = None,
    ):
        self.config = config
        self._notifier = notifier or log_notifier
        self._remote = remote
        self._owns_remote = remote is None
        self.monitor = monitor or ConnectivityMonitor(notifier=self._notifier)

        self.store: Optional[PersistentQueueStore] = None
        self.dlq: Optional[DeadLetterQueue] = None
        self.engine: Optional[SyncEngine] = None
        self.scheduler: Optional[SyncScheduler] = None
        self.enqueuer: Optional[OperationEnqueuer] = None
        self._started = False

    async def __aenter__(self) -> 'OfflineSyncSession':
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    @property
    def remote(self):
        return self._remote

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def start(self) -> None:
        """Open storage, wire components and run the start-up drain if due."""
        if self._started:
            return
        config = self.config
        os.makedirs(config.data_dir, exist_ok=True)

        if self._remote is None:
            if not config.remote_url:
                raise ValueError("remote_url is required when no remote store is given")
            self._remote = RestRemoteStore(
                config.remote_url,
                api_key=config.remote_api_key,
                primary_key=config.primary_key,
                timeout=config.item_timeout,
                connect_timeout=config.connect_timeout,
                upsert_inserts=config.upsert_inserts,
            )

        self.store = PersistentQueueStore(config.data_dir, on_corruption=self._on_corruption)
        self.dlq = DeadLetterQueue(config.data_dir)
        self.dlq.delete_older_than(config.dlq_retention_days)

        breaker = CircuitBreaker(
            failure_threshold=config.circuit_failure_threshold,
            recovery_timeout=config.circuit_recovery_timeout,
            state_file=os.path.join(config.data_dir, 'circuit_breaker.json'),
        )
        self.engine = SyncEngine(
            self.store,
            self._remote,
            self.monitor,
            self.dlq,
            breaker=breaker,
            notifier=self._notifier,
            data_dir=config.data_dir,
            max_retries=config.max_retries,
            item_timeout=config.item_timeout,
            backoff_base=config.backoff_base,
            backoff_cap=config.backoff_cap,
            primary_key=config.primary_key,
        )
        self.scheduler = SyncScheduler(self.engine, self.monitor, poll_interval=config.poll_interval)
        self.enqueuer = OperationEnqueuer(
            self.store,
            self.monitor,
            scheduler=self.scheduler,
            default_priority=config.default_priority,
            primary_key=config.primary_key,
        )

        self._started = True
        await self.scheduler.start()

        if config.probe_interval > 0:
            probe = functools.partial(check_remote_health, self._remote, timeout=config.connect_timeout)
            self.monitor.start_probing(probe, interval=config.probe_interval)

        log_info(f"Offline sync session started ({self.engine.pending_count} pending)")

    async def close(self) -> None:
        """Stop triggers, finish the in-flight drain and release the remote client."""
        if not self._started:
            return
        self._started = False
        await self.scheduler.stop()
        await self.monitor.stop()
        if self._owns_remote and self._remote is not None:
            await self._remote.close()
        log_debug("Offline sync session closed")

    def _require_started(self) -> None:
        if not self._started:
            raise RuntimeError("OfflineSyncSession is not started")

    def _on_corruption(self, event: CorruptionEvent) -> None:
        emit(
            self._notifier,
            "Storage Recovered",
            f"Unreadable offline data was set aside; {event.dropped_count} pending change(s) "
            f"could not be recovered.",
            WARNING,
        )

    # =========================================================================
    # Public API
    # =========================================================================

    async def queue_operation(
        self,
        target_collection: str,
        kind: Union[str, OperationKind],
        payload: Mapping[str, Any],
        priority: Optional[int] = None,
    ) -> EnqueueResult:
        """Queue a remote write; see OperationEnqueuer.queue_operation."""
        self._require_started()
        return await self.enqueuer.queue_operation(target_collection, kind, payload, priority)

    async def drain(self) -> DrainResult:
        """Run a drain now (coalesced with any drain already in flight)."""
        self._require_started()
        return await self.scheduler.request_drain('manual')

    def clear_queue(self) -> int:
        """Drop every pending operation. Returns how many were dropped."""
        self._require_started()
        return self.store.clear()

    def set_online(self, online: bool) -> bool:
        return self.monitor.set_online(online)

    def status(self) -> SyncStatus:
        self._require_started()
        return SyncStatus(
            is_online=self.monitor.is_online,
            is_syncing=self.engine.is_syncing,
            pending_count=self.engine.pending_count,
            last_sync_time=self.engine.last_sync_time,
            dead_letter_count=self.dlq.get_count(),
        )


__all__ = ['OfflineSyncSession', 'SyncStatus']
