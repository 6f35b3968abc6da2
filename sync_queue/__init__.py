"""
Persistent queue module.

Durable outbox of pending remote writes (persist-queue PDict) plus the
SQLite dead letter queue. Operations survive process restarts, crashes and
arbitrarily long offline periods.
"""

from sync_queue.models import (
    DEFAULT_PRIORITY,
    Delete,
    Insert,
    InvalidOperationError,
    Mutation,
    OperationKind,
    QueuedOperation,
    Update,
    create_operation,
)
from sync_queue.store import CorruptionEvent, PersistentQueueStore, QueueStorageError
from sync_queue.dlq import DeadLetterQueue
from sync_queue.dlq_recovery import RecoveryResult, requeue_dead_letters
from sync_queue.operations import SyncState, get_stats, load_sync_state, save_sync_state

__all__ = [
    'DEFAULT_PRIORITY',
    'Insert',
    'Update',
    'Delete',
    'Mutation',
    'InvalidOperationError',
    'OperationKind',
    'QueuedOperation',
    'create_operation',
    'CorruptionEvent',
    'PersistentQueueStore',
    'QueueStorageError',
    'DeadLetterQueue',
    'RecoveryResult',
    'requeue_dead_letters',
    'SyncState',
    'get_stats',
    'load_sync_state',
    'save_sync_state',
]
