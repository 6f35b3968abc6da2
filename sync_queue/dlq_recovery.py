"""
Dead letter recovery.

Moves dead-lettered operations back into the live queue once an operator has
fixed the cause (schema corrected, permissions granted, remote bug deployed).

Recovered operations get fresh retry metadata but keep their original id,
so a remote store that honours the idempotency key still de-duplicates them.
"""

from dataclasses import dataclass, field
from typing import List, Optional

from shared.log import create_logger
from sync_queue.dlq import DeadLetterQueue
from sync_queue.store import PersistentQueueStore, QueueStorageError

log_trace, log_debug, log_info, log_warn, log_error = create_logger("DLQRecovery")

__all__ = [
    "RETRYABLE_ERROR_TYPES",
    "RecoveryResult",
    "requeue_dead_letters",
]

# Error types that end up in the DLQ only after exhausting retries; requeueing
# them is safe once the remote store has recovered
RETRYABLE_ERROR_TYPES = ["RemoteTemporaryError", "RemoteConnectionError", "TimeoutError"]


@dataclass
class RecoveryResult:
    """
    Result of a DLQ requeue.

    Fields:
        total_dlq_entries: Entries selected for recovery
        recovered: Re-enqueued and removed from the DLQ
        skipped_already_queued: Operation id already in the live queue
        failed: Could not be written to the queue (left in the DLQ)
        recovered_operation_ids: Ids of recovered operations
    """
    total_dlq_entries: int = 0
    recovered: int = 0
    skipped_already_queued: int = 0
    failed: int = 0
    recovered_operation_ids: List[str] = field(default_factory=list)


def requeue_dead_letters(
    dlq: DeadLetterQueue,
    store: PersistentQueueStore,
    entry_ids: Optional[List[int]] = None,
    error_types: Optional[List[str]] = None,
) -> RecoveryResult:
    """
    Re-enqueue dead-lettered operations.

    Idempotent: an operation already in the live queue is not added twice,
    its DLQ entry is dropped instead.

    Args:
        dlq: Dead letter queue to recover from
        store: Live queue store
        entry_ids: Only these DLQ entry ids (None = all)
        error_types: Only entries with these error type names (None = all)

    Returns:
        RecoveryResult with counts and recovered operation ids
    """
    entries = dlq.get_entries(entry_ids=entry_ids, error_types=error_types)
    result = RecoveryResult(total_dlq_entries=len(entries))
    if not entries:
        return result

    already_queued = store.queued_ids()

    for entry in entries:
        operation = entry['operation']

        if operation.id in already_queued:
            result.skipped_already_queued += 1
            dlq.remove(entry['id'])
            continue

        fresh = operation.model_copy(update={
            'retry_count': 0,
            'next_retry_at': 0.0,
            'last_error_type': None,
            'last_error': None,
        })
        try:
            store.append(fresh)
        except QueueStorageError as e:
            log_error(f"Could not requeue DLQ entry {entry['id']}: {e}")
            result.failed += 1
            continue

        dlq.remove(entry['id'])
        already_queued.add(fresh.id)
        result.recovered += 1
        result.recovered_operation_ids.append(fresh.id)

    log_info(
        f"DLQ recovery: {result.recovered} requeued, "
        f"{result.skipped_already_queued} already queued, {result.failed} failed"
    )
    return result
