"""
Queue statistics and persisted sync state.

Stateless helpers that work on the store and DLQ instances passed in.
"""

import json
import os
from dataclasses import asdict, dataclass, fields
from typing import Optional

from shared.log import create_logger

log_trace, log_debug, log_info, log_warn, log_error = create_logger("Queue")

SYNC_STATE_FILE = 'sync_state.json'


def get_stats(store, dlq=None) -> dict:
    """
    Get queue statistics.

    Args:
        store: PersistentQueueStore instance
        dlq: Optional DeadLetterQueue instance

    Returns:
        Dict: {
            'pending': int,        # operations in the live queue
            'retrying': int,       # pending operations with at least one failed attempt
            'waiting': int,        # pending operations still inside their back-off delay
            'by_collection': dict, # pending count per target collection
            'dead_letters': int,   # DLQ entries (0 without a DLQ)
        }
    """
    operations = store.load()

    by_collection: dict = {}
    retrying = 0
    waiting = 0
    for op in operations:
        by_collection[op.target_collection] = by_collection.get(op.target_collection, 0) + 1
        if op.retry_count > 0:
            retrying += 1
        if not op.is_ready():
            waiting += 1

    return {
        'pending': len(operations),
        'retrying': retrying,
        'waiting': waiting,
        'by_collection': by_collection,
        'dead_letters': dlq.get_count() if dlq is not None else 0,
    }


# =============================================================================
# Sync state
# =============================================================================


@dataclass
class SyncState:
    """
    Outcome of the most recent drains, persisted across restarts.

    last_sync_time is None until the first drain that completed its pass.
    """
    last_sync_time: Optional[float] = None
    last_synced: int = 0
    last_failed: int = 0
    last_dead_lettered: int = 0
    consecutive_failed_drains: int = 0
    drain_count: int = 0


def _get_sync_state_path(data_dir: str) -> str:
    return os.path.join(data_dir, SYNC_STATE_FILE)


def load_sync_state(data_dir: str) -> SyncState:
    """
    Load sync state from JSON file.

    Missing or corrupted files give a default state.
    """
    path = _get_sync_state_path(data_dir)
    if not os.path.exists(path):
        return SyncState()

    try:
        with open(path, 'r') as f:
            data = json.load(f)
        known = {f.name for f in fields(SyncState)}
        return SyncState(**{k: v for k, v in data.items() if k in known})
    except (json.JSONDecodeError, OSError, TypeError, AttributeError) as e:
        log_warn(f"Sync state unreadable, starting fresh: {e}")
        return SyncState()


def save_sync_state(data_dir: str, state: SyncState) -> None:
    """Write sync state atomically (temp file, then rename)."""
    path = _get_sync_state_path(data_dir)
    temp_path = path + '.tmp'
    with open(temp_path, 'w') as f:
        json.dump(asdict(state), f, indent=2)
    os.replace(temp_path, path)


__all__ = [
    'SYNC_STATE_FILE',
    'get_stats',
    'SyncState',
    'load_sync_state',
    'save_sync_state',
]
