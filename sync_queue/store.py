"""
Persistent queue store.

Durable, process-surviving storage of pending write operations. The whole
queue is kept as one ordered JSON list under a single well-known key in a
persist-queue SQLite PDict, so every persist is a single-row atomic update.

Read-modify-write cycles (append, remove, upsert) hold an exclusive fcntl lock
on a sidecar lock file, so several processes may share one queue directory.
"""

import fcntl
import json
import os
import pickle
import sqlite3
import time
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Callable, Iterable, Iterator, List, Optional

import persistqueue
from pydantic import ValidationError

from shared.log import create_logger
from sync_queue.models import QueuedOperation, sort_operations

log_trace, log_debug, log_info, log_warn, log_error = create_logger("Store")

QUEUE_KEY = 'offline_queue'


class QueueStorageError(Exception):
    """The local queue could not be read or written."""


@dataclass
class CorruptionEvent:
    """
    Describes unreadable queue data that was quarantined.

    quarantine_key is the side key holding the raw value, or the path the
    whole database directory was moved to when it could not be opened.
    """
    reason: str
    quarantine_key: Optional[str]
    dropped_count: int
    detected_at: float


class PersistentQueueStore:
    """
    Durable ordered queue of QueuedOperation records.

    Args:
        data_dir: Directory holding the queue database and lock file
        name: PDict table name (default: 'outbox')
        on_corruption: Called with a CorruptionEvent when unreadable data is
            found and quarantined

    Usage:
        store = PersistentQueueStore('/data/fieldsync')
        store.append(op)
        for op in store.load():
            ...
    """

    def __init__(
        self,
        data_dir: str,
        name: str = 'outbox',
        on_corruption: Optional[Callable[[CorruptionEvent], None]] = None,
    ):
        self.data_dir = data_dir
        self.queue_path = os.path.join(data_dir, 'queue')
        self.lock_path = os.path.join(data_dir, 'queue.lock')
        self._on_corruption = on_corruption
        self._listeners: List[Callable[[int], None]] = []
        self._pending_events: List[CorruptionEvent] = []
        self._pending_count: Optional[int] = None

        os.makedirs(self.queue_path, exist_ok=True)
        with self._locked():
            self._db = self._open(name)
        log_trace(f"Queue store opened at {self.queue_path}")

    def _open(self, name: str):
        """Open the PDict, moving an unreadable database directory aside."""
        try:
            return persistqueue.PDict(self.queue_path, name)
        except sqlite3.OperationalError as e:
            # Locked or inaccessible: the data may be fine, so do not move it
            raise QueueStorageError(f"Cannot open queue database at {self.queue_path}: {e}") from e
        except sqlite3.DatabaseError as e:
            reason = f"{type(e).__name__}: {e}"

        moved_to = f"{self.queue_path}.corrupt.{int(time.time() * 1000)}"
        try:
            os.rename(self.queue_path, moved_to)
            os.makedirs(self.queue_path)
            db = persistqueue.PDict(self.queue_path, name)
        except (OSError, sqlite3.Error) as e:
            raise QueueStorageError(f"Cannot recover queue database at {self.queue_path}: {e}") from e

        log_error(f"Queue database unreadable ({reason}); moved to {moved_to}, starting empty")
        self._pending_events.append(CorruptionEvent(
            reason=reason,
            quarantine_key=moved_to,
            dropped_count=0,
            detected_at=time.time(),
        ))
        return db

    # =========================================================================
    # Locking and raw access
    # =========================================================================

    @contextmanager
    def _locked(self) -> Iterator[None]:
        """
        Hold the cross-process exclusive lock for a read-modify-write.

        Listener and corruption callbacks queued while the lock is held run
        after it is released, so callbacks may use the store again.
        """
        try:
            lock_file = open(self.lock_path, 'w')
        except OSError as e:
            raise QueueStorageError(f"Cannot open queue lock {self.lock_path}: {e}") from e
        with lock_file:
            fcntl.flock(lock_file.fileno(), fcntl.LOCK_EX)
            try:
                yield
            finally:
                fcntl.flock(lock_file.fileno(), fcntl.LOCK_UN)
        self._flush_callbacks()

    def _flush_callbacks(self) -> None:
        events, self._pending_events = self._pending_events, []
        for event in events:
            if self._on_corruption is not None:
                self._on_corruption(event)

        count, self._pending_count = self._pending_count, None
        if count is not None:
            self._notify(count)

    def _read_raw(self) -> Optional[str]:
        if QUEUE_KEY not in self._db:
            return None
        return self._db[QUEUE_KEY]

    def _write(self, operations: List[QueuedOperation]) -> List[QueuedOperation]:
        ordered = sort_operations(operations)
        try:
            self._db[QUEUE_KEY] = json.dumps([op.to_record() for op in ordered])
        except sqlite3.Error as e:
            raise QueueStorageError(f"Failed to persist queue: {e}") from e
        self._pending_count = len(ordered)
        return ordered

    def _quarantine(self, raw, reason: str, dropped_count: int) -> None:
        """Keep unreadable data under a side key and report it."""
        quarantine_key = None
        if raw is not None:
            quarantine_key = f"{QUEUE_KEY}.corrupt.{int(time.time() * 1000)}"
            try:
                self._db[quarantine_key] = raw
            except sqlite3.Error as e:
                log_error(f"Could not quarantine unreadable queue data: {e}")
                quarantine_key = None

        log_error(
            f"Queue data unreadable ({reason}); {dropped_count} pending operation(s) "
            f"dropped from the live queue, raw data kept under {quarantine_key}"
        )
        self._pending_events.append(CorruptionEvent(
            reason=reason,
            quarantine_key=quarantine_key,
            dropped_count=dropped_count,
            detected_at=time.time(),
        ))

    def _load_unlocked(self) -> List[QueuedOperation]:
        try:
            raw = self._read_raw()
        except (sqlite3.DatabaseError, pickle.UnpicklingError, EOFError, AttributeError) as e:
            # The row itself cannot be decoded: nothing to quarantine
            self._quarantine(None, f"{type(e).__name__}: {e}", dropped_count=0)
            self._reset_unlocked()
            return []

        if raw is None:
            return []

        try:
            records = json.loads(raw)
        except (TypeError, ValueError) as e:
            self._quarantine(raw, f"invalid JSON: {e}", dropped_count=0)
            self._reset_unlocked()
            return []

        if not isinstance(records, list):
            self._quarantine(raw, f"expected a list, got {type(records).__name__}", dropped_count=0)
            self._reset_unlocked()
            return []

        operations = []
        invalid = []
        for record in records:
            try:
                operations.append(QueuedOperation.model_validate(record))
            except ValidationError as e:
                log_debug(f"Invalid queue record skipped: {e.error_count()} error(s)")
                invalid.append(record)

        if invalid:
            self._quarantine(json.dumps(invalid), "invalid records", dropped_count=len(invalid))
            self._write(operations)

        return operations

    def _reset_unlocked(self) -> None:
        try:
            self._db[QUEUE_KEY] = json.dumps([])
        except sqlite3.Error as e:
            log_error(f"Could not reset unreadable queue: {e}")
            return
        self._pending_count = 0

    # =========================================================================
    # Listeners
    # =========================================================================

    def subscribe(self, listener: Callable[[int], None]) -> Callable[[], None]:
        """
        Register a listener called with the pending count after every persist.

        Returns:
            Function that removes the listener
        """
        self._listeners.append(listener)

        def unsubscribe():
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self, count: int) -> None:
        for listener in list(self._listeners):
            try:
                listener(count)
            except Exception as e:
                log_warn(f"Queue listener failed: {e}")

    # =========================================================================
    # Public operations
    # =========================================================================

    def load(self) -> List[QueuedOperation]:
        """
        Load the queue in stored order.

        Missing store returns an empty list. Unreadable data is quarantined,
        reported through on_corruption and treated as empty.
        """
        with self._locked():
            return self._load_unlocked()

    def append(self, operation: QueuedOperation) -> List[QueuedOperation]:
        """
        Insert an operation, re-sort and persist before returning.

        The operation is given the next store sequence number in place, so
        equal-priority operations keep submission order.
        """
        with self._locked():
            operations = self._load_unlocked()
            operation.sequence = max((op.sequence for op in operations), default=0) + 1
            operations.append(operation)
            ordered = self._write(operations)
        log_trace(f"Queued {operation.describe()} (priority {operation.priority}), {len(ordered)} pending")
        return ordered

    def replace(self, operations: Iterable[QueuedOperation]) -> List[QueuedOperation]:
        """Atomically overwrite the stored sequence."""
        with self._locked():
            return self._write(list(operations))

    def remove(self, operation_id: str) -> bool:
        """
        Remove one operation by id.

        Returns:
            True if the operation was in the queue
        """
        with self._locked():
            operations = self._load_unlocked()
            remaining = [op for op in operations if op.id != operation_id]
            if len(remaining) == len(operations):
                return False
            self._write(remaining)
            return True

    def upsert(self, operation: QueuedOperation) -> List[QueuedOperation]:
        """Replace the stored record with the same id (or add it), then re-sort."""
        with self._locked():
            operations = [op for op in self._load_unlocked() if op.id != operation.id]
            operations.append(operation)
            return self._write(operations)

    def clear(self) -> int:
        """
        Drop every pending operation.

        Returns:
            Number of operations removed
        """
        with self._locked():
            count = len(self._load_unlocked())
            self._write([])
        if count:
            log_warn(f"Cleared {count} pending operation(s) from the queue")
        return count

    def count(self) -> int:
        """Persisted queue length."""
        return len(self.load())

    def contains(self, operation_id: str) -> bool:
        return any(op.id == operation_id for op in self.load())

    def queued_ids(self) -> set:
        """Ids of every operation currently in the queue."""
        return {op.id for op in self.load()}


__all__ = [
    'QUEUE_KEY',
    'QueueStorageError',
    'CorruptionEvent',
    'PersistentQueueStore',
]
