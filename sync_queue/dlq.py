"""
Dead letter queue for operations that will not succeed by retrying.

Operations land here when the remote store rejects them (validation,
conflict, permission) or when they exhaust their retry budget. They are kept
with full error context for operator review and can be re-enqueued with
sync_queue.dlq_recovery once the cause is fixed.
"""

import json
import os
import sqlite3
import time
import traceback
from contextlib import closing
from typing import List, Optional

from shared.log import create_logger
from sync_queue.models import QueuedOperation

log_trace, log_debug, log_info, log_warn, log_error = create_logger("DLQ")


class DeadLetterQueue:
    """
    SQLite-backed store of dead-lettered operations.

    Args:
        data_dir: Directory for dlq.db

    Usage:
        dlq = DeadLetterQueue('/data/fieldsync')
        dlq.add(op, error, retry_count=5)
        for entry in dlq.get_recent(limit=10):
            print(entry['operation_id'], entry['error_type'])
    """

    DB_NAME = 'dlq.db'

    def __init__(self, data_dir: str):
        os.makedirs(data_dir, exist_ok=True)
        self.db_path = os.path.join(data_dir, self.DB_NAME)
        self._setup_schema()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        return conn

    def _setup_schema(self) -> None:
        with closing(self._connect()) as conn:
            conn.execute('''
                CREATE TABLE IF NOT EXISTS dead_letters (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    operation_id TEXT NOT NULL,
                    collection TEXT NOT NULL,
                    kind TEXT NOT NULL,
                    operation_data TEXT NOT NULL,
                    error_type TEXT NOT NULL,
                    error_message TEXT,
                    stack_trace TEXT,
                    retry_count INTEGER DEFAULT 0,
                    failed_at REAL NOT NULL
                )
            ''')
            conn.execute('CREATE INDEX IF NOT EXISTS idx_failed_at ON dead_letters(failed_at)')
            conn.execute('CREATE INDEX IF NOT EXISTS idx_operation_id ON dead_letters(operation_id)')
            conn.commit()

    def add(self, operation: QueuedOperation, error: Exception, retry_count: int) -> int:
        """
        Add a failed operation.

        Args:
            operation: The operation that failed
            error: Exception that caused the failure
            retry_count: Retries attempted before giving up

        Returns:
            Dead letter entry id
        """
        stack_trace = ''.join(
            traceback.format_exception(type(error), error, error.__traceback__)
        )
        with closing(self._connect()) as conn:
            cursor = conn.execute(
                '''
                INSERT INTO dead_letters
                    (operation_id, collection, kind, operation_data, error_type,
                     error_message, stack_trace, retry_count, failed_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                ''',
                (
                    operation.id,
                    operation.target_collection,
                    operation.kind.value,
                    json.dumps(operation.to_record()),
                    type(error).__name__,
                    str(error),
                    stack_trace,
                    retry_count,
                    time.time(),
                ),
            )
            conn.commit()
            entry_id = cursor.lastrowid

        log_warn(
            f"Operation {operation.describe()} moved to DLQ after {retry_count} retries: "
            f"{type(error).__name__}: {error}"
        )
        return entry_id

    def get_recent(self, limit: int = 10) -> List[dict]:
        """
        Get most recent entries (summary fields only, no operation data).

        Returns:
            List of dicts ordered newest first
        """
        with closing(self._connect()) as conn:
            rows = conn.execute(
                '''
                SELECT id, operation_id, collection, kind, error_type, error_message,
                       retry_count, failed_at
                FROM dead_letters
                ORDER BY failed_at DESC, id DESC
                LIMIT ?
                ''',
                (limit,),
            ).fetchall()
        return [dict(row) for row in rows]

    def get_by_id(self, entry_id: int) -> Optional[QueuedOperation]:
        """Get the full operation stored in a dead letter entry, or None."""
        with closing(self._connect()) as conn:
            row = conn.execute(
                'SELECT operation_data FROM dead_letters WHERE id = ?',
                (entry_id,),
            ).fetchone()
        if row is None:
            return None
        return QueuedOperation.model_validate(json.loads(row['operation_data']))

    def get_entries(
        self,
        entry_ids: Optional[List[int]] = None,
        error_types: Optional[List[str]] = None,
    ) -> List[dict]:
        """
        Get entries with their operations, oldest first.

        Args:
            entry_ids: Restrict to these entry ids (None = all)
            error_types: Restrict to these error type names (None = all)

        Returns:
            List of dicts with id, error_type, error_message, failed_at, operation
        """
        query = 'SELECT id, error_type, error_message, failed_at, operation_data FROM dead_letters'
        clauses = []
        params: list = []
        if entry_ids is not None:
            if not entry_ids:
                return []
            clauses.append(f"id IN ({','.join('?' * len(entry_ids))})")
            params.extend(entry_ids)
        if error_types is not None:
            if not error_types:
                return []
            clauses.append(f"error_type IN ({','.join('?' * len(error_types))})")
            params.extend(error_types)
        if clauses:
            query += ' WHERE ' + ' AND '.join(clauses)
        query += ' ORDER BY failed_at ASC, id ASC'

        with closing(self._connect()) as conn:
            rows = conn.execute(query, params).fetchall()

        entries = []
        for row in rows:
            entries.append({
                'id': row['id'],
                'error_type': row['error_type'],
                'error_message': row['error_message'],
                'failed_at': row['failed_at'],
                'operation': QueuedOperation.model_validate(json.loads(row['operation_data'])),
            })
        return entries

    def get_count(self) -> int:
        with closing(self._connect()) as conn:
            return conn.execute('SELECT COUNT(*) FROM dead_letters').fetchone()[0]

    def get_error_summary(self) -> dict:
        """Count of entries per error type, e.g. {'RemoteRejection': 3}."""
        with closing(self._connect()) as conn:
            rows = conn.execute(
                'SELECT error_type, COUNT(*) FROM dead_letters GROUP BY error_type'
            ).fetchall()
        return {row[0]: row[1] for row in rows}

    def remove(self, entry_id: int) -> bool:
        """Delete one entry. Returns True if it existed."""
        with closing(self._connect()) as conn:
            cursor = conn.execute('DELETE FROM dead_letters WHERE id = ?', (entry_id,))
            conn.commit()
            return cursor.rowcount > 0

    def delete_older_than(self, days: int = 30) -> int:
        """
        Remove entries older than the retention period.

        Returns:
            Number of entries deleted
        """
        cutoff = time.time() - days * 86400
        with closing(self._connect()) as conn:
            cursor = conn.execute('DELETE FROM dead_letters WHERE failed_at < ?', (cutoff,))
            conn.commit()
            deleted = cursor.rowcount
        if deleted:
            log_info(f"Removed {deleted} DLQ entries older than {days} days")
        return deleted


__all__ = ['DeadLetterQueue']
