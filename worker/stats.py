"""
Sync statistics tracking.

Counters for drained operations, persisted as cumulative totals across
sessions in a JSON file.
"""

import json
import os
import time
from dataclasses import dataclass, field
from typing import Dict

from shared.log import create_logger

log_trace, log_debug, log_info, log_warn, log_error = create_logger("Stats")


@dataclass
class SyncStats:
    """
    Operation counters for one or more drains.

    Usage:
        stats = SyncStats()
        stats.record_success(0.12)
        stats.record_failure('RemoteRejection', 0.3, to_dlq=True)
        stats.save_to_file('/data/fieldsync/stats.json')
    """
    operations_processed: int = 0
    operations_synced: int = 0
    operations_failed: int = 0
    operations_to_dlq: int = 0
    connectivity_failures: int = 0
    total_processing_time: float = 0.0
    session_start: float = field(default_factory=time.time)
    errors_by_type: Dict[str, int] = field(default_factory=dict)

    def record_success(self, processing_time: float) -> None:
        self.operations_processed += 1
        self.operations_synced += 1
        self.total_processing_time += processing_time

    def record_failure(
        self,
        error_type: str,
        processing_time: float,
        to_dlq: bool = False,
        connectivity: bool = False,
    ) -> None:
        """
        Record a failed remote attempt.

        Args:
            error_type: Exception class name
            processing_time: Seconds spent on the attempt
            to_dlq: Operation was moved to the dead letter queue
            connectivity: Remote store was unreachable
        """
        self.operations_processed += 1
        self.operations_failed += 1
        self.total_processing_time += processing_time
        self.errors_by_type[error_type] = self.errors_by_type.get(error_type, 0) + 1
        if to_dlq:
            self.operations_to_dlq += 1
        if connectivity:
            self.connectivity_failures += 1

    def merge(self, other: 'SyncStats') -> None:
        """Add another instance's counters into this one (session_start kept)."""
        self.operations_processed += other.operations_processed
        self.operations_synced += other.operations_synced
        self.operations_failed += other.operations_failed
        self.operations_to_dlq += other.operations_to_dlq
        self.connectivity_failures += other.connectivity_failures
        self.total_processing_time += other.total_processing_time
        for error_type, count in other.errors_by_type.items():
            self.errors_by_type[error_type] = self.errors_by_type.get(error_type, 0) + count

    @property
    def success_rate(self) -> float:
        """Percentage of attempts that synced (0.0 with no attempts)."""
        if self.operations_processed == 0:
            return 0.0
        return (self.operations_synced / self.operations_processed) * 100.0

    @property
    def avg_processing_time(self) -> float:
        if self.operations_processed == 0:
            return 0.0
        return self.total_processing_time / self.operations_processed

    def to_dict(self) -> dict:
        return {
            'operations_processed': self.operations_processed,
            'operations_synced': self.operations_synced,
            'operations_failed': self.operations_failed,
            'operations_to_dlq': self.operations_to_dlq,
            'connectivity_failures': self.connectivity_failures,
            'total_processing_time': self.total_processing_time,
            'session_start': self.session_start,
            'errors_by_type': dict(self.errors_by_type),
            'success_rate': self.success_rate,
            'avg_processing_time': self.avg_processing_time,
        }

    def save_to_file(self, filepath: str) -> None:
        """
        Add these counters to the cumulative totals in filepath.

        The earliest session_start is kept. A corrupted file is overwritten
        with this instance's counters.
        """
        directory = os.path.dirname(filepath)
        if directory:
            os.makedirs(directory, exist_ok=True)

        cumulative = SyncStats(session_start=self.session_start)
        if os.path.exists(filepath):
            try:
                cumulative = SyncStats._from_dict(_read_json(filepath))
            except (json.JSONDecodeError, OSError, TypeError, ValueError) as e:
                log_warn(f"Stats file unreadable, starting new totals: {e}")
                cumulative = SyncStats(session_start=self.session_start)
        cumulative.merge(self)

        data = cumulative.to_dict()
        del data['success_rate']
        del data['avg_processing_time']

        tmp_path = filepath + '.tmp'
        with open(tmp_path, 'w') as f:
            json.dump(data, f, indent=2)
        os.replace(tmp_path, filepath)

    @classmethod
    def load_from_file(cls, filepath: str) -> 'SyncStats':
        """Load cumulative stats; missing or corrupted file gives empty stats."""
        if not os.path.exists(filepath):
            return cls()
        try:
            return cls._from_dict(_read_json(filepath))
        except (json.JSONDecodeError, OSError, TypeError, ValueError) as e:
            log_warn(f"Stats file unreadable: {e}")
            return cls()

    @classmethod
    def _from_dict(cls, data: dict) -> 'SyncStats':
        if not isinstance(data, dict):
            raise TypeError(f"expected an object, got {type(data).__name__}")
        return cls(
            operations_processed=int(data.get('operations_processed', 0)),
            operations_synced=int(data.get('operations_synced', 0)),
            operations_failed=int(data.get('operations_failed', 0)),
            operations_to_dlq=int(data.get('operations_to_dlq', 0)),
            connectivity_failures=int(data.get('connectivity_failures', 0)),
            total_processing_time=float(data.get('total_processing_time', 0.0)),
            session_start=float(data.get('session_start', time.time())),
            errors_by_type=dict(data.get('errors_by_type', {})),
        )


def _read_json(filepath: str):
    with open(filepath, 'r') as f:
        return json.load(f)


__all__ = ['SyncStats']
