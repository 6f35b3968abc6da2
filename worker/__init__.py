"""
Sync worker: engine, scheduler and their supporting pieces.

Exports SyncEngine, which drains the queue against the remote store, and
SyncScheduler, which decides when it runs.
"""

from worker.engine import DrainResult, SyncEngine
from worker.scheduler import SyncScheduler
from validation.errors import TransientError, PermanentError

__all__ = ['SyncEngine', 'DrainResult', 'SyncScheduler', 'TransientError', 'PermanentError']
