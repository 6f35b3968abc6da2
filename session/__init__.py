"""
Offline sync session: one owner for store, engine and scheduler.
"""

from session.offline_sync import OfflineSyncSession, SyncStatus

__all__ = ['OfflineSyncSession', 'SyncStatus']
