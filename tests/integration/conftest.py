"""
Integration test fixtures for FieldSync.

These fixtures compose the unit test fixtures from tests/conftest.py into
complete sessions for testing:
- Offline capture and reconnect sync
- Failure containment and dead-lettering
- Queue durability across restarts

All integration tests should be marked with @pytest.mark.integration
"""

import pytest

from connectivity.monitor import ConnectivityMonitor
from session.offline_sync import OfflineSyncSession
from validation.config import FieldSyncConfig


# Integration fixtures inherit from tests/conftest.py automatically via pytest


@pytest.fixture
def integration_config(data_dir):
    """Real FieldSyncConfig with short timeouts and a small retry budget."""
    return FieldSyncConfig(
        data_dir=data_dir,
        max_retries=3,
        item_timeout=2.0,
        backoff_base=1.0,
        backoff_cap=10.0,
        circuit_failure_threshold=3,
        circuit_recovery_timeout=60.0,
    )


@pytest.fixture
def make_session(integration_config, fake_remote, notices):
    """
    Factory for OfflineSyncSession wired to the in-memory remote store.

    Every session built by one test shares the data directory, the remote
    and the notices list, so a second session models an app restart.

    Usage:
        async def test_flow(make_session):
            async with make_session(online=False) as session:
                await session.queue_operation('farmers', 'insert', {'id': 'F1'})
    """
    def _make(online=True):
        monitor = ConnectivityMonitor(initial_online=online, notifier=notices.append)
        return OfflineSyncSession(
            integration_config,
            remote=fake_remote,
            monitor=monitor,
            notifier=notices.append,
        )

    return _make
