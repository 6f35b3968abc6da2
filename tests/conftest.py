"""
Shared pytest fixtures for FieldSync tests.

Provides reusable fixtures for:
- An in-memory remote store (FakeRemoteStore) with scripted failures
- Real persistent components on tmp_path (queue store, DLQ)
- Connectivity monitor and sync engine wiring
- Configuration objects
- Sample operations

Fixtures are synchronous: async tests use them under pytest-asyncio strict
mode and await the components themselves.
"""

import asyncio
from typing import Any, Optional
from unittest.mock import MagicMock

import pytest

from connectivity.monitor import ConnectivityMonitor
from sync_queue.dlq import DeadLetterQueue
from sync_queue.models import create_operation
from sync_queue.store import PersistentQueueStore
from worker.circuit_breaker import CircuitBreaker
from worker.engine import SyncEngine


# =============================================================================
# Remote Store Fake
# =============================================================================


class FakeRemoteStore:
    """
    In-memory RemoteStore.

    Records every call in `calls` as (method, collection, key, record,
    idempotency_key) and keeps applied rows per collection in `tables`.

    Failures are scripted per primary key: `fail[key]` is either an exception
    (raised on every attempt) or a list of exceptions consumed one per
    attempt (None in the list means succeed).

    `gate`, when set, is an asyncio.Event every call waits on, so tests can
    hold a drain inside a remote call.
    """

    def __init__(self):
        self.calls: list[tuple] = []
        self.tables: dict[str, dict[Any, dict]] = {}
        self.fail: dict[Any, Any] = {}
        self.fail_all: Optional[Exception] = None
        self.gate: Optional[asyncio.Event] = None
        self.ping_error: Optional[Exception] = None
        self.closed = False

    async def _attempt(self, method, collection, key, record, idempotency_key):
        self.calls.append((method, collection, key, record, idempotency_key))
        if self.gate is not None:
            await self.gate.wait()
        if self.fail_all is not None:
            raise self.fail_all
        scripted = self.fail.get(key)
        if isinstance(scripted, list):
            error = scripted.pop(0) if scripted else None
        else:
            error = scripted
        if error is not None:
            raise error

    async def insert(self, collection, record, idempotency_key=None):
        key = record.get('id')
        await self._attempt('insert', collection, key, record, idempotency_key)
        self.tables.setdefault(collection, {})[key] = dict(record)

    async def update(self, collection, key, record, idempotency_key=None):
        await self._attempt('update', collection, key, record, idempotency_key)
        self.tables.setdefault(collection, {})[key] = dict(record)

    async def delete(self, collection, key, idempotency_key=None):
        await self._attempt('delete', collection, key, None, idempotency_key)
        self.tables.setdefault(collection, {}).pop(key, None)

    async def ping(self):
        if self.ping_error is not None:
            raise self.ping_error

    async def close(self):
        self.closed = True

    def call_keys(self) -> list:
        """(method, collection, key) of every call, in order."""
        return [(c[0], c[1], c[2]) for c in self.calls]


@pytest.fixture
def fake_remote():
    """
    In-memory remote store.

    Usage:
        def test_drain(fake_remote):
            fake_remote.fail['F1'] = RemoteRejection("HTTP 409: duplicate")
    """
    return FakeRemoteStore()


# =============================================================================
# Persistent Component Fixtures
# =============================================================================


@pytest.fixture
def data_dir(tmp_path):
    """Empty data directory for queue, DLQ and state files."""
    path = tmp_path / "data"
    path.mkdir()
    return str(path)


@pytest.fixture
def store(data_dir):
    """Real PersistentQueueStore on tmp_path."""
    return PersistentQueueStore(data_dir)


@pytest.fixture
def dlq(data_dir):
    """Real DeadLetterQueue on tmp_path."""
    return DeadLetterQueue(data_dir)


@pytest.fixture
def monitor():
    """ConnectivityMonitor, initially online, with notices captured."""
    return ConnectivityMonitor(initial_online=True, notifier=lambda notice: None)


@pytest.fixture
def notices():
    """List collecting SyncNotice values; pass notices.append as notifier."""
    return []


@pytest.fixture
def breaker():
    return CircuitBreaker(failure_threshold=3, recovery_timeout=60.0)


@pytest.fixture
def engine(store, fake_remote, monitor, dlq, breaker, notices, data_dir):
    """
    SyncEngine wired to real store/DLQ and the fake remote.

    Notices are appended to the `notices` fixture.
    """
    return SyncEngine(
        store,
        fake_remote,
        monitor,
        dlq,
        breaker=breaker,
        notifier=notices.append,
        data_dir=data_dir,
        max_retries=3,
        item_timeout=2.0,
        backoff_base=1.0,
        backoff_cap=10.0,
    )


# =============================================================================
# Configuration Fixtures
# =============================================================================


@pytest.fixture
def mock_config(data_dir):
    """
    Mock configuration object with all FieldSync settings.

    Usage:
        def test_session(mock_config):
            assert mock_config.max_retries == 3
    """
    config = MagicMock()
    config.data_dir = data_dir
    config.remote_url = "https://db.example.org"
    config.remote_api_key = "anon-key-abc123"
    config.primary_key = "id"
    config.upsert_inserts = True
    config.connect_timeout = 5.0
    config.item_timeout = 2.0
    config.default_priority = 5
    config.max_retries = 3
    config.backoff_base = 1.0
    config.backoff_cap = 10.0
    config.circuit_failure_threshold = 3
    config.circuit_recovery_timeout = 60.0
    config.poll_interval = 0.0
    config.probe_interval = 0.0
    config.dlq_retention_days = 30
    config.log_level = "info"
    config.json_logs = False
    return config


@pytest.fixture
def valid_config_dict(data_dir):
    """
    Dictionary with valid values for FieldSyncConfig.

    Usage:
        def test_config_parsing(valid_config_dict):
            config = FieldSyncConfig(**valid_config_dict)
    """
    return {
        "data_dir": data_dir,
        "remote_url": "https://db.example.org/",
        "remote_api_key": "anon-key-abc123",
        "max_retries": 3,
        "item_timeout": 2.0,
        "backoff_base": 1.0,
        "backoff_cap": 10.0,
    }


# =============================================================================
# Test Data Fixtures
# =============================================================================


@pytest.fixture
def make_operation():
    """
    Factory for QueuedOperation values.

    Usage:
        def test_order(make_operation):
            op = make_operation('farmers', 'insert', {'id': 'F1'}, priority=1, now=100.0)
    """
    def _make(collection='farmers', kind='insert', payload=None, priority=5, now=None):
        if payload is None:
            payload = {'id': 'F1', 'name': 'Amina'}
        return create_operation(collection, kind, payload, priority=priority, now=now)

    return _make
