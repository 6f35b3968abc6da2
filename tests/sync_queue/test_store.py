"""
Tests for sync_queue/store.py - PersistentQueueStore.

Covers ordering, durability across instances, per-item commits, listeners and
recovery from unreadable data.
"""

import json
import os
import sqlite3

import pytest

from sync_queue.store import QUEUE_KEY, PersistentQueueStore, QueueStorageError


class TestAppendAndLoad:

    def test_empty_store_loads_empty(self, store):
        assert store.load() == []
        assert store.count() == 0

    def test_append_keeps_queue_sorted(self, store, make_operation):
        low = make_operation(payload={'id': 'L'}, priority=1, now=1.0)
        high = make_operation(payload={'id': 'H'}, priority=9, now=2.0)

        store.append(low)
        ordered = store.append(high)

        assert [op.id for op in ordered] == [high.id, low.id]
        assert [op.id for op in store.load()] == [high.id, low.id]

    def test_equal_priority_keeps_append_order_when_clock_steps_back(self, store, make_operation):
        first = make_operation(payload={'id': 'A'}, now=100.0)
        second = make_operation(payload={'id': 'B'}, now=50.0)

        store.append(first)
        store.append(second)

        assert [op.payload['id'] for op in store.load()] == ['A', 'B']
        assert (first.sequence, second.sequence) == (1, 2)

    def test_sequence_continues_after_remove(self, store, make_operation):
        a = make_operation(payload={'id': 'A'})
        b = make_operation(payload={'id': 'B'})
        store.append(a)
        store.append(b)
        store.remove(a.id)

        c = make_operation(payload={'id': 'C'})
        store.append(c)

        assert c.sequence == 3
        assert [op.id for op in store.load()] == [b.id, c.id]

    def test_contents_survive_new_instance(self, data_dir, store, make_operation):
        op = make_operation()
        store.append(op)

        reopened = PersistentQueueStore(data_dir)

        assert reopened.load() == [op]

    def test_persisted_as_json_list_under_queue_key(self, store, make_operation):
        op = make_operation()
        store.append(op)

        raw = store._db[QUEUE_KEY]

        assert json.loads(raw) == [op.to_record()]


class TestPerItemCommits:

    def test_remove(self, store, make_operation):
        a = make_operation(payload={'id': 'A'}, now=1.0)
        b = make_operation(payload={'id': 'B'}, now=2.0)
        store.append(a)
        store.append(b)

        assert store.remove(a.id) is True
        assert store.remove(a.id) is False
        assert store.load() == [b]

    def test_upsert_replaces_by_id(self, store, make_operation):
        op = make_operation()
        store.append(op)

        updated = op.model_copy(update={'retry_count': 2, 'last_error_type': 'RemoteTemporaryError'})
        store.upsert(updated)

        loaded = store.load()
        assert len(loaded) == 1
        assert loaded[0].retry_count == 2

    def test_replace_overwrites_and_sorts(self, store, make_operation):
        store.append(make_operation(payload={'id': 'X'}))
        a = make_operation(payload={'id': 'A'}, priority=1, now=1.0)
        b = make_operation(payload={'id': 'B'}, priority=2, now=2.0)

        store.replace([a, b])

        assert store.load() == [b, a]

    def test_clear_returns_count(self, store, make_operation):
        store.append(make_operation(payload={'id': 'A'}))
        store.append(make_operation(payload={'id': 'B'}))

        assert store.clear() == 2
        assert store.count() == 0

    def test_queued_ids_and_contains(self, store, make_operation):
        op = make_operation()
        store.append(op)

        assert store.queued_ids() == {op.id}
        assert store.contains(op.id)
        assert not store.contains('missing')


class TestListeners:

    def test_listener_receives_pending_count(self, store, make_operation):
        counts = []
        store.subscribe(counts.append)

        op = make_operation()
        store.append(op)
        store.remove(op.id)

        assert counts == [1, 0]

    def test_unsubscribe(self, store, make_operation):
        counts = []
        unsubscribe = store.subscribe(counts.append)
        unsubscribe()

        store.append(make_operation())

        assert counts == []

    def test_listener_may_use_store(self, store, make_operation):
        """Listeners run after the lock is released."""
        seen = []
        store.subscribe(lambda count: seen.append(store.count()))

        store.append(make_operation())

        assert seen == [1]

    def test_failing_listener_does_not_break_append(self, store, make_operation):
        def broken(count):
            raise RuntimeError("boom")

        store.subscribe(broken)
        store.append(make_operation())

        assert store.count() == 1


class TestCorruptionRecovery:

    def test_invalid_json_treated_as_empty_and_quarantined(self, data_dir):
        events = []
        store = PersistentQueueStore(data_dir, on_corruption=events.append)
        store._db[QUEUE_KEY] = "not json {{{"

        assert store.load() == []

        assert len(events) == 1
        event = events[0]
        assert event.quarantine_key.startswith(f"{QUEUE_KEY}.corrupt.")
        assert store._db[event.quarantine_key] == "not json {{{"
        assert store.load() == []
        assert len(events) == 1

    def test_non_list_treated_as_empty(self, data_dir):
        events = []
        store = PersistentQueueStore(data_dir, on_corruption=events.append)
        store._db[QUEUE_KEY] = json.dumps({"not": "a list"})

        assert store.load() == []
        assert "expected a list" in events[0].reason

    def test_invalid_records_dropped_valid_kept(self, data_dir, make_operation):
        events = []
        store = PersistentQueueStore(data_dir, on_corruption=events.append)
        good = make_operation()
        store._db[QUEUE_KEY] = json.dumps([good.to_record(), {"id": "broken"}])

        assert store.load() == [good]

        assert events[0].dropped_count == 1
        assert json.loads(store._db[events[0].quarantine_key]) == [{"id": "broken"}]
        assert store.load() == [good]

    def test_append_after_corruption_works(self, data_dir, make_operation):
        store = PersistentQueueStore(data_dir)
        store._db[QUEUE_KEY] = "garbage"
        op = make_operation()

        store.append(op)

        assert store.load() == [op]

    def test_unreadable_database_moved_aside(self, data_dir, make_operation):
        PersistentQueueStore(data_dir).append(make_operation())
        queue_dir = os.path.join(data_dir, 'queue')
        for entry in os.listdir(queue_dir):
            with open(os.path.join(queue_dir, entry), 'wb') as f:
                f.write(b'this is not sqlite' * 100)

        events = []
        store = PersistentQueueStore(data_dir, on_corruption=events.append)

        assert store.load() == []
        assert len(events) == 1
        event = events[0]
        assert event.dropped_count == 0
        assert event.quarantine_key.startswith(os.path.join(data_dir, 'queue.corrupt.'))
        assert os.path.isdir(event.quarantine_key)

        op = make_operation(payload={'id': 'F2'})
        store.append(op)
        assert PersistentQueueStore(data_dir).load() == [op]

    def test_locked_database_is_not_moved(self, data_dir, mocker):
        mocker.patch(
            'sync_queue.store.persistqueue.PDict',
            side_effect=sqlite3.OperationalError("database is locked"),
        )

        with pytest.raises(QueueStorageError, match="database is locked"):
            PersistentQueueStore(data_dir)

        assert not [name for name in os.listdir(data_dir) if '.corrupt.' in name]
