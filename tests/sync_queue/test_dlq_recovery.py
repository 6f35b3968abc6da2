"""
Tests for sync_queue/dlq_recovery.py - requeue_dead_letters.
"""

from unittest.mock import patch

from remote.exceptions import RemoteRejection, RemoteTemporaryError
from sync_queue.dlq_recovery import RETRYABLE_ERROR_TYPES, requeue_dead_letters
from sync_queue.store import QueueStorageError


class TestRequeueDeadLetters:

    def test_requeues_all_with_reset_retry_metadata(self, dlq, store, make_operation):
        op = make_operation('shipments', 'update', {'id': 'S1'})
        failed = op.model_copy(update={'retry_count': 3, 'next_retry_at': 9e9,
                                       'last_error_type': 'RemoteTemporaryError'})
        dlq.add(failed, RemoteTemporaryError("HTTP 503"), 3)

        result = requeue_dead_letters(dlq, store)

        assert result.total_dlq_entries == 1
        assert result.recovered == 1
        assert result.recovered_operation_ids == [op.id]
        queued = store.load()
        assert len(queued) == 1
        assert queued[0].id == op.id
        assert queued[0].retry_count == 0
        assert queued[0].next_retry_at == 0.0
        assert queued[0].last_error_type is None
        assert dlq.get_count() == 0

    def test_selected_entry_ids_only(self, dlq, store, make_operation):
        first = dlq.add(make_operation(payload={'id': 'A'}), RemoteRejection("x"), 0)
        dlq.add(make_operation(payload={'id': 'B'}), RemoteRejection("y"), 0)

        result = requeue_dead_letters(dlq, store, entry_ids=[first])

        assert result.recovered == 1
        assert store.count() == 1
        assert dlq.get_count() == 1

    def test_error_type_filter(self, dlq, store, make_operation):
        dlq.add(make_operation(payload={'id': 'A'}), RemoteRejection("x"), 0)
        dlq.add(make_operation(payload={'id': 'B'}), RemoteTemporaryError("y"), 5)

        result = requeue_dead_letters(dlq, store, error_types=RETRYABLE_ERROR_TYPES)

        assert result.recovered == 1
        assert store.load()[0].payload == {'id': 'B'}
        assert dlq.get_error_summary() == {'RemoteRejection': 1}

    def test_already_queued_is_skipped_and_entry_dropped(self, dlq, store, make_operation):
        op = make_operation()
        store.append(op)
        dlq.add(op, RemoteRejection("x"), 0)

        result = requeue_dead_letters(dlq, store)

        assert result.skipped_already_queued == 1
        assert result.recovered == 0
        assert store.count() == 1
        assert dlq.get_count() == 0

    def test_idempotent_second_run(self, dlq, store, make_operation):
        dlq.add(make_operation(), RemoteRejection("x"), 0)

        requeue_dead_letters(dlq, store)
        second = requeue_dead_letters(dlq, store)

        assert second.total_dlq_entries == 0
        assert store.count() == 1

    def test_storage_failure_leaves_entry_in_dlq(self, dlq, store, make_operation):
        dlq.add(make_operation(), RemoteRejection("x"), 0)

        with patch.object(store, 'append', side_effect=QueueStorageError("disk full")):
            result = requeue_dead_letters(dlq, store)

        assert result.failed == 1
        assert dlq.get_count() == 1

    def test_empty_dlq(self, dlq, store):
        result = requeue_dead_letters(dlq, store)

        assert result.total_dlq_entries == 0
        assert result.recovered == 0
