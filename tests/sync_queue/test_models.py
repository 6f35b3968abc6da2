"""
Tests for sync_queue/models.py - QueuedOperation and the mutation union.
"""

import pytest

from sync_queue.models import (
    Delete,
    Insert,
    InvalidOperationError,
    OperationKind,
    QueuedOperation,
    Update,
    create_operation,
    sort_operations,
)


class TestOperationKind:

    @pytest.mark.parametrize("value", ["insert", "INSERT", " Insert "])
    def test_parse_is_case_insensitive(self, value):
        assert OperationKind.parse(value) is OperationKind.INSERT

    def test_parse_rejects_unknown(self):
        with pytest.raises(InvalidOperationError, match="kind must be one of"):
            OperationKind.parse("upsert")

    def test_parse_rejects_non_string(self):
        with pytest.raises(InvalidOperationError):
            OperationKind.parse(3)


class TestCreateOperation:
    """Enqueue preconditions."""

    def test_builds_operation_with_fresh_id(self):
        op1 = create_operation('farmers', 'insert', {'id': 'F1'}, now=10.0)
        op2 = create_operation('farmers', 'insert', {'id': 'F1'}, now=10.0)

        assert op1.id != op2.id
        assert op1.enqueued_at == 10.0
        assert op1.priority == 5
        assert op1.retry_count == 0
        assert op1.kind is OperationKind.INSERT

    def test_update_requires_primary_key(self):
        with pytest.raises(InvalidOperationError, match="requires 'id'"):
            create_operation('shipments', 'update', {'status': 'lost'})

    def test_delete_requires_primary_key(self):
        with pytest.raises(InvalidOperationError):
            create_operation('shipments', 'delete', {})

    def test_custom_primary_key(self):
        op = create_operation('shipments', 'delete', {'code': 'S1'}, primary_key='code')

        assert op.to_mutation('code') == Delete(key='S1')

    def test_empty_collection_rejected(self):
        with pytest.raises(InvalidOperationError):
            create_operation('  ', 'insert', {'id': 'F1'})

    def test_payload_must_be_mapping(self):
        with pytest.raises(InvalidOperationError):
            create_operation('farmers', 'insert', ['id', 'F1'])

    def test_priority_must_be_int(self):
        with pytest.raises(InvalidOperationError):
            create_operation('farmers', 'insert', {'id': 'F1'}, priority='high')

    def test_non_string_payload_key_rejected(self):
        with pytest.raises(InvalidOperationError, match="invalid insert on farmers"):
            create_operation('farmers', 'insert', {'id': 'F1', 1: 'a'})

    def test_unserializable_payload_value_rejected(self):
        with pytest.raises(InvalidOperationError, match="not JSON serializable"):
            create_operation('farmers', 'insert', {'id': 'F1', 'photo': object()})

    def test_invalid_operation_error_is_value_error(self):
        with pytest.raises(ValueError):
            create_operation('farmers', 'merge', {'id': 'F1'})


class TestMutation:

    def test_insert(self):
        op = create_operation('farmers', 'insert', {'id': 'F1', 'name': 'Amina'})
        assert op.to_mutation() == Insert(record={'id': 'F1', 'name': 'Amina'})

    def test_update(self):
        op = create_operation('shipments', 'update', {'id': 'S1', 'status': 'delivered'})
        assert op.to_mutation() == Update(key='S1', record={'id': 'S1', 'status': 'delivered'})

    def test_delete(self):
        op = create_operation('shipments', 'delete', {'id': 'S1'})
        assert op.to_mutation() == Delete(key='S1')


class TestRecordFormat:

    def test_to_record_uses_camel_case_keys(self):
        op = create_operation('farmers', 'insert', {'id': 'F1'}, priority=7, now=12.5)

        record = op.to_record()

        assert set(record) == {
            'id', 'targetCollection', 'kind', 'payload', 'enqueuedAt', 'priority', 'sequence',
            'retryCount', 'nextRetryAt', 'lastErrorType', 'lastError',
        }
        assert record['kind'] == 'insert'
        assert record['enqueuedAt'] == 12.5

    def test_record_round_trip(self):
        op = create_operation('farmers', 'insert', {'id': 'F1'})
        assert QueuedOperation.model_validate(op.to_record()) == op

    def test_is_ready_respects_next_retry_at(self):
        op = create_operation('farmers', 'insert', {'id': 'F1'})
        delayed = op.model_copy(update={'next_retry_at': 100.0})

        assert delayed.is_ready(now=99.0) is False
        assert delayed.is_ready(now=100.0) is True


class TestSortOperations:

    def test_priority_desc_then_enqueued_at_asc(self):
        low_old = create_operation('a', 'insert', {'id': 1}, priority=1, now=1.0)
        high_new = create_operation('a', 'insert', {'id': 2}, priority=9, now=5.0)
        high_old = create_operation('a', 'insert', {'id': 3}, priority=9, now=2.0)

        ordered = sort_operations([low_old, high_new, high_old])

        assert ordered == [high_old, high_new, low_old]

    def test_equal_keys_keep_submission_order(self):
        first = create_operation('a', 'insert', {'id': 1}, now=1.0)
        second = create_operation('a', 'insert', {'id': 2}, now=1.0)

        assert sort_operations([first, second]) == [first, second]

    def test_sequence_orders_equal_priority_before_timestamp(self):
        earlier = create_operation('a', 'insert', {'id': 1}, now=9.0).model_copy(update={'sequence': 1})
        later = create_operation('a', 'insert', {'id': 2}, now=3.0).model_copy(update={'sequence': 2})

        assert sort_operations([later, earlier]) == [earlier, later]
