"""
Queued operation model and the mutation union it dispatches to.

A QueuedOperation is the only durable queue entity. It is persisted as a JSON
record with camelCase keys:

    {id, targetCollection, kind, payload, enqueuedAt, priority, sequence,
     retryCount, nextRetryAt, lastErrorType, lastError}

Equal-priority records drain in `sequence` order. The store assigns it on
append, so submission order does not depend on the wall clock.
"""

from __future__ import annotations

import json
import time
import uuid
from dataclasses import dataclass
from enum import Enum
from typing import Any, Mapping, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from pydantic_core import PydanticSerializationError

DEFAULT_PRIORITY = 5
DEFAULT_PRIMARY_KEY = 'id'


class InvalidOperationError(ValueError):
    """The operation violates an enqueue precondition."""


class OperationKind(str, Enum):
    """Kinds of remote mutation a feature can request."""
    INSERT = "insert"
    UPDATE = "update"
    DELETE = "delete"

    @classmethod
    def parse(cls, value: Union[str, 'OperationKind']) -> 'OperationKind':
        """Accept 'insert', 'INSERT', 'Insert' or an OperationKind."""
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            try:
                return cls(value.strip().lower())
            except ValueError:
                pass
        valid = ', '.join(k.value for k in cls)
        raise InvalidOperationError(f"kind must be one of {valid}, got: {value!r}")


# =============================================================================
# Mutation union
# =============================================================================


@dataclass(frozen=True)
class Insert:
    record: dict


@dataclass(frozen=True)
class Update:
    key: Any
    record: dict


@dataclass(frozen=True)
class Delete:
    key: Any


Mutation = Union[Insert, Update, Delete]


# =============================================================================
# QueuedOperation
# =============================================================================


class QueuedOperation(BaseModel):
    """A write not yet confirmed applied to the remote store."""

    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(min_length=1)
    target_collection: str = Field(alias='targetCollection', min_length=1)
    kind: OperationKind
    payload: dict[str, Any]
    enqueued_at: float = Field(alias='enqueuedAt')
    priority: int = DEFAULT_PRIORITY
    sequence: int = Field(default=0, ge=0)

    # Retry metadata travels with the record so backoff survives restarts
    retry_count: int = Field(default=0, alias='retryCount', ge=0)
    next_retry_at: float = Field(default=0.0, alias='nextRetryAt')
    last_error_type: Optional[str] = Field(default=None, alias='lastErrorType')
    last_error: Optional[str] = Field(default=None, alias='lastError')

    @field_validator('kind', mode='before')
    @classmethod
    def validate_kind(cls, v):
        return OperationKind.parse(v)

    def sort_key(self) -> tuple:
        """Queue order: priority desc, then store sequence, then enqueued_at."""
        return (-self.priority, self.sequence, self.enqueued_at)

    def is_ready(self, now: Optional[float] = None) -> bool:
        """True when the operation's backoff delay (if any) has elapsed."""
        if now is None:
            now = time.time()
        return now >= self.next_retry_at

    def to_record(self) -> dict:
        """Serialize to the persisted JSON record."""
        return self.model_dump(mode='json', by_alias=True)

    def to_mutation(self, primary_key: str = DEFAULT_PRIMARY_KEY) -> Mutation:
        """
        Build the mutation this operation applies.

        Raises:
            InvalidOperationError: update/delete payload lacks the primary key
        """
        if self.kind is OperationKind.INSERT:
            return Insert(record=dict(self.payload))
        key = self.payload.get(primary_key)
        if key is None:
            raise InvalidOperationError(
                f"{self.kind.value} on {self.target_collection} requires '{primary_key}' in payload"
            )
        if self.kind is OperationKind.UPDATE:
            return Update(key=key, record=dict(self.payload))
        if self.kind is OperationKind.DELETE:
            return Delete(key=key)
        raise InvalidOperationError(f"Unsupported operation kind: {self.kind!r}")

    def describe(self) -> str:
        """Short label for logs, e.g. 'update shipments#S1'."""
        key = self.payload.get(DEFAULT_PRIMARY_KEY, '?')
        return f"{self.kind.value} {self.target_collection}#{key}"


def create_operation(
    target_collection: str,
    kind: Union[str, OperationKind],
    payload: Mapping[str, Any],
    priority: int = DEFAULT_PRIORITY,
    primary_key: str = DEFAULT_PRIMARY_KEY,
    now: Optional[float] = None,
) -> QueuedOperation:
    """
    Build a new QueuedOperation, enforcing enqueue preconditions.

    Args:
        target_collection: Remote collection (table) name
        kind: insert, update or delete
        payload: Full record for insert/update; at least the primary key for delete
        priority: Higher drains first
        primary_key: Primary key field name in the payload
        now: Enqueue timestamp (default: time.time())

    Returns:
        QueuedOperation with a fresh id

    Raises:
        InvalidOperationError: A precondition is violated, or the payload has
            non-string keys or values JSON cannot encode
    """
    op_kind = OperationKind.parse(kind)

    if not isinstance(target_collection, str) or not target_collection.strip():
        raise InvalidOperationError("target_collection must be a non-empty string")
    if not isinstance(payload, Mapping):
        raise InvalidOperationError(f"payload must be a mapping, got {type(payload).__name__}")
    if isinstance(priority, bool) or not isinstance(priority, int):
        raise InvalidOperationError(f"priority must be an integer, got {priority!r}")
    if op_kind in (OperationKind.UPDATE, OperationKind.DELETE) and payload.get(primary_key) is None:
        raise InvalidOperationError(
            f"{op_kind.value} on {target_collection} requires '{primary_key}' in payload"
        )

    try:
        op = QueuedOperation(
            id=uuid.uuid4().hex,
            target_collection=target_collection.strip(),
            kind=op_kind,
            payload=dict(payload),
            enqueued_at=time.time() if now is None else now,
            priority=priority,
        )
        # Payload must survive the persisted JSON form and the request body
        json.dumps(op.to_record(), allow_nan=False)
    except ValidationError as e:
        raise InvalidOperationError(
            f"invalid {op_kind.value} on {target_collection}: {e.error_count()} error(s), "
            f"{e.errors()[0]['msg']}"
        ) from e
    except (PydanticSerializationError, TypeError, ValueError) as e:
        raise InvalidOperationError(
            f"payload for {op_kind.value} on {target_collection} is not JSON serializable: {e}"
        ) from e
    return op


def sort_operations(operations: list[QueuedOperation]) -> list[QueuedOperation]:
    """Return operations in queue order (stable: equal keys keep their order)."""
    return sorted(operations, key=QueuedOperation.sort_key)


__all__ = [
    'DEFAULT_PRIORITY',
    'DEFAULT_PRIMARY_KEY',
    'InvalidOperationError',
    'OperationKind',
    'Insert',
    'Update',
    'Delete',
    'Mutation',
    'QueuedOperation',
    'create_operation',
    'sort_operations',
]
