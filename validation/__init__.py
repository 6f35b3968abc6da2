"""
Validation module for FieldSync.

Provides error classification for retry/DLQ routing and configuration
validation.
"""

from validation.errors import (
    PermanentError,
    TransientError,
    classify_exception,
    classify_http_error,
    is_connectivity_error,
)
from validation.config import FieldSyncConfig, validate_config

__all__ = [
    'TransientError',
    'PermanentError',
    'classify_exception',
    'classify_http_error',
    'is_connectivity_error',
    'FieldSyncConfig',
    'validate_config',
]
