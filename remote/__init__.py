"""
Remote store client and exception hierarchy.
"""

from remote.client import RemoteStore, RestRemoteStore, apply_mutation
from remote.exceptions import (
    RemoteConnectionError,
    RemoteRejection,
    RemoteStoreError,
    RemoteTemporaryError,
    translate_http_exception,
)
from remote.health import check_remote_health

__all__ = [
    'RemoteStore',
    'RestRemoteStore',
    'apply_mutation',
    'RemoteStoreError',
    'RemoteConnectionError',
    'RemoteTemporaryError',
    'RemoteRejection',
    'translate_http_exception',
    'check_remote_health',
]
