"""
Remote store exception hierarchy.

Every failure of a remote write is translated into one of three classes so the
sync engine can route it:

- RemoteConnectionError: the store was not reached (DNS, refused, reset).
  Retried forever; does not consume the operation's retry budget.
- RemoteTemporaryError: the store was reached but could not apply the write
  right now (timeout, 429, 5xx). Retried with back-off up to max_retries.
- RemoteRejection: the store refused the write (validation, conflict,
  permission). Moved to the dead-letter queue.
"""

from typing import Optional

import httpx

from validation.errors import (
    PermanentError,
    TransientError,
    classify_exception,
    classify_http_error,
)


class RemoteStoreError(Exception):
    """Base class for remote store failures."""


class RemoteConnectionError(RemoteStoreError, TransientError):
    """Remote store is unreachable."""


class RemoteTemporaryError(RemoteStoreError, TransientError):
    """Remote store reached but temporarily unable to apply the write."""


class RemoteRejection(RemoteStoreError, PermanentError):
    """Remote store reached but refused the write."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


def _response_detail(response: httpx.Response) -> str:
    """Extract a short error description from a PostgREST-style error body."""
    try:
        body = response.json()
    except ValueError:
        return response.text[:200]
    if isinstance(body, dict):
        return str(body.get('message') or body.get('error') or body)[:200]
    return str(body)[:200]


def translate_http_exception(exc: Exception) -> Exception:
    """
    Translate an httpx/builtin exception into the remote store hierarchy.

    Args:
        exc: Exception raised while talking to the remote store

    Returns:
        RemoteConnectionError, RemoteTemporaryError or RemoteRejection
        (already-translated exceptions are returned unchanged)
    """
    if isinstance(exc, RemoteStoreError):
        return exc

    if isinstance(exc, httpx.HTTPStatusError):
        response = exc.response
        detail = _response_detail(response)
        message = f"HTTP {response.status_code}: {detail}"
        if classify_http_error(response.status_code) is PermanentError:
            return RemoteRejection(message, status_code=response.status_code)
        return RemoteTemporaryError(message)

    if isinstance(exc, httpx.ConnectTimeout):
        return RemoteConnectionError(f"Connection to remote store timed out: {exc}")

    if isinstance(exc, httpx.TimeoutException):
        return RemoteTemporaryError(f"Request timed out: {exc}")

    if isinstance(exc, (httpx.ConnectError, httpx.NetworkError)):
        return RemoteConnectionError(f"Cannot reach remote store: {exc}")

    if isinstance(exc, TimeoutError):
        return RemoteTemporaryError(f"Request timed out: {exc}")

    if isinstance(exc, (ConnectionError, OSError)):
        return RemoteConnectionError(f"Cannot reach remote store: {exc}")

    if classify_exception(exc) is PermanentError:
        return RemoteRejection(f"{type(exc).__name__}: {exc}")

    return RemoteTemporaryError(f"{type(exc).__name__}: {exc}")


__all__ = [
    'RemoteStoreError',
    'RemoteConnectionError',
    'RemoteTemporaryError',
    'RemoteRejection',
    'translate_http_exception',
]
