"""
Centralized error classification for retry/DLQ routing.

Provides consistent classification of errors to determine whether they should
be retried (transient) or moved to the dead-letter queue (permanent). The sync
engine and the remote store client share this logic.
"""

import logging
from typing import Type


class TransientError(Exception):
    """Retry-able errors (network, timeout, 429, 5xx)"""
    pass


class PermanentError(Exception):
    """Non-retry-able errors (4xx except 429, validation)"""
    pass


# HTTP status codes that indicate transient (retry-able) errors
# 408: Request timeout
# 429: Rate limited - retry after backoff
# 5xx: Server errors - usually temporary
TRANSIENT_CODES = frozenset({408, 429, 500, 502, 503, 504})

# HTTP status codes that indicate the remote store refused the write
# 400: Bad request - payload does not match the collection schema
# 401: Unauthorized - credentials issue
# 403: Forbidden - row level security / permission issue
# 404: Not found - collection doesn't exist
# 405: Method not allowed - API misuse
# 409: Conflict - duplicate primary key / constraint violation
# 410: Gone
# 422: Unprocessable entity - validation failure
PERMANENT_CODES = frozenset({400, 401, 403, 404, 405, 409, 410, 422})

# Module logger
logger = logging.getLogger(__name__)


def classify_http_error(status_code: int) -> Type[Exception]:
    """
    Classify an HTTP status code as transient or permanent error.

    Args:
        status_code: HTTP response status code

    Returns:
        TransientError class for retry-able errors
        PermanentError class for non-retry-able errors
    """
    if status_code in TRANSIENT_CODES:
        logger.debug(f"HTTP {status_code} classified as transient")
        return TransientError

    if status_code in PERMANENT_CODES:
        logger.debug(f"HTTP {status_code} classified as permanent")
        return PermanentError

    if 400 <= status_code < 500:
        # Unknown 4xx = permanent (client error, unlikely to change)
        logger.debug(f"HTTP {status_code} (unknown 4xx) classified as permanent")
        return PermanentError

    if status_code >= 500:
        # Unknown 5xx = transient (server error, may recover)
        logger.debug(f"HTTP {status_code} (unknown 5xx) classified as transient")
        return TransientError

    # 1xx/2xx/3xx shouldn't reach here
    logger.debug(f"HTTP {status_code} (unexpected) classified as transient")
    return TransientError


def classify_exception(exc: Exception) -> Type[Exception]:
    """
    Classify an exception as transient or permanent error.

    Handles various exception types:
    - Already classified: Return same type
    - HTTP responses (httpx.HTTPStatusError and friends): Extract status code
    - Network errors: Transient (ConnectionError, TimeoutError, OSError)
    - Validation errors: Permanent (ValueError, TypeError, KeyError, AttributeError)
    - Unknown: Transient (safer, allows retry)

    Args:
        exc: The exception to classify

    Returns:
        TransientError class for retry-able errors
        PermanentError class for non-retry-able errors
    """
    if isinstance(exc, TransientError):
        return TransientError

    if isinstance(exc, PermanentError):
        return PermanentError

    response = getattr(exc, 'response', None)
    if response is not None:
        status_code = getattr(response, 'status_code', None)
        if status_code is not None:
            logger.debug(f"Exception has HTTP response with status {status_code}")
            return classify_http_error(status_code)

    # Network errors are transient (connectivity, timeout)
    if isinstance(exc, (ConnectionError, TimeoutError, OSError)):
        logger.debug(f"Network error classified as transient: {type(exc).__name__}")
        return TransientError

    # Validation/data errors are permanent (won't fix with retry)
    if isinstance(exc, (ValueError, TypeError, KeyError, AttributeError)):
        logger.debug(f"Validation error classified as permanent: {type(exc).__name__}")
        return PermanentError

    logger.debug(f"Unknown exception classified as transient: {type(exc).__name__}")
    return TransientError


def is_connectivity_error(exc: Exception) -> bool:
    """
    Check whether an exception means the remote store was not reached at all.

    Connectivity failures say nothing about the operation itself, so they do
    not count against an operation's retry budget.
    """
    from remote.exceptions import RemoteConnectionError

    if isinstance(exc, RemoteConnectionError):
        return True
    return isinstance(exc, (ConnectionError, OSError)) and not isinstance(exc, TimeoutError)
