"""
Remote store reachability check.

Used by the connectivity monitor's active probing and by the CLI before a
manual drain. The probe calls the store's ping() coroutine, which for the
HTTP store hits the API root, so DNS, TLS and the API gateway are all
exercised.
"""

import asyncio
import time
from typing import Tuple

from shared.log import create_logger

log_trace, log_debug, log_info, log_warn, log_error = create_logger("Health")

__all__ = ["check_remote_health"]


async def check_remote_health(remote, timeout: float = 5.0) -> Tuple[bool, float]:
    """
    Check whether the remote store answers.

    Args:
        remote: Remote store exposing an async ping()
        timeout: Seconds before the probe counts as failed

    Returns:
        Tuple of (is_healthy, latency_ms):
        - (True, latency_ms) if the store responded
        - (False, 0.0) if it is unreachable, too slow or returned an error
    """
    try:
        start = time.perf_counter()
        await asyncio.wait_for(remote.ping(), timeout=timeout)
        latency_ms = (time.perf_counter() - start) * 1000.0
        log_debug(f"Health check passed (latency: {latency_ms:.1f}ms)")
        return (True, latency_ms)

    except asyncio.CancelledError:
        raise
    except Exception as exc:
        # Failures during outages are expected; caller logs at its own level
        log_debug(f"Health check failed: {type(exc).__name__}: {exc}")
        return (False, 0.0)
