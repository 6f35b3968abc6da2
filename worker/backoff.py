"""
Exponential backoff with full jitter.

Used for two kinds of waits:
- per-operation retry delays (stored as next_retry_at in the queued record)
- delays between drain attempts while the remote store keeps failing

Full jitter spreads retries from many devices that regain connectivity at the
same moment (a truck arriving at the depot) instead of stampeding the store.
"""

import random
from typing import Optional, Tuple

# Standard retry parameters for transient remote failures
DEFAULT_BASE = 5.0
DEFAULT_CAP = 80.0
DEFAULT_MAX_RETRIES = 5

# Connectivity failures: longer ceiling, never exhaust (the operation is fine,
# the network is not)
CONNECTIVITY_BASE = 5.0
CONNECTIVITY_CAP = 300.0


def calculate_delay(
    retry_count: int,
    base: float = DEFAULT_BASE,
    cap: float = DEFAULT_CAP,
    jitter_seed: Optional[int] = None,
) -> float:
    """
    Calculate a full-jitter exponential backoff delay.

    delay = uniform(0, min(cap, base * 2 ** retry_count))

    Args:
        retry_count: Number of retries already made (0 for the first retry)
        base: Base delay in seconds
        cap: Maximum delay in seconds
        jitter_seed: Seed for deterministic jitter (tests); None = random

    Returns:
        Delay in seconds within [0, min(cap, base * 2 ** retry_count)]
    """
    # Bound the exponent so huge retry counts don't overflow
    exponent = min(max(retry_count, 0), 32)
    upper = min(cap, base * (2 ** exponent))

    rng = random.Random(jitter_seed) if jitter_seed is not None else random
    return rng.uniform(0, upper)


def get_retry_params(
    error: Exception,
    base: float = DEFAULT_BASE,
    cap: float = DEFAULT_CAP,
    max_retries: int = DEFAULT_MAX_RETRIES,
) -> Tuple[float, float, int]:
    """
    Get backoff parameters for an error type.

    Connectivity errors get a longer cap and no retry limit (max_retries=0),
    everything else uses the configured standard parameters.

    Args:
        error: The exception that triggered the retry
        base: Configured base delay for transient errors
        cap: Configured cap for transient errors
        max_retries: Configured retry budget for transient errors

    Returns:
        Tuple of (base, cap, max_retries); max_retries 0 means unlimited
    """
    from validation.errors import is_connectivity_error

    if is_connectivity_error(error):
        return CONNECTIVITY_BASE, max(cap, CONNECTIVITY_CAP), 0

    return base, cap, max_retries
