"""
Circuit breaker for the remote store.

Stops a drain from hammering an unreachable store: after a run of consecutive
connectivity failures the circuit opens, the current drain stops attempting
further operations (they stay queued), and no new drain starts until the
recovery timeout has elapsed.

States:
- CLOSED: Normal operation, count consecutive failures
- OPEN: Block drains until recovery timeout
- HALF_OPEN: Allow one drain to test recovery
"""

import fcntl
import json
import os
import time
from enum import Enum
from typing import Callable, Optional

from shared.log import create_logger

log_trace, log_debug, log_info, log_warn, log_error = create_logger("CircuitBreaker")


class CircuitState(Enum):
    """Circuit breaker states."""
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreaker:
    """
    Circuit breaker state machine.

    Args:
        failure_threshold: Consecutive failures before opening (default: 3)
        recovery_timeout: Seconds before transitioning to HALF_OPEN (default: 60.0)
        success_threshold: Successes in HALF_OPEN to close (default: 1)
        state_file: Optional path to persist state across restarts
        clock: Time source, injectable for tests

    Usage:
        breaker = CircuitBreaker()

        if breaker.can_execute():
            try:
                await remote.insert("farmers", record)
                breaker.record_success()
            except RemoteConnectionError:
                breaker.record_failure()
    """

    def __init__(
        self,
        failure_threshold: int = 3,
        recovery_timeout: float = 60.0,
        success_threshold: int = 1,
        state_file: Optional[str] = None,
        clock: Callable[[], float] = time.time,
    ):
        self._failure_threshold = failure_threshold
        self._recovery_timeout = recovery_timeout
        self._success_threshold = success_threshold
        self._state_file = state_file
        self._clock = clock

        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._success_count = 0
        self._opened_at: float | None = None

        if self._state_file:
            self._load_state()

    @property
    def recovery_timeout(self) -> float:
        return self._recovery_timeout

    @property
    def failure_count(self) -> int:
        return self._failure_count

    def _load_state(self) -> None:
        """Load circuit breaker state from disk."""
        if self._state_file is None or not os.path.exists(self._state_file):
            return

        try:
            with open(self._state_file, 'r') as f:
                data = json.load(f)

            required_keys = ['state', 'failure_count', 'success_count', 'opened_at']
            for key in required_keys:
                if key not in data:
                    raise KeyError(f"Missing required key: {key}")

            self._state = CircuitState(data['state'])
            self._failure_count = data['failure_count']
            self._success_count = data['success_count']
            self._opened_at = data['opened_at']

            log_debug(f"Circuit breaker state loaded: {self._state.value}")

        except (json.JSONDecodeError, TypeError, KeyError, ValueError) as e:
            log_warn(f"Circuit breaker state corrupted, using defaults: {e}")
            self._state = CircuitState.CLOSED
            self._failure_count = 0
            self._success_count = 0
            self._opened_at = None

    def _save_state(self) -> None:
        """Save circuit breaker state with an exclusive lock and atomic replace."""
        if self._state_file is None:
            return

        state_data = {
            'state': self._state.value,
            'failure_count': self._failure_count,
            'success_count': self._success_count,
            'opened_at': self._opened_at,
        }

        lock_path = self._state_file + '.lock'
        tmp_path = self._state_file + '.tmp'
        try:
            with open(lock_path, 'w') as lock_file:
                try:
                    fcntl.flock(lock_file.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
                except BlockingIOError:
                    log_trace("Circuit breaker state save skipped (locked)")
                    return
                try:
                    with open(tmp_path, 'w') as f:
                        json.dump(state_data, f, indent=2)
                    os.replace(tmp_path, self._state_file)
                finally:
                    fcntl.flock(lock_file.fileno(), fcntl.LOCK_UN)
        except OSError as e:
            log_debug(f"Failed to save circuit breaker state: {e}")

    @property
    def state(self) -> CircuitState:
        """Current circuit state (may transition to HALF_OPEN if timeout elapsed)."""
        if self._state == CircuitState.OPEN and self._opened_at is not None:
            if self._clock() - self._opened_at >= self._recovery_timeout:
                self._state = CircuitState.HALF_OPEN
                self._success_count = 0
                log_info(f"Circuit breaker entering HALF_OPEN state after {self._recovery_timeout}s timeout")
                self._save_state()
        return self._state

    def can_execute(self) -> bool:
        """True if circuit is CLOSED or HALF_OPEN, False if OPEN."""
        return self.state != CircuitState.OPEN

    def seconds_until_retry(self) -> float:
        """Seconds left until an OPEN circuit allows a test drain (0 when not OPEN)."""
        if self.state != CircuitState.OPEN or self._opened_at is None:
            return 0.0
        return max(0.0, self._opened_at + self._recovery_timeout - self._clock())

    def record_success(self) -> None:
        """
        Record a successful remote call.

        In CLOSED state: resets failure count.
        In HALF_OPEN state: increments success count, closes if threshold reached.
        """
        if self._state == CircuitState.HALF_OPEN:
            self._success_count += 1
            if self._success_count >= self._success_threshold:
                self._close()
            else:
                self._save_state()
        elif self._failure_count:
            self._failure_count = 0
            self._save_state()

    def record_failure(self) -> None:
        """
        Record a failed remote call.

        In CLOSED state: increments failure count, opens if threshold reached.
        In HALF_OPEN state: immediately reopens the circuit.
        """
        if self._state == CircuitState.HALF_OPEN:
            self._open()
        else:
            self._failure_count += 1
            if self._failure_count >= self._failure_threshold:
                self._open()
            else:
                self._save_state()

    def reset(self) -> None:
        """Force reset to CLOSED state (manual recovery)."""
        log_info("Circuit breaker manually reset to CLOSED")
        self._close()

    def _open(self) -> None:
        self._state = CircuitState.OPEN
        self._opened_at = self._clock()
        self._failure_count = 0
        self._success_count = 0
        log_warn(f"Circuit breaker OPENED, pausing drains for {self._recovery_timeout}s")
        self._save_state()

    def _close(self) -> None:
        self._state = CircuitState.CLOSED
        self._opened_at = None
        self._failure_count = 0
        self._success_count = 0
        log_info("Circuit breaker CLOSED after successful recovery")
        self._save_state()


__all__ = ['CircuitBreaker', 'CircuitState']
