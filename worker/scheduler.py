"""
Drain scheduler.

Decides when the sync engine runs:
- offline -> online transition
- start-up, when online with pending operations
- pending count going from 0 to >0 while online
- optional periodic poll
- back-off retry after a drain that left failures, or after the circuit
  breaker's recovery timeout when a drain was refused by an open circuit

Requests arriving while a pass is running are coalesced into one follow-up
pass, so an operation queued mid-drain is picked up without a second
concurrent drain.
"""

import asyncio
from typing import Callable, List, Optional

from shared.log import create_logger
from worker.backoff import CONNECTIVITY_BASE, CONNECTIVITY_CAP, calculate_delay
from worker.engine import SKIP_BUSY, SKIP_CIRCUIT_OPEN, SKIP_OFFLINE, DrainResult, SyncEngine

log_trace, log_debug, log_info, log_warn, log_error = create_logger("Scheduler")


class SyncScheduler:
    """
    Runs SyncEngine.drain() in response to triggers.

    Args:
        engine: The sync engine
        monitor: ConnectivityMonitor (subscribe + is_online)
        poll_interval: Seconds between periodic drains (0 disables)
        retry_base: Base delay between failed drains
        retry_cap: Maximum delay between failed drains

    Usage:
        scheduler = SyncScheduler(engine, monitor)
        await scheduler.start()
        result = await scheduler.request_drain()
        ...
        await scheduler.stop()
    """

    def __init__(
        self,
        engine: SyncEngine,
        monitor,
        poll_interval: float = 0.0,
        retry_base: float = CONNECTIVITY_BASE,
        retry_cap: float = CONNECTIVITY_CAP,
    ):
        self.engine = engine
        self.monitor = monitor
        self.poll_interval = poll_interval
        self.retry_base = retry_base
        self.retry_cap = retry_cap

        self._task: Optional[asyncio.Task] = None
        self._current: Optional[asyncio.Future] = None
        self._followup: Optional[asyncio.Future] = None
        self._started = False

        self._retry_handle: Optional[asyncio.TimerHandle] = None
        self._failed_attempts = 0
        self._poll_task: Optional[asyncio.Task] = None
        self._unsubscribers: List[Callable[[], None]] = []
        self._last_count = engine.pending_count
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    @property
    def retry_scheduled(self) -> bool:
        return self._retry_handle is not None

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def start(self) -> None:
        """Subscribe to triggers and run the start-up drain if one is due."""
        if self._running:
            return
        self._running = True
        self._unsubscribers.append(self.monitor.subscribe(self._on_connectivity_change))
        self._unsubscribers.append(self.engine.store.subscribe(self._on_count_change))
        self._last_count = self.engine.refresh_pending_count()

        if self.poll_interval > 0:
            self._poll_task = asyncio.get_running_loop().create_task(self._poll_loop())

        if self.monitor.is_online and self._last_count > 0:
            log_info(f"{self._last_count} operation(s) pending from a previous session")
            self.request_drain('startup')

    async def stop(self) -> None:
        """Remove triggers and let the in-flight pass finish."""
        self._running = False
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers = []
        self._cancel_retry()

        if self._poll_task is not None:
            self._poll_task.cancel()
            try:
                await self._poll_task
            except asyncio.CancelledError:
                pass
            self._poll_task = None

        await self.wait_idle()

    # =========================================================================
    # Triggers
    # =========================================================================

    def _on_connectivity_change(self, online: bool) -> None:
        if online:
            self._failed_attempts = 0
            self._safe_request('reconnect')
        else:
            self._cancel_retry()

    def _on_count_change(self, count: int) -> None:
        previous, self._last_count = self._last_count, count
        if previous == 0 and count > 0 and self.monitor.is_online:
            self._safe_request('enqueue')

    def _safe_request(self, reason: str) -> None:
        # Store listeners may fire from synchronous code with no loop running
        try:
            asyncio.get_running_loop()
        except RuntimeError:
            log_trace(f"No event loop, drain trigger '{reason}' ignored")
            return
        if self._running:
            self.request_drain(reason)

    async def _poll_loop(self) -> None:
        while True:
            await asyncio.sleep(self.poll_interval)
            if self.monitor.is_online and self.engine.pending_count > 0:
                self.request_drain('poll')

    # =========================================================================
    # Drain requests
    # =========================================================================

    def request_drain(self, reason: str = 'request') -> asyncio.Future:
        """
        Ask for a drain pass.

        Returns:
            Future resolving to the DrainResult of the first pass that starts
            after this request (the running pass if it has not loaded the
            queue yet, otherwise a coalesced follow-up pass)
        """
        loop = asyncio.get_running_loop()

        if self._task is None or self._task.done():
            self._current = loop.create_future()
            self._started = False
            self._task = loop.create_task(self._run(reason))
            return self._current

        if not self._started:
            return self._current

        if self._followup is None:
            log_trace(f"Drain in progress, follow-up pass queued ({reason})")
            self._followup = loop.create_future()
        return self._followup

    async def wait_idle(self) -> None:
        """Wait until the current pass (and any follow-up) has finished."""
        while self._task is not None and not self._task.done():
            await asyncio.wait({self._task})

    async def _run(self, reason: str) -> None:
        while True:
            log_debug(f"Drain triggered ({reason})")
            self._cancel_retry()
            self._started = True
            result = await self._drain_once()

            waiter = self._current
            if self._followup is not None:
                self._current, self._followup = self._followup, None
                self._started = False
                reason = 'coalesced'
                if not waiter.done():
                    waiter.set_result(result)
                continue

            if not waiter.done():
                waiter.set_result(result)
            self._schedule_retry(result)
            return

    async def _drain_once(self) -> DrainResult:
        while True:
            try:
                result = await self.engine.drain()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                log_error(f"Drain failed unexpectedly: {type(e).__name__}: {e}")
                return DrainResult(error=str(e), pending=self.engine.pending_count)

            if result.skipped != SKIP_BUSY:
                return result
            # A drain started outside the scheduler is running; run after it
            await self.engine.wait_idle()

    # =========================================================================
    # Back-off retry
    # =========================================================================

    def _schedule_retry(self, result: DrainResult) -> None:
        if not self._running or not self.monitor.is_online:
            return
        if result.stopped_early == SKIP_OFFLINE:
            return

        delay: Optional[float] = None
        if result.skipped == SKIP_CIRCUIT_OPEN or result.stopped_early == SKIP_CIRCUIT_OPEN:
            delay = self.engine.breaker.seconds_until_retry() or self.engine.breaker.recovery_timeout
        elif result.failed or result.error:
            self._failed_attempts += 1
            delay = calculate_delay(self._failed_attempts - 1, self.retry_base, self.retry_cap)
            item_delay = self.engine.next_retry_delay()
            if item_delay is not None:
                delay = max(delay, item_delay)
        else:
            self._failed_attempts = 0
            if result.deferred:
                delay = self.engine.next_retry_delay()

        if delay is None:
            return

        log_debug(f"Next drain in {delay:.1f}s")
        loop = asyncio.get_running_loop()
        self._retry_handle = loop.call_later(delay, self._on_retry_timer)

    def _on_retry_timer(self) -> None:
        self._retry_handle = None
        if self._running and self.monitor.is_online:
            self.request_drain('retry')

    def _cancel_retry(self) -> None:
        if self._retry_handle is not None:
            self._retry_handle.cancel()
            self._retry_handle = None


__all__ = ['SyncScheduler']
