"""
Connectivity monitor.

Holds the online/offline signal the rest of the system reads. The signal is
fed either by the platform's network status source through set_online(), or
by active probing of the remote store (start_probing).

Ordering guarantees:
- going online: is_online is already True when subscribers run, so a sync
  they trigger sees the new state
- going offline: is_online is False as soon as set_online(False) returns; the
  sync engine checks it before every item
"""

import asyncio
import inspect
from typing import Awaitable, Callable, List, Optional, Set, Tuple, Union

from shared.log import create_logger
from worker.notifier import INFO, WARNING, Notifier, emit, log_notifier

log_trace, log_debug, log_info, log_warn, log_error = create_logger("Connectivity")

ConnectivityCallback = Callable[[bool], Union[None, Awaitable[None]]]
HealthProbe = Callable[[], Awaitable[Tuple[bool, float]]]


class ConnectivityMonitor:
    """
    Online/offline signal with transition callbacks.

    Args:
        initial_online: Starting state (default: True)
        notifier: Receives "Back Online" / "Offline Mode" notices

    Usage:
        monitor = ConnectivityMonitor(initial_online=False)
        unsubscribe = monitor.subscribe(on_change)
        monitor.set_online(True)   # on_change(True) runs
    """

    def __init__(self, initial_online: bool = True, notifier: Optional[Notifier] = None):
        self._online = initial_online
        self._notifier = notifier or log_notifier
        self._callbacks: List[ConnectivityCallback] = []
        self._tasks: Set[asyncio.Task] = set()
        self._probe_task: Optional[asyncio.Task] = None

    @property
    def is_online(self) -> bool:
        return self._online

    # ------------------------------------------------------------------
    # Callbacks
    # ------------------------------------------------------------------

    def subscribe(self, callback: ConnectivityCallback) -> Callable[[], None]:
        """
        Register a callback fired with the new state on every transition.

        Coroutine functions are scheduled as tasks on the running loop.

        Returns:
            Function that removes the callback
        """
        self._callbacks.append(callback)

        def unsubscribe():
            if callback in self._callbacks:
                self._callbacks.remove(callback)

        return unsubscribe

    def set_online(self, online: bool) -> bool:
        """
        Update the signal.

        Returns:
            True if this was a transition, False if the state was unchanged
        """
        online = bool(online)
        if online == self._online:
            return False

        self._online = online
        if online:
            log_info("Connection restored")
            emit(self._notifier, "Back Online", "Syncing your offline changes...", INFO)
        else:
            log_warn("Connection lost, writes will be queued")
            emit(
                self._notifier,
                "Offline Mode",
                "Your changes will be saved and synced when back online.",
                WARNING,
            )

        for callback in list(self._callbacks):
            self._dispatch(callback, online)
        return True

    def _dispatch(self, callback: ConnectivityCallback, online: bool) -> None:
        try:
            result = callback(online)
        except Exception as e:
            log_error(f"Connectivity callback failed: {e}")
            return

        if inspect.isawaitable(result):
            try:
                loop = asyncio.get_running_loop()
            except RuntimeError:
                log_error("Async connectivity callback needs a running event loop")
                if inspect.iscoroutine(result):
                    result.close()
                return
            task = loop.create_task(self._run_callback(result))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)

    async def _run_callback(self, awaitable: Awaitable[None]) -> None:
        try:
            await awaitable
        except asyncio.CancelledError:
            raise
        except Exception as e:
            log_error(f"Connectivity callback failed: {e}")

    # ------------------------------------------------------------------
    # Active probing
    # ------------------------------------------------------------------

    def start_probing(self, probe: HealthProbe, interval: float = 30.0) -> None:
        """
        Start an asyncio task that feeds probe results into set_online().

        Args:
            probe: Coroutine function returning (is_healthy, latency_ms),
                e.g. functools.partial(check_remote_health, remote)
            interval: Seconds between probes
        """
        if self._probe_task is not None and not self._probe_task.done():
            return
        self._probe_task = asyncio.get_running_loop().create_task(
            self._probe_loop(probe, interval)
        )
        log_debug(f"Connectivity probing started (interval={interval:.0f}s)")

    async def _probe_loop(self, probe: HealthProbe, interval: float) -> None:
        while True:
            try:
                healthy, latency_ms = await probe()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                log_debug(f"Connectivity probe raised {type(e).__name__}: {e}")
                healthy, latency_ms = False, 0.0

            if healthy:
                log_trace(f"Probe ok ({latency_ms:.1f}ms)")
            self.set_online(healthy)
            await asyncio.sleep(interval)

    async def stop(self) -> None:
        """Stop probing and wait for in-flight async callbacks."""
        if self._probe_task is not None:
            self._probe_task.cancel()
            try:
                await self._probe_task
            except asyncio.CancelledError:
                pass
            self._probe_task = None

        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)


__all__ = ['ConnectivityMonitor', 'ConnectivityCallback', 'HealthProbe']
