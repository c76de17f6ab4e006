"""
Cooperative timer scheduling for heartbeat loops and escalation timers.

Coordination logic never sleeps or busy-waits. It asks a Scheduler to run a
callback later and keeps the returned TimerHandle to cancel it. The same
coordinator code runs under:

- ThreadingScheduler: wall clock, threading.Timer per tick
- VirtualScheduler: test-controlled clock advanced explicitly

Usage:
    scheduler = VirtualScheduler()
    handle = scheduler.schedule_repeating(5000, refresh)
    scheduler.advance(15000)  # refresh runs three times
    handle.cancel()
"""

import _thread
import heapq
import itertools
import logging
import threading
import time
from abc import ABC, abstractmethod
from typing import Callable

logger = logging.getLogger(__name__)


class TimerHandle:
    """Cancellation handle for a scheduled callback.

    cancel() is idempotent; the callback never runs after cancel() returns
    (for VirtualScheduler) or after its current run completes (for
    ThreadingScheduler).
    """

    def __init__(self, on_cancel: Callable[[], None] | None = None) -> None:
        self._cancelled = False
        self._on_cancel = on_cancel
        self._lock = threading.Lock()

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> bool:
        """Cancel the timer.

        Returns:
            True if this call cancelled the timer, False if it was already cancelled
        """
        with self._lock:
            if self._cancelled:
                return False
            self._cancelled = True
        if self._on_cancel is not None:
            self._on_cancel()
        return True


def _run_callback(name: str, callback: Callable[[], None]) -> None:
    try:
        callback()
    except KeyboardInterrupt:
        _thread.interrupt_main()
        raise
    except Exception as e:
        logger.error(f"Error in scheduled callback '{name}': {e}", exc_info=True)


class Scheduler(ABC):
    """Clock plus timer factory."""

    @abstractmethod
    def now_ms(self) -> int:
        """Current time in epoch milliseconds."""

    @abstractmethod
    def schedule_once(self, delay_ms: int, callback: Callable[[], None]) -> TimerHandle:
        """Run callback once after delay_ms."""

    @abstractmethod
    def schedule_repeating(self, interval_ms: int, callback: Callable[[], None]) -> TimerHandle:
        """Run callback every interval_ms until the handle is cancelled."""


class ThreadingScheduler(Scheduler):
    """Wall-clock scheduler backed by daemon threading.Timer objects."""

    def now_ms(self) -> int:
        return int(time.time() * 1000)

    def schedule_once(self, delay_ms: int, callback: Callable[[], None]) -> TimerHandle:
        timer_ref: list[threading.Timer] = []
        handle = TimerHandle(on_cancel=lambda: timer_ref[0].cancel())

        def fire() -> None:
            if not handle.cancelled:
                _run_callback(getattr(callback, "__name__", "once"), callback)

        timer = threading.Timer(delay_ms / 1000.0, fire)
        timer.daemon = True
        timer_ref.append(timer)
        timer.start()
        return handle

    def schedule_repeating(self, interval_ms: int, callback: Callable[[], None]) -> TimerHandle:
        if interval_ms <= 0:
            raise ValueError(f"interval_ms must be positive, got {interval_ms}")

        stop_event = threading.Event()
        handle = TimerHandle(on_cancel=stop_event.set)
        name = getattr(callback, "__name__", "repeating")

        def loop() -> None:
            # Event.wait returns True once cancelled
            while not stop_event.wait(interval_ms / 1000.0):
                _run_callback(name, callback)

        thread = threading.Thread(target=loop, name=f"timer-{name}", daemon=True)
        thread.start()
        return handle


class VirtualScheduler(Scheduler):
    """Deterministic scheduler whose clock only moves on advance().

    Args:
        start_ms: Initial clock value in epoch milliseconds
    """

    def __init__(self, start_ms: int = 0) -> None:
        self._now = start_ms
        self._queue: list[tuple[int, int, TimerHandle, Callable[[], None], int | None]] = []
        self._seq = itertools.count()

    def now_ms(self) -> int:
        return self._now

    def set_time(self, now_ms: int) -> None:
        """Jump the clock without firing timers (simulates a suspended tab)."""
        self._now = now_ms

    def pending(self) -> int:
        """Number of live (uncancelled) timers."""
        return sum(1 for entry in self._queue if not entry[2].cancelled)

    def schedule_once(self, delay_ms: int, callback: Callable[[], None]) -> TimerHandle:
        handle = TimerHandle()
        heapq.heappush(self._queue, (self._now + delay_ms, next(self._seq), handle, callback, None))
        return handle

    def schedule_repeating(self, interval_ms: int, callback: Callable[[], None]) -> TimerHandle:
        if interval_ms <= 0:
            raise ValueError(f"interval_ms must be positive, got {interval_ms}")
        handle = TimerHandle()
        heapq.heappush(self._queue, (self._now + interval_ms, next(self._seq), handle, callback, interval_ms))
        return handle

    def advance(self, ms: int) -> None:
        """Move the clock forward, firing due callbacks in time order."""
        target = self._now + ms
        while self._queue and self._queue[0][0] <= target:
            due, _seq, handle, callback, interval = heapq.heappop(self._queue)
            if handle.cancelled:
                continue
            self._now = due
            _run_callback(getattr(callback, "__name__", "virtual"), callback)
            if interval is not None and not handle.cancelled:
                heapq.heappush(self._queue, (due + interval, next(self._seq), handle, callback, interval))
        self._now = target
