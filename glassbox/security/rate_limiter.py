"""
glassbox/security/rate_limiter.py

Throttling and deferred-callback services handed to monitors through a MonitorContext.

Contains:
- RateWindow: Per-key call counter for one fixed window
- RateLimiter: Lazily-created windows keyed by operation, with expiry sweep
- TimerRegistry: Named one-shot/periodic asyncio timers, replaced by key
- MonitorContext: Bundle of the above, shared by every monitor owned by one registry
"""

import asyncio
import inspect
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable

from glassbox.utils.logger import get_logger

logger = get_logger(name=__name__)


@dataclass
class RateWindow:
    """Call count for one key within the window ending at reset_at (monotonic seconds)."""
    count: int
    reset_at: float


class RateLimiter:
    """
    Per-key fixed-window request counter.
    The first call for a key (or the first call after its window expired) opens a new window.
    """

    # Magic methods ________________________________________________________________________________________________________

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        """
        Initialize RateLimiter.
        Args:
            clock: Monotonic time source in seconds; injectable for tests.
        """
        self._clock = clock
        self._windows: dict[str, RateWindow] = {}

    def __len__(self) -> int:
        return len(self._windows)

    def __contains__(self, key: object) -> bool:
        return key in self._windows


    # Public methods _______________________________________________________________________________________________________

    def check(self, key: str, max_requests: int = 100, window_seconds: float = 60.0) -> bool:
        """
        Count one call for key and report whether it is allowed.
        Args:
            key: Operation key (e.g. "script_execution").
            max_requests: Calls allowed per window.
            window_seconds: Window length in seconds.
        Returns:
            True if the call is within the limit, False if it must be rejected.
        """
        now = self._clock()
        window = self._windows.get(key)

        if window is None or now > window.reset_at:
            self._windows[key] = RateWindow(count=1, reset_at=now + window_seconds)
            return True

        if window.count >= max_requests:
            logger.warning("🚦 Rate limit hit for key=%s (%d/%d)", key, window.count, max_requests)
            return False

        window.count += 1
        return True

    def cleanup(self) -> int:
        """
        Remove expired windows.
        Returns:
            Number of windows removed.
        """
        now = self._clock()
        expired = [key for key, window in self._windows.items() if now > window.reset_at]
        for key in expired:
            del self._windows[key]
        if expired:
            logger.debug("🧹 Swept %d expired rate windows", len(expired))
        return len(expired)

    def reset(self) -> None:
        """Forget every window."""
        self._windows.clear()


class TimerRegistry:
    """
    Named asyncio timers. Setting a timer under an existing key cancels the old one first.
    Callbacks may be plain functions or coroutine functions; errors are logged, not raised.
    """

    def __init__(self) -> None:
        self._tasks: dict[str, asyncio.Task] = {}

    def __len__(self) -> int:
        return len(self._tasks)

    def __contains__(self, key: object) -> bool:
        return key in self._tasks

    @staticmethod
    async def _invoke(key: str, callback: Callable[[], Any]) -> None:
        try:
            result = callback()
            if inspect.isawaitable(result):
                await result
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error("❌ Timer %s callback failed: %s", key, e, exc_info=True)

    async def _run_once(self, key: str, callback: Callable[[], Any], delay: float) -> None:
        try:
            await asyncio.sleep(delay)
            await self._invoke(key, callback)
        finally:
            if self._tasks.get(key) is asyncio.current_task():
                self._tasks.pop(key, None)

    async def _run_periodic(self, key: str, callback: Callable[[], Any], interval: float) -> None:
        try:
            while True:
                await asyncio.sleep(interval)
                await self._invoke(key, callback)
        finally:
            if self._tasks.get(key) is asyncio.current_task():
                self._tasks.pop(key, None)

    def set_timeout(self, key: str, callback: Callable[[], Any | Awaitable[Any]], delay: float) -> None:
        """
        Run callback once after delay seconds. Must be called from a running event loop.
        """
        self.clear_timeout(key)
        self._tasks[key] = asyncio.create_task(coro=self._run_once(key, callback, delay))

    def set_interval(self, key: str, callback: Callable[[], Any | Awaitable[Any]], interval: float) -> None:
        """
        Run callback every interval seconds until cleared. Must be called from a running event loop.
        """
        self.clear_timeout(key)
        self._tasks[key] = asyncio.create_task(coro=self._run_periodic(key, callback, interval))

    def clear_timeout(self, key: str) -> None:
        """Cancel the timer registered under key, if any."""
        task = self._tasks.pop(key, None)
        if task is not None and not task.done():
            task.cancel()

    def clear_all(self) -> None:
        """Cancel every timer."""
        for key in list(self._tasks):
            self.clear_timeout(key)


@dataclass
class MonitorContext:
    """
    Throttling and timer services passed explicitly to monitors.
    """
    rate_limiter: RateLimiter = field(default_factory=RateLimiter)
    timers: TimerRegistry = field(default_factory=TimerRegistry)
