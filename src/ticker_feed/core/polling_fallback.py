"""
Polling Fallback - Fixed-Interval Snapshot Fetcher

Pulls ticker snapshots while the realtime transport is unavailable.

- arm(): start the interval timer and fetch immediately
- disarm(): cancel the timer and any in-flight fetch
- At most one fetch in flight; a tick that finds the previous fetch still
  pending is skipped
- A failed fetch publishes nothing; the failure count goes to on_failure so
  the owner decides between last-known-good and default data

arm()/disarm() are synchronous so they can be called from transport event
handlers without yielding to the loop in between.
"""

from typing import Awaitable, Callable, List, Optional
import asyncio
import inspect

from ticker_feed.config.constants import POLL_INTERVAL_SEC
from ticker_feed.core.models import Ticker
from ticker_feed.utils.logger import get_logger


logger = get_logger(__name__)


Fetch = Callable[[], Awaitable[List[Ticker]]]


class PollingFallback:

    def __init__(
        self,
        fetch: Fetch,
        on_tickers: Callable[[List[Ticker]], object],
        on_failure: Optional[Callable[[int, Exception], object]] = None,
        interval: float = POLL_INTERVAL_SEC,
    ):
        """
        Args:
            fetch: Coroutine function returning the current tickers
            on_tickers: Called with the tickers of every successful fetch
            on_failure: Called with (consecutive_failures, error) after a failed fetch
            interval: Seconds between ticks
        """
        if interval <= 0:
            raise ValueError(f"Poll interval must be positive, got {interval}")

        self._fetch = fetch
        self._on_tickers = on_tickers
        self._on_failure = on_failure
        self.interval = interval

        self._generation = 0
        self._timer_task: Optional[asyncio.Task] = None
        self._inflight: Optional[asyncio.Task] = None

        self._consecutive_failures = 0
        self._fetch_count = 0
        self._skipped_ticks = 0

    @property
    def armed(self) -> bool:
        return self._timer_task is not None and not self._timer_task.done()

    @property
    def in_flight(self) -> bool:
        return self._inflight is not None and not self._inflight.done()

    @property
    def consecutive_failures(self) -> int:
        return self._consecutive_failures

    @property
    def fetch_count(self) -> int:
        return self._fetch_count

    @property
    def skipped_ticks(self) -> int:
        return self._skipped_ticks

    def arm(self) -> None:
        """Start polling. No-op if already armed."""
        if self.armed:
            return
        self._generation += 1
        # each outage counts its own failures
        self._consecutive_failures = 0
        logger.info(f"Polling fallback armed (every {self.interval}s)")
        self._timer_task = asyncio.create_task(self._run(self._generation), name="poll_timer")

    def disarm(self) -> None:
        """Stop polling and abandon any in-flight fetch"""
        self._generation += 1
        was_armed = self.armed
        for task in (self._timer_task, self._inflight):
            if task is not None and not task.done() and task is not asyncio.current_task():
                task.cancel()
        self._timer_task = None
        self._inflight = None
        if was_armed:
            logger.info("Polling fallback disarmed")

    async def shutdown(self) -> None:
        """Disarm and wait for the cancelled tasks to finish unwinding"""
        tasks = [t for t in (self._timer_task, self._inflight) if t is not None]
        self.disarm()
        current = asyncio.current_task()
        tasks = [t for t in tasks if t is not current]
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    async def _run(self, generation: int) -> None:
        while generation == self._generation:
            if self.in_flight:
                self._skipped_ticks += 1
                logger.debug("Previous fetch still pending - skipping poll tick")
            else:
                self._inflight = asyncio.create_task(self._fetch_once(generation), name="poll_fetch")
            await asyncio.sleep(self.interval)

    async def _fetch_once(self, generation: int) -> None:
        self._fetch_count += 1
        try:
            tickers = await self._fetch()
        except Exception as e:
            if generation != self._generation:
                return
            self._consecutive_failures += 1
            logger.warning(
                f"Fallback fetch failed ({self._consecutive_failures} consecutive): {e}",
                extra={'consecutive_failures': self._consecutive_failures, 'error_type': type(e).__name__}
            )
            if self._on_failure is not None:
                await self._call(self._on_failure, self._consecutive_failures, e)
            return

        if generation != self._generation:
            return
        self._consecutive_failures = 0
        await self._call(self._on_tickers, tickers)

    @staticmethod
    async def _call(callback: Callable, *args) -> None:
        try:
            result = callback(*args)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            logger.error(f"Polling callback failed: {e}", exc_info=True)
