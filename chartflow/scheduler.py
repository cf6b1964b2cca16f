"""
Refresh Scheduler

One asyncio task per polled chart. Each task sleeps for the chart's next delay,
then either skips the fire (chart hidden, outside its active window, host tab
hidden) or asks the coordinator for a silent forced fetch and recomputes the
delay from the chart's failure count. Tasks never share state: one chart's
backoff cannot move another chart's schedule.
"""

import asyncio
import logging
import time
from datetime import datetime
from typing import Awaitable, Callable, Dict, List, Optional, Protocol

from .coordinator import FetchCoordinator
from .models import BackoffStrategy, Chart, PollingConfig

logger = logging.getLogger("chartflow.scheduler")

DEFAULT_MAX_DELAY_FACTOR = 10.0


class VisibilityContext(Protocol):
    """Host-side visibility information"""

    def is_chart_visible(self, chart_id: str) -> bool:
        ...

    def is_tab_hidden(self) -> bool:
        ...


def compute_delay(polling: PollingConfig, consecutive_failures: int,
                  max_delay_factor: float = DEFAULT_MAX_DELAY_FACTOR,
                  min_interval_seconds: float = 0.0) -> float:
    """
    Delay before the next fetch, in seconds.

    The base is the chart interval raised to min_interval_seconds, so backoff
    and its cap scale from the interval actually used.

    fixed:       base
    linear:      base * (1 + failures * 0.5)
    exponential: base * 2^failures, capped at max_delay_factor * base
    """
    base = max(float(polling.interval_seconds), min_interval_seconds)
    failures = max(0, consecutive_failures)
    strategy = polling.backoff_strategy

    if strategy == BackoffStrategy.LINEAR:
        delay = base * (1 + failures * 0.5)
    elif strategy == BackoffStrategy.EXPONENTIAL:
        # Cap the exponent first so huge failure counts cannot overflow
        delay = base * (2 ** min(failures, 32))
        delay = min(delay, base * max_delay_factor)
    else:
        delay = base
    return delay


class RefreshScheduler:
    """Per-chart polling timers"""

    def __init__(self, coordinator: FetchCoordinator, visibility: VisibilityContext,
                 min_interval_seconds: float = 5.0,
                 max_delay_factor: float = DEFAULT_MAX_DELAY_FACTOR,
                 sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
                 clock=time.time,
                 now: Callable[[], datetime] = datetime.now):
        self.coordinator = coordinator
        self.visibility = visibility
        self.min_interval_seconds = min_interval_seconds
        self.max_delay_factor = max_delay_factor
        self._sleep = sleep
        self._clock = clock
        self._now = now
        self._tasks: Dict[str, asyncio.Task] = {}

    # ---------------- Public API ----------------

    def start(self, chart: Chart) -> bool:
        """
        Begin polling a chart.

        Returns:
            True if a timer is running for the chart after the call
        """
        if not chart.polling.enabled:
            logger.debug(f"chart {chart.id}: polling disabled")
            return False
        if not self.coordinator.is_live(chart.id):
            logger.debug(f"chart {chart.id}: not mounted, not scheduling")
            return False
        if not self.coordinator.should_poll(chart.id):
            logger.info(f"chart {chart.id}: paused or failing terminally, not scheduling")
            return False
        if self.is_scheduled(chart.id):
            return True

        task = asyncio.ensure_future(self._run(chart))
        self._tasks[chart.id] = task

        def _forget(done: asyncio.Task) -> None:
            if self._tasks.get(chart.id) is done:
                del self._tasks[chart.id]
            if not done.cancelled() and done.exception() is not None:
                logger.error(f"chart {chart.id}: refresh task crashed: {done.exception()}")

        task.add_done_callback(_forget)
        logger.debug(f"chart {chart.id}: polling every {chart.polling.interval_seconds}s "
                     f"({chart.polling.backoff_strategy.value} backoff)")
        return True

    def stop(self, chart_id: str) -> None:
        """Cancel a chart's timer. Idempotent; an in-flight fetch is left running."""
        task = self._tasks.pop(chart_id, None)
        if task is not None and not task.done():
            task.cancel()
            logger.debug(f"chart {chart_id}: polling stopped")
        self.coordinator.set_next_fetch(chart_id, None)

    def stop_all(self) -> None:
        for chart_id in list(self._tasks):
            self.stop(chart_id)

    def rearm(self, chart: Chart) -> bool:
        """Cancel the pending timer and start a fresh one from the base interval."""
        self.stop(chart.id)
        return self.start(chart)

    def is_scheduled(self, chart_id: str) -> bool:
        task = self._tasks.get(chart_id)
        return task is not None and not task.done()

    def scheduled_chart_ids(self) -> List[str]:
        return [cid for cid, task in self._tasks.items() if not task.done()]

    # ---------------- Timer loop ----------------

    def _clamp(self, delay: float) -> float:
        return max(self.min_interval_seconds, delay)

    def _skip_reason(self, chart: Chart) -> Optional[str]:
        polling = chart.polling
        if not self.visibility.is_chart_visible(chart.id):
            return "chart not visible"
        if polling.active_window is not None and not polling.active_window.allows(self._now()):
            return "outside active window"
        if polling.pause_on_tab_hidden and self.visibility.is_tab_hidden():
            return "tab hidden"
        return None

    async def _run(self, chart: Chart) -> None:
        delay = self._clamp(float(chart.polling.interval_seconds))

        while True:
            self.coordinator.set_next_fetch(chart.id, self._clock() + delay)
            await self._sleep(delay)

            if not self.coordinator.is_live(chart.id):
                return

            reason = self._skip_reason(chart)
            if reason:
                logger.debug(f"chart {chart.id}: skipping refresh ({reason})")
                delay = self._clamp(float(chart.polling.interval_seconds))
                continue

            outcome = await self.coordinator.request_fetch(chart, force=True, silent=True)
            if outcome.abandoned or not self.coordinator.is_live(chart.id):
                return

            if not self.coordinator.should_poll(chart.id):
                state = self.coordinator.get_state(chart.id)
                logger.info(f"chart {chart.id}: automatic refresh halted ({state.phase.value})")
                self.coordinator.set_next_fetch(chart.id, None)
                return

            failures = self.coordinator.consecutive_failures(chart.id)
            delay = compute_delay(chart.polling, failures, self.max_delay_factor, self.min_interval_seconds)
            if failures:
                logger.debug(f"chart {chart.id}: {failures} consecutive failures, next try in {delay:.1f}s")
