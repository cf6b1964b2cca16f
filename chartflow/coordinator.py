"""
Fetch Coordinator

Executes chart data requests and applies their outcome to the cache and the
chart's runtime state.

- At most one fetch is in flight per chart: overlapping requests are coalesced
  onto the same asyncio task and every caller receives the same outcome.
- Callers await the shared task through asyncio.shield, so a cancelled caller
  (e.g. a re-armed scheduler) never cancels the network call.
- Failures are captured into the chart's state and returned, never raised.
- A fetch whose chart was unmounted while it ran is abandoned: its result is
  dropped without touching any state.
- A fetch whose query was replaced while it ran (new filters, dataset or
  query configuration) is superseded and dropped the same way.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Protocol, Set

from .cache import ChartDataCache, fingerprint, is_fresh
from .errors import ChartNotMountedError, ErrorInfo, ErrorKind, classify_exception
from .models import Chart, ChartData
from .state import ChartRuntimeState, ChartStateMachine, Phase

logger = logging.getLogger("chartflow.coordinator")


class DataQueryService(Protocol):
    """Contract of the external data query service"""

    async def fetch_chart_data(self, chart_id: str, filters: Dict[str, Any],
                               force_refresh: bool, timeout_ms: int) -> ChartData:
        ...


@dataclass(frozen=True)
class FetchOutcome:
    chart_id: str
    success: bool
    data: Optional[ChartData] = None
    from_cache: bool = False
    error: Optional[ErrorInfo] = None
    abandoned: bool = False


StateListener = Callable[[ChartRuntimeState], None]


class FetchCoordinator:
    """Owns chart runtime states and every data fetch that mutates them"""

    def __init__(self, query_service: DataQueryService, cache: Optional[ChartDataCache] = None,
                 fetch_timeout_seconds: float = 30.0, clock=time.time):
        self.query_service = query_service
        self.cache = cache if cache is not None else ChartDataCache(clock=clock)
        self.fetch_timeout_seconds = fetch_timeout_seconds
        self._clock = clock
        self._machines: Dict[str, ChartStateMachine] = {}
        self._in_flight: Dict[str, "asyncio.Task[FetchOutcome]"] = {}
        # Bumped on every query change; a fetch only applies to the generation it started in
        self._generations: Dict[str, int] = {}
        self._manual: Set[str] = set()
        self._listeners: List[StateListener] = []

    # ---------------- Chart lifecycle ----------------

    def register(self, chart: Chart) -> ChartRuntimeState:
        """Create the runtime state for a newly visible/mounted chart (idempotent)."""
        machine = self._machines.get(chart.id)
        if machine is None:
            machine = ChartStateMachine(chart.id)
            self._machines[chart.id] = machine
            logger.debug(f"chart {chart.id} mounted")
        return machine.state.snapshot()

    def unregister(self, chart_id: str) -> None:
        """Destroy a chart's state. Any in-flight fetch for it becomes abandoned."""
        machine = self._machines.pop(chart_id, None)
        task = self._in_flight.pop(chart_id, None)
        self._generations.pop(chart_id, None)
        self._manual.discard(chart_id)
        if task is not None and not task.done():
            logger.debug(f"chart {chart_id} unmounted with a fetch in flight; result will be discarded")
        if machine is not None:
            logger.debug(f"chart {chart_id} unmounted")

    def reset_query(self, chart_id: str) -> None:
        """
        The chart now asks for different data. Cached entries and any fetch
        in flight belong to the old query: drop the former, supersede the
        latter, and restart the chart from idle.
        """
        machine = self._machine(chart_id)
        self._generations[chart_id] = self._generations.get(chart_id, 0) + 1
        self._manual.discard(chart_id)
        task = self._in_flight.pop(chart_id, None)
        if task is not None and not task.done():
            logger.debug(f"chart {chart_id}: query changed with a fetch in flight; result will be discarded")
        self.cache.invalidate(chart_id)
        machine.restart()
        self._notify(machine)

    def is_live(self, chart_id: str) -> bool:
        return chart_id in self._machines

    def chart_ids(self) -> List[str]:
        return list(self._machines)

    def get_state(self, chart_id: str) -> ChartRuntimeState:
        """Read-only snapshot of a chart's runtime state."""
        return self._machine(chart_id).state.snapshot()

    def add_listener(self, listener: StateListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove

    def _machine(self, chart_id: str) -> ChartStateMachine:
        machine = self._machines.get(chart_id)
        if machine is None:
            raise ChartNotMountedError(f"chart {chart_id} is not mounted")
        return machine

    def _notify(self, machine: ChartStateMachine) -> None:
        snapshot = machine.state.snapshot()
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception:
                logger.exception(f"state listener failed for chart {snapshot.chart_id}")

    # ---------------- Scheduler support ----------------

    def is_in_flight(self, chart_id: str) -> bool:
        task = self._in_flight.get(chart_id)
        return task is not None and not task.done()

    def should_poll(self, chart_id: str) -> bool:
        """False once a chart is paused or its last error is terminal."""
        machine = self._machines.get(chart_id)
        if machine is None:
            return False
        state = machine.state
        if state.phase == Phase.PAUSED:
            return False
        if state.phase == Phase.ERROR and state.last_error is not None and not state.last_error.retryable:
            return False
        return True

    def consecutive_failures(self, chart_id: str) -> int:
        return self._machine(chart_id).state.consecutive_failures

    def set_next_fetch(self, chart_id: str, when: Optional[float]) -> None:
        machine = self._machines.get(chart_id)
        if machine is not None:
            machine.state.next_scheduled_fetch_at = when

    def reset_failures(self, chart_id: str) -> None:
        self._machine(chart_id).reset_failures()

    def record_render_error(self, chart_id: str, error: Optional[ErrorInfo]) -> None:
        """Renderer resolution failures are tracked apart from fetch errors."""
        machine = self._machine(chart_id)
        machine.state.render_error = error
        self._notify(machine)

    # ---------------- Fetching ----------------

    def cached_data(self, chart: Chart) -> Optional[ChartData]:
        """Last-known-good data for the chart's current query, or for any earlier one."""
        entry = self.cache.get(chart.id, self.fingerprint_for(chart)) or self.cache.latest(chart.id)
        return entry.data if entry else None

    @staticmethod
    def fingerprint_for(chart: Chart) -> str:
        return fingerprint(chart.filters, chart.dataset_ref, chart.configuration)

    async def request_fetch(self, chart: Chart, force: bool = False, silent: bool = False,
                            manual: bool = False) -> FetchOutcome:
        """
        Fetch data for a chart, coalescing with any fetch already in flight.

        Args:
            chart: Chart to fetch (must be registered)
            force: Bypass a fresh cache entry
            silent: Background refresh; do not show a loading phase
            manual: User-requested; the failure streak ends whatever the outcome

        Returns:
            FetchOutcome shared by every coalesced caller
        """
        machine = self._machine(chart.id)

        existing = self._in_flight.get(chart.id)
        if existing is not None and not existing.done():
            if manual:
                # Read back by the in-flight fetch when it completes
                self._manual.add(chart.id)
            logger.debug(f"chart {chart.id}: coalescing into in-flight fetch")
            return await asyncio.shield(existing)

        fp = self.fingerprint_for(chart)
        if not force:
            entry = self.cache.get(chart.id, fp)
            if is_fresh(self._clock(), entry):
                if machine.phase == Phase.IDLE:
                    machine.transition(Phase.READY)
                    machine.state.last_success_at = entry.fetched_at
                    self._notify(machine)
                logger.debug(f"chart {chart.id}: served from cache")
                return FetchOutcome(chart_id=chart.id, success=True, data=entry.data, from_cache=True)

        if manual:
            self._manual.add(chart.id)
        machine.begin_fetch(silent)
        self._notify(machine)

        generation = self._generations.get(chart.id, 0)
        task = asyncio.ensure_future(self._execute(chart, machine, fp, force, generation))
        self._in_flight[chart.id] = task

        def _clear(done: "asyncio.Task[FetchOutcome]") -> None:
            if self._in_flight.get(chart.id) is done:
                del self._in_flight[chart.id]

        task.add_done_callback(_clear)
        return await asyncio.shield(task)

    async def _execute(self, chart: Chart, machine: ChartStateMachine, fp: str, force: bool,
                       generation: int) -> FetchOutcome:
        started = self._clock()
        timeout_ms = int(self.fetch_timeout_seconds * 1000)
        data: Optional[ChartData] = None
        error: Optional[ErrorInfo] = None

        try:
            data = await asyncio.wait_for(
                self.query_service.fetch_chart_data(
                    chart.id, dict(chart.filters), force_refresh=force, timeout_ms=timeout_ms
                ),
                timeout=self.fetch_timeout_seconds,
            )
        except asyncio.TimeoutError:
            error = ErrorInfo(ErrorKind.TIMEOUT, f"fetch exceeded {self.fetch_timeout_seconds}s")
        except Exception as e:
            error = classify_exception(e)

        finished = self._clock()
        duration_ms = (finished - started) * 1000

        # The chart may have been unmounted (or unmounted and remounted) meanwhile
        if self._machines.get(chart.id) is not machine:
            logger.debug(f"chart {chart.id}: discarding result of abandoned fetch")
            return FetchOutcome(chart_id=chart.id, success=error is None, data=data, error=error, abandoned=True)
        if self._generations.get(chart.id, 0) != generation:
            logger.debug(f"chart {chart.id}: discarding result fetched for a replaced query")
            return FetchOutcome(chart_id=chart.id, success=error is None, data=data, error=error, abandoned=True)

        manual = chart.id in self._manual
        self._manual.discard(chart.id)

        if error is None:
            self.cache.put(chart.id, fp, data, chart.cache_ttl_seconds, fetched_at=finished)
            machine.succeed(fetched_at=finished, duration_ms=duration_ms)
            logger.debug(f"chart {chart.id}: fetched {len(data.rows)} rows in {duration_ms:.0f}ms")
            self._notify(machine)
            return FetchOutcome(chart_id=chart.id, success=True, data=data)

        machine.fail(error, chart.polling.max_consecutive_failures, duration_ms=duration_ms, manual=manual)
        state = machine.state
        if state.phase == Phase.PAUSED:
            logger.error(f"chart {chart.id}: paused after {state.consecutive_failures} consecutive failures "
                         f"({error.kind.value}: {error.message})")
        else:
            logger.warning(f"chart {chart.id}: fetch failed ({error.kind.value}): {error.message}")
        self._notify(machine)
        return FetchOutcome(chart_id=chart.id, success=False, data=self.cached_data(chart), error=error)
