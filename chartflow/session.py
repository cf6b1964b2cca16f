"""
Dashboard Session

The surface the dashboard/UI layer talks to. A session owns one renderer
registry, one data cache, the fetch coordinator, the refresh scheduler and the
interaction normalizer, and wires them together per chart:

    mount -> resolve renderer -> set_visible(True) -> initial load + polling
    render_chart -> renderer invoked with the latest cached data
    handle_interaction -> adapter -> subscribers

UI code only reads state, renders and calls manual_refresh; all retry and
backoff logic stays in the scheduler/coordinator pair.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Set

from .cache import ChartDataCache
from .config import EngineConfig
from .coordinator import DataQueryService, FetchCoordinator, FetchOutcome
from .errors import ChartNotMountedError, ErrorInfo, ErrorKind, RendererNotFoundError
from .interactions import InteractionEvent, InteractionHandler, InteractionNormalizer
from .models import Chart, Dimensions
from .renderers.base import RenderCallbacks, RendererDescriptor
from .renderers.registry import RendererRegistry
from .scheduler import RefreshScheduler
from .schemas import DashboardDefinition, build_chart
from .state import ChartRuntimeState, Phase

logger = logging.getLogger("chartflow.session")


class VisibilityState:
    """In-memory visibility context fed by the host page"""

    def __init__(self):
        self._visible: Dict[str, bool] = {}
        self.tab_hidden = False

    def set_visible(self, chart_id: str, visible: bool) -> None:
        self._visible[chart_id] = visible

    def forget(self, chart_id: str) -> None:
        self._visible.pop(chart_id, None)

    def is_chart_visible(self, chart_id: str) -> bool:
        return self._visible.get(chart_id, False)

    def is_tab_hidden(self) -> bool:
        return self.tab_hidden


@dataclass(frozen=True)
class RenderOutcome:
    """What the UI needs to draw one chart"""
    chart_id: str
    state: ChartRuntimeState
    renderer_key: Optional[str] = None
    spec: Optional[Dict[str, Any]] = None
    stale: bool = False
    error: Optional[ErrorInfo] = None

    @property
    def show_retry(self) -> bool:
        return self.state.phase in (Phase.ERROR, Phase.PAUSED) or self.error is not None


class DashboardSession:
    """One dashboard's rendering resolution and data freshness lifecycle"""

    def __init__(self, query_service: DataQueryService, config: Optional[EngineConfig] = None,
                 registry: Optional[RendererRegistry] = None,
                 visibility: Optional[VisibilityState] = None,
                 clock=time.time, sleep=asyncio.sleep):
        self.config = config or EngineConfig()
        self.registry = registry or RendererRegistry(libraries=self.config.renderers)
        self.visibility = visibility or VisibilityState()
        self.cache = ChartDataCache(clock=clock)
        self.coordinator = FetchCoordinator(
            query_service, self.cache,
            fetch_timeout_seconds=self.config.fetch_timeout_seconds,
            clock=clock,
        )
        self.scheduler = RefreshScheduler(
            self.coordinator, self.visibility,
            min_interval_seconds=self.config.min_interval_seconds,
            max_delay_factor=self.config.max_delay_factor,
            sleep=sleep,
            clock=clock,
        )
        self.interactions = InteractionNormalizer(clock=clock)
        self._charts: Dict[str, Chart] = {}
        self._renderers: Dict[str, RendererDescriptor] = {}
        self._loads: Set[asyncio.Task] = set()
        self._clock = clock

    # ---------------- Lifecycle ----------------

    def init(self) -> "DashboardSession":
        if not self.registry.initialized:
            self.registry.init()
        return self

    def dispose(self) -> None:
        """Stop every timer and drop all charts; in-flight fetches are abandoned."""
        self.scheduler.stop_all()
        for task in list(self._loads):
            task.cancel()
        for chart_id in list(self._charts):
            self.unmount(chart_id)
        self.interactions.clear()
        self.cache.clear()
        self.registry.dispose()
        logger.info("dashboard session disposed")

    async def __aenter__(self) -> "DashboardSession":
        return self.init()

    async def __aexit__(self, exc_type, exc, tb) -> None:
        self.dispose()

    # ---------------- Charts ----------------

    def mount(self, chart: Chart) -> ChartRuntimeState:
        """Add a chart to the session (hidden until set_visible)."""
        if chart.id in self._charts:
            return self.update_chart(chart)
        self._charts[chart.id] = chart
        self.coordinator.register(chart)
        self._resolve_renderer(chart)
        return self.coordinator.get_state(chart.id)

    def mount_dashboard(self, dashboard: DashboardDefinition) -> List[Chart]:
        charts = [
            build_chart(definition, dashboard.filters, dashboard.auto_refresh,
                        default_cache_ttl=self.config.default_cache_ttl_seconds)
            for definition in dashboard.charts
        ]
        for chart in charts:
            self.mount(chart)
        logger.info(f"mounted dashboard {dashboard.id} with {len(charts)} charts")
        return charts

    def unmount(self, chart_id: str) -> None:
        """Remove a chart: stop its timer, destroy its state, drop its subscribers."""
        self.scheduler.stop(chart_id)
        self.coordinator.unregister(chart_id)
        self.interactions.clear(chart_id)
        self.visibility.forget(chart_id)
        self._renderers.pop(chart_id, None)
        if self._charts.pop(chart_id, None) is not None:
            self.cache.invalidate(chart_id)

    def update_chart(self, chart: Chart) -> ChartRuntimeState:
        """
        Replace a mounted chart's definition (configuration, filters, polling).

        When the query changes the chart restarts from idle: cached data and
        any fetch in flight for the old query are dropped, and a visible chart
        starts loading the new one in the background.
        """
        previous = self._require(chart.id)
        self._charts[chart.id] = chart

        query_changed = FetchCoordinator.fingerprint_for(previous) != FetchCoordinator.fingerprint_for(chart)
        if query_changed:
            self.coordinator.reset_query(chart.id)
        if (previous.library, previous.chart_type) != (chart.library, chart.chart_type):
            self._resolve_renderer(chart)
        # Timers hold the chart they were started with
        if self.scheduler.is_scheduled(chart.id):
            self.scheduler.rearm(chart)
        elif self.visibility.is_chart_visible(chart.id):
            self.scheduler.start(chart)
        if query_changed and self.visibility.is_chart_visible(chart.id):
            self._load_in_background(chart)
        return self.coordinator.get_state(chart.id)

    def _load_in_background(self, chart: Chart) -> None:
        task = asyncio.ensure_future(self.coordinator.request_fetch(chart, force=True, silent=False))
        self._loads.add(task)

        def _done(done: asyncio.Task) -> None:
            self._loads.discard(done)
            if not done.cancelled() and done.exception() is not None:
                logger.error(f"chart {chart.id}: background load crashed: {done.exception()}")

        task.add_done_callback(_done)

    def charts(self) -> List[Chart]:
        return list(self._charts.values())

    def get_chart(self, chart_id: str) -> Chart:
        return self._require(chart_id)

    def _require(self, chart_id: str) -> Chart:
        chart = self._charts.get(chart_id)
        if chart is None:
            raise ChartNotMountedError(f"chart {chart_id} is not mounted")
        return chart

    def _resolve_renderer(self, chart: Chart) -> Optional[RendererDescriptor]:
        try:
            descriptor = self.registry.resolve(chart.library, chart.chart_type)
        except RendererNotFoundError as e:
            logger.error(f"chart {chart.id}: {e}")
            self._renderers.pop(chart.id, None)
            self.coordinator.record_render_error(chart.id, e.to_info())
            return None
        self._renderers[chart.id] = descriptor
        self.coordinator.record_render_error(chart.id, None)
        return descriptor

    # ---------------- Visibility & refresh ----------------

    async def set_visible(self, chart_id: str, visible: bool) -> Optional[FetchOutcome]:
        """
        Start or stop a chart's data lifecycle.

        Becoming visible loads data (from cache when fresh) and starts polling;
        becoming hidden stops polling. A paused chart stays paused. Returns the
        load outcome when one ran.
        """
        chart = self._require(chart_id)
        self.visibility.set_visible(chart_id, visible)

        if not visible:
            self.scheduler.stop(chart_id)
            return None

        if self.coordinator.get_state(chart_id).is_paused:
            # Paused charts resume through manual_refresh only
            return None

        outcome = await self.coordinator.request_fetch(chart, force=False, silent=False)
        # The chart may have been hidden or unmounted while loading
        if self.coordinator.is_live(chart_id) and self.visibility.is_chart_visible(chart_id):
            self.scheduler.start(self._charts.get(chart_id, chart))
        return outcome

    async def show_all(self) -> Dict[str, Optional[FetchOutcome]]:
        """Make every mounted chart visible; failures stay per chart."""
        ids = list(self._charts)
        outcomes = await asyncio.gather(*(self.set_visible(cid, True) for cid in ids))
        return dict(zip(ids, outcomes))

    def set_tab_hidden(self, hidden: bool) -> None:
        self.visibility.tab_hidden = hidden
        logger.debug(f"host tab {'hidden' if hidden else 'visible'}")

    def get_chart_state(self, chart_id: str) -> ChartRuntimeState:
        return self.coordinator.get_state(chart_id)

    async def manual_refresh(self, chart_id: str) -> FetchOutcome:
        """
        User-requested refresh: ends the failure streak whatever the outcome,
        fetches bypassing the cache and re-arms automatic polling if the chart
        still qualifies.
        """
        chart = self._require(chart_id)
        self.coordinator.reset_failures(chart_id)
        # Cancel the pending timer only; an in-flight fetch is coalesced below
        self.scheduler.stop(chart_id)

        outcome = await self.coordinator.request_fetch(chart, force=True, silent=False, manual=True)

        if self.coordinator.is_live(chart_id) and self.visibility.is_chart_visible(chart_id):
            self.scheduler.start(self._charts.get(chart_id, chart))
        return outcome

    async def refresh_all(self, force: bool = True) -> Dict[str, FetchOutcome]:
        """Dashboard-wide refresh of every visible chart, concurrently."""
        charts = [c for c in self._charts.values() if self.visibility.is_chart_visible(c.id)]
        outcomes = await asyncio.gather(
            *(self.coordinator.request_fetch(c, force=force, silent=False) for c in charts)
        )
        for chart in charts:
            if self.coordinator.is_live(chart.id) and self.visibility.is_chart_visible(chart.id):
                self.scheduler.start(self._charts.get(chart.id, chart))
        failed = [o.chart_id for o in outcomes if not o.success]
        if failed:
            logger.warning(f"dashboard refresh: {len(failed)}/{len(charts)} charts failed: {', '.join(failed)}")
        return {o.chart_id: o for o in outcomes}

    # ---------------- Rendering ----------------

    def render_chart(self, chart_id: str, dimensions: Optional[Dimensions] = None) -> RenderOutcome:
        """
        Invoke the chart's renderer with its latest cached data.

        Charts in error/paused keep showing last-known-good data; stale is set
        when that data is not fresh. A missing renderer is reported as the
        outcome's error, separately from data fetch errors.
        """
        chart = self._require(chart_id)
        state = self.coordinator.get_state(chart_id)
        descriptor = self._renderers.get(chart_id) or self._resolve_renderer(chart)
        if descriptor is None:
            state = self.coordinator.get_state(chart_id)
            return RenderOutcome(chart_id=chart_id, state=state, error=state.render_error)

        entry = self.cache.get(chart_id, FetchCoordinator.fingerprint_for(chart)) or self.cache.latest(chart_id)
        if entry is None:
            return RenderOutcome(chart_id=chart_id, state=state, renderer_key=descriptor.key)

        render_errors: List[Exception] = []
        callbacks = RenderCallbacks(
            on_interaction=lambda payload: self.handle_interaction(chart_id, payload),
            on_error=render_errors.append,
        )
        # Renderers are shared across chart types of a library; tell them which one
        configuration = dict(chart.configuration)
        configuration.setdefault("chart_type", chart.chart_type)

        spec = descriptor.renderer.safe_render(entry.data, configuration, dimensions or Dimensions(), callbacks)
        error = None
        if render_errors:
            error = ErrorInfo(kind=ErrorKind.CONFIGURATION, message=f"render failed: {render_errors[0]}")
        stale = (self._clock() - entry.fetched_at) >= entry.ttl_seconds
        return RenderOutcome(
            chart_id=chart_id,
            state=state,
            renderer_key=descriptor.key,
            spec=spec,
            stale=stale,
            error=error,
        )

    # ---------------- Interactions ----------------

    def on_interaction(self, chart_id: str, handler: InteractionHandler) -> Callable[[], None]:
        self._require(chart_id)
        return self.interactions.subscribe(chart_id, handler)

    def handle_interaction(self, chart_id: str, payload: Dict[str, Any]) -> Optional[InteractionEvent]:
        """Entry point for renderer-native interaction payloads coming from the page."""
        descriptor = self._renderers.get(chart_id)
        if descriptor is None:
            logger.debug(f"chart {chart_id}: interaction ignored, no renderer resolved")
            return None
        return self.interactions.dispatch(chart_id, descriptor, payload)
