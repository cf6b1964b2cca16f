"""Unit tests for RefreshScheduler and backoff computation

The scheduler's sleep is replaced by SleepRecorder (conftest.py): every timer
fires immediately and the requested delays are recorded.
"""
import asyncio
from datetime import datetime, time

import pytest
from conftest import FakeQueryService, SleepRecorder, drain

from chartflow.cache import ChartDataCache
from chartflow.coordinator import FetchCoordinator
from chartflow.errors import NetworkError, NotFoundError, ServerError
from chartflow.models import ActiveWindow, BackoffStrategy, PollingConfig
from chartflow.scheduler import RefreshScheduler, compute_delay
from chartflow.session import VisibilityState
from chartflow.state import Phase


def polling(**kwargs):
    kwargs.setdefault("enabled", True)
    kwargs.setdefault("interval_seconds", 10)
    return PollingConfig(**kwargs)


class FailingFor(FakeQueryService):
    """Fails every fetch for the given chart ids, succeeds for the rest"""

    def __init__(self, failing):
        super().__init__()
        self.failing = set(failing)

    async def fetch_chart_data(self, chart_id, filters, force_refresh, timeout_ms):
        if chart_id in self.failing:
            self.calls.append({"chart_id": chart_id})
            raise NetworkError("unreachable")
        return await super().fetch_chart_data(chart_id, filters, force_refresh, timeout_ms)


def build(service, clock, sleeper, now=None, min_interval=0.0):
    coordinator = FetchCoordinator(service, ChartDataCache(clock=clock), clock=clock)
    visibility = VisibilityState()
    kwargs = {"now": now} if now is not None else {}
    scheduler = RefreshScheduler(coordinator, visibility, min_interval_seconds=min_interval,
                                 sleep=sleeper, clock=clock, **kwargs)
    return coordinator, visibility, scheduler


class TestComputeDelay:
    """Backoff strategies"""

    def test_exponential_doubles(self):
        cfg = polling(backoff_strategy=BackoffStrategy.EXPONENTIAL)

        assert [compute_delay(cfg, f) for f in range(4)] == [10, 20, 40, 80]

    def test_exponential_is_capped(self):
        cfg = polling(backoff_strategy=BackoffStrategy.EXPONENTIAL)

        assert compute_delay(cfg, 4) == 100
        assert compute_delay(cfg, 1000) == 100
        assert compute_delay(cfg, 4, max_delay_factor=3) == 30

    def test_linear(self):
        cfg = polling(backoff_strategy=BackoffStrategy.LINEAR)

        assert [compute_delay(cfg, f) for f in range(3)] == [10, 15, 20]

    def test_fixed(self):
        cfg = polling(backoff_strategy=BackoffStrategy.FIXED)

        assert compute_delay(cfg, 0) == 10
        assert compute_delay(cfg, 5) == 10

    def test_backoff_grows_from_clamped_interval(self):
        cfg = polling(interval_seconds=1, backoff_strategy=BackoffStrategy.EXPONENTIAL)

        assert [compute_delay(cfg, f, min_interval_seconds=5) for f in range(3)] == [5, 10, 20]
        assert compute_delay(cfg, 10, min_interval_seconds=5) == 50

    def test_negative_failures_treated_as_zero(self):
        assert compute_delay(polling(), -1) == 10


class TestStartStop:
    """start / stop / rearm bookkeeping"""

    def test_disabled_polling_is_not_scheduled(self, service, clock, make_chart):
        coordinator, _, scheduler = build(service, clock, SleepRecorder())
        chart = make_chart(polling=PollingConfig(enabled=False))
        coordinator.register(chart)

        async def scenario():
            return scheduler.start(chart)

        assert asyncio.run(scenario()) is False
        assert not scheduler.is_scheduled("c1")

    def test_unmounted_chart_is_not_scheduled(self, service, clock, make_chart):
        _, _, scheduler = build(service, clock, SleepRecorder())

        async def scenario():
            return scheduler.start(make_chart())

        assert asyncio.run(scenario()) is False

    def test_stop_is_idempotent(self, service, clock, make_chart):
        coordinator, _, scheduler = build(service, clock, SleepRecorder(limit=0))
        chart = make_chart()
        coordinator.register(chart)

        async def scenario():
            assert scheduler.start(chart)
            assert scheduler.start(chart)  # already running
            await drain()
            assert coordinator.get_state("c1").next_scheduled_fetch_at == clock.now + 10
            scheduler.stop("c1")
            scheduler.stop("c1")
            await drain()

        asyncio.run(scenario())

        assert not scheduler.is_scheduled("c1")
        assert scheduler.scheduled_chart_ids() == []
        assert coordinator.get_state("c1").next_scheduled_fetch_at is None

    def test_min_interval_clamps_delay(self, service, clock, make_chart):
        sleeper = SleepRecorder(limit=0)
        coordinator, _, scheduler = build(service, clock, sleeper, min_interval=5.0)
        chart = make_chart(polling=polling(interval_seconds=1))
        coordinator.register(chart)

        async def scenario():
            scheduler.start(chart)
            await drain()
            scheduler.stop_all()

        asyncio.run(scenario())

        assert sleeper.delays == [5.0]


class TestPollingLoop:
    """Fires, backoff and halting"""

    def test_backoff_then_reset_on_success(self, clock, make_chart):
        errors = [ServerError("boom", 500)] * 3
        service = FakeQueryService(script=errors)
        sleeper = SleepRecorder(limit=5)
        coordinator, visibility, scheduler = build(service, clock, sleeper)
        chart = make_chart(polling=polling(max_consecutive_failures=5))
        coordinator.register(chart)
        visibility.set_visible("c1", True)

        async def scenario():
            scheduler.start(chart)
            await drain(200)
            scheduler.stop_all()

        asyncio.run(scenario())

        assert sleeper.delays == [10, 20, 40, 80, 10, 10]
        state = coordinator.get_state("c1")
        assert state.phase == Phase.READY
        assert state.consecutive_failures == 0

    def test_pauses_after_three_failures(self, clock, make_chart):
        service = FailingFor({"c1"})
        sleeper = SleepRecorder(limit=20)
        coordinator, visibility, scheduler = build(service, clock, sleeper)
        chart = make_chart()
        coordinator.register(chart)
        visibility.set_visible("c1", True)

        async def scenario():
            scheduler.start(chart)
            await drain(200)

        asyncio.run(scenario())

        assert sleeper.delays == [10, 20, 40]
        assert len(service.calls) == 3
        state = coordinator.get_state("c1")
        assert state.phase == Phase.PAUSED
        assert state.consecutive_failures == 3
        assert state.next_scheduled_fetch_at is None
        assert not scheduler.is_scheduled("c1")

    def test_paused_chart_cannot_be_started(self, clock, make_chart):
        service = FailingFor({"c1"})
        coordinator, _, scheduler = build(service, clock, SleepRecorder())
        chart = make_chart(polling=polling(max_consecutive_failures=1))
        coordinator.register(chart)

        async def scenario():
            await coordinator.request_fetch(chart)
            return scheduler.start(chart)

        assert asyncio.run(scenario()) is False
        assert coordinator.get_state("c1").is_paused

    def test_terminal_error_halts_without_pausing(self, clock, make_chart):
        service = FakeQueryService(script=[NotFoundError("gone", 404)])
        sleeper = SleepRecorder(limit=20)
        coordinator, visibility, scheduler = build(service, clock, sleeper)
        chart = make_chart()
        coordinator.register(chart)
        visibility.set_visible("c1", True)

        async def scenario():
            scheduler.start(chart)
            await drain(100)

        asyncio.run(scenario())

        assert len(service.calls) == 1
        assert coordinator.get_state("c1").phase == Phase.ERROR
        assert not scheduler.is_scheduled("c1")

    def test_failing_chart_does_not_affect_other_chart(self, clock, make_chart):
        service = FailingFor({"a"})
        sleeper = SleepRecorder(limit=12)
        coordinator, visibility, scheduler = build(service, clock, sleeper)
        a, b = make_chart("a"), make_chart("b")
        for chart in (a, b):
            coordinator.register(chart)
            visibility.set_visible(chart.id, True)

        async def scenario():
            scheduler.start(a)
            scheduler.start(b)
            await drain(300)
            pending_b = coordinator.get_state("b").next_scheduled_fetch_at
            scheduler.stop_all()
            return pending_b

        pending_b = asyncio.run(scenario())

        assert coordinator.get_state("a").is_paused
        state_b = coordinator.get_state("b")
        assert state_b.phase == Phase.READY
        assert state_b.consecutive_failures == 0
        assert len(service.calls_for("b")) >= 3
        # b kept its base interval throughout
        assert pending_b == clock.now + 10


class TestSkipRules:
    """Fires that must not fetch"""

    def run_loop(self, scheduler, chart, rounds=100):
        async def scenario():
            scheduler.start(chart)
            await drain(rounds)
            scheduler.stop_all()

        asyncio.run(scenario())

    def test_hidden_chart_skips_fetch(self, service, clock, make_chart):
        sleeper = SleepRecorder(limit=5)
        coordinator, _, scheduler = build(service, clock, sleeper)
        chart = make_chart()
        coordinator.register(chart)

        self.run_loop(scheduler, chart)

        assert service.calls == []
        assert sleeper.delays == [10] * 6

    def test_tab_hidden_skips_fetch(self, service, clock, make_chart):
        sleeper = SleepRecorder(limit=3)
        coordinator, visibility, scheduler = build(service, clock, sleeper)
        chart = make_chart()
        coordinator.register(chart)
        visibility.set_visible("c1", True)
        visibility.tab_hidden = True

        self.run_loop(scheduler, chart)

        assert service.calls == []

    def test_tab_hidden_ignored_when_not_configured(self, service, clock, make_chart):
        sleeper = SleepRecorder(limit=3)
        coordinator, visibility, scheduler = build(service, clock, sleeper)
        chart = make_chart(polling=polling(pause_on_tab_hidden=False))
        coordinator.register(chart)
        visibility.set_visible("c1", True)
        visibility.tab_hidden = True

        self.run_loop(scheduler, chart)

        assert len(service.calls) == 3

    @pytest.mark.parametrize("moment, expected_calls", [
        (datetime(2024, 1, 3, 12, 0), 3),   # Wednesday noon, inside
        (datetime(2024, 1, 3, 20, 0), 0),   # after hours
        (datetime(2024, 1, 6, 12, 0), 0),   # Saturday
    ])
    def test_active_window(self, service, clock, make_chart, moment, expected_calls):
        window = ActiveWindow(start=time(9, 0), end=time(17, 0), days_of_week=(1, 2, 3, 4, 5))
        sleeper = SleepRecorder(limit=3)
        coordinator, visibility, scheduler = build(service, clock, sleeper, now=lambda: moment)
        chart = make_chart(polling=polling(active_window=window))
        coordinator.register(chart)
        visibility.set_visible("c1", True)

        self.run_loop(scheduler, chart)

        assert len(service.calls) == expected_calls


class TestActiveWindow:
    """ActiveWindow.allows"""

    def test_sunday_is_zero(self):
        window = ActiveWindow(days_of_week=(0,))

        assert window.allows(datetime(2024, 1, 7, 10, 0))      # Sunday
        assert not window.allows(datetime(2024, 1, 8, 10, 0))  # Monday

    def test_window_wrapping_midnight(self):
        window = ActiveWindow(start=time(22, 0), end=time(6, 0))

        assert window.allows(datetime(2024, 1, 3, 23, 30))
        assert window.allows(datetime(2024, 1, 4, 5, 0))
        assert not window.allows(datetime(2024, 1, 4, 12, 0))
