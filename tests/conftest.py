"""Pytest configuration and shared fixtures"""
import asyncio
import os
import sys

import pytest

# Make the package importable without installing it
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from chartflow.models import Chart, ChartData, Column, PollingConfig


class FakeClock:
    """Manually advanced time source"""

    def __init__(self, start=1_000_000.0):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


class FakeQueryService:
    """
    Scripted DataQueryService.

    Each call pops the next scripted result: a ChartData is returned, an
    exception instance is raised. When the script is empty a default dataset is
    returned. Setting `gate` holds every call until the event is set.
    """

    def __init__(self, script=None, default=None):
        self.script = list(script or [])
        self.default = default or sample_data()
        self.calls = []
        self.gate = None

    async def fetch_chart_data(self, chart_id, filters, force_refresh, timeout_ms):
        self.calls.append({
            "chart_id": chart_id,
            "filters": filters,
            "force_refresh": force_refresh,
            "timeout_ms": timeout_ms,
        })
        if self.gate is not None:
            await self.gate.wait()
        result = self.script.pop(0) if self.script else self.default
        if isinstance(result, BaseException):
            raise result
        return result

    def calls_for(self, chart_id):
        return [c for c in self.calls if c["chart_id"] == chart_id]


class SleepRecorder:
    """
    Stand-in for asyncio.sleep used by the refresh scheduler.

    Records requested delays and yields to the loop without waiting, so a
    scheduler loop runs as fast as the test lets it. After `limit` sleeps the
    sleeper blocks forever, which freezes the loop for inspection.
    """

    def __init__(self, limit=50):
        self.delays = []
        self.limit = limit

    async def __call__(self, delay):
        self.delays.append(delay)
        if len(self.delays) > self.limit:
            await asyncio.Event().wait()
        await asyncio.sleep(0)


def sample_data(values=(10, 20, 30)):
    rows = [{"month": f"m{i}", "sales": v} for i, v in enumerate(values)]
    return ChartData(
        rows=rows,
        columns=[Column(name="month"), Column(name="sales", type="number")],
        execution_time_ms=4.0,
    )


async def drain(rounds=20):
    """Let pending tasks run for a few loop iterations."""
    for _ in range(rounds):
        await asyncio.sleep(0)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def service():
    return FakeQueryService()


@pytest.fixture
def make_chart():
    """Factory for charts with polling enabled and sensible test defaults"""

    def _make(chart_id="c1", library="echarts", chart_type="bar", polling=None, **kwargs):
        return Chart(
            id=chart_id,
            library=library,
            chart_type=chart_type,
            dataset_ref=kwargs.pop("dataset_ref", "sales"),
            polling=polling or PollingConfig(enabled=True, interval_seconds=10),
            **kwargs,
        )

    return _make
