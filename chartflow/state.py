"""Chart Runtime State Machine"""
import copy
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Dict, FrozenSet, Optional

from .errors import ErrorInfo, InvalidTransitionError

logger = logging.getLogger("chartflow.state")


class Phase(str, Enum):
    IDLE = "idle"
    LOADING = "loading"
    READY = "ready"
    ERROR = "error"
    RETRYING = "retrying"
    PAUSED = "paused"


# READY -> READY covers silent background refreshes that never show a spinner.
# IDLE -> READY/ERROR likewise covers a silent first fetch.
ALLOWED_TRANSITIONS: Dict[Phase, FrozenSet[Phase]] = {
    Phase.IDLE: frozenset({Phase.LOADING, Phase.READY, Phase.ERROR, Phase.PAUSED}),
    Phase.LOADING: frozenset({Phase.READY, Phase.ERROR, Phase.PAUSED}),
    Phase.READY: frozenset({Phase.LOADING, Phase.READY, Phase.ERROR, Phase.PAUSED}),
    Phase.ERROR: frozenset({Phase.RETRYING, Phase.PAUSED}),
    Phase.RETRYING: frozenset({Phase.READY, Phase.ERROR, Phase.PAUSED}),
    Phase.PAUSED: frozenset({Phase.LOADING}),
}


@dataclass
class ChartRuntimeState:
    """Per-chart lifecycle and failure bookkeeping"""
    chart_id: str
    phase: Phase = Phase.IDLE
    consecutive_failures: int = 0
    last_error: Optional[ErrorInfo] = None
    last_success_at: Optional[float] = None
    next_scheduled_fetch_at: Optional[float] = None
    render_error: Optional[ErrorInfo] = None
    fetch_count: int = 0
    last_fetch_duration_ms: Optional[float] = None

    @property
    def is_paused(self) -> bool:
        return self.phase == Phase.PAUSED

    @property
    def is_busy(self) -> bool:
        return self.phase in (Phase.LOADING, Phase.RETRYING)

    def snapshot(self) -> "ChartRuntimeState":
        return copy.copy(self)

    def to_dict(self) -> dict:
        return {
            "chart_id": self.chart_id,
            "phase": self.phase.value,
            "consecutive_failures": self.consecutive_failures,
            "last_error": self.last_error.to_dict() if self.last_error else None,
            "last_success_at": self.last_success_at,
            "next_scheduled_fetch_at": self.next_scheduled_fetch_at,
            "render_error": self.render_error.to_dict() if self.render_error else None,
            "fetch_count": self.fetch_count,
            "last_fetch_duration_ms": self.last_fetch_duration_ms,
        }


class ChartStateMachine:
    """Owns one ChartRuntimeState and enforces the transition table"""

    def __init__(self, chart_id: str):
        self.state = ChartRuntimeState(chart_id=chart_id)

    @property
    def phase(self) -> Phase:
        return self.state.phase

    def can_transition(self, target: Phase) -> bool:
        return target in ALLOWED_TRANSITIONS[self.state.phase]

    def transition(self, target: Phase) -> None:
        current = self.state.phase
        if target not in ALLOWED_TRANSITIONS[current]:
            raise InvalidTransitionError(
                f"chart {self.state.chart_id}: {current.value} -> {target.value} is not allowed"
            )
        if current != target:
            logger.debug(f"chart {self.state.chart_id}: {current.value} -> {target.value}")
        self.state.phase = target

    def begin_fetch(self, silent: bool) -> None:
        """Enter the in-flight phase for a new fetch."""
        current = self.state.phase
        if current in (Phase.ERROR, Phase.RETRYING):
            if current == Phase.ERROR:
                self.transition(Phase.RETRYING)
        elif current == Phase.PAUSED:
            self.transition(Phase.LOADING)
        elif not silent and current != Phase.LOADING:
            self.transition(Phase.LOADING)

    def succeed(self, fetched_at: float, duration_ms: Optional[float] = None) -> None:
        self.transition(Phase.READY)
        self.state.consecutive_failures = 0
        self.state.last_error = None
        self.state.last_success_at = fetched_at
        self.state.fetch_count += 1
        self.state.last_fetch_duration_ms = duration_ms

    def fail(self, error: ErrorInfo, max_failures: int, duration_ms: Optional[float] = None,
             manual: bool = False) -> None:
        """Record a failed fetch. A manual fetch never counts towards the streak."""
        self.state.consecutive_failures = 0 if manual else self.state.consecutive_failures + 1
        self.state.last_error = error
        self.state.fetch_count += 1
        self.state.last_fetch_duration_ms = duration_ms
        if max_failures > 0 and self.state.consecutive_failures >= max_failures:
            self.transition(Phase.PAUSED)
        else:
            self.transition(Phase.ERROR)

    def reset_failures(self) -> None:
        """Manual refresh: forget the failure streak, phase changes on next fetch."""
        self.state.consecutive_failures = 0

    def restart(self) -> None:
        """The chart's query changed: nothing cached applies, start over from idle."""
        logger.debug(f"chart {self.state.chart_id}: {self.state.phase.value} -> idle (query changed)")
        self.state.phase = Phase.IDLE
        self.state.consecutive_failures = 0
        self.state.last_error = None
        self.state.last_success_at = None
