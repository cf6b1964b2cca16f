"""
Interaction Event Normalizer

Every renderer backend reports clicks, hovers, legend toggles and zooms in its
own shape. Each renderer ships one adapter function that maps its native
payload to an InteractionEvent; the normalizer applies the adapter and fans the
canonical event out to the chart's subscribers.
"""

import itertools
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Optional

if TYPE_CHECKING:
    from .renderers.base import RendererDescriptor

logger = logging.getLogger("chartflow.interactions")


class InteractionType(str, Enum):
    CLICK = "click"
    HOVER = "hover"
    LEGEND_TOGGLE = "legend_toggle"
    ZOOM = "zoom"


@dataclass(frozen=True)
class InteractionEvent:
    """Canonical interaction shape handed to the dashboard"""
    type: InteractionType
    chart_id: str
    timestamp: float
    series_id: Optional[str] = None
    data_index: Optional[int] = None
    value: Any = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type.value,
            "chart_id": self.chart_id,
            "series_id": self.series_id,
            "data_index": self.data_index,
            "value": self.value,
            "timestamp": self.timestamp,
        }


# adapter(chart_id, native_payload, timestamp) -> InteractionEvent | None
InteractionAdapter = Callable[[str, Dict[str, Any], float], Optional[InteractionEvent]]
InteractionHandler = Callable[[InteractionEvent], None]


def optional_str(value: Any) -> Optional[str]:
    return None if value is None else str(value)


def optional_int(value: Any) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def passthrough_adapter(chart_id: str, payload: Dict[str, Any], timestamp: float) -> Optional[InteractionEvent]:
    """Adapter for payloads already in canonical form (or close to it)."""
    try:
        kind = InteractionType(payload.get("type"))
    except ValueError:
        return None
    return InteractionEvent(
        type=kind,
        chart_id=chart_id,
        timestamp=payload.get("timestamp", timestamp),
        series_id=optional_str(payload.get("series_id", payload.get("seriesId"))),
        data_index=optional_int(payload.get("data_index", payload.get("dataIndex"))),
        value=payload.get("value"),
    )


class InteractionNormalizer:
    """Routes native renderer payloads to per-chart subscribers as canonical events"""

    def __init__(self, clock=time.time):
        self._clock = clock
        self._handlers: Dict[str, Dict[int, InteractionHandler]] = {}
        self._ids = itertools.count(1)

    def subscribe(self, chart_id: str, handler: InteractionHandler) -> Callable[[], None]:
        """
        Register a handler for a chart's interactions.

        Returns:
            Callable that removes the subscription (safe to call twice)
        """
        token = next(self._ids)
        self._handlers.setdefault(chart_id, {})[token] = handler

        def unsubscribe() -> None:
            handlers = self._handlers.get(chart_id)
            if handlers is not None:
                handlers.pop(token, None)
                if not handlers:
                    self._handlers.pop(chart_id, None)

        return unsubscribe

    def subscriber_count(self, chart_id: str) -> int:
        return len(self._handlers.get(chart_id, {}))

    def normalize(self, chart_id: str, descriptor: "RendererDescriptor",
                  payload: Dict[str, Any]) -> Optional[InteractionEvent]:
        """Apply the descriptor's adapter; None if the payload is not an interaction it supports."""
        adapter = descriptor.adapter or passthrough_adapter
        try:
            event = adapter(chart_id, payload, self._clock())
        except Exception as e:
            logger.warning(f"{descriptor.key}: could not adapt interaction payload for chart {chart_id}: {e}")
            return None

        if event is None:
            return None
        if descriptor.capabilities and event.type not in descriptor.capabilities:
            logger.debug(f"{descriptor.key}: dropping unsupported {event.type.value} interaction")
            return None
        return event

    def dispatch(self, chart_id: str, descriptor: "RendererDescriptor",
                 payload: Dict[str, Any]) -> Optional[InteractionEvent]:
        """Normalize a native payload and deliver it to the chart's subscribers."""
        event = self.normalize(chart_id, descriptor, payload)
        if event is None:
            return None
        self.publish(event)
        return event

    def publish(self, event: InteractionEvent) -> None:
        handlers: List[InteractionHandler] = list(self._handlers.get(event.chart_id, {}).values())
        for handler in handlers:
            try:
                handler(event)
            except Exception:
                logger.exception(f"interaction handler failed for chart {event.chart_id}")

    def clear(self, chart_id: Optional[str] = None) -> None:
        if chart_id is None:
            self._handlers.clear()
        else:
            self._handlers.pop(chart_id, None)
