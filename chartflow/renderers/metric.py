"""Single value KPI card"""
from typing import Any, Dict, List, Optional

import numpy as np

from ..interactions import InteractionEvent, InteractionType
from ..models import ChartData, Dimensions
from .base import ChartRenderer, RenderCallbacks, RendererDescriptor


class MetricCardRenderer(ChartRenderer):
    library = "metric"
    supported_interactions = frozenset({InteractionType.CLICK})

    def render(self, data: ChartData, configuration: Dict[str, Any],
               dimensions: Dimensions, callbacks: RenderCallbacks) -> Dict[str, Any]:
        names = data.column_names()
        value_key = configuration.get("value_key") or (names[-1] if names else None)
        values = [row.get(value_key) for row in data.rows if row.get(value_key) is not None]

        aggregation = configuration.get("aggregation", "last")
        value = self._aggregate(values, aggregation)

        card = {
            "type": "metric",
            "title": configuration.get("title", value_key),
            "value": value,
            "formatted": self._format(value, configuration),
            "width": dimensions.width,
            "height": dimensions.height,
            "interactions": self.wired_interactions(configuration),
        }
        # Trend against the previous row when the dataset has more than one
        if len(values) > 1 and aggregation == "last":
            current, previous = values[-1], values[-2]
            if _is_number(current) and _is_number(previous):
                card["delta"] = float(current) - float(previous)
        return card

    @staticmethod
    def _aggregate(values: List[Any], aggregation: str) -> Any:
        if not values:
            return None
        if aggregation == "last":
            return values[-1]
        if aggregation == "first":
            return values[0]
        reducers = {"sum": np.sum, "avg": np.mean, "max": np.max, "min": np.min}
        if aggregation in reducers:
            return float(reducers[aggregation](np.asarray(values, dtype=float)))
        raise ValueError(f"unknown aggregation: {aggregation}")

    @staticmethod
    def _format(value: Any, configuration: Dict[str, Any]) -> str:
        if value is None:
            return "-"
        prefix = configuration.get("prefix", "")
        suffix = configuration.get("suffix", "")
        if isinstance(value, (int, float)):
            precision = configuration.get("precision", 0 if float(value).is_integer() else 2)
            return f"{prefix}{value:,.{precision}f}{suffix}"
        return f"{prefix}{value}{suffix}"


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def metric_adapter(chart_id: str, payload: Dict[str, Any], timestamp: float) -> Optional[InteractionEvent]:
    if payload.get("action") != "click":
        return None
    return InteractionEvent(
        type=InteractionType.CLICK,
        chart_id=chart_id,
        timestamp=timestamp,
        value=payload.get("value"),
    )


def metric_descriptors() -> List[RendererDescriptor]:
    renderer = MetricCardRenderer()
    return [
        RendererDescriptor(
            key=key,
            display_name="Metric Card",
            library=renderer.library,
            chart_type=chart_type,
            category="kpi",
            capabilities=renderer.supported_interactions,
            renderer=renderer,
            adapter=metric_adapter,
        )
        for key, chart_type in (("metric-card", "card"), ("metric-renderer", None))
    ]
