"""
Chart.js backend

Native payloads mirror Chart.js onClick/onHover arguments, flattened:
    {"type": "click", "elements": [{"datasetIndex": 0, "index": 2, "parsed": {"y": 5}}],
     "datasets": ["sales", "costs"]}
    {"type": "legendClick", "datasetIndex": 1, "hidden": true, "text": "costs"}
"""

from typing import Any, Dict, List, Optional

from ..interactions import InteractionEvent, InteractionType, optional_int, optional_str
from ..models import ChartData, Dimensions
from .base import ChartRenderer, RenderCallbacks, RendererDescriptor, describe

CHART_TYPES = {
    "bar": "Bar Chart",
    "line": "Line Chart",
    "pie": "Pie Chart",
    "doughnut": "Doughnut Chart",
    "radar": "Radar Chart",
}

DEFAULT_COLORS = ["#5470c6", "#91cc75", "#fac858", "#ee6666", "#73c0de", "#3ba272"]


class ChartJSRenderer(ChartRenderer):
    library = "chartjs"
    supported_interactions = frozenset({
        InteractionType.CLICK,
        InteractionType.HOVER,
        InteractionType.LEGEND_TOGGLE,
    })

    def render(self, data: ChartData, configuration: Dict[str, Any],
               dimensions: Dimensions, callbacks: RenderCallbacks) -> Dict[str, Any]:
        chart_type = configuration.get("chart_type", "bar")
        names = data.column_names()
        label_key = configuration.get("label_key") or (names[0] if names else None)
        value_keys = configuration.get("value_keys") or [n for n in names if n != label_key]
        colors = configuration.get("colors") or DEFAULT_COLORS

        datasets = []
        for i, key in enumerate(value_keys):
            dataset = {
                "label": key,
                "data": [row.get(key) for row in data.rows],
            }
            if chart_type in ("pie", "doughnut"):
                dataset["backgroundColor"] = [colors[j % len(colors)] for j in range(len(data.rows))]
            else:
                dataset["backgroundColor"] = colors[i % len(colors)]
            datasets.append(dataset)

        return {
            "type": chart_type,
            "data": {
                "labels": [row.get(label_key) for row in data.rows],
                "datasets": datasets,
            },
            "options": {
                "responsive": False,
                "width": dimensions.width,
                "height": dimensions.height,
                "plugins": {
                    "title": {
                        "display": bool(configuration.get("title")),
                        "text": configuration.get("title"),
                    },
                    "legend": {"display": configuration.get("legend", {}).get("show", True)},
                },
            },
            "interactions": self.wired_interactions(configuration),
        }


def chartjs_adapter(chart_id: str, payload: Dict[str, Any], timestamp: float) -> Optional[InteractionEvent]:
    kind = payload.get("type")
    datasets = payload.get("datasets") or []

    if kind in ("click", "hover"):
        elements = payload.get("elements") or []
        if not elements:
            return None
        element = elements[0]
        dataset_index = optional_int(element.get("datasetIndex"))
        series = datasets[dataset_index] if dataset_index is not None and dataset_index < len(datasets) else dataset_index
        parsed = element.get("parsed")
        if isinstance(parsed, dict):
            parsed = parsed.get("y", parsed.get("r", parsed))
        return InteractionEvent(
            type=InteractionType.CLICK if kind == "click" else InteractionType.HOVER,
            chart_id=chart_id,
            timestamp=timestamp,
            series_id=optional_str(series),
            data_index=optional_int(element.get("index")),
            value=parsed,
        )

    if kind == "legendClick":
        return InteractionEvent(
            type=InteractionType.LEGEND_TOGGLE,
            chart_id=chart_id,
            timestamp=timestamp,
            series_id=optional_str(payload.get("text", payload.get("datasetIndex"))),
            value=not payload.get("hidden", False),
        )
    return None


def chartjs_descriptors() -> List[RendererDescriptor]:
    return describe(ChartJSRenderer(), CHART_TYPES, CHART_TYPES, chartjs_adapter,
                    generic_name="Chart.js")
