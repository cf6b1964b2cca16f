"""
ECharts backend

Produces an ECharts option object. Native interaction payloads are the params
ECharts hands to chart.on(...) handlers, tagged with the event name:
    {"event": "click", "seriesName": "sales", "dataIndex": 3, "value": 42, "name": "Q2"}
    {"event": "legendselectchanged", "name": "sales", "selected": {"sales": false}}
    {"event": "datazoom", "start": 20, "end": 80}
"""

from typing import Any, Dict, List, Optional

from ..interactions import InteractionEvent, InteractionType, optional_int, optional_str
from ..models import ChartData, Dimensions
from .base import ChartRenderer, RenderCallbacks, RendererDescriptor, describe

CHART_TYPES = {
    "bar": "Bar Chart",
    "line": "Line Chart",
    "pie": "Pie Chart",
    "scatter": "Scatter Plot",
}


class EChartsRenderer(ChartRenderer):
    library = "echarts"
    supported_interactions = frozenset({
        InteractionType.CLICK,
        InteractionType.HOVER,
        InteractionType.LEGEND_TOGGLE,
        InteractionType.ZOOM,
    })

    def render(self, data: ChartData, configuration: Dict[str, Any],
               dimensions: Dimensions, callbacks: RenderCallbacks) -> Dict[str, Any]:
        chart_type = configuration.get("chart_type", "bar")
        names = data.column_names()
        x_key = configuration.get("x_axis", {}).get("data_key") or (names[0] if names else None)
        series_cfg = configuration.get("series") or [
            {"name": n, "data_key": n} for n in names if n != x_key
        ]

        option: Dict[str, Any] = {
            "title": {"text": configuration.get("title", "")},
            "tooltip": {"trigger": "item" if chart_type == "pie" else "axis"},
            "legend": {"show": configuration.get("legend", {}).get("show", True)},
            "width": dimensions.width,
            "height": dimensions.height,
        }

        if chart_type == "pie":
            value_key = series_cfg[0]["data_key"] if series_cfg else None
            option["series"] = [{
                "type": "pie",
                "name": series_cfg[0].get("name") if series_cfg else None,
                "data": [{"name": row.get(x_key), "value": row.get(value_key)} for row in data.rows],
            }]
        else:
            option["xAxis"] = {
                "type": "category" if chart_type != "scatter" else "value",
                "data": [row.get(x_key) for row in data.rows] if chart_type != "scatter" else None,
                "name": configuration.get("x_axis", {}).get("title"),
            }
            option["yAxis"] = {"type": "value", "name": configuration.get("y_axis", {}).get("title")}
            option["series"] = [self._series(chart_type, s, x_key, data) for s in series_cfg]
            if configuration.get("interactions", {}).get("zoom"):
                option["dataZoom"] = [{"type": "inside"}, {"type": "slider"}]

        option["interactions"] = self.wired_interactions(configuration)
        return option

    @staticmethod
    def _series(chart_type: str, cfg: Dict[str, Any], x_key: Optional[str], data: ChartData) -> Dict[str, Any]:
        key = cfg.get("data_key", cfg.get("name"))
        if chart_type == "scatter":
            points = [[row.get(x_key), row.get(key)] for row in data.rows]
        else:
            points = [row.get(key) for row in data.rows]
        series = {"type": cfg.get("type", chart_type), "name": cfg.get("name", key), "data": points}
        if cfg.get("stack"):
            series["stack"] = cfg["stack"]
        if cfg.get("smooth"):
            series["smooth"] = True
        return series


def echarts_adapter(chart_id: str, payload: Dict[str, Any], timestamp: float) -> Optional[InteractionEvent]:
    event = payload.get("event")
    if event in ("click", "mouseover"):
        return InteractionEvent(
            type=InteractionType.CLICK if event == "click" else InteractionType.HOVER,
            chart_id=chart_id,
            timestamp=timestamp,
            series_id=optional_str(payload.get("seriesName", payload.get("seriesId"))),
            data_index=optional_int(payload.get("dataIndex")),
            value=payload.get("value"),
        )
    if event == "legendselectchanged":
        name = payload.get("name")
        return InteractionEvent(
            type=InteractionType.LEGEND_TOGGLE,
            chart_id=chart_id,
            timestamp=timestamp,
            series_id=optional_str(name),
            value=(payload.get("selected") or {}).get(name),
        )
    if event == "datazoom":
        batch = (payload.get("batch") or [payload])[0]
        return InteractionEvent(
            type=InteractionType.ZOOM,
            chart_id=chart_id,
            timestamp=timestamp,
            value={"start": batch.get("start"), "end": batch.get("end")},
        )
    return None


def echarts_descriptors() -> List[RendererDescriptor]:
    return describe(EChartsRenderer(), CHART_TYPES, CHART_TYPES, echarts_adapter,
                    generic_name="ECharts")
