"""Unit tests for the built-in rendering backends"""
from unittest.mock import MagicMock

import pytest
from conftest import sample_data

from chartflow.models import ChartData, Column, Dimensions
from chartflow.renderers.base import RenderCallbacks
from chartflow.renderers.chartjs import ChartJSRenderer
from chartflow.renderers.echarts import EChartsRenderer
from chartflow.renderers.metric import MetricCardRenderer
from chartflow.renderers.table import TableRenderer


def render(renderer, data, configuration, dimensions=None):
    return renderer.render(data, configuration, dimensions or Dimensions(), RenderCallbacks())


class TestTableRenderer:
    """Tabular fallback output"""

    def test_all_columns_with_labels(self):
        data = ChartData(
            rows=[{"month": "jan", "sales": 3}],
            columns=[Column("month", display_name="Month"), Column("sales", type="number")],
        )

        table = render(TableRenderer(), data, {})

        assert table["type"] == "table"
        assert table["columns"] == [{"key": "month", "title": "Month"}, {"key": "sales", "title": "sales"}]
        assert table["rows"] == [{"month": "jan", "sales": 3}]
        assert table["total_rows"] == 1

    def test_sort_and_visible_columns(self):
        table = render(TableRenderer(), sample_data((20, 5, 12)),
                       {"columns": ["sales"], "sort_by": "sales", "sort_order": "desc"})

        assert [r["sales"] for r in table["rows"]] == [20, 12, 5]
        assert [c["key"] for c in table["columns"]] == ["sales"]

    def test_page_size_follows_height(self):
        data = sample_data(tuple(range(20)))

        table = render(TableRenderer(), data, {}, Dimensions(width=300, height=200))

        # (200 - 40 header) // 32 per row
        assert table["page_size"] == 5
        assert len(table["rows"]) == 5
        assert table["total_rows"] == 20

    def test_missing_cells_become_none(self):
        data = ChartData(rows=[{"a": 1, "b": 2}, {"a": 3}])

        table = render(TableRenderer(), data, {})

        assert table["rows"][1]["b"] is None

    def test_interaction_switches(self):
        table = render(TableRenderer(), sample_data(), {"interactions": {"hover": False}})

        assert table["interactions"] == ["click"]


class TestEChartsRenderer:
    """ECharts option building"""

    def test_bar_option(self):
        option = render(EChartsRenderer(), sample_data(), {"chart_type": "bar", "title": "Sales"})

        assert option["title"]["text"] == "Sales"
        assert option["xAxis"]["data"] == ["m0", "m1", "m2"]
        assert option["series"] == [{"type": "bar", "name": "sales", "data": [10, 20, 30]}]
        assert "dataZoom" not in option

    def test_pie_option(self):
        option = render(EChartsRenderer(), sample_data(), {"chart_type": "pie"})

        assert option["series"][0]["type"] == "pie"
        assert option["series"][0]["data"][1] == {"name": "m1", "value": 20}

    def test_zoom_enabled(self):
        option = render(EChartsRenderer(), sample_data(), {"chart_type": "line", "interactions": {"zoom": True}})

        assert option["dataZoom"]
        assert "zoom" in option["interactions"]


class TestChartJSRenderer:
    """Chart.js config building"""

    def test_line_config(self):
        config = render(ChartJSRenderer(), sample_data(), {"chart_type": "line"})

        assert config["type"] == "line"
        assert config["data"]["labels"] == ["m0", "m1", "m2"]
        assert config["data"]["datasets"][0]["data"] == [10, 20, 30]

    def test_doughnut_colors_per_slice(self):
        config = render(ChartJSRenderer(), sample_data(), {"chart_type": "doughnut"})

        assert len(config["data"]["datasets"][0]["backgroundColor"]) == 3


class TestMetricCardRenderer:
    """KPI card aggregation and formatting"""

    def test_last_value_with_delta(self):
        card = render(MetricCardRenderer(), sample_data((10, 20, 35)), {"value_key": "sales", "prefix": "$"})

        assert card["value"] == 35
        assert card["formatted"] == "$35"
        assert card["delta"] == 15

    @pytest.mark.parametrize("aggregation, expected", [
        ("sum", 60.0), ("avg", 20.0), ("max", 30.0), ("min", 10.0), ("first", 10),
    ])
    def test_aggregations(self, aggregation, expected):
        card = render(MetricCardRenderer(), sample_data(), {"value_key": "sales", "aggregation": aggregation})

        assert card["value"] == expected
        assert "delta" not in card

    def test_precision(self):
        card = render(MetricCardRenderer(), sample_data((1, 2)),
                      {"value_key": "sales", "aggregation": "avg", "precision": 2, "suffix": "%"})

        assert card["formatted"] == "1.50%"

    def test_empty_dataset(self):
        card = render(MetricCardRenderer(), ChartData(), {})

        assert card["value"] is None
        assert card["formatted"] == "-"

    def test_unknown_aggregation_reported_through_on_error(self):
        on_error = MagicMock()
        callbacks = RenderCallbacks(on_error=on_error)

        result = MetricCardRenderer().safe_render(sample_data(), {"aggregation": "median"}, Dimensions(), callbacks)

        assert result is None
        on_error.assert_called_once()
        assert isinstance(on_error.call_args.args[0], ValueError)
