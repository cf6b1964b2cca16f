"""Generic tabular renderer, the fallback for any chart type"""
from typing import Any, Dict, List, Optional

import pandas as pd

from ..interactions import InteractionEvent, InteractionType, optional_int, optional_str
from ..models import ChartData, Dimensions
from .base import ChartRenderer, RenderCallbacks, RendererDescriptor

ROW_HEIGHT_PX = 32
HEADER_HEIGHT_PX = 40


class TableRenderer(ChartRenderer):
    """Renders any dataset as a sortable, paginated table"""

    library = "table"
    supported_interactions = frozenset({InteractionType.CLICK, InteractionType.HOVER})

    def render(self, data: ChartData, configuration: Dict[str, Any],
               dimensions: Dimensions, callbacks: RenderCallbacks) -> Dict[str, Any]:
        df = self._to_frame(data)

        visible = configuration.get("columns")
        if visible:
            df = df[[c for c in visible if c in df.columns]]

        sort_by = configuration.get("sort_by")
        if sort_by and sort_by in df.columns:
            df = df.sort_values(sort_by, ascending=configuration.get("sort_order", "asc") != "desc",
                                kind="stable")

        # Page size follows the available height unless configured
        page_size = configuration.get("page_size") or max(
            1, (dimensions.height - HEADER_HEIGHT_PX) // ROW_HEIGHT_PX
        )
        page = max(0, int(configuration.get("page", 0)))
        page_df = df.iloc[page * page_size:(page + 1) * page_size]

        labels = {c.name: c.label for c in data.columns}
        return {
            "type": "table",
            "title": configuration.get("title"),
            "columns": [{"key": name, "title": labels.get(name, name)} for name in df.columns],
            "rows": self._records(page_df),
            "total_rows": int(len(df)),
            "page": page,
            "page_size": int(page_size),
            "width": dimensions.width,
            "height": dimensions.height,
            "interactions": self.wired_interactions(configuration),
        }

    @staticmethod
    def _to_frame(data: ChartData) -> pd.DataFrame:
        columns = data.column_names() or None
        df = pd.DataFrame(data.rows, columns=columns)
        for col in data.columns:
            if col.type == "number" and col.name in df.columns:
                df[col.name] = pd.to_numeric(df[col.name], errors="coerce")
        return df

    @staticmethod
    def _records(df: pd.DataFrame) -> List[Dict[str, Any]]:
        # NaN is not JSON; show missing cells as None
        cleaned = df.astype(object).where(pd.notna(df), None)
        return cleaned.to_dict(orient="records")


def table_adapter(chart_id: str, payload: Dict[str, Any], timestamp: float) -> Optional[InteractionEvent]:
    """Table payloads: {"action": "row_click"|"row_hover", "row_index", "column", "row"}"""
    actions = {"row_click": InteractionType.CLICK, "row_hover": InteractionType.HOVER}
    kind = actions.get(payload.get("action"))
    if kind is None:
        return None

    row = payload.get("row") or {}
    column = payload.get("column")
    return InteractionEvent(
        type=kind,
        chart_id=chart_id,
        timestamp=timestamp,
        series_id=optional_str(column),
        data_index=optional_int(payload.get("row_index")),
        value=row.get(column) if column else row or None,
    )


def table_descriptors() -> List[RendererDescriptor]:
    renderer = TableRenderer()
    common = dict(
        library=renderer.library,
        category="tabular",
        capabilities=renderer.supported_interactions,
        renderer=renderer,
        adapter=table_adapter,
    )
    return [
        RendererDescriptor(key="table", display_name="Table", chart_type="table", **common),
        RendererDescriptor(key="table-renderer", display_name="Table", chart_type=None, **common),
    ]
