"""Renderers package - rendering backends and the registry that resolves them"""

from .base import ChartRenderer, RenderCallbacks, RendererDescriptor
from .table import TableRenderer, table_adapter
from .echarts import EChartsRenderer, echarts_adapter
from .chartjs import ChartJSRenderer, chartjs_adapter
from .metric import MetricCardRenderer, metric_adapter
from .registry import RendererRegistry, GENERIC_FALLBACK_KEY

__all__ = [
    # Base classes
    'ChartRenderer',
    'RenderCallbacks',
    'RendererDescriptor',

    # Renderers and their interaction adapters
    'TableRenderer',
    'table_adapter',
    'EChartsRenderer',
    'echarts_adapter',
    'ChartJSRenderer',
    'chartjs_adapter',
    'MetricCardRenderer',
    'metric_adapter',

    # Registry
    'RendererRegistry',
    'GENERIC_FALLBACK_KEY',
]
