import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, FrozenSet, Iterable, List, Optional

from ..interactions import InteractionAdapter, InteractionType
from ..models import ChartData, Dimensions


@dataclass
class RenderCallbacks:
    """Hooks a renderer wires into the chart it produces"""
    on_interaction: Optional[Callable[[Dict[str, Any]], Any]] = None
    on_error: Optional[Callable[[Exception], None]] = None


class ChartRenderer(ABC):
    """Base class for all rendering backends"""

    library: str = ""
    supported_interactions: FrozenSet[InteractionType] = frozenset()

    def __init__(self, logger: Optional[logging.Logger] = None):
        self.logger = logger or logging.getLogger(f"chartflow.renderers.{self.library or 'base'}")

    @abstractmethod
    def render(self, data: ChartData, configuration: Dict[str, Any],
               dimensions: Dimensions, callbacks: RenderCallbacks) -> Dict[str, Any]:
        """Turn tabular data + configuration into the backend's chart spec"""

    def safe_render(self, data: ChartData, configuration: Dict[str, Any],
                    dimensions: Dimensions, callbacks: RenderCallbacks) -> Optional[Dict[str, Any]]:
        """Render, reporting failures through callbacks.on_error instead of raising"""
        try:
            return self.render(data, configuration, dimensions, callbacks)
        except Exception as e:
            self.logger.error(f"{self.library} render failed: {e}")
            if callbacks.on_error:
                callbacks.on_error(e)
            return None

    def wired_interactions(self, configuration: Dict[str, Any]) -> List[str]:
        """Interactions enabled for this chart: supported ones minus those switched off."""
        switches = configuration.get("interactions") or {}
        return sorted(
            i.value for i in self.supported_interactions
            if switches.get(i.value, True)
        )


@dataclass(frozen=True)
class RendererDescriptor:
    """Registry entry binding a (library, chart type) key to a renderer"""
    key: str
    display_name: str
    library: str
    renderer: ChartRenderer = field(compare=False)
    chart_type: Optional[str] = None
    category: str = "basic"
    capabilities: FrozenSet[InteractionType] = frozenset()
    adapter: Optional[InteractionAdapter] = field(default=None, compare=False)

    def same_as(self, other: "RendererDescriptor") -> bool:
        """Identical registration: same metadata, same renderer class and adapter."""
        return (
            self == other
            and type(self.renderer) is type(other.renderer)
            and self.adapter is other.adapter
        )

    def supports(self, interaction: InteractionType) -> bool:
        return interaction in self.capabilities


def describe(renderer: ChartRenderer, chart_types: Iterable[str], display_names: Dict[str, str],
             adapter: Optional[InteractionAdapter], category: str = "basic",
             generic_name: Optional[str] = None) -> List[RendererDescriptor]:
    """Build one descriptor per chart type plus the library's generic '{library}-renderer'."""
    descriptors = [
        RendererDescriptor(
            key=f"{renderer.library}-{chart_type}",
            display_name=display_names.get(chart_type, chart_type.title()),
            library=renderer.library,
            chart_type=chart_type,
            category=category,
            capabilities=renderer.supported_interactions,
            renderer=renderer,
            adapter=adapter,
        )
        for chart_type in chart_types
    ]
    if generic_name:
        descriptors.append(RendererDescriptor(
            key=f"{renderer.library}-renderer",
            display_name=generic_name,
            library=renderer.library,
            chart_type=None,
            category=category,
            capabilities=renderer.supported_interactions,
            renderer=renderer,
            adapter=adapter,
        ))
    return descriptors
