"""Renderer Registry - maps (library, chart type) keys to renderer descriptors"""
import logging
import threading
from typing import Callable, Dict, Iterator, List, Optional

from ..errors import DuplicateRendererError, RendererNotFoundError
from .base import RendererDescriptor
from .chartjs import chartjs_descriptors
from .echarts import echarts_descriptors
from .metric import metric_descriptors
from .table import table_descriptors

GENERIC_FALLBACK_KEY = "table"


class RendererRegistry:
    """Catalog of renderers owned by one dashboard session"""

    # Built-in libraries, keyed the same way the engine config enables them
    BUILTIN_RENDERERS: Dict[str, Callable[[], List[RendererDescriptor]]] = {
        "table": table_descriptors,
        "echarts": echarts_descriptors,
        "chartjs": chartjs_descriptors,
        "metric": metric_descriptors,
    }

    def __init__(self, libraries: Optional[Dict[str, bool]] = None):
        """
        Args:
            libraries: Enable/disable switches per built-in library (default: all enabled)
        """
        self._library_switches = libraries or {}
        self.logger = logging.getLogger("chartflow.registry")
        self._descriptors: Dict[str, RendererDescriptor] = {}
        self._lock = threading.Lock()
        self._initialized = False

    # ---------------- Lifecycle ----------------

    def init(self, builtins: bool = True) -> "RendererRegistry":
        """Populate the registry. Safe to call again; re-registering built-ins is a no-op."""
        self._initialized = True
        if not builtins:
            return self

        self.logger.info("Registering built-in renderers...")
        for library, factory in self.BUILTIN_RENDERERS.items():
            if not self._library_switches.get(library, True):
                self.logger.debug(f"Skipping disabled renderer library: {library}")
                continue
            for descriptor in factory():
                self.register(descriptor)
        self.logger.info(f"Registered {len(self._descriptors)} renderers")
        return self

    def dispose(self) -> None:
        with self._lock:
            self._descriptors.clear()
        self._initialized = False

    @property
    def initialized(self) -> bool:
        return self._initialized

    # ---------------- Registration ----------------

    def register(self, descriptor: RendererDescriptor) -> None:
        """
        Add a renderer under its key.

        Raises:
            DuplicateRendererError: a different descriptor already owns the key
            RuntimeError: the registry has not been initialised (or was disposed)
        """
        if not self._initialized:
            raise RuntimeError("renderer registry is not initialised")

        with self._lock:
            existing = self._descriptors.get(descriptor.key)
            if existing is not None:
                if existing.same_as(descriptor):
                    return
                raise DuplicateRendererError(descriptor.key)
            self._descriptors[descriptor.key] = descriptor
        self.logger.debug(f"Registered renderer: {descriptor.key}")

    # ---------------- Resolution ----------------

    @staticmethod
    def candidate_keys(library: str, chart_type: str) -> List[str]:
        """Lookup order: exact type, the library's generic renderer, the generic table."""
        return [f"{library}-{chart_type}", f"{library}-renderer", GENERIC_FALLBACK_KEY]

    def _lookup(self, key: str) -> Optional[RendererDescriptor]:
        descriptor = self._descriptors.get(key)
        if descriptor is None and key == GENERIC_FALLBACK_KEY:
            # The table library's generic renderer also serves as the fallback
            descriptor = self._descriptors.get(f"{GENERIC_FALLBACK_KEY}-renderer")
        return descriptor

    def resolve(self, library: str, chart_type: str) -> RendererDescriptor:
        """
        Find the renderer for a chart. Pure lookup, never mutates the registry.

        Raises:
            RendererNotFoundError: none of the candidate keys is registered
        """
        keys = self.candidate_keys(library, chart_type)
        for key in keys:
            descriptor = self._lookup(key)
            if descriptor is not None:
                if key != keys[0]:
                    self.logger.debug(f"{library}-{chart_type}: falling back to {descriptor.key}")
                return descriptor
        raise RendererNotFoundError(library, chart_type, keys)

    # ---------------- Catalog queries ----------------

    def get(self, key: str) -> Optional[RendererDescriptor]:
        return self._descriptors.get(key)

    def descriptors(self) -> List[RendererDescriptor]:
        return list(self._descriptors.values())

    def by_library(self, library: str) -> List[RendererDescriptor]:
        return [d for d in self._descriptors.values() if d.library == library]

    def by_category(self, category: str) -> List[RendererDescriptor]:
        return [d for d in self._descriptors.values() if d.category == category]

    def libraries(self) -> List[str]:
        return sorted({d.library for d in self._descriptors.values()})

    def categories(self) -> List[str]:
        return sorted({d.category for d in self._descriptors.values()})

    def __contains__(self, key: str) -> bool:
        return key in self._descriptors

    def __len__(self) -> int:
        return len(self._descriptors)

    def __iter__(self) -> Iterator[RendererDescriptor]:
        return iter(list(self._descriptors.values()))
