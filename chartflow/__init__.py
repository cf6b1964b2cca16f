"""
chartflow - chart renderer resolution and data freshness engine for dashboards

Structure:
    chartflow/
    - models.py         # Chart, PollingConfig, ChartData, CacheEntry
    - errors.py         # Error kinds, exceptions, classification
    - schemas.py        # Pydantic dashboard/chart definitions
    - cache.py          # Chart Data Cache + query fingerprint
    - state.py          # Chart Runtime State Machine
    - coordinator.py    # Fetch Coordinator (coalescing, timeout, liveness)
    - scheduler.py      # Refresh Scheduler (per-chart timers, backoff)
    - interactions.py   # Interaction Event Normalizer
    - renderers/        # Renderer contract, registry, built-in backends
    - query_client.py   # HTTP data query service
    - session.py        # DashboardSession - the API used by the UI layer
    - config.py         # Engine configuration
    - main.py           # Command line runner
"""

from .models import (
    ActiveWindow,
    BackoffStrategy,
    CacheEntry,
    Chart,
    ChartData,
    Column,
    Dimensions,
    PollingConfig,
)
from .errors import (
    ChartflowError,
    ChartNotMountedError,
    ConfigurationError,
    DataFetchError,
    DuplicateRendererError,
    ErrorInfo,
    ErrorKind,
    FetchTimeoutError,
    InvalidTransitionError,
    NetworkError,
    NotFoundError,
    PermissionDeniedError,
    RendererNotFoundError,
    ServerError,
    classify_exception,
)
from .cache import ChartDataCache, fingerprint, is_fresh
from .state import ChartRuntimeState, ChartStateMachine, Phase
from .coordinator import DataQueryService, FetchCoordinator, FetchOutcome
from .scheduler import RefreshScheduler, VisibilityContext, compute_delay
from .interactions import InteractionEvent, InteractionNormalizer, InteractionType
from .renderers import ChartRenderer, RenderCallbacks, RendererDescriptor, RendererRegistry
from .query_client import ChartDataHttpClient, HttpChartDataService
from .session import DashboardSession, RenderOutcome, VisibilityState
from .config import EngineConfig

__all__ = [
    # Data model
    'ActiveWindow',
    'BackoffStrategy',
    'CacheEntry',
    'Chart',
    'ChartData',
    'Column',
    'Dimensions',
    'PollingConfig',

    # Errors
    'ChartflowError',
    'ChartNotMountedError',
    'ConfigurationError',
    'DataFetchError',
    'DuplicateRendererError',
    'ErrorInfo',
    'ErrorKind',
    'FetchTimeoutError',
    'InvalidTransitionError',
    'NetworkError',
    'NotFoundError',
    'PermissionDeniedError',
    'RendererNotFoundError',
    'ServerError',
    'classify_exception',

    # Cache
    'ChartDataCache',
    'fingerprint',
    'is_fresh',

    # Runtime state
    'ChartRuntimeState',
    'ChartStateMachine',
    'Phase',

    # Fetching and scheduling
    'DataQueryService',
    'FetchCoordinator',
    'FetchOutcome',
    'RefreshScheduler',
    'VisibilityContext',
    'compute_delay',

    # Interactions
    'InteractionEvent',
    'InteractionNormalizer',
    'InteractionType',

    # Renderers
    'ChartRenderer',
    'RenderCallbacks',
    'RendererDescriptor',
    'RendererRegistry',

    # Query service
    'ChartDataHttpClient',
    'HttpChartDataService',

    # Session
    'DashboardSession',
    'RenderOutcome',
    'VisibilityState',
    'EngineConfig',
]
