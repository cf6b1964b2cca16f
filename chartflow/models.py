"""Core data model shared by the refresh engine and the renderers"""
import time
from dataclasses import dataclass, field
from datetime import datetime
from datetime import time as dtime
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple


class BackoffStrategy(str, Enum):
    FIXED = "fixed"
    LINEAR = "linear"
    EXPONENTIAL = "exponential"


@dataclass(frozen=True)
class ActiveWindow:
    """Time-of-day / day-of-week range during which polling may fire"""
    start: Optional[dtime] = None
    end: Optional[dtime] = None
    days_of_week: Optional[Tuple[int, ...]] = None  # 0 = Sunday .. 6 = Saturday

    def allows(self, now: datetime) -> bool:
        """Check whether ``now`` falls inside this window."""
        if self.days_of_week is not None:
            # datetime.weekday() is Monday=0, shift to Sunday=0
            day = (now.weekday() + 1) % 7
            if day not in self.days_of_week:
                return False

        if self.start is None and self.end is None:
            return True

        current = now.time().replace(tzinfo=None)
        start = self.start or dtime.min
        end = self.end or dtime.max

        if start <= end:
            return start <= current <= end
        # Window wraps midnight, e.g. 22:00 - 06:00
        return current >= start or current <= end


@dataclass(frozen=True)
class PollingConfig:
    """Per-chart auto refresh settings"""
    enabled: bool = False
    interval_seconds: float = 30
    max_consecutive_failures: int = 3
    backoff_strategy: BackoffStrategy = BackoffStrategy.EXPONENTIAL
    pause_on_tab_hidden: bool = True
    active_window: Optional[ActiveWindow] = None


@dataclass
class Chart:
    """A chart as owned by the dashboard"""
    id: str
    library: str
    chart_type: str
    dataset_ref: str
    configuration: Dict[str, Any] = field(default_factory=dict)
    polling: PollingConfig = field(default_factory=PollingConfig)
    filters: Dict[str, Any] = field(default_factory=dict)
    cache_ttl_seconds: float = 30
    name: Optional[str] = None

    @property
    def renderer_key(self) -> str:
        return f"{self.library}-{self.chart_type}"


@dataclass(frozen=True)
class Column:
    name: str
    type: str = "string"  # 'string', 'number', 'date', 'boolean'
    display_name: Optional[str] = None

    @property
    def label(self) -> str:
        return self.display_name or self.name


@dataclass(frozen=True)
class ChartData:
    """Result of a chart data query"""
    rows: List[Dict[str, Any]] = field(default_factory=list)
    columns: List[Column] = field(default_factory=list)
    execution_time_ms: Optional[float] = None

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "ChartData":
        """Build from the query service's JSON payload.

        Columns may be plain names or dicts with name/type/displayName. When the
        payload carries no column descriptors they are inferred from the first row.
        """
        rows = payload.get("rows")
        if rows is None:
            rows = payload.get("data") or []

        columns = []
        for col in payload.get("columns") or []:
            if isinstance(col, str):
                columns.append(Column(name=col))
            else:
                columns.append(Column(
                    name=col["name"],
                    type=col.get("type", "string"),
                    display_name=col.get("display_name") or col.get("displayName"),
                ))

        if not columns and rows:
            columns = [Column(name=name, type=_infer_type(value)) for name, value in rows[0].items()]

        execution_time = payload.get("execution_time_ms", payload.get("executionTimeMs"))
        return cls(rows=list(rows), columns=columns, execution_time_ms=execution_time)

    @property
    def is_empty(self) -> bool:
        return not self.rows

    def column_names(self) -> List[str]:
        return [c.name for c in self.columns]


def _infer_type(value: Any) -> str:
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, (int, float)):
        return "number"
    return "string"


@dataclass(frozen=True)
class Dimensions:
    width: int = 600
    height: int = 400


@dataclass(frozen=True)
class CacheEntry:
    """Last successful query result for one (chart, fingerprint) key"""
    key: Tuple[str, str]
    data: ChartData
    fetched_at: float
    ttl_seconds: float

    @property
    def chart_id(self) -> str:
        return self.key[0]

    @property
    def fingerprint(self) -> str:
        return self.key[1]

    def age(self, now: Optional[float] = None) -> float:
        return (now if now is not None else time.time()) - self.fetched_at
