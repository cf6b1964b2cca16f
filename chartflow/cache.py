"""
Chart Data Cache

In-memory store of the last successful query result per (chart id, filter
fingerprint). The cache holds no timers: freshness is a pure function of the
current time and the entry, and stale entries stay available as last-known-good
data while a refresh is in flight.
"""

import hashlib
import json
import logging
import threading
import time
from typing import Any, Dict, Iterable, Mapping, Optional, Tuple

from .models import CacheEntry, ChartData

logger = logging.getLogger("chartflow.cache")

# Configuration keys that change what the query returns. Everything else in a
# chart configuration (colors, titles, legends...) is presentation only.
QUERY_CONFIG_KEYS = (
    "query",
    "metrics",
    "dimensions",
    "aggregation",
    "group_by",
    "sort",
    "limit",
    "time_range",
)


def _canonical(value: Any) -> Any:
    """
    Normalize containers so logically equal values serialize identically.

    Mapping keys must be strings: JSON would fold 1 and "1" into one key.
    """
    if isinstance(value, Mapping):
        for k in value:
            if not isinstance(k, str):
                raise TypeError(f"query keys must be strings, got {k!r}")
        return {k: _canonical(v) for k, v in value.items()}
    if isinstance(value, (set, frozenset)):
        return sorted((_canonical(v) for v in value), key=lambda v: json.dumps(v, sort_keys=True, default=str))
    if isinstance(value, (list, tuple)):
        return [_canonical(v) for v in value]
    return value


def query_configuration(configuration: Optional[Mapping[str, Any]],
                        keys: Iterable[str] = QUERY_CONFIG_KEYS) -> Dict[str, Any]:
    """Extract the query-relevant part of a chart configuration."""
    if not configuration:
        return {}
    return {k: configuration[k] for k in keys if k in configuration}


def fingerprint(filters: Optional[Mapping[str, Any]],
                dataset_ref: Optional[str],
                configuration: Optional[Mapping[str, Any]] = None) -> str:
    """
    Stable hash identifying a logical query.

    Args:
        filters: Applied filters (chart and dashboard level, already merged)
        dataset_ref: Dataset reference the chart queries
        configuration: Chart configuration; only QUERY_CONFIG_KEYS participate

    Returns:
        Hex SHA-256 digest, identical for identical logical queries regardless
        of key ordering

    Raises:
        TypeError: a filter or query configuration mapping has a non-string key
    """
    payload = {
        "dataset": dataset_ref,
        "filters": _canonical(filters or {}),
        "config": _canonical(query_configuration(configuration)),
    }
    raw = json.dumps(payload, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()


def is_fresh(now: float, entry: Optional[CacheEntry]) -> bool:
    """An entry is fresh iff now - fetched_at < ttl_seconds."""
    if entry is None:
        return False
    return now - entry.fetched_at < entry.ttl_seconds


class ChartDataCache:
    """Cache of chart query results keyed by (chart id, fingerprint)"""

    def __init__(self, clock=time.time):
        self._entries: Dict[Tuple[str, str], CacheEntry] = {}
        self._lock = threading.Lock()
        self._clock = clock

    def get(self, chart_id: str, filter_fingerprint: str) -> Optional[CacheEntry]:
        return self._entries.get((chart_id, filter_fingerprint))

    def put(self, chart_id: str, filter_fingerprint: str, data: ChartData,
            ttl_seconds: float, fetched_at: Optional[float] = None) -> CacheEntry:
        """Store a successful result, replacing any previous entry for the key."""
        key = (chart_id, filter_fingerprint)
        entry = CacheEntry(
            key=key,
            data=data,
            fetched_at=fetched_at if fetched_at is not None else self._clock(),
            ttl_seconds=ttl_seconds,
        )
        # Entries are immutable; swapping the reference is the whole write
        with self._lock:
            self._entries[key] = entry
        logger.debug(f"cached {len(data.rows)} rows for chart {chart_id} (ttl={ttl_seconds}s)")
        return entry

    def invalidate(self, chart_id: str) -> int:
        """Drop every entry for a chart. Returns the number of entries removed."""
        with self._lock:
            keys = [k for k in self._entries if k[0] == chart_id]
            for key in keys:
                del self._entries[key]
        if keys:
            logger.debug(f"invalidated {len(keys)} cache entries for chart {chart_id}")
        return len(keys)

    def latest(self, chart_id: str) -> Optional[CacheEntry]:
        """Most recently fetched entry for a chart, whatever its fingerprint."""
        entries = [e for k, e in list(self._entries.items()) if k[0] == chart_id]
        if not entries:
            return None
        return max(entries, key=lambda e: e.fetched_at)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: Tuple[str, str]) -> bool:
        return key in self._entries
