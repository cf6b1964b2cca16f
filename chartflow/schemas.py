#!/usr/bin/env python3
"""
chartflow Schemas - Pydantic models for dashboard and chart definitions

Dashboards arrive as YAML/JSON documents. These models validate them and turn
them into the engine's dataclasses. Polling settings may live in three places
(checked in order):
    polling:                                  (top level of the chart)
    configuration.refresh_config.auto_refresh
    configuration.auto_refresh
"""

from datetime import time as dtime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, ValidationError, field_validator

from .errors import ConfigurationError
from .models import ActiveWindow, BackoffStrategy, Chart, PollingConfig


class ActiveWindowSettings(BaseModel):
    start: Optional[dtime] = None
    end: Optional[dtime] = None
    days_of_week: Optional[List[int]] = None

    @field_validator("start", "end", mode="before")
    @classmethod
    def _yaml_sexagesimal(cls, value):
        # YAML 1.1 reads an unquoted 22:00 as the base-60 integer 1320
        if isinstance(value, int) and not isinstance(value, bool):
            return dtime(hour=value // 60, minute=value % 60)
        return value

    @field_validator("days_of_week")
    @classmethod
    def _valid_days(cls, days):
        if days is not None and any(d < 0 or d > 6 for d in days):
            raise ValueError("days_of_week values must be 0 (Sunday) .. 6 (Saturday)")
        return days

    def to_window(self) -> ActiveWindow:
        return ActiveWindow(
            start=self.start,
            end=self.end,
            days_of_week=tuple(self.days_of_week) if self.days_of_week is not None else None,
        )


class PollingSettings(BaseModel):
    enabled: bool = False
    interval: float = Field(30, gt=0)
    max_failures: int = Field(3, ge=1)
    backoff_strategy: BackoffStrategy = BackoffStrategy.EXPONENTIAL
    pause_on_tab_hidden: bool = True
    active_window: Optional[ActiveWindowSettings] = None
    # Older chart configs put the active window under "conditions"
    conditions: Optional[Dict[str, Any]] = None

    def to_config(self) -> PollingConfig:
        window = self.active_window
        if window is None and self.conditions:
            time_range = self.conditions.get("time_range") or {}
            window = ActiveWindowSettings(
                start=time_range.get("start"),
                end=time_range.get("end"),
                days_of_week=self.conditions.get("days_of_week"),
            )
        return PollingConfig(
            enabled=self.enabled,
            interval_seconds=self.interval,
            max_consecutive_failures=self.max_failures,
            backoff_strategy=self.backoff_strategy,
            pause_on_tab_hidden=self.pause_on_tab_hidden,
            active_window=window.to_window() if window else None,
        )


class ChartDefinition(BaseModel):
    id: str = Field(..., min_length=1)
    name: Optional[str] = None
    library: str = Field(..., min_length=1)
    chart_type: str = Field(..., min_length=1)
    dataset_ref: str = Field(..., min_length=1)
    configuration: Dict[str, Any] = Field(default_factory=dict)
    filters: Dict[str, Any] = Field(default_factory=dict)
    polling: Optional[PollingSettings] = None
    cache_ttl_seconds: Optional[float] = Field(None, ge=0)


class AutoRefreshSettings(BaseModel):
    enabled: bool = False
    interval: float = Field(30, gt=0)


class DashboardDefinition(BaseModel):
    id: str = Field(..., min_length=1)
    name: Optional[str] = None
    filters: Dict[str, Any] = Field(default_factory=dict)
    auto_refresh: AutoRefreshSettings = Field(default_factory=AutoRefreshSettings)
    charts: List[ChartDefinition] = Field(default_factory=list)

    @field_validator("charts")
    @classmethod
    def _unique_ids(cls, charts):
        seen = set()
        for chart in charts:
            if chart.id in seen:
                raise ValueError(f"duplicate chart id: {chart.id}")
            seen.add(chart.id)
        return charts


def extract_polling_settings(definition: ChartDefinition) -> Optional[PollingSettings]:
    """Locate a chart's polling settings, wherever its configuration keeps them."""
    if definition.polling is not None:
        return definition.polling

    config = definition.configuration or {}
    raw = (config.get("refresh_config") or {}).get("auto_refresh") or config.get("auto_refresh")
    if not raw:
        return None
    try:
        return PollingSettings(**raw)
    except ValidationError as e:
        raise ConfigurationError(f"chart {definition.id}: invalid auto refresh settings: {e}") from e


def build_chart(definition: ChartDefinition,
                dashboard_filters: Optional[Dict[str, Any]] = None,
                dashboard_refresh: Optional[AutoRefreshSettings] = None,
                default_cache_ttl: float = 30) -> Chart:
    """
    Turn a validated definition into a Chart.

    Charts without enabled polling of their own inherit the dashboard's
    auto refresh interval when the dashboard enables it.
    """
    settings = extract_polling_settings(definition)
    try:
        polling = settings.to_config() if settings else PollingConfig()
    except ValidationError as e:
        raise ConfigurationError(f"chart {definition.id}: invalid polling window: {e}") from e

    if not polling.enabled and dashboard_refresh is not None and dashboard_refresh.enabled:
        polling = PollingConfig(enabled=True, interval_seconds=dashboard_refresh.interval)

    filters = dict(dashboard_filters or {})
    filters.update(definition.filters)

    return Chart(
        id=definition.id,
        name=definition.name,
        library=definition.library,
        chart_type=definition.chart_type,
        dataset_ref=definition.dataset_ref,
        configuration=dict(definition.configuration),
        polling=polling,
        filters=filters,
        cache_ttl_seconds=(definition.cache_ttl_seconds
                           if definition.cache_ttl_seconds is not None else default_cache_ttl),
    )


def parse_dashboard(data: Dict[str, Any]) -> DashboardDefinition:
    """Validate a dashboard document, raising ConfigurationError on bad input."""
    try:
        return DashboardDefinition(**(data or {}))
    except ValidationError as e:
        raise ConfigurationError(f"invalid dashboard definition: {e}") from e


def parse_chart(data: Dict[str, Any], default_cache_ttl: float = 30) -> Chart:
    try:
        definition = ChartDefinition(**(data or {}))
    except ValidationError as e:
        raise ConfigurationError(f"invalid chart definition: {e}") from e
    return build_chart(definition, default_cache_ttl=default_cache_ttl)
