import argparse
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from dotenv import load_dotenv

from .errors import ConfigurationError
from .schemas import DashboardDefinition, parse_dashboard

logger = logging.getLogger("chartflow.config")


@dataclass
class EngineConfig:
    """Engine configuration with defaults"""
    query_url: str = "http://127.0.0.1:8000"
    api_token: Optional[str] = None
    fetch_timeout_seconds: float = 30
    min_interval_seconds: float = 5
    max_delay_factor: float = 10
    default_cache_ttl_seconds: float = 30
    log_level: str = "INFO"
    dashboard: Optional[str] = None
    run_seconds: Optional[float] = None
    once: bool = False
    renderers: Dict[str, bool] = None

    def __post_init__(self):
        # Built-in renderer libraries (enable/disable)
        if self.renderers is None:
            self.renderers = {
                "table": True,
                "echarts": True,
                "chartjs": True,
                "metric": True,
            }

    @classmethod
    def from_file(cls, config_path: Path) -> "EngineConfig":
        """Load configuration from YAML file"""
        if not config_path.exists():
            logger.debug(f"Config file not found: {config_path}, using defaults")
            return cls()

        try:
            with open(config_path, "r") as f:
                data = yaml.safe_load(f) or {}
            logger.debug(f"Loaded config from {config_path}: {data}")
            return cls(**data)
        except (yaml.YAMLError, TypeError) as e:
            logger.warning(f"Failed to load config from {config_path}: {e}, using defaults")
            return cls()

    def override_with_env(self, dotenv: bool = True) -> "EngineConfig":
        """Override config with CHARTFLOW_* environment variables (and .env)"""
        if dotenv:
            load_dotenv()
        self.query_url = os.getenv("CHARTFLOW_QUERY_URL", self.query_url)
        self.api_token = os.getenv("CHARTFLOW_API_TOKEN", self.api_token)

        env_timeout = os.getenv("CHARTFLOW_FETCH_TIMEOUT")
        if env_timeout:
            try:
                self.fetch_timeout_seconds = float(env_timeout)
            except ValueError:
                logger.warning(f"invalid CHARTFLOW_FETCH_TIMEOUT '{env_timeout}', "
                               f"using {self.fetch_timeout_seconds}s")
        return self

    def override_with_args(self, args: argparse.Namespace) -> "EngineConfig":
        """Override config with command line arguments if provided"""
        # Only override if explicitly provided - preserves config file values
        self.query_url = args.query_url if args.query_url is not None else self.query_url
        self.dashboard = args.dashboard if args.dashboard is not None else self.dashboard
        self.log_level = args.log_level if args.log_level is not None else self.log_level
        self.run_seconds = args.run_seconds if args.run_seconds is not None else self.run_seconds
        self.once = args.once or self.once
        return self


def load_dashboard(path: Path) -> DashboardDefinition:
    """Load and validate a dashboard definition from YAML (or JSON) file"""
    try:
        with open(path, "r") as f:
            data: Dict[str, Any] = yaml.safe_load(f) or {}
    except OSError as e:
        raise ConfigurationError(f"cannot read dashboard file {path}: {e}") from e
    except yaml.YAMLError as e:
        raise ConfigurationError(f"dashboard file {path} is not valid YAML: {e}") from e
    return parse_dashboard(data)
