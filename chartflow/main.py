#!/usr/bin/env python3
"""
chartflow runner

Flow:
- Load engine config (YAML, then CHARTFLOW_* env / .env, then CLI overrides)
- Load and validate the dashboard definition (--dashboard)
- Mount every chart as visible: resolve renderers, initial load, start polling
- --once: print one JSON state report and exit
- otherwise keep polling until interrupted (or --run-seconds), then print the
  final report
"""

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Any, Dict

from .config import EngineConfig, load_dashboard
from .errors import ConfigurationError
from .query_client import ChartDataHttpClient, HttpChartDataService
from .session import DashboardSession
from .state import ChartRuntimeState

logger = logging.getLogger("chartflow")


def state_report(session: DashboardSession) -> Dict[str, Any]:
    report = {}
    for chart in session.charts():
        state = session.get_chart_state(chart.id)
        outcome = session.render_chart(chart.id)
        entry = state.to_dict()
        entry["renderer"] = outcome.renderer_key
        entry["stale"] = outcome.stale
        report[chart.id] = entry
    return report


def log_state_change(state: ChartRuntimeState) -> None:
    if state.last_error is not None:
        logger.info("chart %s: %s (%s, %d consecutive failures)", state.chart_id, state.phase.value,
                    state.last_error.kind.value, state.consecutive_failures)
    else:
        logger.debug("chart %s: %s", state.chart_id, state.phase.value)


async def run(config: EngineConfig) -> Dict[str, Any]:
    """Main session orchestration."""
    if not config.dashboard:
        raise ConfigurationError("no dashboard given (use --dashboard or the 'dashboard' config key)")
    dashboard = load_dashboard(Path(config.dashboard))

    service = HttpChartDataService(ChartDataHttpClient(config.query_url, token=config.api_token))

    async with DashboardSession(service, config) as session:
        session.coordinator.add_listener(log_state_change)
        session.mount_dashboard(dashboard)

        outcomes = await session.show_all()
        ok = sum(1 for o in outcomes.values() if o and o.success)
        logger.info(f"initial load: {ok}/{len(outcomes)} charts loaded")

        if not config.once:
            logger.info("polling %d charts; press Ctrl+C to stop", len(session.scheduler.scheduled_chart_ids()))
            if config.run_seconds:
                await asyncio.sleep(config.run_seconds)
            else:
                await asyncio.Event().wait()

        return state_report(session)


def main():
    parser = argparse.ArgumentParser(description="chartflow dashboard refresh engine")
    parser.add_argument("--config", "-c", type=Path, default=Path("chartflow.yml"),
                        help="YAML configuration file (default: chartflow.yml)")
    parser.add_argument("--dashboard", "-d",
                        help="dashboard definition file (YAML or JSON)")
    parser.add_argument("--query-url", dest="query_url",
                        help="query service base URL (e.g., http://dash:8000)")
    parser.add_argument("--run-seconds", dest="run_seconds", type=float,
                        help="stop polling after this many seconds")
    parser.add_argument("--once", action="store_true",
                        help="load every chart once, print the report and exit")
    parser.add_argument("--log-level",
                        choices=["DEBUG", "INFO", "WARNING", "ERROR"], help="logging level")
    args = parser.parse_args()

    # Load config: YAML first, then environment, then CLI overrides
    config = EngineConfig.from_file(args.config).override_with_env().override_with_args(args)

    # Configure logging
    logging.basicConfig(level=getattr(logging, config.log_level),
                        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s")
    logger.info(f"chartflow starting: query_url={config.query_url}, dashboard={config.dashboard}")

    try:
        report = asyncio.run(run(config))
    except ConfigurationError as e:
        logger.error(f"configuration error: {e}")
        raise SystemExit(2)
    except KeyboardInterrupt:
        print("\nInterrupted. Bye!")
        return

    json.dump(report, sys.stdout, indent=2)
    print()


if __name__ == "__main__":
    main()
