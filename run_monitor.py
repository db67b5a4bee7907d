#!/usr/bin/env python
"""
Process Health API Server Runner.

Usage:
    python run_monitor.py
    python run_monitor.py --config health.yaml

Or with PM2:
    pm2 start run_monitor.py --interpreter python
"""

import argparse
import logging
import os
import sys
from pathlib import Path

from aiohttp import web

from process_health import HealthConfig, HealthMonitorError, create_health_service, set_config
from process_health.api import create_health_app


# Setup logging
logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format='%(asctime)s | %(levelname)s | %(name)s | %(message)s',
    datefmt='%Y-%m-%d %H:%M:%S'
)

logger = logging.getLogger(__name__)


def main():
    """Run the process health API server."""
    parser = argparse.ArgumentParser(description="Process health monitor")
    parser.add_argument("--config", type=Path, help="YAML configuration file")
    args = parser.parse_args()

    try:
        config = HealthConfig.from_yaml(args.config) if args.config else HealthConfig.from_env()
        set_config(config)
        service = create_health_service(config)
    except HealthMonitorError as e:
        logger.error(f"Failed to start health monitor: {e.message}")
        sys.exit(1)

    app = create_health_app(service, autostart_monitor=config.monitor.autostart)
    logger.info(
        f"Starting process health API on {config.api.host}:{config.api.port} "
        f"(source={service.data_source})"
    )
    web.run_app(app, host=config.api.host, port=config.api.port, print=None)


if __name__ == "__main__":
    main()
