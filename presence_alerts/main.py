"""
Main application entry point for the presence alert engine.
"""
import argparse
from typing import List, Optional

import uvicorn
from loguru import logger
from prometheus_client import start_http_server

from .api.app import create_app
from .config import load_settings
from .service import PresenceAlertService
from .utils.logging import setup_logging


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Room presence alert engine")
    parser.add_argument("--config", default=None, help="Optional YAML settings file")
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> None:
    """Main entry point."""
    args = parse_args(argv)
    settings = load_settings(args.config)
    setup_logging(settings.log_level, settings.log_file)

    logger.info("=" * 60)
    logger.info(f"{settings.app_name}")
    logger.info("=" * 60)
    logger.info(f"Max occupancy: {settings.max_occupancy}")
    logger.info(f"Idle timeout: {settings.idle_timeout_ms / 60000:g} min")
    logger.info(f"Anomaly timeout: {settings.anomaly_timeout_ms / 3600000:g} h")
    logger.info(f"Business hours: {settings.business_hours_start}h-{settings.business_hours_end}h "
                f"days {settings.business_days} ({settings.timezone})")
    logger.info(f"Store: {settings.db_type}")
    logger.info("=" * 60)

    if settings.enable_metrics:
        start_http_server(settings.metrics_port)
        logger.info(f"Metrics server started on port {settings.metrics_port}")

    service = PresenceAlertService(settings)
    app = create_app(service)
    # uvicorn handles SIGINT/SIGTERM and runs the lifespan shutdown, which drains the lanes
    uvicorn.run(app, host=settings.api_host, port=settings.api_port, log_level=settings.log_level.lower())


if __name__ == '__main__':
    main()
