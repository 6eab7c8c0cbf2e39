#!/usr/bin/env python3
"""
Entry point for one alert evaluation cycle.

The scheduler (cron, a timer function, Kubernetes CronJob...) runs this
once per minute. Each run evaluates every active project once and exits.

Usage:
    python scripts/run_alert_cycle.py

    # With a specific settings file and debug logging
    python scripts/run_alert_cycle.py --config config/settings.yaml --log-level DEBUG
"""

import argparse
import sys
from pathlib import Path

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

import structlog
from dotenv import load_dotenv

from alert_manager.config import load_settings
from alert_manager.main import AlertManager


def setup_logging(log_level: str = "INFO", log_file: str = None) -> None:
    """Configure structured logging for the alert cycle."""
    import logging

    handlers = [logging.StreamHandler(sys.stdout)]

    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_file))

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            structlog.processors.JSONRenderer(),
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        level=getattr(logging, log_level.upper()),
        handlers=handlers,
    )


def main():
    parser = argparse.ArgumentParser(
        description="Alert Manager - run one evaluation cycle",
    )
    parser.add_argument(
        "--config",
        type=str,
        default="config/settings.yaml",
        help="Path to settings file",
    )
    parser.add_argument(
        "--log-level",
        type=str,
        default=None,
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (overrides settings)",
    )
    parser.add_argument(
        "--log-file",
        type=str,
        default=None,
        help="Optional path to a log file",
    )

    args = parser.parse_args()

    # Load environment variables
    load_dotenv()

    try:
        settings = load_settings(args.config)
    except ValueError as e:
        setup_logging(args.log_level or "INFO", args.log_file)
        structlog.get_logger(__name__).error("invalid_settings", error=str(e))
        sys.exit(2)

    setup_logging(args.log_level or settings.log_level, args.log_file)
    logger = structlog.get_logger(__name__)

    try:
        manager = AlertManager(settings)
    except Exception as e:
        logger.exception("alert_manager_startup_failed", error=str(e))
        sys.exit(1)

    with manager:
        report = manager.run_cycle()

    logger.info(
        "alert_cycle_complete",
        projects_processed=report.projects_processed,
        projects_failed=report.projects_failed,
        published=report.published,
        dead_lettered=report.dead_lettered,
    )


if __name__ == "__main__":
    main()
