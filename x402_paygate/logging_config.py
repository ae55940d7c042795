"""
Structured logging configuration using structlog.

JSON lines when LOG_FORMAT=json, coloured console output otherwise.
Everything goes to stdout; the process manager owns persistence.
"""

import logging
import sys

import structlog

from x402_paygate.config import Settings, settings


def setup_logging(config: Settings = settings) -> None:
    """
    Configure structlog and route stdlib logging (uvicorn, APScheduler) to stdout.

    Call this once at application startup.
    """
    level = getattr(logging, config.log_level.upper(), logging.INFO)

    if config.log_format == "json":
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty())

    structlog.configure(
        processors=[
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            # Pulls in the per-request correlation_id
            structlog.contextvars.merge_contextvars,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=level,
    )

    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("apscheduler").setLevel(logging.INFO)


def get_logger(name: str | None = None):
    """Return a structlog logger, optionally bound to a logger name."""
    logger = structlog.get_logger()
    if name:
        logger = logger.bind(logger_name=name)
    return logger
