"""Observability helpers: structured JSON logging and CloudWatch Embedded Metrics.

Import `init_observability` and call it early in your FastAPI app to activate.
Metrics go through `metric_scope`; set AWS_EMF_ENVIRONMENT=Local to print
them to stdout instead of shipping them to a CloudWatch agent.
"""
from __future__ import annotations

import logging
import os

from aws_embedded_metrics import metric_scope
import structlog

__all__ = [
    "init_observability",
    "metric_scope",  # re-export for convenience
]

_initialized = False


def _setup_logging() -> None:
    """Configure structlog for structured logging (JSON or console)."""

    log_format = os.getenv("LOG_FORMAT", "json").lower()
    log_level = os.getenv("LOG_LEVEL", "INFO").upper()

    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]

    if log_format == "json":
        final_processor = structlog.processors.JSONRenderer()
    else:
        final_processor = structlog.dev.ConsoleRenderer()

    structlog.configure(
        processors=shared_processors + [final_processor],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    root_logger = logging.getLogger()
    handler = logging.StreamHandler()
    # No formatter needed here, structlog handles it via processors
    root_logger.addHandler(handler)
    root_logger.setLevel(log_level)

    # Silence noisy loggers
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)


def init_observability() -> None:
    """Setup logging. Safe to call more than once; only the first call counts."""
    global _initialized
    if _initialized:
        return
    _setup_logging()
    _initialized = True

    structlog.get_logger(__name__).info("Observability initialized")
