"""Observability helpers: structured logging, CloudWatch Embedded Metrics and X-Ray tracing.

Call `init_observability` once, before the FastAPI app starts serving.
Swipe commits publish their metrics through ``metric_scope`` (see swipe.py);
set ``AWS_EMF_ENVIRONMENT=Local`` to print them to stdout instead of
sending them to the CloudWatch agent.
"""
from __future__ import annotations

import logging
import os
from typing import Optional

from aws_embedded_metrics import metric_scope
import structlog

# X-Ray is optional – avoid hard dependency when running locally without AWS
try:
    from aws_xray_sdk.core import xray_recorder, patch_all  # type: ignore
    from aws_xray_sdk.ext.fastapi.middleware import XRayMiddleware  # type: ignore
except ImportError:  # pragma: no cover
    xray_recorder = None  # type: ignore
    patch_all = None  # type: ignore
    XRayMiddleware = None  # type: ignore

__all__ = [
    "init_observability",
    "metric_scope",  # re-export for convenience
]

_configured = False


def configure_logging(log_format: str = "json", log_level: str = "INFO") -> None:
    """Route stdlib and structlog output through one renderer."""

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
    if not any(isinstance(h, logging.StreamHandler) for h in root_logger.handlers):
        root_logger.addHandler(logging.StreamHandler())
    root_logger.setLevel(log_level)

    # Silence noisy loggers
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)


def _setup_tracing(app: Optional["FastAPI"], segment_name: str = "Cheer") -> None:  # noqa: F821
    """Attach AWS X-Ray SDK middleware if available & ENABLE_XRAY=1."""

    logger = structlog.get_logger(__name__)

    if os.getenv("ENABLE_XRAY", "0") != "1":
        return

    if xray_recorder is None or patch_all is None or XRayMiddleware is None:
        logger.warning("aws_xray_sdk not installed; skipping X-Ray setup")
        return

    # Patch common libs (sqlite3/psycopg2, httpx)
    patch_all()

    if app is not None:
        app.add_middleware(XRayMiddleware, recorder=xray_recorder, segment_name=segment_name)


def init_observability(app: Optional["FastAPI"] = None) -> None:  # noqa: F821
    """Setup logging & tracing. Safe to call more than once."""
    global _configured

    if not _configured:
        configure_logging(
            log_format=os.getenv("LOG_FORMAT", "json").lower(),
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        )
        _configured = True
    _setup_tracing(app)

    structlog.get_logger(__name__).info("Observability initialized")
