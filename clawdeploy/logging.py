import logging
import sys
from typing import Any

import structlog


def setup_logging(level: int | str = logging.INFO, *, console: bool = False) -> None:
    """Configure structured logging.

    The HTTP server logs JSON; the console front end renders human-readable
    lines on stderr so they never interleave with progress on stdout.
    """
    renderer: Any = (
        structlog.dev.ConsoleRenderer()
        if console and sys.stderr.isatty()
        else structlog.processors.JSONRenderer()
    )
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )
    if isinstance(level, str):
        level = level.upper()
    logging.basicConfig(level=level, format="%(message)s", stream=sys.stderr)


def bind_job(job_id: str) -> structlog.stdlib.BoundLogger:
    """Logger bound to a single deploy job."""
    return structlog.get_logger("clawdeploy.job").bind(job_id=job_id)
