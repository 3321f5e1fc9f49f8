"""Structured logging configuration using structlog."""

from __future__ import annotations

import logging
import sys
from typing import cast

import structlog
from structlog.typing import FilteringBoundLogger

# Ordered from quietest to noisiest; index matches the -v count.
LOG_LEVELS: tuple[str, ...] = ("warning", "info", "debug", "trace")


def level_for_verbosity(verbosity: int) -> str:
    """Map a repeated -v count onto a log level name."""
    return LOG_LEVELS[min(max(verbosity, 0), len(LOG_LEVELS) - 1)]


_trace_enabled: bool = False


def is_trace_enabled() -> bool:
    """Return True when setup_logging() was last called with level "trace"."""
    return _trace_enabled


def setup_logging(level: str = "warning") -> None:
    """Configure structlog for JSON output to stderr.

    "trace" filters structlog at DEBUG and also turns on stdlib logging at
    DEBUG, which surfaces kubernetes_asyncio's request/response logging.
    """
    global _trace_enabled

    level = level.lower()
    _trace_enabled = level == "trace"
    log_level = logging.DEBUG if _trace_enabled else getattr(logging, level.upper(), logging.WARNING)

    logging.basicConfig(
        stream=sys.stderr,
        level=logging.DEBUG if _trace_enabled else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
        force=True,
    )

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.dev.set_exc_info,
            structlog.processors.TimeStamper(fmt="iso", utc=True, key="ts"),
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )


def get_logger(component: str) -> FilteringBoundLogger:
    """Get a logger bound with a component name."""
    return cast(FilteringBoundLogger, structlog.get_logger(component=component))
