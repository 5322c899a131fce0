from __future__ import annotations

import logging
import sys
from typing import TYPE_CHECKING

import structlog

if TYPE_CHECKING:
    from pathlib import Path

LOGGER_NAME = "zhankai"


def setup_logging(filename: str | Path | None = None, *, debug: bool = False) -> structlog.BoundLogger:
    """Set up structured logging for the zhankai module.

    Verbosity is decided here, once per run; components receive the returned
    logger (or fetch it with `get_logger`) and never change the level.

    Args:
        filename: Optional path to a log file. If None, logs are written to stderr.
        debug: Emit debug-level events when True, INFO and above otherwise.

    Returns:
        A structlog logger instance configured for the zhankai module.
    """
    level = logging.DEBUG if debug else logging.INFO
    handlers: list[logging.Handler] = []
    if filename:
        handlers.append(logging.FileHandler(str(filename), encoding="utf-8"))
    else:
        handlers.append(logging.StreamHandler(sys.stderr))

    logging.basicConfig(
        level=level,
        handlers=handlers,
        format="%(message)s",
        force=True,
    )
    structlog.configure(
        processors=[
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=False,
    )
    return get_logger()


def get_logger() -> structlog.BoundLogger:
    """Return the zhankai logger, bound lazily to the current configuration."""
    return structlog.get_logger(LOGGER_NAME)
