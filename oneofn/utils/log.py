"""
Structured logging setup.

Modules obtain loggers with ``structlog.get_logger(__name__)``; nothing is
configured at import time. Applications embedding :mod:`oneofn` call
:func:`setup_logging` once, optionally driven by the ``ONEOFN_LOG_LEVEL``
environment variable.
"""

import logging
import os
from typing import Optional

import structlog

LOG_LEVEL_ENV = "ONEOFN_LOG_LEVEL"

_LEVELS = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARNING": logging.WARNING,
    "ERROR": logging.ERROR,
    "CRITICAL": logging.CRITICAL,
}


def level_from_env(default: int = logging.INFO) -> int:
    """Logging level named by ``ONEOFN_LOG_LEVEL``, or ``default``."""
    return _LEVELS.get(os.getenv(LOG_LEVEL_ENV, "").upper(), default)


def setup_logging(level: Optional[int] = None) -> None:
    """
    Configure structured logging.

    Parameters
    ----------
    level : int, optional
        The logging level to use. Defaults to the level named by
        ``ONEOFN_LOG_LEVEL``, or INFO.
    """
    if level is None:
        level = level_from_env()

    logging.basicConfig(level=level)
    logging.getLogger().setLevel(level)

    processors = [
        structlog.stdlib.filter_by_level,
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.dev.ConsoleRenderer(
            colors=False,
            exception_formatter=structlog.dev.plain_traceback,
            pad_event=50,
        ),
    ]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
