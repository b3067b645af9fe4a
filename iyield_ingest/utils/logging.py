"""
Structured logging configuration using structlog.
"""
import contextvars
import logging
import sys
from collections.abc import Mapping
from typing import Any

import structlog
from structlog.types import Processor


# Third-party loggers that are chatty at INFO
_NOISY_LOGGERS = ("httpx", "httpcore", "googleapiclient.discovery_cache")


def setup_logging(level: str = "INFO", format_type: str = "console") -> None:
    """
    Configure structlog for the CLI; all output goes to stderr.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR)
        format_type: ``json`` for one object per line, anything else for the
            console renderer
    """
    numeric_level = getattr(logging, level.upper())
    logging.basicConfig(format="%(message)s", stream=sys.stderr, level=numeric_level)
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(numeric_level, logging.WARNING))

    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
    ]
    if format_type == "json":
        processors += [structlog.processors.format_exc_info, structlog.processors.JSONRenderer()]
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty()))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(numeric_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )


class LogContext:
    """
    Context manager binding per-item log context (e.g. the file being synced).

    On exit every key is restored to what it was before entry, so nested
    contexts that rebind the same key unwind correctly.
    """

    def __init__(self, **kwargs: Any):
        self.context = kwargs
        self._tokens: Mapping[str, contextvars.Token] = {}

    def __enter__(self) -> "LogContext":
        self._tokens = structlog.contextvars.bind_contextvars(**self.context)
        return self

    def __exit__(self, *args: Any) -> None:
        structlog.contextvars.reset_contextvars(**self._tokens)
        self._tokens = {}


def log_error(
    logger: structlog.stdlib.BoundLogger,
    event: str,
    error: BaseException,
    **context: Any,
) -> None:
    """Log a recoverable error as a warning with its type and message."""
    logger.warning(
        event,
        error_type=type(error).__name__,
        error_message=str(error),
        **context,
    )
