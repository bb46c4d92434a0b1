"""Logging for the feed service and broadcaster, rendered by structlog.

Both entry points call ``setup_logging`` once with the ``logging`` section of
the config. Records from library loggers (websockets, httpx) go through the
same renderer but are capped at their own level, so reconnect churn and
per-request lines do not bury feed events.
"""

from __future__ import annotations

import logging
import sys
from collections.abc import Mapping

import structlog

# Libraries that log every handshake or request at INFO.
DEFAULT_LIBRARY_LEVELS: dict[str, str] = {
    "websockets": "WARNING",
    "httpx": "WARNING",
    "httpcore": "WARNING",
}


def _level(name: str) -> int:
    return logging.getLevelNamesMapping().get(name.upper(), logging.INFO)


def setup_logging(
    level: str = "INFO",
    log_format: str = "json",
    library_levels: Mapping[str, str] | None = None,
) -> None:
    """Route structlog and stdlib records through one stderr handler.

    Args:
        level: Root level name (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        log_format: "json" for one object per line, "console" for humans.
        library_levels: Per-logger level caps; defaults to
            ``DEFAULT_LIBRARY_LEVELS``.
    """
    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
    ]

    if log_format == "console":
        # ConsoleRenderer formats exc_info itself.
        exc_processors: list[structlog.types.Processor] = []
        renderer: structlog.types.Processor = structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty())
    else:
        exc_processors = [structlog.processors.dict_tracebacks]
        renderer = structlog.processors.JSONRenderer()

    structlog.configure(
        processors=[
            *shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=shared_processors,
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            *exc_processors,
            renderer,
        ],
    )

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(formatter)

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(_level(level))

    caps = DEFAULT_LIBRARY_LEVELS if library_levels is None else library_levels
    for name, cap in caps.items():
        logging.getLogger(name).setLevel(_level(cap))


def get_logger(name: str | None = None, **initial_context) -> structlog.stdlib.BoundLogger:
    """Get a structlog logger, optionally pre-bound with context."""
    logger = structlog.get_logger(name)
    if initial_context:
        logger = logger.bind(**initial_context)
    return logger
