"""Structured logging for gitstate.

structlog is configured once by the embedding process:

- console rendering by default
- JSON rendering when ``GITSTATE_LOG_FORMAT=json``
- level taken from ``GITSTATE_LOG_LEVEL`` (default ``INFO``)

Usage:
    from gitstate.logging import configure_logging, get_logger

    configure_logging()
    log = get_logger(__name__).bind(repo_url="ssh://git@host/config.git")
    log.info("repo_refreshed", duration_ms=812)
"""

from __future__ import annotations

import logging
import os
import sys
from typing import Any

import structlog
from structlog.types import Processor

__all__ = [
    "bind_context",
    "clear_context",
    "configure_logging",
    "get_logger",
]

LOG_FORMAT_ENV_VAR = "GITSTATE_LOG_FORMAT"
LOG_LEVEL_ENV_VAR = "GITSTATE_LOG_LEVEL"
DEFAULT_LOG_LEVEL = "INFO"


def _level_from_env() -> int:
    name = os.environ.get(LOG_LEVEL_ENV_VAR, DEFAULT_LOG_LEVEL).upper()
    return getattr(logging, name, logging.INFO)


def _json_requested() -> bool:
    return os.environ.get(LOG_FORMAT_ENV_VAR, "").lower() == "json"


def _shared_processors() -> list[Processor]:
    """Processors applied to both structlog and foreign stdlib records."""
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]


def configure_logging(
    *,
    force_json: bool = False,
    level: int | None = None,
) -> None:
    """Configure structlog and the stdlib root logger.

    Safe to call more than once; each call replaces the previous handler.

    Args:
        force_json: Emit JSON regardless of ``GITSTATE_LOG_FORMAT``.
        level: Explicit log level. Defaults to ``GITSTATE_LOG_LEVEL``.
    """
    use_json = force_json or _json_requested()
    log_level = level if level is not None else _level_from_env()

    renderer: Processor
    processors = _shared_processors()
    if use_json:
        renderer = structlog.processors.JSONRenderer()
        processors.append(structlog.processors.dict_tracebacks)
    else:
        # ConsoleRenderer formats exc_info itself
        renderer = structlog.dev.ConsoleRenderer(
            colors=sys.stderr.isatty(),
            exception_formatter=structlog.dev.plain_traceback,
        )

    # rendering happens once, in the handler's ProcessorFormatter
    structlog.configure(
        processors=[
            *processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    for existing in root_logger.handlers[:]:
        root_logger.removeHandler(existing)

    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(log_level)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                renderer,
            ],
            foreign_pre_chain=_shared_processors(),
        )
    )
    root_logger.addHandler(handler)


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    """Return a structlog logger, optionally named after a module."""
    log: structlog.stdlib.BoundLogger = structlog.get_logger(name)
    return log


def bind_context(**context: Any) -> None:
    """Bind key/value pairs into every subsequent log event of this task.

    Uses contextvars, so the binding follows the current asyncio task.
    """
    structlog.contextvars.bind_contextvars(**context)


def clear_context() -> None:
    """Drop everything bound with :func:`bind_context`."""
    structlog.contextvars.clear_contextvars()
