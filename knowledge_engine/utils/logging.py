"""Structured logging setup using structlog.

One shared processor chain feeds either a ConsoleRenderer (development)
or a JSONRenderer (``APP_ENV=production``).  Engine modules log through
``structlog.get_logger(logger_name=__name__)`` with snake_case event names;
ingestion binds ``agent_id`` and ``document_id`` as context variables, so
every event emitted while a document is processed carries both.

Standard-library ``logging`` goes through the same formatter.  The SDK and
HTTP client loggers (openai, anthropic, httpx) are noisy at INFO, logging
every request, so they are held at WARNING unless DEBUG is requested.
"""

import logging
import os
import sys
from typing import TextIO

import structlog

_THIRD_PARTY_LOGGERS = ("httpx", "httpcore", "openai", "anthropic", "aiosqlite", "trafilatura")


def third_party_level(log_level: str) -> int:
    """Return the level applied to SDK / HTTP client loggers for *log_level*."""
    level = logging.getLevelName(log_level.upper())
    if not isinstance(level, int):
        level = logging.INFO
    return level if level <= logging.DEBUG else max(level, logging.WARNING)


def configure_logging(
    log_level: str = "INFO",
    json_output: bool | None = None,
    stream: TextIO | None = None,
) -> structlog.BoundLogger:
    """Configure structlog and the stdlib root logger.

    Args:
        log_level: Level name (DEBUG, INFO, WARNING, ERROR).
        json_output: Force JSON (True) or console (False) rendering.  When
            ``None``, JSON is used if ``APP_ENV`` is ``production``.
        stream: Destination for log lines; defaults to stderr so command
            output on stdout stays clean.

    Returns:
        The root structlog logger.
    """
    if json_output is None:
        json_output = os.environ.get("APP_ENV", "development") == "production"
    out = stream or sys.stderr

    # contextvars first so bound agent_id / document_id are merged before rendering.
    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.dev.set_exc_info,
        structlog.processors.TimeStamper(fmt="iso"),
    ]
    renderer: structlog.types.Processor = (
        structlog.processors.JSONRenderer()
        if json_output
        else structlog.dev.ConsoleRenderer(colors=out.isatty())
    )

    level = logging.getLevelName(log_level.upper())
    structlog.configure(
        processors=[*shared_processors, renderer],
        wrapper_class=structlog.make_filtering_bound_logger(
            level if isinstance(level, int) else logging.INFO
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=out),
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(out)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                renderer,
            ],
            foreign_pre_chain=shared_processors,
        )
    )
    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(log_level.upper())

    quiet = third_party_level(log_level)
    for name in _THIRD_PARTY_LOGGERS:
        logging.getLogger(name).setLevel(quiet)

    return structlog.get_logger(logger_name="knowledge_engine")
