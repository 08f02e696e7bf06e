"""Structured logging setup using structlog.

One shared processor chain feeds either a coloured ConsoleRenderer (local
runs) or a JSONRenderer (production workers).  Log lines go to **stderr**:
the operator CLI prints its reports and retrieval results on stdout, and
the two streams must not interleave when output is piped.

Standard-library ``logging`` is bridged through the same formatter, so
openai, httpx and aiosqlite records carry the same shape.  Those libraries
are held at WARNING unless the configured level is DEBUG; the embedding
worker polls in a loop and their per-request INFO lines would drown the
job events.
"""

import logging
import os
import sys
from typing import TextIO

import structlog

# Third-party loggers that log every HTTP round-trip or SQL statement.
NOISY_LOGGERS: tuple[str, ...] = ("openai", "httpx", "httpcore", "aiosqlite")


def configure_logging(
    log_level: str = "INFO",
    json_output: bool | None = None,
    stream: TextIO | None = None,
) -> structlog.BoundLogger:
    """Configure structlog for the CLI and the embedding worker.

    Args:
        log_level: DEBUG, INFO, WARNING or ERROR.
        json_output: Force the renderer.  ``None`` picks JSON when
                     ``APP_ENV`` is ``"production"``.
        stream: Destination for every log line.  Defaults to stderr.

    Returns:
        A configured structlog BoundLogger.
    """
    if json_output is None:
        json_output = os.environ.get("APP_ENV", "development") == "production"
    out = stream if stream is not None else sys.stderr
    level = logging.getLevelName(log_level.upper())

    # contextvars first so bindings made by callers reach every line.
    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.dev.set_exc_info,
        structlog.processors.TimeStamper(fmt="iso"),
    ]

    if json_output:
        renderer: structlog.types.Processor = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=out.isatty())

    structlog.configure(
        processors=[*shared_processors, renderer],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=out),
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(out)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                *shared_processors,
                renderer,
            ],
        )
    )

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(level)

    library_level = level if level <= logging.DEBUG else max(level, logging.WARNING)
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(library_level)

    return structlog.get_logger()


def get_logger(name: str) -> structlog.BoundLogger:
    """Named logger; applies default configuration if none has been set."""
    if not structlog.is_configured():
        configure_logging()
    return structlog.get_logger(logger_name=name)
