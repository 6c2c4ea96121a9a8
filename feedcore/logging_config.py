"""Structured logging for feedcore: structlog rendering through stdlib logging."""

import logging
import os
import sys

import structlog

LOG_FORMAT_ENV = "FEEDCORE_LOG_FORMAT"


def configure_logging(level: str = "INFO") -> None:
    """Route structlog through the root logger at ``level``.

    Output is JSON when stderr is not a terminal (or FEEDCORE_LOG_FORMAT=json)
    and colored key/value lines otherwise.
    """
    numeric = getattr(logging, level.upper(), logging.INFO)
    logging.basicConfig(format="%(message)s", stream=sys.stderr)
    logging.getLogger().setLevel(numeric)
    # Third-party HTTP clients are noisy at INFO
    for name in ("httpx", "httpcore"):
        logging.getLogger(name).setLevel(max(numeric, logging.WARNING))

    renderer = (
        structlog.processors.JSONRenderer()
        if _is_json_mode()
        else structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty())
    )
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.format_exc_info,
            renderer,
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


def _is_json_mode() -> bool:
    fmt = os.environ.get(LOG_FORMAT_ENV, "").lower()
    if fmt in ("json", "console"):
        return fmt == "json"
    return not sys.stderr.isatty()


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)
