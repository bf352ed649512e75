"""Structured logging setup for the vault policy harness.

Every module obtains its logger with ``get_logger(__name__)`` and logs an
event string plus keyword context::

    logger.info("Baseline vault ready", vault_name=name, reused=True)

``configure_logging`` is called once by the CLI. Library use without it falls
back to structlog's default console output.
"""

import logging
import sys
from typing import Any

import structlog


def configure_logging(level: str = "INFO", json_logs: bool = False) -> None:
    """Configure structlog and the stdlib root logger.

    Args:
        level: Log level name (DEBUG, INFO, WARNING, ERROR).
        json_logs: Emit one JSON object per line instead of console output.
    """
    log_level = logging.getLevelName(level.upper())
    if not isinstance(log_level, int):
        log_level = logging.INFO

    logging.basicConfig(format="%(message)s", stream=sys.stderr, level=log_level)

    renderer: Any
    if json_logs:
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty())

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str) -> Any:
    """Return a bound structlog logger for a module.

    Args:
        name: Logger name, normally ``__name__``.

    Returns:
        A structlog bound logger.
    """
    return structlog.get_logger(name)


def bind_run_context(run_id: str, subscription_id: str) -> None:
    """Bind run-wide identifiers to every subsequent log line.

    Args:
        run_id: The harness run identifier.
        subscription_id: The target subscription.
    """
    structlog.contextvars.bind_contextvars(run_id=run_id, subscription_id=subscription_id)
