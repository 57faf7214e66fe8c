"""structlog setup for the harvest ledger.

Log lines carry the current ledger operation (bound per request through
contextvars) and render money as plain decimal strings in both output formats.
"""

import logging
import sys
from decimal import Decimal
from typing import Any, Literal

import structlog

from harvest_ledger.config.settings import get_settings

LogLevel = Literal["DEBUG", "INFO", "WARNING", "ERROR"]
LogFormat = Literal["json", "console"]


def render_decimals(_logger: Any, _method: str, event_dict: dict[str, Any]) -> dict[str, Any]:
    """Show Decimal values as ``"4500.00"`` rather than ``Decimal('4500.00')``."""
    for key, value in event_dict.items():
        if isinstance(value, Decimal):
            event_dict[key] = str(value)
    return event_dict


def _renderer(log_format: LogFormat) -> structlog.types.Processor:
    if log_format == "json":
        return structlog.processors.JSONRenderer()
    return structlog.dev.ConsoleRenderer(
        colors=sys.stdout.isatty(),
        exception_formatter=structlog.dev.plain_traceback,
    )


def configure_logging(level: LogLevel | None = None, format: LogFormat | None = None) -> None:
    """Route structlog through stdlib logging on stdout.

    Args:
        level: Minimum level; defaults to ``LOG_LEVEL``.
        format: ``json`` for log shippers, ``console`` for humans; defaults to ``LOG_FORMAT``.
    """
    settings = get_settings()
    level = level or settings.log_level
    format = format or settings.log_format

    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=getattr(logging, level))

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            render_decimals,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            _renderer(format),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)


def bind_operation(operation: str, **context: object) -> None:
    """Bind the current ledger operation to every log line of this request.

    Operations are request-scoped, so any context left over from a previous
    request in the same task is cleared first.
    """
    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(operation=operation, **context)
