"""Structured logging for the M365 bulk recovery client.

Every public operation (start, progress, wait, cancel, complete) runs under a
fresh operation id. The id and the operation name are attached to each log
line emitted while that operation is in flight, so one recovery's submit and
poll traffic can be grepped out of a long batch log.

Logs go to stderr. Command output (tables, instance ids) stays on stdout.

Usage:
    from m365_recovery.core.logging import get_logger, start_operation

    logger = get_logger(__name__)

    start_operation("cancel_bulk_recovery", instance_id=instance_id)
    logger.info("Cancel requested")
"""

import logging
import sys
import uuid
from contextvars import ContextVar
from typing import Any, TextIO

import structlog

_operation_id: ContextVar[str | None] = ContextVar("operation_id", default=None)

# Chatty at DEBUG; one line per pooled connection
_NOISY_LOGGERS = ("urllib3", "requests")


def set_correlation_id(correlation_id: str | None) -> None:
    """Set (or clear, with None) the operation id for the current context."""
    _operation_id.set(correlation_id)


def get_correlation_id() -> str | None:
    return _operation_id.get()


def start_operation(operation: str, **context: Any) -> str:
    """Begin a new logged operation and return its id.

    Replaces any context left over from the previous operation in this
    thread, so a long-lived service object never leaks instance ids from
    one call into the next.
    """
    operation_id = str(uuid.uuid4())
    set_correlation_id(operation_id)
    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(operation=operation, **context)
    return operation_id


def add_operation_id(
    logger: structlog.types.WrappedLogger,
    method_name: str,
    event_dict: dict[str, Any],
) -> dict[str, Any]:
    """Structlog processor stamping the current operation id."""
    operation_id = _operation_id.get()
    if operation_id is not None:
        event_dict.setdefault("operation_id", operation_id)
    return event_dict


def _renderer(json_output: bool) -> list[structlog.types.Processor]:
    if json_output:
        return [structlog.processors.format_exc_info, structlog.processors.JSONRenderer()]
    return [structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty())]


def configure_logging(
    log_level: str = "INFO",
    json_output: bool = False,
    stream: TextIO | None = None,
) -> None:
    """Configure structlog and the stdlib root logger.

    Args:
        log_level: DEBUG, INFO, WARNING or ERROR
        json_output: One JSON object per line (for unattended batch runs)
            instead of the coloured console format
        stream: Where log lines go. Defaults to stderr.
    """
    level = getattr(logging, log_level.upper())
    logging.basicConfig(format="%(message)s", stream=stream or sys.stderr, level=level)
    # basicConfig is a no-op once root has a handler
    logging.getLogger().setLevel(level)
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))

    processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        add_operation_id,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        *_renderer(json_output),
    ]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    """Return a structlog logger, conventionally ``get_logger(__name__)``."""
    return structlog.get_logger(name)
