"""
deferdb logging - structured logging and event sinks.

Configures structlog once per process and provides the two ``EventSink``
implementations the core ships with:

- ``NullEventSink``: discards everything (the default for ``Connection``)
- ``StructlogEventSink``: forwards events to a structlog logger

Architecture:
    ::

        Connection / EntityRegistry / Row
                │  sink.error("commit.failed", query=..., values=...)
                ▼
        StructlogEventSink ──► structlog BoundLogger ──► JSON / console

        Severity mapping:
            debug      → debug
            info       → info
            error      → error
            alert      → critical  (severity="alert")
            emergency  → critical  (severity="emergency")

Examples:
    >>> from deferdb.core.logging import configure_logging, get_logger
    >>> configure_logging(level="INFO", json_format=True)
    >>> logger = get_logger(__name__)
    >>> logger.info("connect.ok", backend="sqlite")

Tags:
    logging, structlog, observability, event-sink, deferdb
"""

from __future__ import annotations

import logging
import sys
from typing import Any

import structlog
from structlog.types import EventDict, Processor, WrappedLogger

# Store service name for metadata
_SERVICE_NAME = "deferdb"

# Track if logging has been configured
_configured = False


def _add_service_metadata(
    logger: WrappedLogger, method_name: str, event_dict: EventDict
) -> EventDict:
    """Add service-level metadata to all logs."""
    event_dict.setdefault("service.name", _SERVICE_NAME)
    return event_dict


def configure_logging(
    level: str = "INFO",
    json_format: bool | None = None,
    service: str = "deferdb",
    add_timestamp: bool = True,
    force: bool = False,
) -> None:
    """Configure structured logging for the application.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR)
        json_format: True for JSON, False for console, None for auto (JSON if not tty)
        service: Service name to include in logs
        add_timestamp: Include ISO timestamp in logs
        force: Reconfigure even if already configured
    """
    global _SERVICE_NAME, _configured

    if _configured and not force:
        return

    _SERVICE_NAME = service

    if json_format is None:
        json_format = not sys.stdout.isatty()

    shared_processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.dev.set_exc_info,
        _add_service_metadata,
    ]

    if add_timestamp:
        shared_processors.insert(0, structlog.processors.TimeStamper(fmt="iso"))

    if json_format:
        shared_processors.append(structlog.processors.format_exc_info)
        renderer: Processor = structlog.processors.JSONRenderer(default=str)
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=True)

    structlog.configure(
        processors=shared_processors + [renderer],
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, level.upper())
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, level.upper()),
    )

    _configured = True


def is_configured() -> bool:
    """Check if logging has been configured."""
    return _configured


def get_logger(name: str | None = None) -> Any:
    """Get a structlog logger (usually ``get_logger(__name__)``)."""
    return structlog.get_logger(name)


class NullEventSink:
    """Event sink that drops every event."""

    def debug(self, event: str, **fields: Any) -> None:
        pass

    def info(self, event: str, **fields: Any) -> None:
        pass

    def error(self, event: str, **fields: Any) -> None:
        pass

    def alert(self, event: str, **fields: Any) -> None:
        pass

    def emergency(self, event: str, **fields: Any) -> None:
        pass


class StructlogEventSink:
    """Event sink backed by a structlog logger.

    structlog has no ``alert``/``emergency`` levels, so both are emitted
    at ``critical`` with the original severity kept in a ``severity`` key.
    """

    def __init__(self, logger: Any = None, **bound: Any):
        logger = logger if logger is not None else get_logger("deferdb")
        self._logger = logger.bind(**bound) if bound else logger

    def debug(self, event: str, **fields: Any) -> None:
        self._logger.debug(event, **fields)

    def info(self, event: str, **fields: Any) -> None:
        self._logger.info(event, **fields)

    def error(self, event: str, **fields: Any) -> None:
        self._logger.error(event, **fields)

    def alert(self, event: str, **fields: Any) -> None:
        self._logger.critical(event, severity="alert", **fields)

    def emergency(self, event: str, **fields: Any) -> None:
        self._logger.critical(event, severity="emergency", **fields)


__all__ = [
    "configure_logging",
    "is_configured",
    "get_logger",
    "NullEventSink",
    "StructlogEventSink",
]
