"""Structured logging setup.

Everything is written to stderr: on a stdio transport stdout is the protocol
channel and must only ever carry JSON-RPC lines.
"""

import logging
import sys
from contextvars import ContextVar
from typing import Any

import structlog

from mcpengine.config.loader import get_settings

# Context variable for the JSON-RPC id of the request being handled
request_id_var: ContextVar[str] = ContextVar("request_id", default="")


def get_request_id() -> str:
    """Get the current request ID."""
    return request_id_var.get()


def set_request_id(request_id: int | str | None) -> str:
    """Set the request ID for the current context."""
    value = "" if request_id is None else str(request_id)
    request_id_var.set(value)
    return value


def add_request_id(
    logger: logging.Logger, method_name: str, event_dict: dict[str, Any]
) -> dict[str, Any]:
    """Add request ID to log records."""
    request_id = get_request_id()
    if request_id:
        event_dict["request_id"] = request_id
    return event_dict


def _configure_structlog(level: int, log_format: str) -> None:
    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        add_request_id,
        structlog.processors.format_exc_info,
    ]

    if log_format == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=False))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        # Not cached so logging/setLevel applies to loggers already handed out
        cache_logger_on_first_use=False,
    )


def _parse_level(level: str) -> int:
    value = logging.getLevelName(level.upper())
    if not isinstance(value, int):
        raise ValueError(f"Unknown log level: {level}")
    return value


def setup_logging() -> None:
    """Set up structured logging."""
    settings = get_settings()
    level = _parse_level(settings.log_level)

    _configure_structlog(level, settings.log_format)

    # Also configure standard library logging
    logging.basicConfig(
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
        level=level,
        force=True,
    )


def set_log_level(level: str) -> None:
    """Change the log level of both structlog and stdlib logging at runtime.

    MCP level names ``notice``, ``alert`` and ``emergency`` are folded
    onto the nearest stdlib level.
    """
    aliases = {
        "notice": "INFO",
        "alert": "CRITICAL",
        "emergency": "CRITICAL",
    }
    numeric = _parse_level(aliases.get(level.lower(), level))
    _configure_structlog(numeric, get_settings().log_format)
    logging.getLogger().setLevel(numeric)


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    """Get a structured logger."""
    return structlog.get_logger(name)
