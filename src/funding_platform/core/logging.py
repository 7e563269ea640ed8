"""Structured logging with correlation IDs.

Configures structlog for JSON output in production and coloured console
output during development. Request-scoped values (correlation id, path,
method) are carried through structlog context variables.
"""

import logging
import sys
from typing import Any

import structlog
from structlog.types import EventDict, Processor

from funding_platform.core.config import Settings, get_settings

DEFAULT_LOGGER_NAME = "funding_platform"


def add_logger_name(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    """Add logger name to log entry.

    Args:
        logger: Logger instance.
        method_name: Method name (unused).
        event_dict: Event dictionary to modify.

    Returns:
        EventDict: Modified event dictionary with logger name.
    """
    event_dict.setdefault("logger", getattr(logger, "name", DEFAULT_LOGGER_NAME))
    return event_dict


def rename_message_field(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    """Rename 'event' field to 'message' for log collectors."""
    if "event" in event_dict:
        event_dict["message"] = event_dict.pop("event")
    return event_dict


def _shared_processors() -> list[Processor]:
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]


def configure_logging(settings: Settings | None = None) -> None:
    """Configure structured logging for the application.

    Args:
        settings: Optional settings instance. If not provided, will load from environment.
    """
    if settings is None:
        settings = get_settings()

    level = getattr(logging, settings.log_level)
    use_console = settings.is_development or settings.log_format == "console"

    if use_console:
        renderer: Processor = structlog.dev.ConsoleRenderer(
            colors=True,
            exception_formatter=structlog.dev.plain_traceback,
        )
        processors = _shared_processors() + [renderer]
    else:
        processors = _shared_processors() + [
            structlog.processors.format_exc_info,
            rename_message_field,
            structlog.processors.JSONRenderer(),
        ]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=not use_console,
    )

    # Standard logging for third-party libraries (uvicorn, sqlalchemy)
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=level,
    )
    for logger_name in ("uvicorn", "uvicorn.access", "uvicorn.error"):
        logging.getLogger(logger_name).setLevel(level)


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    """Get a structured logger instance.

    Args:
        name: Optional logger name. If not provided, uses 'funding_platform'.

    Returns:
        BoundLogger: Configured structured logger instance.
    """
    return structlog.get_logger(name or DEFAULT_LOGGER_NAME)


class LoggingContext:
    """Context manager that binds key-value pairs to every log entry in scope.

    Example:
        with LoggingContext(correlation_id="abc123", user_id="user456"):
            logger.info("Scoring application")
    """

    def __init__(self, **kwargs: str) -> None:
        self.context = kwargs

    def __enter__(self) -> "LoggingContext":
        structlog.contextvars.bind_contextvars(**self.context)
        return self

    def __exit__(self, *args: Any) -> None:
        structlog.contextvars.unbind_contextvars(*self.context.keys())


def bind_correlation_id(correlation_id: str) -> None:
    """Bind a correlation ID to the current logging context."""
    structlog.contextvars.bind_contextvars(correlation_id=correlation_id)


def bind_request_context(path: str, method: str) -> None:
    """Bind the request path and method to the current logging context."""
    structlog.contextvars.bind_contextvars(path=path, method=method)


def clear_context() -> None:
    """Clear all context variables so nothing leaks between requests."""
    structlog.contextvars.clear_contextvars()
