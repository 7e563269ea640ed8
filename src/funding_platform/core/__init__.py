"""Core Funding Platform utilities.

This module exports configuration, logging and the error taxonomy.
"""

from funding_platform.core.config import Settings, get_settings
from funding_platform.core.errors import (
    AppError,
    AuthenticationError,
    DatabaseError,
    TokenTheftDetectedError,
    handle_error,
)
from funding_platform.core.logging import (
    LoggingContext,
    bind_correlation_id,
    bind_request_context,
    clear_context,
    configure_logging,
    get_logger,
)

__all__ = [
    "AppError",
    "AuthenticationError",
    "DatabaseError",
    "LoggingContext",
    "Settings",
    "TokenTheftDetectedError",
    "bind_correlation_id",
    "bind_request_context",
    "clear_context",
    "configure_logging",
    "get_logger",
    "get_settings",
    "handle_error",
]
