"""Application error taxonomy.

Operational errors are expected, business-meaningful failures whose message
can be shown to clients. Anything else is treated as an unexpected fault.
"""

from typing import Any

from sqlalchemy.exc import SQLAlchemyError


class AppError(Exception):
    """Base class for all errors raised by the platform.

    Attributes:
        message: Human readable description.
        status_code: HTTP status the error maps to.
        code: Stable machine readable error code.
        is_operational: Whether the error is an expected failure.
        details: Optional structured details for clients.
    """

    def __init__(
        self,
        message: str,
        status_code: int = 500,
        code: str = "INTERNAL_ERROR",
        is_operational: bool = True,
        details: Any = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.code = code
        self.is_operational = is_operational
        self.details = details

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"code": self.code, "message": self.message}
        if self.details is not None:
            data["details"] = self.details
        return data


class ValidationError(AppError):
    def __init__(self, message: str, details: Any = None) -> None:
        super().__init__(message, 400, "VALIDATION_ERROR", True, details)


class AuthenticationError(AppError):
    """Missing, invalid, expired or revoked credentials."""

    default_message = "Authentication required"
    default_code = "AUTHENTICATION_ERROR"

    def __init__(self, message: str | None = None, code: str | None = None) -> None:
        super().__init__(
            message or self.default_message,
            401,
            code or self.default_code,
            True,
        )


class TokenExpiredError(AuthenticationError):
    default_message = "Token has expired"
    default_code = "TOKEN_EXPIRED"


class InvalidTokenError(AuthenticationError):
    default_message = "Invalid token"
    default_code = "INVALID_TOKEN"


class TokenRevokedError(AuthenticationError):
    default_message = "Token has been revoked"
    default_code = "TOKEN_REVOKED"


class RotationLimitExceededError(AuthenticationError):
    """The refresh family reached its rotation ceiling; the user must log in again."""

    default_message = "Token family exceeded maximum rotations, please log in again"
    default_code = "ROTATION_LIMIT_EXCEEDED"


class TokenTheftDetectedError(AuthenticationError):
    """An already rotated refresh token was presented again.

    Raised after the whole token family has been invalidated.
    """

    default_message = "Refresh token reuse detected, all sessions in this family were revoked"
    default_code = "TOKEN_THEFT_DETECTED"

    def __init__(self, family_id: str, message: str | None = None) -> None:
        super().__init__(message)
        self.family_id = family_id


class AuthorizationError(AppError):
    def __init__(self, message: str = "Access denied") -> None:
        super().__init__(message, 403, "AUTHORIZATION_ERROR", True)


class NotFoundError(AppError):
    def __init__(self, resource: str, id: str | None = None) -> None:
        message = f"{resource} with ID {id} not found" if id else f"{resource} not found"
        super().__init__(message, 404, "NOT_FOUND", True)


class ConflictError(AppError):
    def __init__(self, message: str) -> None:
        super().__init__(message, 409, "CONFLICT", True)


class RateLimitError(AppError):
    def __init__(self, retry_after: int | None = None) -> None:
        super().__init__(
            "Too many requests. Please try again later.",
            429,
            "RATE_LIMIT_EXCEEDED",
            True,
            {"retry_after": retry_after},
        )


class DatabaseError(AppError):
    def __init__(self, message: str = "Database operation failed") -> None:
        super().__init__(message, 500, "DATABASE_ERROR", True)


class ExternalServiceError(AppError):
    def __init__(self, service: str, message: str | None = None) -> None:
        super().__init__(
            message or f"External service error: {service}",
            502,
            "EXTERNAL_SERVICE_ERROR",
            True,
            {"service": service},
        )


def is_app_error(error: object) -> bool:
    return isinstance(error, AppError)


def handle_error(error: BaseException) -> AppError:
    """Normalise any exception into an AppError.

    Args:
        error: The exception raised somewhere below the HTTP boundary.

    Returns:
        The error itself when it already is an AppError, a DatabaseError for
        SQLAlchemy failures, otherwise a non-operational AppError.
    """
    if isinstance(error, AppError):
        return error

    if isinstance(error, SQLAlchemyError):
        return DatabaseError()

    message = str(error) or "An unexpected error occurred"
    return AppError(message, 500, "INTERNAL_ERROR", is_operational=False)
