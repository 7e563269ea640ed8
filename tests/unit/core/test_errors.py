import pytest
from sqlalchemy.exc import OperationalError

from funding_platform.core.errors import (
    AppError,
    AuthenticationError,
    AuthorizationError,
    ConflictError,
    DatabaseError,
    ExternalServiceError,
    InvalidTokenError,
    NotFoundError,
    RateLimitError,
    RotationLimitExceededError,
    TokenExpiredError,
    TokenRevokedError,
    TokenTheftDetectedError,
    ValidationError,
    handle_error,
    is_app_error,
)


@pytest.mark.parametrize(
    "error, status, code",
    [
        (ValidationError("bad input"), 400, "VALIDATION_ERROR"),
        (AuthenticationError(), 401, "AUTHENTICATION_ERROR"),
        (TokenExpiredError(), 401, "TOKEN_EXPIRED"),
        (InvalidTokenError(), 401, "INVALID_TOKEN"),
        (TokenRevokedError(), 401, "TOKEN_REVOKED"),
        (RotationLimitExceededError(), 401, "ROTATION_LIMIT_EXCEEDED"),
        (TokenTheftDetectedError("fam"), 401, "TOKEN_THEFT_DETECTED"),
        (AuthorizationError(), 403, "AUTHORIZATION_ERROR"),
        (NotFoundError("Application", "42"), 404, "NOT_FOUND"),
        (ConflictError("duplicate"), 409, "CONFLICT"),
        (RateLimitError(30), 429, "RATE_LIMIT_EXCEEDED"),
        (DatabaseError(), 500, "DATABASE_ERROR"),
        (ExternalServiceError("scanner"), 502, "EXTERNAL_SERVICE_ERROR"),
    ],
)
def test_error_status_and_code(error, status, code):
    assert error.status_code == status
    assert error.code == code
    assert error.is_operational is True
    assert is_app_error(error)


def test_token_errors_are_authentication_errors():
    assert isinstance(TokenTheftDetectedError("fam"), AuthenticationError)
    assert isinstance(RotationLimitExceededError(), AuthenticationError)


def test_theft_error_keeps_family_id():
    error = TokenTheftDetectedError("family-123")

    assert error.family_id == "family-123"
    assert "reuse" in error.message


def test_authentication_error_overrides():
    error = AuthenticationError("Session has expired", "SESSION_EXPIRED")

    assert error.message == "Session has expired"
    assert error.code == "SESSION_EXPIRED"


def test_not_found_message():
    assert NotFoundError("Application", "42").message == "Application with ID 42 not found"
    assert NotFoundError("Call").message == "Call not found"


def test_to_dict_includes_details_only_when_present():
    assert ConflictError("dup").to_dict() == {"code": "CONFLICT", "message": "dup"}
    assert RateLimitError(10).to_dict()["details"] == {"retry_after": 10}


def test_handle_error_passes_app_errors_through():
    error = NotFoundError("Application")

    assert handle_error(error) is error


def test_handle_error_maps_sqlalchemy_errors():
    result = handle_error(OperationalError("SELECT 1", {}, Exception("down")))

    assert isinstance(result, DatabaseError)
    assert result.status_code == 500


def test_handle_error_wraps_unknown_errors_as_non_operational():
    result = handle_error(KeyError("boom"))

    assert isinstance(result, AppError)
    assert result.status_code == 500
    assert result.code == "INTERNAL_ERROR"
    assert result.is_operational is False
    assert not is_app_error(KeyError("boom"))
