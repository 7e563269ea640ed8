"""FastAPI dependencies for shared components and authentication.

Shared components live on ``app.state`` (see ``create_app``); these
dependencies hand them to request handlers.
"""

from typing import Annotated

from fastapi import Depends, Header, Request

from funding_platform.application.services.session_service import SessionService
from funding_platform.core.config import Settings
from funding_platform.core.errors import AuthenticationError, InvalidTokenError
from funding_platform.core.logging import get_logger
from funding_platform.domain.services.session_policy import SessionPolicy
from funding_platform.infrastructure.auth import AccessClaims, TokenService
from funding_platform.infrastructure.persistence.database import DatabaseManager
from funding_platform.infrastructure.persistence.repositories import SessionRepository

logger = get_logger(__name__)


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_db(request: Request) -> DatabaseManager:
    return request.app.state.db


def get_token_service(request: Request) -> TokenService:
    return request.app.state.token_service


def get_session_policy(request: Request) -> SessionPolicy:
    return request.app.state.session_policy


def get_session_service(
    db: Annotated[DatabaseManager, Depends(get_db)],
    policy: Annotated[SessionPolicy, Depends(get_session_policy)],
) -> SessionService:
    return SessionService(SessionRepository(db), policy)


def extract_bearer_token(authorization: str | None) -> str:
    """Extract the token from an ``Authorization: Bearer <token>`` header.

    Raises:
        AuthenticationError: Header missing or not a bearer credential.
    """
    if authorization is None:
        logger.info("Authentication failed: missing Authorization header")
        raise AuthenticationError("Missing Authorization header")

    parts = authorization.split()
    if len(parts) != 2 or parts[0].lower() != "bearer":
        logger.info("Authentication failed: invalid Authorization header format")
        raise InvalidTokenError("Invalid Authorization header format")
    return parts[1]


async def get_current_claims(
    token_service: Annotated[TokenService, Depends(get_token_service)],
    authorization: Annotated[str | None, Header()] = None,
) -> AccessClaims:
    """Verify the bearer access token of the request.

    Returns:
        AccessClaims: Claims of the verified token.

    Raises:
        AuthenticationError: Missing, invalid, expired or revoked token.
    """
    token = extract_bearer_token(authorization)
    try:
        return await token_service.verify(token)
    except AuthenticationError as e:
        logger.info("Authentication failed", code=e.code)
        raise


# Type aliases for dependency injection
AppSettings = Annotated[Settings, Depends(get_app_settings)]
CurrentClaims = Annotated[AccessClaims, Depends(get_current_claims)]
Sessions = Annotated[SessionService, Depends(get_session_service)]
