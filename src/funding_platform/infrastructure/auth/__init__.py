"""Authentication infrastructure components.

This module provides the JWT token service, the rotation-family and
revocation stores, and the token claim models.
"""

from funding_platform.infrastructure.auth.jwt_service import TokenService
from funding_platform.infrastructure.auth.revocation_store import (
    InMemoryRevocationStore,
    RevocationStore,
    build_revocation_store,
)
from funding_platform.infrastructure.auth.token_types import (
    AccessClaims,
    AuthUser,
    FamilyRecord,
    RefreshClaims,
    TokenPair,
    UserRole,
)

__all__ = [
    "AccessClaims",
    "AuthUser",
    "FamilyRecord",
    "InMemoryRevocationStore",
    "RefreshClaims",
    "RevocationStore",
    "TokenPair",
    "TokenService",
    "UserRole",
    "build_revocation_store",
]
