"""SQLAlchemy models for the platform's session and token tables.

All models inherit from the Base class defined in database.py and are
created on application startup outside production.
"""

from funding_platform.infrastructure.persistence.models.revocation import (
    RevokedSessionModel,
    RevokedTokenModel,
)
from funding_platform.infrastructure.persistence.models.token_family import TokenFamilyModel
from funding_platform.infrastructure.persistence.models.user_session import UserSessionModel

__all__ = [
    "RevokedSessionModel",
    "RevokedTokenModel",
    "TokenFamilyModel",
    "UserSessionModel",
]
