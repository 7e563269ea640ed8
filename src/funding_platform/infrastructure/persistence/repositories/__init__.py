"""Persistence repositories for database operations."""

from funding_platform.infrastructure.persistence.repositories.revocation_repository import (
    SqlRevocationStore,
)
from funding_platform.infrastructure.persistence.repositories.session_repository import (
    SessionRepository,
)

__all__ = [
    "SessionRepository",
    "SqlRevocationStore",
]
