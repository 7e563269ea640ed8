"""Infrastructure layer - External dependencies and implementations.

This layer contains:
- Database access (SQLAlchemy async engine, raw SQL repositories)
- Authentication (JWT issue/verify/rotation, revocation stores)
- HTTP boundary (FastAPI application, dependencies, cookies)
"""

from funding_platform.infrastructure.persistence.database import (
    Base,
    DatabaseManager,
    QueryResult,
    ScopedConnection,
    init_database,
)

__all__ = [
    "Base",
    "DatabaseManager",
    "QueryResult",
    "ScopedConnection",
    "init_database",
]
