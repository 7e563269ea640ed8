"""Domain services.

Services contain business rules that don't fit within a single entity.
They have no dependencies on infrastructure or external frameworks.
"""

from funding_platform.domain.services.session_policy import SessionPolicy, SessionStatus

__all__ = ["SessionPolicy", "SessionStatus"]
