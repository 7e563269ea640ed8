"""Application services."""

from funding_platform.application.services.session_service import SessionService

__all__ = ["SessionService"]
