"""HTTP boundary: FastAPI application factory, dependencies and cookies."""

from funding_platform.infrastructure.api.app import create_app

__all__ = ["create_app"]
