"""Domain entities."""

from funding_platform.domain.entities.session import SessionRecord

__all__ = ["SessionRecord"]
