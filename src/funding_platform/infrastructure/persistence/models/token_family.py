"""SQLAlchemy model for refresh-token rotation families.

A family is the chain of refresh tokens descending from one login. Only the
current head (``current_jti``) may be exchanged.
"""

from sqlalchemy import BigInteger, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from funding_platform.infrastructure.persistence.database import Base


class TokenFamilyModel(Base):
    """Refresh-token family with rotation count and revocation marker."""

    __tablename__ = "token_families"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    user_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    session_id: Mapped[str] = mapped_column(String(255), nullable=False)
    current_jti: Mapped[str] = mapped_column(String(36), nullable=False)
    rotation_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    claims: Mapped[str] = mapped_column(Text, nullable=False, default="{}")
    expires_at: Mapped[int] = mapped_column(BigInteger, nullable=False)
    revoked_at: Mapped[int | None] = mapped_column(BigInteger, nullable=True)

    __table_args__ = (Index("ix_token_families_expires_at", "expires_at"),)

    def __repr__(self) -> str:
        return (
            f"TokenFamilyModel(id={self.id!r}, user_id={self.user_id!r}, "
            f"rotation_count={self.rotation_count!r})"
        )
