"""SQLAlchemy models for revoked sessions and revoked access tokens."""

from sqlalchemy import BigInteger, String
from sqlalchemy.orm import Mapped, mapped_column

from funding_platform.infrastructure.persistence.database import Base


class RevokedSessionModel(Base):
    """A session id whose access tokens must be rejected.

    Attributes:
        session_id: Session id embedded in access tokens (``sid`` claim).
        user_id: Owner of the session, when known.
        revoked_at: Unix timestamp of revocation.
        expires_at: After this time no token of the session can still be
            valid and the row may be purged. NULL keeps it forever.
    """

    __tablename__ = "revoked_sessions"

    session_id: Mapped[str] = mapped_column(String(255), primary_key=True)
    user_id: Mapped[str | None] = mapped_column(String(255), nullable=True, index=True)
    revoked_at: Mapped[int] = mapped_column(BigInteger, nullable=False)
    expires_at: Mapped[int | None] = mapped_column(BigInteger, nullable=True)


class RevokedTokenModel(Base):
    """An individual token id (``jti``) that has been revoked."""

    __tablename__ = "revoked_tokens"

    jti: Mapped[str] = mapped_column(String(36), primary_key=True)
    revoked_at: Mapped[int] = mapped_column(BigInteger, nullable=False)
    expires_at: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
