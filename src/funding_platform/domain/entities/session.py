"""Session entity for server-side login sessions.

A session is identified by an opaque token held in a cookie. Only the
SHA-256 hash of that token is ever persisted.
"""

from dataclasses import dataclass


@dataclass
class SessionRecord:
    """A user login session.

    Attributes:
        id: Unique identifier (UUID string).
        user_id: Owner of the session.
        token_hash: SHA-256 hex digest of the session token.
        ip_address: Client address at login, when known.
        user_agent: Client user agent at login, when known.
        created_at: Unix timestamp of login. Never changes.
        expires_at: Hard expiry (Unix timestamp).
        last_activity_at: Unix timestamp of the last authenticated request.
        revoked_at: Unix timestamp of revocation, or None.
    """

    id: str
    user_id: str
    token_hash: str
    created_at: int
    expires_at: int
    last_activity_at: int
    ip_address: str | None = None
    user_agent: str | None = None
    revoked_at: int | None = None

    def __post_init__(self) -> None:
        """Validate session data after initialization."""
        if not self.id:
            raise ValueError("Session ID is required")
        if not self.user_id:
            raise ValueError("User ID is required")
        if not self.token_hash:
            raise ValueError("Token hash is required")

    @property
    def is_revoked(self) -> bool:
        return self.revoked_at is not None
