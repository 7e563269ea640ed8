"""Repository for user session operations.

Sessions are looked up by the SHA-256 hash of their token; the raw token is
only ever seen by the client.
"""

import hashlib
import uuid
from typing import Any

from funding_platform.domain.entities.session import SessionRecord
from funding_platform.infrastructure.persistence.database import DatabaseManager

_COLUMNS = (
    "id, user_id, token_hash, ip_address, user_agent, "
    "created_at, expires_at, last_activity_at, revoked_at"
)


def _to_record(row: dict[str, Any]) -> SessionRecord:
    return SessionRecord(
        id=row["id"],
        user_id=row["user_id"],
        token_hash=row["token_hash"],
        ip_address=row["ip_address"],
        user_agent=row["user_agent"],
        created_at=int(row["created_at"]),
        expires_at=int(row["expires_at"]),
        last_activity_at=int(row["last_activity_at"]),
        revoked_at=int(row["revoked_at"]) if row["revoked_at"] is not None else None,
    )


class SessionRepository:
    """Repository for user session database operations."""

    def __init__(self, db: DatabaseManager) -> None:
        """Initialize the repository.

        Args:
            db: Database manager owning the connection pool.
        """
        self._db = db

    @staticmethod
    def hash_token(token: str) -> str:
        """Hash a session token using SHA-256.

        Args:
            token: The raw session token.

        Returns:
            SHA-256 hex digest of the token.
        """
        return hashlib.sha256(token.encode()).hexdigest()

    async def create(
        self,
        user_id: str,
        raw_token: str,
        ip_address: str | None,
        user_agent: str | None,
        expires_at: int,
        now: int,
    ) -> SessionRecord:
        """Store a new session.

        Args:
            user_id: Owner of the session.
            raw_token: Session token handed to the client. Only its hash is stored.
            ip_address: Client address, when known.
            user_agent: Client user agent, when known.
            expires_at: Hard expiry as a Unix timestamp.
            now: Creation time as a Unix timestamp.

        Returns:
            The stored session.
        """
        record = SessionRecord(
            id=str(uuid.uuid4()),
            user_id=user_id,
            token_hash=self.hash_token(raw_token),
            ip_address=ip_address,
            user_agent=user_agent,
            created_at=now,
            expires_at=expires_at,
            last_activity_at=now,
        )
        await self._db.query(
            f"INSERT INTO user_sessions ({_COLUMNS}) VALUES "
            "(:id, :user_id, :token_hash, :ip_address, :user_agent, "
            ":created_at, :expires_at, :last_activity_at, :revoked_at)",
            {
                "id": record.id,
                "user_id": record.user_id,
                "token_hash": record.token_hash,
                "ip_address": record.ip_address,
                "user_agent": record.user_agent,
                "created_at": record.created_at,
                "expires_at": record.expires_at,
                "last_activity_at": record.last_activity_at,
                "revoked_at": None,
            },
        )
        return record

    async def get_by_id(self, session_id: str) -> SessionRecord | None:
        result = await self._db.query(
            f"SELECT {_COLUMNS} FROM user_sessions WHERE id = :id",
            {"id": session_id},
        )
        row = result.first()
        return _to_record(row) if row else None

    async def get_by_token(self, raw_token: str) -> SessionRecord | None:
        """Look up a session by its raw token.

        Args:
            raw_token: The token presented by the client.

        Returns:
            The session if found, None otherwise.
        """
        result = await self._db.query(
            f"SELECT {_COLUMNS} FROM user_sessions WHERE token_hash = :token_hash",
            {"token_hash": self.hash_token(raw_token)},
        )
        row = result.first()
        return _to_record(row) if row else None

    async def touch(self, session_id: str, now: int) -> bool:
        """Move the last activity time forward.

        Returns:
            True if an active session was updated.
        """
        result = await self._db.query(
            "UPDATE user_sessions SET last_activity_at = :now "
            "WHERE id = :id AND revoked_at IS NULL AND last_activity_at < :now",
            {"id": session_id, "now": now},
        )
        return result.row_count > 0

    async def revoke(self, session_id: str, now: int) -> bool:
        """Revoke a session.

        Returns:
            True if a session was revoked, False if not found or already revoked.
        """
        result = await self._db.query(
            "UPDATE user_sessions SET revoked_at = :now "
            "WHERE id = :id AND revoked_at IS NULL",
            {"id": session_id, "now": now},
        )
        return result.row_count > 0

    async def revoke_all_for_user(self, user_id: str, now: int) -> int:
        """Revoke every active session of a user.

        Returns:
            Number of sessions revoked.
        """
        result = await self._db.query(
            "UPDATE user_sessions SET revoked_at = :now "
            "WHERE user_id = :user_id AND revoked_at IS NULL",
            {"user_id": user_id, "now": now},
        )
        return result.row_count

    async def delete_expired(self, now: int) -> int:
        """Delete sessions past their hard expiry.

        Returns:
            Number of sessions deleted.
        """
        result = await self._db.query(
            "DELETE FROM user_sessions WHERE expires_at < :now",
            {"now": now},
        )
        return result.row_count
