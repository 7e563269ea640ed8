"""Database-backed revocation store.

Keeps rotation families and revocations in the shared database so that
every process instance sees the same state. Rotation is a single
conditional UPDATE, so two instances racing on the same refresh token
cannot both win.
"""

import json
import time
from collections.abc import Callable
from typing import Any

from funding_platform.core.logging import get_logger
from funding_platform.infrastructure.auth.revocation_store import RevocationStore
from funding_platform.infrastructure.auth.token_types import FamilyRecord
from funding_platform.infrastructure.persistence.database import (
    DatabaseManager,
    ScopedConnection,
)

logger = get_logger(__name__)

# A repeated revocation keeps the later expiry; NULL (permanent) wins.
_KEEP_LATER_EXPIRY = (
    "CASE WHEN {table}.expires_at IS NULL OR excluded.expires_at IS NULL THEN NULL "
    "WHEN excluded.expires_at > {table}.expires_at THEN excluded.expires_at "
    "ELSE {table}.expires_at END"
)

_REVOKE_SESSION_SQL = (
    "INSERT INTO revoked_sessions (session_id, user_id, revoked_at, expires_at) "
    "VALUES (:session_id, :user_id, :revoked_at, :expires_at) "
    "ON CONFLICT (session_id) DO UPDATE SET "
    "user_id = COALESCE(revoked_sessions.user_id, excluded.user_id), "
    "expires_at = " + _KEEP_LATER_EXPIRY.format(table="revoked_sessions")
)

_REVOKE_TOKEN_SQL = (
    "INSERT INTO revoked_tokens (jti, revoked_at, expires_at) "
    "VALUES (:jti, :revoked_at, :expires_at) "
    "ON CONFLICT (jti) DO UPDATE SET "
    "expires_at = " + _KEEP_LATER_EXPIRY.format(table="revoked_tokens")
)


def _to_family(row: dict[str, Any]) -> FamilyRecord:
    return FamilyRecord(
        family_id=row["id"],
        user_id=row["user_id"],
        session_id=row["session_id"],
        current_jti=row["current_jti"],
        rotation_count=int(row["rotation_count"]),
        expires_at=int(row["expires_at"]),
        claims=json.loads(row["claims"] or "{}"),
        revoked=row["revoked_at"] is not None,
    )


class SqlRevocationStore(RevocationStore):
    """Revocation store on the ``token_families``, ``revoked_sessions`` and
    ``revoked_tokens`` tables."""

    def __init__(
        self, db: DatabaseManager, time_source: Callable[[], float] = time.time
    ) -> None:
        self._db = db
        self._time_source = time_source

    def _now(self) -> int:
        return int(self._time_source())

    async def create_family(self, record: FamilyRecord) -> None:
        await self._db.query(
            "INSERT INTO token_families "
            "(id, user_id, session_id, current_jti, rotation_count, claims, expires_at, revoked_at) "
            "VALUES (:id, :user_id, :session_id, :current_jti, :rotation_count, "
            ":claims, :expires_at, :revoked_at)",
            {
                "id": record.family_id,
                "user_id": record.user_id,
                "session_id": record.session_id,
                "current_jti": record.current_jti,
                "rotation_count": record.rotation_count,
                "claims": json.dumps(record.claims),
                "expires_at": record.expires_at,
                "revoked_at": self._now() if record.revoked else None,
            },
        )

    async def get_family(self, family_id: str) -> FamilyRecord | None:
        result = await self._db.query(
            "SELECT id, user_id, session_id, current_jti, rotation_count, claims, "
            "expires_at, revoked_at FROM token_families WHERE id = :id",
            {"id": family_id},
        )
        row = result.first()
        return _to_family(row) if row else None

    async def rotate_family(
        self, family_id: str, expected_jti: str, new_jti: str, expires_at: int
    ) -> bool:
        result = await self._db.query(
            "UPDATE token_families SET current_jti = :new_jti, "
            "rotation_count = rotation_count + 1, expires_at = :expires_at "
            "WHERE id = :id AND current_jti = :expected_jti AND revoked_at IS NULL",
            {
                "id": family_id,
                "expected_jti": expected_jti,
                "new_jti": new_jti,
                "expires_at": expires_at,
            },
        )
        return result.row_count == 1

    async def revoke_family(self, family_id: str) -> None:
        now = self._now()

        async def work(client: ScopedConnection) -> None:
            found = await client.query(
                "SELECT user_id, session_id, expires_at FROM token_families WHERE id = :id",
                {"id": family_id},
            )
            row = found.first()
            if row is None:
                return
            await client.query(
                "UPDATE token_families SET revoked_at = :now "
                "WHERE id = :id AND revoked_at IS NULL",
                {"id": family_id, "now": now},
            )
            await client.query(
                _REVOKE_SESSION_SQL,
                {
                    "session_id": row["session_id"],
                    "user_id": row["user_id"],
                    "revoked_at": now,
                    "expires_at": int(row["expires_at"]),
                },
            )

        await self._db.transaction(work)

    async def revoke_session(
        self, session_id: str, user_id: str | None = None, expires_at: int | None = None
    ) -> None:
        await self._db.query(
            _REVOKE_SESSION_SQL,
            {
                "session_id": session_id,
                "user_id": user_id,
                "revoked_at": self._now(),
                "expires_at": expires_at,
            },
        )

    async def is_session_revoked(self, session_id: str) -> bool:
        result = await self._db.query(
            "SELECT 1 FROM revoked_sessions WHERE session_id = :session_id",
            {"session_id": session_id},
        )
        return result.row_count > 0

    async def revoke_token(self, jti: str, expires_at: int | None = None) -> None:
        await self._db.query(
            _REVOKE_TOKEN_SQL,
            {"jti": jti, "revoked_at": self._now(), "expires_at": expires_at},
        )

    async def is_token_revoked(self, jti: str) -> bool:
        result = await self._db.query(
            "SELECT 1 FROM revoked_tokens WHERE jti = :jti",
            {"jti": jti},
        )
        return result.row_count > 0

    async def revoke_user(self, user_id: str) -> int:
        now = self._now()

        async def work(client: ScopedConnection) -> int:
            families = await client.query(
                "SELECT session_id, expires_at FROM token_families WHERE user_id = :user_id",
                {"user_id": user_id},
            )
            for row in families.rows:
                await client.query(
                    _REVOKE_SESSION_SQL,
                    {
                        "session_id": row["session_id"],
                        "user_id": user_id,
                        "revoked_at": now,
                        "expires_at": int(row["expires_at"]),
                    },
                )
            updated = await client.query(
                "UPDATE token_families SET revoked_at = :now "
                "WHERE user_id = :user_id AND revoked_at IS NULL",
                {"user_id": user_id, "now": now},
            )
            return updated.row_count

        return await self._db.transaction(work)

    async def purge_expired(self, now: int) -> int:
        async def work(client: ScopedConnection) -> int:
            removed = 0
            for statement in (
                "DELETE FROM token_families WHERE expires_at < :now",
                "DELETE FROM revoked_sessions WHERE expires_at IS NOT NULL AND expires_at < :now",
                "DELETE FROM revoked_tokens WHERE expires_at IS NOT NULL AND expires_at < :now",
            ):
                result = await client.query(statement, {"now": now})
                removed += result.row_count
            return removed

        removed = await self._db.transaction(work)
        logger.debug("Purged expired revocation entries", removed=removed)
        return removed
