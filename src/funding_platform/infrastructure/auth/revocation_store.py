"""Revocation and rotation-family storage for the token service.

``InMemoryRevocationStore`` keeps its state in the process: it is cleared on
restart and is NOT visible to other process instances. Deployments running
more than one instance must use a shared store such as
``SqlRevocationStore``.
"""

import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, replace
from typing import TYPE_CHECKING

from funding_platform.infrastructure.auth.token_types import FamilyRecord

if TYPE_CHECKING:
    from funding_platform.core.config import Settings
    from funding_platform.infrastructure.persistence.database import DatabaseManager


class RevocationStore(ABC):
    """Storage contract for rotation families and revocations."""

    @abstractmethod
    async def create_family(self, record: FamilyRecord) -> None:
        """Register a new rotation family."""

    @abstractmethod
    async def get_family(self, family_id: str) -> FamilyRecord | None:
        """Return the family, or None if it is unknown or purged."""

    @abstractmethod
    async def rotate_family(
        self, family_id: str, expected_jti: str, new_jti: str, expires_at: int
    ) -> bool:
        """Move the family head from ``expected_jti`` to ``new_jti``.

        Compare-and-set: succeeds only if ``expected_jti`` is still the head
        and the family is not revoked. The rotation count is incremented on
        success.

        Returns:
            True if the head was moved.
        """

    @abstractmethod
    async def revoke_family(self, family_id: str) -> None:
        """Invalidate every token of the family, including its session."""

    @abstractmethod
    async def revoke_session(
        self, session_id: str, user_id: str | None = None, expires_at: int | None = None
    ) -> None:
        """Reject all access tokens carrying ``session_id``."""

    @abstractmethod
    async def is_session_revoked(self, session_id: str) -> bool: ...

    @abstractmethod
    async def revoke_token(self, jti: str, expires_at: int | None = None) -> None:
        """Reject one token by id."""

    @abstractmethod
    async def is_token_revoked(self, jti: str) -> bool: ...

    @abstractmethod
    async def revoke_user(self, user_id: str) -> int:
        """Revoke every family and session of a user.

        Returns:
            Number of families revoked.
        """

    @abstractmethod
    async def purge_expired(self, now: int) -> int:
        """Forget entries that can no longer match a valid token.

        Returns:
            Number of entries removed.
        """


@dataclass
class _Revocation:
    expires_at: int | None
    user_id: str | None = None


def _expired(expires_at: int | None, now: int) -> bool:
    return expires_at is not None and expires_at < now


def _later_expiry(current: int | None, incoming: int | None) -> int | None:
    if current is None or incoming is None:
        return None
    return max(current, incoming)


def _revoke(
    entries: dict[str, _Revocation], key: str, expires_at: int | None, user_id: str | None = None
) -> None:
    existing = entries.get(key)
    if existing is None:
        entries[key] = _Revocation(expires_at=expires_at, user_id=user_id)
        return
    existing.expires_at = _later_expiry(existing.expires_at, expires_at)
    existing.user_id = existing.user_id or user_id


class InMemoryRevocationStore(RevocationStore):
    """Process-local revocation store.

    One instance is created at startup and shared by reference. A lock
    guards the dictionaries so the store can also be used from worker
    threads.
    """

    def __init__(self) -> None:
        self._families: dict[str, FamilyRecord] = {}
        self._revoked_sessions: dict[str, _Revocation] = {}
        self._revoked_tokens: dict[str, _Revocation] = {}
        self._lock = threading.Lock()

    async def create_family(self, record: FamilyRecord) -> None:
        with self._lock:
            self._families[record.family_id] = replace(record, claims=dict(record.claims))

    async def get_family(self, family_id: str) -> FamilyRecord | None:
        with self._lock:
            record = self._families.get(family_id)
            # Copies so callers cannot mutate shared state.
            return replace(record, claims=dict(record.claims)) if record else None

    async def rotate_family(
        self, family_id: str, expected_jti: str, new_jti: str, expires_at: int
    ) -> bool:
        with self._lock:
            record = self._families.get(family_id)
            if record is None or record.revoked or record.current_jti != expected_jti:
                return False
            record.current_jti = new_jti
            record.rotation_count += 1
            record.expires_at = expires_at
            return True

    async def revoke_family(self, family_id: str) -> None:
        with self._lock:
            record = self._families.get(family_id)
            if record is None:
                return
            record.revoked = True
            _revoke(self._revoked_sessions, record.session_id, record.expires_at, record.user_id)

    async def revoke_session(
        self, session_id: str, user_id: str | None = None, expires_at: int | None = None
    ) -> None:
        with self._lock:
            _revoke(self._revoked_sessions, session_id, expires_at, user_id)

    async def is_session_revoked(self, session_id: str) -> bool:
        with self._lock:
            return session_id in self._revoked_sessions

    async def revoke_token(self, jti: str, expires_at: int | None = None) -> None:
        with self._lock:
            _revoke(self._revoked_tokens, jti, expires_at)

    async def is_token_revoked(self, jti: str) -> bool:
        with self._lock:
            return jti in self._revoked_tokens

    async def revoke_user(self, user_id: str) -> int:
        revoked = 0
        with self._lock:
            for record in self._families.values():
                if record.user_id != user_id:
                    continue
                _revoke(self._revoked_sessions, record.session_id, record.expires_at, user_id)
                if not record.revoked:
                    record.revoked = True
                    revoked += 1
        return revoked

    async def purge_expired(self, now: int) -> int:
        with self._lock:
            stale_families = [
                family_id
                for family_id, record in self._families.items()
                if record.expires_at < now
            ]
            for family_id in stale_families:
                del self._families[family_id]

            removed = len(stale_families)
            for entries in (self._revoked_sessions, self._revoked_tokens):
                stale = [key for key, entry in entries.items() if _expired(entry.expires_at, now)]
                for key in stale:
                    del entries[key]
                removed += len(stale)
        return removed

    def clear(self) -> None:
        """Drop all state, as a process restart would."""
        with self._lock:
            self._families.clear()
            self._revoked_sessions.clear()
            self._revoked_tokens.clear()


def build_revocation_store(
    settings: "Settings", db: "DatabaseManager | None" = None
) -> RevocationStore:
    """Create the revocation store selected by ``revocation_backend``.

    Raises:
        ValueError: If the database backend is selected without a database.
    """
    if settings.revocation_backend == "database":
        if db is None:
            raise ValueError("The database revocation backend requires a DatabaseManager")
        from funding_platform.infrastructure.persistence.repositories import SqlRevocationStore

        return SqlRevocationStore(db)
    return InMemoryRevocationStore()
