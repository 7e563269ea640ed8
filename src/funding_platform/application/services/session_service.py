"""Server-side session lifecycle.

Combines the session timeout policy with the session repository: starts
sessions at login, validates the session cookie on each request and ends
sessions on logout or account-wide revocation.
"""

import secrets
import time

from funding_platform.core.errors import AuthenticationError
from funding_platform.core.logging import get_logger
from funding_platform.domain.entities.session import SessionRecord
from funding_platform.domain.services.session_policy import SessionPolicy, SessionStatus
from funding_platform.infrastructure.persistence.repositories.session_repository import (
    SessionRepository,
)

logger = get_logger(__name__)

SESSION_TOKEN_BYTES = 32


class SessionService:
    """Service for starting, validating and ending login sessions."""

    def __init__(self, repository: SessionRepository, policy: SessionPolicy) -> None:
        """Initialize the service.

        Args:
            repository: Session persistence.
            policy: Timeout rules applied on validation.
        """
        self.repository = repository
        self.policy = policy

    @staticmethod
    def _now(now: int | None) -> int:
        return int(time.time()) if now is None else now

    async def start(
        self,
        user_id: str,
        ip_address: str | None = None,
        user_agent: str | None = None,
        now: int | None = None,
    ) -> tuple[SessionRecord, str]:
        """Start a session for an authenticated user.

        Returns:
            Tuple of (stored session, raw token for the session cookie).
        """
        now = self._now(now)
        raw_token = secrets.token_urlsafe(SESSION_TOKEN_BYTES)
        record = await self.repository.create(
            user_id=user_id,
            raw_token=raw_token,
            ip_address=ip_address,
            user_agent=user_agent,
            expires_at=self.policy.absolute_expiry(now),
            now=now,
        )
        logger.info("Session started", session_id=record.id, user_id=user_id)
        return record, raw_token

    async def validate(self, raw_token: str, now: int | None = None) -> SessionRecord:
        """Resolve a session token to an active session.

        Activity is recorded when the policy extends sessions on activity.

        Raises:
            AuthenticationError: Unknown, revoked or expired session.
        """
        now = self._now(now)
        record = await self.repository.get_by_token(raw_token)
        if record is None:
            raise AuthenticationError("Invalid session", "SESSION_INVALID")

        status = self.policy.evaluate(record, now)
        if status is SessionStatus.REVOKED:
            raise AuthenticationError("Session has been revoked", "SESSION_REVOKED")
        if status is not SessionStatus.ACTIVE:
            logger.info("Session expired", session_id=record.id, reason=status.value)
            raise AuthenticationError("Session has expired", "SESSION_EXPIRED")

        touched = self.policy.touch(record, now)
        if touched.last_activity_at != record.last_activity_at:
            await self.repository.touch(record.id, now)
        return touched

    async def end(self, session_id: str, now: int | None = None) -> bool:
        ended = await self.repository.revoke(session_id, self._now(now))
        if ended:
            logger.info("Session ended", session_id=session_id)
        return ended

    async def end_all(self, user_id: str, now: int | None = None) -> int:
        """End every active session of a user.

        Returns:
            Number of sessions ended.
        """
        count = await self.repository.revoke_all_for_user(user_id, self._now(now))
        logger.info("All sessions ended for user", user_id=user_id, count=count)
        return count
