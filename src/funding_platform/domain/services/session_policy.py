"""Session timeout policy.

A session ends at whichever comes first:

* revocation (logout, password change, administrative action);
* the absolute timeout, counted from login and never extended;
* the inactivity timeout, counted from the last authenticated request.
"""

from dataclasses import replace
from datetime import timedelta
from enum import Enum
from typing import TYPE_CHECKING

from funding_platform.domain.entities.session import SessionRecord

if TYPE_CHECKING:
    from funding_platform.core.config import Settings


class SessionStatus(str, Enum):
    """Outcome of evaluating a session against the policy."""

    ACTIVE = "active"
    REVOKED = "revoked"
    EXPIRED_ABSOLUTE = "expired_absolute"
    EXPIRED_INACTIVE = "expired_inactive"


class SessionPolicy:
    """Evaluates sessions against inactivity and absolute timeouts.

    Times are Unix timestamps in seconds.
    """

    def __init__(
        self,
        inactivity_timeout: timedelta = timedelta(minutes=30),
        absolute_timeout: timedelta = timedelta(hours=12),
        extend_on_activity: bool = True,
    ) -> None:
        if inactivity_timeout <= timedelta(0) or absolute_timeout <= timedelta(0):
            raise ValueError("Session timeouts must be positive")
        self.inactivity_timeout = inactivity_timeout
        self.absolute_timeout = absolute_timeout
        self.extend_on_activity = extend_on_activity

    @classmethod
    def from_settings(cls, settings: "Settings") -> "SessionPolicy":
        return cls(
            inactivity_timeout=settings.session_inactivity_timeout,
            absolute_timeout=settings.session_absolute_timeout,
            extend_on_activity=settings.session_extend_on_activity,
        )

    @property
    def inactivity_seconds(self) -> int:
        return int(self.inactivity_timeout.total_seconds())

    @property
    def absolute_seconds(self) -> int:
        return int(self.absolute_timeout.total_seconds())

    def absolute_expiry(self, created_at: int) -> int:
        """Latest moment a session created at ``created_at`` can be valid."""
        return created_at + self.absolute_seconds

    def _hard_expiry(self, session: SessionRecord) -> int:
        return min(self.absolute_expiry(session.created_at), session.expires_at)

    def evaluate(self, session: SessionRecord, now: int) -> SessionStatus:
        """Classify a session at time ``now``.

        Revocation takes precedence, then the absolute timeout, then the
        inactivity timeout.
        """
        if session.is_revoked:
            return SessionStatus.REVOKED
        if now >= self._hard_expiry(session):
            return SessionStatus.EXPIRED_ABSOLUTE
        if now - session.last_activity_at >= self.inactivity_seconds:
            return SessionStatus.EXPIRED_INACTIVE
        return SessionStatus.ACTIVE

    def is_valid(self, session: SessionRecord, now: int) -> bool:
        return self.evaluate(session, now) is SessionStatus.ACTIVE

    def touch(self, session: SessionRecord, now: int) -> SessionRecord:
        """Record activity on a session.

        Returns a copy with ``last_activity_at`` moved to ``now`` when
        activity extension is enabled, otherwise the session unchanged.
        The absolute expiry is never moved.
        """
        if not self.extend_on_activity:
            return session
        return replace(session, last_activity_at=max(session.last_activity_at, now))

    def remaining(self, session: SessionRecord, now: int) -> int:
        """Seconds until the session ends, 0 if it is no longer valid."""
        if not self.is_valid(session, now):
            return 0
        inactivity_deadline = session.last_activity_at + self.inactivity_seconds
        return max(0, min(self._hard_expiry(session), inactivity_deadline) - now)
