"""Token lifecycle service.

Issues short-lived access tokens and long-lived rotating refresh tokens.
Refresh tokens belong to a rotation family: only the newest token of a
family can be exchanged, and presenting an older one is treated as theft
and invalidates the whole family.

Access tokens are verified from their signature and expiry alone, plus a
revocation-store check on the token id and session id.
"""

import secrets
import time
import uuid
from collections.abc import Callable
from datetime import datetime, timezone
from typing import Any

import jwt
from pydantic import ValidationError as PydanticValidationError

from funding_platform.core.config import Settings, get_settings
from funding_platform.core.errors import (
    AuthenticationError,
    InvalidTokenError,
    RotationLimitExceededError,
    TokenExpiredError,
    TokenRevokedError,
    TokenTheftDetectedError,
)
from funding_platform.core.logging import get_logger
from funding_platform.infrastructure.auth.revocation_store import RevocationStore
from funding_platform.infrastructure.auth.token_types import (
    AccessClaims,
    AuthUser,
    FamilyRecord,
    RefreshClaims,
    TokenPair,
)

logger = get_logger(__name__)

ACCESS_TOKEN_TYPE = "access"
REFRESH_TOKEN_TYPE = "refresh"


def generate_family_id() -> str:
    """Random 128-bit family identifier, hex encoded."""
    return secrets.token_hex(16)


class TokenService:
    """Creates, verifies, rotates and revokes tokens.

    Access and refresh tokens are signed with two independent secrets, so a
    token of one kind can never pass verification as the other.
    """

    def __init__(
        self,
        store: RevocationStore,
        settings: Settings | None = None,
        time_source: Callable[[], float] = time.time,
    ) -> None:
        """Initialize the token service.

        Args:
            store: Revocation and family store shared by every request.
            settings: Application settings. Defaults to the cached settings.
            time_source: Returns the current Unix time. Injected by tests.
        """
        self.store = store
        self.settings = settings or get_settings()
        self._time_source = time_source

    @property
    def expires_in(self) -> int:
        """Access token lifetime in seconds."""
        return int(self.settings.access_token_ttl.total_seconds())

    @property
    def refresh_expires_in(self) -> int:
        return int(self.settings.refresh_token_ttl.total_seconds())

    def _now(self) -> int:
        return int(self._time_source())

    def _encode(self, payload: dict[str, Any], secret: str) -> str:
        return jwt.encode(payload, secret, algorithm=self.settings.jwt_algorithm)

    def _decode(self, token: str, secret: str, audience: str | None = None) -> dict[str, Any]:
        """Check signature, issuer and audience; expiry is checked by the caller.

        PyJWT compares signatures with ``hmac.compare_digest``.
        """
        try:
            return jwt.decode(
                token,
                secret,
                algorithms=[self.settings.jwt_algorithm],
                audience=audience,
                issuer=self.settings.jwt_issuer,
                options={
                    "verify_exp": False,
                    "verify_iat": False,
                    "verify_aud": audience is not None,
                    "require": ["exp", "iat", "sub", "jti"],
                },
            )
        except jwt.InvalidTokenError as e:
            raise InvalidTokenError() from e

    def _check_expiry(self, exp: int, error_message: str) -> None:
        if exp <= self._now():
            raise TokenExpiredError(error_message)

    def create_access_token(self, user: AuthUser, session_id: str) -> tuple[str, str]:
        """Sign an access token.

        Args:
            user: Identity, role and permissions to embed.
            session_id: Session the token belongs to.

        Returns:
            Tuple of (encoded token, token id).
        """
        now = self._now()
        jti = str(uuid.uuid4())
        payload = {
            "sub": user.id,
            "email": user.email,
            "role": user.role.value,
            "permissions": list(user.permissions),
            "sid": session_id,
            "jti": jti,
            "iat": now,
            "exp": now + self.expires_in,
            "iss": self.settings.jwt_issuer,
            "aud": self.settings.jwt_audience,
            "type": ACCESS_TOKEN_TYPE,
        }
        return self._encode(payload, self.settings.jwt_access_secret), jti

    def create_refresh_token(self, user_id: str, family_id: str) -> tuple[str, str, int]:
        """Sign a refresh token for a family.

        Returns:
            Tuple of (encoded token, token id, expiry timestamp).
        """
        now = self._now()
        jti = str(uuid.uuid4())
        exp = now + self.refresh_expires_in
        payload = {
            "sub": user_id,
            "jti": jti,
            "family": family_id,
            "iat": now,
            "exp": exp,
            "iss": self.settings.jwt_issuer,
            "type": REFRESH_TOKEN_TYPE,
        }
        return self._encode(payload, self.settings.jwt_refresh_secret), jti, exp

    def _pair(self, access_token: str, refresh_token: str, session_id: str, family_id: str) -> TokenPair:
        return TokenPair(
            access_token=access_token,
            refresh_token=refresh_token,
            expires_in=self.expires_in,
            session_id=session_id,
            family_id=family_id,
        )

    async def issue(self, user: AuthUser, session_id: str | None = None) -> TokenPair:
        """Issue a token pair that starts a new rotation family.

        Args:
            user: The authenticated user.
            session_id: Existing session id; a new one is generated if omitted.

        Returns:
            TokenPair: Access and refresh tokens plus their family/session ids.
        """
        session_id = session_id or str(uuid.uuid4())
        family_id = generate_family_id()

        access_token, _ = self.create_access_token(user, session_id)
        refresh_token, refresh_jti, refresh_exp = self.create_refresh_token(user.id, family_id)

        await self.store.create_family(
            FamilyRecord(
                family_id=family_id,
                user_id=user.id,
                session_id=session_id,
                current_jti=refresh_jti,
                expires_at=refresh_exp,
                rotation_count=0,
                claims={
                    "email": user.email,
                    "role": user.role.value,
                    "permissions": list(user.permissions),
                },
            )
        )
        logger.info("Token family issued", user_id=user.id, family_id=family_id, session_id=session_id)
        return self._pair(access_token, refresh_token, session_id, family_id)

    def _verify_refresh_token(self, token: str) -> RefreshClaims:
        payload = self._decode(token, self.settings.jwt_refresh_secret)
        try:
            claims = RefreshClaims.model_validate(payload)
        except PydanticValidationError as e:
            raise InvalidTokenError("Invalid refresh token") from e
        self._check_expiry(claims.exp, "Refresh token has expired")
        return claims

    async def refresh(self, refresh_token: str, user: AuthUser | None = None) -> TokenPair:
        """Exchange the head refresh token of a family for a new pair.

        Args:
            refresh_token: The refresh token presented by the client.
            user: Current user data. When omitted the claims captured at
                issue time are reused.

        Returns:
            TokenPair: New access and refresh tokens in the same family.

        Raises:
            TokenExpiredError: The refresh token expired.
            InvalidTokenError: Bad signature, malformed or unknown family.
            TokenRevokedError: The family was already invalidated.
            TokenTheftDetectedError: The token was already rotated; the
                family has been invalidated.
            RotationLimitExceededError: The family reached its rotation
                ceiling; the user must authenticate again.
        """
        claims = self._verify_refresh_token(refresh_token)
        family = await self.store.get_family(claims.family)

        if family is None or family.user_id != claims.sub:
            raise InvalidTokenError("Unknown refresh token family")
        if family.revoked:
            raise TokenRevokedError("Refresh token family has been revoked")

        if family.current_jti != claims.jti:
            await self._invalidate_for_reuse(family)

        if family.rotation_count >= self.settings.refresh_max_rotations:
            await self.store.revoke_family(family.family_id)
            logger.warning(
                "Token family exceeded maximum rotations",
                family_id=family.family_id,
                user_id=family.user_id,
                rotation_count=family.rotation_count,
            )
            raise RotationLimitExceededError()

        if user is not None:
            if user.id != claims.sub:
                raise AuthenticationError("Refresh token does not belong to user")
            identity = user
        else:
            identity = AuthUser(id=family.user_id, **family.claims)

        new_refresh_token, new_jti, new_exp = self.create_refresh_token(identity.id, family.family_id)
        rotated = await self.store.rotate_family(family.family_id, claims.jti, new_jti, new_exp)
        if not rotated:
            # Another request exchanged the same token first.
            await self._invalidate_for_reuse(family)

        access_token, _ = self.create_access_token(identity, family.session_id)
        logger.debug(
            "Refresh token rotated",
            family_id=family.family_id,
            rotation_count=family.rotation_count + 1,
        )
        return self._pair(access_token, new_refresh_token, family.session_id, family.family_id)

    async def _invalidate_for_reuse(self, family: FamilyRecord) -> None:
        await self.store.revoke_family(family.family_id)
        logger.warning(
            "Refresh token reuse detected, family revoked",
            family_id=family.family_id,
            user_id=family.user_id,
            session_id=family.session_id,
        )
        raise TokenTheftDetectedError(family.family_id)

    async def verify(self, access_token: str) -> AccessClaims:
        """Verify an access token.

        Args:
            access_token: Bearer token from the Authorization header.

        Returns:
            AccessClaims: The embedded claims.

        Raises:
            InvalidTokenError: Bad signature, issuer, audience or shape.
            TokenExpiredError: The token expired.
            TokenRevokedError: The token or its session was revoked.
        """
        payload = self._decode(
            access_token,
            self.settings.jwt_access_secret,
            audience=self.settings.jwt_audience,
        )
        try:
            claims = AccessClaims.model_validate(payload)
        except PydanticValidationError as e:
            raise InvalidTokenError("Invalid access token") from e

        self._check_expiry(claims.exp, "Token has expired")

        if await self.store.is_token_revoked(claims.jti):
            raise TokenRevokedError()
        if await self.store.is_session_revoked(claims.sid):
            raise TokenRevokedError("Session has been revoked")
        return claims

    async def revoke_token(self, jti: str, expires_at: int | None = None) -> None:
        """Revoke a single token by its id."""
        await self.store.revoke_token(jti, expires_at)

    async def revoke_session(self, session_id: str, user_id: str | None = None) -> None:
        """Revoke every access token carrying ``session_id``."""
        await self.store.revoke_session(
            session_id, user_id=user_id, expires_at=self._now() + self.refresh_expires_in
        )
        logger.info("Session revoked", session_id=session_id, user_id=user_id)

    async def revoke_token_family(self, family_id: str) -> None:
        """Revoke all tokens of a family (logout or security incident)."""
        await self.store.revoke_family(family_id)
        logger.info("Token family revoked", family_id=family_id)

    async def revoke_all_user_tokens(self, user_id: str) -> int:
        """Revoke every family and session of a user.

        Used on password change, account lockout and role change.

        Returns:
            Number of families revoked.
        """
        revoked = await self.store.revoke_user(user_id)
        logger.info("All tokens revoked for user", user_id=user_id, families=revoked)
        return revoked

    async def cleanup_expired_tokens(self) -> int:
        """Drop store entries that can no longer match an unexpired token."""
        removed = await self.store.purge_expired(self._now())
        logger.info("Expired token state purged", removed=removed)
        return removed

    def decode_token(self, token: str) -> dict[str, Any] | None:
        """Decode a token without verifying it (inspection only)."""
        try:
            payload = jwt.decode(token, options={"verify_signature": False})
        except jwt.InvalidTokenError:
            return None
        return payload if isinstance(payload, dict) else None

    def is_token_expiring_soon(self, token: str, threshold_seconds: int = 300) -> bool:
        """Tell whether a token expires within ``threshold_seconds``.

        Tokens that cannot be decoded count as expiring.
        """
        payload = self.decode_token(token)
        exp = payload.get("exp") if payload else None
        if not isinstance(exp, int | float):
            return True
        return exp - self._now() <= threshold_seconds

    def extract_user_id(self, token: str) -> str | None:
        payload = self.decode_token(token)
        return payload.get("sub") if payload else None

    def get_token_expiration(self, token: str) -> datetime | None:
        payload = self.decode_token(token)
        exp = payload.get("exp") if payload else None
        if not isinstance(exp, int | float):
            return None
        return datetime.fromtimestamp(exp, tz=timezone.utc)
