import asyncio
from datetime import datetime, timezone
from unittest.mock import AsyncMock, patch

import jwt  # PyJWT
import pytest

from funding_platform.core.errors import (
    AuthenticationError,
    InvalidTokenError,
    RotationLimitExceededError,
    TokenExpiredError,
    TokenRevokedError,
    TokenTheftDetectedError,
)
from funding_platform.infrastructure.auth import AuthUser, TokenPair, UserRole
from funding_platform.infrastructure.auth.jwt_service import generate_family_id


class TestIssue:
    @pytest.mark.asyncio
    async def test_issue_returns_pair(self, token_service, user):
        pair = await token_service.issue(user)

        assert isinstance(pair, TokenPair)
        assert pair.token_type == "Bearer"
        assert pair.expires_in == 15 * 60
        assert len(pair.family_id) == 32
        assert pair.session_id

    @pytest.mark.asyncio
    async def test_access_token_claims(self, token_service, settings, user, clock):
        pair = await token_service.issue(user, session_id="session-1")

        decoded = jwt.decode(
            pair.access_token,
            settings.jwt_access_secret,
            algorithms=["HS256"],
            audience=settings.jwt_audience,
            options={"verify_exp": False, "verify_iat": False},
        )
        assert decoded["sub"] == "user-1"
        assert decoded["email"] == "applicant@example.org"
        assert decoded["role"] == "applicant"
        assert decoded["permissions"] == ["applications:read", "applications:write"]
        assert decoded["sid"] == "session-1"
        assert decoded["type"] == "access"
        assert decoded["iss"] == "funding-platform"
        assert decoded["aud"] == "funding-platform-api"
        assert decoded["exp"] - decoded["iat"] == 15 * 60
        assert decoded["iat"] == int(clock.now)

    @pytest.mark.asyncio
    async def test_refresh_token_claims(self, token_service, settings, user):
        pair = await token_service.issue(user)

        decoded = jwt.decode(
            pair.refresh_token,
            settings.jwt_refresh_secret,
            algorithms=["HS256"],
            options={"verify_exp": False, "verify_iat": False},
        )
        assert decoded["type"] == "refresh"
        assert decoded["family"] == pair.family_id
        assert decoded["exp"] - decoded["iat"] == 7 * 24 * 60 * 60

    @pytest.mark.asyncio
    async def test_tokens_use_independent_secrets(self, token_service, settings, user):
        pair = await token_service.issue(user)

        with pytest.raises(jwt.InvalidSignatureError):
            jwt.decode(
                pair.refresh_token,
                settings.jwt_access_secret,
                algorithms=["HS256"],
                options={"verify_exp": False, "verify_iat": False},
            )

    @pytest.mark.asyncio
    async def test_issue_registers_family(self, token_service, store, user):
        pair = await token_service.issue(user)

        family = await store.get_family(pair.family_id)
        assert family is not None
        assert family.rotation_count == 0
        assert family.session_id == pair.session_id
        assert family.claims["role"] == "applicant"

    def test_family_ids_are_random_hex(self):
        first, second = generate_family_id(), generate_family_id()

        assert first != second
        assert len(first) == 32
        int(first, 16)


class TestVerify:
    @pytest.mark.asyncio
    async def test_verify_valid_token(self, token_service, user):
        pair = await token_service.issue(user)

        claims = await token_service.verify(pair.access_token)

        assert claims.user_id == "user-1"
        assert claims.session_id == pair.session_id
        assert claims.role is UserRole.APPLICANT

    @pytest.mark.asyncio
    async def test_token_expires_at_exact_expiry(self, token_service, user, clock):
        pair = await token_service.issue(user)

        clock.advance(15 * 60 - 1)
        await token_service.verify(pair.access_token)

        clock.advance(1)
        with pytest.raises(TokenExpiredError):
            await token_service.verify(pair.access_token)

    @pytest.mark.asyncio
    async def test_refresh_token_is_not_an_access_token(self, token_service, user):
        pair = await token_service.issue(user)

        with pytest.raises(InvalidTokenError):
            await token_service.verify(pair.refresh_token)

    @pytest.mark.asyncio
    async def test_tampered_token_rejected(self, token_service, user):
        pair = await token_service.issue(user)
        header, payload, signature = pair.access_token.split(".")
        tampered = f"{header}.{payload}.{signature[:-2]}xx"

        with pytest.raises(InvalidTokenError):
            await token_service.verify(tampered)

    @pytest.mark.asyncio
    async def test_wrong_audience_rejected(self, token_service, settings, user, clock):
        token = jwt.encode(
            {
                "sub": user.id,
                "email": user.email,
                "role": "applicant",
                "sid": "s",
                "jti": "j",
                "iat": int(clock.now),
                "exp": int(clock.now) + 60,
                "iss": settings.jwt_issuer,
                "aud": "another-api",
                "type": "access",
            },
            settings.jwt_access_secret,
            algorithm="HS256",
        )

        with pytest.raises(InvalidTokenError):
            await token_service.verify(token)

    @pytest.mark.asyncio
    async def test_garbage_rejected(self, token_service):
        with pytest.raises(InvalidTokenError):
            await token_service.verify("not-a-token")

    @pytest.mark.asyncio
    async def test_revoked_token_rejected(self, token_service, user):
        pair = await token_service.issue(user)
        claims = await token_service.verify(pair.access_token)

        await token_service.revoke_token(claims.jti, claims.exp)

        with pytest.raises(TokenRevokedError):
            await token_service.verify(pair.access_token)

    @pytest.mark.asyncio
    async def test_revoked_session_rejected(self, token_service, user):
        pair = await token_service.issue(user)

        await token_service.revoke_session(pair.session_id, user_id=user.id)

        with pytest.raises(TokenRevokedError):
            await token_service.verify(pair.access_token)


class TestRefresh:
    @pytest.mark.asyncio
    async def test_refresh_rotates(self, token_service, store, user):
        pair = await token_service.issue(user)

        new_pair = await token_service.refresh(pair.refresh_token)

        assert new_pair.family_id == pair.family_id
        assert new_pair.session_id == pair.session_id
        assert new_pair.refresh_token != pair.refresh_token
        claims = await token_service.verify(new_pair.access_token)
        assert claims.email == user.email
        family = await store.get_family(pair.family_id)
        assert family.rotation_count == 1

    @pytest.mark.asyncio
    async def test_refresh_uses_current_user_data(self, token_service, user):
        pair = await token_service.issue(user)
        promoted = user.model_copy(update={"role": UserRole.ASSESSOR})

        new_pair = await token_service.refresh(pair.refresh_token, user=promoted)

        claims = await token_service.verify(new_pair.access_token)
        assert claims.role is UserRole.ASSESSOR

    @pytest.mark.asyncio
    async def test_refresh_rejects_other_user(self, token_service, user):
        pair = await token_service.issue(user)
        other = AuthUser(id="user-2", email="x@example.org", role=UserRole.APPLICANT)

        with pytest.raises(AuthenticationError):
            await token_service.refresh(pair.refresh_token, user=other)

    @pytest.mark.asyncio
    async def test_replayed_refresh_token_revokes_family(self, token_service, user):
        pair = await token_service.issue(user)
        rotated = await token_service.refresh(pair.refresh_token)

        with pytest.raises(TokenTheftDetectedError) as exc_info:
            await token_service.refresh(pair.refresh_token)
        assert exc_info.value.family_id == pair.family_id

        # The legitimate holder is logged out as well.
        with pytest.raises(TokenRevokedError):
            await token_service.refresh(rotated.refresh_token)
        with pytest.raises(TokenRevokedError):
            await token_service.verify(rotated.access_token)
        with pytest.raises(TokenRevokedError):
            await token_service.verify(pair.access_token)

    @pytest.mark.asyncio
    async def test_theft_does_not_affect_other_families(self, token_service, user):
        stolen = await token_service.issue(user)
        other_device = await token_service.issue(user)
        await token_service.refresh(stolen.refresh_token)

        with pytest.raises(TokenTheftDetectedError):
            await token_service.refresh(stolen.refresh_token)

        await token_service.verify(other_device.access_token)
        await token_service.refresh(other_device.refresh_token)

    @pytest.mark.asyncio
    async def test_sixth_rotation_fails(self, token_service, store, user):
        pair = await token_service.issue(user)

        for _ in range(5):
            pair = await token_service.refresh(pair.refresh_token)

        with pytest.raises(RotationLimitExceededError):
            await token_service.refresh(pair.refresh_token)

        family = await store.get_family(pair.family_id)
        assert family.revoked is True
        assert family.rotation_count == 5

    @pytest.mark.asyncio
    async def test_concurrent_refresh_single_winner(self, token_service, user):
        pair = await token_service.issue(user)

        results = await asyncio.gather(
            token_service.refresh(pair.refresh_token),
            token_service.refresh(pair.refresh_token),
            return_exceptions=True,
        )

        assert sum(isinstance(r, TokenPair) for r in results) == 1
        assert sum(isinstance(r, TokenTheftDetectedError) for r in results) == 1

    @pytest.mark.asyncio
    async def test_lost_rotation_race_revokes_winner(self, token_service, store, user):
        pair = await token_service.issue(user)
        # Family as read by a request that started before the other rotated it.
        stale = await store.get_family(pair.family_id)
        winner = await token_service.refresh(pair.refresh_token)

        rotations = []
        rotate_family = store.rotate_family

        async def record_rotation(*args):
            rotated = await rotate_family(*args)
            rotations.append(rotated)
            return rotated

        with patch.object(store, "get_family", AsyncMock(return_value=stale)), patch.object(
            store, "rotate_family", side_effect=record_rotation
        ):
            with pytest.raises(TokenTheftDetectedError):
                await token_service.refresh(pair.refresh_token)

        assert rotations == [False]
        assert (await store.get_family(pair.family_id)).revoked is True
        with pytest.raises(TokenRevokedError):
            await token_service.verify(winner.access_token)
        with pytest.raises(TokenRevokedError):
            await token_service.refresh(winner.refresh_token)

    @pytest.mark.asyncio
    async def test_expired_refresh_token(self, token_service, user, clock):
        pair = await token_service.issue(user)

        clock.advance(7 * 24 * 60 * 60)

        with pytest.raises(TokenExpiredError):
            await token_service.refresh(pair.refresh_token)

    @pytest.mark.asyncio
    async def test_access_token_cannot_refresh(self, token_service, user):
        pair = await token_service.issue(user)

        with pytest.raises(InvalidTokenError):
            await token_service.refresh(pair.access_token)

    @pytest.mark.asyncio
    async def test_unknown_family(self, token_service, store, user):
        pair = await token_service.issue(user)
        store.clear()

        with pytest.raises(InvalidTokenError):
            await token_service.refresh(pair.refresh_token)


class TestRevocation:
    @pytest.mark.asyncio
    async def test_revoke_all_user_tokens(self, token_service, user):
        first = await token_service.issue(user)
        second = await token_service.issue(user)

        assert await token_service.revoke_all_user_tokens(user.id) == 2

        for pair in (first, second):
            with pytest.raises(TokenRevokedError):
                await token_service.verify(pair.access_token)
            with pytest.raises(TokenRevokedError):
                await token_service.refresh(pair.refresh_token)

    @pytest.mark.asyncio
    async def test_revoke_all_leaves_other_users(self, token_service, user):
        other = AuthUser(id="user-2", email="b@example.org", role=UserRole.COORDINATOR)
        pair = await token_service.issue(other)

        await token_service.revoke_all_user_tokens(user.id)

        await token_service.verify(pair.access_token)

    @pytest.mark.asyncio
    async def test_revoke_token_family(self, token_service, user):
        pair = await token_service.issue(user)

        await token_service.revoke_token_family(pair.family_id)

        with pytest.raises(TokenRevokedError):
            await token_service.refresh(pair.refresh_token)
        with pytest.raises(TokenRevokedError):
            await token_service.verify(pair.access_token)

    @pytest.mark.asyncio
    async def test_cleanup_expired_tokens(self, token_service, store, user, clock):
        pair = await token_service.issue(user)
        await token_service.revoke_token_family(pair.family_id)

        assert await token_service.cleanup_expired_tokens() == 0

        clock.advance(7 * 24 * 60 * 60 + 1)

        assert await token_service.cleanup_expired_tokens() == 2
        assert await store.get_family(pair.family_id) is None


class TestInspection:
    @pytest.mark.asyncio
    async def test_expiring_soon_boundary(self, token_service, user, clock):
        pair = await token_service.issue(user)

        clock.advance(15 * 60 - 301)
        assert token_service.is_token_expiring_soon(pair.access_token) is False

        clock.advance(1)
        assert token_service.is_token_expiring_soon(pair.access_token) is True

    @pytest.mark.asyncio
    async def test_expiring_soon_custom_threshold(self, token_service, user):
        pair = await token_service.issue(user)

        assert token_service.is_token_expiring_soon(pair.access_token, threshold_seconds=900)
        assert not token_service.is_token_expiring_soon(pair.access_token, threshold_seconds=60)

    def test_undecodable_token_is_expiring(self, token_service):
        assert token_service.is_token_expiring_soon("garbage") is True

    @pytest.mark.asyncio
    async def test_decode_helpers(self, token_service, user, clock):
        pair = await token_service.issue(user)

        assert token_service.decode_token(pair.access_token)["sub"] == "user-1"
        assert token_service.extract_user_id(pair.refresh_token) == "user-1"
        assert token_service.get_token_expiration(pair.access_token) == datetime.fromtimestamp(
            int(clock.now) + 15 * 60, tz=timezone.utc
        )

    def test_decode_helpers_on_garbage(self, token_service):
        assert token_service.decode_token("garbage") is None
        assert token_service.extract_user_id("garbage") is None
        assert token_service.get_token_expiration("garbage") is None
