"""
Token Service Tests

Access / refresh token lifecycle against a pinned clock:
1. Access token round trip and failure reasons
2. Exclusive expiry boundary
3. Refresh rotation, revocation and logout idempotence
"""

from dataclasses import replace
from datetime import datetime, timedelta, timezone

import pytest
from jose import jwt

from authz.core.errors import AuthenticationError, AuthFailure, TokenGenerationError
from authz.services import refresh_token_service
from authz.services.token_service import TokenService
from tests.conftest import FakeClock


# ==================== Access Tokens ====================


@pytest.mark.asyncio
async def test_access_token_round_trip(token_service, make_user, db_session):
    user = await make_user(roles=("Manager",))

    token = token_service.issue_access_token(user)
    claims = token_service.verify_access_token(token)

    assert claims.user_id == user.id
    assert claims.email == user.email
    assert claims.role_ids == [str(r.id) for r in user.roles]
    assert claims.expires_at - claims.issued_at == timedelta(minutes=15)

    resolved = await token_service.authenticate(token, db_session)
    assert resolved.id == user.id


@pytest.mark.asyncio
async def test_access_token_claims_shape(token_service, token_config, make_user):
    user = await make_user()

    payload = jwt.get_unverified_claims(token_service.issue_access_token(user))

    assert payload["type"] == "access"
    assert payload["sub"] == str(user.id)
    assert set(payload) == {"sub", "email", "role_ids", "iat", "exp", "type"}


def test_empty_token_is_missing(token_service):
    with pytest.raises(AuthenticationError) as exc:
        token_service.verify_access_token("")
    assert exc.value.reason is AuthFailure.MISSING_TOKEN


def test_garbage_token_is_invalid(token_service):
    with pytest.raises(AuthenticationError) as exc:
        token_service.verify_access_token("not.a.jwt")
    assert exc.value.reason is AuthFailure.INVALID_TOKEN


@pytest.mark.asyncio
async def test_token_signed_with_other_secret_is_invalid(token_config, clock, make_user):
    user = await make_user()
    forger = TokenService(replace(token_config, access_secret="someone-else"), clock=clock)
    verifier = TokenService(token_config, clock=clock)

    with pytest.raises(AuthenticationError) as exc:
        verifier.verify_access_token(forger.issue_access_token(user))
    assert exc.value.reason is AuthFailure.INVALID_TOKEN


@pytest.mark.asyncio
async def test_refresh_token_is_not_an_access_token(token_service, make_user, db_session):
    user = await make_user()
    refresh = await token_service.issue_refresh_token(user, db_session)

    with pytest.raises(AuthenticationError) as exc:
        token_service.verify_access_token(refresh)
    assert exc.value.reason is AuthFailure.INVALID_TOKEN


@pytest.mark.asyncio
async def test_access_token_type_claim_is_enforced(token_config, clock, make_user):
    """Same secret for both classes still cannot swap them."""
    user = await make_user()
    shared = replace(token_config, refresh_secret=token_config.access_secret)
    service = TokenService(shared, clock=clock)
    iat = int(clock().timestamp())
    forged = jwt.encode(
        {"sub": str(user.id), "iat": iat, "exp": iat + 60, "type": "refresh"},
        shared.access_secret,
        algorithm=shared.algorithm,
    )

    with pytest.raises(AuthenticationError) as exc:
        service.verify_access_token(forged)
    assert exc.value.reason is AuthFailure.INVALID_TOKEN


# ==================== Expiry ====================


@pytest.mark.asyncio
async def test_access_token_valid_until_one_second_before_exp(token_service, clock, make_user):
    user = await make_user()
    token = token_service.issue_access_token(user)

    clock.advance(minutes=15, seconds=-1)
    assert token_service.verify_access_token(token).user_id == user.id


@pytest.mark.asyncio
async def test_access_token_expired_exactly_at_exp(token_service, clock, make_user):
    user = await make_user()
    token = token_service.issue_access_token(user)

    clock.advance(minutes=15)
    with pytest.raises(AuthenticationError) as exc:
        token_service.verify_access_token(token)
    assert exc.value.reason is AuthFailure.EXPIRED


@pytest.mark.asyncio
async def test_pinned_clock_is_authoritative_for_expiry(token_config, make_user):
    # Issued and checked well before the wall clock: still valid
    early = FakeClock(datetime(2001, 1, 1, tzinfo=timezone.utc))
    service = TokenService(token_config, clock=early)
    user = await make_user()

    token = service.issue_access_token(user)
    early.advance(minutes=14)

    assert service.verify_access_token(token).user_id == user.id


@pytest.mark.asyncio
async def test_wall_clock_expiry_reports_expired(token_config, make_user):
    user = await make_user()
    past = FakeClock(datetime.now(timezone.utc) - timedelta(minutes=20))
    token = TokenService(token_config, clock=past).issue_access_token(user)

    with pytest.raises(AuthenticationError) as exc:
        TokenService(token_config).verify_access_token(token)
    assert exc.value.reason is AuthFailure.EXPIRED


@pytest.mark.asyncio
async def test_refresh_token_expires_after_its_ttl(token_service, clock, make_user, db_session):
    user = await make_user()
    refresh = await token_service.issue_refresh_token(user, db_session)

    clock.advance(days=7)
    with pytest.raises(AuthenticationError) as exc:
        await token_service.verify_refresh_token(refresh, db_session)
    assert exc.value.reason is AuthFailure.EXPIRED


# ==================== Principal State ====================


@pytest.mark.asyncio
async def test_inactive_principal_fails_authentication(token_service, make_user, db_session):
    user = await make_user(roles=("Super Admin",), is_active=False)

    with pytest.raises(AuthenticationError) as exc:
        await token_service.authenticate(token_service.issue_access_token(user), db_session)
    assert exc.value.reason is AuthFailure.PRINCIPAL_INACTIVE


@pytest.mark.asyncio
async def test_deactivation_applies_to_already_issued_access_token(token_service, make_user, db_session):
    user = await make_user(roles=("Admin",))
    token = token_service.issue_access_token(user)
    await token_service.authenticate(token, db_session)

    user.is_active = False
    await db_session.commit()

    with pytest.raises(AuthenticationError) as exc:
        await token_service.authenticate(token, db_session)
    assert exc.value.reason is AuthFailure.PRINCIPAL_INACTIVE


@pytest.mark.asyncio
async def test_unknown_principal_fails_authentication(token_service, token_config, clock, db_session):
    iat = int(clock().timestamp())
    token = jwt.encode(
        {
            "sub": "6f1c1c3e-0000-4000-8000-000000000000",
            "email": "ghost@example.com",
            "role_ids": [],
            "iat": iat,
            "exp": iat + 60,
            "type": "access",
        },
        token_config.access_secret,
        algorithm=token_config.algorithm,
    )

    with pytest.raises(AuthenticationError) as exc:
        await token_service.authenticate(token, db_session)
    assert exc.value.reason is AuthFailure.PRINCIPAL_NOT_FOUND


# ==================== Refresh & Logout ====================


@pytest.mark.asyncio
async def test_refresh_rotation_invalidates_presented_token(token_service, make_user, db_session):
    user = await make_user(roles=("User",))
    pair = await token_service.issue_token_pair(user, db_session)

    _, rotated = await token_service.refresh_access_token(pair.refresh_token, db_session)

    assert rotated.refresh_token != pair.refresh_token
    assert token_service.verify_access_token(rotated.access_token).user_id == user.id
    with pytest.raises(AuthenticationError) as exc:
        await token_service.refresh_access_token(pair.refresh_token, db_session)
    assert exc.value.reason is AuthFailure.REVOKED

    # The replacement keeps working
    await token_service.refresh_access_token(rotated.refresh_token, db_session)


@pytest.mark.asyncio
async def test_refresh_without_rotation_reuses_token(token_config, clock, make_user, db_session):
    service = TokenService(replace(token_config, rotate_refresh_tokens=False), clock=clock)
    user = await make_user()
    pair = await service.issue_token_pair(user, db_session)

    _, first = await service.refresh_access_token(pair.refresh_token, db_session)
    _, second = await service.refresh_access_token(pair.refresh_token, db_session)

    assert first.refresh_token == pair.refresh_token
    assert second.refresh_token == pair.refresh_token
    assert await refresh_token_service.count_refresh_tokens(user.id, db_session) == 1


@pytest.mark.asyncio
async def test_tokens_issued_in_same_second_are_distinct(token_service, make_user, db_session):
    user = await make_user()

    first = await token_service.issue_refresh_token(user, db_session)
    second = await token_service.issue_refresh_token(user, db_session)

    assert first != second
    assert await refresh_token_service.count_refresh_tokens(user.id, db_session) == 2


@pytest.mark.asyncio
async def test_logout_is_idempotent(token_service, make_user, db_session):
    user = await make_user()
    refresh = await token_service.issue_refresh_token(user, db_session)

    assert await token_service.logout(user, refresh, db_session) is True
    assert await token_service.logout(user, refresh, db_session) is False

    with pytest.raises(AuthenticationError) as exc:
        await token_service.verify_refresh_token(refresh, db_session)
    assert exc.value.reason is AuthFailure.REVOKED


@pytest.mark.asyncio
async def test_logout_leaves_other_devices_alone(token_service, make_user, db_session):
    user = await make_user()
    phone = await token_service.issue_refresh_token(user, db_session)
    laptop = await token_service.issue_refresh_token(user, db_session)

    await token_service.logout(user, phone, db_session)

    assert (await token_service.verify_refresh_token(laptop, db_session)).id == user.id


@pytest.mark.asyncio
async def test_global_logout_clears_every_token(token_service, make_user, db_session):
    user = await make_user()
    tokens = [await token_service.issue_refresh_token(user, db_session) for _ in range(3)]

    assert await token_service.global_logout(user, db_session) == 3
    assert await token_service.global_logout(user, db_session) == 0
    for token in tokens:
        with pytest.raises(AuthenticationError):
            await token_service.verify_refresh_token(token, db_session)


@pytest.mark.asyncio
async def test_refresh_for_inactive_principal_clears_outstanding_set(token_service, make_user, db_session):
    user = await make_user()
    refresh = await token_service.issue_refresh_token(user, db_session)
    await token_service.issue_refresh_token(user, db_session)
    user.is_active = False
    await db_session.flush()

    with pytest.raises(AuthenticationError) as exc:
        await token_service.verify_refresh_token(refresh, db_session)
    assert exc.value.reason is AuthFailure.PRINCIPAL_INACTIVE
    assert await refresh_token_service.count_refresh_tokens(user.id, db_session) == 0


@pytest.mark.asyncio
async def test_refresh_token_is_stored_hashed(token_service, make_user, db_session):
    user = await make_user()
    refresh = await token_service.issue_refresh_token(user, db_session)

    assert await refresh_token_service.is_refresh_token_outstanding(user.id, refresh, db_session)
    assert not await refresh_token_service.is_refresh_token_outstanding(user.id, refresh + "x", db_session)


# ==================== Signing Failures ====================


@pytest.mark.asyncio
async def test_unsupported_algorithm_raises_generation_error(token_config, clock, make_user):
    service = TokenService(replace(token_config, algorithm="NOT-AN-ALG"), clock=clock)
    user = await make_user()

    with pytest.raises(TokenGenerationError):
        service.issue_access_token(user)
