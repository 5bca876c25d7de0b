"""
Authentication service.

Handles:
- Credential verification (bcrypt, constant-time, uniform failure)
- Login: issue an access + refresh pair, stamp `last_login_at`, audit
- Refresh: exchange a refresh token for a new pair (rotation per config)
- Logout on one device, or everywhere

All business logic lives here — controllers call service methods and
return the result.  Every state change writes one audit record.
"""

import logging

from sqlalchemy.ext.asyncio import AsyncSession

from authz.core.errors import AuthenticationError, AuthFailure
from authz.core.security import burn_password_check, verify_password
from authz.models.audit_log import AuditAction
from authz.models.user import User
from authz.services import audit_service, user_service
from authz.services.audit_service import RequestContext
from authz.services.token_service import TokenPair, TokenService

logger = logging.getLogger(__name__)


async def verify_credentials(email: str, password: str, db: AsyncSession) -> User:
    """
    Return the active, fully-loaded user owning these credentials.

    Unknown email, wrong password and inactive account all fail the same
    way so the response does not reveal which one it was.
    """
    user = await user_service.load_user_by_email_with_roles(email, db)
    if user is None:
        burn_password_check(password)
        raise AuthenticationError("Invalid email or password", AuthFailure.INVALID_CREDENTIALS)

    if not verify_password(password, user.password_hash):
        raise AuthenticationError("Invalid email or password", AuthFailure.INVALID_CREDENTIALS)

    if not user.is_active:
        raise AuthenticationError("Invalid email or password", AuthFailure.PRINCIPAL_INACTIVE)

    return user


async def login(
    email: str,
    password: str,
    tokens: TokenService,
    db: AsyncSession,
    ctx: RequestContext | None = None,
) -> tuple[User, TokenPair]:
    user = await verify_credentials(email, password, db)
    pair = await tokens.issue_token_pair(user, db)
    await user_service.record_login(user, db)

    ctx = ctx or RequestContext()
    await audit_service.record_for_request(
        db, ctx, AuditAction.LOGIN, "auth", user.id, user,
    )
    logger.info("User %s logged in", user.id)
    return user, pair


async def refresh(
    refresh_token: str,
    tokens: TokenService,
    db: AsyncSession,
    ctx: RequestContext | None = None,
) -> TokenPair:
    user, pair = await tokens.refresh_access_token(refresh_token, db)
    await audit_service.record_for_request(
        db, ctx or RequestContext(), AuditAction.LOGIN, "auth", user.id, user,
        metadata={"via": "refresh", "rotated": pair.refresh_token != refresh_token},
    )
    return pair


async def logout(
    user: User,
    refresh_token: str,
    tokens: TokenService,
    db: AsyncSession,
    ctx: RequestContext | None = None,
) -> bool:
    removed = await tokens.logout(user, refresh_token, db)
    await audit_service.record_for_request(
        db, ctx or RequestContext(), AuditAction.LOGOUT, "auth", user.id, user,
        metadata={"scope": "single", "token_removed": removed},
    )
    return removed


async def logout_everywhere(
    user: User,
    tokens: TokenService,
    db: AsyncSession,
    ctx: RequestContext | None = None,
) -> int:
    removed = await tokens.global_logout(user, db)
    await audit_service.record_for_request(
        db, ctx or RequestContext(), AuditAction.LOGOUT, "auth", user.id, user,
        metadata={"scope": "all", "tokens_removed": removed},
    )
    return removed
