"""
Auth controller — login, token refresh, logout & the caller's own grants.

Login and refresh are PUBLIC (no permission dependency).  Logout and the
`/me` routes need a valid access token.
"""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from authz.core.database import get_db
from authz.models.user import User
from authz.rbac.dependencies import get_current_user, get_request_context
from authz.rbac.engine import effective_permissions
from authz.schemas import (
    EffectivePermissionsOut,
    LoginRequest,
    LoginResponse,
    LogoutRequest,
    MessageResponse,
    RefreshTokenRequest,
    TokenResponse,
    UserOut,
)
from authz.services import auth_service
from authz.services.audit_service import RequestContext
from authz.services.token_service import TokenService, get_token_service

router = APIRouter(prefix="/api/auth", tags=["Auth"])


@router.post("/login", response_model=LoginResponse)
async def login(
    body: LoginRequest,
    db: AsyncSession = Depends(get_db),
    tokens: TokenService = Depends(get_token_service),
    ctx: RequestContext = Depends(get_request_context),
):
    """Authenticate with email + password → receive an access / refresh pair."""
    user, pair = await auth_service.login(body.email, body.password, tokens, db, ctx)
    return LoginResponse(
        access_token=pair.access_token,
        refresh_token=pair.refresh_token,
        token_type=pair.token_type,
        expires_in=pair.expires_in,
        user=UserOut.model_validate(user),
    )


@router.post("/refresh", response_model=TokenResponse)
async def refresh_token(
    body: RefreshTokenRequest,
    db: AsyncSession = Depends(get_db),
    tokens: TokenService = Depends(get_token_service),
    ctx: RequestContext = Depends(get_request_context),
):
    """Exchange a valid refresh token for a new access token (and refresh token when rotating)."""
    pair = await auth_service.refresh(body.refresh_token, tokens, db, ctx)
    return TokenResponse(
        access_token=pair.access_token,
        refresh_token=pair.refresh_token,
        token_type=pair.token_type,
        expires_in=pair.expires_in,
    )


@router.post("/logout", response_model=MessageResponse)
async def logout(
    body: LogoutRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    tokens: TokenService = Depends(get_token_service),
    ctx: RequestContext = Depends(get_request_context),
):
    """Revoke one refresh token.  Succeeds even if it was already gone."""
    await auth_service.logout(user, body.refresh_token, tokens, db, ctx)
    return MessageResponse(detail="Logged out successfully")


@router.post("/logout-all", response_model=MessageResponse)
async def logout_all(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    tokens: TokenService = Depends(get_token_service),
    ctx: RequestContext = Depends(get_request_context),
):
    removed = await auth_service.logout_everywhere(user, tokens, db, ctx)
    return MessageResponse(detail=f"Logged out from {removed} session(s)")


@router.get("/me", response_model=UserOut)
async def me(user: User = Depends(get_current_user)):
    return UserOut.model_validate(user)


@router.get("/me/permissions", response_model=EffectivePermissionsOut)
async def my_permissions(user: User = Depends(get_current_user)):
    grants = effective_permissions(user)
    return EffectivePermissionsOut(
        roles=sorted(r.name for r in user.roles if r.is_active),
        permissions=sorted(f"{resource}:{action}" for resource, action in grants),
    )
