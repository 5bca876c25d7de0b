"""
RBAC dependencies — the authorization middleware contract.

`require_permission` is a *dependency factory*: call it with a
(resource, action) pair and it returns a FastAPI dependency that will:

1. Verify the bearer access token (via `get_current_user`).
2. Load the full user (roles → permissions eagerly loaded).
3. Ask the engine whether the grant is held.
4. On denial, write one audit record, commit it (the request is about
   to fail and roll back), and raise `AuthorizationError`.

Usage in a route:
    @router.get("/roles", dependencies=[Depends(require_permission("role", "read"))])
    async def list_roles(...): ...

Or inject the user object:
    @router.get("/roles")
    async def list_roles(user: User = Depends(require_permission("role", "read"))): ...
"""

import logging
from typing import Any

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from authz.core.database import get_db
from authz.core.errors import AuthenticationError, AuthFailure, AuthorizationError, RoleRequiredError
from authz.core.security import oauth2_scheme
from authz.models.audit_log import AuditAction
from authz.models.permission import MANAGE_ACTION
from authz.models.user import User
from authz.rbac.engine import authorize, authorize_owner_or_permission, has_any_role
from authz.services import audit_service
from authz.services.audit_service import RequestContext
from authz.services.token_service import TokenService, get_token_service

logger = logging.getLogger("rbac")


def get_request_context(request: Request) -> RequestContext:
    return RequestContext.from_request(request)


async def get_current_user(
    token: str | None = Depends(oauth2_scheme),
    db: AsyncSession = Depends(get_db),
    tokens: TokenService = Depends(get_token_service),
) -> User:
    """Authenticated, active user with grants loaded.  No permission check."""
    if not token:
        raise AuthenticationError("Access token required", AuthFailure.MISSING_TOKEN)
    return await tokens.authenticate(token, db)


async def _record_denial(
    db: AsyncSession,
    user: User,
    request: Request,
    metadata: dict[str, Any],
) -> None:
    ctx = RequestContext.from_request(request)
    await audit_service.record_audit(
        db,
        action=AuditAction.READ,
        resource="unauthorized_access",
        resource_id=ctx.path or "",
        user_id=user.id,
        user_email=user.email,
        metadata={**metadata, "path": ctx.path, "method": ctx.method},
        ip_address=ctx.ip_address,
        user_agent=ctx.user_agent,
    )
    # The handler never runs; persist the denial before the error unwinds
    try:
        await db.commit()
    except Exception:
        logger.exception("Could not commit denial audit record for user %s", user.id)
        await db.rollback()


class require_permission:
    """
    Dependency factory.

    Can be used as:
        Depends(require_permission("user", "read"))
    """

    def __init__(self, resource: str, action: str):
        self.resource = resource
        self.action = action

    async def __call__(
        self,
        request: Request,
        user: User = Depends(get_current_user),
        db: AsyncSession = Depends(get_db),
    ) -> User:
        if authorize(user, self.resource, self.action):
            return user

        logger.warning(
            "Permission denied for user %s — required: %s:%s",
            user.id,
            self.resource,
            self.action,
        )
        await _record_denial(
            db,
            user,
            request,
            {"requiredResource": self.resource, "requiredAction": self.action},
        )
        raise AuthorizationError(self.resource, self.action)


class require_owner_or_permission:
    """
    Let a user act on its own record; anyone else needs (resource, manage).

    The target id is read from the path parameter named `param`.
    """

    def __init__(self, resource: str, manage_action: str = MANAGE_ACTION, param: str = "user_id"):
        self.resource = resource
        self.manage_action = manage_action
        self.param = param

    async def __call__(
        self,
        request: Request,
        user: User = Depends(get_current_user),
        db: AsyncSession = Depends(get_db),
    ) -> User:
        target_id = request.path_params.get(self.param)
        if authorize_owner_or_permission(user, self.resource, target_id, self.manage_action):
            return user

        logger.warning(
            "Ownership check failed for user %s on %s/%s",
            user.id,
            self.resource,
            target_id,
        )
        await _record_denial(
            db,
            user,
            request,
            {
                "requiredResource": self.resource,
                "requiredAction": self.manage_action,
                "targetId": target_id,
            },
        )
        raise AuthorizationError(
            self.resource,
            self.manage_action,
            detail="Can only access your own resources or need manage permission",
        )


class require_roles:
    """Coarse check: the user must hold at least one of the named (active) roles."""

    def __init__(self, *role_names: str):
        self.role_names = role_names

    async def __call__(
        self,
        request: Request,
        user: User = Depends(get_current_user),
        db: AsyncSession = Depends(get_db),
    ) -> User:
        if has_any_role(user, self.role_names):
            return user

        logger.warning("Role check failed for user %s — required one of %s", user.id, self.role_names)
        await _record_denial(db, user, request, {"requiredRoles": list(self.role_names)})
        raise RoleRequiredError(self.role_names)
