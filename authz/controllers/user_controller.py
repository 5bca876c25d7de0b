"""
User controller — principal administration.

Every route uses a dependency from `authz.rbac.dependencies` for
enforcement.  `GET /{user_id}` and `PUT /{user_id}` also let a user
reach its own record without holding `user:manage`.

Controllers are THIN — they delegate to services, emit the audit record
for the change and return schemas.
"""

import uuid

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from authz.core.database import get_db
from authz.models.audit_log import AuditAction
from authz.models.user import User
from authz.rbac.dependencies import get_request_context, require_owner_or_permission, require_permission
from authz.schemas import (
    CreateUserRequest,
    MessageResponse,
    Page,
    SetUserRolesRequest,
    UpdateUserRequest,
    UserOut,
)
from authz.services import audit_service, user_service
from authz.services.audit_service import RequestContext

router = APIRouter(prefix="/api/users", tags=["Users"])


@router.get("", response_model=Page[UserOut])
async def list_users(
    user: User = Depends(require_permission("user", "read")),
    db: AsyncSession = Depends(get_db),
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=200),
    search: str | None = Query(None, max_length=100),
    is_active: bool | None = None,
):
    users, total = await user_service.list_users(db, skip, limit, search, is_active)
    return Page[UserOut](
        items=[UserOut.model_validate(u) for u in users],
        total=total,
        skip=skip,
        limit=limit,
    )


@router.get("/{user_id}", response_model=UserOut)
async def get_user(
    user_id: uuid.UUID,
    user: User = Depends(require_owner_or_permission("user")),
    db: AsyncSession = Depends(get_db),
):
    return UserOut.model_validate(await user_service.get_user(user_id, db))


@router.post("", response_model=UserOut, status_code=201)
async def create_user(
    body: CreateUserRequest,
    user: User = Depends(require_permission("user", "create")),
    db: AsyncSession = Depends(get_db),
    ctx: RequestContext = Depends(get_request_context),
):
    """Create a principal.  The password is hashed before it touches the DB."""
    created = await user_service.create_user(
        email=body.email,
        password=body.password,
        first_name=body.first_name,
        last_name=body.last_name,
        db=db,
        role_ids=body.role_ids,
    )
    await audit_service.record_for_request(
        db, ctx, AuditAction.CREATE, "user", created.id, user,
        changes={
            "created": {
                "email": created.email,
                "first_name": created.first_name,
                "last_name": created.last_name,
                "roles": sorted(r.name for r in created.roles),
            }
        },
    )
    return UserOut.model_validate(created)


@router.put("/{user_id}", response_model=UserOut)
async def update_user(
    user_id: uuid.UUID,
    body: UpdateUserRequest,
    user: User = Depends(require_owner_or_permission("user")),
    db: AsyncSession = Depends(get_db),
    ctx: RequestContext = Depends(get_request_context),
):
    updated, changes = await user_service.update_user(
        user_id,
        db,
        first_name=body.first_name,
        last_name=body.last_name,
        email=body.email,
    )
    if changes:
        await audit_service.record_for_request(
            db, ctx, AuditAction.UPDATE, "user", updated.id, user, changes=changes,
        )
    return UserOut.model_validate(updated)


@router.delete("/{user_id}", response_model=MessageResponse)
async def delete_user(
    user_id: uuid.UUID,
    user: User = Depends(require_permission("user", "delete")),
    db: AsyncSession = Depends(get_db),
    ctx: RequestContext = Depends(get_request_context),
):
    """Soft delete: the account is deactivated and its refresh tokens revoked."""
    target = await user_service.deactivate_user(user_id, user.id, db)
    await audit_service.record_for_request(
        db, ctx, AuditAction.DELETE, "user", target.id, user,
        changes={"is_active": {"from": True, "to": False}},
        metadata={"soft_delete": True},
    )
    return MessageResponse(detail="User deactivated")


@router.post("/{user_id}/activate", response_model=UserOut)
async def activate_user(
    user_id: uuid.UUID,
    user: User = Depends(require_permission("user", "update")),
    db: AsyncSession = Depends(get_db),
    ctx: RequestContext = Depends(get_request_context),
):
    target = await user_service.activate_user(user_id, db)
    await audit_service.record_for_request(
        db, ctx, AuditAction.UPDATE, "user", target.id, user,
        changes={"is_active": {"from": False, "to": True}},
    )
    return UserOut.model_validate(target)


@router.put("/{user_id}/roles", response_model=UserOut)
async def set_user_roles(
    user_id: uuid.UUID,
    body: SetUserRolesRequest,
    user: User = Depends(require_permission("user", "update")),
    db: AsyncSession = Depends(get_db),
    ctx: RequestContext = Depends(get_request_context),
):
    """Replace the user's role set wholesale.  Every id must name an active role."""
    target, diff = await user_service.set_user_roles(user_id, body.role_ids, db)
    await audit_service.record_for_request(
        db, ctx, AuditAction.ASSIGN_ROLE, "user", target.id, user,
        changes={"roles": diff},
    )
    return UserOut.model_validate(target)
