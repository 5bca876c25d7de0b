"""
Role controller — role CRUD and wholesale permission replacement.

Roles are never hard-deleted: `DELETE /{role_id}` deactivates the role
and is refused while any active user still holds it.
"""

import uuid

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from authz.core.database import get_db
from authz.models.audit_log import AuditAction
from authz.models.user import User
from authz.rbac.dependencies import get_request_context, require_permission
from authz.schemas import (
    CreateRoleRequest,
    MessageResponse,
    Page,
    RoleOut,
    RoleSummary,
    RoleUsersOut,
    SetRolePermissionsRequest,
    UpdateRoleRequest,
    UserBrief,
)
from authz.services import audit_service, role_service
from authz.services.audit_service import RequestContext

router = APIRouter(prefix="/api/roles", tags=["Roles"])


@router.get("", response_model=Page[RoleOut])
async def list_roles(
    user: User = Depends(require_permission("role", "read")),
    db: AsyncSession = Depends(get_db),
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=200),
    search: str | None = Query(None, max_length=100),
    is_active: bool | None = None,
):
    roles, total = await role_service.list_roles(db, skip, limit, search, is_active)
    return Page[RoleOut](
        items=[RoleOut.model_validate(r) for r in roles],
        total=total,
        skip=skip,
        limit=limit,
    )


@router.get("/{role_id}", response_model=RoleOut)
async def get_role(
    role_id: uuid.UUID,
    user: User = Depends(require_permission("role", "read")),
    db: AsyncSession = Depends(get_db),
):
    return RoleOut.model_validate(await role_service.get_role(role_id, db))


@router.post("", response_model=RoleOut, status_code=201)
async def create_role(
    body: CreateRoleRequest,
    user: User = Depends(require_permission("role", "create")),
    db: AsyncSession = Depends(get_db),
    ctx: RequestContext = Depends(get_request_context),
):
    role = await role_service.create_role(
        body.name, db, description=body.description, permission_ids=body.permission_ids,
    )
    await audit_service.record_for_request(
        db, ctx, AuditAction.CREATE, "role", role.id, user,
        changes={
            "created": {
                "name": role.name,
                "description": role.description,
                "permissions": sorted(p.name for p in role.permissions),
            }
        },
    )
    return RoleOut.model_validate(role)


@router.put("/{role_id}", response_model=RoleOut)
async def update_role(
    role_id: uuid.UUID,
    body: UpdateRoleRequest,
    user: User = Depends(require_permission("role", "update")),
    db: AsyncSession = Depends(get_db),
    ctx: RequestContext = Depends(get_request_context),
):
    role, changes = await role_service.update_role(
        role_id, db, name=body.name, description=body.description,
    )
    if changes:
        await audit_service.record_for_request(
            db, ctx, AuditAction.UPDATE, "role", role.id, user, changes=changes,
        )
    return RoleOut.model_validate(role)


@router.delete("/{role_id}", response_model=MessageResponse)
async def delete_role(
    role_id: uuid.UUID,
    user: User = Depends(require_permission("role", "delete")),
    db: AsyncSession = Depends(get_db),
    ctx: RequestContext = Depends(get_request_context),
):
    role = await role_service.deactivate_role(role_id, db)
    await audit_service.record_for_request(
        db, ctx, AuditAction.DELETE, "role", role.id, user,
        changes={"is_active": {"from": True, "to": False}},
        metadata={"soft_delete": True},
    )
    return MessageResponse(detail="Role deactivated")


@router.post("/{role_id}/activate", response_model=RoleOut)
async def activate_role(
    role_id: uuid.UUID,
    user: User = Depends(require_permission("role", "update")),
    db: AsyncSession = Depends(get_db),
    ctx: RequestContext = Depends(get_request_context),
):
    role = await role_service.activate_role(role_id, db)
    await audit_service.record_for_request(
        db, ctx, AuditAction.UPDATE, "role", role.id, user,
        changes={"is_active": {"from": False, "to": True}},
    )
    return RoleOut.model_validate(role)


@router.put("/{role_id}/permissions", response_model=RoleOut)
async def set_role_permissions(
    role_id: uuid.UUID,
    body: SetRolePermissionsRequest,
    user: User = Depends(require_permission("role", "update")),
    db: AsyncSession = Depends(get_db),
    ctx: RequestContext = Depends(get_request_context),
):
    """Replace the permission set.  Takes effect on every holder's next check."""
    role, diff = await role_service.set_role_permissions(role_id, body.permission_ids, db)
    await audit_service.record_for_request(
        db, ctx, AuditAction.PERMISSION_CHANGE, "role", role.id, user,
        changes={"permissions": diff},
    )
    return RoleOut.model_validate(role)


@router.get("/{role_id}/users", response_model=RoleUsersOut)
async def list_role_users(
    role_id: uuid.UUID,
    user: User = Depends(require_permission("role", "read")),
    db: AsyncSession = Depends(get_db),
):
    role, users = await role_service.list_role_users(role_id, db)
    return RoleUsersOut(
        role=RoleSummary.model_validate(role),
        users=[UserBrief.model_validate(u) for u in users],
        user_count=len(users),
    )
