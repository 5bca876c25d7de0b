"""
Permission controller — the (resource, action) catalog.

Reads need `permission:read`; every write needs `permission:manage`.
Static paths (`/grouped`, `/meta/...`) are declared before
`/{permission_id}` so they are not swallowed by the id route.
"""

import uuid

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from authz.core.database import get_db
from authz.models.audit_log import AuditAction
from authz.models.permission import PermissionAction
from authz.models.user import User
from authz.rbac.dependencies import get_request_context, require_permission
from authz.schemas import (
    BulkCreatePermissionsRequest,
    BulkCreatePermissionsResponse,
    CreatePermissionRequest,
    MessageResponse,
    Page,
    PermissionOut,
    UpdatePermissionRequest,
)
from authz.services import audit_service, permission_service
from authz.services.audit_service import RequestContext

router = APIRouter(prefix="/api/permissions", tags=["Permissions"])


# ── Reads ────────────────────────────────────────────────────────────
@router.get("", response_model=Page[PermissionOut])
async def list_permissions(
    user: User = Depends(require_permission("permission", "read")),
    db: AsyncSession = Depends(get_db),
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=500),
    resource: str | None = Query(None, max_length=50),
    action: PermissionAction | None = None,
    search: str | None = Query(None, max_length=100),
):
    rows, total = await permission_service.list_permissions(
        db, skip, limit, resource=resource, action=action, search=search,
    )
    return Page[PermissionOut](
        items=[PermissionOut.model_validate(p) for p in rows],
        total=total,
        skip=skip,
        limit=limit,
    )


@router.get("/grouped", response_model=dict[str, list[PermissionOut]])
async def grouped_permissions(
    user: User = Depends(require_permission("permission", "read")),
    db: AsyncSession = Depends(get_db),
):
    grouped = await permission_service.group_by_resource(db)
    return {
        resource: [PermissionOut.model_validate(p) for p in perms]
        for resource, perms in grouped.items()
    }


@router.get("/meta/resources", response_model=list[str])
async def list_resources(
    user: User = Depends(require_permission("permission", "read")),
    db: AsyncSession = Depends(get_db),
):
    return await permission_service.list_resources(db)


@router.get("/meta/actions", response_model=list[str])
async def list_actions(user: User = Depends(require_permission("permission", "read"))):
    return [a.value for a in PermissionAction]


@router.get("/{permission_id}", response_model=PermissionOut)
async def get_permission(
    permission_id: uuid.UUID,
    user: User = Depends(require_permission("permission", "read")),
    db: AsyncSession = Depends(get_db),
):
    return PermissionOut.model_validate(await permission_service.get_permission(permission_id, db))


# ── Writes ───────────────────────────────────────────────────────────
@router.post("", response_model=PermissionOut, status_code=201)
async def create_permission(
    body: CreatePermissionRequest,
    user: User = Depends(require_permission("permission", "manage")),
    db: AsyncSession = Depends(get_db),
    ctx: RequestContext = Depends(get_request_context),
):
    permission = await permission_service.create_permission(
        body.name, body.resource, body.action, db, description=body.description,
    )
    await audit_service.record_for_request(
        db, ctx, AuditAction.CREATE, "permission", permission.id, user,
        changes={"created": body.model_dump(mode="json")},
    )
    return PermissionOut.model_validate(permission)


@router.post("/bulk", response_model=BulkCreatePermissionsResponse, status_code=201)
async def bulk_create_permissions(
    body: BulkCreatePermissionsRequest,
    user: User = Depends(require_permission("permission", "manage")),
    db: AsyncSession = Depends(get_db),
    ctx: RequestContext = Depends(get_request_context),
):
    """Create many permissions at once.  Duplicates are reported, not fatal."""
    created, skipped = await permission_service.bulk_create_permissions(
        [item.model_dump(mode="json") for item in body.permissions], db,
    )
    await audit_service.record_for_request(
        db, ctx, AuditAction.CREATE, "permission", "bulk", user,
        changes={"created": [":".join(p.key) for p in created]},
        metadata={"requested": len(body.permissions), "skipped": len(skipped)},
    )
    return BulkCreatePermissionsResponse(
        created=[PermissionOut.model_validate(p) for p in created],
        skipped=skipped,
    )


@router.patch("/{permission_id}", response_model=PermissionOut)
async def update_permission(
    permission_id: uuid.UUID,
    body: UpdatePermissionRequest,
    user: User = Depends(require_permission("permission", "manage")),
    db: AsyncSession = Depends(get_db),
    ctx: RequestContext = Depends(get_request_context),
):
    """Only the description is mutable; resource and action are the identity."""
    permission, changes = await permission_service.update_permission_description(
        permission_id, body.description, db,
    )
    await audit_service.record_for_request(
        db, ctx, AuditAction.UPDATE, "permission", permission.id, user, changes=changes,
    )
    return PermissionOut.model_validate(permission)


@router.delete("/{permission_id}", response_model=MessageResponse)
async def delete_permission(
    permission_id: uuid.UUID,
    user: User = Depends(require_permission("permission", "manage")),
    db: AsyncSession = Depends(get_db),
    ctx: RequestContext = Depends(get_request_context),
):
    permission = await permission_service.delete_permission(permission_id, db)
    await audit_service.record_for_request(
        db, ctx, AuditAction.DELETE, "permission", permission_id, user,
        changes={"deleted": {"name": permission.name, "key": ":".join(permission.key)}},
    )
    return MessageResponse(detail="Permission deleted")
