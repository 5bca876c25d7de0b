"""
Audit controller — read-only views over the audit trail.

All reads need `audit:read`.  Purging old records is restricted to the
Super Admin role and is itself audited.
"""

import uuid
from datetime import datetime
from typing import Any

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from authz.core.config import settings
from authz.core.database import get_db
from authz.models.audit_log import AuditAction
from authz.models.user import User
from authz.rbac.dependencies import get_request_context, require_permission, require_roles
from authz.schemas import AuditLogOut, MessageResponse, Page
from authz.services import audit_service
from authz.services.audit_service import RequestContext

router = APIRouter(prefix="/api/audit", tags=["Audit"])


@router.get("", response_model=Page[AuditLogOut])
async def list_audit_logs(
    user: User = Depends(require_permission("audit", "read")),
    db: AsyncSession = Depends(get_db),
    user_id: uuid.UUID | None = None,
    action: AuditAction | None = None,
    resource: str | None = Query(None, max_length=100),
    start_date: datetime | None = None,
    end_date: datetime | None = None,
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=200),
):
    rows, total = await audit_service.list_audit_logs(
        db,
        user_id=user_id,
        action=action,
        resource=resource,
        start=start_date,
        end=end_date,
        skip=skip,
        limit=limit,
    )
    return Page[AuditLogOut](
        items=[AuditLogOut.model_validate(r) for r in rows],
        total=total,
        skip=skip,
        limit=limit,
    )


@router.get("/recent", response_model=list[AuditLogOut])
async def recent_activity(
    user: User = Depends(require_permission("audit", "read")),
    db: AsyncSession = Depends(get_db),
    limit: int = Query(20, ge=1, le=50),
):
    rows = await audit_service.get_recent_activity(db, limit)
    return [AuditLogOut.model_validate(r) for r in rows]


@router.get("/user/{user_id}", response_model=list[AuditLogOut])
async def user_activity(
    user_id: uuid.UUID,
    user: User = Depends(require_permission("audit", "read")),
    db: AsyncSession = Depends(get_db),
    limit: int = Query(50, ge=1, le=100),
):
    rows = await audit_service.get_user_activity(db, user_id, limit)
    return [AuditLogOut.model_validate(r) for r in rows]


@router.get("/stats")
async def audit_stats(
    user: User = Depends(require_permission("audit", "read")),
    db: AsyncSession = Depends(get_db),
    days: int = Query(30, ge=1, le=365),
) -> dict[str, Any]:
    return await audit_service.get_stats(db, days)


@router.delete("/purge", response_model=MessageResponse)
async def purge_audit_logs(
    user: User = Depends(require_roles("Super Admin")),
    db: AsyncSession = Depends(get_db),
    ctx: RequestContext = Depends(get_request_context),
    retention_days: int = Query(settings.AUDIT_RETENTION_DAYS, ge=1, le=3650),
):
    removed = await audit_service.purge_expired(db, retention_days)
    await audit_service.record_for_request(
        db, ctx, AuditAction.DELETE, "audit", "purge", user,
        metadata={"retention_days": retention_days, "removed": removed},
    )
    return MessageResponse(detail=f"Purged {removed} audit record(s)")
