"""
Audit service — best-effort writes and read-side queries.

`record_audit` is fire-and-forget from the caller's point of view: it
runs inside a SAVEPOINT so a failed insert is rolled back on its own,
logs the failure to the `authz.audit` logger and returns None.  The
protected operation's result always stands.

The read helpers back the `/api/audit` routes.
"""

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any

from fastapi import Request
from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from authz.models.audit_log import AuditAction, AuditLog

logger = logging.getLogger("authz.audit")


@dataclass
class RequestContext:
    """Request details only available while the request is being handled."""

    ip_address: str | None = None
    user_agent: str | None = None
    path: str | None = None
    method: str | None = None

    @classmethod
    def from_request(cls, request: Request) -> "RequestContext":
        return cls(
            ip_address=request.client.host if request.client else None,
            user_agent=request.headers.get("user-agent"),
            path=request.url.path,
            method=request.method,
        )


async def record_audit(
    db: AsyncSession,
    action: AuditAction,
    resource: str,
    resource_id: str | uuid.UUID,
    user_id: uuid.UUID,
    user_email: str,
    changes: dict[str, Any] | None = None,
    metadata: dict[str, Any] | None = None,
    ip_address: str | None = None,
    user_agent: str | None = None,
) -> AuditLog | None:
    """Persist one audit record.  Never raises."""
    try:
        async with db.begin_nested():
            entry = AuditLog(
                action=action,
                resource=resource,
                resource_id=str(resource_id),
                user_id=user_id,
                user_email=user_email,
                changes=changes,
                meta=metadata,
                ip_address=ip_address,
                user_agent=user_agent,
            )
            db.add(entry)
        return entry
    except Exception:
        logger.exception(
            "Failed to write audit record action=%s resource=%s resource_id=%s user=%s",
            getattr(action, "value", action),
            resource,
            resource_id,
            user_id,
        )
        return None


async def record_for_request(
    db: AsyncSession,
    ctx: RequestContext,
    action: AuditAction,
    resource: str,
    resource_id: str | uuid.UUID,
    actor: Any,
    changes: dict[str, Any] | None = None,
    metadata: dict[str, Any] | None = None,
) -> AuditLog | None:
    """`record_audit` with the actor and request context filled in."""
    meta = {"method": ctx.method, "path": ctx.path}
    if metadata:
        meta.update(metadata)
    return await record_audit(
        db,
        action=action,
        resource=resource,
        resource_id=resource_id,
        user_id=actor.id,
        user_email=actor.email,
        changes=changes,
        metadata=meta,
        ip_address=ctx.ip_address,
        user_agent=ctx.user_agent,
    )


# ── Queries ─────────────────────────────────────────────────────────


async def list_audit_logs(
    db: AsyncSession,
    user_id: uuid.UUID | None = None,
    action: AuditAction | None = None,
    resource: str | None = None,
    start: datetime | None = None,
    end: datetime | None = None,
    skip: int = 0,
    limit: int = 50,
) -> tuple[list[AuditLog], int]:
    """Filtered, newest-first listing plus the total match count."""
    conditions = []
    if user_id is not None:
        conditions.append(AuditLog.user_id == user_id)
    if action is not None:
        conditions.append(AuditLog.action == action)
    if resource:
        conditions.append(AuditLog.resource == resource.lower())
    if start is not None:
        conditions.append(AuditLog.created_at >= start)
    if end is not None:
        conditions.append(AuditLog.created_at <= end)

    stmt = (
        select(AuditLog)
        .where(*conditions)
        .order_by(AuditLog.created_at.desc())
        .offset(skip)
        .limit(limit)
    )
    count_stmt = select(func.count()).select_from(AuditLog).where(*conditions)

    rows = list((await db.execute(stmt)).scalars().all())
    total = (await db.execute(count_stmt)).scalar_one()
    return rows, total


async def get_recent_activity(db: AsyncSession, limit: int = 20) -> list[AuditLog]:
    stmt = select(AuditLog).order_by(AuditLog.created_at.desc()).limit(limit)
    return list((await db.execute(stmt)).scalars().all())


async def get_user_activity(
    db: AsyncSession,
    user_id: uuid.UUID,
    limit: int = 50,
) -> list[AuditLog]:
    stmt = (
        select(AuditLog)
        .where(AuditLog.user_id == user_id)
        .order_by(AuditLog.created_at.desc())
        .limit(limit)
    )
    return list((await db.execute(stmt)).scalars().all())


async def get_stats(db: AsyncSession, days: int = 30) -> dict[str, Any]:
    """Counts by action, by resource and the most active users over `days`."""
    end = datetime.now(timezone.utc)
    start = end - timedelta(days=days)
    window = AuditLog.created_at >= start

    total = (
        await db.execute(select(func.count()).select_from(AuditLog).where(window))
    ).scalar_one()

    by_action = (
        await db.execute(
            select(AuditLog.action, func.count())
            .where(window)
            .group_by(AuditLog.action)
            .order_by(func.count().desc())
        )
    ).all()

    by_resource = (
        await db.execute(
            select(AuditLog.resource, func.count())
            .where(window)
            .group_by(AuditLog.resource)
            .order_by(func.count().desc())
        )
    ).all()

    top_users = (
        await db.execute(
            select(AuditLog.user_id, AuditLog.user_email, func.count().label("n"))
            .where(window)
            .group_by(AuditLog.user_id, AuditLog.user_email)
            .order_by(func.count().desc())
            .limit(10)
        )
    ).all()

    return {
        "total": total,
        "by_action": {
            (a.value if isinstance(a, AuditAction) else a): n for a, n in by_action
        },
        "by_resource": {r: n for r, n in by_resource},
        "top_users": [
            {"user_id": str(uid), "user_email": email, "count": n}
            for uid, email, n in top_users
        ],
        "period": {"days": days, "start": start, "end": end},
    }


async def purge_expired(db: AsyncSession, retention_days: int) -> int:
    """Delete records older than the retention window.  Returns rows removed."""
    cutoff = datetime.now(timezone.utc) - timedelta(days=retention_days)
    result = await db.execute(delete(AuditLog).where(AuditLog.created_at < cutoff))
    await db.flush()
    logger.info("Purged %d audit records older than %s", result.rowcount, cutoff.isoformat())
    return result.rowcount
