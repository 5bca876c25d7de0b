"""
Permission catalog service.

Permissions are created administratively, only their description may
change afterwards, and they are deleted only while no active role
references them (inactive roles simply lose the reference).
"""

import logging
import uuid
from collections import defaultdict

from sqlalchemy import delete, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from authz.core.errors import ConflictError, NotFoundError
from authz.models.permission import Permission, PermissionAction
from authz.models.role import Role, role_permissions

logger = logging.getLogger(__name__)


async def get_permission(permission_id: uuid.UUID, db: AsyncSession) -> Permission:
    permission = await db.get(Permission, permission_id)
    if permission is None:
        raise NotFoundError("Permission not found")
    return permission


async def list_permissions(
    db: AsyncSession,
    skip: int = 0,
    limit: int = 100,
    resource: str | None = None,
    action: PermissionAction | None = None,
    search: str | None = None,
) -> tuple[list[Permission], int]:
    conditions = []
    if resource:
        conditions.append(Permission.resource == resource.lower())
    if action is not None:
        conditions.append(Permission.action == action)
    if search:
        pattern = f"%{search}%"
        conditions.append(
            or_(Permission.name.ilike(pattern), Permission.description.ilike(pattern))
        )

    stmt = (
        select(Permission)
        .where(*conditions)
        .order_by(Permission.resource, Permission.action)
        .offset(skip)
        .limit(limit)
    )
    count_stmt = select(func.count()).select_from(Permission).where(*conditions)
    rows = list((await db.execute(stmt)).scalars().all())
    total = (await db.execute(count_stmt)).scalar_one()
    return rows, total


async def group_by_resource(db: AsyncSession) -> dict[str, list[Permission]]:
    stmt = select(Permission).order_by(Permission.resource, Permission.action)
    grouped: dict[str, list[Permission]] = defaultdict(list)
    for permission in (await db.execute(stmt)).scalars():
        grouped[permission.resource].append(permission)
    return dict(grouped)


async def list_resources(db: AsyncSession) -> list[str]:
    stmt = select(Permission.resource).distinct().order_by(Permission.resource)
    return list((await db.execute(stmt)).scalars().all())


async def _check_unique(name: str, resource: str, action: PermissionAction, db: AsyncSession) -> None:
    stmt = select(Permission.id).where(
        or_(
            Permission.name == name,
            (Permission.resource == resource.strip().lower()) & (Permission.action == action),
        )
    )
    if (await db.execute(stmt)).first() is not None:
        raise ConflictError("Permission with this name or resource/action already exists")


async def create_permission(
    name: str,
    resource: str,
    action: PermissionAction,
    db: AsyncSession,
    description: str | None = None,
) -> Permission:
    await _check_unique(name, resource, action, db)
    permission = Permission(
        id=uuid.uuid4(),
        name=name,
        resource=resource,
        action=action,
        description=description,
    )
    db.add(permission)
    await db.flush()
    return permission


async def bulk_create_permissions(
    items: list[dict],
    db: AsyncSession,
) -> tuple[list[Permission], list[dict]]:
    """
    Create many permissions; duplicates are skipped, not fatal.

    Returns (created, skipped) where each skipped entry carries the
    input item and the reason.
    """
    created: list[Permission] = []
    skipped: list[dict] = []
    for item in items:
        try:
            created.append(
                await create_permission(
                    name=item["name"],
                    resource=item["resource"],
                    action=PermissionAction(item["action"]),
                    description=item.get("description"),
                    db=db,
                )
            )
        except ConflictError as exc:
            skipped.append({"item": item, "reason": exc.detail})
    return created, skipped


async def update_permission_description(
    permission_id: uuid.UUID,
    description: str | None,
    db: AsyncSession,
) -> tuple[Permission, dict]:
    permission = await get_permission(permission_id, db)
    changes = {"description": {"from": permission.description, "to": description}}
    permission.description = description
    await db.flush()
    return permission, changes


async def count_active_roles_using(permission_id: uuid.UUID, db: AsyncSession) -> int:
    stmt = (
        select(func.count())
        .select_from(Role)
        .join(role_permissions, role_permissions.c.role_id == Role.id)
        .where(role_permissions.c.permission_id == permission_id, Role.is_active == True)  # noqa: E712
    )
    return (await db.execute(stmt)).scalar_one()


async def delete_permission(permission_id: uuid.UUID, db: AsyncSession) -> Permission:
    permission = await get_permission(permission_id, db)
    in_use = await count_active_roles_using(permission.id, db)
    if in_use > 0:
        raise ConflictError(
            f"Cannot delete permission. It is used by {in_use} active role(s)"
        )
    # Inactive roles just lose the reference
    await db.execute(
        delete(role_permissions).where(role_permissions.c.permission_id == permission.id)
    )
    await db.delete(permission)
    await db.flush()
    logger.info("Deleted permission %s:%s", permission.resource, permission.action)
    return permission
