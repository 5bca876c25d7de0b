"""
Role service.

Roles are created by administrators, get their permission set replaced
wholesale through `set_role_permissions`, and are retired by
deactivation only — never deleted, so historical audit rows keep
pointing at something real.  A role still held by an active user
cannot be deactivated.
"""

import logging
import uuid
from collections.abc import Sequence

from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from authz.core.errors import ConflictError, InvalidReferenceError, NotFoundError
from authz.models.permission import Permission
from authz.models.role import Role, user_roles
from authz.models.user import User

logger = logging.getLogger(__name__)


async def load_role_with_permissions(role_id: uuid.UUID, db: AsyncSession) -> Role | None:
    stmt = select(Role).options(selectinload(Role.permissions)).where(Role.id == role_id)
    return (await db.execute(stmt)).scalar_one_or_none()


async def get_role(role_id: uuid.UUID, db: AsyncSession) -> Role:
    role = await load_role_with_permissions(role_id, db)
    if role is None:
        raise NotFoundError("Role not found")
    return role


async def list_roles(
    db: AsyncSession,
    skip: int = 0,
    limit: int = 50,
    search: str | None = None,
    is_active: bool | None = None,
) -> tuple[list[Role], int]:
    conditions = []
    if is_active is not None:
        conditions.append(Role.is_active == is_active)
    if search:
        pattern = f"%{search}%"
        conditions.append(or_(Role.name.ilike(pattern), Role.description.ilike(pattern)))

    stmt = (
        select(Role)
        .options(selectinload(Role.permissions))
        .where(*conditions)
        .order_by(Role.created_at.desc())
        .offset(skip)
        .limit(limit)
    )
    count_stmt = select(func.count()).select_from(Role).where(*conditions)
    roles = list((await db.execute(stmt)).scalars().all())
    total = (await db.execute(count_stmt)).scalar_one()
    return roles, total


async def count_active_holders(role_id: uuid.UUID, db: AsyncSession) -> int:
    stmt = (
        select(func.count())
        .select_from(User)
        .join(user_roles, user_roles.c.user_id == User.id)
        .where(user_roles.c.role_id == role_id, User.is_active == True)  # noqa: E712
    )
    return (await db.execute(stmt)).scalar_one()


async def list_role_users(role_id: uuid.UUID, db: AsyncSession) -> tuple[Role, list[User]]:
    role = await get_role(role_id, db)
    stmt = (
        select(User)
        .join(user_roles, user_roles.c.user_id == User.id)
        .where(user_roles.c.role_id == role_id)
        .order_by(User.first_name)
    )
    return role, list((await db.execute(stmt)).scalars().all())


async def _resolve_permissions(
    permission_ids: Sequence[uuid.UUID],
    db: AsyncSession,
) -> list[Permission]:
    unique_ids = set(permission_ids)
    if not unique_ids:
        return []
    stmt = select(Permission).where(Permission.id.in_(unique_ids))
    permissions = list((await db.execute(stmt)).scalars().all())
    if len(permissions) != len(unique_ids):
        raise InvalidReferenceError("One or more permissions are invalid")
    return permissions


async def _name_taken(name: str, db: AsyncSession, exclude: uuid.UUID | None = None) -> bool:
    # Unique regardless of the active flag
    stmt = select(Role.id).where(Role.name == name)
    if exclude is not None:
        stmt = stmt.where(Role.id != exclude)
    return (await db.execute(stmt)).first() is not None


async def create_role(
    name: str,
    db: AsyncSession,
    description: str | None = None,
    permission_ids: Sequence[uuid.UUID] = (),
) -> Role:
    name = name.strip()
    if await _name_taken(name, db):
        raise ConflictError("Role with this name already exists")

    role = Role(
        id=uuid.uuid4(),
        name=name,
        description=description,
        is_active=True,
        permissions=await _resolve_permissions(permission_ids, db),
    )
    db.add(role)
    await db.flush()
    logger.info("Created role %s (%s)", role.name, role.id)
    return role


async def update_role(
    role_id: uuid.UUID,
    db: AsyncSession,
    name: str | None = None,
    description: str | None = None,
) -> tuple[Role, dict]:
    role = await get_role(role_id, db)
    changes: dict = {}

    if name is not None and name.strip() != role.name:
        name = name.strip()
        if await _name_taken(name, db, exclude=role.id):
            raise ConflictError("Role name already in use")
        changes["name"] = {"from": role.name, "to": name}
        role.name = name

    if description is not None and description != role.description:
        changes["description"] = {"from": role.description, "to": description}
        role.description = description

    await db.flush()
    return role, changes


async def set_role_permissions(
    role_id: uuid.UUID,
    permission_ids: Sequence[uuid.UUID],
    db: AsyncSession,
) -> tuple[Role, dict]:
    """Replace the role's permission set.  Returns the role and a before/after diff."""
    role = await get_role(role_id, db)
    permissions = await _resolve_permissions(permission_ids, db)

    before = sorted(p.name for p in role.permissions)
    role.permissions = permissions
    await db.flush()

    return role, {"from": before, "to": sorted(p.name for p in permissions)}


async def deactivate_role(role_id: uuid.UUID, db: AsyncSession) -> Role:
    role = await get_role(role_id, db)
    holders = await count_active_holders(role.id, db)
    if holders > 0:
        raise ConflictError(
            f"Cannot delete role. It is assigned to {holders} active user(s)"
        )
    role.is_active = False
    await db.flush()
    logger.info("Deactivated role %s (%s)", role.name, role.id)
    return role


async def activate_role(role_id: uuid.UUID, db: AsyncSession) -> Role:
    role = await get_role(role_id, db)
    role.is_active = True
    await db.flush()
    return role
