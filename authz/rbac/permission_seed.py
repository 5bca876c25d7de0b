"""
Permission & Role seeding script.

Run this once against a live database to populate the default
permissions and roles.  It is IDEMPOTENT — safe to re-run: existing
permissions and roles (matched by name) are left untouched.

Default roles:
    • Super Admin — every permission
    • Admin       — everything except permission:manage
    • Manager     — user create/read/update, role:read, permission:read
    • User, Guest — read-only on users, roles and permissions

Usage:
    python -m authz.rbac.permission_seed
"""

import asyncio
import logging
import uuid

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import selectinload

from authz.core.config import settings
from authz.models.base import Base
from authz.models.permission import Permission, PermissionAction
from authz.models.role import Role

logger = logging.getLogger(__name__)

# ────────────────────────────────────────────────────────────────────
# 1.  CANONICAL PERMISSION LIST
# ────────────────────────────────────────────────────────────────────
PERMISSIONS: list[dict[str, str]] = [
    # Users
    {"name": "Create Users", "resource": "user", "action": "create", "description": "Create new users"},
    {"name": "Read Users", "resource": "user", "action": "read", "description": "View user information"},
    {"name": "Update Users", "resource": "user", "action": "update", "description": "Edit user information"},
    {"name": "Delete Users", "resource": "user", "action": "delete", "description": "Remove users from system"},
    {"name": "Manage Users", "resource": "user", "action": "manage", "description": "Full user management access"},
    # Roles
    {"name": "Create Roles", "resource": "role", "action": "create", "description": "Create new roles"},
    {"name": "Read Roles", "resource": "role", "action": "read", "description": "View role information"},
    {"name": "Update Roles", "resource": "role", "action": "update", "description": "Edit role information"},
    {"name": "Delete Roles", "resource": "role", "action": "delete", "description": "Remove roles from system"},
    {"name": "Manage Roles", "resource": "role", "action": "manage", "description": "Full role management access"},
    # Permissions
    {"name": "Read Permissions", "resource": "permission", "action": "read", "description": "View available permissions"},
    {"name": "Manage Permissions", "resource": "permission", "action": "manage", "description": "Full permission management"},
    # Audit
    {"name": "Read Audit Logs", "resource": "audit", "action": "read", "description": "View system audit logs"},
]

_ALL = [f"{p['resource']}:{p['action']}" for p in PERMISSIONS]
_READ_ONLY = ["user:read", "role:read", "permission:read"]

# ────────────────────────────────────────────────────────────────────
# 2.  ROLE → PERMISSION MAPPING  (keys are "resource:action")
# ────────────────────────────────────────────────────────────────────
ROLES: dict[str, dict] = {
    "Super Admin": {
        "description": "Full system access with all permissions",
        "permissions": _ALL,
    },
    "Admin": {
        "description": "Administrative access with most permissions",
        "permissions": [k for k in _ALL if k != "permission:manage"],
    },
    "Manager": {
        "description": "Management access with limited permissions",
        "permissions": ["user:read", "user:update", "user:create", "role:read", "permission:read"],
    },
    "User": {
        "description": "Basic user access with minimal permissions",
        "permissions": _READ_ONLY,
    },
    "Guest": {
        "description": "Read-only access for guests",
        "permissions": _READ_ONLY,
    },
}


# ────────────────────────────────────────────────────────────────────
# 3.  SEED FUNCTION (idempotent)
# ────────────────────────────────────────────────────────────────────
async def seed(session: AsyncSession) -> None:
    """Create permissions & roles if they don't already exist."""

    # ── Permissions ──────────────────────────────────────────────────
    existing_perms = (await session.execute(select(Permission))).scalars().all()
    by_key: dict[str, Permission] = {f"{p.resource}:{PermissionAction(p.action).value}": p for p in existing_perms}

    for pdata in PERMISSIONS:
        key = f"{pdata['resource']}:{pdata['action']}"
        if key not in by_key:
            perm = Permission(
                id=uuid.uuid4(),
                name=pdata["name"],
                resource=pdata["resource"],
                action=PermissionAction(pdata["action"]),
                description=pdata["description"],
            )
            session.add(perm)
            by_key[key] = perm

    await session.flush()  # ensure IDs are available

    # ── Roles ────────────────────────────────────────────────────────
    existing_roles = (
        await session.execute(select(Role).options(selectinload(Role.permissions)))
    ).scalars().all()
    existing_role_names = {r.name for r in existing_roles}

    created = 0
    for role_name, definition in ROLES.items():
        if role_name in existing_role_names:
            continue
        session.add(
            Role(
                id=uuid.uuid4(),
                name=role_name,
                description=definition["description"],
                is_active=True,
                permissions=[by_key[k] for k in definition["permissions"] if k in by_key],
            )
        )
        created += 1

    await session.commit()
    logger.info("Permissions and roles seeded (%d new roles).", created)


# ────────────────────────────────────────────────────────────────────
# 4.  CLI entrypoint:  python -m authz.rbac.permission_seed
# ────────────────────────────────────────────────────────────────────
async def main() -> None:
    engine = create_async_engine(settings.DATABASE_URL, echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    async_session = async_sessionmaker(engine, expire_on_commit=False)
    async with async_session() as session:
        await seed(session)
    await engine.dispose()


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    asyncio.run(main())
