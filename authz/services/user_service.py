"""
User service — loaders, CRUD & lifecycle.

`load_user_with_roles` is the one way to get a user ready for an
authorization decision: roles and each role's permissions are joined
eagerly in the same call.  `get_user_record` returns the bare row for
callers that need no grants.

Lifecycle rules enforced here:
- Email is unique case-insensitively (conflict on duplicates).
- Roles are replaced wholesale and must all exist and be active.
- Deactivation is a soft delete, clears every outstanding refresh
  token, and is refused when a user targets itself.
"""

import logging
import uuid
from collections.abc import Sequence
from datetime import datetime, timezone

from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from authz.core.errors import ConflictError, InvalidReferenceError, NotFoundError
from authz.core.security import hash_password
from authz.models.role import Role
from authz.models.user import User
from authz.services import refresh_token_service

logger = logging.getLogger(__name__)


def _with_grants():
    return selectinload(User.roles).selectinload(Role.permissions)


# ── Loaders ─────────────────────────────────────────────────────────


async def load_user_with_roles(user_id: uuid.UUID, db: AsyncSession) -> User | None:
    """Fetch the user and eagerly load roles → permissions."""
    stmt = select(User).options(_with_grants()).where(User.id == user_id)
    return (await db.execute(stmt)).scalar_one_or_none()


async def load_user_by_email_with_roles(email: str, db: AsyncSession) -> User | None:
    stmt = select(User).options(_with_grants()).where(User.email == email.strip().lower())
    return (await db.execute(stmt)).scalar_one_or_none()


async def get_user_record(user_id: uuid.UUID, db: AsyncSession) -> User | None:
    """Bare user row; `roles` is NOT loaded and must not be touched."""
    return await db.get(User, user_id)


async def get_user(user_id: uuid.UUID, db: AsyncSession) -> User:
    user = await load_user_with_roles(user_id, db)
    if user is None:
        raise NotFoundError("User not found")
    return user


async def list_users(
    db: AsyncSession,
    skip: int = 0,
    limit: int = 50,
    search: str | None = None,
    is_active: bool | None = None,
) -> tuple[list[User], int]:
    conditions = []
    if is_active is not None:
        conditions.append(User.is_active == is_active)
    if search:
        pattern = f"%{search.lower()}%"
        conditions.append(
            or_(
                User.email.ilike(pattern),
                User.first_name.ilike(pattern),
                User.last_name.ilike(pattern),
            )
        )

    stmt = (
        select(User)
        .options(_with_grants())
        .where(*conditions)
        .order_by(User.created_at.desc())
        .offset(skip)
        .limit(limit)
    )
    count_stmt = select(func.count()).select_from(User).where(*conditions)
    users = list((await db.execute(stmt)).scalars().all())
    total = (await db.execute(count_stmt)).scalar_one()
    return users, total


# ── Helpers ─────────────────────────────────────────────────────────


async def _resolve_active_roles(role_ids: Sequence[uuid.UUID], db: AsyncSession) -> list[Role]:
    unique_ids = set(role_ids)
    if not unique_ids:
        return []
    stmt = (
        select(Role)
        .options(selectinload(Role.permissions))
        .where(Role.id.in_(unique_ids), Role.is_active == True)  # noqa: E712
    )
    roles = list((await db.execute(stmt)).scalars().all())
    if len(roles) != len(unique_ids):
        raise InvalidReferenceError("One or more roles are invalid or inactive")
    return roles


async def _email_taken(email: str, db: AsyncSession, exclude: uuid.UUID | None = None) -> bool:
    stmt = select(User.id).where(User.email == email.strip().lower())
    if exclude is not None:
        stmt = stmt.where(User.id != exclude)
    return (await db.execute(stmt)).first() is not None


# ── Mutations ───────────────────────────────────────────────────────


async def create_user(
    email: str,
    password: str,
    first_name: str,
    last_name: str,
    db: AsyncSession,
    role_ids: Sequence[uuid.UUID] = (),
    is_email_verified: bool = False,
) -> User:
    if await _email_taken(email, db):
        raise ConflictError("User with this email already exists")

    roles = await _resolve_active_roles(role_ids, db)
    user = User(
        id=uuid.uuid4(),
        email=email,
        password_hash=hash_password(password),
        first_name=first_name,
        last_name=last_name,
        is_active=True,
        is_email_verified=is_email_verified,
        roles=roles,
    )
    db.add(user)
    await db.flush()
    logger.info("Created user %s", user.id)
    return user


async def update_user(
    user_id: uuid.UUID,
    db: AsyncSession,
    first_name: str | None = None,
    last_name: str | None = None,
    email: str | None = None,
) -> tuple[User, dict]:
    """Apply profile changes.  Returns the user and a before/after diff."""
    user = await get_user(user_id, db)
    changes: dict = {}

    if email is not None and email.strip().lower() != user.email:
        if await _email_taken(email, db, exclude=user.id):
            raise ConflictError("Email already in use")
        changes["email"] = {"from": user.email, "to": email.strip().lower()}
        user.email = email

    for field, value in (("first_name", first_name), ("last_name", last_name)):
        if value is not None and value != getattr(user, field):
            changes[field] = {"from": getattr(user, field), "to": value}
            setattr(user, field, value)

    await db.flush()
    return user, changes


async def set_user_roles(
    user_id: uuid.UUID,
    role_ids: Sequence[uuid.UUID],
    db: AsyncSession,
) -> tuple[User, dict]:
    """Replace the user's role set.  Returns the user and the added/removed role names."""
    user = await get_user(user_id, db)
    roles = await _resolve_active_roles(role_ids, db)

    before = {r.name for r in user.roles}
    after = {r.name for r in roles}
    user.roles = roles
    await db.flush()

    return user, {
        "added": sorted(after - before),
        "removed": sorted(before - after),
    }


async def deactivate_user(
    target_user_id: uuid.UUID,
    acting_user_id: uuid.UUID,
    db: AsyncSession,
) -> User:
    """Soft-delete a user and invalidate every outstanding refresh token."""
    if target_user_id == acting_user_id:
        raise ConflictError("Cannot delete your own account")

    user = await get_user(target_user_id, db)
    user.is_active = False
    revoked = await refresh_token_service.remove_all_refresh_tokens(user.id, db)
    await db.flush()
    logger.info("Deactivated user %s (%d refresh tokens revoked)", user.id, revoked)
    return user


async def activate_user(user_id: uuid.UUID, db: AsyncSession) -> User:
    user = await get_user(user_id, db)
    user.is_active = True
    await db.flush()
    return user


async def record_login(user: User, db: AsyncSession) -> None:
    user.last_login_at = datetime.now(timezone.utc)
    await db.flush()
