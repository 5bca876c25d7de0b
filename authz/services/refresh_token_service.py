"""
Refresh-token store — CRUD over a user's outstanding refresh tokens.

Handles:
- Recording a newly issued token (login / rotation)
- Membership checks during refresh
- Removing a single token (logout on one device)
- Removing every token for a user (global logout / deactivation)

Each operation is a single-row (or single-statement) write, so two
devices rotating at the same time cannot corrupt each other's entries.
"""

import uuid
from datetime import datetime

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from authz.core.security import hash_token
from authz.models.refresh_token import RefreshToken


async def add_refresh_token(
    user_id: uuid.UUID,
    token: str,
    expires_at: datetime,
    db: AsyncSession,
) -> None:
    db.add(RefreshToken(user_id=user_id, token_hash=hash_token(token), expires_at=expires_at))
    await db.flush()


async def is_refresh_token_outstanding(
    user_id: uuid.UUID,
    token: str,
    db: AsyncSession,
) -> bool:
    stmt = select(RefreshToken.token_hash).where(
        RefreshToken.user_id == user_id,
        RefreshToken.token_hash == hash_token(token),
    )
    return (await db.execute(stmt)).scalar_one_or_none() is not None


async def remove_refresh_token(
    user_id: uuid.UUID,
    token: str,
    db: AsyncSession,
) -> bool:
    """Remove one token.  Returns False when it was already gone (no error)."""
    stmt = delete(RefreshToken).where(
        RefreshToken.user_id == user_id,
        RefreshToken.token_hash == hash_token(token),
    )
    result = await db.execute(stmt)
    await db.flush()
    return result.rowcount > 0


async def remove_all_refresh_tokens(
    user_id: uuid.UUID,
    db: AsyncSession,
) -> int:
    """
    Clear the whole outstanding set for a user.

    Returns the number of tokens removed.  Used by global logout and
    by user deactivation.
    """
    result = await db.execute(delete(RefreshToken).where(RefreshToken.user_id == user_id))
    await db.flush()
    return result.rowcount


async def count_refresh_tokens(user_id: uuid.UUID, db: AsyncSession) -> int:
    stmt = select(func.count()).select_from(RefreshToken).where(RefreshToken.user_id == user_id)
    return (await db.execute(stmt)).scalar_one()
