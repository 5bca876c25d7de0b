"""
Outstanding refresh tokens — the per-user revocation set.

A refresh token is valid only while its digest has a row here.  Logout
deletes one row, global logout deletes every row for the user.  Rows
are independent, so two devices rotating at once never clobber each
other.
"""

import uuid
from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, String
from sqlalchemy.orm import Mapped, mapped_column

from authz.models.base import Base, CreatedAtMixin


class RefreshToken(Base, CreatedAtMixin):
    __tablename__ = "user_refresh_tokens"

    user_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"),
        primary_key=True,
    )
    token_hash: Mapped[str] = mapped_column(String(64), primary_key=True)
    # Informational: the JWT `exp` claim stays authoritative.
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)

    def __repr__(self) -> str:
        return f"<RefreshToken user={self.user_id} hash={self.token_hash[:8]}…>"
