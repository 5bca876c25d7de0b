from __future__ import annotations

"""
User (principal) model.

Design decisions:
- Email is unique case-insensitively: it is lower-cased on assignment,
  so the plain unique index is enough.
- The password is stored only as a bcrypt hash.
- Roles are attached via a many-to-many and replaced wholesale.  The
  relationship never loads implicitly; see `user_service.load_user_with_roles`.
- Outstanding refresh tokens live in `user_refresh_tokens`, one row per
  token, so concurrent logins/rotations never rewrite a shared column.
- Users are soft-deleted (`is_active=False`), never removed.
"""

from datetime import datetime

from sqlalchemy import Boolean, DateTime, String
from sqlalchemy.orm import Mapped, mapped_column, relationship, validates

from authz.models.base import Base, TimestampMixin, UUIDPrimaryKeyMixin
from typing import TYPE_CHECKING

from authz.models.role import user_roles  # association table

if TYPE_CHECKING:
    from authz.models.role import Role


class User(Base, UUIDPrimaryKeyMixin, TimestampMixin):
    __tablename__ = "users"

    email: Mapped[str] = mapped_column(String(256), unique=True, index=True, nullable=False)
    password_hash: Mapped[str] = mapped_column(String(512), nullable=False)
    first_name: Mapped[str] = mapped_column(String(50), nullable=False)
    last_name: Mapped[str] = mapped_column(String(50), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False, index=True)
    is_email_verified: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    last_login_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    # ── Relationships ────────────────────────────────────────────────
    roles: Mapped[list["Role"]] = relationship(  # noqa: F821
        secondary=user_roles,
        lazy="raise",
    )

    @validates("email")
    def _normalize_email(self, key: str, value: str) -> str:
        return value.strip().lower()

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"

    def __repr__(self) -> str:
        return f"<User {self.email}>"
