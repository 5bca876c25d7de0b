from __future__ import annotations

"""
Permission model.

A permission is a (resource, action) grant.  `manage` is the wildcard
action: holding (`user`, `manage`) authorizes every action on `user`.
Only the description is mutable after creation.
"""

import enum

from sqlalchemy import Enum, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, validates

from authz.models.base import Base, TimestampMixin, UUIDPrimaryKeyMixin


class PermissionAction(str, enum.Enum):
    CREATE = "create"
    READ = "read"
    UPDATE = "update"
    DELETE = "delete"
    MANAGE = "manage"


MANAGE_ACTION = PermissionAction.MANAGE.value


class Permission(Base, UUIDPrimaryKeyMixin, TimestampMixin):
    __tablename__ = "permissions"

    name: Mapped[str] = mapped_column(String(100), unique=True, index=True, nullable=False)
    resource: Mapped[str] = mapped_column(String(50), index=True, nullable=False)
    action: Mapped[PermissionAction] = mapped_column(
        Enum(
            PermissionAction,
            name="permission_action",
            values_callable=lambda e: [m.value for m in e],
        ),
        nullable=False,
    )
    description: Mapped[str | None] = mapped_column(String(500), nullable=True)

    __table_args__ = (
        UniqueConstraint("resource", "action", name="uq_permissions_resource_action"),
    )

    @validates("resource")
    def _normalize_resource(self, key: str, value: str) -> str:
        return value.strip().lower()

    @property
    def key(self) -> tuple[str, str]:
        return (self.resource, _action_value(self.action))

    def __repr__(self) -> str:
        return f"<Permission {self.resource}:{_action_value(self.action)}>"


def _action_value(action: PermissionAction | str) -> str:
    return action.value if isinstance(action, PermissionAction) else action
