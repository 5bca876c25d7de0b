from __future__ import annotations

"""
Audit log model.

Append-only.  Acting user id and email are copied onto the row so the
record stays readable even if the user is later renamed or deactivated
(there is deliberately no FK to `users`).  `changes` and `metadata`
are free-form JSON maps because their content varies per action.

An ORM-level `before_update` hook refuses to modify an existing row.
"""

import enum
import uuid
from typing import Any

from sqlalchemy import JSON, Enum, Index, String, event
from sqlalchemy.orm import Mapped, mapped_column, validates

from authz.models.base import Base, CreatedAtMixin, UUIDPrimaryKeyMixin


class AuditAction(str, enum.Enum):
    CREATE = "create"
    READ = "read"
    UPDATE = "update"
    DELETE = "delete"
    LOGIN = "login"
    LOGOUT = "logout"
    ASSIGN_ROLE = "assign_role"
    REMOVE_ROLE = "remove_role"
    PERMISSION_CHANGE = "permission_change"


class AuditLog(Base, UUIDPrimaryKeyMixin, CreatedAtMixin):
    __tablename__ = "audit_logs"

    action: Mapped[AuditAction] = mapped_column(
        Enum(
            AuditAction,
            name="audit_action",
            values_callable=lambda e: [m.value for m in e],
        ),
        nullable=False,
    )
    resource: Mapped[str] = mapped_column(String(100), nullable=False)
    resource_id: Mapped[str] = mapped_column(String(256), nullable=False)
    user_id: Mapped[uuid.UUID] = mapped_column(nullable=False)
    user_email: Mapped[str] = mapped_column(String(256), nullable=False)
    changes: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    # `metadata` is reserved on declarative classes
    meta: Mapped[dict[str, Any] | None] = mapped_column("metadata", JSON, nullable=True)
    ip_address: Mapped[str | None] = mapped_column(String(64), nullable=True)
    user_agent: Mapped[str | None] = mapped_column(String(512), nullable=True)

    __table_args__ = (
        Index("ix_audit_logs_user_created", "user_id", "created_at"),
        Index("ix_audit_logs_resource_created", "resource", "created_at"),
        Index("ix_audit_logs_action_created", "action", "created_at"),
        Index("ix_audit_logs_resource_id_created", "resource_id", "created_at"),
        Index("ix_audit_logs_created_at", "created_at"),
    )

    @validates("resource", "user_email")
    def _lowercase(self, key: str, value: str) -> str:
        return value.strip().lower()

    def __repr__(self) -> str:
        return f"<AuditLog {self.action} {self.resource}/{self.resource_id}>"


@event.listens_for(AuditLog, "before_update")
def _refuse_update(mapper, connection, target: AuditLog) -> None:
    raise ValueError("Audit log records are immutable")
