"""
Models package — import every model so SQLAlchemy's Base.metadata
knows about all tables (critical for `create_all` / Alembic).
"""

from authz.models.base import Base, CreatedAtMixin, TimestampMixin, UUIDPrimaryKeyMixin
from authz.models.permission import MANAGE_ACTION, Permission, PermissionAction
from authz.models.role import Role, role_permissions, user_roles
from authz.models.user import User
from authz.models.refresh_token import RefreshToken
from authz.models.audit_log import AuditAction, AuditLog

__all__ = [
    "Base",
    "CreatedAtMixin",
    "TimestampMixin",
    "UUIDPrimaryKeyMixin",
    "MANAGE_ACTION",
    "Permission",
    "PermissionAction",
    "Role",
    "role_permissions",
    "user_roles",
    "User",
    "RefreshToken",
    "AuditAction",
    "AuditLog",
]
