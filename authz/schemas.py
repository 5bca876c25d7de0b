"""
Pydantic schemas for request / response serialization.

Kept in a single file for now — split per-domain when it grows.
Schemas are deliberately decoupled from SQLAlchemy models so the
API surface can evolve independently of the DB layer.  Password hashes
and refresh tokens never appear in any response model.
"""

import uuid
from datetime import datetime
from typing import Any, Generic, TypeVar

from pydantic import BaseModel, EmailStr, Field, field_validator

from authz.core.security import MAX_PASSWORD_BYTES, password_fits_bcrypt
from authz.models.audit_log import AuditAction
from authz.models.permission import PermissionAction

T = TypeVar("T")


# ── Generic ──────────────────────────────────────────────────────────
class MessageResponse(BaseModel):
    detail: str


class Page(BaseModel, Generic[T]):
    items: list[T]
    total: int
    skip: int
    limit: int


# ── Permission ───────────────────────────────────────────────────────
class PermissionOut(BaseModel):
    id: uuid.UUID
    name: str
    resource: str
    action: PermissionAction
    description: str | None = None
    created_at: datetime

    model_config = {"from_attributes": True}


class CreatePermissionRequest(BaseModel):
    name: str = Field(min_length=1, max_length=100)
    resource: str = Field(min_length=1, max_length=50)
    action: PermissionAction
    description: str | None = Field(default=None, max_length=500)


class BulkCreatePermissionsRequest(BaseModel):
    permissions: list[CreatePermissionRequest] = Field(min_length=1, max_length=100)


class BulkCreatePermissionsResponse(BaseModel):
    created: list[PermissionOut]
    skipped: list[dict[str, Any]]


class UpdatePermissionRequest(BaseModel):
    description: str | None = Field(default=None, max_length=500)


# ── Role ─────────────────────────────────────────────────────────────
class RoleSummary(BaseModel):
    id: uuid.UUID
    name: str
    is_active: bool

    model_config = {"from_attributes": True}


class RoleOut(BaseModel):
    id: uuid.UUID
    name: str
    description: str | None = None
    is_active: bool
    permissions: list[PermissionOut] = []
    created_at: datetime

    model_config = {"from_attributes": True}


class CreateRoleRequest(BaseModel):
    name: str = Field(min_length=2, max_length=50)
    description: str | None = Field(default=None, max_length=500)
    permission_ids: list[uuid.UUID] = []


class UpdateRoleRequest(BaseModel):
    name: str | None = Field(default=None, min_length=2, max_length=50)
    description: str | None = Field(default=None, max_length=500)


class SetRolePermissionsRequest(BaseModel):
    permission_ids: list[uuid.UUID]


# ── User ─────────────────────────────────────────────────────────────
class UserOut(BaseModel):
    id: uuid.UUID
    email: str
    first_name: str
    last_name: str
    is_active: bool
    is_email_verified: bool
    last_login_at: datetime | None = None
    roles: list[RoleSummary] = []
    created_at: datetime

    model_config = {"from_attributes": True}


class UserBrief(BaseModel):
    id: uuid.UUID
    email: str
    first_name: str
    last_name: str
    is_active: bool
    created_at: datetime

    model_config = {"from_attributes": True}


class CreateUserRequest(BaseModel):
    email: EmailStr
    password: str = Field(min_length=8, max_length=128)
    first_name: str = Field(min_length=1, max_length=50)
    last_name: str = Field(min_length=1, max_length=50)
    role_ids: list[uuid.UUID] = []

    @field_validator("password")
    @classmethod
    def password_within_bcrypt_limit(cls, v: str) -> str:
        if not password_fits_bcrypt(v):
            raise ValueError(f"Password must be at most {MAX_PASSWORD_BYTES} bytes when UTF-8 encoded")
        return v


class UpdateUserRequest(BaseModel):
    email: EmailStr | None = None
    first_name: str | None = Field(default=None, min_length=1, max_length=50)
    last_name: str | None = Field(default=None, min_length=1, max_length=50)


class SetUserRolesRequest(BaseModel):
    role_ids: list[uuid.UUID]


class RoleUsersOut(BaseModel):
    role: RoleSummary
    users: list[UserBrief]
    user_count: int


# ── Auth ─────────────────────────────────────────────────────────────
class LoginRequest(BaseModel):
    email: str
    password: str


class RefreshTokenRequest(BaseModel):
    refresh_token: str


class LogoutRequest(BaseModel):
    refresh_token: str


class TokenResponse(BaseModel):
    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_in: int


class LoginResponse(TokenResponse):
    user: UserOut


class EffectivePermissionsOut(BaseModel):
    roles: list[str]
    permissions: list[str]


# ── Audit ────────────────────────────────────────────────────────────
class AuditLogOut(BaseModel):
    id: uuid.UUID
    action: AuditAction
    resource: str
    resource_id: str
    user_id: uuid.UUID
    user_email: str
    changes: dict[str, Any] | None = None
    metadata: dict[str, Any] | None = Field(default=None, validation_alias="meta")
    ip_address: str | None = None
    user_agent: str | None = None
    created_at: datetime

    model_config = {"from_attributes": True}
