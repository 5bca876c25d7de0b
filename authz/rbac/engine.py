"""
Authorization engine — pure decisions over a fully-loaded user.

The user passed in must have `roles` and each role's `permissions`
resolved (see `user_service.load_user_with_roles`).  Nothing here
touches the database, emits audit records or raises: callers decide
what a `False` means.

A user is authorized for (resource, action) iff the user is active
and some *active* role grants a permission on that resource whose
action is either the requested one or `manage`.
"""

import uuid
from collections.abc import Iterable

from authz.models.permission import MANAGE_ACTION, Permission, PermissionAction
from authz.models.role import Role
from authz.models.user import User


def _action(permission: Permission) -> str:
    action = permission.action
    return action.value if isinstance(action, PermissionAction) else action


def _active_roles(user: User) -> list[Role]:
    if not user.is_active:
        return []
    return [role for role in user.roles if role.is_active]


def _grants(permission: Permission, resource: str, action: str) -> bool:
    granted = _action(permission)
    return permission.resource == resource and (granted == action or granted == MANAGE_ACTION)


def _is_owner(user: User, target_id: uuid.UUID | str | None) -> bool:
    if target_id is None:
        return False
    if not isinstance(target_id, uuid.UUID):
        try:
            target_id = uuid.UUID(str(target_id))
        except ValueError:
            return False
    return target_id == user.id


def authorize(user: User, resource: str, action: str) -> bool:
    """Return True when any active role of an active user grants (resource, action)."""
    for role in _active_roles(user):
        for permission in role.permissions:
            if _grants(permission, resource, action):
                return True
    return False


def authorize_owner_or_permission(
    user: User,
    resource: str,
    target_id: uuid.UUID | str | None,
    manage_action: str = MANAGE_ACTION,
) -> bool:
    """
    Allow a user to act on its own record, or fall back to a permission check.

    Ownership means the request's target id equals the user's id.
    Anyone else needs (resource, manage_action), checked normally.
    """
    if not user.is_active:
        return False
    if _is_owner(user, target_id):
        return True
    return authorize(user, resource, manage_action)


def has_any_role(user: User, role_names: Iterable[str]) -> bool:
    """
    Coarse role-name membership check.

    Inactive roles are skipped (and an inactive user holds none), the
    same filter `authorize` applies.
    """
    wanted = set(role_names)
    return any(role.name in wanted for role in _active_roles(user))


def effective_permissions(user: User) -> set[tuple[str, str]]:
    """Flatten every grant reachable through active roles into (resource, action) pairs."""
    return {
        (permission.resource, _action(permission))
        for role in _active_roles(user)
        for permission in role.permissions
    }
