"""
Authorization Engine Tests

Pure decision checks over in-memory principals — no database:
1. Grant matching and the `manage` wildcard
2. Inactive principals and inactive roles
3. Ownership fallback
4. Coarse role-name checks
"""

import uuid

from authz.models import Permission, PermissionAction, Role, User
from authz.rbac.engine import (
    authorize,
    authorize_owner_or_permission,
    effective_permissions,
    has_any_role,
)


def _perm(resource: str, action: str) -> Permission:
    return Permission(
        id=uuid.uuid4(),
        name=f"{resource}:{action}",
        resource=resource,
        action=PermissionAction(action),
    )


def _role(name: str, *grants: tuple[str, str], is_active: bool = True) -> Role:
    return Role(
        id=uuid.uuid4(),
        name=name,
        is_active=is_active,
        permissions=[_perm(r, a) for r, a in grants],
    )


def _user(*roles: Role, is_active: bool = True) -> User:
    return User(
        id=uuid.uuid4(),
        email="principal@example.com",
        password_hash="x",
        first_name="P",
        last_name="Rincipal",
        is_active=is_active,
        roles=list(roles),
    )


# ==================== Grant Matching ====================


def test_manager_reads_users_but_cannot_delete():
    manager = _user(_role("Manager", ("user", "read")))

    assert authorize(manager, "user", "read") is True
    assert authorize(manager, "user", "delete") is False


def test_manage_grants_every_action_on_its_resource():
    admin = _user(_role("Admin", ("user", "manage")))

    for action in ("create", "read", "update", "delete", "manage"):
        assert authorize(admin, "user", action) is True
    assert authorize(admin, "role", "read") is False


def test_resource_must_match_exactly():
    user = _user(_role("Reader", ("user", "read")))

    assert authorize(user, "users", "read") is False
    assert authorize(user, "role", "read") is False


def test_user_without_roles_is_denied():
    assert authorize(_user(), "user", "read") is False


def test_grants_union_across_roles():
    user = _user(_role("A", ("user", "read")), _role("B", ("role", "update")))

    assert authorize(user, "user", "read") is True
    assert authorize(user, "role", "update") is True
    assert authorize(user, "role", "delete") is False


# ==================== Inactive Principal / Role ====================


def test_inactive_principal_is_denied_everything():
    superuser = _user(_role("Super Admin", ("user", "manage"), ("role", "manage")), is_active=False)

    assert authorize(superuser, "user", "read") is False
    assert authorize(superuser, "role", "manage") is False
    assert effective_permissions(superuser) == set()


def test_inactive_role_contributes_nothing():
    user = _user(
        _role("Retired", ("user", "delete"), is_active=False),
        _role("Reader", ("user", "read")),
    )

    assert authorize(user, "user", "delete") is False
    assert authorize(user, "user", "read") is True


# ==================== Ownership ====================


def test_owner_may_act_on_own_record_without_permission():
    user = _user()

    assert authorize_owner_or_permission(user, "user", user.id) is True
    assert authorize_owner_or_permission(user, "user", str(user.id)) is True


def test_owner_id_matches_regardless_of_text_form():
    user = _user()

    assert authorize_owner_or_permission(user, "user", str(user.id).upper()) is True
    assert authorize_owner_or_permission(user, "user", user.id.hex) is True
    assert authorize_owner_or_permission(user, "user", "not-a-uuid") is False


def test_non_owner_needs_manage():
    reader = _user(_role("Reader", ("user", "read"), ("user", "update")))
    admin = _user(_role("Admin", ("user", "manage")))
    other = uuid.uuid4()

    assert authorize_owner_or_permission(reader, "user", other) is False
    assert authorize_owner_or_permission(admin, "user", other) is True


def test_custom_manage_action_is_checked_for_non_owner():
    editor = _user(_role("Editor", ("user", "update")))

    assert authorize_owner_or_permission(editor, "user", uuid.uuid4(), manage_action="update") is True


def test_inactive_owner_is_denied():
    user = _user(is_active=False)

    assert authorize_owner_or_permission(user, "user", user.id) is False


def test_missing_target_falls_back_to_permission():
    admin = _user(_role("Admin", ("user", "manage")))

    assert authorize_owner_or_permission(admin, "user", None) is True
    assert authorize_owner_or_permission(_user(), "user", None) is False


# ==================== Role Names ====================


def test_has_any_role_matches_by_name():
    user = _user(_role("Manager"), _role("User"))

    assert has_any_role(user, ["Admin", "Manager"]) is True
    assert has_any_role(user, ["Admin"]) is False
    assert has_any_role(user, []) is False


def test_has_any_role_ignores_inactive_roles_and_principals():
    user = _user(_role("Admin", is_active=False))

    assert has_any_role(user, ["Admin"]) is False
    assert has_any_role(_user(_role("Admin"), is_active=False), ["Admin"]) is False


def test_effective_permissions_flattens_active_grants():
    user = _user(
        _role("A", ("user", "read"), ("role", "read")),
        _role("B", ("user", "read"), ("audit", "read")),
        _role("Off", ("permission", "manage"), is_active=False),
    )

    assert effective_permissions(user) == {("user", "read"), ("role", "read"), ("audit", "read")}
