"""
Permission Service Tests

The (resource, action) catalog: uniqueness, bulk creation, grouping
and guarded deletion.
"""

import uuid

import pytest
from sqlalchemy import select

from authz.core.errors import ConflictError, NotFoundError
from authz.models import PermissionAction, role_permissions
from authz.services import permission_service, role_service


# ==================== Creation ====================


@pytest.mark.asyncio
async def test_create_permission_normalizes_resource(db_session):
    perm = await permission_service.create_permission(
        "Export Reports", "  Report ", PermissionAction.READ, db_session, description="CSV export",
    )

    assert perm.resource == "report"
    assert perm.key == ("report", "read")


@pytest.mark.asyncio
async def test_resource_action_pair_is_unique(db_session, seeded_roles):
    with pytest.raises(ConflictError):
        await permission_service.create_permission("Another Name", "user", PermissionAction.READ, db_session)


@pytest.mark.asyncio
async def test_permission_name_is_unique(db_session, seeded_roles):
    with pytest.raises(ConflictError):
        await permission_service.create_permission("Read Users", "report", PermissionAction.READ, db_session)


@pytest.mark.asyncio
async def test_bulk_create_skips_duplicates(db_session, seeded_roles):
    created, skipped = await permission_service.bulk_create_permissions(
        [
            {"name": "Read Reports", "resource": "report", "action": "read"},
            {"name": "Read Users Again", "resource": "user", "action": "read"},
            {"name": "Manage Reports", "resource": "report", "action": "manage", "description": "all"},
        ],
        db_session,
    )

    assert [p.key for p in created] == [("report", "read"), ("report", "manage")]
    assert len(skipped) == 1
    assert skipped[0]["item"]["name"] == "Read Users Again"


# ==================== Queries ====================


@pytest.mark.asyncio
async def test_list_permissions_filters(db_session, seeded_roles):
    rows, total = await permission_service.list_permissions(db_session, resource="USER")
    assert total == 5
    assert {p.resource for p in rows} == {"user"}

    rows, total = await permission_service.list_permissions(db_session, action=PermissionAction.MANAGE)
    assert {p.resource for p in rows} == {"user", "role", "permission"}

    rows, total = await permission_service.list_permissions(db_session, search="audit")
    assert [p.name for p in rows] == ["Read Audit Logs"]


@pytest.mark.asyncio
async def test_group_by_resource_and_resource_list(db_session, seeded_roles):
    grouped = await permission_service.group_by_resource(db_session)

    assert set(grouped) == {"audit", "permission", "role", "user"}
    assert len(grouped["user"]) == 5
    assert await permission_service.list_resources(db_session) == ["audit", "permission", "role", "user"]


@pytest.mark.asyncio
async def test_update_description_only(db_session, seeded_roles):
    perm = next(p for p in seeded_roles["Super Admin"].permissions if p.key == ("audit", "read"))

    updated, changes = await permission_service.update_permission_description(perm.id, "New text", db_session)

    assert updated.description == "New text"
    assert changes == {"description": {"from": "View system audit logs", "to": "New text"}}


# ==================== Deletion ====================


@pytest.mark.asyncio
async def test_permission_used_by_active_role_cannot_be_deleted(db_session, seeded_roles):
    perm = next(p for p in seeded_roles["Super Admin"].permissions if p.key == ("audit", "read"))

    with pytest.raises(ConflictError, match="active role"):
        await permission_service.delete_permission(perm.id, db_session)


@pytest.mark.asyncio
async def test_permission_only_on_inactive_role_is_deleted(db_session, seeded_roles):
    perm = await permission_service.create_permission("Read Reports", "report", PermissionAction.READ, db_session)
    role = await role_service.create_role("Reporter", db_session, permission_ids=[perm.id])
    await role_service.deactivate_role(role.id, db_session)
    await db_session.commit()

    await permission_service.delete_permission(perm.id, db_session)
    await db_session.commit()

    with pytest.raises(NotFoundError):
        await permission_service.get_permission(perm.id, db_session)
    links = (
        await db_session.execute(
            select(role_permissions).where(role_permissions.c.permission_id == perm.id)
        )
    ).all()
    assert links == []


@pytest.mark.asyncio
async def test_delete_unknown_permission(db_session):
    with pytest.raises(NotFoundError):
        await permission_service.delete_permission(uuid.uuid4(), db_session)
