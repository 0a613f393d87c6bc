import asyncio
from unittest.mock import AsyncMock

import pytest

from navgate.background import BackgroundTasks
from navgate.errors import NetworkError
from navgate.models import Permission, Role
from navgate.permissions import PERMISSION_SNAPSHOT_SCOPE, PermissionResolver

PERMISSIONS = [
    Permission(id="report.read", name="Read reports", category="Reports"),
    Permission(id="report.all", name="Manage reports", category="Reports"),
    Permission(id="user.manage", name="Manage users"),
]
ROLES = [
    Role(id="End-User", name="End User", permissions=frozenset({"report.read"})),
    Role(id="Tenant-Admin", name="Tenant Admin", permissions=frozenset({"report.read", "report.all", "user.manage"})),
]


@pytest.fixture
def client(make_client):
    return make_client(permissions=PERMISSIONS, roles=ROLES)


@pytest.mark.asyncio
async def test_load_resolves_permissions_through_roles(client, state_store, end_user):
    resolver = PermissionResolver(client, store=state_store)
    resolver.bind(end_user)
    assert await resolver.ensure_loaded() is True

    assert resolver.has_permission("report.read") is True
    assert resolver.has_permission("report.all") is False
    assert resolver.has_role("End-User") is True
    assert [p.id for p in resolver.permissions_for_role("Tenant-Admin")] == [
        "report.read",
        "report.all",
        "user.manage",
    ]


@pytest.mark.asyncio
async def test_permissions_by_category_defaults_to_other(client, end_user):
    resolver = PermissionResolver(client)
    resolver.bind(end_user)
    await resolver.load()
    grouped = resolver.permissions_by_category()
    assert sorted(grouped) == ["Other", "Reports"]
    assert [p.id for p in grouped["Other"]] == ["user.manage"]


@pytest.mark.asyncio
async def test_fetch_failure_fails_closed(make_client, end_user):
    client = make_client()
    client.fetch_permissions = AsyncMock(side_effect=NetworkError("down"))
    resolver = PermissionResolver(client)
    resolver.bind(end_user)

    assert await resolver.load() is False
    assert resolver.load_failed is True
    assert resolver.has_permission("report.read") is False


@pytest.mark.asyncio
async def test_snapshot_restores_without_refetch(client, state_store, end_user, make_client):
    first = PermissionResolver(client, store=state_store)
    first.bind(end_user)
    await first.load()

    second_client = make_client()
    second = PermissionResolver(second_client, store=state_store)
    second.bind(end_user)

    assert second.is_loaded is True
    assert second.has_permission("report.read") is True
    second_client.fetch_permissions.assert_not_called()


def test_bad_snapshot_is_deleted(client, state_store, end_user):
    state_store.write(PERMISSION_SNAPSHOT_SCOPE, end_user.user_id, {"schema_version": 42})
    resolver = PermissionResolver(client, store=state_store, background=BackgroundTasks())
    resolver.bind(end_user)

    assert resolver.is_loaded is False
    assert state_store.read(PERMISSION_SNAPSHOT_SCOPE, end_user.user_id) is None


@pytest.mark.parametrize("version", [None, "abc"])
def test_snapshot_with_corrupt_version_is_deleted(client, state_store, end_user, version):
    state_store.write(
        PERMISSION_SNAPSHOT_SCOPE,
        end_user.user_id,
        {"schema_version": version, "permissions": [], "roles": []},
    )
    resolver = PermissionResolver(client, store=state_store, background=BackgroundTasks())
    resolver.bind(end_user)

    assert resolver.is_loaded is False
    assert resolver.has_permission("report.read") is False
    assert state_store.read(PERMISSION_SNAPSHOT_SCOPE, end_user.user_id) is None


@pytest.mark.asyncio
async def test_clear_drops_persisted_snapshot(client, state_store, end_user):
    resolver = PermissionResolver(client, store=state_store)
    resolver.bind(end_user)
    await resolver.load()
    resolver.clear()

    assert state_store.read(PERMISSION_SNAPSHOT_SCOPE, end_user.user_id) is None
    assert resolver.has_permission("report.read") is False


@pytest.mark.asyncio
async def test_result_for_previous_principal_is_discarded(make_client, end_user, tenant_admin):
    gate = asyncio.Event()

    async def slow_permissions():
        await gate.wait()
        return PERMISSIONS

    client = make_client(roles=ROLES)
    client.fetch_permissions = AsyncMock(side_effect=slow_permissions)
    resolver = PermissionResolver(client)
    resolver.bind(end_user)

    pending = asyncio.create_task(resolver.load())
    await asyncio.sleep(0)
    resolver.bind(tenant_admin)
    gate.set()

    assert await pending is False
    assert resolver.is_loaded is False


@pytest.mark.asyncio
async def test_checks_schedule_a_background_load(client, end_user):
    background = BackgroundTasks()
    resolver = PermissionResolver(client, background=background)
    resolver.bind(end_user)

    assert resolver.has_permission("report.read") is False
    await background.drain()

    assert resolver.has_permission("report.read") is True
    client.fetch_permissions.assert_awaited_once()
