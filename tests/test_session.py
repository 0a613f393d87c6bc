from unittest.mock import AsyncMock

import pytest

from navgate.cache import access_check_key, admin_features_key, audit_log_key, tenant_features_key
from navgate.catalog import ACCOUNTING_ADVANCED, PARTS_MANAGEMENT_FULL
from navgate.config import NavGateConfig
from navgate.errors import NetworkError
from navgate.events import FeatureEventType
from navgate.guards import Granted, Redirect
from navgate.models import Permission, PrincipalContext, Role
from navgate.navigation import find_node
from navgate.permissions import PERMISSION_SNAPSHOT_SCOPE
from navgate.session import NavigationSession
from navgate.tenant_selection import RECENT_TENANTS_SCOPE


@pytest.fixture
def client(make_client):
    return make_client(
        enabled=[ACCOUNTING_ADVANCED],
        permissions=[Permission(id="report.read", name="Read reports")],
        roles=[Role(id="End-User", name="End User", permissions=frozenset({"report.read"}))],
    )


@pytest.fixture
def session(client, cache, state_store, events):
    return NavigationSession(
        NavGateConfig(),
        client=client,
        cache=cache,
        store=state_store,
        events=events,
    )


@pytest.mark.asyncio
async def test_init_warms_features_and_permissions(session, client, end_user):
    await session.init(end_user)

    assert session.is_loading is False
    assert session.has_feature_access(ACCOUNTING_ADVANCED) is True
    assert session.permissions.has_permission("report.read") is True
    client.fetch_tenant_enabled_features.assert_awaited_once_with("tenant-1")


@pytest.mark.asyncio
async def test_hybrid_navigation(session, end_user):
    await session.init(end_user)
    hybrid = session.use_hybrid_navigation()

    assert hybrid.is_loading is False
    assert find_node(hybrid.navigation_items, "accounting") is not None
    assert find_node(hybrid.navigation_items, "partsManagement") is None
    assert hybrid.has_menu_access("accounting") is True
    assert hybrid.has_feature_access(PARTS_MANAGEMENT_FULL) is False
    assert hybrid.debug_info["enabled_feature_keys"] == [ACCOUNTING_ADVANCED]
    assert hybrid.debug_info["accessible_menu_items"] < hybrid.debug_info["total_menu_items"]


@pytest.mark.asyncio
async def test_init_with_failing_backend_fails_closed(make_client, cache, state_store, end_user):
    client = make_client()
    client.fetch_tenant_enabled_features = AsyncMock(side_effect=NetworkError("down"))
    client.fetch_permissions = AsyncMock(side_effect=NetworkError("down"))
    session = NavigationSession(NavGateConfig(), client=client, cache=cache, store=state_store)

    await session.init(end_user)

    assert session.is_loading is False
    assert session.has_feature_access(ACCOUNTING_ADVANCED) is False
    assert find_node(session.navigation_items(), "home") is not None
    assert session.debug_info()["last_error"] == "down"


@pytest.mark.asyncio
async def test_sign_out_drops_tenant_and_user_state(session, cache, state_store, recorded_events, end_user):
    await session.init(end_user)
    await session.access.check_feature_access(ACCOUNTING_ADVANCED)
    session.select_tenant("tenant-9", "Shop Nine")

    session.sign_out()

    assert session.principal is None
    assert cache.get(tenant_features_key("tenant-1")) is None
    assert cache.get(access_check_key("tenant-1", ACCOUNTING_ADVANCED)) is None
    assert state_store.read(PERMISSION_SNAPSHOT_SCOPE, end_user.user_id) is None
    assert state_store.read(RECENT_TENANTS_SCOPE, end_user.user_id) is None
    assert session.navigation_items() == []
    assert recorded_events[-1].type is FeatureEventType.CACHE_INVALIDATED
    assert recorded_events[-1].reason == "sign-out"


@pytest.mark.asyncio
async def test_sign_out_drops_global_admin_entries(session, cache, end_user):
    await session.init(end_user)
    cache.set(admin_features_key(), ["definitions"], 600)
    cache.set(audit_log_key(), ["entries"], 120)

    session.sign_out()

    assert cache.get(admin_features_key()) is None
    assert cache.get(audit_log_key()) is None


@pytest.mark.asyncio
async def test_switching_principal_does_not_leak_previous_tenant(session, client, cache):
    first = PrincipalContext(user_id="u1", tenant_id="tenant-a", roles=("End-User",))
    second = PrincipalContext(user_id="u2", tenant_id="tenant-b", roles=("End-User",))
    await session.init(first)

    client.fetch_tenant_enabled_features = AsyncMock(return_value=[])
    await session.init(second)

    assert cache.get(tenant_features_key("tenant-a")) is None
    assert session.has_feature_access(ACCOUNTING_ADVANCED) is False


@pytest.mark.asyncio
async def test_refresh_features_keeps_old_set_on_failure(session, client, end_user):
    await session.init(end_user)
    client.fetch_tenant_enabled_features = AsyncMock(side_effect=NetworkError("down"))

    assert await session.refresh_features() is None
    assert session.has_feature_access(ACCOUNTING_ADVANCED) is True


@pytest.mark.asyncio
async def test_refresh_features_replaces_set(session, client, end_user):
    await session.init(end_user)
    client.fetch_tenant_enabled_features = AsyncMock(return_value=[PARTS_MANAGEMENT_FULL])

    assert await session.refresh_features() == frozenset({PARTS_MANAGEMENT_FULL})
    assert session.has_feature_access(ACCOUNTING_ADVANCED) is False


@pytest.mark.asyncio
async def test_clear_cache_serves_old_set_until_refetch(session, client, cache, recorded_events, end_user):
    await session.init(end_user)
    client.fetch_tenant_enabled_features = AsyncMock(return_value=[])

    session.clear_cache()
    assert cache.is_stale(tenant_features_key("tenant-1")) is True
    assert session.has_feature_access(ACCOUNTING_ADVANCED) is True
    assert any(e.type is FeatureEventType.CACHE_INVALIDATED for e in recorded_events)

    await session._background.drain()
    assert session.has_feature_access(ACCOUNTING_ADVANCED) is False


@pytest.mark.asyncio
async def test_guard_factories_use_configured_redirect(make_client, cache, state_store, end_user):
    config = NavGateConfig(unauthorized_path="/no-access")
    session = NavigationSession(config, client=make_client(enabled=[]), cache=cache, store=state_store)
    await session.init(end_user)

    result = session.route_guard(ACCOUNTING_ADVANCED).evaluate("/accounting", lambda: "page")
    assert isinstance(result, Redirect)
    assert result.to == "/no-access"
    assert session.use_feature_guard(ACCOUNTING_ADVANCED).can_access is False
    assert session.control_guard(ACCOUNTING_ADVANCED).button().enabled is False
    assert isinstance(session.component_guard("dashboard_basic").evaluate(lambda: "ok"), Granted)


@pytest.mark.asyncio
async def test_multi_feature_guard_factory(session, end_user):
    await session.init(end_user)
    guard = session.multi_feature_guard([ACCOUNTING_ADVANCED, PARTS_MANAGEMENT_FULL], require_all=False)
    assert isinstance(guard.current(lambda: "ok"), Granted)


@pytest.mark.asyncio
async def test_select_tenant_records_recent(session, cs_admin):
    await session.init(cs_admin)
    session.select_tenant("tenant-1", "First")
    recent = session.select_tenant("tenant-2", "Second")
    assert [t.tenant_id for t in recent] == ["tenant-2", "tenant-1"]


def test_select_tenant_requires_principal(session):
    with pytest.raises(ValueError):
        session.select_tenant("tenant-1")


@pytest.mark.asyncio
async def test_admin_service_carries_principal_roles(session, cs_admin, end_user):
    await session.init(cs_admin)
    assert session.admin().capabilities.can_bulk_update is True

    await session.init(end_user)
    assert session.admin().capabilities.can_view_features is False


@pytest.mark.asyncio
async def test_dispose_leaves_injected_client_open(session, client, end_user):
    await session.init(end_user)
    await session.dispose()
    assert session.principal is None
    client.aclose.assert_not_awaited()
