from unittest.mock import AsyncMock

import pytest

from navgate.admin import (
    AdminCapabilities,
    FeatureAdminService,
    compute_feature_stats,
    search_tenant_features,
    validate_bulk_operation,
)
from navgate.cache import admin_tenant_features_key, audit_log_key, tenant_features_key
from navgate.catalog import ACCOUNTING_ADVANCED, KPI_GOALS_ADVANCED, SHOP_KPI_BASIC
from navgate.errors import (
    DependencyNotMetError,
    FeatureAlreadyEnabledError,
    InsufficientPermissionsError,
    NetworkError,
    ValidationError,
)
from navgate.events import FeatureEventType
from navgate.models import ROLE_CS_ADMIN, ROLE_CS_USER, ROLE_END_USER
from navgate.schemas import BulkFeatureUpdate, TenantFeatureResponse


def _tenant_feature(feature_id="f-acc", key=ACCOUNTING_ADVANCED, enabled=False, **extra):
    return TenantFeatureResponse(
        feature_id=feature_id,
        feature_key=key,
        feature_name=extra.pop("name", "Accounting"),
        category=extra.pop("category", "paid"),
        is_enabled=enabled,
        **extra,
    )


@pytest.fixture
def client(make_client):
    return make_client()


@pytest.fixture
def service(client, cache, events):
    return FeatureAdminService(client, cache, events, user_id="cs-1", roles=[ROLE_CS_ADMIN])


def test_capabilities_by_role():
    admin = AdminCapabilities.for_roles([ROLE_CS_ADMIN])
    staff = AdminCapabilities.for_roles([ROLE_CS_USER])
    tenant = AdminCapabilities.for_roles([ROLE_END_USER])

    assert admin.can_delete_features is True
    assert staff.can_bulk_update is True
    assert staff.can_create_features is False
    assert tenant == AdminCapabilities()


@pytest.mark.asyncio
async def test_non_staff_cannot_mutate(client, cache, events):
    service = FeatureAdminService(client, cache, events, user_id="u", roles=[ROLE_END_USER])
    with pytest.raises(InsufficientPermissionsError):
        await service.enable_feature("tenant-1", "f-acc")
    client.enable_tenant_feature.assert_not_called()


@pytest.mark.asyncio
async def test_fetch_all_features_is_cached(service, client):
    await service.fetch_all_features()
    await service.fetch_all_features()
    client.fetch_all_features.assert_awaited_once()

    await service.fetch_all_features(force=True)
    assert client.fetch_all_features.await_count == 2


@pytest.mark.asyncio
async def test_enable_success_invalidates_and_emits(service, client, cache, recorded_events):
    cache.set(tenant_features_key("tenant-1"), frozenset(), 300)
    cache.set(admin_tenant_features_key("tenant-1"), [_tenant_feature(enabled=False)], 300)
    client.enable_tenant_feature = AsyncMock(return_value=_tenant_feature(enabled=True))

    result = await service.enable_feature("tenant-1", "f-acc", reason="upsell")

    assert result.is_enabled is True
    client.enable_tenant_feature.assert_awaited_once_with("tenant-1", "f-acc", "upsell")
    assert cache.get(admin_tenant_features_key("tenant-1")) is None
    # Readers keep the previous set until the next fetch lands.
    assert cache.get(tenant_features_key("tenant-1")).data == frozenset()
    assert cache.is_stale(tenant_features_key("tenant-1")) is True

    event = recorded_events[-1]
    assert event.type is FeatureEventType.FEATURE_ENABLED
    assert event.feature_key == ACCOUNTING_ADVANCED
    assert event.user_id == "cs-1"
    assert event.reason == "upsell"


@pytest.mark.asyncio
async def test_mutation_drops_cross_tenant_audit_log(service, client, cache):
    cache.set(admin_tenant_features_key("tenant-1"), [_tenant_feature(enabled=False)], 300)
    cache.set(audit_log_key(), ["entries"], 120)
    cache.set(audit_log_key("tenant-1"), ["entries"], 120)
    client.enable_tenant_feature = AsyncMock(return_value=_tenant_feature(enabled=True))

    await service.enable_feature("tenant-1", "f-acc")

    assert cache.get(audit_log_key()) is None
    assert cache.get(audit_log_key("tenant-1")) is None


@pytest.mark.asyncio
async def test_failed_disable_leaves_cache_untouched(service, client, cache, recorded_events):
    cache.set(tenant_features_key("tenant-1"), frozenset({ACCOUNTING_ADVANCED}), 300)
    cached = [_tenant_feature(enabled=True)]
    cache.set(admin_tenant_features_key("tenant-1"), cached, 300)
    client.disable_tenant_feature = AsyncMock(side_effect=NetworkError("backend down"))

    with pytest.raises(NetworkError):
        await service.disable_feature("tenant-1", "f-acc")

    assert cache.get(tenant_features_key("tenant-1")).data == frozenset({ACCOUNTING_ADVANCED})
    assert cache.is_stale(tenant_features_key("tenant-1")) is False
    assert cache.get(admin_tenant_features_key("tenant-1")).data == cached
    assert recorded_events[-1].type is FeatureEventType.FEATURES_UPDATE_FAILED
    assert recorded_events[-1].reason == "Failed to disable feature"


@pytest.mark.asyncio
async def test_enable_already_enabled_is_rejected(service, client, cache):
    cache.set(admin_tenant_features_key("tenant-1"), [_tenant_feature(enabled=True)], 300)
    with pytest.raises(FeatureAlreadyEnabledError):
        await service.enable_feature("tenant-1", "f-acc")
    client.enable_tenant_feature.assert_not_called()


@pytest.mark.asyncio
async def test_reason_length_is_validated(service, client):
    with pytest.raises(ValidationError):
        await service.enable_feature("tenant-1", "f-acc", reason="x" * 501)
    client.enable_tenant_feature.assert_not_called()


def test_validate_bulk_operation_collects_errors():
    assert validate_bulk_operation([]) == (False, ["No feature updates provided"])

    valid, errors = validate_bulk_operation(
        [{"feature_id": "", "is_enabled": True}, {"featureId": "f2", "is_enabled": True, "reason": "x" * 501}]
    )
    assert valid is False
    assert errors == [
        "Feature ID is required for update 1",
        "Reason for update 2 must not exceed 500 characters",
    ]

    too_many = [{"feature_id": f"f{i}", "is_enabled": True} for i in range(51)]
    valid, errors = validate_bulk_operation(too_many)
    assert errors == ["Maximum 50 features can be updated in a single operation"]


@pytest.mark.asyncio
async def test_bulk_update_emits_changed_keys(service, client, recorded_events):
    client.bulk_update_tenant_features = AsyncMock(return_value=[_tenant_feature(enabled=True)])
    await service.bulk_update(
        "tenant-1",
        [{"feature_id": "f-acc", "is_enabled": True, "reason": "renewal"}],
    )

    sent = client.bulk_update_tenant_features.await_args.args[1]
    assert sent == [BulkFeatureUpdate(feature_id="f-acc", is_enabled=True, reason="renewal")]
    event = recorded_events[-1]
    assert event.type is FeatureEventType.FEATURES_BULK_UPDATED
    assert event.feature_keys == (ACCOUNTING_ADVANCED,)
    assert event.reason == "renewal"


@pytest.mark.asyncio
async def test_bulk_update_rejects_invalid_request(service, client):
    with pytest.raises(ValidationError):
        await service.bulk_update("tenant-1", [])
    client.bulk_update_tenant_features.assert_not_called()


@pytest.mark.asyncio
async def test_bulk_update_multiple_tenants_reports_per_tenant(service, client):
    async def bulk(tenant_id, updates):
        if tenant_id == "tenant-3":
            raise NetworkError("tenant-3 rejected")
        return []

    client.bulk_update_tenant_features = AsyncMock(side_effect=bulk)
    tenants = [f"tenant-{i}" for i in range(1, 8)]

    outcome = await service.bulk_update_multiple_tenants(
        tenants, [BulkFeatureUpdate(feature_id="f-acc", is_enabled=False)]
    )

    assert outcome["success"] == [t for t in tenants if t != "tenant-3"]
    assert outcome["failed"] == [{"tenant_id": "tenant-3", "error": "tenant-3 rejected"}]
    assert client.bulk_update_tenant_features.await_count == 7


@pytest.mark.asyncio
async def test_audit_log_cached_per_tenant(service, client):
    await service.fetch_audit_log("tenant-1")
    await service.fetch_audit_log("tenant-1")
    await service.fetch_audit_log("tenant-2")
    assert client.fetch_audit_log.await_count == 2


@pytest.mark.asyncio
async def test_feature_stats(service, client):
    by_tenant = {
        "tenant-1": [_tenant_feature(enabled=True), _tenant_feature("f-parts", "parts_management_full")],
        "tenant-2": [_tenant_feature(enabled=False), _tenant_feature("f-parts", "parts_management_full")],
    }
    client.fetch_tenant_features = AsyncMock(side_effect=lambda tenant_id: by_tenant[tenant_id])

    stats = await service.feature_stats(["tenant-1", "tenant-2"])

    assert stats.to_dict() == {
        "total_features": 2,
        "total_tenants": 2,
        "features_enabled_count": 1,
        "active_features": 1,
    }


def test_compute_feature_stats_empty():
    assert compute_feature_stats({}).total_features == 0


def test_search_tenant_features():
    features = [
        _tenant_feature(enabled=True, description="Chart of accounts"),
        _tenant_feature("f-dash", "dashboard_basic", name="Dashboard", category="free"),
    ]
    assert [f.feature_id for f in search_tenant_features(features, is_enabled=True)] == ["f-acc"]
    assert [f.feature_id for f in search_tenant_features(features, category="FREE")] == ["f-dash"]
    assert [f.feature_id for f in search_tenant_features(features, search_query="chart")] == ["f-acc"]
    assert search_tenant_features(features, feature_key="missing") == []


@pytest.mark.asyncio
async def test_enable_requires_listed_dependencies(service, client, cache):
    cache.set(
        admin_tenant_features_key("tenant-1"),
        [
            _tenant_feature("f-kpi", KPI_GOALS_ADVANCED, name="KPI and Goals"),
            _tenant_feature("f-shop", SHOP_KPI_BASIC, name="Shop KPI", category="free"),
        ],
        300,
    )
    with pytest.raises(DependencyNotMetError) as exc_info:
        await service.enable_feature("tenant-1", "f-kpi")
    assert exc_info.value.missing == (SHOP_KPI_BASIC,)
    client.enable_tenant_feature.assert_not_called()
