"""
Shared pytest fixtures for navigation engine tests.

The feature backend is replaced by a MagicMock whose fetch methods are
AsyncMocks; time is driven by FakeClock so TTL behaviour is deterministic.
"""

from unittest.mock import AsyncMock, MagicMock

import pytest

from navgate.access import FeatureAccessResolver
from navgate.background import BackgroundTasks
from navgate.cache import FeatureCache
from navgate.catalog import FeatureCatalog
from navgate.events import FeatureEventEmitter
from navgate.models import (
    ROLE_CS_ADMIN,
    ROLE_CS_USER,
    ROLE_END_USER,
    ROLE_TENANT_ADMIN,
    PrincipalContext,
)
from navgate.store import LocalStateStore


class FakeClock:
    def __init__(self, start: float = 1_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeRedis:
    """Just enough of redis.Redis for LocalStateStore."""

    def __init__(self):
        self.store = {}

    def ping(self):
        return True

    def get(self, key):
        return self.store.get(key)

    def set(self, key, value):
        self.store[key] = value

    def delete(self, key):
        self.store.pop(key, None)


def build_client(enabled=(), permissions=(), roles=()):
    client = MagicMock()
    client.fetch_tenant_enabled_features = AsyncMock(return_value=list(enabled))
    client.fetch_permissions = AsyncMock(return_value=list(permissions))
    client.fetch_roles = AsyncMock(return_value=list(roles))
    client.fetch_all_features = AsyncMock(return_value=[])
    client.fetch_tenant_features = AsyncMock(return_value=[])
    client.fetch_audit_log = AsyncMock(return_value=[])
    client.enable_tenant_feature = AsyncMock(return_value=None)
    client.disable_tenant_feature = AsyncMock(return_value=None)
    client.bulk_update_tenant_features = AsyncMock(return_value=[])
    client.aclose = AsyncMock()
    return client


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def cache(clock):
    return FeatureCache(clock=clock)


@pytest.fixture
def catalog():
    return FeatureCatalog.default()


@pytest.fixture
def events():
    return FeatureEventEmitter()


@pytest.fixture
def recorded_events(events):
    received = []
    events.subscribe(received.append)
    return received


@pytest.fixture
def make_client():
    return build_client


@pytest.fixture
def fake_redis():
    return FakeRedis()


@pytest.fixture
def state_store(fake_redis):
    return LocalStateStore(client=fake_redis)


@pytest.fixture
def end_user():
    return PrincipalContext(user_id="user-1", tenant_id="tenant-1", roles=(ROLE_END_USER,))


@pytest.fixture
def tenant_admin():
    return PrincipalContext(user_id="admin-1", tenant_id="tenant-1", roles=(ROLE_TENANT_ADMIN,))


@pytest.fixture
def cs_admin():
    return PrincipalContext(user_id="cs-1", tenant_id="tenant-cs", roles=(ROLE_CS_ADMIN,))


@pytest.fixture
def cs_user():
    return PrincipalContext(user_id="cs-2", tenant_id="tenant-cs", roles=(ROLE_CS_USER,))


@pytest.fixture
def make_resolver(catalog, cache, events):
    """Factory: a resolver bound to `principal` with an optional client."""

    def factory(principal=None, client=None, *, resolver_catalog=None):
        resolver = FeatureAccessResolver(
            resolver_catalog or catalog,
            cache,
            client or build_client(),
            events=events,
            background=BackgroundTasks(),
        )
        if principal is not None:
            resolver.bind(principal)
        return resolver

    return factory
