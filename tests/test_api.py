import asyncio

import pytest
from fastapi import Depends, FastAPI
from fastapi.testclient import TestClient

from navgate.api import get_navigation_session, register_exception_handlers, require_feature, router
from navgate.catalog import ACCOUNTING_ADVANCED, PARTS_MANAGEMENT_FULL
from navgate.config import NavGateConfig
from navgate.errors import FeatureNotFoundError
from navgate.models import PrincipalContext
from navgate.session import NavigationSession


def _build_app(session):
    app = FastAPI()
    app.state.navigation_session = session
    app.include_router(router)
    register_exception_handlers(app)

    @app.get("/accounting")
    async def accounting_page(session=Depends(require_feature(ACCOUNTING_ADVANCED))):
        return {"page": "accounting", "tenant_id": session.principal.tenant_id}

    @app.get("/parts")
    async def parts_page(session=Depends(require_feature(PARTS_MANAGEMENT_FULL))):
        return {"page": "parts"}

    @app.get("/features/{feature_key}")
    async def feature_detail(feature_key: str, session=Depends(get_navigation_session)):
        return {"definition": session.catalog.definition(feature_key).name}

    return app


@pytest.fixture
def session(make_client, cache, state_store, end_user):
    session = NavigationSession(
        NavGateConfig(),
        client=make_client(enabled=[ACCOUNTING_ADVANCED]),
        cache=cache,
        store=state_store,
    )
    asyncio.run(session.init(end_user))
    return session


@pytest.fixture
def api(session):
    with TestClient(_build_app(session)) as client:
        yield client


def test_navigation_lists_filtered_menu(api):
    response = api.get("/navigation")
    assert response.status_code == 200
    body = response.json()
    keys = [node["key"] for node in body["navigation_items"]]
    assert "accounting" in keys
    assert "partsManagement" not in keys
    assert body["is_loading"] is False


def test_feature_access_endpoint(api):
    body = api.get(f"/features/{PARTS_MANAGEMENT_FULL}/access").json()
    assert body["featureKey"] == PARTS_MANAGEMENT_FULL
    assert body["hasAccess"] is False
    assert body["showUpgrade"] is True
    assert body["reason"] == "Feature not enabled for tenant"


def test_guarded_route_granted(api):
    response = api.get("/accounting")
    assert response.status_code == 200
    assert response.json() == {"page": "accounting", "tenant_id": "tenant-1"}


def test_guarded_route_redirects_when_denied(api):
    response = api.get("/parts", follow_redirects=False)
    assert response.status_code == 307
    location = response.headers["location"]
    assert location.startswith("/unauthorized?")
    assert "from=%2Fparts" in location
    assert f"feature_key={PARTS_MANAGEMENT_FULL}" in location


def test_guarded_route_while_loading(make_client, cache, state_store):
    session = NavigationSession(
        NavGateConfig(),
        client=make_client(enabled=[ACCOUNTING_ADVANCED]),
        cache=cache,
        store=state_store,
    )
    principal = PrincipalContext(user_id="user-9", tenant_id="tenant-9", roles=("End-User",))
    # Bound but nothing fetched yet.
    asyncio.run(session.init(principal, warm=False))
    with TestClient(_build_app(session)) as client:
        response = client.get("/accounting")
    assert response.status_code == 503
    assert response.headers["retry-after"] == "5"


def test_refresh_and_clear_cache(api, session):
    response = api.post("/features/refresh")
    assert response.status_code == 200
    assert response.json() == {"refreshed": True, "enabled_feature_keys": [ACCOUNTING_ADVANCED]}

    assert api.delete("/features/cache").status_code == 204


def test_engine_errors_are_rendered(api):
    response = api.get("/features/ghost_feature")
    assert response.status_code == 404
    assert response.json()["error"]["code"] == FeatureNotFoundError.error_code


def test_missing_session_is_unavailable():
    app = FastAPI()
    app.include_router(router)
    with TestClient(app) as client:
        assert client.get("/navigation").status_code == 503
