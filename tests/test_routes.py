"""
HTTP control surface, wired end to end against a mocked Graph API and
in-memory SQLite.
"""
import json

import httpx
import pytest
from fastapi.testclient import TestClient

from adsync.core.errors import ConfigurationError
from adsync.main import create_app
from adsync.services import build_services

from fakes import make_settings


def graph_handler(request: httpx.Request) -> httpx.Response:
    path = request.url.path.removeprefix("/v21.0/")
    if path == "act_1":
        return httpx.Response(
            200, json={"id": "act_1", "account_id": "1", "name": "Shop", "account_status": 1}
        )
    if path == "998877/owned_ad_accounts":
        data = [{"id": "act_1", "account_id": "1", "name": "Shop", "account_status": 1}]
    elif path == "act_1/campaigns":
        data = [{"id": "c1", "account_id": "1", "name": "Spring", "status": "ACTIVE"}]
    elif path == "act_1/adsets":
        data = [{"id": "s1", "campaign_id": "c1", "account_id": "1"}]
    elif path == "act_1/ads":
        data = [{"id": "a1", "adset_id": "s1", "account_id": "1", "creative": {"id": "cr1"}}]
    elif path == "act_1/insights":
        day = json.loads(request.url.params["time_range"])["since"]
        data = [{"account_id": "1", "ad_id": "a1", "date_start": day, "spend": "3.20"}]
    elif path == "debug_token":
        return httpx.Response(
            200, json={"data": {"is_valid": True, "expires_at": 0, "scopes": ["ads_read"]}}
        )
    else:
        return httpx.Response(404, json={"error": {"message": f"Unknown path {path}", "code": 803}})
    return httpx.Response(200, json={"data": data})


@pytest.fixture
def services(engine):
    return build_services(
        make_settings(), engine=engine, transport=httpx.MockTransport(graph_handler)
    )


@pytest.fixture
def client(services):
    with TestClient(create_app(services)) as test_client:
        yield test_client


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


def test_manual_sync_then_status(client):
    response = client.post("/sync/manual")

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "success"
    assert body["report"]["accounts_synced"] == 1
    assert body["report"]["counts"]["ad"]["inserted"] == 1

    status = client.get("/sync/status").json()
    stats = status.pop("sync_stats")
    assert stats["total_syncs"] == 3
    assert stats["failed_syncs"] == 0
    assert status == {
        "is_connected": True,
        "account_count": 1,
        "campaign_count": 1,
        "ad_set_count": 1,
        "ad_count": 1,
        "reporting_count": 1,
    }


def test_hierarchy_sync(client):
    body = client.post("/sync/hierarchy").json()
    assert body["report"]["operation"] == "account_hierarchy"
    assert body["report"]["counts"]["campaign"]["inserted"] == 1


def test_performance_for_date(client):
    client.post("/sync/hierarchy")
    body = client.post("/sync/performance/date/2026-09-30").json()

    assert body["status"] == "success"
    assert body["report"]["operation"] == "performance 2026-09-30"
    assert body["report"]["counts"]["insight"]["inserted"] == 1


def test_performance_for_bad_date_is_400(client):
    response = client.post("/sync/performance/date/30-09-2026")
    assert response.status_code == 400


def test_yesterday_performance(client):
    body = client.post("/sync/performance/yesterday").json()
    assert body["report"]["operation"].startswith("performance ")


def test_partial_status_when_an_account_fails(engine):
    def handler(request):
        if request.url.path.endswith("act_1/adsets"):
            return httpx.Response(400, json={"error": {"message": "nope", "code": 100}})
        return graph_handler(request)

    services = build_services(make_settings(), engine=engine, transport=httpx.MockTransport(handler))
    with TestClient(create_app(services)) as client:
        body = client.post("/sync/hierarchy").json()

    assert body["status"] == "partial"
    assert body["report"]["failures"][0]["kind"] == "permanent"
    assert body["report"]["failures"][0]["account_id"] == "act_1"


def test_connectivity_client_and_token(client):
    assert client.get("/sync/connectivity").json() == {"connected": True}

    token = client.get("/sync/token").json()
    assert token["status"]["is_authenticated"] is True
    assert token["scopes"] == ["ads_read"]

    status = client.get("/sync/client").json()
    assert status["request_count"] == 2
    assert status["available_permits"] == 3
    assert status["auth_status"]["message"] == "Authenticated successfully"


def test_routes_without_services_are_503():
    # no lifespan without the context manager, so nothing is wired
    client = TestClient(create_app())
    assert client.get("/sync/status").status_code == 503


def test_missing_credentials_fail_wiring(engine):
    with pytest.raises(ConfigurationError):
        build_services(make_settings(meta_access_token=""), engine=engine)


def test_today_performance(client):
    body = client.post("/sync/performance").json()

    assert body["status"] == "success"
    assert body["report"]["counts"]["insight"]["inserted"] == 1


def test_force_sync_for_one_account(client):
    body = client.post("/sync/force/1").json()

    assert body["status"] == "success"
    assert body["report"]["operation"] == "account act_1"
    assert body["report"]["counts"]["ad"]["inserted"] == 1


def test_force_sync_for_unknown_account_is_partial(client):
    body = client.post("/sync/force/act_999").json()

    assert body["status"] == "partial"
    assert body["report"]["failures"][0]["account_id"] == "act_999"

    stats = client.get("/sync/status").json()["sync_stats"]
    assert stats["failures"][0]["scope"] == "hierarchy"


def test_shutdown_disposes_the_engine(services):
    pool = services.engine.pool
    with TestClient(create_app(services)):
        pass
    assert services.engine.pool is not pool
