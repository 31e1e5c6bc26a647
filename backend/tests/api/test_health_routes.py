"""Health Routes — verifies liveness, readiness and data-layer diagnostics over HTTP.

Tests:
    - Liveness always 200; readiness 503 until the monitor is CONNECTED
    - Missing data layer → 503 structured error
    - Subscription lookup 404s for unknown ids
    - Notices endpoint validates its limit

Design Decisions:
    - ASGITransport does not run the lifespan: tests place a fake-backed layer on app.state
"""

import pytest
from httpx import ASGITransport, AsyncClient

from backbone.config import Settings
from backbone.core.options import SubscriptionOptions
from backbone.main import app
from backbone.services.connection_monitor import RECONNECTED_NOTICE
from backbone.services.data_layer import build_data_layer
from tests.services.fakes import FakeDataEndpoint, FakePushEndpoint

BASE = "/api/v1/health"


@pytest.fixture
async def layer():
    settings = Settings(
        database_url="sqlite+aiosqlite://",
        health_check_interval_ms=3_600_000,
        reconnect_delay_ms=0,
        max_reconnect_attempts=1,
    )
    layer = build_data_layer(
        settings, data_endpoint=FakeDataEndpoint([True]), push_endpoint=FakePushEndpoint(),
    )
    app.state.data_layer = layer
    yield layer
    await layer.stop()
    app.state.data_layer = None


@pytest.fixture
async def client():
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


async def test_liveness(client):
    resp = await client.get(f"{BASE}/")
    assert resp.status_code == 200
    assert resp.json()["status"] == "healthy"


async def test_not_ready_before_start(client, layer):
    resp = await client.get(f"{BASE}/ready")
    assert resp.status_code == 503
    assert resp.json()["connection"] == "disconnected"


async def test_ready_after_start(client, layer):
    await layer.start()
    resp = await client.get(f"{BASE}/ready")
    assert resp.status_code == 200
    assert resp.json()["checks"]["backing_service"] == "connected"


async def test_missing_layer_is_503(client):
    app.state.data_layer = None
    resp = await client.get(f"{BASE}/connection")
    assert resp.status_code == 503
    assert resp.json()["error"]["code"] == "DATA_LAYER_NOT_READY"


async def test_connection_overview(client, layer):
    await layer.start()
    await layer.subscriptions.subscribe("sub-1", lambda p: None, SubscriptionOptions(table="lessons"))
    resp = await client.get(f"{BASE}/connection")
    body = resp.json()
    assert body["status"] == "connected"
    assert body["reconnect_attempts"] == 0
    assert body["last_health_check"]["healthy"] is True
    assert body["active_subscriptions"] == 1


async def test_force_reconnect(client, layer):
    await layer.start()
    resp = await client.post(f"{BASE}/connection/reconnect")
    assert resp.status_code == 200
    assert resp.json()["status"] == "connected"
    assert layer.notices.recent()[-1].message == RECONNECTED_NOTICE


async def test_subscription_status(client, layer):
    await layer.subscriptions.subscribe("sub-1", lambda p: None, SubscriptionOptions(table="lessons"))
    resp = await client.get(f"{BASE}/subscriptions/sub-1")
    assert resp.status_code == 200
    assert resp.json() == {
        "id": "sub-1", "exists": True, "active": True,
        "reconnect_attempts": 0, "state": "active",
    }


async def test_unknown_subscription_is_404(client, layer):
    resp = await client.get(f"{BASE}/subscriptions/nope")
    assert resp.status_code == 404
    assert resp.json()["error"]["code"] == "RESOURCE_NOT_FOUND"


async def test_notices(client, layer):
    layer.notices.show_error("first")
    layer.notices.show_success("second")
    resp = await client.get(f"{BASE}/notices", params={"limit": 1})
    assert [n["message"] for n in resp.json()["notices"]] == ["second"]


async def test_notices_limit_validated(client, layer):
    resp = await client.get(f"{BASE}/notices", params={"limit": -1})
    assert resp.status_code == 400
    assert resp.json()["error"]["code"] == "VALIDATION_ERROR"


async def test_lifespan_starts_and_stops_layer():
    from backbone.main import lifespan

    async with lifespan(app):
        layer = app.state.data_layer
        assert layer.monitor.is_connected
    assert app.state.data_layer is None
    assert layer.monitor.is_connected is False
