"""Health endpoint tests."""

import pytest
from httpx import ASGITransport, AsyncClient

from protectrelay.config import Settings
from protectrelay.main import create_app
from protectrelay.upstream.client import ConnectionState

from conftest import TEST_SECRET


@pytest.mark.asyncio
async def test_health_returns_ok(client):
    """Health endpoint should return server status and version."""
    resp = await client.get("/health")
    assert resp.status_code == 200
    data = resp.json()
    assert data["server"] == "ok"
    assert data["status"] == "healthy"
    assert data["upstream"] == "disabled"
    assert data["clients"] == 0
    assert "version" in data


@pytest.mark.asyncio
async def test_health_degraded_while_nvr_unreachable():
    """Upstream enabled but not connected → degraded, not down."""
    app = create_app(Settings(jwt_secret=TEST_SECRET, simulation_enabled=False))
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        resp = await ac.get("/health")
    data = resp.json()
    assert resp.status_code == 200
    assert data["status"] == "degraded"
    assert data["upstream"] == ConnectionState.DISCONNECTED.value


@pytest.mark.asyncio
async def test_ws_info_points_at_socket(client):
    resp = await client.get("/api/ws-info")
    assert resp.status_code == 200
    assert resp.json() == {"endpoint": "ws://test/ws", "clients": 0}


@pytest.mark.asyncio
async def test_cameras_fall_back_to_static_list(client):
    """No NVR and no cache → the simulator's fallback cameras."""
    resp = await client.get("/api/cameras")
    assert resp.status_code == 200
    ids = [c["id"] for c in resp.json()]
    assert ids == ["cam-001", "cam-002", "cam-003", "doorbell-001"]
