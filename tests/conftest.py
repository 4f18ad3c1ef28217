"""Test fixtures — an app with no NVR, plus fake sockets for the registry.

Learn: Testing pattern for the relay:

1. Each test builds its own app with create_app(Settings(...)), so the
   registry and connector never leak between tests.
2. upstream_enabled=False keeps the lifespan from dialing a real NVR;
   simulation_enabled=False keeps synthetic events out of assertions.
3. Registry and liveness tests don't need a server at all — FakeSocket
   stands in for a starlette WebSocket (send_text / close / states).
"""

import asyncio
from datetime import datetime, timezone
from typing import Optional

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from starlette.websockets import WebSocketState

from protectrelay.config import Settings
from protectrelay.events.models import Camera, Event, EventSeverity, EventType
from protectrelay.main import create_app

TEST_SECRET = "test-secret-for-unit-tests-only"


# ═══════════════════════════════════════════════════════════
# Fakes
# ═══════════════════════════════════════════════════════════


class FakeSocket:
    """Just enough of starlette's WebSocket for ClientConnection.

    `fail` makes every send raise; `delay` makes every send hang that long.
    """

    def __init__(self, fail: bool = False, delay: float = 0.0):
        self.sent: list[str] = []
        self.closed_with: Optional[tuple[int, str]] = None
        self.client_state = WebSocketState.CONNECTED
        self.application_state = WebSocketState.CONNECTED
        self.fail = fail
        self.delay = delay

    async def send_text(self, data: str) -> None:
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail:
            raise RuntimeError("socket is broken")
        self.sent.append(data)

    async def close(self, code: int = 1000, reason: str = "") -> None:
        self.closed_with = (code, reason)
        self.application_state = WebSocketState.DISCONNECTED

    def drop(self) -> None:
        """Simulate the peer vanishing without a close frame."""
        self.client_state = WebSocketState.DISCONNECTED


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def make_event(
    event_type: EventType = EventType.MOTION,
    severity: EventSeverity = EventSeverity.MEDIUM,
    camera_id: str = "cam-001",
    event_id: str = "evt-1",
    simulation: bool = False,
) -> Event:
    return Event(
        id=event_id,
        type=event_type,
        severity=severity,
        timestamp=datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc),
        camera=Camera(id=camera_id, name="Front Door", type="G4 Pro"),
        description=f"{event_type.value} detected",
        metadata={"simulation": simulation},
    )


# ═══════════════════════════════════════════════════════════
# Fixtures
# ═══════════════════════════════════════════════════════════


@pytest.fixture()
def test_settings() -> Settings:
    return Settings(
        jwt_secret=TEST_SECRET,
        upstream_enabled=False,
        simulation_enabled=False,
    )


@pytest.fixture()
def app(test_settings):
    return create_app(test_settings)


@pytest_asyncio.fixture()
async def client(app):
    """HTTP client bound to a fresh app instance (no lifespan)."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()
