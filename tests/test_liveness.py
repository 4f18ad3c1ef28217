"""Liveness monitor tests — idle eviction, dead transports, ping probes."""

import json

import pytest

from protectrelay.events import types as msg
from protectrelay.realtime.liveness import LivenessMonitor
from protectrelay.realtime.registry import ClientConnection, ClientRegistry

from conftest import FakeSocket


async def register(registry: ClientRegistry, client_id: str, socket: FakeSocket):
    conn = ClientConnection(client_id=client_id, websocket=socket)
    await registry.add_client(conn)
    return conn


@pytest.mark.asyncio
async def test_active_client_gets_ping_probe(clock):
    registry = ClientRegistry(clock=clock)
    monitor = LivenessMonitor(registry, ping_interval=30, idle_timeout=90)
    socket = FakeSocket()
    await register(registry, "a", socket)

    clock.advance(30)
    assert await monitor.sweep_once() == []

    probe = json.loads(socket.sent[-1])
    assert probe["type"] == msg.PING
    assert registry.count() == 1


@pytest.mark.asyncio
async def test_client_at_exact_threshold_survives(clock):
    registry = ClientRegistry(clock=clock)
    monitor = LivenessMonitor(registry, ping_interval=30, idle_timeout=90)
    await register(registry, "a", FakeSocket())

    clock.advance(90)
    assert await monitor.sweep_once() == []
    assert registry.count() == 1


@pytest.mark.asyncio
async def test_idle_client_evicted_with_4001(clock):
    registry = ClientRegistry(clock=clock)
    monitor = LivenessMonitor(registry, ping_interval=30, idle_timeout=90)
    socket = FakeSocket()
    await register(registry, "a", socket)

    clock.advance(90.5)
    assert await monitor.sweep_once() == ["a"]
    assert registry.count() == 0
    assert socket.closed_with[0] == msg.CLOSE_IDLE_TIMEOUT


@pytest.mark.asyncio
async def test_activity_resets_idle_clock(clock):
    registry = ClientRegistry(clock=clock)
    monitor = LivenessMonitor(registry, ping_interval=30, idle_timeout=90)
    await register(registry, "a", FakeSocket())

    clock.advance(60)
    await registry.touch("a")
    clock.advance(60)

    assert await monitor.sweep_once() == []


@pytest.mark.asyncio
async def test_closed_transport_evicted_regardless_of_activity(clock):
    registry = ClientRegistry(clock=clock)
    monitor = LivenessMonitor(registry, ping_interval=30, idle_timeout=90)
    socket = FakeSocket()
    await register(registry, "a", socket)
    socket.drop()

    assert await monitor.sweep_once() == ["a"]
    assert registry.count() == 0


@pytest.mark.asyncio
async def test_failed_probe_evicts(clock):
    registry = ClientRegistry(clock=clock)
    monitor = LivenessMonitor(registry, ping_interval=30, idle_timeout=90)
    await register(registry, "ok", FakeSocket())
    await register(registry, "broken", FakeSocket(fail=True))

    assert await monitor.sweep_once() == ["broken"]
    assert await registry.get("ok") is not None


@pytest.mark.asyncio
async def test_start_and_stop():
    monitor = LivenessMonitor(ClientRegistry(), ping_interval=30, idle_timeout=90)
    monitor.start()
    assert monitor.running
    await monitor.stop()
    assert not monitor.running
    await monitor.stop()
