"""Client registry tests — membership, filters, and filtered broadcast.

Learn: FakeSocket stands in for the WebSocket, so these tests exercise
the registry's locking and eviction rules without a server.
"""

import asyncio
import json

import pytest

from protectrelay.events import types as msg
from protectrelay.events.models import EventFilter, EventSeverity, EventType
from protectrelay.realtime.registry import ClientConnection, ClientRegistry

from conftest import FakeSocket, make_event

ALL = EventFilter(enabled=True)


def connection(client_id: str, socket=None, event_filter=None) -> ClientConnection:
    return ClientConnection(
        client_id=client_id,
        websocket=socket or FakeSocket(),
        filter=event_filter or EventFilter(),
    )


# ═══════════════════════════════════════════════════════════
# Membership
# ═══════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_add_and_get_client(clock):
    registry = ClientRegistry(clock=clock)
    conn = connection("a")
    assert await registry.add_client(conn) is None
    assert await registry.get("a") is conn
    assert registry.count() == 1
    assert conn.last_activity == clock.now


@pytest.mark.asyncio
async def test_same_id_replaces_and_closes_previous():
    registry = ClientRegistry()
    old_socket = FakeSocket()
    old = connection("a", old_socket)
    new = connection("a")

    await registry.add_client(old)
    replaced = await registry.add_client(new)

    assert replaced is old
    assert registry.count() == 1
    assert await registry.get("a") is new
    assert old_socket.closed_with[0] == msg.CLOSE_SUPERSEDED


@pytest.mark.asyncio
async def test_broadcast_after_reconnect_reaches_only_new_transport():
    registry = ClientRegistry()
    old_socket, new_socket = FakeSocket(), FakeSocket()
    await registry.add_client(connection("a", old_socket, ALL))
    await registry.add_client(connection("a", new_socket, ALL))

    assert await registry.broadcast(make_event()) == 1
    assert old_socket.sent == []
    assert len(new_socket.sent) == 1


@pytest.mark.asyncio
async def test_remove_is_idempotent():
    registry = ClientRegistry()
    await registry.add_client(connection("a"))
    assert await registry.remove_client("a") is True
    assert await registry.remove_client("a") is False
    assert await registry.remove_client("never-there") is False
    assert registry.count() == 0


@pytest.mark.asyncio
async def test_superseded_connection_cannot_remove_replacement():
    registry = ClientRegistry()
    old = connection("a")
    new = connection("a")
    await registry.add_client(old)
    await registry.add_client(new)

    assert await registry.remove_client("a", connection=old) is False
    assert await registry.get("a") is new


@pytest.mark.asyncio
async def test_update_filter_replaces_wholesale_and_touches(clock):
    registry = ClientRegistry(clock=clock)
    conn = connection("a", event_filter=EventFilter(
        enabled=True, types=frozenset({EventType.PERSON}),
    ))
    await registry.add_client(conn)
    clock.advance(30)

    new_filter = EventFilter(enabled=True, cameras=frozenset({"cam-002"}))
    assert await registry.update_filter("a", new_filter) is True
    assert conn.filter == new_filter
    assert conn.filter.types == frozenset()
    assert conn.last_activity == clock.now


@pytest.mark.asyncio
async def test_update_filter_for_unknown_client():
    registry = ClientRegistry()
    assert await registry.update_filter("ghost", ALL) is False


@pytest.mark.asyncio
async def test_touch_refreshes_activity(clock):
    registry = ClientRegistry(clock=clock)
    conn = connection("a")
    await registry.add_client(conn)
    clock.advance(45)
    assert await registry.touch("a") is True
    assert conn.last_activity == clock.now
    assert await registry.touch("ghost") is False


# ═══════════════════════════════════════════════════════════
# Broadcast
# ═══════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_broadcast_respects_filters():
    registry = ClientRegistry()
    motion_socket, person_socket, silent_socket = FakeSocket(), FakeSocket(), FakeSocket()
    await registry.add_client(connection("motion", motion_socket, EventFilter(
        enabled=True, types=frozenset({EventType.MOTION}),
    )))
    await registry.add_client(connection("person", person_socket, EventFilter(
        enabled=True, types=frozenset({EventType.PERSON}),
    )))
    await registry.add_client(connection("silent", silent_socket))

    delivered = await registry.broadcast(make_event(EventType.PERSON))

    assert delivered == 1
    assert motion_socket.sent == []
    assert silent_socket.sent == []
    message = json.loads(person_socket.sent[0])
    assert message["type"] == msg.EVENT
    assert message["data"]["type"] == "person"
    assert message["data"]["camera"]["id"] == "cam-001"
    assert "timestamp" in message


@pytest.mark.asyncio
async def test_broadcast_with_no_clients():
    registry = ClientRegistry()
    assert await registry.broadcast(make_event()) == 0


@pytest.mark.asyncio
async def test_failed_send_evicts_only_that_client():
    registry = ClientRegistry()
    good, bad = FakeSocket(), FakeSocket(fail=True)
    await registry.add_client(connection("good", good, ALL))
    await registry.add_client(connection("bad", bad, ALL))

    delivered = await registry.broadcast(make_event())

    assert delivered == 1
    assert len(good.sent) == 1
    assert await registry.get("bad") is None
    assert await registry.get("good") is not None


@pytest.mark.asyncio
async def test_slow_client_times_out_and_is_evicted():
    registry = ClientRegistry(send_timeout=0.05)
    fast, slow = FakeSocket(), FakeSocket(delay=1.0)
    await registry.add_client(connection("fast", fast, ALL))
    await registry.add_client(connection("slow", slow, ALL))

    delivered = await asyncio.wait_for(registry.broadcast(make_event()), timeout=0.5)

    assert delivered == 1
    assert await registry.get("slow") is None
    assert len(fast.sent) == 1


@pytest.mark.asyncio
async def test_closed_transport_is_evicted_on_broadcast():
    registry = ClientRegistry()
    socket = FakeSocket()
    await registry.add_client(connection("a", socket, ALL))
    socket.drop()

    assert await registry.broadcast(make_event()) == 0
    assert registry.count() == 0


@pytest.mark.asyncio
async def test_removal_during_broadcast_is_safe():
    """A client removed mid-broadcast doesn't break delivery to the rest."""
    registry = ClientRegistry()
    sockets = [FakeSocket(delay=0.01) for _ in range(5)]
    for i, s in enumerate(sockets):
        await registry.add_client(connection(f"c{i}", s, ALL))

    delivered, _ = await asyncio.gather(
        registry.broadcast(make_event(severity=EventSeverity.HIGH)),
        registry.remove_client("c2"),
    )

    assert delivered == 5
    assert registry.count() == 4


@pytest.mark.asyncio
async def test_close_all():
    registry = ClientRegistry()
    sockets = [FakeSocket(), FakeSocket()]
    await registry.add_client(connection("a", sockets[0]))
    await registry.add_client(connection("b", sockets[1]))

    await registry.close_all(msg.CLOSE_NORMAL, "bye")

    assert registry.count() == 0
    assert all(s.closed_with == (msg.CLOSE_NORMAL, "bye") for s in sockets)
