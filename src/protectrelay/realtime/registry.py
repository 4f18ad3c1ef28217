"""Client registry and broadcast engine.

Learn: The registry is the only owner of the client map. Three paths
touch it concurrently:
1. The upstream connector's event callback → broadcast()
2. Each WebSocket handler → add/remove/update_filter/touch
3. The liveness monitor's sweep → snapshot() + remove_client()

All mutations go through one asyncio.Lock. Broadcast copies the map
under the lock and writes outside it, so a slow client never holds
the lock and a removal mid-broadcast can't invalidate the iteration.

Delivery is one best-effort write per matching client. A write that
fails or exceeds send_timeout evicts that client — no retries, and
never at the expense of the other clients.
"""

import asyncio
import json
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Optional

import structlog
from starlette.websockets import WebSocketState

from protectrelay.events import types as msg
from protectrelay.events.models import Event, EventFilter

logger = structlog.get_logger()


@dataclass
class ClientConnection:
    """One authenticated downstream client.

    `websocket` is a starlette WebSocket (or anything with the same
    send_text / close / client_state surface).
    """

    client_id: str
    websocket: Any
    filter: EventFilter = field(default_factory=EventFilter)
    last_activity: float = field(default_factory=time.monotonic)
    connected_at: datetime = field(
        default_factory=lambda: datetime.now(timezone.utc)
    )

    @property
    def is_closed(self) -> bool:
        return (
            self.websocket.client_state == WebSocketState.DISCONNECTED
            or self.websocket.application_state == WebSocketState.DISCONNECTED
        )

    async def send_json(self, message: dict[str, Any]) -> None:
        await self.websocket.send_text(json.dumps(message))

    async def close(self, code: int = msg.CLOSE_NORMAL, reason: str = "") -> None:
        """Close the transport if it is still open. Never raises."""
        if self.is_closed:
            return
        try:
            await self.websocket.close(code=code, reason=reason)
        except Exception as e:
            logger.debug("registry.close_failed", client_id=self.client_id, error=str(e))


def event_message(event: Event) -> str:
    """Serialize an event once for every recipient."""
    return json.dumps({
        "type": msg.EVENT,
        "data": event.to_wire(),
        "timestamp": datetime.now(timezone.utc).isoformat(),
    })


class ClientRegistry:
    """Connected clients keyed by client id. At most one entry per id."""

    def __init__(
        self,
        send_timeout: float = 5.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.send_timeout = send_timeout
        self.clock = clock
        self._clients: dict[str, ClientConnection] = {}
        self._lock = asyncio.Lock()

    async def add_client(self, conn: ClientConnection) -> Optional[ClientConnection]:
        """Insert conn, replacing any entry with the same id.

        Returns the replaced connection (already closed) if there was one.
        """
        conn.last_activity = self.clock()
        async with self._lock:
            previous = self._clients.get(conn.client_id)
            self._clients[conn.client_id] = conn
            total = len(self._clients)

        if previous is not None and previous is not conn:
            await previous.close(msg.CLOSE_SUPERSEDED, "Superseded by a newer connection")
            logger.info("registry.client_replaced", client_id=conn.client_id, clients=total)
            return previous

        logger.info("registry.client_added", client_id=conn.client_id, clients=total)
        return None

    async def remove_client(
        self,
        client_id: str,
        connection: Optional[ClientConnection] = None,
    ) -> bool:
        """Remove a client. Idempotent — removing an absent id is a no-op.

        With `connection`, only remove the entry if it is that exact
        connection, so a superseded handler can't evict its replacement.
        """
        async with self._lock:
            current = self._clients.get(client_id)
            if current is None:
                return False
            if connection is not None and current is not connection:
                return False
            del self._clients[client_id]
            total = len(self._clients)

        logger.info("registry.client_removed", client_id=client_id, clients=total)
        return True

    async def update_filter(self, client_id: str, event_filter: EventFilter) -> bool:
        """Replace a client's filter wholesale and refresh its activity."""
        async with self._lock:
            conn = self._clients.get(client_id)
            if conn is None:
                return False
            conn.filter = event_filter
            conn.last_activity = self.clock()

        logger.info(
            "registry.filter_updated",
            client_id=client_id,
            enabled=event_filter.enabled,
            types=sorted(t.value for t in event_filter.types),
            severity=sorted(s.value for s in event_filter.severity),
            cameras=sorted(event_filter.cameras),
        )
        return True

    async def touch(self, client_id: str) -> bool:
        """Record activity for a client (ping, pong, filter update)."""
        async with self._lock:
            conn = self._clients.get(client_id)
            if conn is None:
                return False
            conn.last_activity = self.clock()
        return True

    async def get(self, client_id: str) -> Optional[ClientConnection]:
        async with self._lock:
            return self._clients.get(client_id)

    async def snapshot(self) -> list[ClientConnection]:
        async with self._lock:
            return list(self._clients.values())

    def count(self) -> int:
        return len(self._clients)

    async def broadcast(self, event: Event) -> int:
        """Deliver an event to every client whose filter matches.

        Returns the number of successful deliveries.
        """
        clients = await self.snapshot()
        recipients = [c for c in clients if c.filter.matches(event)]
        if not recipients:
            logger.debug(
                "registry.broadcast_no_recipients",
                event_id=event.id,
                event_type=event.type.value,
                clients=len(clients),
            )
            return 0

        message = event_message(event)
        results = await asyncio.gather(
            *(self._deliver(conn, message) for conn in recipients)
        )
        delivered = sum(1 for ok in results if ok)

        logger.info(
            "registry.broadcast",
            event_id=event.id,
            event_type=event.type.value,
            severity=event.severity.value,
            simulated=event.is_simulated,
            delivered=delivered,
            failed=len(recipients) - delivered,
        )
        return delivered

    async def _deliver(self, conn: ClientConnection, message: str) -> bool:
        if conn.is_closed:
            await self.remove_client(conn.client_id, connection=conn)
            return False
        try:
            await asyncio.wait_for(conn.websocket.send_text(message), self.send_timeout)
            return True
        except Exception as e:
            logger.warning(
                "registry.delivery_failed",
                client_id=conn.client_id,
                error=str(e) or type(e).__name__,
            )
            await self.remove_client(conn.client_id, connection=conn)
            await conn.close()
            return False

    async def close_all(self, code: int = msg.CLOSE_NORMAL, reason: str = "") -> None:
        """Close and forget every client (shutdown)."""
        async with self._lock:
            clients = list(self._clients.values())
            self._clients.clear()
        for conn in clients:
            await conn.close(code, reason)
        if clients:
            logger.info("registry.closed_all", clients=len(clients))
