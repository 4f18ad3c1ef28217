"""Liveness monitor — periodic sweep that evicts dead and idle clients.

Learn: Every ping_interval seconds the monitor walks a snapshot of the
registry:
- transport already closed → evict (no matter how recent the activity)
- idle longer than idle_timeout → close with 4001, evict
- otherwise → send a {"type": "ping"} probe; a failed probe evicts

Clients keep themselves alive by sending ping/pong or filter updates.
Eviction is strictly "older than" the threshold, so a client sitting
exactly at the limit survives one more sweep.
"""

import asyncio
from datetime import datetime, timezone
from typing import Optional

import structlog

from protectrelay.events import types as msg
from protectrelay.realtime.registry import ClientRegistry

logger = structlog.get_logger()


class LivenessMonitor:
    """Background sweeper for the client registry.

    Usage:
        monitor = LivenessMonitor(registry, ping_interval=30, idle_timeout=90)
        monitor.start()
        ...
        await monitor.stop()
    """

    def __init__(
        self,
        registry: ClientRegistry,
        ping_interval: float = 30.0,
        idle_timeout: float = 90.0,
    ):
        self.registry = registry
        self.ping_interval = ping_interval
        self.idle_timeout = idle_timeout
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self.run_loop())

    async def stop(self) -> None:
        """Cancel the sweep task and wait for it to finish."""
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.info("liveness.stopped")

    async def run_loop(self) -> None:
        logger.info(
            "liveness.started",
            ping_interval=self.ping_interval,
            idle_timeout=self.idle_timeout,
        )
        while True:
            await asyncio.sleep(self.ping_interval)
            try:
                await self.sweep_once()
            except Exception:
                logger.exception("liveness.sweep_error")

    async def sweep_once(self) -> list[str]:
        """Run one sweep. Returns the ids of evicted clients."""
        now = self.registry.clock()
        evicted: list[str] = []

        for conn in await self.registry.snapshot():
            if conn.is_closed:
                if await self.registry.remove_client(conn.client_id, connection=conn):
                    evicted.append(conn.client_id)
                    logger.info("liveness.evicted_closed", client_id=conn.client_id)
                continue

            idle_for = now - conn.last_activity
            if idle_for > self.idle_timeout:
                await conn.close(msg.CLOSE_IDLE_TIMEOUT, "Idle timeout")
                if await self.registry.remove_client(conn.client_id, connection=conn):
                    evicted.append(conn.client_id)
                    logger.info(
                        "liveness.evicted_idle",
                        client_id=conn.client_id,
                        idle_seconds=round(idle_for, 1),
                    )
                continue

            try:
                await asyncio.wait_for(
                    conn.send_json({
                        "type": msg.PING,
                        "timestamp": datetime.now(timezone.utc).isoformat(),
                    }),
                    self.registry.send_timeout,
                )
            except Exception as e:
                logger.warning(
                    "liveness.probe_failed",
                    client_id=conn.client_id,
                    error=str(e) or type(e).__name__,
                )
                await conn.close()
                if await self.registry.remove_client(conn.client_id, connection=conn):
                    evicted.append(conn.client_id)

        return evicted
