"""FastAPI application factory.

Learn: App factory pattern — create_app() returns a configured FastAPI
instance. The shared components (client registry, NVR connector,
liveness monitor) are built here and hung on app.state, so routes,
the WebSocket handler, and tests all see the same instances.
Lifespan wires them together and starts/stops the background tasks.
"""

from contextlib import asynccontextmanager
from typing import Optional

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from protectrelay import __version__
from protectrelay.api import api_router
from protectrelay.config import Settings, settings
from protectrelay.events import types as msg
from protectrelay.realtime.liveness import LivenessMonitor
from protectrelay.realtime.registry import ClientRegistry
from protectrelay.upstream.client import ProtectConnector

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown lifecycle.

    Learn: Anything before `yield` runs at startup, after `yield` runs
    at shutdown. The connector's callback is the registry's broadcast,
    which is the only link between the upstream and downstream halves.
    """
    config: Settings = app.state.settings
    registry: ClientRegistry = app.state.registry
    connector: ProtectConnector = app.state.connector
    liveness: LivenessMonitor = app.state.liveness

    logger.info(
        "protectrelay.starting",
        version=__version__,
        environment=config.environment,
        port=config.port,
        upstream=config.unifi_host if config.upstream_enabled else "disabled",
    )

    connector.subscribe(registry.broadcast)
    if config.upstream_enabled:
        await connector.start()
    liveness.start()

    yield

    logger.info("protectrelay.shutdown", clients=registry.count())
    await liveness.stop()
    await connector.disconnect()
    await registry.close_all(msg.CLOSE_NORMAL, "Server shutting down")


def create_app(config: Optional[Settings] = None) -> FastAPI:
    """Build and return the FastAPI application."""
    config = config or settings

    app = FastAPI(
        title="Protect Relay",
        description="Real-time UniFi Protect event relay for browser clients",
        version=__version__,
        lifespan=lifespan,
    )

    registry = ClientRegistry(send_timeout=config.ws_send_timeout_seconds)
    app.state.settings = config
    app.state.registry = registry
    app.state.connector = ProtectConnector(config)
    app.state.liveness = LivenessMonitor(
        registry,
        ping_interval=config.ws_ping_interval_seconds,
        idle_timeout=config.ws_idle_timeout_seconds,
    )

    # ── Middleware stack ──────────────────────────────────────
    # Starlette middleware executes in reverse order of registration.
    # Request flow: CORS → Security → RequestId → handler

    from protectrelay.middleware.request_id import RequestIdMiddleware
    from protectrelay.middleware.security import SecurityHeadersMiddleware

    app.add_middleware(RequestIdMiddleware)
    app.add_middleware(SecurityHeadersMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(api_router)

    from protectrelay.realtime.websocket import router as ws_router
    app.include_router(ws_router)

    return app


# Default app instance (used by uvicorn: protectrelay.main:app)
app = create_app()
