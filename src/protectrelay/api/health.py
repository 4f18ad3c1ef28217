"""Health check endpoint.

Learn: Reports the process status, the connected client count, and the
upstream state. "degraded" means the relay is up but the NVR isn't —
clients are only getting synthetic events.
"""

from fastapi import APIRouter, Depends, Request

from protectrelay import __version__
from protectrelay.api.deps import get_config, get_connector, get_registry
from protectrelay.config import Settings
from protectrelay.realtime.registry import ClientRegistry
from protectrelay.upstream.client import ConnectionState, ProtectConnector

router = APIRouter()


@router.get("/health")
async def health_check(
    config: Settings = Depends(get_config),
    registry: ClientRegistry = Depends(get_registry),
    connector: ProtectConnector = Depends(get_connector),
):
    """Check server health and upstream connectivity."""
    if config.upstream_enabled:
        upstream = connector.state.value
        healthy = connector.state == ConnectionState.CONNECTED
    else:
        upstream = "disabled"
        healthy = True

    return {
        "status": "healthy" if healthy else "degraded",
        "server": "ok",
        "version": __version__,
        "clients": registry.count(),
        "upstream": upstream,
    }


@router.get("/api/ws-info")
async def ws_info(
    request: Request,
    registry: ClientRegistry = Depends(get_registry),
):
    """Where to open the event WebSocket, for the extension's options page."""
    scheme = "wss" if request.url.scheme == "https" else "ws"
    return {
        "endpoint": f"{scheme}://{request.url.netloc}/ws",
        "clients": registry.count(),
    }
