"""Camera listing.

Best effort: the live NVR list when connected, else the last cached
list, else the static fallback cameras the simulator uses.
"""

from fastapi import APIRouter, Depends

from protectrelay.api.deps import get_connector
from protectrelay.events.models import Camera
from protectrelay.upstream.client import ProtectConnector

router = APIRouter(prefix="/api")


@router.get("/cameras", response_model=list[Camera])
async def list_cameras(connector: ProtectConnector = Depends(get_connector)):
    return await connector.get_cameras()
