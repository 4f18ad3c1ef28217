"""API route aggregation.

All routers registered here get mounted in main.py.

Learn: Paths are unversioned (/health, /auth/token, /api/cameras)
because the browser extension already ships with them hard-coded.
Only the token check guards the WebSocket; the HTTP routes are open,
so run the relay on a trusted network.
"""

from fastapi import APIRouter

from protectrelay.api.auth import router as auth_router
from protectrelay.api.cameras import router as cameras_router
from protectrelay.api.health import router as health_router
from protectrelay.api.simulation import router as simulation_router

api_router = APIRouter()

api_router.include_router(health_router, tags=["health"])
api_router.include_router(auth_router, tags=["auth"])
api_router.include_router(cameras_router, tags=["cameras"])
api_router.include_router(simulation_router, tags=["simulation"])
