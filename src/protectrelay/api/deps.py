"""FastAPI dependencies for the relay's shared components.

Learn: create_app() hangs the registry, connector, and settings on
app.state. Route handlers pull them in with Depends() so tests can
swap any of them through app.dependency_overrides.
"""

from fastapi import Request

from protectrelay.config import Settings
from protectrelay.realtime.registry import ClientRegistry
from protectrelay.upstream.client import ProtectConnector


def get_config(request: Request) -> Settings:
    return request.app.state.settings


def get_registry(request: Request) -> ClientRegistry:
    return request.app.state.registry


def get_connector(request: Request) -> ProtectConnector:
    return request.app.state.connector
