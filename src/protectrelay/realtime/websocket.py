"""WebSocket endpoint — real-time event delivery to browser extension clients.

Learn: Each client connects to /ws?token=JWT (or sends the token as
`Authorization: Bearer <jwt>`). The handler:
1. Accepts the upgrade and verifies the token (close 1008 on failure)
2. Registers a ClientConnection with a disabled filter
3. Sends {"type": "connected"} — steps 1-3 must finish within the
   handshake timeout or the socket is closed with 4008
4. Services control messages until the client goes away

Broadcasts don't run in this handler — the registry writes to the
socket directly. This handler only reads.
"""

import asyncio
import json
from datetime import datetime, timezone
from typing import Optional

import structlog
from fastapi import APIRouter, WebSocket
from pydantic import ValidationError
from starlette.websockets import WebSocketState

from protectrelay.auth.tokens import InvalidTokenError, verify_client_token
from protectrelay.config import Settings
from protectrelay.events import types as msg
from protectrelay.events.models import EventFilter
from protectrelay.realtime.registry import ClientConnection, ClientRegistry

logger = structlog.get_logger()
router = APIRouter()


def extract_token(websocket: WebSocket) -> Optional[str]:
    """Token from ?token= or an `Authorization: Bearer` header."""
    token = websocket.query_params.get("token")
    if token:
        return token
    authorization = websocket.headers.get("authorization", "")
    if authorization.startswith("Bearer "):
        return authorization[7:].strip() or None
    return None


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


@router.websocket("/ws")
async def client_websocket(websocket: WebSocket):
    """WebSocket endpoint for filtered camera events.

    Learn: The registry entry is removed in `finally` with the
    connection guard, so a socket that was superseded by a newer
    connection for the same client id can't evict its replacement.
    """
    config: Settings = websocket.app.state.settings
    registry: ClientRegistry = websocket.app.state.registry

    try:
        conn = await asyncio.wait_for(
            _handshake(websocket, registry, config),
            timeout=config.ws_handshake_timeout_seconds,
        )
    except asyncio.TimeoutError:
        logger.warning(
            "ws.handshake_timeout", timeout=config.ws_handshake_timeout_seconds
        )
        if websocket.application_state != WebSocketState.DISCONNECTED:
            await websocket.close(
                code=msg.CLOSE_HANDSHAKE_TIMEOUT, reason="Handshake timeout"
            )
        return

    if conn is None:
        return

    log = logger.bind(client_id=conn.client_id)
    try:
        await _receive_loop(websocket, conn, registry, config, log)
    except Exception as e:
        log.warning("ws.transport_error", error=str(e) or type(e).__name__)
    finally:
        await registry.remove_client(conn.client_id, connection=conn)
        await conn.close()
        log.info("ws.client_disconnected")


async def _handshake(
    websocket: WebSocket,
    registry: ClientRegistry,
    config: Settings,
) -> Optional[ClientConnection]:
    """Authenticate, register, and acknowledge. None if rejected."""
    await websocket.accept()

    token = extract_token(websocket)
    if not token:
        logger.warning("ws.rejected", reason="missing_token")
        await websocket.close(
            code=msg.CLOSE_AUTH_FAILED, reason="Authentication required"
        )
        return None

    try:
        client_id = verify_client_token(
            token, secret=config.jwt_secret, algorithm=config.jwt_algorithm
        )
    except InvalidTokenError:
        logger.warning("ws.rejected", reason="invalid_token")
        await websocket.close(
            code=msg.CLOSE_AUTH_FAILED, reason="Invalid or expired token"
        )
        return None

    conn = ClientConnection(client_id=client_id, websocket=websocket)
    await registry.add_client(conn)
    try:
        await conn.send_json({
            "type": msg.CONNECTED,
            "clientId": client_id,
            "timestamp": _now(),
        })
    except BaseException:
        # Timed out or the client vanished mid-handshake
        await registry.remove_client(client_id, connection=conn)
        raise

    logger.info("ws.client_connected", client_id=client_id)
    return conn


async def _receive_loop(
    websocket: WebSocket,
    conn: ClientConnection,
    registry: ClientRegistry,
    config: Settings,
    log,
) -> None:
    while True:
        message = await websocket.receive()
        if message["type"] == "websocket.disconnect":
            return

        data = message.get("text")
        if data is None:
            data = (message.get("bytes") or b"").decode("utf-8", errors="replace")

        if len(data.encode("utf-8")) > config.ws_max_message_bytes:
            log.warning("ws.message_too_big", size=len(data))
            await conn.close(msg.CLOSE_MESSAGE_TOO_BIG, "Message too big")
            return

        await handle_client_message(conn, registry, data, log)


async def handle_client_message(
    conn: ClientConnection,
    registry: ClientRegistry,
    data: str,
    log=logger,
) -> None:
    """Apply one client control message. Malformed input is logged and dropped."""
    try:
        payload = json.loads(data)
    except json.JSONDecodeError as e:
        log.warning("ws.malformed_message", error=str(e))
        return
    if not isinstance(payload, dict):
        log.warning("ws.malformed_message", error="expected a JSON object")
        return

    message_type = payload.get("type")

    if message_type == msg.UPDATE_FILTERS:
        try:
            event_filter = EventFilter.model_validate(payload.get("filters") or {})
        except ValidationError as e:
            log.warning("ws.invalid_filters", errors=e.error_count())
            return
        await registry.update_filter(conn.client_id, event_filter)

    elif message_type == msg.PING:
        await registry.touch(conn.client_id)
        await conn.send_json({"type": msg.PONG, "timestamp": _now()})

    elif message_type == msg.PONG:
        await registry.touch(conn.client_id)

    else:
        log.info("ws.unknown_message_type", message_type=message_type)
