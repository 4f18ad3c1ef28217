"""UniFi Protect connector — owns the one connection to the NVR.

Learn: The connector is a small state machine driven by a supervisor task:

    DISCONNECTED → CONNECTING → CONNECTED → DISCONNECTED → (backoff) → CONNECTING ...

connect() is a single attempt:
1. GET  /proxy/protect/integration/v1/liveviews   (validates the API key)
2. GET  /proxy/protect/integration/v1/nvrs        (version, best effort)
3. GET  /proxy/protect/integration/v1/cameras     (camera cache, best effort)
4. WSS  /proxy/protect/integration/v1/subscribe/events

Any failure becomes UpstreamUnavailableError; the supervisor logs it,
sleeps the backoff delay, and tries again. Nothing here is ever fatal
and nothing about the outage reaches clients except the synthetic
stream, which speeds up while the NVR is away.

The heartbeat is the websockets library's own ping/pong: a missed pong
closes the socket, which ends _listen() and drops us to DISCONNECTED.

Events leave through exactly one callback slot. subscribe() replaces
whatever was there — the relay has one consumer (the registry), so
there is no fan-out at this layer.
"""

import asyncio
import json
import ssl
from collections import OrderedDict
from enum import Enum
from typing import Any, Awaitable, Callable, Optional

import httpx
import structlog
from pydantic import ValidationError
from websockets.asyncio.client import connect as ws_connect
from websockets.exceptions import ConnectionClosed, WebSocketException

from protectrelay import __version__
from protectrelay.config import Settings
from protectrelay.events.models import Camera, Event, EventType
from protectrelay.upstream.backoff import ExponentialBackoff
from protectrelay.upstream.normalize import camera_from_protect, normalize_event
from protectrelay.upstream.simulator import (
    FALLBACK_CAMERAS,
    EventSimulator,
    SimulationConfig,
)

logger = structlog.get_logger()

API_PREFIX = "/proxy/protect/integration/v1"

EventCallback = Callable[[Event], Awaitable[None]]

# How many recent event ids to remember for add/update de-duplication
SEEN_EVENT_WINDOW = 512


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


class UpstreamUnavailableError(Exception):
    """The NVR could not be reached, rejected us, or dropped the session."""


class ProtectConnector:
    """Resilient event source for one UniFi Protect NVR."""

    def __init__(
        self,
        config: Settings,
        *,
        simulator: Optional[EventSimulator] = None,
        backoff: Optional[ExponentialBackoff] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        socket_factory: Optional[Callable[..., Awaitable[Any]]] = None,
    ):
        self.config = config
        self.state = ConnectionState.DISCONNECTED
        self.simulator = simulator or EventSimulator(
            SimulationConfig(interval=config.simulation_interval_seconds)
        )
        self.backoff = backoff or ExponentialBackoff(
            initial=config.upstream_backoff_initial_seconds,
            maximum=config.upstream_backoff_max_seconds,
            factor=config.upstream_backoff_factor,
        )
        self.nvr_version: Optional[str] = None
        self.last_error: Optional[str] = None
        self.events_received = 0

        self._http = http_client
        self._owns_http = http_client is None
        self._socket_factory = socket_factory or ws_connect
        self._socket: Any = None
        self._callback: Optional[EventCallback] = None
        self._cameras: dict[str, Camera] = {}
        self._seen: OrderedDict[str, None] = OrderedDict()
        self._supervisor: Optional[asyncio.Task] = None

    # ─── Subscription ─────────────────────────────────────

    def subscribe(self, callback: EventCallback) -> None:
        """Install the event callback, replacing any previous one."""
        self._callback = callback
        logger.info("upstream.subscribed")

    def unsubscribe(self) -> None:
        self._callback = None

    async def _dispatch(self, event: Event) -> None:
        callback = self._callback
        if callback is None:
            return
        try:
            await callback(event)
        except Exception:
            logger.exception("upstream.callback_error", event_id=event.id)

    # ─── Lifecycle ────────────────────────────────────────

    @property
    def running(self) -> bool:
        return self._supervisor is not None and not self._supervisor.done()

    async def start(self) -> None:
        """Start the reconnect loop and (if enabled) the synthetic stream."""
        if self.running:
            return
        if self.config.simulation_enabled:
            self.simulator.set_interval(self.config.simulation_interval_seconds)
            self.simulator.start(self._dispatch)
        self._supervisor = asyncio.create_task(self._supervise())
        logger.info(
            "upstream.started",
            host=self.config.unifi_host,
            port=self.config.unifi_port,
            simulation=self.config.simulation_enabled,
        )

    async def disconnect(self) -> None:
        """Stop everything: reconnect loop, backoff wait, synthetic stream, sockets."""
        task, self._supervisor = self._supervisor, None
        if task is not None:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        await self.simulator.stop()
        await self._close_socket()
        if self._http is not None and self._owns_http:
            await self._http.aclose()
            self._http = None
        self._set_state(ConnectionState.DISCONNECTED)
        logger.info("upstream.disconnected")

    def _set_state(self, state: ConnectionState) -> None:
        if state != self.state:
            logger.info("upstream.state_changed", old=self.state.value, new=state.value)
            self.state = state

    async def _supervise(self) -> None:
        while True:
            try:
                await self.connect()
            except UpstreamUnavailableError as e:
                self.last_error = str(e)
                delay = self.backoff.next_delay()
                logger.warning(
                    "upstream.connect_failed",
                    error=str(e),
                    attempt=self.backoff.attempts,
                    retry_in=delay,
                )
                await asyncio.sleep(delay)
                continue
            except Exception as e:
                self.last_error = str(e) or type(e).__name__
                self._set_state(ConnectionState.DISCONNECTED)
                delay = self.backoff.next_delay()
                logger.exception("upstream.connect_error", retry_in=delay)
                await asyncio.sleep(delay)
                continue

            self.backoff.reset()
            self.last_error = None
            self.simulator.set_interval(self.config.simulation_connected_interval_seconds)
            try:
                await self._listen()
                logger.warning("upstream.connection_closed")
            except (ConnectionClosed, OSError) as e:
                self.last_error = str(e) or type(e).__name__
                logger.warning("upstream.connection_lost", error=self.last_error)
            except Exception as e:
                self.last_error = str(e) or type(e).__name__
                logger.exception("upstream.listen_error")
            finally:
                await self._close_socket()
                self._set_state(ConnectionState.DISCONNECTED)
                self.simulator.set_interval(self.config.simulation_interval_seconds)

            delay = self.backoff.next_delay()
            logger.info("upstream.reconnecting", retry_in=delay)
            await asyncio.sleep(delay)

    # ─── Connect ──────────────────────────────────────────

    def _http_client(self) -> httpx.AsyncClient:
        if self._http is None:
            self._http = httpx.AsyncClient(
                base_url=self.config.unifi_base_url,
                timeout=self.config.upstream_request_timeout_seconds,
                verify=self.config.unifi_ssl_verify,
                headers={
                    "Accept": "application/json",
                    "User-Agent": f"protectrelay/{__version__}",
                    "X-API-KEY": self.config.unifi_api_key,
                },
            )
        return self._http

    async def connect(self) -> None:
        """One session attempt. Raises UpstreamUnavailableError on failure."""
        self._set_state(ConnectionState.CONNECTING)
        try:
            http = self._http_client()
            await self._validate_api_key(http)
            self.nvr_version = await self._fetch_version(http)
            await self._load_camera_cache(http)
            self._socket = await self._open_socket()
        except UpstreamUnavailableError:
            self._set_state(ConnectionState.DISCONNECTED)
            raise
        except (httpx.HTTPError, OSError, WebSocketException, asyncio.TimeoutError) as e:
            self._set_state(ConnectionState.DISCONNECTED)
            raise UpstreamUnavailableError(str(e) or type(e).__name__) from e

        self._set_state(ConnectionState.CONNECTED)
        logger.info(
            "upstream.connected",
            nvr_version=self.nvr_version,
            cameras=len(self._cameras),
        )

    async def _validate_api_key(self, http: httpx.AsyncClient) -> None:
        r = await http.get(f"{API_PREFIX}/liveviews")
        if r.status_code in (401, 403):
            raise UpstreamUnavailableError("API key rejected by the NVR")
        r.raise_for_status()

    async def _fetch_version(self, http: httpx.AsyncClient) -> str:
        try:
            r = await http.get(f"{API_PREFIX}/nvrs")
            r.raise_for_status()
            data = r.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.warning("upstream.version_unavailable", error=str(e))
            return "unknown"
        if isinstance(data, list):
            data = data[0] if data else {}
        return str(data.get("version") or "unknown") if isinstance(data, dict) else "unknown"

    async def _load_camera_cache(self, http: httpx.AsyncClient) -> None:
        try:
            cameras = await self._fetch_cameras(http)
        except (httpx.HTTPError, ValueError) as e:
            logger.warning("upstream.camera_cache_failed", error=str(e))
            return
        self._cameras = {c.id: c for c in cameras}

    async def _fetch_cameras(self, http: httpx.AsyncClient) -> list[Camera]:
        r = await http.get(f"{API_PREFIX}/cameras")
        r.raise_for_status()
        data = r.json()
        if not isinstance(data, list):
            raise ValueError("camera list is not a JSON array")
        return [c for c in (camera_from_protect(item) for item in data if isinstance(item, dict)) if c]

    async def _open_socket(self) -> Any:
        ssl_context: Optional[ssl.SSLContext] = None
        if not self.config.unifi_ssl_verify:
            # UniFi consoles ship self-signed certificates
            ssl_context = ssl.create_default_context()
            ssl_context.check_hostname = False
            ssl_context.verify_mode = ssl.CERT_NONE
        return await self._socket_factory(
            self.config.unifi_events_url,
            additional_headers={"X-API-KEY": self.config.unifi_api_key},
            ssl=ssl_context,
            open_timeout=self.config.upstream_handshake_timeout_seconds,
            ping_interval=self.config.upstream_heartbeat_seconds,
            ping_timeout=self.config.upstream_heartbeat_seconds,
        )

    async def _close_socket(self) -> None:
        socket, self._socket = self._socket, None
        if socket is None:
            return
        try:
            await socket.close()
        except Exception as e:
            logger.debug("upstream.socket_close_failed", error=str(e))

    # ─── Event stream ─────────────────────────────────────

    async def _listen(self) -> None:
        async for raw in self._socket:
            await self.handle_message(raw)

    async def handle_message(self, raw: Any) -> Optional[Event]:
        """Process one upstream frame. Returns the dispatched event, if any."""
        try:
            message = json.loads(raw)
        except (ValueError, TypeError) as e:
            logger.warning("upstream.malformed_message", error=str(e))
            return None
        if not isinstance(message, dict):
            logger.warning("upstream.malformed_message", error="expected a JSON object")
            return None
        if message.get("type") not in ("add", "update"):
            logger.debug("upstream.ignored_message", message_type=message.get("type"))
            return None

        item = message.get("item")
        if not isinstance(item, dict):
            return None

        model_key = item.get("modelKey", "event")
        if model_key == "camera":
            self._update_camera(item)
            return None
        if model_key != "event":
            return None

        event_id = item.get("id")
        if event_id and self._already_seen(str(event_id)):
            return None

        try:
            event = normalize_event(item, self._cameras)
        except ValidationError as e:
            logger.warning("upstream.invalid_event", event_id=event_id, errors=e.error_count())
            return None

        self.events_received += 1
        logger.info(
            "upstream.event",
            event_id=event.id,
            event_type=event.type.value,
            severity=event.severity.value,
            camera=event.camera.name,
        )
        await self._dispatch(event)
        return event

    def _already_seen(self, event_id: str) -> bool:
        """NVRs send `add` then `update`s for the same event — relay it once."""
        if event_id in self._seen:
            self._seen.move_to_end(event_id)
            return True
        self._seen[event_id] = None
        if len(self._seen) > SEEN_EVENT_WINDOW:
            self._seen.popitem(last=False)
        return False

    # ─── Cameras ──────────────────────────────────────────

    def _update_camera(self, item: dict[str, Any]) -> None:
        """Apply a camera add/update. Updates only carry changed fields."""
        cached = self._cameras.get(str(item.get("id")))
        if cached is None:
            try:
                camera = camera_from_protect(item)
            except ValidationError as e:
                logger.warning("upstream.invalid_camera", camera_id=item.get("id"), errors=e.error_count())
                return
            if camera is not None:
                self._cameras[camera.id] = camera
            return
        changes = {key: item[key] for key in ("name", "location") if item.get(key)}
        if not changes:
            return
        try:
            self._cameras[cached.id] = Camera.model_validate({**cached.model_dump(), **changes})
        except ValidationError as e:
            logger.warning("upstream.invalid_camera", camera_id=cached.id, errors=e.error_count())

    async def get_cameras(self) -> list[Camera]:
        """Live camera list, else the cached list, else the static fallback."""
        if self.state == ConnectionState.CONNECTED:
            try:
                cameras = await self._fetch_cameras(self._http_client())
            except (httpx.HTTPError, ValueError) as e:
                logger.warning("upstream.camera_list_failed", error=str(e))
            else:
                self._cameras = {c.id: c for c in cameras}
                return cameras
        if self._cameras:
            return list(self._cameras.values())
        return list(FALLBACK_CAMERAS)

    # ─── Simulation controls ──────────────────────────────

    async def trigger_simulated_event(self, event_type: Optional[EventType] = None) -> Event:
        """Generate one synthetic event and push it through the callback."""
        event = self.simulator.generate_event(event_type)
        await self._dispatch(event)
        return event

    async def pause_simulation(self) -> bool:
        if not self.simulator.active:
            return False
        await self.simulator.stop()
        return True

    def resume_simulation(self) -> bool:
        if self.simulator.active:
            return False
        interval = (
            self.config.simulation_connected_interval_seconds
            if self.state == ConnectionState.CONNECTED
            else self.config.simulation_interval_seconds
        )
        self.simulator.set_interval(interval)
        self.simulator.start(self._dispatch)
        return True

    def status(self) -> dict[str, Any]:
        return {
            "state": self.state.value,
            "host": self.config.unifi_host,
            "nvr_version": self.nvr_version,
            "last_error": self.last_error,
            "reconnect_attempts": self.backoff.attempts,
            "cameras_cached": len(self._cameras),
            "events_received": self.events_received,
            "simulation": self.simulator.stats(),
        }
