"""protectrelay CLI — run the relay and poke at a running one.

Usage:
    protectrelay serve                           # Run the relay (uvicorn)
    protectrelay token my-laptop                 # Issue a client token
    protectrelay health                          # Status + client count
    protectrelay cameras                         # Cameras the relay knows about
    protectrelay simulate trigger --type person  # Fire one synthetic event
    protectrelay watch --type person --type vehicle   # Stream events like the extension does
"""

from __future__ import annotations

import asyncio
import concurrent.futures
import json
import logging
import os
import sys
from typing import Optional

import click
import httpx

from protectrelay import __version__
from protectrelay.events import types as msg
from protectrelay.events.models import EventSeverity, EventType

# ---------------------------------------------------------------------------
# Config
# ---------------------------------------------------------------------------

DEFAULT_API_URL = "http://localhost:3001"


def _api_url() -> str:
    return os.environ.get("PROTECTRELAY_API_URL", DEFAULT_API_URL).rstrip("/")


def _ws_url(api_url: str) -> str:
    if api_url.startswith("https://"):
        return "wss://" + api_url[len("https://"):] + "/ws"
    if api_url.startswith("http://"):
        return "ws://" + api_url[len("http://"):] + "/ws"
    return api_url + "/ws"


def _client() -> httpx.AsyncClient:
    """Build an async HTTP client pointed at the relay."""
    return httpx.AsyncClient(base_url=_api_url(), timeout=10.0)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _run(coro):
    """Run an async coroutine from a synchronous Click handler.

    Handles nested event loops (e.g. Click's CliRunner inside an async
    test) by offloading to a thread.
    """
    try:
        asyncio.get_running_loop()
    except RuntimeError:
        return asyncio.run(coro)
    else:
        with concurrent.futures.ThreadPoolExecutor(max_workers=1) as pool:
            return pool.submit(asyncio.run, coro).result()


def _pretty_json(data: dict | list) -> str:
    return json.dumps(data, indent=2, default=str)


def _severity_color(severity: str) -> str:
    colors = {
        "low": "white",
        "medium": "yellow",
        "high": "red",
        "critical": "magenta",
    }
    return colors.get(severity, "white")


def _fail(message: str) -> None:
    click.secho(f"Error: {message}", fg="red", err=True)
    sys.exit(1)


# ---------------------------------------------------------------------------
# CLI group
# ---------------------------------------------------------------------------


@click.group()
@click.version_option(version=__version__, prog_name="protectrelay")
def cli():
    """protectrelay — UniFi Protect event relay."""


# ---------------------------------------------------------------------------
# protectrelay serve
# ---------------------------------------------------------------------------


@cli.command()
@click.option("--host", help="Bind address (default: PROTECTRELAY_HOST)")
@click.option("--port", type=int, help="Listen port (default: PROTECTRELAY_PORT)")
@click.option("--reload", is_flag=True, help="Auto-reload on code changes")
def serve(host: Optional[str], port: Optional[int], reload: bool):
    """Run the relay server."""
    import uvicorn

    from protectrelay.config import settings

    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    uvicorn.run(
        "protectrelay.main:app",
        host=host or settings.host,
        port=port or settings.port,
        reload=reload,
        log_level=settings.log_level.lower(),
        ws_max_size=settings.ws_max_message_bytes,
    )


# ---------------------------------------------------------------------------
# protectrelay token / health / cameras
# ---------------------------------------------------------------------------


@cli.command()
@click.argument("client_id")
@click.option("--raw", is_flag=True, help="Print only the token")
def token(client_id: str, raw: bool):
    """Issue a client token for CLIENT_ID."""
    _run(_token_impl(client_id, raw))


async def _token_impl(client_id: str, raw: bool):
    async with _client() as c:
        r = await c.post("/auth/token", json={"client_id": client_id})
        if r.status_code != 200:
            _fail(f"token request failed: {r.status_code} {r.text}")
        data = r.json()

    if raw:
        click.echo(data["token"])
        return
    click.secho(f"Token for {client_id}:", bold=True)
    click.echo(data["token"])
    click.echo(f"Expires in {data['expires_in'] // 86400} days")


@cli.command()
def health():
    """Show relay status and connected client count."""
    _run(_health_impl())


async def _health_impl():
    async with _client() as c:
        try:
            r = await c.get("/health")
        except httpx.ConnectError:
            _fail(f"relay not reachable at {_api_url()}")
        r.raise_for_status()
        data = r.json()

    color = "green" if data["status"] == "healthy" else "yellow"
    click.secho(f"Status:   {data['status']}", fg=color, bold=True)
    click.echo(f"Version:  {data['version']}")
    click.echo(f"Upstream: {data['upstream']}")
    click.echo(f"Clients:  {data['clients']}")


@cli.command()
@click.option("--json", "as_json", is_flag=True, help="Raw JSON output")
def cameras(as_json: bool):
    """List the cameras the relay knows about."""
    _run(_cameras_impl(as_json))


async def _cameras_impl(as_json: bool):
    async with _client() as c:
        r = await c.get("/api/cameras")
        r.raise_for_status()
        data = r.json()

    if as_json:
        click.echo(_pretty_json(data))
        return
    if not data:
        click.echo("No cameras.")
        return
    for cam in data:
        location = f"  ({cam['location']})" if cam.get("location") else ""
        click.echo(f"  {cam['id']:20s}  {cam['name'][:30]:30s}  {cam['type']}{location}")


# ---------------------------------------------------------------------------
# protectrelay simulate ...
# ---------------------------------------------------------------------------


@cli.group()
def simulate():
    """Control the synthetic event stream."""


@simulate.command("status")
def simulate_status():
    """Show simulator stats."""
    _run(_simulate_request("GET", "/api/simulation/status"))


@simulate.command("pause")
def simulate_pause():
    """Stop the periodic synthetic stream."""
    _run(_simulate_request("POST", "/api/simulation/pause"))


@simulate.command("resume")
def simulate_resume():
    """Restart the periodic synthetic stream."""
    _run(_simulate_request("POST", "/api/simulation/resume"))


@simulate.command("reset")
def simulate_reset():
    """Zero the synthetic event counter."""
    _run(_simulate_request("POST", "/api/simulation/reset"))


@simulate.command("trigger")
@click.option(
    "--type", "event_type",
    type=click.Choice([t.value for t in EventType]),
    help="Event type (random if omitted)",
)
def simulate_trigger(event_type: Optional[str]):
    """Emit one synthetic event right now."""
    body = {"type": event_type} if event_type else None
    _run(_simulate_request("POST", "/api/simulation/trigger", body))


async def _simulate_request(method: str, path: str, body: Optional[dict] = None):
    async with _client() as c:
        r = await c.request(method, path, json=body)
        if r.status_code >= 400:
            _fail(f"{method} {path} failed: {r.status_code} {r.text}")
        click.echo(_pretty_json(r.json()))


# ---------------------------------------------------------------------------
# protectrelay watch
# ---------------------------------------------------------------------------


@cli.command()
@click.option("--token", "token_value", envvar="PROTECTRELAY_TOKEN",
              help="Client token (or set PROTECTRELAY_TOKEN; issued on the fly if omitted)")
@click.option("--client-id", default="protectrelay-cli", help="Client id for an on-the-fly token")
@click.option("--type", "types", multiple=True,
              type=click.Choice([t.value for t in EventType]), help="Only these event types")
@click.option("--severity", "severities", multiple=True,
              type=click.Choice([s.value for s in EventSeverity]), help="Only these severities")
@click.option("--camera", "camera_ids", multiple=True, help="Only these camera ids")
def watch(token_value: Optional[str], client_id: str, types: tuple[str, ...],
          severities: tuple[str, ...], camera_ids: tuple[str, ...]):
    """Connect as a client and print events as they arrive."""
    filters = {
        "enabled": True,
        "types": list(types),
        "severity": list(severities),
        "cameras": list(camera_ids),
    }
    try:
        _run(_watch_impl(token_value, client_id, filters))
    except KeyboardInterrupt:
        click.echo()


async def _watch_impl(token_value: Optional[str], client_id: str, filters: dict):
    from websockets.asyncio.client import connect
    from websockets.exceptions import ConnectionClosed

    if not token_value:
        async with _client() as c:
            r = await c.post("/auth/token", json={"client_id": client_id})
            r.raise_for_status()
            token_value = r.json()["token"]

    url = _ws_url(_api_url())
    async with connect(url, additional_headers={"Authorization": f"Bearer {token_value}"}) as ws:
        await ws.send(json.dumps({"type": msg.UPDATE_FILTERS, "filters": filters}))
        try:
            async for raw in ws:
                message = json.loads(raw)
                kind = message.get("type")
                if kind == msg.PING:
                    await ws.send(json.dumps({"type": msg.PONG}))
                elif kind == msg.CONNECTED:
                    click.secho(f"Connected as {message['clientId']} — waiting for events", fg="green")
                elif kind == msg.EVENT:
                    _print_event(message["data"])
        except ConnectionClosed as e:
            click.secho(f"Connection closed ({e.rcvd.code if e.rcvd else 'no code'})", fg="yellow")


def _print_event(event: dict):
    severity = event["severity"]
    sim = click.style(" [sim]", dim=True) if event.get("metadata", {}).get("simulation") else ""
    label = click.style(f"{severity.upper():<8}", fg=_severity_color(severity))
    click.echo(
        f"{event['timestamp'][11:19]}  "
        f"{label}  "
        f"{event['type']:12s}  {event['camera']['name'][:20]:20s}  "
        f"{event['description']}{sim}"
    )


if __name__ == "__main__":
    cli()
