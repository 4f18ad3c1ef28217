"""Simulation control API.

Learn: Operator controls for the synthetic event stream:
- GET  /api/simulation/status   → simulator stats + upstream state
- POST /api/simulation/pause    → stop the periodic stream
- POST /api/simulation/resume   → restart it at the rate for the current state
- POST /api/simulation/trigger  → emit one event now (optional type)
- POST /api/simulation/reset    → zero the event counter
- PUT  /api/simulation/config   → change types / severities / interval

Triggered events go through the connector's callback, so they reach
clients exactly like periodic ones (tagged simulation=true).
"""

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from protectrelay.api.deps import get_connector
from protectrelay.events.models import Event, EventSeverity, EventType
from protectrelay.upstream.client import ProtectConnector

router = APIRouter(prefix="/api/simulation")


# ─── Schemas ─────────────────────────────────────────────


class TriggerRequest(BaseModel):
    type: Optional[EventType] = None


class SimulationConfigUpdate(BaseModel):
    interval: Optional[float] = Field(None, gt=0)
    event_types: Optional[list[EventType]] = Field(None, min_length=1)
    severities: Optional[list[EventSeverity]] = Field(None, min_length=1)


class ControlResponse(BaseModel):
    success: bool
    message: str


# ─── Routes ──────────────────────────────────────────────


@router.get("/status")
async def simulation_status(connector: ProtectConnector = Depends(get_connector)):
    return {
        "simulation": connector.simulator.stats(),
        "upstream": connector.state.value,
    }


@router.post("/pause", response_model=ControlResponse)
async def pause_simulation(connector: ProtectConnector = Depends(get_connector)):
    if await connector.pause_simulation():
        return ControlResponse(success=True, message="Simulation paused")
    return ControlResponse(success=False, message="Simulation was not running")


@router.post("/resume", response_model=ControlResponse)
async def resume_simulation(connector: ProtectConnector = Depends(get_connector)):
    if connector.resume_simulation():
        return ControlResponse(success=True, message="Simulation resumed")
    return ControlResponse(success=False, message="Simulation was already running")


@router.post("/trigger")
async def trigger_event(
    body: Optional[TriggerRequest] = None,
    connector: ProtectConnector = Depends(get_connector),
):
    """Emit a single synthetic event right now."""
    event: Event = await connector.trigger_simulated_event(body.type if body else None)
    return event.to_wire()


@router.post("/reset", response_model=ControlResponse)
async def reset_simulation(connector: ProtectConnector = Depends(get_connector)):
    connector.simulator.reset()
    return ControlResponse(success=True, message="Simulation counters reset")


@router.put("/config")
async def update_simulation_config(
    body: SimulationConfigUpdate,
    connector: ProtectConnector = Depends(get_connector),
):
    changes = body.model_dump(exclude_none=True)
    if not changes:
        raise HTTPException(status_code=422, detail="No changes given")
    connector.simulator.update_config(**changes)
    return connector.simulator.stats()
