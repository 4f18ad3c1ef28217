"""Synthetic event generator.

Learn: The simulator is the relay's degraded-mode signal. While the NVR
is unreachable it emits a random event every few seconds so clients
can tell "relay alive, camera system down" apart from "relay dead".
While the NVR is connected it keeps going at a much lower rate as a
liveness heartbeat. Every synthetic event carries
metadata["simulation"] = True so consumers never mistake it for a
real detection.

The generator owns one asyncio task. stop() cancels it; nothing else does.
"""

import asyncio
import random
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Optional

import structlog

from protectrelay.events.models import Camera, Event, EventSeverity, EventType

logger = structlog.get_logger()

EventSink = Callable[[Event], Awaitable[None]]

FALLBACK_CAMERAS: list[Camera] = [
    Camera(id="cam-001", name="Front Door", type="G4 Pro", location="Main Entrance"),
    Camera(id="cam-002", name="Backyard", type="G4 Bullet", location="Back Patio"),
    Camera(id="cam-003", name="Side Yard", type="G3 Flex", location="Right Side"),
    Camera(id="doorbell-001", name="Doorbell", type="G4 Doorbell", location="Front Porch"),
]

DESCRIPTIONS: dict[EventType, list[str]] = {
    EventType.MOTION: [
        "Motion detected at {location}",
        "Activity picked up by {name}",
        "Motion sensor triggered at {location}",
    ],
    EventType.PERSON: [
        "Person detected at {location}",
        "Person recognized by {name}",
        "Someone spotted near {location}",
    ],
    EventType.VEHICLE: [
        "Vehicle detected at {location}",
        "Car identified by {name}",
        "Traffic detected at {location}",
    ],
    EventType.PACKAGE: [
        "Package detected at {location}",
        "Delivery spotted by {name}",
        "Object left at {location}",
    ],
    EventType.DOORBELL: [
        "Doorbell pressed at {location}",
        "Someone is at the door",
        "Visitor at {location}",
    ],
    EventType.SMART_DETECT: [
        "Smart detection triggered at {location}",
        "AI detected activity on {name}",
        "Smart Detect: unusual activity at {location}",
    ],
    EventType.SENSOR: [
        "Sensor triggered at {location}",
        "Sensor alert from {name}",
        "Sensor picked up activity at {location}",
    ],
}

THUMBNAIL_COLORS: dict[EventType, str] = {
    EventType.MOTION: "4CAF50",
    EventType.PERSON: "2196F3",
    EventType.VEHICLE: "FF9800",
    EventType.PACKAGE: "9C27B0",
    EventType.DOORBELL: "F44336",
    EventType.SMART_DETECT: "00BCD4",
    EventType.SENSOR: "795548",
}


@dataclass
class SimulationConfig:
    interval: float = 5.0
    event_types: list[EventType] = field(
        default_factory=lambda: [EventType.MOTION, EventType.PERSON, EventType.VEHICLE]
    )
    severities: list[EventSeverity] = field(
        default_factory=lambda: [EventSeverity.LOW, EventSeverity.MEDIUM, EventSeverity.HIGH]
    )
    cameras: list[Camera] = field(default_factory=lambda: list(FALLBACK_CAMERAS))


class EventSimulator:
    """Periodic random event source."""

    def __init__(
        self,
        config: Optional[SimulationConfig] = None,
        rng: Optional[random.Random] = None,
    ):
        self.config = config or SimulationConfig()
        self.rng = rng or random.Random()
        self.total_events = 0
        self._sink: Optional[EventSink] = None
        self._task: Optional[asyncio.Task] = None
        self._wake = asyncio.Event()

    # ─── Lifecycle ────────────────────────────────────────

    @property
    def active(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self, sink: EventSink) -> None:
        """Start emitting into sink. A second start only swaps the sink."""
        self._sink = sink
        if self.active:
            return
        self._task = asyncio.create_task(self._run())
        logger.info("simulator.started", interval=self.config.interval)

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.info("simulator.stopped", total_events=self.total_events)

    def set_interval(self, interval: float) -> None:
        """Change the emit rate. Takes effect immediately."""
        if interval <= 0:
            raise ValueError("interval must be positive")
        if interval == self.config.interval:
            return
        self.config = replace(self.config, interval=interval)
        self._wake.set()
        logger.info("simulator.interval_changed", interval=interval)

    def update_config(self, **changes: Any) -> SimulationConfig:
        if "interval" in changes:
            self.set_interval(changes.pop("interval"))
        for key in ("event_types", "severities", "cameras"):
            if key in changes and not changes[key]:
                raise ValueError(f"{key} must not be empty")
        self.config = replace(self.config, **changes)
        return self.config

    def reset(self) -> None:
        self.total_events = 0

    def stats(self) -> dict[str, Any]:
        return {
            "active": self.active,
            "total_events": self.total_events,
            "interval": self.config.interval,
            "event_types": [t.value for t in self.config.event_types],
            "severities": [s.value for s in self.config.severities],
            "cameras": [c.model_dump() for c in self.config.cameras],
        }

    async def _run(self) -> None:
        while True:
            self._wake.clear()
            try:
                await asyncio.wait_for(self._wake.wait(), timeout=self.config.interval)
                continue  # interval changed, restart the wait
            except asyncio.TimeoutError:
                pass

            event = self.generate_event()
            if self._sink is None:
                continue
            try:
                await self._sink(event)
            except Exception:
                logger.exception("simulator.sink_error", event_id=event.id)

    # ─── Generation ───────────────────────────────────────

    def generate_event(self, event_type: Optional[EventType] = None) -> Event:
        event_type = event_type or self.rng.choice(self.config.event_types)
        camera = self.rng.choice(self.config.cameras)
        severity = self.rng.choice(self.config.severities)
        self.total_events += 1

        template = self.rng.choice(DESCRIPTIONS[event_type])
        description = template.format(
            name=camera.name, location=camera.location or camera.name
        )
        color = THUMBNAIL_COLORS[event_type]

        event = Event(
            id=f"sim-{self.total_events}-{uuid.uuid4().hex[:8]}",
            type=event_type,
            severity=severity,
            timestamp=datetime.now(timezone.utc),
            camera=camera,
            description=description,
            thumbnail_url=(
                f"https://via.placeholder.com/320x240/{color}/FFFFFF"
                f"?text={event_type.value.upper()}"
            ),
            metadata=self._metadata(event_type),
        )
        logger.debug(
            "simulator.event_generated",
            event_id=event.id,
            event_type=event_type.value,
            camera=camera.name,
        )
        return event

    def _metadata(self, event_type: EventType) -> dict[str, Any]:
        rng = self.rng
        metadata: dict[str, Any] = {
            "simulation": True,
            "confidence": rng.randint(60, 99),
        }
        if event_type == EventType.PERSON:
            metadata["faceDetected"] = rng.random() > 0.5
        elif event_type == EventType.VEHICLE:
            metadata["licensePlate"] = self._license_plate()
            metadata["vehicleType"] = rng.choice(["car", "truck", "motorcycle"])
        elif event_type == EventType.PACKAGE:
            metadata["packageSize"] = rng.choice(["small", "medium", "large"])
        elif event_type == EventType.DOORBELL:
            metadata["buttonPressed"] = True
            metadata["visitorDetected"] = rng.random() > 0.3
        return metadata

    def _license_plate(self) -> str:
        letters = "".join(self.rng.choice("ABCDEFGHIJKLMNOPQRSTUVWXYZ") for _ in range(3))
        digits = "".join(self.rng.choice("0123456789") for _ in range(3))
        return f"{letters}-{digits}"
