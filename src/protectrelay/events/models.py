"""Event value types shared by the upstream connector and the broadcast engine.

Learn: Everything here is a frozen pydantic model. The connector builds
an Event once, the registry fans it out, and nobody mutates it on the
way. Field names on the wire follow the browser extension's camelCase
(thumbnailUrl), so serialize with by_alias=True.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field, field_validator


class EventType(str, Enum):
    MOTION = "motion"
    PERSON = "person"
    VEHICLE = "vehicle"
    PACKAGE = "package"
    DOORBELL = "doorbell"
    SMART_DETECT = "smart_detect"
    SENSOR = "sensor"


class EventSeverity(str, Enum):
    """Four-level severity. Ordered for display, never for routing."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return _SEVERITY_ORDER.index(self)


_SEVERITY_ORDER = [
    EventSeverity.LOW,
    EventSeverity.MEDIUM,
    EventSeverity.HIGH,
    EventSeverity.CRITICAL,
]


class Camera(BaseModel):
    id: str
    name: str
    type: str = "Unknown"
    location: Optional[str] = None

    model_config = {"frozen": True}


class Event(BaseModel):
    id: str
    type: EventType
    severity: EventSeverity
    timestamp: datetime
    camera: Camera
    description: str
    thumbnail_url: Optional[str] = Field(None, alias="thumbnailUrl")
    metadata: dict[str, Any] = Field(default_factory=dict)

    model_config = {"frozen": True, "populate_by_name": True}

    @property
    def is_simulated(self) -> bool:
        return bool(self.metadata.get("simulation"))

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


class EventFilter(BaseModel):
    """Per-client interest filter.

    An empty allow-set means "no restriction on that dimension". A new
    client starts disabled and receives nothing until it sends its filter.
    """

    enabled: bool = False
    types: frozenset[EventType] = frozenset()
    severity: frozenset[EventSeverity] = frozenset()
    cameras: frozenset[str] = frozenset()

    model_config = {"frozen": True}

    @field_validator("types", "severity", "cameras", mode="before")
    @classmethod
    def _none_is_unrestricted(cls, value):
        # The extension sends null for dimensions the user left untouched
        return frozenset() if value is None else value

    def matches(self, event: Event) -> bool:
        if not self.enabled:
            return False
        if self.types and event.type not in self.types:
            return False
        if self.severity and event.severity not in self.severity:
            return False
        if self.cameras and event.camera.id not in self.cameras:
            return False
        return True
