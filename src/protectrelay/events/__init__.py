"""Event model and wire vocabulary."""

from protectrelay.events.models import (
    Camera,
    Event,
    EventFilter,
    EventSeverity,
    EventType,
)

__all__ = ["Camera", "Event", "EventFilter", "EventSeverity", "EventType"]
