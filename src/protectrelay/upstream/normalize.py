"""UniFi Protect payload normalization.

Learn: The NVR's event items are loosely shaped — every field can be
missing, and each event kind carries its own extras (zone, line,
batteryLevel, ...). We validate them into a permissive
ProtectEventPayload first, then build the strict Event with
deterministic defaults:

- missing score → per-kind default (doorbell is always critical)
- missing start → now
- missing id → fresh uuid4 hex

This module does no I/O, so the whole mapping is testable without an NVR.
"""

import uuid
from datetime import datetime, timezone
from typing import Any, Mapping, Optional

from pydantic import BaseModel, Field

from protectrelay.events.models import Camera, Event, EventSeverity, EventType

# ─── Type mapping ────────────────────────────────────────

EVENT_TYPE_MAP: dict[str, EventType] = {
    "ring": EventType.DOORBELL,
    "doorbell": EventType.DOORBELL,
    "sensorExtremeValue": EventType.SENSOR,
    "sensorWaterLeak": EventType.SENSOR,
    "sensorTamper": EventType.SENSOR,
    "sensorBatteryLow": EventType.SENSOR,
    "sensorAlarm": EventType.SENSOR,
    "sensorOpen": EventType.SENSOR,
    "sensorClosed": EventType.SENSOR,
    "sensorMotion": EventType.MOTION,
    "lightMotion": EventType.MOTION,
    "cameraMotion": EventType.MOTION,
    "motion": EventType.MOTION,
    "cameraSmartDetectAudio": EventType.SMART_DETECT,
    "cameraSmartDetectZone": EventType.SMART_DETECT,
    "smartDetectZone": EventType.SMART_DETECT,
    "cameraSmartDetectLine": EventType.SMART_DETECT,
    "cameraSmartDetectLoiter": EventType.SMART_DETECT,
    "smartDetect": EventType.SMART_DETECT,
    "person": EventType.PERSON,
    "vehicle": EventType.VEHICLE,
    "package": EventType.PACKAGE,
}

# Score used when the NVR doesn't send one
DEFAULT_SCORES: dict[EventType, float] = {
    EventType.DOORBELL: 100,
    EventType.PERSON: 80,
    EventType.VEHICLE: 70,
}
FALLBACK_SCORE = 50

DEVICE_LABELS: dict[str, str] = {
    "ring": "Doorbell",
    "sensorExtremeValue": "Sensor",
    "sensorWaterLeak": "Water Leak Sensor",
    "sensorTamper": "Tamper Sensor",
    "sensorBatteryLow": "Sensor (Low Battery)",
    "sensorAlarm": "Alarm Sensor",
    "sensorOpen": "Contact Sensor",
    "sensorClosed": "Contact Sensor",
    "sensorMotion": "Motion Sensor",
    "lightMotion": "Floodlight",
    "cameraMotion": "Camera (Motion)",
    "cameraSmartDetectAudio": "Camera - Smart Audio",
    "cameraSmartDetectZone": "Camera - Zone Detection",
    "smartDetectZone": "Camera - Zone Detection",
    "cameraSmartDetectLine": "Camera - Line Crossing",
    "cameraSmartDetectLoiter": "Camera - Loitering",
}


class ProtectEventPayload(BaseModel):
    """An event item as the NVR sends it. Everything is optional."""

    id: Optional[str] = None
    model_key: Optional[str] = Field(None, alias="modelKey")
    type: Optional[str] = None
    start: Optional[float] = None
    end: Optional[float] = None
    device: Optional[str] = None
    score: Optional[float] = None
    thumbnail: Optional[str] = None
    zone: Optional[str] = None
    line: Optional[str] = None
    direction: Optional[str] = None
    duration: Optional[float] = None
    audio_type: Optional[str] = Field(None, alias="audioType")
    battery_level: Optional[float] = Field(None, alias="batteryLevel")
    value: Optional[float] = None
    unit: Optional[str] = None
    alarm_type: Optional[str] = Field(None, alias="alarmType")

    model_config = {"extra": "allow", "populate_by_name": True}


def map_event_type(unifi_type: Optional[str]) -> EventType:
    return EVENT_TYPE_MAP.get(unifi_type or "", EventType.MOTION)


def severity_for_score(score: float) -> EventSeverity:
    if score >= 90:
        return EventSeverity.CRITICAL
    if score >= 70:
        return EventSeverity.HIGH
    if score >= 50:
        return EventSeverity.MEDIUM
    return EventSeverity.LOW


def effective_score(payload: ProtectEventPayload, event_type: EventType) -> float:
    if payload.score is not None:
        return payload.score
    if event_type == EventType.DOORBELL:
        return DEFAULT_SCORES[EventType.DOORBELL]
    if payload.duration is not None:
        # Loitering: long dwell times are treated as high severity
        return 80 if payload.duration * 10 > 50 else FALLBACK_SCORE
    return DEFAULT_SCORES.get(event_type, FALLBACK_SCORE)


def _timestamp(start: Optional[float], now: datetime) -> datetime:
    if start is None:
        return now
    try:
        return datetime.fromtimestamp(start / 1000, tz=timezone.utc)
    except (OverflowError, OSError, ValueError):
        return now


def _fmt(value: Any) -> str:
    if value is None:
        return "N/A"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def describe(payload: ProtectEventPayload) -> str:
    """Human-readable one-liner for the popup and the alert toast."""
    kind = payload.type or "unknown"
    score = _fmt(payload.score)

    if kind in ("ring", "doorbell"):
        return "Doorbell pressed"
    if kind == "cameraMotion":
        return f"Motion detected by camera. Confidence: {score}%."
    if kind in ("cameraSmartDetectZone", "smartDetectZone"):
        return f"Smart detection in zone {payload.zone or 'unknown'}. Confidence: {score}%."
    if kind == "cameraSmartDetectLine":
        return (
            f"Line crossed: {_fmt(payload.line)}, direction {_fmt(payload.direction)}. "
            f"Confidence: {score}%."
        )
    if kind == "cameraSmartDetectLoiter":
        return f"Loitering detected for {_fmt(payload.duration)} seconds. Confidence: {score}%."
    if kind == "cameraSmartDetectAudio":
        return f"Audio detected: {payload.audio_type or 'unknown'}. Confidence: {score}%."
    if kind == "sensorWaterLeak":
        return "Water leak detected"
    if kind == "sensorBatteryLow":
        return f"Sensor battery low: {_fmt(payload.battery_level)}%"
    if kind == "sensorExtremeValue":
        unit = f" {payload.unit}" if payload.unit else ""
        return f"Extreme sensor value: {_fmt(payload.value)}{unit}"
    if kind == "sensorAlarm":
        return f"Alarm triggered: {payload.alarm_type or 'N/A'}"

    simple = {
        "sensorTamper": "Sensor tampering detected",
        "sensorOpen": "Sensor opened",
        "sensorClosed": "Sensor closed",
        "sensorMotion": "Motion detected by sensor",
        "lightMotion": "Motion detected by floodlight",
        "motion": "Motion detected",
        "person": "Person detected",
        "vehicle": "Vehicle detected",
        "package": "Package detected",
        "smartDetect": "Smart detection",
    }
    return simple.get(kind, f"Unknown event: {kind}")


def _device_type(kind: Optional[str]) -> str:
    kind = kind or ""
    if kind == "ring":
        return "UniFi Doorbell"
    if kind.startswith("sensor"):
        return "UniFi Sensor"
    if kind.startswith("light"):
        return "UniFi Light"
    if kind.startswith("camera") or kind.startswith("smartDetect"):
        return "UniFi Camera"
    return "UniFi Device"


def resolve_camera(
    payload: ProtectEventPayload, cameras: Mapping[str, Camera]
) -> Camera:
    device_id = payload.device or "unknown"
    cached = cameras.get(device_id)
    if cached is not None:
        return cached
    return Camera(
        id=device_id,
        name=DEVICE_LABELS.get(payload.type or "", "UniFi Device"),
        type=_device_type(payload.type),
    )


def normalize_event(
    raw: Mapping[str, Any],
    cameras: Optional[Mapping[str, Camera]] = None,
    now: Optional[datetime] = None,
) -> Event:
    """Turn one NVR event item into an Event.

    Raises pydantic.ValidationError if a present field has the wrong type.
    """
    payload = ProtectEventPayload.model_validate(raw)
    now = now or datetime.now(timezone.utc)
    event_type = map_event_type(payload.type)
    score = effective_score(payload, event_type)

    duration = payload.duration
    if duration is None and payload.start is not None and payload.end is not None:
        duration = payload.end - payload.start

    return Event(
        id=payload.id or uuid.uuid4().hex,
        type=event_type,
        severity=severity_for_score(score),
        timestamp=_timestamp(payload.start, now),
        camera=resolve_camera(payload, cameras or {}),
        description=describe(payload),
        thumbnail_url=payload.thumbnail,
        metadata={
            "eventType": payload.type,
            "score": score,
            "duration": duration,
            "simulation": False,
        },
    )


def camera_from_protect(item: Mapping[str, Any]) -> Optional[Camera]:
    """Build a Camera from an NVR camera object. None if it has no id."""
    camera_id = item.get("id")
    if not camera_id:
        return None
    return Camera(
        id=str(camera_id),
        name=item.get("name") or f"Camera {camera_id}",
        type=item.get("modelKey") or "Unknown",
        location=item.get("location"),
    )
