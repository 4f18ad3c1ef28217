"""Synthetic event generator tests."""

import asyncio
import random

import pytest

from protectrelay.events.models import EventSeverity, EventType
from protectrelay.upstream.simulator import (
    FALLBACK_CAMERAS,
    EventSimulator,
    SimulationConfig,
)


def test_generated_events_are_tagged_simulated():
    sim = EventSimulator(rng=random.Random(7))
    event = sim.generate_event()
    assert event.is_simulated
    assert event.metadata["simulation"] is True
    assert event.id.startswith("sim-1-")
    assert event.camera in FALLBACK_CAMERAS
    assert event.type in SimulationConfig().event_types
    assert sim.total_events == 1


def test_generate_specific_type_with_metadata():
    sim = EventSimulator(rng=random.Random(1))
    event = sim.generate_event(EventType.VEHICLE)
    assert event.type == EventType.VEHICLE
    assert event.metadata["vehicleType"] in ("car", "truck", "motorcycle")
    letters, digits = event.metadata["licensePlate"].split("-")
    assert letters.isalpha() and digits.isdigit()
    assert "VEHICLE" in event.thumbnail_url


def test_update_config_limits_choices():
    sim = EventSimulator(rng=random.Random(3))
    sim.update_config(event_types=[EventType.PACKAGE], severities=[EventSeverity.CRITICAL])
    for _ in range(20):
        event = sim.generate_event()
        assert event.type == EventType.PACKAGE
        assert event.severity == EventSeverity.CRITICAL


def test_update_config_rejects_empty_lists():
    sim = EventSimulator()
    with pytest.raises(ValueError):
        sim.update_config(event_types=[])


def test_set_interval_rejects_non_positive():
    sim = EventSimulator()
    with pytest.raises(ValueError):
        sim.set_interval(0)


def test_reset_and_stats():
    sim = EventSimulator()
    sim.generate_event()
    sim.generate_event()
    assert sim.stats()["total_events"] == 2
    sim.reset()
    stats = sim.stats()
    assert stats["total_events"] == 0
    assert stats["active"] is False
    assert stats["interval"] == 5.0


@pytest.mark.asyncio
async def test_periodic_emission_into_sink():
    received = []

    async def sink(event):
        received.append(event)

    sim = EventSimulator(SimulationConfig(interval=0.01))
    sim.start(sink)
    await asyncio.sleep(0.1)
    await sim.stop()

    assert len(received) >= 2
    assert all(e.is_simulated for e in received)
    assert not sim.active


@pytest.mark.asyncio
async def test_interval_change_takes_effect_immediately():
    received = []

    async def sink(event):
        received.append(event)

    sim = EventSimulator(SimulationConfig(interval=60))
    sim.start(sink)
    await asyncio.sleep(0)
    sim.set_interval(0.01)
    await asyncio.sleep(0.1)
    await sim.stop()

    assert received


@pytest.mark.asyncio
async def test_sink_errors_do_not_stop_the_stream():
    calls = 0

    async def flaky_sink(event):
        nonlocal calls
        calls += 1
        raise RuntimeError("downstream exploded")

    sim = EventSimulator(SimulationConfig(interval=0.01))
    sim.start(flaky_sink)
    await asyncio.sleep(0.1)
    assert sim.active
    await sim.stop()
    assert calls >= 2
