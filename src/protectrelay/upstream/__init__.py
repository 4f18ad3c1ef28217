"""Upstream side — the UniFi Protect connection and the synthetic stream.

Learn: Three pieces:
1. normalize.py — pure mapping from NVR payloads to Events
2. simulator.py — random events for degraded mode and demos
3. client.py    — ProtectConnector, the reconnecting state machine
"""

from protectrelay.upstream.client import (
    ConnectionState,
    ProtectConnector,
    UpstreamUnavailableError,
)

__all__ = ["ConnectionState", "ProtectConnector", "UpstreamUnavailableError"]
