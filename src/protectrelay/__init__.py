"""protectrelay — UniFi Protect event relay for browser clients.

Listens to a UniFi Protect NVR, normalizes its events, and fans them
out over WebSocket to every connected client whose filter matches.
Keeps a synthetic event stream running so clients always see a live
feed, even while the NVR is unreachable.
"""

__version__ = "0.1.0"
