"""Real-time infrastructure — client registry + WebSocket.

Learn: Events flow through two layers:
1. Upstream connector → ClientRegistry.broadcast() (filter + fan-out)
2. ClientRegistry → each matching WebSocket (one write per client)

The WebSocket handler only reads control messages; the liveness
monitor evicts clients that stop talking.
"""
