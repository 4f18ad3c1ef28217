"""WebSocket message types and close codes.

Learn: Centralizing the wire vocabulary as constants prevents typos
and keeps the server, the CLI watcher, and the tests in agreement
with the browser extension.
"""

# ─── Server → client ─────────────────────────────────────

CONNECTED = "connected"
EVENT = "event"

# ─── Client → server ─────────────────────────────────────

UPDATE_FILTERS = "update_filters"

# ─── Keep-alive (both directions) ────────────────────────

PING = "ping"
PONG = "pong"

# ─── Close codes ─────────────────────────────────────────

CLOSE_NORMAL = 1000
CLOSE_AUTH_FAILED = 1008  # missing, expired, or forged token
CLOSE_MESSAGE_TOO_BIG = 1009
CLOSE_SUPERSEDED = 4000  # same client id connected again elsewhere
CLOSE_IDLE_TIMEOUT = 4001
CLOSE_HANDSHAKE_TIMEOUT = 4008
