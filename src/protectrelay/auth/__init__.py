"""Authentication.

Learn: One mechanism only — a shared-secret JWT per client. The token
endpoint issues it, the WebSocket handshake verifies it.
"""
