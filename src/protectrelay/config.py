"""Application configuration via environment variables.

Uses pydantic-settings to load config from env vars with PROTECTRELAY_ prefix.
No YAML files, no file-based config — just env vars (12-factor app style).

Learn: Settings validation runs at import time. A half-configured relay
(no signing secret, no NVR host) refuses to start instead of limping
along and rejecting every client later.
"""

from pydantic import model_validator
from pydantic_settings import BaseSettings

DEFAULT_JWT_SECRET = "change-me-in-production"


class Settings(BaseSettings):
    """All app configuration. Set via PROTECTRELAY_* env vars."""

    # Server
    environment: str = "development"
    debug: bool = False
    host: str = "0.0.0.0"
    port: int = 3001
    log_level: str = "INFO"

    # CORS (the browser extension origin goes here)
    cors_origins: list[str] = [
        "http://localhost:3000",
    ]

    # Client tokens
    jwt_secret: str = DEFAULT_JWT_SECRET
    jwt_algorithm: str = "HS256"
    client_token_expire_days: int = 7

    # UniFi Protect upstream
    upstream_enabled: bool = True
    unifi_host: str = "192.168.1.100"
    unifi_port: int = 443
    unifi_api_key: str = ""
    unifi_ssl_verify: bool = False
    upstream_request_timeout_seconds: float = 30.0
    upstream_handshake_timeout_seconds: float = 15.0
    upstream_heartbeat_seconds: float = 20.0
    upstream_backoff_initial_seconds: float = 1.0
    upstream_backoff_max_seconds: float = 60.0
    upstream_backoff_factor: float = 2.0

    # Synthetic event stream
    simulation_enabled: bool = True
    simulation_interval_seconds: float = 5.0
    simulation_connected_interval_seconds: float = 60.0

    # Downstream WebSocket clients
    ws_handshake_timeout_seconds: float = 90.0
    ws_idle_timeout_seconds: float = 90.0
    ws_ping_interval_seconds: float = 30.0
    ws_send_timeout_seconds: float = 5.0
    ws_max_message_bytes: int = 64 * 1024

    model_config = {"env_prefix": "PROTECTRELAY_"}

    @model_validator(mode="after")
    def validate_required_settings(self):
        """Refuse to start without a signing secret or an NVR to talk to."""
        if not self.jwt_secret:
            raise ValueError("PROTECTRELAY_JWT_SECRET must not be empty")
        if (
            self.environment != "development"
            and self.jwt_secret == DEFAULT_JWT_SECRET
        ):
            raise ValueError(
                "PROTECTRELAY_JWT_SECRET must be set to a secure value in "
                "non-development environments. Generate one with: "
                'python -c "import secrets; print(secrets.token_urlsafe(32))"'
            )
        if self.upstream_enabled and not self.unifi_host:
            raise ValueError(
                "PROTECTRELAY_UNIFI_HOST is required while the upstream is enabled"
            )
        if self.ws_ping_interval_seconds >= self.ws_idle_timeout_seconds:
            raise ValueError(
                "PROTECTRELAY_WS_PING_INTERVAL_SECONDS must be shorter than "
                "PROTECTRELAY_WS_IDLE_TIMEOUT_SECONDS"
            )
        return self

    @property
    def unifi_base_url(self) -> str:
        return f"https://{self.unifi_host}:{self.unifi_port}"

    @property
    def unifi_events_url(self) -> str:
        return (
            f"wss://{self.unifi_host}:{self.unifi_port}"
            "/proxy/protect/integration/v1/subscribe/events"
        )


# Singleton — import this everywhere
settings = Settings()
