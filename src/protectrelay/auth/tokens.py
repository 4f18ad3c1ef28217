"""Client token issuance and verification.

Learn: Clients (browser extension installs) authenticate with a JWT
signed by the relay's shared secret. The token binds a client id in
its `sub` claim and is valid for 7 days by default. There is no
revocation list — rotate PROTECTRELAY_JWT_SECRET to invalidate
every outstanding token at once.

verify_client_token() raises the same InvalidTokenError for every
failure mode (expired, malformed, bad signature) so callers can't
leak which one happened.
"""

from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt

from protectrelay.config import settings

TOKEN_TYPE = "client"


class InvalidTokenError(Exception):
    """Raised when a client token cannot be verified."""


def issue_client_token(
    client_id: str,
    expires_days: Optional[int] = None,
    secret: Optional[str] = None,
    algorithm: Optional[str] = None,
) -> str:
    """Create a signed token binding client_id."""
    if not client_id:
        raise ValueError("client_id is required")
    if expires_days is None:
        expires_days = settings.client_token_expire_days
    now = datetime.now(timezone.utc)
    payload = {
        "sub": client_id,
        "type": TOKEN_TYPE,
        "iat": now,
        "exp": now + timedelta(days=expires_days),
    }
    return jwt.encode(
        payload,
        secret or settings.jwt_secret,
        algorithm=algorithm or settings.jwt_algorithm,
    )


def verify_client_token(
    token: str,
    secret: Optional[str] = None,
    algorithm: Optional[str] = None,
) -> str:
    """Verify a client token and return the client id it binds.

    Raises InvalidTokenError on failure.
    """
    try:
        payload = jwt.decode(
            token,
            secret or settings.jwt_secret,
            algorithms=[algorithm or settings.jwt_algorithm],
            options={"require": ["exp", "sub"]},
        )
    except jwt.InvalidTokenError:
        raise InvalidTokenError("Invalid or expired token") from None

    client_id = payload.get("sub")
    if payload.get("type") != TOKEN_TYPE or not isinstance(client_id, str) or not client_id:
        raise InvalidTokenError("Invalid or expired token")
    return client_id


def token_expires_in_seconds(expires_days: Optional[int] = None) -> int:
    if expires_days is None:
        expires_days = settings.client_token_expire_days
    return int(timedelta(days=expires_days).total_seconds())
