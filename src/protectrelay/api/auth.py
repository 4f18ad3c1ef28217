"""Auth API — client token issuance.

Learn: Routes for the client token lifecycle:
- POST /auth/token  → client id → signed 7-day token
- POST /auth/verify → token → client id it binds (401 if invalid)

The extension calls /auth/token once on install and stores the token.
The WebSocket handshake does the real verification; /auth/verify only
lets the options page check a stored token without opening a socket.
"""

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from protectrelay.api.deps import get_config
from protectrelay.auth.tokens import (
    InvalidTokenError,
    issue_client_token,
    token_expires_in_seconds,
    verify_client_token,
)
from protectrelay.config import Settings

router = APIRouter(prefix="/auth")


# ─── Schemas ─────────────────────────────────────────────


class TokenRequest(BaseModel):
    client_id: str = Field(..., alias="clientId", min_length=1, max_length=200)

    model_config = {"populate_by_name": True}


class TokenResponse(BaseModel):
    token: str
    token_type: str = "bearer"
    expires_in: int


class VerifyRequest(BaseModel):
    token: str


class VerifyResponse(BaseModel):
    client_id: str


# ─── Routes ──────────────────────────────────────────────


@router.post("/token", response_model=TokenResponse)
async def issue_token(body: TokenRequest, config: Settings = Depends(get_config)):
    """Issue a signed token for a client id."""
    token = issue_client_token(
        body.client_id,
        expires_days=config.client_token_expire_days,
        secret=config.jwt_secret,
        algorithm=config.jwt_algorithm,
    )
    return TokenResponse(
        token=token,
        expires_in=token_expires_in_seconds(config.client_token_expire_days),
    )


@router.post("/verify", response_model=VerifyResponse)
async def verify_token(body: VerifyRequest, config: Settings = Depends(get_config)):
    """Check a token without opening a WebSocket."""
    try:
        client_id = verify_client_token(
            body.token, secret=config.jwt_secret, algorithm=config.jwt_algorithm
        )
    except InvalidTokenError as e:
        raise HTTPException(status_code=401, detail=str(e))
    return VerifyResponse(client_id=client_id)
