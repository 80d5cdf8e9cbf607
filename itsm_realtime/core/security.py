"""
ITSM Realtime Token Handling

HS256 access tokens carrying the user id, username and role.
The WebSocket endpoint and the notification routes share these helpers.
"""

from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt
from pydantic import BaseModel, ValidationError

from .config import Settings

BEARER_PREFIX = "Bearer "


class TokenClaims(BaseModel):
    """Identity extracted from a validated access token."""
    user_id: int
    username: str = "unknown"
    role: str = "user"


def create_access_token(
    user_id: int,
    username: str,
    role: str,
    settings: Settings
) -> str:
    """Issue a signed access token valid for `jwt_expiration_hours`."""
    now = datetime.now(timezone.utc)
    payload = {
        "user_id": user_id,
        "username": username,
        "role": role,
        "iat": now,
        "nbf": now,
        "exp": now + timedelta(hours=settings.jwt_expiration_hours),
    }
    return jwt.encode(
        payload,
        settings.jwt_secret.get_secret_value(),
        algorithm=settings.jwt_algorithm
    )


def decode_access_token(token: str, settings: Settings) -> TokenClaims:
    """
    Validate a token and return its claims.

    Raises jwt.InvalidTokenError when the token is expired, badly signed,
    malformed, or does not carry a user id.
    """
    payload = jwt.decode(
        token,
        settings.jwt_secret.get_secret_value(),
        algorithms=[settings.jwt_algorithm],
        options={"require": ["exp", "user_id"]},
    )
    try:
        claims = TokenClaims.model_validate(payload)
    except ValidationError as exc:
        raise jwt.InvalidTokenError(f"Invalid token claims: {exc}") from exc

    if not claims.username:
        claims.username = "unknown"
    return claims


def extract_token(
    query_token: Optional[str] = None,
    authorization: Optional[str] = None
) -> Optional[str]:
    """Query parameter first, then `Authorization: Bearer <token>`."""
    if query_token:
        return query_token
    if authorization and authorization.startswith(BEARER_PREFIX):
        return authorization[len(BEARER_PREFIX):].strip() or None
    return None
