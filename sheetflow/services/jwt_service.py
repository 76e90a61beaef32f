"""
JWT Service — access token generation and verification.

Tokens are issued by the identity provider in front of SheetFlow;
generate_access_token() exists for tooling and tests.

Access token:  15 minutes (configurable via JWT_ACCESS_EXPIRES)
Algorithm:     HS256

Token payload:
{
    "sub": <actor_id>,
    "tenant_id": <tenant_id>,
    "roles": ["engineer", "admin", ...],
    "type": "access",
    "iat": <issued_at>,
    "exp": <expires_at>,
    "jti": <unique_id>
}
"""

import uuid
from datetime import datetime, timedelta, timezone

import jwt
from flask import current_app


DEFAULT_ACCESS_EXPIRES = 900       # 15 minutes
ALGORITHM = "HS256"


def _get_secret():
    return current_app.config.get("JWT_SECRET_KEY") or current_app.config["SECRET_KEY"]


def _get_access_expires():
    return current_app.config.get("JWT_ACCESS_EXPIRES", DEFAULT_ACCESS_EXPIRES)


def generate_access_token(actor_id: int, tenant_id: int | None, roles: list[str]) -> str:
    """Generate a short-lived access token."""
    now = datetime.now(timezone.utc)
    payload = {
        # PyJWT requires a string subject
        "sub": str(actor_id),
        "roles": list(roles),
        "type": "access",
        "iat": now,
        "exp": now + timedelta(seconds=_get_access_expires()),
        "jti": str(uuid.uuid4()),
    }
    if tenant_id is not None:
        payload["tenant_id"] = tenant_id
    return jwt.encode(payload, _get_secret(), algorithm=ALGORITHM)


def decode_access_token(token: str) -> dict:
    """
    Decode and verify an access token.

    Raises jwt.exceptions on failure (ExpiredSignatureError, InvalidTokenError, etc.)
    """
    payload = jwt.decode(token, _get_secret(), algorithms=[ALGORITHM])
    if payload.get("type") != "access":
        raise jwt.InvalidTokenError(f"Expected access token, got {payload.get('type')}")
    return payload
