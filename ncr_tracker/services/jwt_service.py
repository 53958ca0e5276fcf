"""
Bearer tokens for NCR Tracker principals (PyJWT, HS256).

Claims:
    sub   user id as a string; decode_access_token hands it back as int
    role  role at issue time, informational only
    type  always "access"
    iat / exp / jti

The middleware re-reads the user's role from the database on every
request, so a role change applies without reissuing tokens.
"""

import uuid
from datetime import datetime, timedelta, timezone

import jwt
from flask import current_app

ALGORITHM = "HS256"
TOKEN_TYPE = "access"
DEFAULT_ACCESS_EXPIRES = 3600


def _signing_key() -> str:
    return current_app.config.get("JWT_SECRET_KEY") or current_app.config["SECRET_KEY"]


def generate_access_token(user_id: int, role: str, expires_in: int | None = None) -> str:
    """Signed token for *user_id*, valid ``expires_in`` or JWT_ACCESS_EXPIRES seconds."""
    lifetime = expires_in or current_app.config.get("JWT_ACCESS_EXPIRES", DEFAULT_ACCESS_EXPIRES)
    issued = datetime.now(timezone.utc)
    claims = {
        "sub": str(user_id),
        "role": role,
        "type": TOKEN_TYPE,
        "iat": issued,
        "exp": issued + timedelta(seconds=lifetime),
        "jti": uuid.uuid4().hex,
    }
    return jwt.encode(claims, _signing_key(), algorithm=ALGORITHM)


def decode_access_token(token: str) -> dict:
    """
    Verify *token* and return its claims with ``sub`` as an int.

    Raises jwt.InvalidTokenError (ExpiredSignatureError, DecodeError, ...)
    for anything that is not a valid, unexpired access token for a user id.
    """
    claims = jwt.decode(token, _signing_key(), algorithms=[ALGORITHM])
    if claims.get("type") != TOKEN_TYPE:
        raise jwt.InvalidTokenError(f"Expected access token, got {claims.get('type')}")
    try:
        claims["sub"] = int(claims["sub"])
    except (KeyError, TypeError, ValueError) as exc:
        raise jwt.InvalidTokenError("Token subject is not a user id") from exc
    return claims
