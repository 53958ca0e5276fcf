"""
JWT Auth Middleware — resolves the bearer token to a Principal on ``g``.

  Authorization: Bearer <token>  →  g.principal (Principal | None)

The hook never rejects a request itself; endpoints decide through
``require_principal`` / ``require_role`` in ncr_tracker.auth.  A token
whose user was deleted or deactivated resolves to no principal.
"""

import logging

import jwt as pyjwt
from flask import g, request

from ncr_tracker.models import db
from ncr_tracker.models.auth import User
from ncr_tracker.services.identity import Principal
from ncr_tracker.services.jwt_service import decode_access_token

logger = logging.getLogger(__name__)

# Paths that skip JWT auth entirely
JWT_SKIP_PREFIXES = (
    "/api/v1/health",
)


def init_jwt_middleware(app):
    """Register JWT middleware as a before_request hook."""

    @app.before_request
    def _jwt_auth():
        g.principal = None

        path = request.path
        if not path.startswith("/api/v1/"):
            return
        for prefix in JWT_SKIP_PREFIXES:
            if path.startswith(prefix):
                return

        auth_header = request.headers.get("Authorization", "")
        if not auth_header.startswith("Bearer "):
            return

        token = auth_header[7:]

        try:
            payload = decode_access_token(token)
        except pyjwt.ExpiredSignatureError:
            logger.info("Expired access token", extra={"path": path})
            return
        except pyjwt.InvalidTokenError:
            logger.warning("Invalid access token", extra={"path": path})
            return

        user = db.session.get(User, payload["sub"])
        if user is None or not user.is_active:
            return
        g.principal = Principal.from_user(user)
