"""
NCR Tracker
Authorization decorators for API endpoints.

Authentication itself happens in middleware/jwt_auth.py, which leaves the
resolved Principal (or None) on ``g.principal``.  These decorators turn a
missing or insufficient principal into the standard error body.

Usage:
    @ncr_bp.route("/ncrs", methods=["POST"])
    @require_principal
    def create_ncr(): ...

    @user_bp.route("/users/<int:user_id>/role", methods=["PATCH"])
    @require_role("admin")
    def update_role(user_id): ...
"""

import functools
import logging

from flask import g, request

from ncr_tracker.utils.errors import E, api_error

logger = logging.getLogger(__name__)


def current_principal():
    """The Principal resolved for this request, or None."""
    return getattr(g, "principal", None)


def require_principal(f):
    """Decorator: reject the request with 401 unless a principal is resolved."""
    @functools.wraps(f)
    def decorated(*args, **kwargs):
        if current_principal() is None:
            return api_error(
                E.UNAUTHENTICATED,
                "Authentication required. Provide a Bearer token.",
            )
        return f(*args, **kwargs)

    return decorated


def require_role(*roles: str):
    """
    Decorator: require the principal to hold one of *roles*.

    Implies require_principal.
    """
    def decorator(f):
        @functools.wraps(f)
        def decorated(*args, **kwargs):
            principal = current_principal()
            if principal is None:
                return api_error(
                    E.UNAUTHENTICATED,
                    "Authentication required. Provide a Bearer token.",
                )
            if principal.role not in roles:
                logger.warning(
                    "Access denied: role '%s' tried to access %s",
                    principal.role, request.path,
                    extra={"principal_id": principal.id},
                )
                return api_error(E.FORBIDDEN, "Insufficient permissions")
            return f(*args, **kwargs)
        return decorated
    return decorator
