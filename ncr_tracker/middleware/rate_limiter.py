"""
Rate limiting configuration.

Applies per-blueprint rate limits using Flask-Limiter.  The Limiter
instance is created in ncr_tracker/__init__.py with no default limits;
this module applies limits per blueprint.

Usage:
    from ncr_tracker.middleware.rate_limiter import init_rate_limits
    init_rate_limits(app, limiter)
"""

import logging

from flask import g, request as flask_request

logger = logging.getLogger(__name__)

NCR_LIMIT = "60/minute"
USER_LIMIT = "120/minute"


def rate_limit_key():
    """Principal id when authenticated, else remote IP."""
    principal = getattr(g, "principal", None)
    if principal is not None:
        return f"user:{principal.id}"
    return flask_request.remote_addr or "unknown"


def init_rate_limits(app, limiter):
    """
    Apply rate limits to API blueprints.

    Limits (per principal, falling back to remote IP):
        - NCR endpoints:   60/minute
        - User directory:  120/minute
        - Health check:    exempt

    Rate limiting is disabled in testing mode.
    """
    if app.config.get("TESTING"):
        app.logger.info("Rate limiter disabled (TESTING=True)")
        return

    bp = app.blueprints.get("ncr")
    if bp:
        limiter.limit(NCR_LIMIT, key_func=rate_limit_key)(bp)

    bp = app.blueprints.get("users")
    if bp:
        limiter.limit(USER_LIMIT, key_func=rate_limit_key)(bp)

    bp = app.blueprints.get("health")
    if bp:
        limiter.exempt(bp)

    app.logger.info("Rate limiter configured: ncr: %s, users: %s", NCR_LIMIT, USER_LIMIT)
