"""JSON error envelope shared by every blueprint.

Body shape::

    {"error": "<message shown to the user>", "code": "ERR_*", "details": {...}}

``details`` is omitted when empty.  Workflow failures always carry
``details.retryable`` so clients know whether re-submitting (e.g. after
adding a comment or reloading a stale NCR) can succeed.
"""

from __future__ import annotations

from flask import jsonify


class E:
    """Error codes used in API bodies and on WorkflowError subclasses."""

    VALIDATION_REQUIRED = "ERR_VALIDATION_REQUIRED"
    VALIDATION_INVALID = "ERR_VALIDATION_INVALID"
    UNAUTHENTICATED = "ERR_UNAUTHENTICATED"
    FORBIDDEN = "ERR_FORBIDDEN"
    NOT_FOUND = "ERR_NOT_FOUND"
    CONFLICT_DUPLICATE = "ERR_CONFLICT_DUPLICATE"
    CONFLICT_STATE = "ERR_CONFLICT_STATE"

    # Workflow action outcomes
    WORKFLOW = "ERR_WORKFLOW"
    INVALID_ACTION = "ERR_INVALID_ACTION"
    COMMENT_REQUIRED = "ERR_COMMENT_REQUIRED"
    DECISION_REQUIRED = "ERR_DECISION_REQUIRED"

    RATE_LIMITED = "ERR_RATE_LIMITED"
    DATABASE = "ERR_DATABASE"
    INTERNAL = "ERR_INTERNAL"


STATUS_BY_CODE: dict[str, int] = {
    E.VALIDATION_REQUIRED: 400,
    E.VALIDATION_INVALID: 422,
    E.UNAUTHENTICATED: 401,
    E.FORBIDDEN: 403,
    E.NOT_FOUND: 404,
    E.CONFLICT_DUPLICATE: 409,
    E.CONFLICT_STATE: 409,
    E.WORKFLOW: 400,
    E.INVALID_ACTION: 400,
    E.COMMENT_REQUIRED: 422,
    E.DECISION_REQUIRED: 422,
    E.RATE_LIMITED: 429,
    E.DATABASE: 503,
    E.INTERNAL: 500,
}


def api_error(code: str, message: str, *, status: int | None = None, details: dict | None = None):
    """``(jsonify(body), status)`` for *code*; status defaults from STATUS_BY_CODE, else 400."""
    body = {"error": message, "code": code}
    if details:
        body["details"] = details
    return jsonify(body), status or STATUS_BY_CODE.get(code, 400)


def workflow_error_response(err):
    """Render a WorkflowError returned by the engine or raised by a service."""
    return api_error(
        err.code,
        str(err),
        status=err.http_status,
        details={"retryable": err.retryable},
    )
