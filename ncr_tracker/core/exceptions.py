"""
Application-wide exception hierarchy.

Two families live here:

  - Service-layer errors (NotFoundError, ValidationError, ConflictError)
    raised by CRUD-style services and mapped to HTTP status codes once in
    the blueprints.

  - Workflow errors (WorkflowError and subclasses) describing why a single
    workflow action attempt failed.  The engine never lets these escape;
    it returns them inside an ActionResult so callers can branch on the
    type and surface ``str(err)`` verbatim.

Usage:
    from ncr_tracker.core.exceptions import NotFoundError, InvalidAction

    raise NotFoundError(resource="Ncr", resource_id=ncr_id)
"""

from ncr_tracker.utils.errors import E


class NotFoundError(Exception):
    """Raised when a requested resource does not exist.

    Args:
        resource: Human-readable entity name (e.g. "Ncr", "User").
        resource_id: The PK that was looked up.
    """

    def __init__(self, resource: str, resource_id: int | str | None = None) -> None:
        self.resource = resource
        self.resource_id = resource_id
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" id={resource_id}"
        msg += " not found"
        super().__init__(msg)


class ValidationError(Exception):
    """Raised when well-formed input violates a business rule.

    Maps to HTTP 422 in blueprint error handlers.

    Args:
        message: Human-readable explanation of what failed.
        details: Optional field-level breakdown; keys are field names.
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class ConflictError(Exception):
    """Raised when an operation would violate a unique constraint.  HTTP 409."""

    def __init__(self, resource: str, field: str, value: str | None = None) -> None:
        self.resource = resource
        self.field = field
        self.value = value
        super().__init__(f"{resource} with {field}={value!r} already exists")


class PermissionDenied(Exception):
    """Raised by non-workflow services when a principal lacks a capability."""

    def __init__(self, principal_id, capability: str) -> None:
        self.principal_id = principal_id
        self.capability = capability
        super().__init__(f"User {principal_id} is not allowed to {capability}")


# ═════════════════════════════════════════════════════════════════════════════
# Workflow errors
# ═════════════════════════════════════════════════════════════════════════════


class WorkflowError(Exception):
    """Base for every failure of a single workflow action attempt.

    Attributes:
        code:        Machine-readable error code for API bodies.
        http_status: Status the blueprint responds with.
        retryable:   Whether retrying the same request can succeed.
    """

    code = E.WORKFLOW
    http_status = 400
    retryable = False

    def __init__(self, message: str, *, action: str | None = None, stage: str | None = None) -> None:
        self.action = action
        self.stage = stage
        super().__init__(message)


class InvalidAction(WorkflowError):
    """The action is not defined for the NCR's current stage."""

    code = E.INVALID_ACTION
    http_status = 400

    def __init__(self, action: str, stage: str) -> None:
        super().__init__(
            f"Action '{action}' is not legal in the current stage '{stage}'",
            action=action, stage=stage,
        )


class Unauthorized(WorkflowError):
    """The principal has no standing on this NCR or this action."""

    code = E.FORBIDDEN
    http_status = 403

    def __init__(self, action: str, stage: str, reason: str | None = None) -> None:
        msg = "You do not have permission to perform this action"
        if reason:
            msg += f": {reason}"
        super().__init__(msg, action=action, stage=stage)


class CommentRequired(WorkflowError):
    code = E.COMMENT_REQUIRED
    http_status = 422
    retryable = True

    def __init__(self, action: str, stage: str) -> None:
        super().__init__("Comment is required for this action", action=action, stage=stage)


class DecisionRequired(WorkflowError):
    code = E.DECISION_REQUIRED
    http_status = 422
    retryable = True

    def __init__(self, action: str, stage: str) -> None:
        super().__init__("A batch decision is required for this action", action=action, stage=stage)


class InvalidField(WorkflowError):
    """A supplied field is not text, or carries a value outside its enumeration."""

    code = E.VALIDATION_INVALID
    http_status = 422

    def __init__(self, field: str, value, allowed=None) -> None:
        self.field = field
        self.value = value
        if allowed is None:
            message = f"Invalid {field}: expected text, got {type(value).__name__}"
        else:
            message = f"Invalid {field} '{value}'. Must be one of: {', '.join(sorted(allowed))}"
        super().__init__(message)


class ConcurrentModification(WorkflowError):
    """Another action changed the NCR after it was loaded."""

    code = E.CONFLICT_STATE
    http_status = 409
    retryable = True

    def __init__(self, ncr_id: str, expected_version: int) -> None:
        self.ncr_id = ncr_id
        self.expected_version = expected_version
        super().__init__(
            f"NCR {ncr_id} was modified by another action; reload and retry"
        )


class PersistenceError(WorkflowError):
    """The store failed to apply the change; nothing was recorded."""

    code = E.DATABASE
    http_status = 503
    retryable = True
