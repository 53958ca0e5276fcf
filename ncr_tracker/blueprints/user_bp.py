"""
User directory blueprint.

Routes:
  GET    /users                – list active users (?role= filter)
  POST   /users                – create a user (admin)
  GET    /users/me             – the authenticated user
  PATCH  /users/<id>/role      – change a user's role (admin)
"""

import logging

from flask import Blueprint, jsonify, request

from ncr_tracker.auth import current_principal, require_principal, require_role
from ncr_tracker.core.exceptions import ConflictError, NotFoundError, PermissionDenied, ValidationError
from ncr_tracker.models.auth import UserRole
from ncr_tracker.services import user_service
from ncr_tracker.services.workflow_rules import role_label
from ncr_tracker.utils.errors import E, api_error

logger = logging.getLogger(__name__)

user_bp = Blueprint("users", __name__, url_prefix="/api/v1")


@user_bp.errorhandler(NotFoundError)
def _handle_not_found(error: NotFoundError):
    return api_error(E.NOT_FOUND, str(error))


@user_bp.errorhandler(ValidationError)
def _handle_validation(error: ValidationError):
    return api_error(E.VALIDATION_INVALID, str(error), details=error.details)


@user_bp.errorhandler(PermissionDenied)
def _handle_permission(error: PermissionDenied):
    return api_error(E.FORBIDDEN, str(error))


@user_bp.errorhandler(ConflictError)
def _handle_conflict(error: ConflictError):
    return api_error(E.CONFLICT_DUPLICATE, str(error), details={error.field: error.value})


def _user_dict(user) -> dict:
    body = user.to_dict()
    body["role_label"] = role_label(user.role)
    return body


@user_bp.route("/users", methods=["GET"])
@require_principal
def list_users():
    users = user_service.list_users(role=request.args.get("role"))
    return jsonify([_user_dict(u) for u in users])


@user_bp.route("/users", methods=["POST"])
@require_role(UserRole.ADMIN.value)
def create_user():
    """Body: { email, display_name?, role? }"""
    data = request.get_json(silent=True) or {}
    email = data.get("email")
    if not isinstance(email, str) or not email.strip():
        return api_error(E.VALIDATION_REQUIRED, "email is required")
    display_name = data.get("display_name")
    if display_name is not None and not isinstance(display_name, str):
        return api_error(E.VALIDATION_INVALID, "display_name must be a string", details={"display_name": "not_text"})
    user = user_service.create_user(
        email, display_name=display_name, role=data.get("role") or UserRole.STATION_SUPERVISOR.value,
    )
    return jsonify(_user_dict(user)), 201


@user_bp.route("/users/me", methods=["GET"])
@require_principal
def me():
    user = user_service.get_user(current_principal().id)
    return jsonify(_user_dict(user))


@user_bp.route("/users/<int:user_id>/role", methods=["PATCH"])
@require_role(UserRole.ADMIN.value)
def update_role(user_id):
    """Body: { role }"""
    data = request.get_json(silent=True) or {}
    role = data.get("role")
    if role is not None and not isinstance(role, str):
        return api_error(E.VALIDATION_INVALID, "role must be a string", details={"role": "not_text"})
    role = (role or "").strip()
    if not role:
        return api_error(E.VALIDATION_REQUIRED, "role is required")
    user = user_service.update_user_role(user_id, role, current_principal())
    return jsonify(_user_dict(user))
