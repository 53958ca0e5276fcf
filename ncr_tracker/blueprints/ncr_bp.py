"""
NCR Blueprint — case CRUD, workflow actions, history and comments.

Routes:
  POST   /ncrs                       – create NCR (draft)
  GET    /ncrs                       – list NCRs (equality filters via query string)
  GET    /ncrs/mine                  – NCRs assigned to me / my role / created by me
  GET    /ncrs/<id>                  – NCR detail + actions available to me
  PATCH  /ncrs/<id>                  – edit title / description / priority
  DELETE /ncrs/<id>                  – delete NCR (admin)
  GET    /ncrs/<id>/actions          – actions available to me
  POST   /ncrs/<id>/actions          – execute a workflow action
  GET    /ncrs/<id>/transitions      – workflow history, oldest first
  GET    /ncrs/<id>/comments         – comments, newest first
  POST   /ncrs/<id>/comments         – add comment
  GET    /dashboard/stats            – dashboard counters
  GET    /workflow/stages            – stage labels / colors and transition rules

Every route requires a Bearer token.  Stage changes only happen through
POST /ncrs/<id>/actions, which delegates to the workflow engine.
"""

from __future__ import annotations

import logging

from flask import Blueprint, jsonify, request
from werkzeug.exceptions import HTTPException

from ncr_tracker.auth import current_principal, require_principal
from ncr_tracker.core.exceptions import (
    NotFoundError,
    PermissionDenied,
    ValidationError,
    WorkflowError,
)
from ncr_tracker.models.ncr import WorkflowStage
from ncr_tracker.services import comment_service, ncr_service
from ncr_tracker.services.case_store import CASE_FILTERS
from ncr_tracker.services.workflow_engine import EXTRA_TEXT_FIELDS, execute_action
from ncr_tracker.services.workflow_rules import available_actions, rules_for, stage_info
from ncr_tracker.utils.errors import E, api_error, workflow_error_response

logger = logging.getLogger(__name__)

ncr_bp = Blueprint("ncr", __name__, url_prefix="/api/v1")

# Body keys forwarded to the engine as ``extra``
ACTION_EXTRA_FIELDS = ("batch_decision", "rework_result") + EXTRA_TEXT_FIELDS


# ── Error handlers ────────────────────────────────────────────────────────────


@ncr_bp.errorhandler(NotFoundError)
def _handle_not_found(error: NotFoundError):
    return api_error(E.NOT_FOUND, str(error))


@ncr_bp.errorhandler(ValidationError)
def _handle_validation(error: ValidationError):
    return api_error(E.VALIDATION_INVALID, str(error), details=error.details)


@ncr_bp.errorhandler(PermissionDenied)
def _handle_permission(error: PermissionDenied):
    return api_error(E.FORBIDDEN, str(error))


@ncr_bp.errorhandler(WorkflowError)
def _handle_workflow(error: WorkflowError):
    return workflow_error_response(error)


@ncr_bp.errorhandler(Exception)
def _handle_unexpected(error: Exception):
    if isinstance(error, HTTPException):
        return error
    logger.exception("Unexpected error in ncr_bp endpoint=%s", request.endpoint)
    return api_error(E.INTERNAL, "Internal server error")


# ── helpers ──────────────────────────────────────────────────────────────────


def _ncr_detail(ncr, principal) -> dict:
    body = ncr.to_dict()
    body["stage_info"] = stage_info(ncr.workflow_stage)
    body["available_actions"] = [r.to_dict() for r in available_actions(principal, ncr)]
    return body


# ═════════════════════════════════════════════════════════════════════════════
# NCR CRUD
# ═════════════════════════════════════════════════════════════════════════════


@ncr_bp.route("/ncrs", methods=["POST"])
@require_principal
def create_ncr():
    """Create a draft NCR.

    Body: { title, description?, priority? }
    """
    data = request.get_json(silent=True) or {}
    title = data.get("title")
    if title is not None and not isinstance(title, str):
        return api_error(E.VALIDATION_INVALID, "title must be a string", details={"title": "not_text"})
    if not (title or "").strip():
        return api_error(E.VALIDATION_REQUIRED, "title is required")
    ncr = ncr_service.create_ncr(
        current_principal(),
        data["title"],
        description=data.get("description"),
        priority=data.get("priority"),
    )
    return jsonify(ncr.to_dict()), 201


@ncr_bp.route("/ncrs", methods=["GET"])
@require_principal
def list_ncrs():
    """List NCRs.  Query params: any of workflow_stage, assigned_role,
    assigned_to, created_by, priority, final_status, batch_decision."""
    filters = {name: request.args.get(name) for name in CASE_FILTERS if request.args.get(name)}
    for int_field in ("assigned_to", "created_by"):
        if int_field in filters:
            try:
                filters[int_field] = int(filters[int_field])
            except ValueError:
                return api_error(E.VALIDATION_INVALID, f"{int_field} must be an integer")
    ncrs = ncr_service.list_ncrs(current_principal(), **filters)
    return jsonify({"items": [n.to_dict() for n in ncrs], "total": len(ncrs)})


@ncr_bp.route("/ncrs/mine", methods=["GET"])
@require_principal
def list_my_ncrs():
    ncrs = ncr_service.list_my_ncrs(current_principal())
    return jsonify({"items": [n.to_dict() for n in ncrs], "total": len(ncrs)})


@ncr_bp.route("/ncrs/<ncr_id>", methods=["GET"])
@require_principal
def get_ncr(ncr_id):
    ncr = ncr_service.get_ncr(ncr_id)
    return jsonify(_ncr_detail(ncr, current_principal()))


@ncr_bp.route("/ncrs/<ncr_id>", methods=["PATCH"])
@require_principal
def update_ncr(ncr_id):
    """Edit NCR details.  Body: any of { title, description, priority }."""
    data = request.get_json(silent=True) or {}
    ncr = ncr_service.get_ncr(ncr_id)
    ncr = ncr_service.update_ncr_details(ncr, current_principal(), data)
    return jsonify(ncr.to_dict())


@ncr_bp.route("/ncrs/<ncr_id>", methods=["DELETE"])
@require_principal
def delete_ncr(ncr_id):
    ncr = ncr_service.get_ncr(ncr_id)
    ncr_service.delete_ncr(ncr, current_principal())
    return jsonify({"message": "NCR deleted", "id": ncr_id})


# ═════════════════════════════════════════════════════════════════════════════
# Workflow
# ═════════════════════════════════════════════════════════════════════════════


@ncr_bp.route("/ncrs/<ncr_id>/actions", methods=["GET"])
@require_principal
def list_actions(ncr_id):
    ncr = ncr_service.get_ncr(ncr_id)
    return jsonify([r.to_dict() for r in available_actions(current_principal(), ncr)])


@ncr_bp.route("/ncrs/<ncr_id>/actions", methods=["POST"])
@require_principal
def perform_action(ncr_id):
    """Execute a workflow action.

    Body: {
        action, comment?,
        batch_decision?, engineering_findings?, root_cause_analysis?,
        rework_result?, rework_notes?
    }
    Returns: { success, ncr, transition } on success; error body with the
    workflow error's code and status otherwise.
    """
    data = request.get_json(silent=True) or {}
    action = data.get("action")
    if action is not None and not isinstance(action, str):
        return api_error(E.VALIDATION_INVALID, "action must be a string", details={"action": "not_text"})
    action = (action or "").strip()
    if not action:
        return api_error(E.VALIDATION_REQUIRED, "action is required")

    ncr = ncr_service.get_ncr(ncr_id)
    extra = {k: data[k] for k in ACTION_EXTRA_FIELDS if k in data}
    result = execute_action(ncr, current_principal(), action, comment=data.get("comment"), extra=extra)
    if not result.ok:
        return workflow_error_response(result.error)
    return jsonify(result.to_dict())


@ncr_bp.route("/ncrs/<ncr_id>/transitions", methods=["GET"])
@require_principal
def list_transitions(ncr_id):
    transitions = ncr_service.list_transitions(ncr_id)
    return jsonify([t.to_dict() for t in transitions])


# ═════════════════════════════════════════════════════════════════════════════
# Comments
# ═════════════════════════════════════════════════════════════════════════════


@ncr_bp.route("/ncrs/<ncr_id>/comments", methods=["GET"])
@require_principal
def list_comments(ncr_id):
    ncr_service.get_ncr(ncr_id)
    return jsonify([c.to_dict() for c in comment_service.list_comments(ncr_id)])


@ncr_bp.route("/ncrs/<ncr_id>/comments", methods=["POST"])
@require_principal
def add_comment(ncr_id):
    """Body: { content, comment_type? }"""
    data = request.get_json(silent=True) or {}
    ncr = ncr_service.get_ncr(ncr_id)
    comment = comment_service.add_comment(
        ncr, current_principal(), data.get("content"), data.get("comment_type"),
    )
    return jsonify(comment.to_dict()), 201


# ═════════════════════════════════════════════════════════════════════════════
# Dashboard / reference data
# ═════════════════════════════════════════════════════════════════════════════


@ncr_bp.route("/dashboard/stats", methods=["GET"])
@require_principal
def dashboard_stats():
    return jsonify(ncr_service.dashboard_stats(current_principal()))


@ncr_bp.route("/workflow/stages", methods=["GET"])
@require_principal
def workflow_stages():
    return jsonify([
        {
            "stage": stage.value,
            **stage_info(stage),
            "transitions": [r.to_dict() for r in rules_for(stage)],
        }
        for stage in WorkflowStage
    ])
