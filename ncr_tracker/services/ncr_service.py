"""
NCR Service — case lifecycle outside the state machine.

Covers creation (draft + creation history row), lookup, listing with
equality filters, detail edits, admin deletion and dashboard statistics.
Every stage change after creation goes through workflow_engine; nothing
here writes ``workflow_stage`` on an existing NCR.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from sqlalchemy import func, select

from ncr_tracker.core.exceptions import (
    NotFoundError,
    PermissionDenied,
    PersistenceError,
    ValidationError,
    WorkflowError,
)
from ncr_tracker.models import db
from ncr_tracker.models.auth import UserRole
from ncr_tracker.models.ncr import (
    FinalStatus,
    Ncr,
    Priority,
    WorkflowAction,
    WorkflowStage,
    WorkflowTransition,
)
from ncr_tracker.services.case_store import CaseStore, SqlCaseStore
from ncr_tracker.services.identity import Principal
from ncr_tracker.services.workflow_rules import (
    can_act,
    can_create_ncr,
    can_delete_ncr,
    can_view_all_ncrs,
    is_admin,
)

logger = logging.getLogger(__name__)

MAX_TITLE_LENGTH = 255
VALID_PRIORITIES = frozenset(p.value for p in Priority)
EDITABLE_FIELDS = ("title", "description", "priority")
# Details may only be edited while the NCR sits with its originator.
EDITABLE_STAGES = frozenset({WorkflowStage.DRAFT.value, WorkflowStage.REWORK.value})


def _require_text(field: str, value):
    if value is not None and not isinstance(value, str):
        raise ValidationError(f"{field} must be a string", details={field: "not_text"})
    return value


def _clean_title(title) -> str:
    _require_text("title", title)
    title = (title or "").strip()
    if not title or len(title) > MAX_TITLE_LENGTH:
        raise ValidationError(
            f"Title is required and must be at most {MAX_TITLE_LENGTH} characters",
            details={"title": "required"},
        )
    return title


def _clean_priority(priority) -> str:
    _require_text("priority", priority)
    priority = priority or Priority.MEDIUM.value
    if priority not in VALID_PRIORITIES:
        raise ValidationError(
            f"priority must be one of: {', '.join(sorted(VALID_PRIORITIES))}",
            details={"priority": priority},
        )
    return priority


def _is_visible(ncr: Ncr, principal: Principal) -> bool:
    return (
        ncr.assigned_to == principal.id
        or ncr.assigned_role == principal.role
        or ncr.created_by == principal.id
    )


# ── Create / read ─────────────────────────────────────────────────────────────


def create_ncr(
    principal: Principal,
    title: str,
    description: str | None = None,
    priority: str | None = None,
    *,
    store: CaseStore | None = None,
) -> Ncr:
    """Create an NCR in ``draft``, pinned to its creator.

    Raises:
        PermissionDenied: role may not create NCRs.
        ValidationError:  bad title / priority.
        PersistenceError: store failure (nothing is written).
    """
    if not can_create_ncr(principal.role):
        raise PermissionDenied(principal.id, "create NCRs")
    store = store or SqlCaseStore()

    ncr = Ncr(
        title=_clean_title(title),
        description=(_require_text("description", description) or "").strip() or None,
        priority=_clean_priority(priority),
        workflow_stage=WorkflowStage.DRAFT.value,
        assigned_role=UserRole.STATION_SUPERVISOR.value,
        assigned_to=principal.id,
        created_by=principal.id,
    )
    try:
        store.add_case(ncr)
        store.append_transition(WorkflowTransition(
            ncr_id=ncr.id,
            from_stage=None,
            to_stage=WorkflowStage.DRAFT.value,
            from_user_id=principal.id,
            to_user_id=principal.id,
            to_role=UserRole.STATION_SUPERVISOR.value,
            action=WorkflowAction.SAVE_DRAFT.value,
            decision=None,
            comments="NCR created",
        ))
        store.commit()
    except PersistenceError:
        store.rollback()
        raise

    logger.info("NCR created", extra={"ncr_id": ncr.id, "principal_id": principal.id})
    return ncr


def get_ncr(ncr_id: str, *, store: CaseStore | None = None) -> Ncr:
    store = store or SqlCaseStore()
    ncr = store.load_case(ncr_id)
    if ncr is None:
        raise NotFoundError(resource="Ncr", resource_id=ncr_id)
    return ncr


def list_ncrs(principal: Principal, *, store: CaseStore | None = None, **filters) -> list[Ncr]:
    """Filtered NCR list.  Roles without view-all only see their own NCRs."""
    store = store or SqlCaseStore()
    ncrs = store.list_cases(**filters)
    if can_view_all_ncrs(principal.role):
        return ncrs
    return [n for n in ncrs if _is_visible(n, principal)]


def list_my_ncrs(principal: Principal, *, store: CaseStore | None = None) -> list[Ncr]:
    """NCRs assigned to the principal or its role, or created by it."""
    store = store or SqlCaseStore()
    return store.list_cases_for(principal.id, principal.role)


def list_transitions(ncr_id: str, *, store: CaseStore | None = None) -> list[WorkflowTransition]:
    """Full history for an NCR, oldest first."""
    store = store or SqlCaseStore()
    get_ncr(ncr_id, store=store)
    return store.list_transitions(ncr_id)


# ── Update / delete ───────────────────────────────────────────────────────────


def update_ncr_details(
    ncr: Ncr,
    principal: Principal,
    data: dict,
    *,
    store: CaseStore | None = None,
) -> Ncr:
    """Edit title / description / priority while the NCR is in draft or rework.

    Workflow columns are never editable here.  Uses the same version check
    as the engine so an edit cannot clobber a concurrent transition.
    """
    if not is_admin(principal):
        if ncr.workflow_stage not in EDITABLE_STAGES or not can_act(principal, ncr):
            raise PermissionDenied(principal.id, f"edit NCR in stage '{ncr.workflow_stage}'")

    changes = {}
    if "title" in data:
        changes["title"] = _clean_title(data["title"])
    if "description" in data:
        changes["description"] = (_require_text("description", data["description"]) or "").strip() or None
    if "priority" in data:
        changes["priority"] = _clean_priority(data["priority"])
    if not changes:
        raise ValidationError(
            f"Nothing to update. Editable fields: {', '.join(EDITABLE_FIELDS)}",
        )

    store = store or SqlCaseStore()
    expected = ncr.version
    changes["version"] = expected + 1
    changes["updated_at"] = datetime.now(timezone.utc)
    try:
        store.save_case(ncr, changes, expected)
        store.commit()
    except WorkflowError:
        store.rollback()
        raise
    return ncr


def delete_ncr(ncr: Ncr, principal: Principal, *, store: CaseStore | None = None) -> None:
    """Hard-delete an NCR and its history.  Administrative, admin-only."""
    if not can_delete_ncr(principal.role):
        raise PermissionDenied(principal.id, "delete NCRs")
    store = store or SqlCaseStore()
    ncr_id = ncr.id
    store.delete_case(ncr)
    store.commit()
    logger.warning("NCR deleted", extra={"ncr_id": ncr_id, "principal_id": principal.id})


# ── Dashboard ─────────────────────────────────────────────────────────────────


def dashboard_stats(principal: Principal) -> dict:
    """Counts for the dashboard: totals, per-stage and the principal's queue."""
    rows = db.session.execute(
        select(Ncr.workflow_stage, func.count(Ncr.id)).group_by(Ncr.workflow_stage)
    ).all()
    by_stage = {stage.value: 0 for stage in WorkflowStage}
    for stage, cnt in rows:
        by_stage[stage] = cnt

    status_rows = db.session.execute(
        select(Ncr.final_status, func.count(Ncr.id)).group_by(Ncr.final_status)
    ).all()
    by_status = dict(status_rows)

    my_pending = sum(
        1 for n in list_my_ncrs(principal)
        if n.final_status == FinalStatus.IN_PROGRESS.value
    )

    return {
        "total": sum(by_stage.values()),
        "my_pending": my_pending,
        "approved": by_status.get(FinalStatus.APPROVED.value, 0),
        "rejected": by_status.get(FinalStatus.REJECTED.value, 0),
        "in_rework": by_stage[WorkflowStage.REWORK.value],
        "by_stage": by_stage,
    }
