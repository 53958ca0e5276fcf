"""
NCR Workflow Engine — executes one workflow action against one NCR.

Pipeline (validation first, nothing is mutated until step 5):
  1. Rule lookup for the current stage          → InvalidAction
  2. Standing check (can_act)                   → Unauthorized
  3. Mandatory comment                          → CommentRequired
  4. Role gate + decision / field validation    → Unauthorized,
                                                  DecisionRequired, InvalidField
  5. Compute the change set (stage, role, approval flag, batch decision,
     supplied free-text fields, NCR number on first submit)
  6. Conditional write through the CaseStore    → ConcurrentModification,
                                                  PersistenceError
  7. Append the transition record (same transaction as 6)
  8. Commit and return an ActionResult

The engine keeps no state of its own; every call gets its store injected
(defaulting to the SQLAlchemy session store) so it is safe to call from
concurrent request handlers.

Usage:
    from ncr_tracker.services.workflow_engine import execute_action

    result = execute_action(ncr, principal, "approve", comment="LGTM")
    if not result.ok:
        return api_error(result.error.code, str(result.error))
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone

from ncr_tracker.core.exceptions import (
    CommentRequired,
    DecisionRequired,
    InvalidAction,
    InvalidField,
    PersistenceError,
    Unauthorized,
    WorkflowError,
)
from ncr_tracker.models.ncr import (
    BatchDecision,
    FinalStatus,
    Ncr,
    ReworkResult,
    WorkflowAction,
    WorkflowStage,
    WorkflowTransition,
)
from ncr_tracker.services.case_store import CaseStore, SqlCaseStore
from ncr_tracker.services.identity import Principal
from ncr_tracker.services.workflow_rules import (
    TransitionRule,
    can_act,
    find_rule,
    role_permits,
)

logger = logging.getLogger(__name__)

A = WorkflowAction
S = WorkflowStage


# Batch-decision actions → the decision they record
BATCH_DECISION_ACTIONS = {
    A.ACCEPT_BATCH: BatchDecision.ACCEPT,
    A.PARTIALLY_ACCEPT: BatchDecision.PARTIALLY_ACCEPT,
    A.REJECT_BATCH: BatchDecision.REJECT,
    A.REQUEST_REWORK: BatchDecision.REWORK,
}

# Pre-transition stage → approval flag set by ``approve``
APPROVAL_FLAG_BY_STAGE = {
    S.PE_REVIEW: "pe_approved",
    S.EM_REVIEW: "em_approved",
    S.PM_REVIEW: "pm_approved",
    S.OM_REVIEW: "om_approved",
    S.QA_REVIEW: "qa_approved",
    S.MARKETING_REVIEW: "marketing_approved",
}

# Caller-supplied free-text fields copied onto the NCR when present
EXTRA_TEXT_FIELDS = ("engineering_findings", "root_cause_analysis", "rework_notes")

_DECISION_VALUES = frozenset(d.value for d in BatchDecision if d is not BatchDecision.PENDING)
_REWORK_RESULTS = frozenset(r.value for r in ReworkResult)


@dataclass
class ActionResult:
    """Outcome of one execute_action call.  Exactly one of ncr / error is set."""

    ok: bool
    ncr: Ncr | None = None
    transition: WorkflowTransition | None = None
    error: WorkflowError | None = None

    def to_dict(self) -> dict:
        if self.ok:
            return {
                "success": True,
                "ncr": self.ncr.to_dict(),
                "transition": self.transition.to_dict() if self.transition else None,
            }
        return {
            "success": False,
            "error": str(self.error),
            "code": self.error.code,
            "retryable": self.error.retryable,
        }


def _check_text(field: str, value):
    if value is not None and not isinstance(value, str):
        raise InvalidField(field, value)
    return value


def _present(value) -> bool:
    if value is None:
        return False
    if isinstance(value, str):
        return bool(value.strip())
    return True


# ═════════════════════════════════════════════════════════════════════════════
# Validation + planning (pure)
# ═════════════════════════════════════════════════════════════════════════════

def _resolve_decision(rule: TransitionRule, stage: str, extra: dict) -> BatchDecision | None:
    if rule.action in BATCH_DECISION_ACTIONS:
        return BATCH_DECISION_ACTIONS[rule.action]
    if rule.action is A.CHANGE_DECISION:
        supplied = extra.get("batch_decision")
        if not _present(supplied):
            raise DecisionRequired(rule.action.value, stage)
        if supplied not in _DECISION_VALUES:
            raise InvalidField("batch_decision", supplied, _DECISION_VALUES)
        return BatchDecision(supplied)
    return None


def plan_action(
    ncr: Ncr,
    principal: Principal,
    action: str,
    comment: str | None = None,
    extra: dict | None = None,
) -> tuple[TransitionRule, dict, BatchDecision | None]:
    """Validate an action and compute its change set without touching *ncr*.

    Returns:
        (rule, changes, decision); ``changes`` maps Ncr column → new value.

    Raises:
        InvalidAction, Unauthorized, CommentRequired, DecisionRequired, InvalidField
    """
    extra = extra or {}
    stage = ncr.workflow_stage
    action_name = getattr(action, "value", action)

    # 1. Rule lookup
    rule = find_rule(stage, action_name)
    if rule is None:
        raise InvalidAction(str(action_name), stage)

    # 2. Standing
    if not can_act(principal, ncr):
        raise Unauthorized(rule.action.value, stage)

    # 3. Mandatory comment
    _check_text("comment", comment)
    if rule.requires_comment and not _present(comment):
        raise CommentRequired(rule.action.value, stage)

    # 4. Role gate
    if not role_permits(principal, rule.action):
        raise Unauthorized(
            rule.action.value, stage,
            f"role '{principal.role}' cannot '{rule.action.value}'",
        )

    for field in ("batch_decision", "rework_result") + EXTRA_TEXT_FIELDS:
        _check_text(field, extra.get(field))

    decision = _resolve_decision(rule, stage, extra)

    rework_result = extra.get("rework_result")
    if _present(rework_result) and rework_result not in _REWORK_RESULTS:
        raise InvalidField("rework_result", rework_result, _REWORK_RESULTS)

    # 5. Change set
    changes = {
        "workflow_stage": rule.next_stage.value,
        "assigned_role": rule.next_role.value,
        "assigned_to": None,
    }
    if decision is not None:
        changes["batch_decision"] = decision.value

    if rule.action is A.APPROVE:
        flag = APPROVAL_FLAG_BY_STAGE.get(S(stage))
        if flag:
            changes[flag] = True
        if rule.next_stage is S.APPROVED:
            changes["final_status"] = FinalStatus.APPROVED.value

    for field in EXTRA_TEXT_FIELDS:
        if _present(extra.get(field)):
            changes[field] = extra[field]
    if _present(rework_result):
        changes["rework_result"] = rework_result

    return rule, changes, decision


# ═════════════════════════════════════════════════════════════════════════════
# Execution
# ═════════════════════════════════════════════════════════════════════════════

def execute_action(
    ncr: Ncr,
    principal: Principal,
    action: str,
    comment: str | None = None,
    extra: dict | None = None,
    *,
    store: CaseStore | None = None,
) -> ActionResult:
    """
    Execute one workflow action.

    Args:
        ncr:       The NCR as loaded by the caller (its ``version`` is the
                   optimistic-concurrency token).
        principal: Resolved acting identity.
        action:    WorkflowAction value, e.g. "approve".
        comment:   Free text; mandatory for rules with requires_comment.
        extra:     Optional fields: batch_decision, engineering_findings,
                   root_cause_analysis, rework_result, rework_notes.
        store:     CaseStore to write through (default: SqlCaseStore).

    Returns:
        ActionResult; never raises WorkflowError.
    """
    store = store or SqlCaseStore()
    from_stage = ncr.workflow_stage
    expected_version = ncr.version
    ncr_id = ncr.id

    try:
        rule, changes, decision = plan_action(ncr, principal, action, comment, extra)
    except WorkflowError as err:
        logger.info(
            "Workflow action rejected: %s", err,
            extra={"ncr_id": ncr_id, "action": str(getattr(action, "value", action)),
                   "principal_id": principal.id, "error_code": err.code},
        )
        return ActionResult(ok=False, error=err)

    changes["updated_at"] = datetime.now(timezone.utc)
    changes["version"] = expected_version + 1

    try:
        if rule.action is A.SUBMIT and not ncr.ncr_number:
            changes["ncr_number"] = store.next_ncr_number()
        store.save_case(ncr, changes, expected_version)
        record = store.append_transition(WorkflowTransition(
            ncr_id=ncr_id,
            from_stage=from_stage,
            to_stage=rule.next_stage.value,
            from_user_id=principal.id,
            to_user_id=None,
            to_role=rule.next_role.value,
            action=rule.action.value,
            decision=decision.value if decision else None,
            comments=comment.strip() if _present(comment) else None,
        ))
        store.commit()
    except WorkflowError as err:
        store.rollback()
        logger.warning(
            "Workflow action failed to persist: %s", err,
            extra={"ncr_id": ncr_id, "action": rule.action.value,
                   "principal_id": principal.id, "error_code": err.code},
        )
        return ActionResult(ok=False, error=err)
    except Exception as exc:
        store.rollback()
        logger.exception(
            "Workflow action aborted", extra={"ncr_id": ncr_id, "action": rule.action.value,
                                              "principal_id": principal.id},
        )
        return ActionResult(ok=False, error=PersistenceError(
            f"Action could not be applied: {exc.__class__.__name__}",
        ))

    logger.info(
        "NCR %s: %s → %s via %s", ncr_id, from_stage, rule.next_stage.value, rule.action.value,
        extra={"ncr_id": ncr_id, "action": rule.action.value, "from_stage": from_stage,
               "to_stage": rule.next_stage.value, "principal_id": principal.id},
    )
    return ActionResult(ok=True, ncr=ncr, transition=record)
