"""
NCR Workflow — static rule tables and authorization checks.

Holds the two lookup tables the engine is driven by:
  - ROLE_CONFIG:          role  → allowed stages / allowed actions
  - WORKFLOW_TRANSITIONS: stage → ordered transition rules

and the pure checks built on top of them (can_act, available_actions).
Nothing here touches the database or holds mutable state.

Stage graph:
  draft ─submit→ submitted ─approve→ pe_review
  pe_review ─accept_batch|partially_accept|reject_batch→ em_review
            ─request_rework→ rework ─submit_rework→ pe_review
            ─move_to_pm→ pm_review
  pm_review ─approve|batch decisions→ em_review, ─return→ pe_review
  em_review ─approve→ om_review, ─return→ pe_review
  om_review ─approve→ qa_review, ─return→ em_review
  qa_review ─approve→ approved, ─request_marketing→ marketing_review,
            ─return→ em_review
  marketing_review ─approve|return→ qa_review
  request_info / change_decision are self-loops.
"""

from __future__ import annotations

from dataclasses import dataclass

from ncr_tracker.models.auth import UserRole
from ncr_tracker.models.ncr import WorkflowAction as A
from ncr_tracker.models.ncr import WorkflowStage as S

R = UserRole


# ═════════════════════════════════════════════════════════════════════════════
# Role / permission table
# ═════════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class RoleConfig:
    label: str
    description: str
    allowed_stages: tuple[S, ...]
    allowed_actions: frozenset[A]


ROLE_CONFIG: dict[UserRole, RoleConfig] = {
    R.STATION_SUPERVISOR: RoleConfig(
        label="Station Supervisor",
        description="Creates and submits NCRs",
        allowed_stages=(S.DRAFT, S.REWORK),
        allowed_actions=frozenset({A.SAVE_DRAFT, A.SUBMIT, A.SUBMIT_REWORK}),
    ),
    R.PROCESS_ENGINEER: RoleConfig(
        label="Process Engineer",
        description="Reviews NCRs, adds findings, makes batch decisions",
        allowed_stages=(S.PE_REVIEW,),
        allowed_actions=frozenset({
            A.ACCEPT_BATCH, A.PARTIALLY_ACCEPT, A.REJECT_BATCH,
            A.REQUEST_REWORK, A.REQUEST_INFO, A.MOVE_TO_PM,
        }),
    ),
    R.ENGINEERING_MANAGER: RoleConfig(
        label="Engineering Manager",
        description="Approves PE decisions, can change decisions",
        allowed_stages=(S.EM_REVIEW,),
        allowed_actions=frozenset({A.APPROVE, A.RETURN, A.REQUEST_INFO, A.CHANGE_DECISION}),
    ),
    R.PRODUCT_MANAGER: RoleConfig(
        label="Product Manager",
        description="Reviews NCRs, can make batch decisions if PE hasn't",
        allowed_stages=(S.PM_REVIEW,),
        allowed_actions=frozenset({
            A.APPROVE, A.RETURN, A.REQUEST_INFO,
            A.ACCEPT_BATCH, A.PARTIALLY_ACCEPT, A.REJECT_BATCH, A.REQUEST_REWORK,
        }),
    ),
    R.OPERATIONS_MANAGER: RoleConfig(
        label="Operations Manager",
        description="Approves EM decisions",
        allowed_stages=(S.OM_REVIEW,),
        allowed_actions=frozenset({A.APPROVE, A.RETURN, A.REQUEST_INFO}),
    ),
    R.QA_MANAGER: RoleConfig(
        label="QA Manager",
        description="Final approval, can request Marketing review",
        allowed_stages=(S.QA_REVIEW,),
        allowed_actions=frozenset({A.APPROVE, A.RETURN, A.REQUEST_INFO, A.REQUEST_MARKETING}),
    ),
    R.MARKETING_MANAGER: RoleConfig(
        label="Marketing Manager",
        description="Reviews when requested by QA",
        allowed_stages=(S.MARKETING_REVIEW,),
        allowed_actions=frozenset({A.APPROVE, A.RETURN, A.REQUEST_INFO}),
    ),
    R.PRODUCTION_CONTROL: RoleConfig(
        label="Production Control",
        description="Receives notifications, monitors workflow",
        allowed_stages=(),
        allowed_actions=frozenset(),
    ),
    # Admin bypasses the action list entirely (see is_admin checks below).
    R.ADMIN: RoleConfig(
        label="Administrator",
        description="Full system access",
        allowed_stages=tuple(S),
        allowed_actions=frozenset(),
    ),
}


def _coerce(enum_cls, value):
    try:
        return enum_cls(value)
    except ValueError:
        return None


def allowed_actions(role) -> frozenset[A]:
    """Fixed action set for *role*; empty for unknown roles and for admin."""
    r = _coerce(UserRole, role)
    if r is None:
        return frozenset()
    return ROLE_CONFIG[r].allowed_actions


def role_label(role) -> str:
    r = _coerce(UserRole, role)
    return ROLE_CONFIG[r].label if r else str(role)


# ═════════════════════════════════════════════════════════════════════════════
# Transition table
# ═════════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class TransitionRule:
    action: A
    label: str
    next_stage: S
    next_role: UserRole
    requires_comment: bool = False
    requires_decision: bool = False

    def to_dict(self) -> dict:
        return {
            "action": self.action.value,
            "label": self.label,
            "next_stage": self.next_stage.value,
            "next_role": self.next_role.value,
            "requires_comment": self.requires_comment,
            "requires_decision": self.requires_decision,
        }


def _rule(action, label, next_stage, next_role, *, comment=False, decision=False):
    return TransitionRule(action, label, next_stage, next_role, comment, decision)


WORKFLOW_TRANSITIONS: dict[S, tuple[TransitionRule, ...]] = {
    S.DRAFT: (
        _rule(A.SUBMIT, "Submit NCR", S.SUBMITTED, R.PRODUCTION_CONTROL),
    ),
    S.SUBMITTED: (
        _rule(A.APPROVE, "Send to Process Engineer", S.PE_REVIEW, R.PROCESS_ENGINEER),
    ),
    S.PE_REVIEW: (
        _rule(A.ACCEPT_BATCH, "Accept Batch", S.EM_REVIEW, R.ENGINEERING_MANAGER, decision=True),
        _rule(A.PARTIALLY_ACCEPT, "Partially Accept", S.EM_REVIEW, R.ENGINEERING_MANAGER, decision=True),
        _rule(A.REJECT_BATCH, "Reject Batch", S.EM_REVIEW, R.ENGINEERING_MANAGER, decision=True),
        _rule(A.REQUEST_REWORK, "Request Rework", S.REWORK, R.STATION_SUPERVISOR, comment=True),
        _rule(A.MOVE_TO_PM, "Move to Product Manager", S.PM_REVIEW, R.PRODUCT_MANAGER),
        _rule(A.REQUEST_INFO, "Request Additional Info", S.PE_REVIEW, R.PROCESS_ENGINEER, comment=True),
    ),
    S.EM_REVIEW: (
        _rule(A.APPROVE, "Approve", S.OM_REVIEW, R.OPERATIONS_MANAGER),
        _rule(A.RETURN, "Return to Process Engineer", S.PE_REVIEW, R.PROCESS_ENGINEER, comment=True),
        _rule(A.CHANGE_DECISION, "Change Decision", S.EM_REVIEW, R.ENGINEERING_MANAGER, decision=True),
        _rule(A.REQUEST_INFO, "Request Additional Info", S.EM_REVIEW, R.ENGINEERING_MANAGER, comment=True),
    ),
    S.PM_REVIEW: (
        _rule(A.APPROVE, "Approve", S.EM_REVIEW, R.ENGINEERING_MANAGER),
        _rule(A.RETURN, "Return to Process Engineer", S.PE_REVIEW, R.PROCESS_ENGINEER, comment=True),
        _rule(A.ACCEPT_BATCH, "Accept Batch", S.EM_REVIEW, R.ENGINEERING_MANAGER, decision=True),
        _rule(A.PARTIALLY_ACCEPT, "Partially Accept", S.EM_REVIEW, R.ENGINEERING_MANAGER, decision=True),
        _rule(A.REJECT_BATCH, "Reject Batch", S.EM_REVIEW, R.ENGINEERING_MANAGER, decision=True),
        _rule(A.REQUEST_REWORK, "Request Rework", S.REWORK, R.STATION_SUPERVISOR, comment=True),
        _rule(A.REQUEST_INFO, "Request Additional Info", S.PM_REVIEW, R.PRODUCT_MANAGER, comment=True),
    ),
    S.OM_REVIEW: (
        _rule(A.APPROVE, "Approve", S.QA_REVIEW, R.QA_MANAGER),
        _rule(A.RETURN, "Return to Engineering Manager", S.EM_REVIEW, R.ENGINEERING_MANAGER, comment=True),
        _rule(A.REQUEST_INFO, "Request Additional Info", S.OM_REVIEW, R.OPERATIONS_MANAGER, comment=True),
    ),
    S.QA_REVIEW: (
        _rule(A.APPROVE, "Final Approve", S.APPROVED, R.PRODUCTION_CONTROL),
        _rule(A.RETURN, "Return to Engineering Manager", S.EM_REVIEW, R.ENGINEERING_MANAGER, comment=True),
        _rule(A.REQUEST_MARKETING, "Request Marketing Approval", S.MARKETING_REVIEW, R.MARKETING_MANAGER),
        _rule(A.REQUEST_INFO, "Request Additional Info", S.QA_REVIEW, R.QA_MANAGER, comment=True),
    ),
    S.MARKETING_REVIEW: (
        _rule(A.APPROVE, "Approve", S.QA_REVIEW, R.QA_MANAGER),
        _rule(A.RETURN, "Return to QA Manager", S.QA_REVIEW, R.QA_MANAGER, comment=True),
        _rule(A.REQUEST_INFO, "Request Additional Info", S.MARKETING_REVIEW, R.MARKETING_MANAGER, comment=True),
    ),
    S.REWORK: (
        _rule(A.SUBMIT_REWORK, "Submit After Rework", S.PE_REVIEW, R.PROCESS_ENGINEER),
    ),
    S.APPROVED: (),
    S.REJECTED: (),
}


STAGE_INFO: dict[S, dict] = {
    S.DRAFT: {"label": "Draft", "color": "#6B7280"},
    S.SUBMITTED: {"label": "Submitted", "color": "#3B82F6"},
    S.PE_REVIEW: {"label": "Process Engineer Review", "color": "#F59E0B"},
    S.EM_REVIEW: {"label": "Engineering Manager Review", "color": "#8B5CF6"},
    S.PM_REVIEW: {"label": "Product Manager Review", "color": "#EC4899"},
    S.OM_REVIEW: {"label": "Operations Manager Review", "color": "#14B8A6"},
    S.QA_REVIEW: {"label": "QA Manager Review", "color": "#F97316"},
    S.MARKETING_REVIEW: {"label": "Marketing Review", "color": "#84CC16"},
    S.REWORK: {"label": "Rework Required", "color": "#EF4444"},
    S.APPROVED: {"label": "Approved", "color": "#10B981"},
    S.REJECTED: {"label": "Rejected", "color": "#DC2626"},
}


def rules_for(stage) -> tuple[TransitionRule, ...]:
    """Ordered rules for *stage*.  Terminal and unrecognised stages yield ()."""
    s = _coerce(S, stage)
    if s is None:
        return ()
    return WORKFLOW_TRANSITIONS.get(s, ())


def find_rule(stage, action) -> TransitionRule | None:
    a = _coerce(A, action)
    if a is None:
        return None
    for rule in rules_for(stage):
        if rule.action is a:
            return rule
    return None


def stage_info(stage) -> dict:
    s = _coerce(S, stage)
    if s is None:
        return {"label": str(stage), "color": "#6B7280"}
    return STAGE_INFO[s]


# ═════════════════════════════════════════════════════════════════════════════
# Authorization
# ═════════════════════════════════════════════════════════════════════════════

def is_admin(principal) -> bool:
    return principal.role == R.ADMIN.value


def can_act(principal, ncr) -> bool:
    """Whether *principal* may touch *ncr* at all (not whether an action is legal).

    Order: admin override → pinned individual → role pool.
    """
    if is_admin(principal):
        return True
    assignment = ncr.assignment
    if assignment.person_id is not None and assignment.person_id == principal.id:
        return True
    if assignment.role is not None and assignment.role == principal.role:
        return True
    return False


def role_permits(principal, action) -> bool:
    """Role-level gate: admin always; otherwise the role's allowed-action set."""
    if is_admin(principal):
        return True
    a = _coerce(A, action)
    return a is not None and a in allowed_actions(principal.role)


def available_actions(principal, ncr) -> list[TransitionRule]:
    """Rules the view layer should offer *principal* for *ncr*."""
    if not can_act(principal, ncr):
        return []
    stage_rules = rules_for(ncr.workflow_stage)
    if is_admin(principal):
        return list(stage_rules)
    permitted = allowed_actions(principal.role)
    return [rule for rule in stage_rules if rule.action in permitted]


# ── Non-workflow capabilities ───────────────────────────────────────────────

_CREATE_ROLES = frozenset({R.STATION_SUPERVISOR.value, R.ADMIN.value})
_VIEW_ALL_ROLES = frozenset({
    R.ADMIN.value, R.QA_MANAGER.value, R.OPERATIONS_MANAGER.value, R.PRODUCTION_CONTROL.value,
})


def can_create_ncr(role) -> bool:
    return role in _CREATE_ROLES


def can_delete_ncr(role) -> bool:
    return role == R.ADMIN.value


def can_view_all_ncrs(role) -> bool:
    return role in _VIEW_ALL_ROLES
