"""
NCR Tracker — Non-Conformance Report domain models.

Models:
    - Ncr: the case record under workflow control.
    - WorkflowTransition: immutable, append-only history of executed actions.
    - NcrComment: free-text notes, independent of the state machine.

Stage / role / action vocabularies are closed enumerations.  Columns store
the enum ``.value``; compare against enum members or their values.
"""

import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum

from ncr_tracker.models import db


# ── Helpers ──────────────────────────────────────────────────────────────────

def _uuid():
    return str(uuid.uuid4())


def _utcnow():
    return datetime.now(timezone.utc)


def _iso(value):
    return value.isoformat() if value else None


# ═════════════════════════════════════════════════════════════════════════════
# Enumerations
# ═════════════════════════════════════════════════════════════════════════════

class WorkflowStage(str, Enum):
    DRAFT = "draft"
    SUBMITTED = "submitted"
    PE_REVIEW = "pe_review"
    EM_REVIEW = "em_review"
    PM_REVIEW = "pm_review"
    OM_REVIEW = "om_review"
    QA_REVIEW = "qa_review"
    MARKETING_REVIEW = "marketing_review"
    REWORK = "rework"
    APPROVED = "approved"
    REJECTED = "rejected"


TERMINAL_STAGES = frozenset({WorkflowStage.APPROVED, WorkflowStage.REJECTED})


class WorkflowAction(str, Enum):
    SAVE_DRAFT = "save_draft"
    SUBMIT = "submit"
    ACCEPT_BATCH = "accept_batch"
    PARTIALLY_ACCEPT = "partially_accept"
    REJECT_BATCH = "reject_batch"
    REQUEST_REWORK = "request_rework"
    APPROVE = "approve"
    RETURN = "return"
    REQUEST_INFO = "request_info"
    MOVE_TO_PM = "move_to_pm"
    REQUEST_MARKETING = "request_marketing"
    SUBMIT_REWORK = "submit_rework"
    CHANGE_DECISION = "change_decision"


class BatchDecision(str, Enum):
    PENDING = "pending"
    ACCEPT = "accept"
    PARTIALLY_ACCEPT = "partially_accept"
    REJECT = "reject"
    REWORK = "rework"


class ReworkResult(str, Enum):
    CONFORMAL = "conformal"
    PARTIALLY_CONFORMAL = "partially_conformal"
    NON_CONFORMAL = "non_conformal"


class FinalStatus(str, Enum):
    IN_PROGRESS = "in_progress"
    APPROVED = "approved"
    REJECTED = "rejected"
    CLOSED = "closed"


class Priority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class CommentType(str, Enum):
    GENERAL = "general"
    ENGINEERING_FINDING = "engineering_finding"
    ROOT_CAUSE = "root_cause"
    APPROVAL_NOTE = "approval_note"
    REJECTION_REASON = "rejection_reason"
    INFO_REQUEST = "info_request"


APPROVAL_FLAGS = (
    "pe_approved",
    "em_approved",
    "pm_approved",
    "om_approved",
    "qa_approved",
    "marketing_approved",
)


# ═════════════════════════════════════════════════════════════════════════════
# Assignment value
# ═════════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class Assignment:
    """Who currently holds responsibility for an NCR.

    ``kind`` is one of:
      - "person":     pinned to ``person_id`` (``role`` is the pool it came from)
      - "role":       any member of ``role`` may pick it up
      - "unassigned": nobody (never produced by the transition table)
    """

    kind: str
    role: str | None = None
    person_id: int | None = None

    @classmethod
    def from_columns(cls, assigned_role, assigned_to):
        if assigned_to is not None:
            return cls("person", role=assigned_role, person_id=assigned_to)
        if assigned_role:
            return cls("role", role=assigned_role)
        return cls("unassigned")

    def to_dict(self):
        return {"kind": self.kind, "role": self.role, "person_id": self.person_id}


# ═════════════════════════════════════════════════════════════════════════════
# Ncr
# ═════════════════════════════════════════════════════════════════════════════

class Ncr(db.Model):
    """
    Non-Conformance Report.

    Stage changes are made exclusively by the workflow engine; ``version``
    is bumped on every engine write and guards against lost updates.
    """

    __tablename__ = "ncrs"
    __table_args__ = (
        db.Index("idx_ncr_stage", "workflow_stage"),
        db.Index("idx_ncr_assigned_role", "assigned_role"),
        db.Index("idx_ncr_assigned_to", "assigned_to"),
        db.Index("idx_ncr_created_by", "created_by"),
    )

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    ncr_number = db.Column(
        db.String(20), unique=True, nullable=True,
        comment="NCR-0001 style; assigned on first submit",
    )
    title = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text)

    # Workflow
    workflow_stage = db.Column(db.String(30), nullable=False, default=WorkflowStage.DRAFT.value)
    assigned_role = db.Column(db.String(30), nullable=True)
    assigned_to = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True,
    )
    batch_decision = db.Column(db.String(20), nullable=False, default=BatchDecision.PENDING.value)

    # Process engineer fields
    engineering_findings = db.Column(db.Text)
    root_cause_analysis = db.Column(db.Text)

    # Rework fields
    rework_result = db.Column(db.String(30))
    rework_notes = db.Column(db.Text)

    # Approvals
    pe_approved = db.Column(db.Boolean, nullable=False, default=False)
    em_approved = db.Column(db.Boolean, nullable=False, default=False)
    pm_approved = db.Column(db.Boolean, nullable=False, default=False)
    om_approved = db.Column(db.Boolean, nullable=False, default=False)
    qa_approved = db.Column(db.Boolean, nullable=False, default=False)
    marketing_approved = db.Column(db.Boolean, nullable=False, default=False)

    final_status = db.Column(db.String(20), nullable=False, default=FinalStatus.IN_PROGRESS.value)
    priority = db.Column(db.String(20), nullable=False, default=Priority.MEDIUM.value)

    created_by = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True,
    )
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)
    version = db.Column(db.Integer, nullable=False, default=1)

    assigned_user = db.relationship("User", foreign_keys=[assigned_to], lazy="joined")
    created_user = db.relationship("User", foreign_keys=[created_by], lazy="joined")
    transitions = db.relationship(
        "WorkflowTransition", back_populates="ncr", lazy="dynamic",
        cascade="all, delete-orphan", passive_deletes=True,
    )
    comments = db.relationship(
        "NcrComment", back_populates="ncr", lazy="dynamic",
        cascade="all, delete-orphan", passive_deletes=True,
    )

    @property
    def assignment(self) -> Assignment:
        return Assignment.from_columns(self.assigned_role, self.assigned_to)

    @property
    def is_terminal(self) -> bool:
        return self.workflow_stage in {s.value for s in TERMINAL_STAGES}

    def approvals(self) -> dict:
        return {flag: bool(getattr(self, flag)) for flag in APPROVAL_FLAGS}

    def to_dict(self) -> dict:
        d = {
            "id": self.id,
            "ncr_number": self.ncr_number,
            "title": self.title,
            "description": self.description,
            "workflow_stage": self.workflow_stage,
            "assigned_role": self.assigned_role,
            "assigned_to": self.assigned_to,
            "assignment": self.assignment.to_dict(),
            "batch_decision": self.batch_decision,
            "engineering_findings": self.engineering_findings,
            "root_cause_analysis": self.root_cause_analysis,
            "rework_result": self.rework_result,
            "rework_notes": self.rework_notes,
            "final_status": self.final_status,
            "is_terminal": self.is_terminal,
            "priority": self.priority,
            "created_by": self.created_by,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
            "version": self.version,
            "assigned_user": self.assigned_user.to_summary() if self.assigned_user else None,
            "created_user": self.created_user.to_summary() if self.created_user else None,
        }
        d.update(self.approvals())
        return d

    def __repr__(self):
        return f"<Ncr {self.ncr_number or self.id}: {self.workflow_stage}>"


# ═════════════════════════════════════════════════════════════════════════════
# WorkflowTransition: append-only history
# ═════════════════════════════════════════════════════════════════════════════

class WorkflowTransition(db.Model):
    """
    One row per executed workflow action.  Never updated or deleted by the
    application; removed only when its NCR is hard-deleted by an admin.
    """

    __tablename__ = "workflow_transitions"
    __table_args__ = (
        db.Index("idx_wt_ncr_created", "ncr_id", "created_at"),
    )

    id = db.Column(db.Integer, primary_key=True)
    ncr_id = db.Column(
        db.String(36), db.ForeignKey("ncrs.id", ondelete="CASCADE"), nullable=False,
    )
    from_stage = db.Column(db.String(30), nullable=True, comment="NULL only for the creation event")
    to_stage = db.Column(db.String(30), nullable=False)
    from_user_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True,
        comment="Acting principal; NULL for system-generated transitions",
    )
    to_user_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    to_role = db.Column(db.String(30), nullable=True)
    action = db.Column(db.String(30), nullable=False)
    decision = db.Column(db.String(30), nullable=True)
    comments = db.Column(db.Text, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)

    ncr = db.relationship("Ncr", back_populates="transitions")
    from_user = db.relationship("User", foreign_keys=[from_user_id], lazy="joined")
    to_user = db.relationship("User", foreign_keys=[to_user_id], lazy="joined")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "ncr_id": self.ncr_id,
            "from_stage": self.from_stage,
            "to_stage": self.to_stage,
            "from_user_id": self.from_user_id,
            "from_user": self.from_user.to_summary() if self.from_user else None,
            "to_user_id": self.to_user_id,
            "to_user": self.to_user.to_summary() if self.to_user else None,
            "to_role": self.to_role,
            "action": self.action,
            "decision": self.decision,
            "comments": self.comments,
            "created_at": _iso(self.created_at),
        }

    def __repr__(self):
        return f"<WorkflowTransition {self.id}: {self.from_stage} -{self.action}-> {self.to_stage}>"


# ═════════════════════════════════════════════════════════════════════════════
# NcrComment
# ═════════════════════════════════════════════════════════════════════════════

class NcrComment(db.Model):
    __tablename__ = "ncr_comments"
    __table_args__ = (
        db.Index("idx_ncr_comment_ncr", "ncr_id"),
    )

    id = db.Column(db.Integer, primary_key=True)
    ncr_id = db.Column(
        db.String(36), db.ForeignKey("ncrs.id", ondelete="CASCADE"), nullable=False,
    )
    user_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    content = db.Column(db.Text, nullable=False)
    comment_type = db.Column(db.String(30), nullable=False, default=CommentType.GENERAL.value)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)

    ncr = db.relationship("Ncr", back_populates="comments")
    user = db.relationship("User", lazy="joined")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "ncr_id": self.ncr_id,
            "user_id": self.user_id,
            "user": self.user.to_summary() if self.user else None,
            "content": self.content,
            "comment_type": self.comment_type,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }
