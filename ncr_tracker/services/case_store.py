"""
NCR persistence port.

The workflow engine only talks to a ``CaseStore``; ``SqlCaseStore`` is the
SQLAlchemy implementation used by the app.  A case update and the
transition row that records it share one session transaction: the store
flushes both and the engine commits or rolls back as a unit.

Optimistic concurrency:
    ``save_case`` issues ``UPDATE ncrs ... WHERE id = :id AND version = :v``.
    Zero matched rows means another writer got there first and raises
    ConcurrentModification instead of silently overwriting its stage.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod

from sqlalchemy import or_, select, update
from sqlalchemy.exc import SQLAlchemyError

from ncr_tracker.core.exceptions import ConcurrentModification, PersistenceError
from ncr_tracker.models import db
from ncr_tracker.models.ncr import Ncr, WorkflowTransition
from ncr_tracker.services.code_generator import generate_ncr_number

logger = logging.getLogger(__name__)

# Equality filters accepted by list_cases; no joins or aggregation.
CASE_FILTERS = (
    "workflow_stage",
    "assigned_role",
    "assigned_to",
    "created_by",
    "priority",
    "final_status",
    "batch_decision",
)


class CaseStore(ABC):
    """Persistence collaborator consumed by the workflow engine."""

    @abstractmethod
    def load_case(self, ncr_id: str) -> Ncr | None: ...

    @abstractmethod
    def add_case(self, ncr: Ncr) -> Ncr: ...

    @abstractmethod
    def save_case(self, ncr: Ncr, changes: dict, expected_version: int) -> None: ...

    @abstractmethod
    def delete_case(self, ncr: Ncr) -> None: ...

    @abstractmethod
    def append_transition(self, record: WorkflowTransition) -> WorkflowTransition: ...

    @abstractmethod
    def list_transitions(self, ncr_id: str) -> list[WorkflowTransition]: ...

    @abstractmethod
    def list_cases(self, **filters) -> list[Ncr]: ...

    @abstractmethod
    def list_cases_for(self, principal_id: int, role: str) -> list[Ncr]: ...

    @abstractmethod
    def next_ncr_number(self) -> str: ...

    @abstractmethod
    def commit(self) -> None: ...

    @abstractmethod
    def rollback(self) -> None: ...


class SqlCaseStore(CaseStore):
    """CaseStore backed by the Flask-SQLAlchemy session."""

    def __init__(self, session=None):
        self.session = session or db.session

    def load_case(self, ncr_id: str) -> Ncr | None:
        return self.session.get(Ncr, ncr_id)

    def add_case(self, ncr: Ncr) -> Ncr:
        try:
            self.session.add(ncr)
            self.session.flush()
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Failed to insert NCR: {exc.__class__.__name__}") from exc
        return ncr

    def delete_case(self, ncr: Ncr) -> None:
        self.session.delete(ncr)

    def save_case(self, ncr: Ncr, changes: dict, expected_version: int) -> None:
        """Conditionally apply *changes* to the row at *expected_version*."""
        try:
            result = self.session.execute(
                update(Ncr)
                .where(Ncr.id == ncr.id, Ncr.version == expected_version)
                .values(**changes)
                .execution_options(synchronize_session=False)
            )
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Failed to save NCR {ncr.id}: {exc.__class__.__name__}") from exc
        if result.rowcount != 1:
            raise ConcurrentModification(ncr.id, expected_version)
        self.session.expire(ncr)

    def append_transition(self, record: WorkflowTransition) -> WorkflowTransition:
        try:
            self.session.add(record)
            self.session.flush()
        except SQLAlchemyError as exc:
            raise PersistenceError(
                f"Failed to record transition for NCR {record.ncr_id}: {exc.__class__.__name__}"
            ) from exc
        return record

    def list_transitions(self, ncr_id: str) -> list[WorkflowTransition]:
        """History for one NCR, oldest first."""
        return self.session.execute(
            select(WorkflowTransition)
            .where(WorkflowTransition.ncr_id == ncr_id)
            .order_by(WorkflowTransition.created_at.asc(), WorkflowTransition.id.asc())
        ).scalars().all()

    def list_cases(self, **filters) -> list[Ncr]:
        """NCRs matching every given equality filter, newest first.

        Unknown filter names raise ValueError; None values are ignored.
        """
        unknown = set(filters) - set(CASE_FILTERS)
        if unknown:
            raise ValueError(f"Unsupported NCR filter(s): {', '.join(sorted(unknown))}")
        stmt = select(Ncr)
        for name, value in filters.items():
            if value is None or value == "":
                continue
            stmt = stmt.where(getattr(Ncr, name) == value)
        stmt = stmt.order_by(Ncr.created_at.desc())
        return self.session.execute(stmt).unique().scalars().all()

    def list_cases_for(self, principal_id: int, role: str) -> list[Ncr]:
        """NCRs assigned to the principal, to its role, or created by it."""
        stmt = (
            select(Ncr)
            .where(or_(
                Ncr.assigned_to == principal_id,
                Ncr.assigned_role == role,
                Ncr.created_by == principal_id,
            ))
            .order_by(Ncr.created_at.desc())
        )
        return self.session.execute(stmt).unique().scalars().all()

    def next_ncr_number(self) -> str:
        try:
            return generate_ncr_number(self.session)
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Failed to allocate NCR number: {exc.__class__.__name__}") from exc

    def commit(self) -> None:
        try:
            self.session.commit()
        except SQLAlchemyError as exc:
            self.session.rollback()
            logger.exception("NCR store commit failed")
            raise PersistenceError(f"Commit failed: {exc.__class__.__name__}") from exc

    def rollback(self) -> None:
        self.session.rollback()
