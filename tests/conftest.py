"""
Shared pytest fixtures for the NCR Tracker test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - client: Flask test client (function-scoped)
    - make_user: factory creating a User with a given role
    - users: one committed User per workflow role
    - auth_headers: builds a Bearer header carrying a real JWT for a user
    - make_ncr: factory placing an NCR at an arbitrary stage (bypasses the engine)
"""

import pytest

from ncr_tracker import create_app
from ncr_tracker.models import db as _db
from ncr_tracker.models.auth import User, UserRole
from ncr_tracker.models.ncr import Ncr, WorkflowStage
from ncr_tracker.services.identity import Principal
from ncr_tracker.services.jwt_service import generate_access_token


# ── App & DB fixtures ────────────────────────────────────────────────────


@pytest.fixture(scope="session")
def app():
    """Create the Flask application once per test session."""
    application = create_app("testing")
    return application


@pytest.fixture(scope="session")
def _setup_db(app):
    """Create all tables at session start, drop at end."""
    with app.app_context():
        _db.create_all()
    yield
    with app.app_context():
        _db.drop_all()


@pytest.fixture(autouse=True)
def session(app, _setup_db):
    """Per-test: open app context, rollback after test, recreate tables."""
    with app.app_context():
        yield
        _db.session.rollback()
        _db.drop_all()
        _db.create_all()


@pytest.fixture()
def client(app):
    """Flask test client."""
    return app.test_client()


# ── Identity fixtures ────────────────────────────────────────────────────


@pytest.fixture()
def make_user():
    """Factory: ``make_user("qa_manager")`` → committed User."""
    counter = {"n": 0}

    def _make(role, email=None, display_name=None, is_active=True):
        counter["n"] += 1
        role_value = getattr(role, "value", role)
        user = User(
            email=email or f"{role_value}.{counter['n']}@acme-plant.com",
            display_name=display_name or role_value.replace("_", " ").title(),
            role=role_value,
            is_active=is_active,
        )
        _db.session.add(user)
        _db.session.commit()
        return user

    return _make


@pytest.fixture()
def users(make_user):
    """One user per role, keyed by role value."""
    return {role.value: make_user(role) for role in UserRole}


@pytest.fixture()
def principal_of():
    """Freeze a User into the Principal the engine consumes."""
    return Principal.from_user


@pytest.fixture()
def auth_headers():
    """``auth_headers(user)`` → {"Authorization": "Bearer <jwt>"}."""

    def _headers(user):
        token = generate_access_token(user.id, user.role)
        return {"Authorization": f"Bearer {token}"}

    return _headers


# ── NCR fixtures ─────────────────────────────────────────────────────────


@pytest.fixture()
def make_ncr():
    """Factory placing an NCR directly at *stage* (no history row).

    ``assigned_role`` defaults to the role that owns the stage.
    """
    owners = {
        WorkflowStage.DRAFT.value: UserRole.STATION_SUPERVISOR.value,
        WorkflowStage.SUBMITTED.value: UserRole.PRODUCTION_CONTROL.value,
        WorkflowStage.PE_REVIEW.value: UserRole.PROCESS_ENGINEER.value,
        WorkflowStage.EM_REVIEW.value: UserRole.ENGINEERING_MANAGER.value,
        WorkflowStage.PM_REVIEW.value: UserRole.PRODUCT_MANAGER.value,
        WorkflowStage.OM_REVIEW.value: UserRole.OPERATIONS_MANAGER.value,
        WorkflowStage.QA_REVIEW.value: UserRole.QA_MANAGER.value,
        WorkflowStage.MARKETING_REVIEW.value: UserRole.MARKETING_MANAGER.value,
        WorkflowStage.REWORK.value: UserRole.STATION_SUPERVISOR.value,
        WorkflowStage.APPROVED.value: UserRole.PRODUCTION_CONTROL.value,
        WorkflowStage.REJECTED.value: None,
    }
    _missing = object()

    def _make(creator, stage=WorkflowStage.DRAFT.value, assigned_role=_missing,
              assigned_to=None, **fields):
        stage = getattr(stage, "value", stage)
        ncr = Ncr(
            title=fields.pop("title", "Porosity in weld seam"),
            workflow_stage=stage,
            assigned_role=owners[stage] if assigned_role is _missing else assigned_role,
            assigned_to=assigned_to,
            created_by=creator.id,
            **fields,
        )
        _db.session.add(ncr)
        _db.session.commit()
        return ncr

    return _make
