"""
User Service — directory lookups, user creation and role management.

Roles are administrative data: changing one never touches NCRs already
assigned to the user.  A principal resolved earlier in the same request
keeps the role it was resolved with.
"""

import logging

from email_validator import EmailNotValidError, validate_email

from ncr_tracker.core.exceptions import ConflictError, NotFoundError, PermissionDenied, ValidationError
from ncr_tracker.models import db
from ncr_tracker.models.auth import VALID_ROLES, User, UserRole
from ncr_tracker.services.identity import Principal

logger = logging.getLogger(__name__)

# One demo account per role, used by ``flask seed-users``
SEED_USERS = (
    ("supervisor@acme-plant.com", "Station Supervisor", UserRole.STATION_SUPERVISOR),
    ("engineer@acme-plant.com", "Process Engineer", UserRole.PROCESS_ENGINEER),
    ("eng.manager@acme-plant.com", "Engineering Manager", UserRole.ENGINEERING_MANAGER),
    ("prod.manager@acme-plant.com", "Product Manager", UserRole.PRODUCT_MANAGER),
    ("ops.manager@acme-plant.com", "Operations Manager", UserRole.OPERATIONS_MANAGER),
    ("qa.manager@acme-plant.com", "QA Manager", UserRole.QA_MANAGER),
    ("marketing@acme-plant.com", "Marketing Manager", UserRole.MARKETING_MANAGER),
    ("production.control@acme-plant.com", "Production Control", UserRole.PRODUCTION_CONTROL),
    ("admin@acme-plant.com", "Admin", UserRole.ADMIN),
)


def _check_role(role: str) -> str:
    if not isinstance(role, str) or role not in VALID_ROLES:
        raise ValidationError(
            f"role must be one of: {', '.join(sorted(VALID_ROLES))}",
            details={"role": role},
        )
    return role


# ═══════════════════════════════════════════════════════════════
# Lookups
# ═══════════════════════════════════════════════════════════════
def get_user(user_id: int) -> User:
    user = db.session.get(User, user_id)
    if user is None:
        raise NotFoundError(resource="User", resource_id=user_id)
    return user


def get_user_by_email(email: str) -> User | None:
    return User.query.filter_by(email=email.strip().lower()).first()


def list_users(role: str | None = None, include_inactive: bool = False) -> list[User]:
    """Users ordered by display name, optionally restricted to one role."""
    q = User.query
    if role:
        q = q.filter_by(role=_check_role(role))
    if not include_inactive:
        q = q.filter_by(is_active=True)
    return q.order_by(User.display_name, User.email).all()


# ═══════════════════════════════════════════════════════════════
# Mutations
# ═══════════════════════════════════════════════════════════════
def create_user(email: str, display_name: str | None = None, role: str = UserRole.STATION_SUPERVISOR.value) -> User:
    """Create a user.  Emails are normalised and must be unique."""
    email = (email or "").strip()
    try:
        valid = validate_email(email, check_deliverability=False)
    except EmailNotValidError as e:
        raise ValidationError(f"Invalid email: {e}", details={"email": email})
    email = valid.normalized.lower()

    if get_user_by_email(email):
        raise ConflictError("User", "email", email)

    user = User(email=email, display_name=display_name, role=_check_role(role))
    db.session.add(user)
    db.session.commit()
    logger.info("User created: %s (%s)", email, role)
    return user


def update_user_role(user_id: int, role: str, actor: Principal) -> User:
    """Change a user's role.  Admin only; NCR assignments are left untouched."""
    if not actor.is_admin:
        raise PermissionDenied(actor.id, "change user roles")
    user = get_user(user_id)
    old_role = user.role
    user.role = _check_role(role)
    db.session.commit()
    logger.info(
        "User %s role changed %s → %s", user_id, old_role, role,
        extra={"principal_id": actor.id},
    )
    return user


def seed_users() -> list[User]:
    """Create the per-role demo users that do not exist yet."""
    created = []
    for email, name, role in SEED_USERS:
        if get_user_by_email(email):
            continue
        created.append(create_user(email, display_name=name, role=role.value))
    return created
