"""
NCR Tracker — identity domain model.

Models:
    - User: a person who can act on NCRs.  Carries exactly one workflow role.

Role changes are an administrative operation (see user_service); the
workflow engine only ever reads ``User.role`` through a Principal snapshot.
"""

from datetime import datetime, timezone
from enum import Enum

from ncr_tracker.models import db


class UserRole(str, Enum):
    STATION_SUPERVISOR = "station_supervisor"
    PROCESS_ENGINEER = "process_engineer"
    ENGINEERING_MANAGER = "engineering_manager"
    PRODUCT_MANAGER = "product_manager"
    OPERATIONS_MANAGER = "operations_manager"
    QA_MANAGER = "qa_manager"
    MARKETING_MANAGER = "marketing_manager"
    PRODUCTION_CONTROL = "production_control"
    ADMIN = "admin"


VALID_ROLES = frozenset(r.value for r in UserRole)


class User(db.Model):
    __tablename__ = "users"

    id = db.Column(db.Integer, primary_key=True)
    email = db.Column(db.String(200), nullable=False, unique=True)
    display_name = db.Column(db.String(200))
    role = db.Column(
        db.String(30),
        nullable=False,
        default=UserRole.STATION_SUPERVISOR.value,
        comment="station_supervisor | process_engineer | ... | admin",
    )
    avatar_url = db.Column(db.String(500))
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    __table_args__ = (
        db.Index("ix_users_role", "role"),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "email": self.email,
            "display_name": self.display_name,
            "role": self.role,
            "avatar_url": self.avatar_url,
            "is_active": self.is_active,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    def to_summary(self):
        """Compact form embedded in NCR / transition / comment payloads."""
        return {
            "id": self.id,
            "email": self.email,
            "display_name": self.display_name,
            "role": self.role,
        }

    def __repr__(self):
        return f"<User {self.id}: {self.email} ({self.role})>"
