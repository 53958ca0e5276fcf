"""
Principal — the resolved identity the workflow layer consumes.

The engine never authenticates.  The JWT middleware resolves a bearer
token to a ``User`` row and freezes it into a Principal for the duration
of the request, so a concurrent role change cannot alter an action mid-way.
"""

from __future__ import annotations

from dataclasses import dataclass

from ncr_tracker.models.auth import User, UserRole


@dataclass(frozen=True)
class Principal:
    id: int
    role: str
    display_name: str | None = None

    @classmethod
    def from_user(cls, user: User) -> Principal:
        return cls(id=user.id, role=user.role, display_name=user.display_name or user.email)

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN.value

    def to_dict(self) -> dict:
        return {"id": self.id, "role": self.role, "display_name": self.display_name}
