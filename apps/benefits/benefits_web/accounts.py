"""Requester and manager accounts."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from flask_login import UserMixin

ROLE_EMPLOYEE = "employee"
ROLE_MANAGER = "manager"
ROLES = (ROLE_EMPLOYEE, ROLE_MANAGER)


@dataclass
class UserAccount(UserMixin):
    """Authenticated user as seen by Flask-Login and the workflow."""

    id: int
    email: str
    name: str
    role: str = ROLE_EMPLOYEE
    password_hash: Optional[str] = None

    @property
    def is_manager(self) -> bool:
        return self.role == ROLE_MANAGER
