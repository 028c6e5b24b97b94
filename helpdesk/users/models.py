from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class UserRole(str, Enum):
    """Roles recognised by the help desk."""

    USER = "user"
    AGENT = "agent"
    ADMIN = "admin"


@dataclass(slots=True, frozen=True)
class UserAccount:
    """Directory entry for a person who files or works tickets."""

    id: str
    name: str
    email: str
    role: UserRole


@dataclass(slots=True, frozen=True)
class Actor:
    """Authenticated caller as handed to the ticket service: identity plus role claim."""

    id: str
    role: UserRole

    def has_role(self, *roles: UserRole) -> bool:
        return self.role in roles
