from __future__ import annotations

from dataclasses import dataclass, fields, replace
from datetime import datetime, timedelta
from enum import Enum
from typing import Mapping, Sequence

from helpdesk.users.models import UserRole

from .sla import SlaStatus
from .state import TicketStatus


class TimelineAction(str, Enum):
    """Well-known timeline actions. The entry's ``action`` stays a plain string."""

    CREATED = "created"
    ASSIGNED = "assigned"
    STATUS_CHANGE = "status_change"
    UPDATED = "updated"
    COMMENTED = "commented"


@dataclass(slots=True, frozen=True)
class TimelineEntry:
    """Immutable audit record embedded in a ticket."""

    action: str
    user: str | None
    timestamp: datetime
    details: str = ""

    def to_document(self) -> dict[str, str | None]:
        return {
            "action": self.action,
            "user": self.user,
            "timestamp": self.timestamp.isoformat(),
            "details": self.details,
        }

    @classmethod
    def from_document(cls, document: Mapping[str, object]) -> "TimelineEntry":
        user = document.get("user")
        return cls(
            action=str(document["action"]),
            user=None if user is None else str(user),
            timestamp=datetime.fromisoformat(str(document["timestamp"])),
            details=str(document.get("details") or ""),
        )


@dataclass(slots=True)
class Ticket:
    """Aggregate representing a support ticket and its embedded timeline."""

    id: str
    title: str
    description: str
    status: TicketStatus
    created_by: str
    assigned_to: str | None
    sla_deadline: datetime
    version: int
    timeline: Sequence[TimelineEntry]
    created_at: datetime
    updated_at: datetime


@dataclass(slots=True)
class Comment:
    """Comment on a ticket, optionally replying to a top-level comment."""

    id: str
    ticket_id: str
    user: str
    text: str
    parent_comment: str | None
    created_at: datetime


PATCHABLE_FIELDS: Mapping[UserRole, frozenset[str]] = {
    UserRole.USER: frozenset({"title", "description"}),
    UserRole.AGENT: frozenset({"title", "description", "status"}),
    UserRole.ADMIN: frozenset({"title", "description", "status", "assigned_to"}),
}


@dataclass(slots=True, frozen=True)
class TicketPatch:
    """Closed set of ticket fields a mutation may change. ``None`` means untouched."""

    title: str | None = None
    description: str | None = None
    status: TicketStatus | None = None
    assigned_to: str | None = None

    def changed_fields(self) -> tuple[str, ...]:
        return tuple(item.name for item in fields(self) if getattr(self, item.name) is not None)

    def is_empty(self) -> bool:
        return not self.changed_fields()

    def disallowed_fields(self, role: UserRole) -> tuple[str, ...]:
        allowed = PATCHABLE_FIELDS.get(role, frozenset())
        return tuple(name for name in self.changed_fields() if name not in allowed)

    def apply(self, ticket: Ticket, *, entry: TimelineEntry, updated_at: datetime) -> Ticket:
        """Return the ticket as it looks after this patch has been accepted."""

        return replace(
            ticket,
            title=self.title if self.title is not None else ticket.title,
            description=self.description if self.description is not None else ticket.description,
            status=self.status if self.status is not None else ticket.status,
            assigned_to=self.assigned_to if self.assigned_to is not None else ticket.assigned_to,
            version=ticket.version + 1,
            timeline=[*ticket.timeline, entry],
            updated_at=updated_at,
        )


@dataclass(slots=True)
class TicketDetail:
    """Ticket read model with its comments and the derived SLA projection."""

    ticket: Ticket
    comments: Sequence[Comment]
    sla_status: SlaStatus
    sla_time_remaining: timedelta


@dataclass(slots=True)
class TicketPage:
    items: Sequence[Ticket]
    total: int
    offset: int = 0

    @property
    def next_offset(self) -> int:
        return self.offset + len(self.items)
