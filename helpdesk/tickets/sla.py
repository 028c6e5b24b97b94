"""Read-time SLA projection for tickets.

Nothing here is stored: the deadline is fixed when a ticket is created and every
other value is derived by comparing it with the current time.

Two breach definitions are in use:

* :func:`sla_status` is the raw deadline comparison. It is what a ticket read
  reports, so a ticket that was closed after its deadline still reads ``breached``.
* :func:`is_overdue` additionally ignores closed tickets. It backs the
  ``overdue`` list filter, where only work that can still be acted upon matters.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Protocol

from .state import TicketStatus

DEFAULT_SLA_WINDOW = timedelta(hours=24)


class SlaStatus(str, Enum):
    ACTIVE = "active"
    BREACHED = "breached"


class _HasDeadline(Protocol):
    sla_deadline: datetime
    status: TicketStatus


def compute_deadline(created_at: datetime, window: timedelta = DEFAULT_SLA_WINDOW) -> datetime:
    """Return the SLA deadline for a ticket created at ``created_at``."""

    return created_at + window


def sla_status(ticket: _HasDeadline, now: datetime | None = None) -> SlaStatus:
    now = now or datetime.now(timezone.utc)
    return SlaStatus.BREACHED if now > ticket.sla_deadline else SlaStatus.ACTIVE


def sla_time_remaining(ticket: _HasDeadline, now: datetime | None = None) -> timedelta:
    now = now or datetime.now(timezone.utc)
    remaining = ticket.sla_deadline - now
    return remaining if remaining > timedelta(0) else timedelta(0)


def is_overdue(ticket: _HasDeadline, now: datetime | None = None) -> bool:
    """Breached and not yet closed."""

    return ticket.status is not TicketStatus.CLOSED and sla_status(ticket, now) is SlaStatus.BREACHED


def is_auto_close_candidate(ticket: _HasDeadline, now: datetime) -> bool:
    """Selection predicate of the auto-close sweep."""

    return ticket.status is TicketStatus.RESOLVED and ticket.sla_deadline < now
