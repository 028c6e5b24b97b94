from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from helpdesk.tickets.sla import (
    SlaStatus,
    compute_deadline,
    is_auto_close_candidate,
    is_overdue,
    sla_status,
    sla_time_remaining,
)
from helpdesk.tickets.state import TicketStatus

CREATED = datetime(2024, 3, 1, 9, 0, tzinfo=timezone.utc)


@dataclass
class _Ticket:
    sla_deadline: datetime
    status: TicketStatus = TicketStatus.OPEN


def test_deadline_is_creation_plus_window():
    assert compute_deadline(CREATED) == CREATED + timedelta(hours=24)
    assert compute_deadline(CREATED, timedelta(hours=4)) == CREATED + timedelta(hours=4)


def test_status_and_remaining_before_deadline():
    ticket = _Ticket(compute_deadline(CREATED))
    now = CREATED + timedelta(hours=20)

    assert sla_status(ticket, now) is SlaStatus.ACTIVE
    assert sla_time_remaining(ticket, now) == timedelta(hours=4)


def test_exact_deadline_is_not_breached():
    ticket = _Ticket(compute_deadline(CREATED))
    assert sla_status(ticket, ticket.sla_deadline) is SlaStatus.ACTIVE


def test_breached_after_deadline_with_remaining_floored_at_zero():
    ticket = _Ticket(compute_deadline(CREATED))
    now = ticket.sla_deadline + timedelta(seconds=1)

    assert sla_status(ticket, now) is SlaStatus.BREACHED
    assert sla_time_remaining(ticket, now) == timedelta(0)


def test_closed_ticket_reads_breached_but_is_not_overdue():
    ticket = _Ticket(compute_deadline(CREATED), status=TicketStatus.CLOSED)
    now = ticket.sla_deadline + timedelta(hours=1)

    assert sla_status(ticket, now) is SlaStatus.BREACHED
    assert not is_overdue(ticket, now)
    assert is_overdue(_Ticket(ticket.sla_deadline, TicketStatus.IN_PROGRESS), now)


def test_auto_close_candidate_requires_resolved_and_expired():
    deadline = compute_deadline(CREATED)
    later = deadline + timedelta(minutes=1)

    assert is_auto_close_candidate(_Ticket(deadline, TicketStatus.RESOLVED), later)
    assert not is_auto_close_candidate(_Ticket(deadline, TicketStatus.RESOLVED), deadline)
    assert not is_auto_close_candidate(_Ticket(deadline, TicketStatus.IN_PROGRESS), later)
