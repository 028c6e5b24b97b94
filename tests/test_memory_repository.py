from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from helpdesk.tickets import InMemoryTicketRepository, Ticket, TicketPatch, TicketStatus, TimelineEntry

NOW = datetime(2024, 3, 1, 9, 0, tzinfo=timezone.utc)


def _ticket(ticket_id: str = "t-1", *, status: TicketStatus = TicketStatus.OPEN, deadline: datetime | None = None):
    return Ticket(
        id=ticket_id,
        title="Printer jam",
        description="Tray 2",
        status=status,
        created_by="user-1",
        assigned_to=None,
        sla_deadline=deadline or NOW + timedelta(hours=24),
        version=1,
        timeline=[TimelineEntry("created", "user-1", NOW, "Ticket created")],
        created_at=NOW,
        updated_at=NOW,
    )


@pytest.mark.asyncio
async def test_conditional_update_applies_patch_once():
    store = InMemoryTicketRepository()
    await store.insert_ticket(_ticket())
    entry = TimelineEntry("updated", "admin-1", NOW, "Updated fields: title")

    updated = await store.conditional_update("t-1", 1, TicketPatch(title="New"), entry, updated_at=NOW)
    stale = await store.conditional_update("t-1", 1, TicketPatch(title="Newer"), entry, updated_at=NOW)

    assert updated.title == "New"
    assert updated.version == 2
    assert stale is None
    assert await store.get_version("t-1") == 2


@pytest.mark.asyncio
async def test_returned_tickets_are_copies():
    store = InMemoryTicketRepository()
    await store.insert_ticket(_ticket())

    fetched = await store.get_ticket("t-1")
    fetched.timeline.append(TimelineEntry("updated", "x", NOW))

    assert len((await store.get_ticket("t-1")).timeline) == 1


@pytest.mark.asyncio
async def test_insert_rejects_duplicate_id():
    store = InMemoryTicketRepository()
    await store.insert_ticket(_ticket())

    with pytest.raises(RuntimeError):
        await store.insert_ticket(_ticket())


@pytest.mark.asyncio
async def test_close_expired_only_touches_resolved_past_deadline():
    store = InMemoryTicketRepository()
    past = NOW - timedelta(minutes=1)
    await store.insert_ticket(_ticket("expired", status=TicketStatus.RESOLVED, deadline=past))
    await store.insert_ticket(_ticket("working", status=TicketStatus.IN_PROGRESS, deadline=past))
    await store.insert_ticket(_ticket("fresh", status=TicketStatus.RESOLVED))
    entry = TimelineEntry("status_change", None, NOW, "Auto-closed after SLA expiry")

    assert await store.close_expired(NOW, entry) == 1

    closed = await store.get_ticket("expired")
    assert closed.status is TicketStatus.CLOSED
    assert closed.version == 2
    assert closed.timeline[-1].user is None
    assert (await store.get_ticket("working")).version == 1
    assert (await store.get_ticket("fresh")).status is TicketStatus.RESOLVED
