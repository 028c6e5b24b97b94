"""In-process ticket store used by the ``memory`` storage backend and tests."""

from __future__ import annotations

import asyncio
from dataclasses import replace
from datetime import datetime

from .models import Comment, Ticket, TicketPatch, TimelineEntry
from .repository import TicketQuery
from .sla import is_auto_close_candidate
from .state import TicketStatus


class InMemoryTicketRepository:
    """Dictionary-backed :class:`~helpdesk.tickets.repository.TicketStore`.

    A single ``asyncio.Lock`` serialises writers, which gives the same
    match-and-update atomicity a single Postgres statement provides.
    """

    def __init__(self) -> None:
        self._tickets: dict[str, Ticket] = {}
        self._comments: dict[str, Comment] = {}
        self._lock = asyncio.Lock()

    async def ensure_schema(self) -> None:
        return None

    async def insert_ticket(self, ticket: Ticket) -> Ticket:
        async with self._lock:
            if ticket.id in self._tickets:
                raise RuntimeError(f"Ticket {ticket.id} already exists")
            stored = replace(ticket, timeline=list(ticket.timeline))
            self._tickets[ticket.id] = stored
            return _copy(stored)

    async def get_ticket(self, ticket_id: str) -> Ticket | None:
        ticket = self._tickets.get(ticket_id)
        return None if ticket is None else _copy(ticket)

    async def get_version(self, ticket_id: str) -> int | None:
        ticket = self._tickets.get(ticket_id)
        return None if ticket is None else ticket.version

    async def list_tickets(self, query: TicketQuery) -> tuple[list[Ticket], int]:
        matches = [ticket for ticket in self._tickets.values() if self._matches(ticket, query)]
        matches.sort(key=lambda ticket: ticket.created_at, reverse=True)
        page = matches[query.offset : query.offset + query.limit]
        return [_copy(ticket) for ticket in page], len(matches)

    async def conditional_update(
        self,
        ticket_id: str,
        expected_version: int,
        patch: TicketPatch,
        entry: TimelineEntry,
        *,
        updated_at: datetime,
    ) -> Ticket | None:
        async with self._lock:
            current = self._tickets.get(ticket_id)
            if current is None or current.version != expected_version:
                return None
            updated = patch.apply(current, entry=entry, updated_at=updated_at)
            self._tickets[ticket_id] = updated
            return _copy(updated)

    async def close_expired(self, now: datetime, entry: TimelineEntry) -> int:
        closed = TicketPatch(status=TicketStatus.CLOSED)
        async with self._lock:
            expired = [ticket for ticket in self._tickets.values() if is_auto_close_candidate(ticket, now)]
            for ticket in expired:
                self._tickets[ticket.id] = closed.apply(ticket, entry=entry, updated_at=now)
            return len(expired)

    async def delete_open_ticket(self, ticket_id: str, created_by: str) -> bool:
        async with self._lock:
            ticket = self._tickets.get(ticket_id)
            if ticket is None or ticket.created_by != created_by or ticket.status is not TicketStatus.OPEN:
                return False
            del self._tickets[ticket_id]
            self._comments = {
                key: comment for key, comment in self._comments.items() if comment.ticket_id != ticket_id
            }
            return True

    async def add_comment(self, comment: Comment, entry: TimelineEntry) -> bool:
        async with self._lock:
            ticket = self._tickets.get(comment.ticket_id)
            if ticket is None:
                return False
            self._tickets[ticket.id] = replace(
                ticket, timeline=[*ticket.timeline, entry], updated_at=comment.created_at
            )
            self._comments[comment.id] = comment
            return True

    async def get_comment(self, comment_id: str) -> Comment | None:
        return self._comments.get(comment_id)

    async def list_comments(self, ticket_id: str) -> list[Comment]:
        comments = [comment for comment in self._comments.values() if comment.ticket_id == ticket_id]
        return sorted(comments, key=lambda comment: comment.created_at)

    def _matches(self, ticket: Ticket, query: TicketQuery) -> bool:
        if query.created_by is not None and ticket.created_by != query.created_by:
            return False
        if query.assigned_to is not None and ticket.assigned_to != query.assigned_to:
            return False
        if query.status is not None and ticket.status is not query.status:
            return False
        if query.overdue_at is not None and (
            ticket.status is TicketStatus.CLOSED or not ticket.sla_deadline < query.overdue_at
        ):
            return False
        if query.search:
            needle = query.search.casefold()
            haystack = [ticket.title, ticket.description, *(entry.details for entry in ticket.timeline)]
            haystack.extend(
                comment.text for comment in self._comments.values() if comment.ticket_id == ticket.id
            )
            if not any(needle in text.casefold() for text in haystack):
                return False
        return True


def _copy(ticket: Ticket) -> Ticket:
    return replace(ticket, timeline=list(ticket.timeline))
