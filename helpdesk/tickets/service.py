from __future__ import annotations

import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import Callable

from helpdesk.metrics import MetricsRegistry, metrics_registry
from helpdesk.metrics.definitions import TICKETS_CREATED
from helpdesk.users.models import Actor, UserAccount, UserRole
from helpdesk.users.repository import UserDirectory

from .concurrency import OptimisticTicketWriter
from .errors import (
    InvalidTicketOperationError,
    TicketForbiddenError,
    TicketNotFoundError,
    TicketValidationError,
)
from .models import Comment, Ticket, TicketDetail, TicketPage, TicketPatch, TimelineAction, TimelineEntry
from .repository import TicketQuery, TicketStore
from .sla import DEFAULT_SLA_WINDOW, compute_deadline, sla_status, sla_time_remaining
from .state import TicketStateMachine, TicketStatus

logger = logging.getLogger(__name__)

MAX_PAGE_SIZE = 100
COMMENT_DETAIL_LENGTH = 50


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _require_text(value: str | None, field: str, message: str) -> str:
    cleaned = value.strip() if isinstance(value, str) else ""
    if not cleaned:
        raise TicketValidationError(message, field=field)
    return cleaned


def _optional_text(value: str | None, field: str) -> str | None:
    if value is None:
        return None
    return _require_text(value, field, f"{field.capitalize()} cannot be empty")


class TicketService:
    """High level orchestration for ticket lifecycle operations.

    Creation is a plain insert. Every later change to a ticket's fields, status
    or assignment goes through :class:`OptimisticTicketWriter`, so each accepted
    mutation bumps the version by exactly one and appends exactly one timeline
    entry. Comments append to the timeline without touching the version.
    """

    def __init__(
        self,
        repository: TicketStore,
        users: UserDirectory,
        *,
        state_machine: TicketStateMachine | None = None,
        sla_window: timedelta = DEFAULT_SLA_WINDOW,
        clock: Callable[[], datetime] = _utcnow,
        metrics: MetricsRegistry | None = None,
    ) -> None:
        self._repository = repository
        self._users = users
        self._state_machine = state_machine or TicketStateMachine()
        self._sla_window = sla_window
        self._clock = clock
        self._metrics = metrics or metrics_registry
        self._writer = OptimisticTicketWriter(repository, clock=clock, metrics=self._metrics)

    async def ensure_schema(self) -> None:
        await self._repository.ensure_schema()
        await self._users.ensure_schema()

    async def create_ticket(self, *, title: str, description: str, actor: Actor) -> Ticket:
        title = _require_text(title, "title", "Title is required")
        description = _require_text(description, "description", "Description is required")
        if not actor.id:
            raise TicketValidationError("User not found or not logged in", field="user")

        now = self._clock()
        ticket = Ticket(
            id=str(uuid.uuid4()),
            title=title,
            description=description,
            status=self._state_machine.initial_state(),
            created_by=actor.id,
            assigned_to=None,
            sla_deadline=compute_deadline(now, self._sla_window),
            version=1,
            timeline=[TimelineEntry(TimelineAction.CREATED.value, actor.id, now, "Ticket created")],
            created_at=now,
            updated_at=now,
        )
        created = await self._repository.insert_ticket(ticket)
        self._metrics.counter(TICKETS_CREATED).inc()
        logger.info("Ticket %s created by %s", created.id, actor.id)
        return created

    async def get_ticket(self, ticket_id: str, *, actor: Actor, now: datetime | None = None) -> TicketDetail:
        ticket = await self._load(ticket_id)
        if actor.role is UserRole.USER and ticket.created_by != actor.id:
            raise TicketForbiddenError("You are not allowed to view this ticket")

        comments = await self._repository.list_comments(ticket_id)
        now = now or self._clock()
        return TicketDetail(
            ticket=ticket,
            comments=comments,
            sla_status=sla_status(ticket, now),
            sla_time_remaining=sla_time_remaining(ticket, now),
        )

    async def list_tickets(
        self,
        *,
        actor: Actor,
        status: TicketStatus | str | None = None,
        search: str | None = None,
        overdue: bool = False,
        limit: int = 10,
        offset: int = 0,
    ) -> TicketPage:
        if limit < 1 or limit > MAX_PAGE_SIZE:
            raise TicketValidationError(
                f"Limit must be between 1 and {MAX_PAGE_SIZE}", field="limit", code="INVALID_VALUE"
            )
        if offset < 0:
            raise TicketValidationError("Offset cannot be negative", field="offset", code="INVALID_VALUE")

        query = TicketQuery(
            created_by=actor.id if actor.role is UserRole.USER else None,
            assigned_to=actor.id if actor.role is UserRole.AGENT else None,
            status=None if status is None else self._parse_status(status),
            search=(search or "").strip() or None,
            overdue_at=self._clock() if overdue else None,
            limit=limit,
            offset=offset,
        )
        items, total = await self._repository.list_tickets(query)
        return TicketPage(items=items, total=total, offset=offset)

    async def patch_ticket(
        self,
        ticket_id: str,
        *,
        expected_version: int,
        patch: TicketPatch,
        actor: Actor,
    ) -> Ticket:
        """Generic field patch. Which fields a caller may touch depends on their role."""

        patch = self._clean_patch(patch)
        disallowed = patch.disallowed_fields(actor.role)
        if disallowed:
            raise TicketForbiddenError(
                f"Role '{actor.role.value}' cannot update: {', '.join(disallowed)}", field=disallowed[0]
            )
        if patch.assigned_to is not None:
            await self._require_agent(patch.assigned_to, field="assigned_to")

        current = await self._load_at_version(ticket_id, expected_version)
        if actor.role is UserRole.USER:
            self._ensure_owner_can_edit(current, actor)
        else:
            self._ensure_can_modify(current, actor)
        if patch.status is not None:
            self._assert_transition(current.status, patch.status)

        entry = self._entry(TimelineAction.UPDATED, actor, f"Updated fields: {', '.join(patch.changed_fields())}")
        return await self._writer.conditional_update(ticket_id, expected_version, patch, entry)

    async def update_own_ticket(
        self,
        ticket_id: str,
        *,
        expected_version: int,
        title: str | None = None,
        description: str | None = None,
        actor: Actor,
    ) -> Ticket:
        """Self-service edit: only the creator, only while the ticket is still open."""

        patch = self._clean_patch(TicketPatch(title=title, description=description))
        current = await self._load_at_version(ticket_id, expected_version)
        self._ensure_owner_can_edit(current, actor)

        entry = self._entry(TimelineAction.UPDATED, actor, f"Updated fields: {', '.join(patch.changed_fields())}")
        return await self._writer.conditional_update(ticket_id, expected_version, patch, entry)

    async def change_status(
        self,
        ticket_id: str,
        *,
        expected_version: int,
        new_status: TicketStatus | str,
        actor: Actor,
    ) -> Ticket:
        target = self._parse_status(new_status)
        if not actor.has_role(UserRole.AGENT, UserRole.ADMIN):
            raise TicketForbiddenError("Only agents and admins can change ticket status", field="status")

        current = await self._load_at_version(ticket_id, expected_version)
        self._ensure_can_modify(current, actor)
        self._assert_transition(current.status, target)

        entry = self._entry(TimelineAction.STATUS_CHANGE, actor, f"Status updated to {target.value}")
        return await self._writer.conditional_update(ticket_id, expected_version, TicketPatch(status=target), entry)

    async def assign_ticket(
        self,
        ticket_id: str,
        *,
        expected_version: int,
        agent_id: str,
        actor: Actor,
    ) -> Ticket:
        if actor.role is not UserRole.ADMIN:
            raise TicketForbiddenError("Only admins can assign tickets", field="agent_id")
        agent_id = _require_text(agent_id, "agent_id", "Agent id is required")
        agent = await self._require_agent(agent_id, field="agent_id")

        await self._load_at_version(ticket_id, expected_version)
        entry = self._entry(TimelineAction.ASSIGNED, actor, f"Assigned to {agent.name}")
        return await self._writer.conditional_update(
            ticket_id, expected_version, TicketPatch(assigned_to=agent.id), entry
        )

    async def add_comment(
        self,
        ticket_id: str,
        *,
        text: str,
        actor: Actor,
        parent_comment: str | None = None,
    ) -> Comment:
        text = _require_text(text, "text", "Comment text required")
        ticket = await self._load(ticket_id)
        if actor.role is UserRole.USER and ticket.created_by != actor.id:
            raise TicketForbiddenError("You cannot comment on this ticket")
        if actor.role is UserRole.AGENT:
            self._ensure_can_modify(ticket, actor)

        if parent_comment:
            parent = await self._repository.get_comment(parent_comment)
            if parent is None or parent.ticket_id != ticket_id:
                raise TicketValidationError(
                    "Parent comment not found on this ticket", field="parent_comment", code="INVALID_PARENT"
                )
            if parent.parent_comment is not None:
                raise TicketValidationError(
                    "Replies can only target top-level comments", field="parent_comment", code="INVALID_PARENT"
                )

        now = self._clock()
        comment = Comment(
            id=str(uuid.uuid4()),
            ticket_id=ticket_id,
            user=actor.id,
            text=text,
            parent_comment=parent_comment or None,
            created_at=now,
        )
        entry = TimelineEntry(TimelineAction.COMMENTED.value, actor.id, now, text[:COMMENT_DETAIL_LENGTH])
        if not await self._repository.add_comment(comment, entry):
            raise TicketNotFoundError(f"Ticket {ticket_id} not found")
        return comment

    async def delete_ticket(self, ticket_id: str, *, actor: Actor) -> None:
        if await self._repository.delete_open_ticket(ticket_id, actor.id):
            logger.info("Ticket %s deleted by %s", ticket_id, actor.id)
            return

        ticket = await self._load(ticket_id)
        if ticket.created_by != actor.id:
            raise TicketForbiddenError("You are not allowed to delete this ticket")
        raise InvalidTicketOperationError("You can only delete tickets that are in 'open' state", field="status")

    async def _load(self, ticket_id: str) -> Ticket:
        ticket = await self._repository.get_ticket(ticket_id)
        if ticket is None:
            raise TicketNotFoundError(f"Ticket {ticket_id} not found")
        return ticket

    async def _load_at_version(self, ticket_id: str, expected_version: int) -> Ticket:
        # Guards are evaluated against the row at the caller's version; the
        # conditional write then guarantees that row is still current.
        ticket = await self._load(ticket_id)
        if ticket.version != expected_version:
            raise self._writer.conflict(ticket_id, expected_version, ticket.version)
        return ticket

    async def _require_agent(self, agent_id: str, *, field: str) -> UserAccount:
        agent = await self._users.get_user(agent_id)
        if agent is None or agent.role is not UserRole.AGENT:
            raise TicketValidationError("Invalid agent ID", field=field, code="INVALID_AGENT")
        return agent

    def _parse_status(self, value: TicketStatus | str) -> TicketStatus:
        try:
            return self._state_machine.parse(value)
        except ValueError as exc:
            raise TicketValidationError("Invalid status", field="status", code="INVALID_STATUS") from exc

    def _assert_transition(self, current: TicketStatus, target: TicketStatus) -> None:
        try:
            self._state_machine.assert_transition(current, target)
        except ValueError as exc:
            raise InvalidTicketOperationError(str(exc), field="status") from exc

    def _entry(self, action: TimelineAction, actor: Actor, details: str) -> TimelineEntry:
        return TimelineEntry(action.value, actor.id, self._clock(), details)

    def _clean_patch(self, patch: TicketPatch) -> TicketPatch:
        cleaned = TicketPatch(
            title=_optional_text(patch.title, "title"),
            description=_optional_text(patch.description, "description"),
            status=None if patch.status is None else self._parse_status(patch.status),
            assigned_to=_optional_text(patch.assigned_to, "assigned_to"),
        )
        if cleaned.is_empty():
            raise TicketValidationError(
                "Please provide at least one field to update", code="NO_FIELDS_PROVIDED"
            )
        return cleaned

    @staticmethod
    def _ensure_owner_can_edit(ticket: Ticket, actor: Actor) -> None:
        if ticket.created_by != actor.id:
            raise TicketForbiddenError("You are not allowed to update this ticket")
        if ticket.status is not TicketStatus.OPEN:
            raise InvalidTicketOperationError(
                "You can only update tickets that are in 'open' state", field="status"
            )

    @staticmethod
    def _ensure_can_modify(ticket: Ticket, actor: Actor) -> None:
        if actor.role is UserRole.ADMIN:
            return
        if actor.role is UserRole.AGENT and ticket.assigned_to in (None, actor.id):
            return
        raise TicketForbiddenError("You cannot modify this ticket.")
