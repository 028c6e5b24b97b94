from __future__ import annotations

from datetime import datetime, timezone
from typing import Annotated

from fastapi import APIRouter, Depends, Header, Query, Response, status
from pydantic import BaseModel, ConfigDict, Field

from helpdesk.dependencies.tickets import (
    AnyActor,
    AdminActor,
    RequesterActor,
    StaffActor,
    get_idempotency_cache,
    get_ticket_service,
)
from helpdesk.metrics import metrics_registry
from helpdesk.metrics.definitions import IDEMPOTENT_REPLAYS
from helpdesk.tickets.idempotency import IdempotencyCache
from helpdesk.tickets.models import Comment, Ticket, TicketDetail, TicketPatch
from helpdesk.tickets.service import TicketService
from helpdesk.tickets.sla import SlaStatus, sla_status, sla_time_remaining
from helpdesk.tickets.state import TicketStatus

router = APIRouter(prefix="/tickets", tags=["tickets"])


class TicketCreateRequest(BaseModel):
    title: str | None = None
    description: str | None = None


class TicketPatchRequest(BaseModel):
    version: int
    title: str | None = None
    description: str | None = None
    status: str | None = None
    assigned_to: str | None = None


class TicketSelfUpdateRequest(BaseModel):
    version: int
    title: str | None = None
    description: str | None = None


class TicketStatusRequest(BaseModel):
    version: int
    status: str


class TicketAssignRequest(BaseModel):
    version: int
    agent_id: str


class CommentCreateRequest(BaseModel):
    text: str | None = None
    parent_comment: str | None = None


class TimelineEntryResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    action: str
    user: str | None
    timestamp: datetime
    details: str


class TicketResponse(BaseModel):
    id: str
    title: str
    description: str
    status: TicketStatus
    created_by: str
    assigned_to: str | None
    sla_deadline: datetime
    sla_status: SlaStatus
    sla_time_remaining_seconds: float
    version: int
    timeline: list[TimelineEntryResponse]
    created_at: datetime
    updated_at: datetime


class CommentResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    ticket_id: str
    user: str
    text: str
    parent_comment: str | None
    created_at: datetime


class TicketDetailResponse(TicketResponse):
    comments: list[CommentResponse] = Field(default_factory=list)


class TicketListResponse(BaseModel):
    items: list[TicketResponse]
    total: int
    next_offset: int


TicketServiceDep = Annotated[TicketService, Depends(get_ticket_service)]
IdempotencyDep = Annotated[IdempotencyCache, Depends(get_idempotency_cache)]


def _to_response(ticket: Ticket, now: datetime | None = None) -> TicketResponse:
    now = now or datetime.now(timezone.utc)
    return TicketResponse(
        id=ticket.id,
        title=ticket.title,
        description=ticket.description,
        status=ticket.status,
        created_by=ticket.created_by,
        assigned_to=ticket.assigned_to,
        sla_deadline=ticket.sla_deadline,
        sla_status=sla_status(ticket, now),
        sla_time_remaining_seconds=sla_time_remaining(ticket, now).total_seconds(),
        version=ticket.version,
        timeline=[TimelineEntryResponse.model_validate(entry) for entry in ticket.timeline],
        created_at=ticket.created_at,
        updated_at=ticket.updated_at,
    )


def _to_detail_response(detail: TicketDetail) -> TicketDetailResponse:
    ticket = detail.ticket
    return TicketDetailResponse(
        **_to_response(ticket).model_dump(exclude={"sla_status", "sla_time_remaining_seconds"}),
        sla_status=detail.sla_status,
        sla_time_remaining_seconds=detail.sla_time_remaining.total_seconds(),
        comments=[_to_comment_response(comment) for comment in detail.comments],
    )


def _to_comment_response(comment: Comment) -> CommentResponse:
    return CommentResponse.model_validate(comment)


@router.post("", response_model=TicketResponse, status_code=status.HTTP_201_CREATED)
async def create_ticket(
    payload: TicketCreateRequest,
    response: Response,
    service: TicketServiceDep,
    idempotency: IdempotencyDep,
    actor: RequesterActor,
    idempotency_key: Annotated[str | None, Header(alias="Idempotency-Key")] = None,
) -> TicketResponse:
    async with idempotency.claim(idempotency_key, scope=(actor.id, "tickets")) as claim:
        if claim.is_replay:
            metrics_registry.counter(IDEMPOTENT_REPLAYS).inc()
            response.status_code = status.HTTP_200_OK
            return claim.replay
        ticket = await service.create_ticket(
            title=payload.title or "",
            description=payload.description or "",
            actor=actor,
        )
        body = _to_response(ticket)
        claim.store(body)
    return body


@router.get("", response_model=TicketListResponse)
async def list_tickets(
    service: TicketServiceDep,
    actor: AnyActor,
    status_filter: str | None = Query(default=None, alias="status"),
    search: str | None = Query(default=None),
    overdue: bool = Query(default=False),
    limit: int = Query(default=10),
    offset: int = Query(default=0),
) -> TicketListResponse:
    page = await service.list_tickets(
        actor=actor,
        status=status_filter,
        search=search,
        overdue=overdue,
        limit=limit,
        offset=offset,
    )
    now = datetime.now(timezone.utc)
    return TicketListResponse(
        items=[_to_response(ticket, now) for ticket in page.items],
        total=page.total,
        next_offset=page.next_offset,
    )


@router.get("/{ticket_id}", response_model=TicketDetailResponse)
async def get_ticket(ticket_id: str, service: TicketServiceDep, actor: AnyActor) -> TicketDetailResponse:
    detail = await service.get_ticket(ticket_id, actor=actor)
    return _to_detail_response(detail)


@router.patch("/{ticket_id}", response_model=TicketResponse)
async def patch_ticket(
    ticket_id: str,
    payload: TicketPatchRequest,
    service: TicketServiceDep,
    actor: AnyActor,
) -> TicketResponse:
    patch = TicketPatch(
        title=payload.title,
        description=payload.description,
        status=payload.status,
        assigned_to=payload.assigned_to,
    )
    ticket = await service.patch_ticket(ticket_id, expected_version=payload.version, patch=patch, actor=actor)
    return _to_response(ticket)


@router.patch("/{ticket_id}/self", response_model=TicketResponse)
async def update_own_ticket(
    ticket_id: str,
    payload: TicketSelfUpdateRequest,
    service: TicketServiceDep,
    actor: RequesterActor,
) -> TicketResponse:
    ticket = await service.update_own_ticket(
        ticket_id,
        expected_version=payload.version,
        title=payload.title,
        description=payload.description,
        actor=actor,
    )
    return _to_response(ticket)


@router.patch("/{ticket_id}/status", response_model=TicketResponse)
async def change_ticket_status(
    ticket_id: str,
    payload: TicketStatusRequest,
    service: TicketServiceDep,
    actor: StaffActor,
) -> TicketResponse:
    ticket = await service.change_status(
        ticket_id,
        expected_version=payload.version,
        new_status=payload.status,
        actor=actor,
    )
    return _to_response(ticket)


@router.patch("/{ticket_id}/assign", response_model=TicketResponse)
async def assign_ticket(
    ticket_id: str,
    payload: TicketAssignRequest,
    service: TicketServiceDep,
    actor: AdminActor,
) -> TicketResponse:
    ticket = await service.assign_ticket(
        ticket_id,
        expected_version=payload.version,
        agent_id=payload.agent_id,
        actor=actor,
    )
    return _to_response(ticket)


@router.post("/{ticket_id}/comments", response_model=CommentResponse, status_code=status.HTTP_201_CREATED)
async def add_comment(
    ticket_id: str,
    payload: CommentCreateRequest,
    response: Response,
    service: TicketServiceDep,
    idempotency: IdempotencyDep,
    actor: AnyActor,
    idempotency_key: Annotated[str | None, Header(alias="Idempotency-Key")] = None,
) -> CommentResponse:
    async with idempotency.claim(idempotency_key, scope=(actor.id, "comments", ticket_id)) as claim:
        if claim.is_replay:
            metrics_registry.counter(IDEMPOTENT_REPLAYS).inc()
            response.status_code = status.HTTP_200_OK
            return claim.replay
        comment = await service.add_comment(
            ticket_id,
            text=payload.text or "",
            actor=actor,
            parent_comment=payload.parent_comment,
        )
        body = _to_comment_response(comment)
        claim.store(body)
    return body


@router.delete("/{ticket_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_ticket(ticket_id: str, service: TicketServiceDep, actor: RequesterActor) -> None:
    await service.delete_ticket(ticket_id, actor=actor)
