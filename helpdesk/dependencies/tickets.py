from __future__ import annotations

from typing import Annotated

from fastapi import Depends, HTTPException, Request

from helpdesk.dependencies.auth import role_required
from helpdesk.tickets.idempotency import IdempotencyCache
from helpdesk.tickets.service import TicketService
from helpdesk.users.models import Actor, UserRole

require_user = role_required(UserRole.USER)
require_staff = role_required(UserRole.AGENT, UserRole.ADMIN)
require_admin = role_required(UserRole.ADMIN)
require_any = role_required(UserRole.USER, UserRole.AGENT, UserRole.ADMIN)

RequesterActor = Annotated[Actor, Depends(require_user)]
StaffActor = Annotated[Actor, Depends(require_staff)]
AdminActor = Annotated[Actor, Depends(require_admin)]
AnyActor = Annotated[Actor, Depends(require_any)]


async def get_ticket_service(request: Request) -> TicketService:
    service = getattr(request.app.state, "ticket_service", None)
    if service is None:
        raise HTTPException(status_code=503, detail="Ticket service is not configured")
    return service


async def get_idempotency_cache(request: Request) -> IdempotencyCache:
    cache = getattr(request.app.state, "idempotency_cache", None)
    if cache is None:
        raise HTTPException(status_code=503, detail="Idempotency cache is not configured")
    return cache
