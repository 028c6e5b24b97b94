"""Ticket domain: records, timeline, optimistic concurrency, SLA and auto-close."""

from .concurrency import OptimisticTicketWriter
from .errors import (
    IdempotentConflictError,
    InvalidTicketOperationError,
    TicketForbiddenError,
    TicketNotFoundError,
    TicketServiceError,
    TicketValidationError,
    VersionConflictError,
)
from .idempotency import IdempotencyCache
from .memory import InMemoryTicketRepository
from .models import Comment, Ticket, TicketDetail, TicketPage, TicketPatch, TimelineAction, TimelineEntry
from .repository import TicketQuery, TicketRepository, TicketStore
from .service import TicketService
from .sla import SlaStatus, is_overdue, sla_status, sla_time_remaining
from .state import TicketStateMachine, TicketStatus
from .sweeper import AutoCloseSweeper

__all__ = [
    "AutoCloseSweeper",
    "Comment",
    "IdempotencyCache",
    "IdempotentConflictError",
    "InMemoryTicketRepository",
    "InvalidTicketOperationError",
    "OptimisticTicketWriter",
    "SlaStatus",
    "Ticket",
    "TicketDetail",
    "TicketForbiddenError",
    "TicketNotFoundError",
    "TicketPage",
    "TicketPatch",
    "TicketQuery",
    "TicketRepository",
    "TicketService",
    "TicketServiceError",
    "TicketStateMachine",
    "TicketStatus",
    "TicketStore",
    "TicketValidationError",
    "TimelineAction",
    "TimelineEntry",
    "VersionConflictError",
    "is_overdue",
    "sla_status",
    "sla_time_remaining",
]
