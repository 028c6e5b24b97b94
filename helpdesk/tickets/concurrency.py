"""Optimistic concurrency control for ticket mutations.

Every write to an existing ticket goes through :meth:`OptimisticTicketWriter.conditional_update`.
The store matches on ``(id, expected_version)``, applies the patch, bumps the
version by one and appends the timeline entry in one atomic step. Nothing is
locked: a caller that loses the race gets :class:`VersionConflictError`
immediately and has to re-read before retrying.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Callable

from opentelemetry import trace

from helpdesk.metrics import MetricsRegistry, metrics_registry
from helpdesk.metrics.definitions import TICKET_MUTATIONS, VERSION_CONFLICTS

from .errors import TicketNotFoundError, VersionConflictError
from .models import Ticket, TicketPatch, TimelineEntry
from .repository import TicketStore

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class OptimisticTicketWriter:
    def __init__(
        self,
        store: TicketStore,
        *,
        clock: Callable[[], datetime] = _utcnow,
        metrics: MetricsRegistry | None = None,
    ) -> None:
        self._store = store
        self._clock = clock
        self._metrics = metrics or metrics_registry

    async def conditional_update(
        self,
        ticket_id: str,
        expected_version: int,
        patch: TicketPatch,
        entry: TimelineEntry,
    ) -> Ticket:
        """Apply ``patch`` and append ``entry`` if the ticket is still at ``expected_version``.

        Raises:
            VersionConflictError: the ticket exists but has moved past ``expected_version``.
            TicketNotFoundError: no ticket with ``ticket_id`` exists.
        """

        with tracer.start_as_current_span("ticket.conditional_update") as span:
            span.set_attribute("ticket.id", ticket_id)
            span.set_attribute("ticket.expected_version", expected_version)
            updated = await self._store.conditional_update(
                ticket_id,
                expected_version,
                patch,
                entry,
                updated_at=self._clock(),
            )
            if updated is not None:
                self._metrics.counter(TICKET_MUTATIONS, label_names=("action",)).inc(labels={"action": entry.action})
                logger.debug(
                    "Ticket %s moved to version %s (%s)", ticket_id, updated.version, entry.action
                )
                return updated

            current_version = await self._store.get_version(ticket_id)
            if current_version is None:
                raise TicketNotFoundError(f"Ticket {ticket_id} not found")
            span.set_attribute("ticket.current_version", current_version)
            raise self.conflict(ticket_id, expected_version, current_version)

    def conflict(self, ticket_id: str, expected_version: int, current_version: int | None) -> VersionConflictError:
        """Record a lost race and return the error describing it."""

        self._metrics.counter(VERSION_CONFLICTS).inc()
        logger.info(
            "Version conflict on ticket %s: expected %s, current %s", ticket_id, expected_version, current_version
        )
        return VersionConflictError(ticket_id, expected_version, current_version)
