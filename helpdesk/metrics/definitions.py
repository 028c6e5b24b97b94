"""Counters maintained by the ticket service and the auto-close sweeper."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Tuple


@dataclass(frozen=True)
class MetricDefinition:
    name: str
    description: str
    label_names: Tuple[str, ...] = ()


TICKETS_CREATED = "helpdesk_tickets_created_total"
TICKET_MUTATIONS = "helpdesk_ticket_mutations_total"
VERSION_CONFLICTS = "helpdesk_ticket_version_conflicts_total"
TICKETS_AUTO_CLOSED = "helpdesk_tickets_auto_closed_total"
AUTO_CLOSE_FAILURES = "helpdesk_auto_close_failures_total"
IDEMPOTENT_REPLAYS = "helpdesk_idempotent_replays_total"

DEFAULT_METRIC_DEFINITIONS: Tuple[MetricDefinition, ...] = (
    MetricDefinition(TICKETS_CREATED, "Tickets created."),
    MetricDefinition(TICKET_MUTATIONS, "Accepted ticket mutations by timeline action.", ("action",)),
    MetricDefinition(VERSION_CONFLICTS, "Mutations rejected because the submitted version was stale."),
    MetricDefinition(TICKETS_AUTO_CLOSED, "Resolved tickets closed by the SLA sweep."),
    MetricDefinition(AUTO_CLOSE_FAILURES, "Auto-close sweep cycles that failed."),
    MetricDefinition(IDEMPOTENT_REPLAYS, "Creation requests answered from the idempotency cache."),
)
