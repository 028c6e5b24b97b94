from __future__ import annotations

from enum import Enum
from typing import Mapping, Sequence


class TicketStatus(str, Enum):
    """Supported states for a ticket's lifecycle."""

    OPEN = "open"
    IN_PROGRESS = "in_progress"
    RESOLVED = "resolved"
    CLOSED = "closed"


class TicketStateMachine:
    """Validate ticket lifecycle transitions.

    Agents and admins may move a ticket between any two states; the only guard on
    a status write is the optimistic version check. A narrower table can be
    injected where a deployment wants adjacency rules.
    """

    _DEFAULT_TRANSITIONS: Mapping[TicketStatus, Sequence[TicketStatus]] = {
        status: tuple(target for target in TicketStatus if target is not status) for status in TicketStatus
    }

    def __init__(self, transitions: Mapping[TicketStatus, Sequence[TicketStatus]] | None = None) -> None:
        self._transitions = transitions or self._DEFAULT_TRANSITIONS

    @staticmethod
    def initial_state() -> TicketStatus:
        return TicketStatus.OPEN

    @staticmethod
    def parse(value: str | TicketStatus) -> TicketStatus:
        try:
            return TicketStatus(value)
        except ValueError as exc:
            raise ValueError(f"Invalid ticket status: {value!r}") from exc

    def can_transition(self, current: TicketStatus, target: TicketStatus) -> bool:
        if current == target:
            return True
        return target in self._transitions.get(current, ())

    def assert_transition(self, current: TicketStatus, target: TicketStatus) -> None:
        if not self.can_transition(current, target):
            raise ValueError(f"Invalid ticket status transition: {current.value} -> {target.value}")
