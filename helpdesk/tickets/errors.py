"""Error taxonomy for ticket operations.

Every error carries a stable ``code`` so callers can tell a lost race
(refresh and retry) apart from a missing record (give up) or bad input (fix it).
"""

from __future__ import annotations


class TicketServiceError(RuntimeError):
    """Base error for ticket service issues."""

    code = "TICKET_ERROR"

    def __init__(self, message: str, *, field: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.field = field


class TicketValidationError(TicketServiceError):
    """Raised for missing or malformed input, before the store is touched."""

    def __init__(self, message: str, *, field: str | None = None, code: str = "FIELD_REQUIRED") -> None:
        super().__init__(message, field=field)
        self.code = code


class TicketNotFoundError(TicketServiceError):
    """Raised when a ticket could not be located."""

    code = "NOT_FOUND"


class VersionConflictError(TicketServiceError):
    """Raised when the submitted version no longer matches the stored one."""

    code = "VERSION_CONFLICT"

    def __init__(self, ticket_id: str, expected_version: int, current_version: int | None = None) -> None:
        super().__init__("Stale version, please refresh and try again.", field="version")
        self.ticket_id = ticket_id
        self.expected_version = expected_version
        self.current_version = current_version


class TicketForbiddenError(TicketServiceError):
    """Raised when the actor may not perform the requested change."""

    code = "FORBIDDEN"


class InvalidTicketOperationError(TicketServiceError):
    """Raised when the ticket's current state does not allow the operation."""

    code = "INVALID_OPERATION"


class IdempotentConflictError(TicketServiceError):
    """Raised when a request with the same idempotency key is still being processed."""

    code = "IDEMPOTENT_CONFLICT"

    def __init__(self, key: str) -> None:
        super().__init__("Duplicate request detected")
        self.key = key
