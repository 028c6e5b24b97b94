from __future__ import annotations

import json
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Mapping, Protocol

import asyncpg

from .models import Comment, Ticket, TicketPatch, TimelineEntry
from .state import TicketStatus


@dataclass(slots=True, frozen=True)
class TicketQuery:
    """Filters accepted by :meth:`TicketStore.list_tickets`."""

    created_by: str | None = None
    assigned_to: str | None = None
    status: TicketStatus | None = None
    search: str | None = None
    overdue_at: datetime | None = None
    limit: int = 10
    offset: int = 0


class TicketStore(Protocol):
    """Persistence contract for tickets, their embedded timeline and comments.

    ``conditional_update`` must match on ``(id, version)``, apply the patch, bump
    the version and append the entry as one atomic step. It returns ``None`` when
    nothing matched, without saying why.
    """

    async def ensure_schema(self) -> None: ...

    async def insert_ticket(self, ticket: Ticket) -> Ticket: ...

    async def get_ticket(self, ticket_id: str) -> Ticket | None: ...

    async def get_version(self, ticket_id: str) -> int | None: ...

    async def list_tickets(self, query: TicketQuery) -> tuple[list[Ticket], int]: ...

    async def conditional_update(
        self,
        ticket_id: str,
        expected_version: int,
        patch: TicketPatch,
        entry: TimelineEntry,
        *,
        updated_at: datetime,
    ) -> Ticket | None: ...

    async def close_expired(self, now: datetime, entry: TimelineEntry) -> int: ...

    async def delete_open_ticket(self, ticket_id: str, created_by: str) -> bool: ...

    async def add_comment(self, comment: Comment, entry: TimelineEntry) -> bool: ...

    async def get_comment(self, comment_id: str) -> Comment | None: ...

    async def list_comments(self, ticket_id: str) -> list[Comment]: ...


_TICKET_COLUMNS = (
    "id, title, description, status, created_by, assigned_to, sla_deadline, version, timeline, created_at, updated_at"
)


class TicketRepository:
    """asyncpg implementation of :class:`TicketStore`.

    The timeline lives in a JSONB array on the ticket row, so every mutation and
    its audit entry are written by a single ``UPDATE`` statement.
    """

    _CREATE_TICKETS_SQL = """
    CREATE TABLE IF NOT EXISTS tickets (
        id TEXT PRIMARY KEY,
        title TEXT NOT NULL,
        description TEXT NOT NULL,
        status TEXT NOT NULL DEFAULT 'open',
        created_by TEXT NOT NULL,
        assigned_to TEXT NULL,
        sla_deadline TIMESTAMPTZ NOT NULL,
        version INTEGER NOT NULL DEFAULT 1,
        timeline JSONB NOT NULL DEFAULT '[]'::jsonb,
        created_at TIMESTAMPTZ NOT NULL,
        updated_at TIMESTAMPTZ NOT NULL
    )
    """

    _CREATE_TICKET_INDEX_SQL = """
    CREATE INDEX IF NOT EXISTS ix_tickets_status_sla_deadline ON tickets (status, sla_deadline)
    """

    _CREATE_COMMENTS_SQL = """
    CREATE TABLE IF NOT EXISTS ticket_comments (
        id TEXT PRIMARY KEY,
        ticket_id TEXT NOT NULL REFERENCES tickets(id) ON DELETE CASCADE,
        user_id TEXT NOT NULL,
        text TEXT NOT NULL,
        parent_comment TEXT NULL REFERENCES ticket_comments(id) ON DELETE CASCADE,
        created_at TIMESTAMPTZ NOT NULL
    )
    """

    _CREATE_COMMENT_INDEX_SQL = """
    CREATE INDEX IF NOT EXISTS ix_ticket_comments_ticket_created ON ticket_comments (ticket_id, created_at)
    """

    _INSERT_TICKET_SQL = f"""
    INSERT INTO tickets (id, title, description, status, created_by, assigned_to, sla_deadline, version, timeline, created_at, updated_at)
    VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9::jsonb, $10, $11)
    RETURNING {_TICKET_COLUMNS}
    """

    _SELECT_TICKET_SQL = f"""
    SELECT {_TICKET_COLUMNS}
    FROM tickets
    WHERE id = $1
    """

    _SELECT_VERSION_SQL = """
    SELECT version FROM tickets WHERE id = $1
    """

    _CONDITIONAL_UPDATE_SQL = f"""
    UPDATE tickets
    SET title = COALESCE($3, title),
        description = COALESCE($4, description),
        status = COALESCE($5, status),
        assigned_to = COALESCE($6, assigned_to),
        version = version + 1,
        timeline = timeline || $7::jsonb,
        updated_at = $8
    WHERE id = $1 AND version = $2
    RETURNING {_TICKET_COLUMNS}
    """

    _CLOSE_EXPIRED_SQL = """
    UPDATE tickets
    SET status = 'closed',
        version = version + 1,
        timeline = timeline || $2::jsonb,
        updated_at = $1
    WHERE status = 'resolved' AND sla_deadline < $1
    RETURNING id
    """

    _DELETE_OPEN_TICKET_SQL = """
    DELETE FROM tickets WHERE id = $1 AND created_by = $2 AND status = 'open' RETURNING id
    """

    _APPEND_TIMELINE_SQL = """
    UPDATE tickets
    SET timeline = timeline || $2::jsonb,
        updated_at = $3
    WHERE id = $1
    RETURNING id
    """

    _INSERT_COMMENT_SQL = """
    INSERT INTO ticket_comments (id, ticket_id, user_id, text, parent_comment, created_at)
    VALUES ($1, $2, $3, $4, $5, $6)
    """

    _SELECT_COMMENT_SQL = """
    SELECT id, ticket_id, user_id, text, parent_comment, created_at
    FROM ticket_comments
    WHERE id = $1
    """

    _SELECT_COMMENTS_SQL = """
    SELECT id, ticket_id, user_id, text, parent_comment, created_at
    FROM ticket_comments
    WHERE ticket_id = $1
    ORDER BY created_at ASC
    """

    def __init__(self, pool: asyncpg.Pool) -> None:
        self._pool = pool

    async def ensure_schema(self) -> None:
        async with self._pool.acquire() as connection:
            await connection.execute(self._CREATE_TICKETS_SQL)
            await connection.execute(self._CREATE_TICKET_INDEX_SQL)
            await connection.execute(self._CREATE_COMMENTS_SQL)
            await connection.execute(self._CREATE_COMMENT_INDEX_SQL)

    async def insert_ticket(self, ticket: Ticket) -> Ticket:
        async with self._pool.acquire() as connection:
            row = await connection.fetchrow(
                self._INSERT_TICKET_SQL,
                ticket.id,
                ticket.title,
                ticket.description,
                ticket.status.value,
                ticket.created_by,
                ticket.assigned_to,
                ticket.sla_deadline,
                ticket.version,
                [entry.to_document() for entry in ticket.timeline],
                ticket.created_at,
                ticket.updated_at,
            )
        if row is None:
            raise RuntimeError("Failed to insert ticket")
        return self._row_to_ticket(row)

    async def get_ticket(self, ticket_id: str) -> Ticket | None:
        async with self._pool.acquire() as connection:
            row = await connection.fetchrow(self._SELECT_TICKET_SQL, ticket_id)
        if row is None:
            return None
        return self._row_to_ticket(row)

    async def get_version(self, ticket_id: str) -> int | None:
        async with self._pool.acquire() as connection:
            version = await connection.fetchval(self._SELECT_VERSION_SQL, ticket_id)
        return None if version is None else int(version)

    async def list_tickets(self, query: TicketQuery) -> tuple[list[Ticket], int]:
        where, params = self._build_filter(query)
        count_sql = f"SELECT COUNT(*) FROM tickets {where}"
        select_sql = (
            f"SELECT {_TICKET_COLUMNS} FROM tickets {where} "
            f"ORDER BY created_at DESC LIMIT ${len(params) + 1} OFFSET ${len(params) + 2}"
        )
        async with self._pool.acquire() as connection:
            total = await connection.fetchval(count_sql, *params)
            rows = await connection.fetch(select_sql, *params, query.limit, query.offset)
        return [self._row_to_ticket(row) for row in rows], int(total or 0)

    async def conditional_update(
        self,
        ticket_id: str,
        expected_version: int,
        patch: TicketPatch,
        entry: TimelineEntry,
        *,
        updated_at: datetime,
    ) -> Ticket | None:
        async with self._pool.acquire() as connection:
            row = await connection.fetchrow(
                self._CONDITIONAL_UPDATE_SQL,
                ticket_id,
                expected_version,
                patch.title,
                patch.description,
                None if patch.status is None else patch.status.value,
                patch.assigned_to,
                [entry.to_document()],
                updated_at,
            )
        if row is None:
            return None
        return self._row_to_ticket(row)

    async def close_expired(self, now: datetime, entry: TimelineEntry) -> int:
        async with self._pool.acquire() as connection:
            rows = await connection.fetch(self._CLOSE_EXPIRED_SQL, now, [entry.to_document()])
        return len(rows)

    async def delete_open_ticket(self, ticket_id: str, created_by: str) -> bool:
        async with self._pool.acquire() as connection:
            row = await connection.fetchrow(self._DELETE_OPEN_TICKET_SQL, ticket_id, created_by)
        return row is not None

    async def add_comment(self, comment: Comment, entry: TimelineEntry) -> bool:
        async with self._pool.acquire() as connection:
            async with connection.transaction():
                row = await connection.fetchrow(
                    self._APPEND_TIMELINE_SQL,
                    comment.ticket_id,
                    [entry.to_document()],
                    comment.created_at,
                )
                if row is None:
                    return False
                await connection.execute(
                    self._INSERT_COMMENT_SQL,
                    comment.id,
                    comment.ticket_id,
                    comment.user,
                    comment.text,
                    comment.parent_comment,
                    comment.created_at,
                )
        return True

    async def get_comment(self, comment_id: str) -> Comment | None:
        async with self._pool.acquire() as connection:
            row = await connection.fetchrow(self._SELECT_COMMENT_SQL, comment_id)
        if row is None:
            return None
        return self._row_to_comment(row)

    async def list_comments(self, ticket_id: str) -> list[Comment]:
        async with self._pool.acquire() as connection:
            rows = await connection.fetch(self._SELECT_COMMENTS_SQL, ticket_id)
        return [self._row_to_comment(row) for row in rows]

    @staticmethod
    def _build_filter(query: TicketQuery) -> tuple[str, list[Any]]:
        conditions: list[str] = []
        params: list[Any] = []

        def bind(value: Any) -> str:
            params.append(value)
            return f"${len(params)}"

        if query.created_by is not None:
            conditions.append(f"created_by = {bind(query.created_by)}")
        if query.assigned_to is not None:
            conditions.append(f"assigned_to = {bind(query.assigned_to)}")
        if query.status is not None:
            conditions.append(f"status = {bind(query.status.value)}")
        if query.overdue_at is not None:
            conditions.append(f"sla_deadline < {bind(query.overdue_at)} AND status <> 'closed'")
        if query.search:
            pattern = bind(f"%{query.search}%")
            conditions.append(
                "("
                f"title ILIKE {pattern} OR description ILIKE {pattern} "
                f"OR EXISTS (SELECT 1 FROM jsonb_array_elements(timeline) AS entry WHERE entry->>'details' ILIKE {pattern}) "
                f"OR id IN (SELECT ticket_id FROM ticket_comments WHERE text ILIKE {pattern})"
                ")"
            )

        if not conditions:
            return "", params
        return "WHERE " + " AND ".join(conditions), params

    @staticmethod
    def _row_to_ticket(row: Mapping[str, Any]) -> Ticket:
        timeline = row["timeline"] or []
        if isinstance(timeline, str):
            timeline = json.loads(timeline)
        assigned_to = row["assigned_to"]
        return Ticket(
            id=str(row["id"]),
            title=str(row["title"]),
            description=str(row["description"]),
            status=TicketStatus(str(row["status"])),
            created_by=str(row["created_by"]),
            assigned_to=None if assigned_to is None else str(assigned_to),
            sla_deadline=_ensure_datetime(row["sla_deadline"]),
            version=int(row["version"]),
            timeline=[TimelineEntry.from_document(item) for item in timeline],
            created_at=_ensure_datetime(row["created_at"]),
            updated_at=_ensure_datetime(row["updated_at"]),
        )

    @staticmethod
    def _row_to_comment(row: Mapping[str, Any]) -> Comment:
        parent = row["parent_comment"]
        return Comment(
            id=str(row["id"]),
            ticket_id=str(row["ticket_id"]),
            user=str(row["user_id"]),
            text=str(row["text"]),
            parent_comment=None if parent is None else str(parent),
            created_at=_ensure_datetime(row["created_at"]),
        )


def _ensure_datetime(value: Any) -> datetime:
    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value
    return datetime.fromisoformat(str(value))
