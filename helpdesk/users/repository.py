from __future__ import annotations

from typing import Any, Mapping, Protocol

import asyncpg

from .models import UserAccount, UserRole


class UserDirectory(Protocol):
    async def ensure_schema(self) -> None: ...

    async def get_user(self, user_id: str) -> UserAccount | None: ...

    async def add_user(self, user: UserAccount) -> None: ...


class UserRepository:
    """Read access to the ``users`` table; tickets only reference users by id."""

    _CREATE_USERS_SQL = """
    CREATE TABLE IF NOT EXISTS users (
        id TEXT PRIMARY KEY,
        name TEXT NOT NULL,
        email TEXT NOT NULL UNIQUE,
        role TEXT NOT NULL DEFAULT 'user'
    )
    """

    _SELECT_USER_SQL = """
    SELECT id, name, email, role FROM users WHERE id = $1
    """

    _UPSERT_USER_SQL = """
    INSERT INTO users (id, name, email, role)
    VALUES ($1, $2, $3, $4)
    ON CONFLICT (id) DO NOTHING
    """

    def __init__(self, pool: asyncpg.Pool) -> None:
        self._pool = pool

    async def ensure_schema(self) -> None:
        async with self._pool.acquire() as connection:
            await connection.execute(self._CREATE_USERS_SQL)

    async def get_user(self, user_id: str) -> UserAccount | None:
        async with self._pool.acquire() as connection:
            row = await connection.fetchrow(self._SELECT_USER_SQL, user_id)
        if row is None:
            return None
        return self._row_to_user(row)

    async def add_user(self, user: UserAccount) -> None:
        async with self._pool.acquire() as connection:
            await connection.execute(self._UPSERT_USER_SQL, user.id, user.name, user.email, user.role.value)

    @staticmethod
    def _row_to_user(row: Mapping[str, Any]) -> UserAccount:
        return UserAccount(
            id=str(row["id"]),
            name=str(row["name"]),
            email=str(row["email"]),
            role=UserRole(str(row["role"])),
        )


class InMemoryUserRepository:
    def __init__(self, users: list[UserAccount] | None = None) -> None:
        self._users: dict[str, UserAccount] = {user.id: user for user in users or []}

    async def ensure_schema(self) -> None:
        return None

    async def get_user(self, user_id: str) -> UserAccount | None:
        return self._users.get(user_id)

    async def add_user(self, user: UserAccount) -> None:
        if any(existing.email == user.email and existing.id != user.id for existing in self._users.values()):
            raise ValueError(f"Email {user.email} is already registered")
        self._users.setdefault(user.id, user)
