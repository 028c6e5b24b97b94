"""Duplicate-submission guard for ticket and comment creation.

A single process-wide cache keyed by (scope, idempotency key), where the scope
names the submitter and the target of the request. A request claims its key
for the duration of the handler. Once it completes, the stored
response is replayed to any repeat within the TTL. A repeat that arrives while
the first request is still running is rejected, and a request that fails gives
its key back.
"""

from __future__ import annotations

import time
from contextlib import asynccontextmanager
from dataclasses import dataclass
from threading import Lock
from typing import Any, AsyncIterator, Callable, Hashable

from .errors import IdempotentConflictError


@dataclass(slots=True)
class _Entry:
    expires_at: float
    pending: bool = True
    response: Any = None


class IdempotencyClaim:
    """Handle given to a request holding (or replaying) an idempotency key."""

    def __init__(self, key: str | None, *, replay: Any = None, owner: bool = False) -> None:
        self.key = key
        self.replay = replay
        self.owner = owner
        self._response: Any = None
        self._stored = False

    @property
    def is_replay(self) -> bool:
        return self.replay is not None

    def store(self, response: Any) -> None:
        if response is None:
            raise ValueError("Cannot store an empty idempotent response")
        self._response = response
        self._stored = True


class IdempotencyCache:
    def __init__(self, ttl_seconds: float = 60.0, *, clock: Callable[[], float] = time.monotonic) -> None:
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")
        self._ttl = ttl_seconds
        self._clock = clock
        self._entries: dict[tuple[Hashable, str], _Entry] = {}
        self._lock = Lock()

    def __len__(self) -> int:
        with self._lock:
            self._evict(self._clock())
            return len(self._entries)

    @asynccontextmanager
    async def claim(self, key: str | None, *, scope: Hashable = None) -> AsyncIterator[IdempotencyClaim]:
        """Claim ``key`` within ``scope``.

        Keys only collide within one scope, so callers pass the submitter (and
        the target resource where there is one) to keep their keys apart.
        """

        if not key:
            yield IdempotencyClaim(None)
            return

        slot = (scope, key)
        with self._lock:
            now = self._clock()
            self._evict(now)
            entry = self._entries.get(slot)
            if entry is None:
                self._entries[slot] = _Entry(expires_at=now + self._ttl)
                claim = IdempotencyClaim(key, owner=True)
            elif entry.pending:
                raise IdempotentConflictError(key)
            else:
                claim = IdempotencyClaim(key, replay=entry.response)

        try:
            yield claim
        except BaseException:
            if claim.owner:
                self._release(slot)
            raise

        if claim.owner:
            if claim._stored:
                self._complete(slot, claim._response)
            else:
                self._release(slot)

    def _complete(self, slot: tuple[Hashable, str], response: Any) -> None:
        with self._lock:
            self._entries[slot] = _Entry(expires_at=self._clock() + self._ttl, pending=False, response=response)

    def _release(self, slot: tuple[Hashable, str]) -> None:
        with self._lock:
            entry = self._entries.get(slot)
            if entry is not None and entry.pending:
                del self._entries[slot]

    def _evict(self, now: float) -> None:
        expired = [slot for slot, entry in self._entries.items() if not entry.pending and entry.expires_at <= now]
        for slot in expired:
            del self._entries[slot]
