from __future__ import annotations

import pytest

from helpdesk.tickets import IdempotencyCache, IdempotentConflictError


class TickingClock:
    def __init__(self) -> None:
        self.value = 100.0

    def __call__(self) -> float:
        return self.value


@pytest.mark.asyncio
async def test_completed_key_replays_stored_response():
    cache = IdempotencyCache(ttl_seconds=60)

    async with cache.claim("key-1") as first:
        assert first.owner and not first.is_replay
        first.store({"id": "ticket-1"})

    async with cache.claim("key-1") as second:
        assert second.is_replay
        assert second.replay == {"id": "ticket-1"}


@pytest.mark.asyncio
async def test_same_key_in_different_scopes_does_not_collide():
    cache = IdempotencyCache(ttl_seconds=60)

    async with cache.claim("key-1", scope=("user-1", "tickets")) as first:
        first.store({"id": "ticket-1"})

    async with cache.claim("key-1", scope=("user-2", "tickets")) as other:
        assert other.owner
        assert not other.is_replay
        other.store({"id": "ticket-2"})

    async with cache.claim("key-1", scope=("user-1", "tickets")) as repeat:
        assert repeat.replay == {"id": "ticket-1"}


@pytest.mark.asyncio
async def test_in_flight_key_is_rejected():
    cache = IdempotencyCache(ttl_seconds=60)

    async with cache.claim("key-1") as first:
        with pytest.raises(IdempotentConflictError) as exc:
            async with cache.claim("key-1"):
                pass
        first.store({"id": "ticket-1"})

    assert exc.value.code == "IDEMPOTENT_CONFLICT"


@pytest.mark.asyncio
async def test_failed_request_releases_key():
    cache = IdempotencyCache(ttl_seconds=60)

    with pytest.raises(RuntimeError):
        async with cache.claim("key-1"):
            raise RuntimeError("insert failed")

    async with cache.claim("key-1") as retry:
        assert retry.owner
        retry.store({"id": "ticket-2"})


@pytest.mark.asyncio
async def test_entries_expire_after_ttl():
    clock = TickingClock()
    cache = IdempotencyCache(ttl_seconds=60, clock=clock)

    async with cache.claim("key-1") as claim:
        claim.store({"id": "ticket-1"})
    assert len(cache) == 1

    clock.value += 61
    assert len(cache) == 0
    async with cache.claim("key-1") as fresh:
        assert fresh.owner


@pytest.mark.asyncio
async def test_missing_key_is_not_tracked():
    cache = IdempotencyCache()

    async with cache.claim(None) as claim:
        assert not claim.owner
        claim.store({"id": "ticket-1"})

    assert len(cache) == 0


def test_ttl_must_be_positive():
    with pytest.raises(ValueError):
        IdempotencyCache(ttl_seconds=0)


@pytest.mark.asyncio
async def test_store_rejects_empty_response():
    cache = IdempotencyCache()

    async with cache.claim("key-1") as claim:
        with pytest.raises(ValueError):
            claim.store(None)

    async with cache.claim("key-1") as retry:
        assert retry.owner
