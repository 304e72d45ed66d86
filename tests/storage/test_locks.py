"""Tests for the Redis tick lock."""

import pytest

from validator_rug_tracker.storage.locks import TickLock, time_bucket


class InMemoryRedis:
    """Minimal async Redis honouring SET NX and returning bytes."""

    def __init__(self) -> None:
        self.store: dict[str, str] = {}
        self.ttls: dict[str, int | None] = {}

    async def set(self, key, value, *, nx=False, ex=None):
        if nx and key in self.store:
            return None
        self.store[key] = value
        self.ttls[key] = ex
        return True

    async def get(self, key):
        value = self.store.get(key)
        return value.encode() if value is not None else None

    async def delete(self, key):
        return 1 if self.store.pop(key, None) is not None else 0


@pytest.fixture
def redis() -> InMemoryRedis:
    return InMemoryRedis()


class TestTimeBucket:
    def test_bucket_boundaries(self):
        assert time_bucket(900, 0) == 0
        assert time_bucket(900, 899.9) == 0
        assert time_bucket(900, 900) == 1


class TestTickLock:
    """Tests for TickLock.hold."""

    @pytest.mark.asyncio
    async def test_success_keeps_claim(self, redis):
        lock = TickLock(redis)

        async with lock.hold("snapshot", 3, ttl_seconds=1800) as acquired:
            assert acquired is True

        assert lock.key("snapshot", 3) in redis.store
        assert redis.ttls[lock.key("snapshot", 3)] == 1800
        async with lock.hold("snapshot", 3, ttl_seconds=1800) as again:
            assert again is False

    @pytest.mark.asyncio
    async def test_failure_releases_claim(self, redis):
        lock = TickLock(redis)

        with pytest.raises(RuntimeError, match="rpc down"):
            async with lock.hold("snapshot", 3, ttl_seconds=1800) as acquired:
                assert acquired is True
                raise RuntimeError("rpc down")

        assert redis.store == {}
        async with lock.hold("snapshot", 3, ttl_seconds=1800) as retry:
            assert retry is True

    @pytest.mark.asyncio
    async def test_release_leaves_foreign_token(self, redis):
        lock = TickLock(redis)
        redis.store[lock.key("uptime", 7)] = "someone-else"

        assert await lock.release("uptime", 7, "mine") is False
        assert redis.store[lock.key("uptime", 7)] == "someone-else"

    @pytest.mark.asyncio
    async def test_buckets_and_names_are_independent(self, redis):
        lock = TickLock(redis)

        assert await lock.acquire("snapshot", 1, ttl_seconds=60) is True
        assert await lock.acquire("snapshot", 2, ttl_seconds=60) is True
        assert await lock.acquire("uptime", 1, ttl_seconds=60) is True
        assert await lock.acquire("snapshot", 1, ttl_seconds=60) is False
