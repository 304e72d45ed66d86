"""Redis single-flight locks for periodic ticks."""

from __future__ import annotations

import logging
import time
import uuid
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from redis.asyncio import Redis

logger = logging.getLogger(__name__)

TICK_LOCK_KEY_PREFIX = "validator_rug_tracker:tick:"


def time_bucket(interval_seconds: int, now: float | None = None) -> int:
    """Index of the ``interval_seconds``-wide window containing ``now``."""
    ts = time.time() if now is None else now
    return int(ts // interval_seconds)


class TickLock:
    """At most one successful runner per (tick name, time bucket).

    A tick that completes leaves its key to expire, so an overlapping or
    duplicate run inside the same bucket is skipped. A tick that raises
    releases the key (only if it still holds the token it wrote) so a
    retry in the same bucket can do the work.

    Example:
        ```python
        async with TickLock(redis).hold("snapshot", bucket, ttl_seconds=1800) as acquired:
            if acquired:
                await run_tick()
        ```
    """

    def __init__(self, redis: Redis, *, key_prefix: str = TICK_LOCK_KEY_PREFIX) -> None:
        self._redis = redis
        self._key_prefix = key_prefix

    def key(self, name: str, bucket: int) -> str:
        return f"{self._key_prefix}{name}:{bucket}"

    async def acquire(self, name: str, bucket: int, *, ttl_seconds: int, token: str = "1") -> bool:
        acquired = await self._redis.set(self.key(name, bucket), token, nx=True, ex=ttl_seconds)
        if not acquired:
            logger.info("Tick %s bucket %d already claimed, skipping", name, bucket)
        return bool(acquired)

    async def release(self, name: str, bucket: int, token: str) -> bool:
        """Delete the key if it still carries ``token``."""
        key = self.key(name, bucket)
        current = await self._redis.get(key)
        if isinstance(current, bytes):
            current = current.decode()
        if current != token:
            return False
        await self._redis.delete(key)
        logger.info("Released tick %s bucket %d after failure", name, bucket)
        return True

    @asynccontextmanager
    async def hold(self, name: str, bucket: int, *, ttl_seconds: int) -> AsyncIterator[bool]:
        token = uuid.uuid4().hex
        if not await self.acquire(name, bucket, ttl_seconds=ttl_seconds, token=token):
            yield False
            return

        try:
            yield True
        except Exception:
            try:
                await self.release(name, bucket, token)
            except Exception:
                logger.exception("Failed to release tick lock %s", self.key(name, bucket))
            raise
