"""
Redis-based distributed lock.

Used by the target-expiry worker so only one API process sweeps expired
driver pins per cycle.  Acquire is SET NX PX with a random token; release
is an atomic compare-and-delete in Lua so a lock that expired and was
taken over by another process is never deleted by the previous owner.
"""

from __future__ import annotations

import uuid

import redis.asyncio as aioredis

_RELEASE_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("del", KEYS[1])
else
    return 0
end
"""


class LockNotAcquired(RuntimeError):
    pass


class DistributedLock:
    def __init__(
        self, client: aioredis.Redis, key: str, ttl_seconds: float = 30
    ):
        self.redis = client
        self.key = f"marketplace:lock:{key}"
        self.ttl_ms = int(ttl_seconds * 1000)
        self.token = str(uuid.uuid4())

    async def acquire(self) -> bool:
        """Try to acquire. Returns True on success."""
        return bool(
            await self.redis.set(self.key, self.token, nx=True, px=self.ttl_ms)
        )

    async def release(self) -> bool:
        """Release only if we still own the lock."""
        return bool(await self.redis.eval(_RELEASE_SCRIPT, 1, self.key, self.token))

    async def __aenter__(self):
        if not await self.acquire():
            raise LockNotAcquired(f"Could not acquire lock: {self.key}")
        return self

    async def __aexit__(self, *args):
        await self.release()
