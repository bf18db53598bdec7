"""
Redis-based distributed lock for background sweeps.

Every API process runs the offer-expiry worker; the lock makes one of
them do the work per interval.  Correctness never depends on it: each
expiry is its own per-order transaction, so two overlapping sweeps would
only repeat no-op work.

Acquire is ``SET key token NX EX ttl``; release deletes the key through a
Lua compare-and-delete so an instance whose lock already expired cannot
drop a lock now held by someone else.
"""

from __future__ import annotations

import uuid

import redis.asyncio as aioredis

_RELEASE_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("del", KEYS[1])
end
return 0
"""


class LockNotAcquired(RuntimeError):
    """Raised by ``async with`` when the lock is held elsewhere."""


class DistributedLock:
    def __init__(self, client: aioredis.Redis, name: str, ttl_seconds: int = 30):
        self.redis = client
        self.key = f"orderclaim:lock:{name}"
        self.ttl = ttl_seconds
        self.token = uuid.uuid4().hex
        self.held = False

    async def acquire(self) -> bool:
        """Try once; ``True`` when this instance now holds the lock."""
        self.held = bool(
            await self.redis.set(self.key, self.token, nx=True, ex=self.ttl)
        )
        return self.held

    async def release(self) -> bool:
        """Release if still ours.  Returns whether a key was deleted."""
        if not self.held:
            return False
        self.held = False
        return bool(await self.redis.eval(_RELEASE_SCRIPT, 1, self.key, self.token))

    async def __aenter__(self) -> "DistributedLock":
        if not await self.acquire():
            raise LockNotAcquired(f"Lock {self.key} is held by another instance")
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.release()
