"""
Redis pub/sub feed of committed driver records.

The store publishes every committed ``DriverRecord`` to
``orderclaim:driver:<id>``; a driver's client subscribes to its own
channel and hands the snapshots to ``DriverRequestWatcher``.  Pub/sub is
lossy by nature, so ``subscribe`` starts with a fresh read of the record
when a loader is supplied.
"""

from __future__ import annotations

import json
import logging
from typing import AsyncIterator, Awaitable, Callable, Optional

import redis.asyncio as aioredis

from orderclaim.domain.entities import DriverRecord

logger = logging.getLogger(__name__)


def driver_channel(driver_id: str) -> str:
    return f"orderclaim:driver:{driver_id}"


class RedisDriverFeed:
    def __init__(self, client: aioredis.Redis):
        self.redis = client

    async def publish(self, record: DriverRecord) -> None:
        await self.redis.publish(
            driver_channel(record.id), json.dumps(record.to_dict())
        )

    async def subscribe(
        self,
        driver_id: str,
        load: Optional[Callable[[str], Awaitable[DriverRecord]]] = None,
    ) -> AsyncIterator[DriverRecord]:
        pubsub = self.redis.pubsub()
        await pubsub.subscribe(driver_channel(driver_id))
        try:
            if load is not None:
                yield await load(driver_id)
            async for message in pubsub.listen():
                if message.get("type") != "message":
                    continue
                try:
                    yield DriverRecord.from_dict(json.loads(message["data"]))
                except (KeyError, TypeError, ValueError):
                    logger.warning(
                        "Dropping malformed driver update on %s", message.get("channel")
                    )
        finally:
            await pubsub.unsubscribe(driver_channel(driver_id))
            await pubsub.aclose()
