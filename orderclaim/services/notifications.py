"""
Offer notifications to candidate drivers.

Fire-and-forget: the protocol never waits for, or depends on, delivery.
A driver who misses the push still sees the offer through the watcher on
their driver record.  Failures are logged and reported as ``False``.
"""

from __future__ import annotations

import json
import logging

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from orderclaim.domain.entities import OfferRef

logger = logging.getLogger(__name__)


def offer_channel(driver_id: str) -> str:
    return f"orderclaim:offers:{driver_id}"


class NotificationDispatcher:
    def __init__(self, client: aioredis.Redis):
        self.redis = client

    async def offer(self, driver_id: str, offer_ref: OfferRef) -> bool:
        payload = {
            "type": "order_offer",
            "title": "New Delivery Order",
            "order_request": offer_ref.to_dict(),
        }
        try:
            receivers = await self.redis.publish(
                offer_channel(driver_id), json.dumps(payload)
            )
        except RedisError:
            logger.exception(
                "Failed to push offer for order %s to driver %s",
                offer_ref.order_id, driver_id,
            )
            return False
        logger.debug(
            "Offer for order %s pushed to driver %s (%d listeners)",
            offer_ref.order_id, driver_id, receivers,
        )
        return True
