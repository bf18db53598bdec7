"""
Driver request watcher.

Turns a stream of ``DriverRecord`` snapshots into offer messages on an
``asyncio.Queue``: ``Offer(ref, order)`` when a new offer appears, ``None``
when the offer goes away (or cannot be shown).

Each time the referenced order changes a new request token is issued and
a fetch task started.  A fetch only publishes if its token is still the
current one when it completes, so the newest reference always wins no
matter which fetch finishes last.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import AsyncIterator, Awaitable, Callable, Optional

from orderclaim.domain.entities import DriverRecord, OfferRef, Order
from orderclaim.domain.errors import ClaimError, NotFound

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Offer:
    ref: OfferRef
    order: Order

    @property
    def order_id(self) -> str:
        return self.ref.order_id


class DriverRequestWatcher:
    def __init__(
        self,
        driver_id: str,
        fetch_order: Callable[[str], Awaitable[Order]],
        outbox: Optional[asyncio.Queue] = None,
    ):
        self.driver_id = driver_id
        self.fetch_order = fetch_order
        self.outbox: asyncio.Queue = outbox if outbox is not None else asyncio.Queue()
        self.in_progress_order_id: Optional[str] = None
        self._token = 0
        self._order_id: Optional[str] = None
        self._fetches: set[asyncio.Task] = set()

    @property
    def loading(self) -> bool:
        return any(not task.done() for task in self._fetches)

    async def run(self, updates: AsyncIterator[DriverRecord]) -> None:
        try:
            async for record in updates:
                self.on_driver_update(record)
        finally:
            for task in self._fetches:
                task.cancel()

    def on_driver_update(self, record: DriverRecord) -> None:
        self.in_progress_order_id = record.in_progress_order_id
        ref = record.offer_ref
        order_id = ref.order_id if ref else None
        if order_id == self._order_id:
            return

        self._order_id = order_id
        self._token += 1
        if ref is None:
            self.outbox.put_nowait(None)
            return

        task = asyncio.create_task(self._load(self._token, ref))
        self._fetches.add(task)
        task.add_done_callback(self._fetches.discard)

    async def drain(self) -> None:
        """Wait for every outstanding fetch (used by tests and shutdown)."""
        while self._fetches:
            await asyncio.gather(*list(self._fetches))

    async def _load(self, token: int, ref: OfferRef) -> None:
        order: Optional[Order] = None
        try:
            order = await self.fetch_order(ref.order_id)
        except NotFound:
            logger.warning(
                "Driver %s was offered order %s, which does not exist",
                self.driver_id, ref.order_id,
            )
        except ClaimError as exc:
            logger.warning(
                "Could not load order %s for driver %s: %s",
                ref.order_id, self.driver_id, exc.message,
            )

        if token != self._token:
            logger.debug("Discarding stale fetch of order %s", ref.order_id)
            return
        self.outbox.put_nowait(Offer(ref=ref, order=order) if order else None)
