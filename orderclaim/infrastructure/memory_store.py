"""
In-process assignment store.

Same optimistic contract as the SQL store, on plain dicts guarded by
per-record version numbers.  Every transaction yields to the event loop
between reading its snapshot and committing, the way a network round-trip
would, so concurrent claims on one order really do interleave and conflict.

Besides local runs it gives the client side something to watch:
``subscribe(driver_id)`` streams committed snapshots of a driver record,
starting with the current one.
"""

from __future__ import annotations

import asyncio
import copy
import logging
from collections import defaultdict
from typing import AsyncIterator

from .repositories import DriverMutation, OrderAssignmentStore, OrderMutation, _validate
from orderclaim.domain.entities import DriverRecord, Order
from orderclaim.domain.enums import OrderStatus
from orderclaim.domain.errors import FailedPrecondition, NotFound

logger = logging.getLogger(__name__)


class InMemoryAssignmentStore(OrderAssignmentStore):
    def __init__(self, feed=None, max_attempts: int | None = None):
        super().__init__(feed=feed, max_attempts=max_attempts)
        self._orders: dict[str, tuple[int, Order]] = {}
        self._drivers: dict[str, tuple[int, DriverRecord]] = {}
        self._subscribers: dict[str, list[asyncio.Queue]] = defaultdict(list)
        self.conflicts = 0

    # ── Reads ────────────────────────────────────────────────────────

    async def get_order(self, order_id: str) -> Order:
        if order_id not in self._orders:
            raise NotFound(f"Order {order_id} not found")
        return copy.deepcopy(self._orders[order_id][1])

    async def get_driver(self, driver_id: str) -> DriverRecord:
        if driver_id not in self._drivers:
            raise NotFound(f"Driver {driver_id} not found")
        return copy.deepcopy(self._drivers[driver_id][1])

    async def list_orders(self, status: OrderStatus) -> list[Order]:
        return [
            copy.deepcopy(order)
            for _, order in self._orders.values()
            if order.status == status
        ]

    def order_version(self, order_id: str) -> int:
        return self._orders[order_id][0]

    def driver_version(self, driver_id: str) -> int:
        return self._drivers[driver_id][0]

    # ── Writes ───────────────────────────────────────────────────────

    async def add_order(self, order: Order) -> Order:
        _validate(order, None)
        if order.id in self._orders:
            raise FailedPrecondition(f"Order {order.id} already exists")
        self._orders[order.id] = (1, copy.deepcopy(order))
        return order

    async def add_driver(self, driver: DriverRecord) -> DriverRecord:
        if driver.id in self._drivers:
            raise FailedPrecondition(f"Driver {driver.id} already exists")
        self._drivers[driver.id] = (1, copy.deepcopy(driver))
        await self._committed_driver(driver)
        return driver

    async def transact_order(self, order_id: str, mutate: OrderMutation) -> Order:
        return await self._transact(self._orders, "Order", order_id, mutate)

    async def transact_driver(
        self, driver_id: str, mutate: DriverMutation
    ) -> DriverRecord:
        return await self._transact(self._drivers, "Driver", driver_id, mutate)

    async def _transact(self, table: dict, kind: str, key: str, mutate):
        for attempt in range(1, self.max_attempts + 1):
            if key not in table:
                raise NotFound(f"{kind} {key} not found")
            version, current = table[key]
            current = copy.deepcopy(current)

            await asyncio.sleep(0)  # round-trip to the backend

            updated = self._apply(current, mutate)
            if updated is None:
                return current

            await asyncio.sleep(0)

            if table[key][0] != version:
                self.conflicts += 1
                logger.info(
                    "%s %s: write conflict (attempt %d/%d), retrying",
                    kind, key, attempt, self.max_attempts,
                )
                continue
            table[key] = (version + 1, copy.deepcopy(updated))
            if isinstance(updated, DriverRecord):
                await self._committed_driver(updated)
            return updated
        raise self._conflicts_exhausted(kind, key)

    # ── Change feed ──────────────────────────────────────────────────

    async def _committed_driver(self, record: DriverRecord) -> None:
        for queue in self._subscribers[record.id]:
            queue.put_nowait(copy.deepcopy(record))
        await self._publish_driver(record)

    async def subscribe(self, driver_id: str) -> AsyncIterator[DriverRecord]:
        queue: asyncio.Queue = asyncio.Queue()
        self._subscribers[driver_id].append(queue)
        try:
            if driver_id in self._drivers:
                yield copy.deepcopy(self._drivers[driver_id][1])
            while True:
                yield await queue.get()
        finally:
            self._subscribers[driver_id].remove(queue)
