"""
Assignment rounds.

Opens a round for an order with candidates already ranked upstream:

1. Check every candidate exists, is online, has no order in progress and
   holds no other offer.
2. One order transaction replaces ``assignments`` with fresh PENDING
   entries and moves the order to ASSIGNMENT_PENDING (from PENDING, or
   from REASSIGN_NEEDED for a reassignment).
3. Point each candidate's ``offer_ref`` at the order, unless the round was
   already resolved.  The order is read again after attaching; if it left
   the round meanwhile the ref is taken back, since the claim's own clean-up
   may have run before the ref existed.
4. Push a notification to each candidate (fire-and-forget).

Step 1 is advisory: a driver who picks up another offer between steps 1
and 3 keeps that offer, is not notified, and their assignment here is
left for the expiry sweep.
"""

from __future__ import annotations

import logging
from datetime import datetime
from functools import partial
from typing import Callable, Iterable

from orderclaim.domain.claims import open_round
from orderclaim.domain.entities import Candidate, DriverRecord, OfferRef, Order
from orderclaim.domain.enums import OrderStatus
from orderclaim.domain.errors import FailedPrecondition
from orderclaim.infrastructure.repositories import OrderAssignmentStore
from orderclaim.services.coordinator import utcnow
from orderclaim.services.notifications import NotificationDispatcher

logger = logging.getLogger(__name__)


def _attach_offer(record: DriverRecord, ref: OfferRef) -> DriverRecord:
    if record.offer_ref is None or record.offer_ref.order_id == ref.order_id:
        record.offer_ref = ref
    return record


def _detach_offer(record: DriverRecord, ref: OfferRef) -> DriverRecord:
    if record.offer_ref == ref:
        record.offer_ref = None
    return record


class AssignmentRoundDispatcher:
    def __init__(
        self,
        store: OrderAssignmentStore,
        notifier: NotificationDispatcher | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.notifier = notifier
        self.clock = clock

    async def open_round(self, order_id: str, candidates: Iterable[Candidate]) -> Order:
        candidates = list(candidates)
        for candidate in candidates:
            record = await self.store.get_driver(candidate.driver_id)
            if not record.is_active:
                raise FailedPrecondition(f"Driver {record.id} is offline")
            if record.in_progress_order_id is not None:
                raise FailedPrecondition(
                    f"Driver {record.id} is busy with order {record.in_progress_order_id}"
                )
            if record.offer_ref is not None:
                raise FailedPrecondition(
                    f"Driver {record.id} already holds an offer for order "
                    f"{record.offer_ref.order_id}"
                )

        now = self.clock()
        order = await self.store.transact_order(
            order_id, lambda o: open_round(o, candidates, now)
        )
        logger.info(
            "Order %s offered to %d candidates: %s",
            order_id, len(order.assignments), ", ".join(order.driver_ids()),
        )

        for assignment in order.assignments:
            ref = assignment.offer_ref(order.id)
            if not await self._still_offered(ref, assignment.driver_id):
                logger.info(
                    "Order %s left the round before driver %s was offered it",
                    order.id, assignment.driver_id,
                )
                continue
            record = await self.store.transact_driver(
                assignment.driver_id, partial(_attach_offer, ref=ref)
            )
            if record.offer_ref != ref:
                logger.warning(
                    "Driver %s picked up another offer meanwhile; not notifying for order %s",
                    assignment.driver_id, order.id,
                )
                continue
            if not await self._still_offered(ref, assignment.driver_id):
                # Resolved while attaching; the resolver's clean-up may have run first.
                await self.store.transact_driver(
                    assignment.driver_id, partial(_detach_offer, ref=ref)
                )
                logger.info(
                    "Order %s was resolved while offering it to driver %s",
                    order.id, assignment.driver_id,
                )
                continue
            if self.notifier is not None:
                await self.notifier.offer(assignment.driver_id, ref)
        return order

    async def _still_offered(self, ref: OfferRef, driver_id: str) -> bool:
        order = await self.store.get_order(ref.order_id)
        assignment = order.assignment_for(driver_id)
        return (
            order.status == OrderStatus.ASSIGNMENT_PENDING
            and assignment is not None
            and assignment.is_pending
            and assignment.assigned_at == ref.assigned_at
        )
