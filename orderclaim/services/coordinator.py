"""
Claim Coordinator
=================

``claim`` and ``reject`` as store transactions (bodies in
``orderclaim.domain.claims``), followed by offer clean-up on the driver
records.  Driver status changes (online, offline, completing the order in
progress) are single driver-record transactions.

Clean-up runs after the order transaction commits and is not atomic with
it.  It is idempotent (a driver's ``offer_ref`` is only cleared while it
still points at this order and that driver's assignment has left
PENDING), so running it twice, late, or from a different call is safe.
A failed clean-up is logged and left for the next call or the expiry
sweep to repeat.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from functools import partial
from typing import Callable, Iterable

from orderclaim.domain.claims import apply_claim, apply_expiry, apply_reject, claim_outcome
from orderclaim.domain.entities import DriverRecord, Order
from orderclaim.domain.enums import AssignmentStatus, ClaimOutcome, OrderStatus
from orderclaim.domain.errors import (
    ClaimError,
    FailedPrecondition,
    NotFound,
    PermissionDenied,
    Unauthenticated,
)
from orderclaim.infrastructure.repositories import OrderAssignmentStore

logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _require_identity(driver_id: str | None) -> str:
    if not driver_id:
        raise Unauthenticated()
    return driver_id


def _release_offer(record: DriverRecord, order_id: str, won: bool) -> DriverRecord:
    if record.offer_ref is not None and record.offer_ref.order_id == order_id:
        record.offer_ref = None
    if won:
        record.in_progress_order_id = order_id
    return record


def _set_active(record: DriverRecord, active: bool) -> DriverRecord:
    record.is_active = active
    return record


def _complete(record: DriverRecord, order_id: str) -> DriverRecord:
    if record.in_progress_order_id != order_id:
        raise FailedPrecondition(
            f"Order {order_id} is not in progress for driver {record.id}"
        )
    record.in_progress_order_id = None
    if record.offer_ref is not None and record.offer_ref.order_id == order_id:
        record.offer_ref = None
    return record


class ClaimCoordinator:
    def __init__(
        self,
        store: OrderAssignmentStore,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.clock = clock

    # ── Driver operations ────────────────────────────────────────────

    async def claim(self, order_id: str, driver_id: str | None) -> ClaimOutcome:
        driver_id = _require_identity(driver_id)
        committed = await self.store.transact_order(
            order_id, lambda order: apply_claim(order, driver_id, self.clock())
        )
        outcome = claim_outcome(committed, driver_id)

        if outcome is ClaimOutcome.SUCCESS:
            logger.info("Order %s claimed by driver %s", order_id, driver_id)
            await self._release_offers(committed, committed.driver_ids())
        else:
            logger.info(
                "Driver %s lost order %s to driver %s",
                driver_id, order_id, committed.assigned_driver_id,
            )
            await self._release_offers(committed, [driver_id])
        return outcome

    async def reject(self, order_id: str, driver_id: str | None) -> ClaimOutcome:
        driver_id = _require_identity(driver_id)
        committed = await self.store.transact_order(
            order_id, lambda order: apply_reject(order, driver_id, self.clock())
        )
        logger.info("Driver %s rejected order %s", driver_id, order_id)
        if committed.status == OrderStatus.REASSIGN_NEEDED:
            logger.info("Order %s: every candidate rejected, reassignment needed", order_id)

        await self._release_offers(committed, [driver_id])
        return ClaimOutcome.SUCCESS

    async def view_order(self, order_id: str, driver_id: str | None) -> Order:
        """The order as a candidate (or the assigned driver) may see it."""
        driver_id = _require_identity(driver_id)
        order = await self.store.get_order(order_id)
        if order.assignment_for(driver_id) is None:
            raise PermissionDenied("Driver not in assigned list")
        return order

    def for_driver(self, driver_id: str) -> "DriverSession":
        return DriverSession(self, _require_identity(driver_id))

    # ── Driver status ────────────────────────────────────────────────

    async def go_online(self, driver_id: str | None) -> DriverRecord:
        driver_id = _require_identity(driver_id)
        record = await self.store.transact_driver(driver_id, partial(_set_active, active=True))
        logger.info("Driver %s is online", driver_id)
        return record

    async def go_offline(self, driver_id: str | None) -> DriverRecord:
        """Stop receiving new rounds.  An offer already held stays until it is
        answered or expires."""
        driver_id = _require_identity(driver_id)
        record = await self.store.transact_driver(driver_id, partial(_set_active, active=False))
        logger.info("Driver %s is offline", driver_id)
        return record

    async def complete_order(self, order_id: str, driver_id: str | None) -> DriverRecord:
        """Finish the order the driver won, freeing them for new rounds."""
        driver_id = _require_identity(driver_id)
        record = await self.store.transact_driver(
            driver_id, partial(_complete, order_id=order_id)
        )
        logger.info("Driver %s completed order %s", driver_id, order_id)
        return record

    # ── Server-side expiry ───────────────────────────────────────────

    async def expire_stale(
        self, order_id: str, cutoff: datetime
    ) -> tuple[Order, list[str]]:
        """Reject every PENDING assignment offered at or before *cutoff*.

        Returns the committed order and the drivers whose offer this call
        expired, taken from the attempt that committed.
        """
        expired: list[str] = []

        def body(order: Order) -> Order:
            pending = {a.driver_id for a in order.pending()}
            order = apply_expiry(order, cutoff, self.clock())
            expired[:] = [
                a.driver_id for a in order.assignments
                if a.driver_id in pending and not a.is_pending
            ]
            return order

        committed = await self.store.transact_order(order_id, body)
        if committed.status == OrderStatus.REASSIGN_NEEDED:
            logger.info("Order %s expired without a taker, reassignment needed", order_id)
        await self._release_offers(committed, committed.driver_ids())
        return committed, expired

    # ── Offer clean-up ───────────────────────────────────────────────

    async def _release_offers(self, order: Order, driver_ids: Iterable[str]) -> None:
        for driver_id in driver_ids:
            assignment = order.assignment_for(driver_id)
            if assignment is None or assignment.is_pending:
                continue
            won = assignment.status == AssignmentStatus.ACCEPTED
            try:
                await self.store.transact_driver(
                    driver_id, partial(_release_offer, order_id=order.id, won=won)
                )
            except NotFound:
                logger.warning(
                    "Order %s lists driver %s, who has no driver record", order.id, driver_id
                )
            except ClaimError as exc:
                logger.warning(
                    "Could not release offer of order %s for driver %s: %s",
                    order.id, driver_id, exc.message,
                )


class DriverSession:
    """A coordinator bound to one verified driver identity."""

    def __init__(self, coordinator: ClaimCoordinator, driver_id: str):
        self.coordinator = coordinator
        self.driver_id = driver_id

    async def claim_order(self, order_id: str) -> ClaimOutcome:
        return await self.coordinator.claim(order_id, self.driver_id)

    async def reject_order(self, order_id: str) -> ClaimOutcome:
        return await self.coordinator.reject(order_id, self.driver_id)

    async def get_order(self, order_id: str) -> Order:
        return await self.coordinator.view_order(order_id, self.driver_id)

    async def go_online(self) -> DriverRecord:
        return await self.coordinator.go_online(self.driver_id)

    async def go_offline(self) -> DriverRecord:
        return await self.coordinator.go_offline(self.driver_id)

    async def complete_order(self, order_id: str) -> DriverRecord:
        return await self.coordinator.complete_order(order_id, self.driver_id)
