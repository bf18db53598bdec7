"""
Assignment store -- the only writer of ``Order.status``,
``Order.assignments`` and ``DriverRecord.offer_ref``.

``OrderAssignmentStore`` defines the contract; ``SqlAlchemyAssignmentStore``
is the PostgreSQL implementation.  (``memory_store`` holds the asyncio one
used for local runs and protocol tests.)

Transactions are optimistic: read a snapshot, hand a private copy to the
caller's ``mutate``, write conditionally on the snapshot's version, re-run
``mutate`` against a fresh snapshot on conflict.  A ``mutate`` that returns
the snapshot unchanged writes nothing; one that raises aborts.  Results are
validated before they are written, so an invalid order never reaches
storage no matter which code path produced it.
"""

from __future__ import annotations

import copy
import logging
from abc import ABC, abstractmethod
from typing import Callable, Optional, TypeVar

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm.exc import StaleDataError

from .models import DriverModel, OrderModel
from orderclaim.config import settings
from orderclaim.domain.entities import (
    DriverAssignment,
    DriverRecord,
    InvalidStateTransition,
    InvariantViolation,
    OfferRef,
    Order,
    validate_order,
)
from orderclaim.domain.enums import OrderStatus
from orderclaim.domain.errors import FailedPrecondition, Internal, NotFound, Unavailable

logger = logging.getLogger(__name__)

T = TypeVar("T")

OrderMutation = Callable[[Order], Order]
DriverMutation = Callable[[DriverRecord], DriverRecord]


class OrderAssignmentStore(ABC):
    def __init__(self, feed=None, max_attempts: int | None = None):
        # feed: anything with ``async publish(record: DriverRecord)``
        self.feed = feed
        self.max_attempts = max_attempts or settings.max_transaction_attempts

    # ── Contract ─────────────────────────────────────────────────────

    @abstractmethod
    async def get_order(self, order_id: str) -> Order: ...

    @abstractmethod
    async def get_driver(self, driver_id: str) -> DriverRecord: ...

    @abstractmethod
    async def transact_order(self, order_id: str, mutate: OrderMutation) -> Order: ...

    @abstractmethod
    async def transact_driver(
        self, driver_id: str, mutate: DriverMutation
    ) -> DriverRecord: ...

    @abstractmethod
    async def add_order(self, order: Order) -> Order: ...

    @abstractmethod
    async def add_driver(self, driver: DriverRecord) -> DriverRecord: ...

    @abstractmethod
    async def list_orders(self, status: OrderStatus) -> list[Order]: ...

    # ── Shared helpers ───────────────────────────────────────────────

    @staticmethod
    def _apply(current: T, mutate: Callable[[T], T]) -> Optional[T]:
        """Run *mutate* on a copy; ``None`` means nothing to write."""
        updated = mutate(copy.deepcopy(current))
        if updated == current:
            return None
        if isinstance(updated, Order):
            _validate(updated, current)
        elif updated.id != current.id:
            raise Internal("Driver transaction changed the record id")
        return updated

    def _conflicts_exhausted(self, kind: str, key: str) -> Unavailable:
        logger.warning(
            "%s %s: gave up after %d conflicting attempts", kind, key, self.max_attempts
        )
        return Unavailable("Too much contention, please try again")

    async def _publish_driver(self, record: DriverRecord) -> None:
        if self.feed is None:
            return
        try:
            await self.feed.publish(record)
        except Exception:
            # The record is committed; watchers catch up on the next change.
            logger.exception("Failed to publish driver %s to the feed", record.id)


def _validate(order: Order, previous: Optional[Order]) -> None:
    try:
        validate_order(order, previous)
    except (InvalidStateTransition, InvariantViolation) as exc:
        logger.error("Refusing to persist order %s: %s", order.id, exc)
        raise Internal() from exc


# ── Row mapping ───────────────────────────────────────────────────────


def _order_from_row(row: OrderModel) -> Order:
    try:
        return Order(
            id=row.id,
            status=OrderStatus(row.status),
            assignments=[DriverAssignment.from_dict(a) for a in row.assignments or []],
            assigned_driver_id=row.assigned_driver_id,
            claimed_at=row.claimed_at,
            details=dict(row.details or {}),
        )
    except (KeyError, TypeError, ValueError) as exc:
        logger.error("Order %s failed validation on read: %s", row.id, exc)
        raise Internal() from exc


def _order_to_row(order: Order, row: OrderModel) -> None:
    row.status = order.status
    row.assignments = [a.to_dict() for a in order.assignments]
    row.assigned_driver_id = order.assigned_driver_id
    row.claimed_at = order.claimed_at
    row.details = dict(order.details)


def _driver_from_row(row: DriverModel) -> DriverRecord:
    try:
        return DriverRecord(
            id=row.id,
            offer_ref=OfferRef.from_dict(row.offer_ref) if row.offer_ref else None,
            in_progress_order_id=row.in_progress_order_id,
            is_active=bool(row.is_active),
        )
    except (KeyError, TypeError, ValueError) as exc:
        logger.error("Driver %s failed validation on read: %s", row.id, exc)
        raise Internal() from exc


def _driver_to_row(driver: DriverRecord, row: DriverModel) -> None:
    row.offer_ref = driver.offer_ref.to_dict() if driver.offer_ref else None
    row.in_progress_order_id = driver.in_progress_order_id
    row.is_active = driver.is_active


# ── PostgreSQL implementation ─────────────────────────────────────────


class SqlAlchemyAssignmentStore(OrderAssignmentStore):
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        feed=None,
        max_attempts: int | None = None,
    ):
        super().__init__(feed=feed, max_attempts=max_attempts)
        self.session_factory = session_factory

    async def get_order(self, order_id: str) -> Order:
        async with self.session_factory() as session:
            row = await session.get(OrderModel, order_id)
            if row is None:
                raise NotFound(f"Order {order_id} not found")
            return _order_from_row(row)

    async def get_driver(self, driver_id: str) -> DriverRecord:
        async with self.session_factory() as session:
            row = await session.get(DriverModel, driver_id)
            if row is None:
                raise NotFound(f"Driver {driver_id} not found")
            return _driver_from_row(row)

    async def list_orders(self, status: OrderStatus) -> list[Order]:
        async with self.session_factory() as session:
            result = await session.execute(
                select(OrderModel).where(OrderModel.status == status)
            )
            return [_order_from_row(row) for row in result.scalars().all()]

    async def add_order(self, order: Order) -> Order:
        _validate(order, None)
        row = OrderModel(id=order.id)
        _order_to_row(order, row)
        await self._insert(row, f"Order {order.id}")
        return order

    async def add_driver(self, driver: DriverRecord) -> DriverRecord:
        row = DriverModel(id=driver.id)
        _driver_to_row(driver, row)
        await self._insert(row, f"Driver {driver.id}")
        await self._publish_driver(driver)
        return driver

    async def _insert(self, row, label: str) -> None:
        async with self.session_factory() as session:
            session.add(row)
            try:
                await session.commit()
            except IntegrityError as exc:
                await session.rollback()
                raise FailedPrecondition(f"{label} already exists") from exc

    async def transact_order(self, order_id: str, mutate: OrderMutation) -> Order:
        for attempt in range(1, self.max_attempts + 1):
            async with self.session_factory() as session:
                row = await session.get(OrderModel, order_id)
                if row is None:
                    raise NotFound(f"Order {order_id} not found")
                current = _order_from_row(row)
                updated = self._apply(current, mutate)
                if updated is None:
                    return current
                _order_to_row(updated, row)
                try:
                    await session.commit()
                except StaleDataError:
                    await session.rollback()
                    logger.info(
                        "Order %s: write conflict (attempt %d/%d), retrying",
                        order_id, attempt, self.max_attempts,
                    )
                    continue
                return updated
        raise self._conflicts_exhausted("Order", order_id)

    async def transact_driver(
        self, driver_id: str, mutate: DriverMutation
    ) -> DriverRecord:
        for attempt in range(1, self.max_attempts + 1):
            async with self.session_factory() as session:
                row = await session.get(DriverModel, driver_id)
                if row is None:
                    raise NotFound(f"Driver {driver_id} not found")
                current = _driver_from_row(row)
                updated = self._apply(current, mutate)
                if updated is None:
                    return current
                _driver_to_row(updated, row)
                try:
                    await session.commit()
                except StaleDataError:
                    await session.rollback()
                    logger.info(
                        "Driver %s: write conflict (attempt %d/%d), retrying",
                        driver_id, attempt, self.max_attempts,
                    )
                    continue
            await self._publish_driver(updated)
            return updated
        raise self._conflicts_exhausted("Driver", driver_id)
