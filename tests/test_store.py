"""
SQL assignment store on an in-memory SQLite database.

Exercises the row mapping, the version column, validation at the store
boundary and the driver feed hook.  Write conflicts between concurrent
transactions are covered on the in-memory store (test_concurrency.py).
"""

from __future__ import annotations

from datetime import datetime, timezone
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio
from sqlalchemy import select

from orderclaim.domain.claims import open_round
from orderclaim.domain.entities import Candidate, DriverRecord, OfferRef, Order
from orderclaim.domain.enums import AssignmentStatus, ClaimOutcome, OrderStatus
from orderclaim.domain.errors import FailedPrecondition, Internal, NotFound
from orderclaim.infrastructure.models import DriverModel, OrderModel
from orderclaim.infrastructure.repositories import SqlAlchemyAssignmentStore
from orderclaim.services.coordinator import ClaimCoordinator
from orderclaim.services.dispatch import AssignmentRoundDispatcher

NOW = datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def feed() -> AsyncMock:
    mock = AsyncMock()
    mock.publish = AsyncMock(return_value=None)
    return mock


@pytest_asyncio.fixture
async def sql_store(sql_session_factory, feed) -> SqlAlchemyAssignmentStore:
    store = SqlAlchemyAssignmentStore(sql_session_factory, feed=feed)
    for driver_id in ("d1", "d2", "d3"):
        await store.add_driver(DriverRecord(id=driver_id))
    await store.add_order(Order(id="ord-1", details={"items": 2}))
    return store


async def _version(factory, model, key) -> int:
    async with factory() as session:
        result = await session.execute(select(model.version).where(model.id == key))
        return result.scalar_one()


class TestRoundTrip:
    @pytest.mark.asyncio
    async def test_order_with_assignments(self, sql_store):
        await sql_store.transact_order(
            "ord-1",
            lambda o: open_round(o, [Candidate("d1", 1.5, "5 min"), Candidate("d2")], NOW),
        )

        order = await sql_store.get_order("ord-1")
        assert order.status == OrderStatus.ASSIGNMENT_PENDING
        assert order.details == {"items": 2}
        assert order.driver_ids() == ["d1", "d2"]
        first = order.assignment_for("d1")
        assert first.status == AssignmentStatus.PENDING
        assert first.assigned_at == NOW
        assert first.estimated_distance == 1.5
        assert first.estimated_time == "5 min"

    @pytest.mark.asyncio
    async def test_driver_offer_ref(self, sql_store):
        ref = OfferRef(order_id="ord-1", assigned_at=NOW, estimated_distance=2.0)

        def attach(record):
            record.offer_ref = ref
            return record

        await sql_store.transact_driver("d1", attach)
        record = await sql_store.get_driver("d1")
        assert record.offer_ref == ref
        assert record.is_active is True

    @pytest.mark.asyncio
    async def test_list_by_status(self, sql_store):
        await sql_store.add_order(Order(id="ord-2"))
        await sql_store.transact_order(
            "ord-2", lambda o: open_round(o, [Candidate("d3")], NOW)
        )

        pending = await sql_store.list_orders(OrderStatus.PENDING)
        open_rounds = await sql_store.list_orders(OrderStatus.ASSIGNMENT_PENDING)
        assert [o.id for o in pending] == ["ord-1"]
        assert [o.id for o in open_rounds] == ["ord-2"]


class TestWrites:
    @pytest.mark.asyncio
    async def test_missing_records(self, sql_store):
        with pytest.raises(NotFound):
            await sql_store.get_order("missing")
        with pytest.raises(NotFound):
            await sql_store.get_driver("missing")
        with pytest.raises(NotFound):
            await sql_store.transact_order("missing", lambda o: o)

    @pytest.mark.asyncio
    async def test_duplicate_insert(self, sql_store):
        with pytest.raises(FailedPrecondition):
            await sql_store.add_order(Order(id="ord-1"))
        with pytest.raises(FailedPrecondition):
            await sql_store.add_driver(DriverRecord(id="d1"))

    @pytest.mark.asyncio
    async def test_unchanged_mutation_writes_nothing(self, sql_store, sql_session_factory):
        before = await _version(sql_session_factory, OrderModel, "ord-1")
        await sql_store.transact_order("ord-1", lambda o: o)
        assert await _version(sql_session_factory, OrderModel, "ord-1") == before

    @pytest.mark.asyncio
    async def test_each_write_bumps_version(self, sql_store, sql_session_factory):
        before = await _version(sql_session_factory, OrderModel, "ord-1")
        await sql_store.transact_order(
            "ord-1", lambda o: open_round(o, [Candidate("d1")], NOW)
        )
        assert await _version(sql_session_factory, OrderModel, "ord-1") == before + 1

    @pytest.mark.asyncio
    async def test_invalid_order_is_never_written(self, sql_store, sql_session_factory):
        def corrupt(order):
            order.status = OrderStatus.ASSIGNED
            return order

        before = await _version(sql_session_factory, OrderModel, "ord-1")
        with pytest.raises(Internal):
            await sql_store.transact_order("ord-1", corrupt)

        assert (await sql_store.get_order("ord-1")).status == OrderStatus.PENDING
        assert await _version(sql_session_factory, OrderModel, "ord-1") == before

    @pytest.mark.asyncio
    async def test_aborting_mutation_propagates(self, sql_store):
        def refuse(order):
            raise FailedPrecondition("nope")

        with pytest.raises(FailedPrecondition):
            await sql_store.transact_order("ord-1", refuse)


class TestDriverFeed:
    @pytest.mark.asyncio
    async def test_commits_are_published(self, sql_store, feed):
        feed.publish.reset_mock()

        def deactivate(record):
            record.is_active = False
            return record

        await sql_store.transact_driver("d2", deactivate)
        feed.publish.assert_awaited_once()
        assert feed.publish.await_args.args[0].is_active is False

    @pytest.mark.asyncio
    async def test_feed_failure_does_not_fail_the_write(self, sql_store, sql_session_factory, feed):
        feed.publish.side_effect = ConnectionError("redis down")

        def deactivate(record):
            record.is_active = False
            return record

        await sql_store.transact_driver("d2", deactivate)
        assert (await sql_store.get_driver("d2")).is_active is False
        assert await _version(sql_session_factory, DriverModel, "d2") == 2


class TestProtocolOnSql:
    @pytest.mark.asyncio
    async def test_claim_round(self, sql_store):
        dispatcher = AssignmentRoundDispatcher(sql_store, clock=lambda: NOW)
        coordinator = ClaimCoordinator(sql_store, clock=lambda: NOW)
        await dispatcher.open_round(
            "ord-1", [Candidate("d1"), Candidate("d2"), Candidate("d3")]
        )

        assert await coordinator.claim("ord-1", "d3") is ClaimOutcome.SUCCESS
        assert await coordinator.claim("ord-1", "d1") is ClaimOutcome.ALREADY_TAKEN

        order = await sql_store.get_order("ord-1")
        assert order.status == OrderStatus.ASSIGNED
        assert order.assigned_driver_id == "d3"
        assert order.claimed_at is not None
        for driver_id in ("d1", "d2", "d3"):
            assert (await sql_store.get_driver(driver_id)).offer_ref is None
        assert (await sql_store.get_driver("d3")).in_progress_order_id == "ord-1"

    @pytest.mark.asyncio
    async def test_reject_round(self, sql_store):
        dispatcher = AssignmentRoundDispatcher(sql_store, clock=lambda: NOW)
        coordinator = ClaimCoordinator(sql_store, clock=lambda: NOW)
        await dispatcher.open_round("ord-1", [Candidate("d1"), Candidate("d2")])

        await coordinator.reject("ord-1", "d1")
        await coordinator.reject("ord-1", "d2")

        assert (await sql_store.get_order("ord-1")).status == OrderStatus.REASSIGN_NEEDED
