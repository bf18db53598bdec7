"""
Shared test fixtures.

Protocol tests run against ``InMemoryAssignmentStore``: its transactions
yield to the event loop between read and commit, so ``asyncio.gather`` of
several claims really interleaves and conflicts.  Store tests use an
in-memory SQLite database (via aiosqlite) with the production models.  The ``app`` fixture overrides the API's
store and dispatcher dependencies with the same in-memory objects.
"""

from datetime import datetime, timedelta, timezone
from typing import AsyncGenerator
from unittest.mock import AsyncMock, patch

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool

from orderclaim.api.app import create_app
from orderclaim.api.dependencies import get_round_dispatcher, get_store
from orderclaim.api.middleware import limiter
from orderclaim.domain.entities import Candidate, DriverRecord, Order
from orderclaim.domain.errors import NotFound
from orderclaim.infrastructure.database import Base
from orderclaim.infrastructure import models  # noqa: F401  (registers tables)
from orderclaim.infrastructure.memory_store import InMemoryAssignmentStore
from orderclaim.services.coordinator import ClaimCoordinator
from orderclaim.services.dispatch import AssignmentRoundDispatcher

NOW = datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)


class FakeClock:
    def __init__(self, now: datetime = NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


# ── Fixtures ──────────────────────────────────────────────────────────


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store() -> InMemoryAssignmentStore:
    return InMemoryAssignmentStore(max_attempts=50)


@pytest.fixture
def coordinator(store, clock) -> ClaimCoordinator:
    return ClaimCoordinator(store, clock=clock)


@pytest.fixture
def notifier() -> AsyncMock:
    mock = AsyncMock()
    mock.offer = AsyncMock(return_value=True)
    return mock


@pytest.fixture
def dispatcher(store, notifier, clock) -> AssignmentRoundDispatcher:
    return AssignmentRoundDispatcher(store, notifier, clock=clock)


@pytest.fixture
def make_round(store, dispatcher):
    """Register drivers and an order, then offer the order to all of them."""

    async def _make(order_id: str = "ord-1", drivers=("d1", "d2", "d3")) -> Order:
        for driver_id in drivers:
            try:
                await store.get_driver(driver_id)
            except NotFound:
                await store.add_driver(DriverRecord(id=driver_id))
        await store.add_order(Order(id=order_id, details={"dropoff": "44 Elm St"}))
        candidates = [
            Candidate(d, estimated_distance=float(i + 1), estimated_time=f"{3 * (i + 1)} min")
            for i, d in enumerate(drivers)
        ]
        return await dispatcher.open_round(order_id, candidates)

    return _make


@pytest_asyncio.fixture
async def sql_session_factory() -> AsyncGenerator[async_sessionmaker, None]:
    """Create tables on a private SQLite database, then drop everything."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        echo=False,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest.fixture
def app(store, notifier):
    """The application with an in-memory store and a mocked notifier."""
    with patch(
        "orderclaim.workers.offer_expiry.start_expiry_loop", new_callable=AsyncMock
    ), patch(
        "orderclaim.workers.offer_expiry.stop_expiry_loop", new_callable=AsyncMock
    ):
        app = create_app()
        limiter.reset()

        async def _store():
            return store

        async def _dispatcher():
            return AssignmentRoundDispatcher(store, notifier)

        app.dependency_overrides[get_store] = _store
        app.dependency_overrides[get_round_dispatcher] = _dispatcher
        yield app
