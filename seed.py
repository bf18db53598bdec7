"""
Seed script -- populates the database with sample data for reviewers.

Run after migrations:
    python seed.py

Creates:
  - 6 sample drivers (5 online, 1 offline)
  - 4 sample orders awaiting assignment
  - 1 open assignment round (order ord-1001 offered to three drivers)
"""

import asyncio

from sqlalchemy import func, select

from orderclaim.domain.entities import Candidate, DriverRecord, Order
from orderclaim.infrastructure.database import async_session_factory, engine
from orderclaim.infrastructure.models import DriverModel
from orderclaim.infrastructure.repositories import SqlAlchemyAssignmentStore
from orderclaim.services.dispatch import AssignmentRoundDispatcher


DRIVERS = [
    {"id": "drv-anna", "is_active": True},
    {"id": "drv-bilal", "is_active": True},
    {"id": "drv-chen", "is_active": True},
    {"id": "drv-dara", "is_active": True},
    {"id": "drv-emeka", "is_active": True},
    {"id": "drv-fatima", "is_active": False},
]

ORDERS = [
    {
        "id": "ord-1001",
        "details": {"pickup": "Central Kitchen, 12 Dock Rd", "dropoff": "44 Elm St", "items": 3},
    },
    {
        "id": "ord-1002",
        "details": {"pickup": "Green Grocer, 3 Market Sq", "dropoff": "9 Birch Ave", "items": 7},
    },
    {
        "id": "ord-1003",
        "details": {"pickup": "Pharmacy Plus, 81 High St", "dropoff": "210 Lake Dr", "items": 1},
    },
    {
        "id": "ord-1004",
        "details": {"pickup": "Noodle Bar, 5 Canal St", "dropoff": "17 Hill Rd", "items": 2},
    },
]

ROUND = {
    "order_id": "ord-1001",
    "candidates": [
        Candidate("drv-anna", estimated_distance=1.2, estimated_time="4 min"),
        Candidate("drv-bilal", estimated_distance=2.8, estimated_time="9 min"),
        Candidate("drv-chen", estimated_distance=3.5, estimated_time="12 min"),
    ],
}


async def seed():
    async with async_session_factory() as session:
        # Check if already seeded
        result = await session.execute(select(func.count()).select_from(DriverModel))
        if result.scalar() > 0:
            print("Database already seeded. Skipping.")
            return

    store = SqlAlchemyAssignmentStore(async_session_factory)

    # ── Drivers ───────────────────────────────────────────────────────
    for d in DRIVERS:
        await store.add_driver(DriverRecord(id=d["id"], is_active=d["is_active"]))
    print(f"  Created {len(DRIVERS)} drivers")

    # ── Orders ────────────────────────────────────────────────────────
    for o in ORDERS:
        await store.add_order(Order(id=o["id"], details=o["details"]))
    print(f"  Created {len(ORDERS)} orders")

    # ── Open round ────────────────────────────────────────────────────
    dispatcher = AssignmentRoundDispatcher(store)
    order = await dispatcher.open_round(ROUND["order_id"], ROUND["candidates"])
    print(f"  Offered {order.id} to {', '.join(order.driver_ids())}")

    print("\nSeed complete!")


async def main():
    print("Seeding database...")
    await seed()
    await engine.dispose()


if __name__ == "__main__":
    asyncio.run(main())
