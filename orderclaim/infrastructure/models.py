"""
SQLAlchemy ORM models.

Tables
------
* ``orders``   -- one row per delivery order; the assignment round lives
  in the ``assignments`` JSON column so a claim rewrites a single row.
* ``drivers``  -- one row per courier, holding the outstanding offer.

Both tables carry a ``version`` column registered as the mapper's
``version_id_col``: every UPDATE is issued as
``... WHERE id = :id AND version = :seen`` and SQLAlchemy raises
``StaleDataError`` when another transaction committed first.  That is
the optimistic check the assignment store retries on.

Indexes
-------
* **B-Tree** on ``orders.status`` for the expiry sweep.
"""

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Enum,
    Index,
    Integer,
    String,
    func,
)

from .database import Base
from orderclaim.domain.enums import OrderStatus


class OrderModel(Base):
    __tablename__ = "orders"

    id = Column(String(64), primary_key=True)
    status = Column(Enum(OrderStatus), default=OrderStatus.PENDING, nullable=False)
    assignments = Column(JSON, nullable=False, default=list)
    assigned_driver_id = Column(String(64), nullable=True)
    claimed_at = Column(DateTime(timezone=True), nullable=True)
    details = Column(JSON, nullable=False, default=dict)
    version = Column(Integer, nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (Index("idx_orders_status", "status"),)


class DriverModel(Base):
    __tablename__ = "drivers"

    id = Column(String(64), primary_key=True)
    offer_ref = Column(JSON, nullable=True)
    in_progress_order_id = Column(String(64), nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)
    version = Column(Integer, nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    __mapper_args__ = {"version_id_col": version}
