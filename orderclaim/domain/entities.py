"""
Domain entities with business logic.

Patterns used
-------------
- **State Pattern** on ``Order``: enforces valid lifecycle transitions
  (PENDING -> ASSIGNMENT_PENDING -> ASSIGNED | REASSIGN_NEEDED).
- ``validate_order`` encapsulates the assignment invariants checked at the
  store boundary before anything is persisted.
- ``to_dict`` / ``from_dict`` are the only (de)serialisation path, so
  statuses read back from storage always go through the closed enums.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional

from .enums import AssignmentStatus, ORDER_TRANSITIONS, OrderStatus


class InvalidStateTransition(Exception):
    """Raised when an order status change violates the state machine."""


class InvariantViolation(Exception):
    """Raised when an order's assignments contradict its status."""


def _dt(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


# ── Value Objects ─────────────────────────────────────────────────────


@dataclass(frozen=True)
class OfferRef:
    """What a driver's record points at while an offer is outstanding."""

    order_id: str
    assigned_at: datetime
    estimated_distance: float = 0.0
    estimated_time: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "order_id": self.order_id,
            "assigned_at": _iso(self.assigned_at),
            "estimated_distance": self.estimated_distance,
            "estimated_time": self.estimated_time,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "OfferRef":
        return cls(
            order_id=str(data["order_id"]),
            assigned_at=_dt(data["assigned_at"]),
            estimated_distance=float(data.get("estimated_distance", 0.0)),
            estimated_time=str(data.get("estimated_time", "")),
        )


@dataclass(frozen=True)
class Candidate:
    """A pre-ranked driver handed to an assignment round."""

    driver_id: str
    estimated_distance: float = 0.0
    estimated_time: str = ""


# ── Entities ──────────────────────────────────────────────────────────


@dataclass
class DriverAssignment:
    driver_id: str
    status: AssignmentStatus = AssignmentStatus.PENDING
    assigned_at: Optional[datetime] = None
    accepted_at: Optional[datetime] = None
    rejected_at: Optional[datetime] = None
    estimated_distance: float = 0.0
    estimated_time: str = ""

    @property
    def is_pending(self) -> bool:
        return self.status == AssignmentStatus.PENDING

    def offer_ref(self, order_id: str) -> OfferRef:
        return OfferRef(
            order_id=order_id,
            assigned_at=self.assigned_at,
            estimated_distance=self.estimated_distance,
            estimated_time=self.estimated_time,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "driver_id": self.driver_id,
            "status": self.status.value,
            "assigned_at": _iso(self.assigned_at),
            "accepted_at": _iso(self.accepted_at),
            "rejected_at": _iso(self.rejected_at),
            "estimated_distance": self.estimated_distance,
            "estimated_time": self.estimated_time,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "DriverAssignment":
        return cls(
            driver_id=str(data["driver_id"]),
            status=AssignmentStatus(data["status"]),
            assigned_at=_dt(data.get("assigned_at")),
            accepted_at=_dt(data.get("accepted_at")),
            rejected_at=_dt(data.get("rejected_at")),
            estimated_distance=float(data.get("estimated_distance", 0.0)),
            estimated_time=str(data.get("estimated_time", "")),
        )


@dataclass
class Order:
    id: str
    status: OrderStatus = OrderStatus.PENDING
    assignments: list[DriverAssignment] = field(default_factory=list)
    assigned_driver_id: Optional[str] = None
    claimed_at: Optional[datetime] = None
    details: dict[str, Any] = field(default_factory=dict)

    def assignment_for(self, driver_id: str) -> Optional[DriverAssignment]:
        for assignment in self.assignments:
            if assignment.driver_id == driver_id:
                return assignment
        return None

    def accepted(self) -> Optional[DriverAssignment]:
        for assignment in self.assignments:
            if assignment.status == AssignmentStatus.ACCEPTED:
                return assignment
        return None

    def pending(self) -> list[DriverAssignment]:
        return [a for a in self.assignments if a.is_pending]

    def driver_ids(self) -> list[str]:
        return [a.driver_id for a in self.assignments]

    def transition_to(self, new_status: OrderStatus) -> None:
        """Move to *new_status* if the transition is legal, else raise."""
        allowed = ORDER_TRANSITIONS.get(self.status, set())
        if new_status not in allowed:
            raise InvalidStateTransition(
                f"Cannot transition from {self.status} to {new_status}"
            )
        self.status = new_status

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "status": self.status.value,
            "assignments": [a.to_dict() for a in self.assignments],
            "assigned_driver_id": self.assigned_driver_id,
            "claimed_at": _iso(self.claimed_at),
            "details": self.details,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Order":
        return cls(
            id=str(data["id"]),
            status=OrderStatus(data["status"]),
            assignments=[
                DriverAssignment.from_dict(a) for a in data.get("assignments") or []
            ],
            assigned_driver_id=data.get("assigned_driver_id"),
            claimed_at=_dt(data.get("claimed_at")),
            details=dict(data.get("details") or {}),
        )


@dataclass
class DriverRecord:
    id: str
    offer_ref: Optional[OfferRef] = None
    in_progress_order_id: Optional[str] = None
    is_active: bool = True

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "offer_ref": self.offer_ref.to_dict() if self.offer_ref else None,
            "in_progress_order_id": self.in_progress_order_id,
            "is_active": self.is_active,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "DriverRecord":
        ref = data.get("offer_ref")
        return cls(
            id=str(data["id"]),
            offer_ref=OfferRef.from_dict(ref) if ref else None,
            in_progress_order_id=data.get("in_progress_order_id"),
            is_active=bool(data.get("is_active", True)),
        )


# ── Store-boundary validation ─────────────────────────────────────────


def validate_order(order: Order, previous: Optional[Order] = None) -> None:
    """
    Raise unless *order* satisfies the assignment invariants.

    When *previous* is given the status change must also be a legal
    transition of the order state machine.
    """
    if previous is not None and previous.status != order.status:
        if order.status not in ORDER_TRANSITIONS.get(previous.status, set()):
            raise InvalidStateTransition(
                f"Cannot transition from {previous.status} to {order.status}"
            )

    ids = order.driver_ids()
    if len(ids) != len(set(ids)):
        raise InvariantViolation(f"Order {order.id} lists a driver twice")

    accepted = [a for a in order.assignments if a.status == AssignmentStatus.ACCEPTED]
    if len(accepted) > 1:
        raise InvariantViolation(f"Order {order.id} has {len(accepted)} accepted drivers")

    if (order.status == OrderStatus.ASSIGNED) != (len(accepted) == 1):
        raise InvariantViolation(
            f"Order {order.id} is {order.status.value} with {len(accepted)} accepted"
        )
    if accepted and order.assigned_driver_id != accepted[0].driver_id:
        raise InvariantViolation(
            f"Order {order.id} assigned_driver_id does not match the accepted driver"
        )

    all_rejected = bool(order.assignments) and all(
        a.status == AssignmentStatus.REJECTED for a in order.assignments
    )
    if (order.status == OrderStatus.REASSIGN_NEEDED) != all_rejected:
        raise InvariantViolation(
            f"Order {order.id} is {order.status.value} but all_rejected={all_rejected}"
        )
