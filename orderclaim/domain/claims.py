"""
Claim / Reject Transaction Bodies
=================================

Pure functions run *inside* a store transaction.  Each receives a private
copy of the current ``Order`` and returns the order to persist; returning
it unchanged means "no write".  Raising aborts the transaction without a
mutation.  Because the store may re-run a body against a fresher snapshot
after a write conflict, none of them touch anything but the order.

Rules
-----
* **claim**   -- first committed claim wins.  The caller becomes ACCEPTED,
  every other candidate REJECTED, the order ASSIGNED.  A claim that finds
  an ACCEPTED assignment changes nothing; the caller then reads the
  outcome off the committed order (``claim_outcome``).  A candidate who
  rejected earlier may still claim while the round is ASSIGNMENT_PENDING;
  once the order reached REASSIGN_NEEDED every claim is denied.
* **reject**  -- moot once someone accepted.  Otherwise the caller becomes
  REJECTED and, when no PENDING assignment is left, the order moves to
  REASSIGN_NEEDED.  That move happens once: later bodies see the new status.
* **expire**  -- server-side sweep; rejects PENDING assignments offered at
  or before a cutoff, with the same reassignment rule.
* **open_round** -- replaces the candidate set.  Rejected entries from an
  earlier round are never resurrected.

There is no ordering between candidates: whichever transaction the store
serialises first decides the winner.

Complexity: O(k) per body, k = candidates in the round.
"""

from __future__ import annotations

from datetime import datetime
from typing import Iterable

from .entities import Candidate, DriverAssignment, Order
from .enums import AssignmentStatus, ClaimOutcome, OrderStatus
from .errors import FailedPrecondition, InvalidArgument, PermissionDenied


def _candidate_assignment(order: Order, driver_id: str) -> DriverAssignment:
    assignment = order.assignment_for(driver_id)
    if assignment is None:
        raise PermissionDenied("Driver not in assigned list")
    return assignment


def _reject(assignment: DriverAssignment, now: datetime) -> None:
    assignment.status = AssignmentStatus.REJECTED
    assignment.rejected_at = now


def _mark_reassign_if_exhausted(order: Order) -> None:
    if order.status != OrderStatus.ASSIGNMENT_PENDING or not order.assignments:
        return
    if all(a.status == AssignmentStatus.REJECTED for a in order.assignments):
        order.transition_to(OrderStatus.REASSIGN_NEEDED)


def apply_claim(order: Order, driver_id: str, now: datetime) -> Order:
    assignment = _candidate_assignment(order, driver_id)

    if order.accepted() is not None:
        return order  # race already resolved

    if order.status == OrderStatus.REASSIGN_NEEDED:
        raise PermissionDenied("Offer is no longer pending for this driver")

    assignment.status = AssignmentStatus.ACCEPTED
    assignment.accepted_at = now
    for other in order.assignments:
        if other is not assignment:
            _reject(other, now)

    order.transition_to(OrderStatus.ASSIGNED)
    order.assigned_driver_id = driver_id
    order.claimed_at = now
    return order


def claim_outcome(order: Order, driver_id: str) -> ClaimOutcome:
    """Read the caller's outcome off a committed order."""
    if order.assigned_driver_id == driver_id:
        return ClaimOutcome.SUCCESS
    return ClaimOutcome.ALREADY_TAKEN


def apply_reject(order: Order, driver_id: str, now: datetime) -> Order:
    assignment = _candidate_assignment(order, driver_id)

    if order.accepted() is not None:
        return order

    if assignment.is_pending:
        _reject(assignment, now)
    _mark_reassign_if_exhausted(order)
    return order


def apply_expiry(order: Order, cutoff: datetime, now: datetime) -> Order:
    if order.status != OrderStatus.ASSIGNMENT_PENDING or order.accepted() is not None:
        return order

    for assignment in order.pending():
        if assignment.assigned_at is not None and assignment.assigned_at <= cutoff:
            _reject(assignment, now)
    _mark_reassign_if_exhausted(order)
    return order


def open_round(
    order: Order, candidates: Iterable[Candidate], now: datetime
) -> Order:
    candidates = list(candidates)
    if not candidates:
        raise InvalidArgument("At least one candidate is required")
    ids = [c.driver_id for c in candidates]
    if len(ids) != len(set(ids)):
        raise InvalidArgument("Candidates must be distinct drivers")
    if order.status not in (OrderStatus.PENDING, OrderStatus.REASSIGN_NEEDED):
        raise FailedPrecondition(
            f"Cannot open an assignment round for an order in status {order.status.value}"
        )

    order.assignments = [
        DriverAssignment(
            driver_id=c.driver_id,
            status=AssignmentStatus.PENDING,
            assigned_at=now,
            estimated_distance=c.estimated_distance,
            estimated_time=c.estimated_time,
        )
        for c in candidates
    ]
    order.assigned_driver_id = None
    order.claimed_at = None
    order.transition_to(OrderStatus.ASSIGNMENT_PENDING)
    return order
