"""
Unit tests for the transaction bodies and the order invariants.

The bodies are pure functions on an ``Order`` snapshot, so no store is
involved here.
"""

import copy
from datetime import datetime, timedelta, timezone

import pytest

from orderclaim.domain.claims import (
    apply_claim,
    apply_expiry,
    apply_reject,
    claim_outcome,
    open_round,
)
from orderclaim.domain.entities import (
    Candidate,
    DriverAssignment,
    InvalidStateTransition,
    InvariantViolation,
    Order,
    validate_order,
)
from orderclaim.domain.enums import AssignmentStatus, ClaimOutcome, OrderStatus
from orderclaim.domain.errors import FailedPrecondition, InvalidArgument, PermissionDenied

T0 = datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)
T1 = T0 + timedelta(seconds=5)


def _offered(*drivers: str) -> Order:
    return open_round(Order(id="ord-1"), [Candidate(d) for d in drivers], T0)


def _statuses(order: Order) -> dict[str, AssignmentStatus]:
    return {a.driver_id: a.status for a in order.assignments}


class TestOpenRound:
    def test_creates_pending_assignments(self):
        order = _offered("d1", "d2")
        assert order.status == OrderStatus.ASSIGNMENT_PENDING
        assert _statuses(order) == {
            "d1": AssignmentStatus.PENDING,
            "d2": AssignmentStatus.PENDING,
        }
        assert all(a.assigned_at == T0 for a in order.assignments)
        validate_order(order)

    def test_requires_candidates(self):
        with pytest.raises(InvalidArgument):
            open_round(Order(id="ord-1"), [], T0)

    def test_rejects_duplicate_candidates(self):
        with pytest.raises(InvalidArgument):
            open_round(Order(id="ord-1"), [Candidate("d1"), Candidate("d1")], T0)

    def test_not_while_offers_are_outstanding(self):
        with pytest.raises(FailedPrecondition):
            open_round(_offered("d1"), [Candidate("d2")], T0)

    def test_not_after_assignment(self):
        order = apply_claim(_offered("d1"), "d1", T1)
        with pytest.raises(FailedPrecondition):
            open_round(order, [Candidate("d2")], T1)

    def test_reassignment_replaces_rejected_round(self):
        order = apply_reject(_offered("d1"), "d1", T1)
        assert order.status == OrderStatus.REASSIGN_NEEDED

        order = open_round(order, [Candidate("d2"), Candidate("d3")], T1)
        assert order.status == OrderStatus.ASSIGNMENT_PENDING
        assert order.driver_ids() == ["d2", "d3"]
        validate_order(order)


class TestClaim:
    def test_first_claim_wins_and_rejects_the_rest(self):
        order = apply_claim(_offered("d1", "d2", "d3"), "d2", T1)
        assert order.status == OrderStatus.ASSIGNED
        assert order.assigned_driver_id == "d2"
        assert order.claimed_at == T1
        assert _statuses(order) == {
            "d1": AssignmentStatus.REJECTED,
            "d2": AssignmentStatus.ACCEPTED,
            "d3": AssignmentStatus.REJECTED,
        }
        assert order.assignment_for("d2").accepted_at == T1
        assert order.assignment_for("d1").rejected_at == T1
        assert claim_outcome(order, "d2") is ClaimOutcome.SUCCESS
        validate_order(order)

    def test_second_claim_changes_nothing(self):
        won = apply_claim(_offered("d1", "d2"), "d1", T0)
        again = apply_claim(copy.deepcopy(won), "d2", T1)
        assert again == won
        assert claim_outcome(again, "d2") is ClaimOutcome.ALREADY_TAKEN

    def test_winner_repeating_claim_still_succeeds(self):
        won = apply_claim(_offered("d1", "d2"), "d1", T0)
        assert claim_outcome(apply_claim(won, "d1", T1), "d1") is ClaimOutcome.SUCCESS

    def test_non_candidate_is_denied(self):
        with pytest.raises(PermissionDenied):
            apply_claim(_offered("d1"), "intruder", T1)

    def test_non_candidate_is_denied_even_after_assignment(self):
        won = apply_claim(_offered("d1"), "d1", T0)
        with pytest.raises(PermissionDenied):
            apply_claim(won, "intruder", T1)

    def test_claim_after_own_reject_wins_open_round(self):
        order = apply_reject(_offered("d1", "d2"), "d1", T0)
        order = apply_claim(order, "d1", T1)

        assert claim_outcome(order, "d1") is ClaimOutcome.SUCCESS
        assert order.status == OrderStatus.ASSIGNED
        assert _statuses(order) == {
            "d1": AssignmentStatus.ACCEPTED,
            "d2": AssignmentStatus.REJECTED,
        }
        assert order.assignment_for("d1").accepted_at == T1
        validate_order(order)

    def test_claim_after_expiry_wins_open_round(self):
        order = _offered("d1", "d2")
        order.assignment_for("d2").assigned_at = T1
        order = apply_expiry(order, T0, T1)
        assert _statuses(order)["d1"] == AssignmentStatus.REJECTED
        assert order.status == OrderStatus.ASSIGNMENT_PENDING

        order = apply_claim(order, "d1", T1)
        assert order.assigned_driver_id == "d1"

    def test_claim_on_exhausted_round_is_denied(self):
        order = apply_reject(_offered("d1", "d2"), "d1", T0)
        order = apply_reject(order, "d2", T0)
        assert order.status == OrderStatus.REASSIGN_NEEDED

        snapshot = copy.deepcopy(order)
        with pytest.raises(PermissionDenied):
            apply_claim(order, "d1", T1)
        assert order == snapshot


class TestReject:
    def test_partial_reject_keeps_round_open(self):
        order = apply_reject(_offered("d1", "d2"), "d1", T1)
        assert order.status == OrderStatus.ASSIGNMENT_PENDING
        assert _statuses(order)["d1"] == AssignmentStatus.REJECTED
        assert order.assignment_for("d1").rejected_at == T1

    def test_last_reject_requests_reassignment(self):
        order = apply_reject(_offered("d1", "d2"), "d1", T0)
        order = apply_reject(order, "d2", T1)
        assert order.status == OrderStatus.REASSIGN_NEEDED
        validate_order(order)

    def test_reject_is_idempotent(self):
        once = apply_reject(_offered("d1", "d2"), "d1", T0)
        twice = apply_reject(copy.deepcopy(once), "d1", T1)
        assert twice == once

    def test_reject_after_claim_is_moot(self):
        won = apply_claim(_offered("d1", "d2"), "d1", T0)
        assert apply_reject(copy.deepcopy(won), "d2", T1) == won
        assert apply_reject(copy.deepcopy(won), "d1", T1) == won

    def test_non_candidate_is_denied(self):
        with pytest.raises(PermissionDenied):
            apply_reject(_offered("d1"), "intruder", T1)


class TestExpiry:
    def test_rejects_only_stale_pending_offers(self):
        order = _offered("d1", "d2")
        order.assignment_for("d2").assigned_at = T1
        order = apply_expiry(order, cutoff=T0, now=T1)
        assert _statuses(order) == {
            "d1": AssignmentStatus.REJECTED,
            "d2": AssignmentStatus.PENDING,
        }
        assert order.status == OrderStatus.ASSIGNMENT_PENDING

    def test_expiring_everything_requests_reassignment(self):
        order = apply_expiry(_offered("d1", "d2"), cutoff=T0, now=T1)
        assert order.status == OrderStatus.REASSIGN_NEEDED

    def test_assigned_order_is_untouched(self):
        won = apply_claim(_offered("d1", "d2"), "d1", T0)
        assert apply_expiry(copy.deepcopy(won), cutoff=T1, now=T1) == won


class TestValidateOrder:
    def test_rejects_illegal_transition(self):
        previous = Order(id="ord-1")
        order = Order(id="ord-1", status=OrderStatus.ASSIGNED)
        with pytest.raises(InvalidStateTransition):
            validate_order(order, previous)

    def test_rejects_two_accepted_drivers(self):
        order = Order(
            id="ord-1",
            status=OrderStatus.ASSIGNED,
            assigned_driver_id="d1",
            assignments=[
                DriverAssignment("d1", AssignmentStatus.ACCEPTED),
                DriverAssignment("d2", AssignmentStatus.ACCEPTED),
            ],
        )
        with pytest.raises(InvariantViolation):
            validate_order(order)

    def test_rejects_assigned_without_acceptance(self):
        order = Order(
            id="ord-1",
            status=OrderStatus.ASSIGNED,
            assignments=[DriverAssignment("d1", AssignmentStatus.PENDING)],
        )
        with pytest.raises(InvariantViolation):
            validate_order(order)

    def test_rejects_mismatched_assigned_driver(self):
        order = Order(
            id="ord-1",
            status=OrderStatus.ASSIGNED,
            assigned_driver_id="d2",
            assignments=[DriverAssignment("d1", AssignmentStatus.ACCEPTED)],
        )
        with pytest.raises(InvariantViolation):
            validate_order(order)

    def test_rejects_all_rejected_while_pending(self):
        order = Order(
            id="ord-1",
            status=OrderStatus.ASSIGNMENT_PENDING,
            assignments=[DriverAssignment("d1", AssignmentStatus.REJECTED)],
        )
        with pytest.raises(InvariantViolation):
            validate_order(order)

    def test_rejects_duplicate_drivers(self):
        order = Order(
            id="ord-1",
            status=OrderStatus.ASSIGNMENT_PENDING,
            assignments=[DriverAssignment("d1"), DriverAssignment("d1")],
        )
        with pytest.raises(InvariantViolation):
            validate_order(order)

    def test_transition_to_enforces_state_machine(self):
        order = Order(id="ord-1", status=OrderStatus.ASSIGNED)
        with pytest.raises(InvalidStateTransition):
            order.transition_to(OrderStatus.ASSIGNMENT_PENDING)
