"""Domain enumerations and state-transition rules."""

import enum


class OrderStatus(str, enum.Enum):
    PENDING = "PENDING"
    ASSIGNMENT_PENDING = "ASSIGNMENT_PENDING"
    ASSIGNED = "ASSIGNED"
    REASSIGN_NEEDED = "REASSIGN_NEEDED"


# State machine: maps current status -> set of valid next statuses
ORDER_TRANSITIONS: dict[OrderStatus, set[OrderStatus]] = {
    OrderStatus.PENDING: {OrderStatus.ASSIGNMENT_PENDING},
    OrderStatus.ASSIGNMENT_PENDING: {
        OrderStatus.ASSIGNED,
        OrderStatus.REASSIGN_NEEDED,
    },
    OrderStatus.REASSIGN_NEEDED: {OrderStatus.ASSIGNMENT_PENDING},
    OrderStatus.ASSIGNED: set(),
}


class AssignmentStatus(str, enum.Enum):
    PENDING = "PENDING"
    ACCEPTED = "ACCEPTED"
    REJECTED = "REJECTED"


class ClaimOutcome(str, enum.Enum):
    SUCCESS = "SUCCESS"
    ALREADY_TAKEN = "ALREADY_TAKEN"
