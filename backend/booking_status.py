"""
Booking status state machine.

The service-delivery track (pending -> confirmed -> in_progress -> completed)
and the payment track (pending -> processing -> payment_failed) share one
status field. Terminal statuses have no outgoing edges; an admin override
can still move a booking anywhere, and such moves are logged.
"""
import logging
from typing import Dict, FrozenSet, List, Optional

from db_models import BookingStatus
from errors import InvalidTransitionError

logger = logging.getLogger(__name__)

S = BookingStatus

VALID_TRANSITIONS: Dict[BookingStatus, FrozenSet[BookingStatus]] = {
    S.PENDING: frozenset({S.PROCESSING, S.CONFIRMED, S.DECLINED, S.CANCELLED}),
    S.PROCESSING: frozenset({S.CONFIRMED, S.PAYMENT_FAILED, S.CANCELLED}),
    S.CONFIRMED: frozenset({S.IN_PROGRESS, S.RESCHEDULED, S.CANCELLED, S.NO_SHOW}),
    S.RESCHEDULED: frozenset({S.IN_PROGRESS, S.CANCELLED, S.NO_SHOW}),
    S.IN_PROGRESS: frozenset({S.COMPLETED, S.CANCELLED}),
    S.COMPLETED: frozenset(),
    S.DECLINED: frozenset(),
    S.CANCELLED: frozenset(),
    S.PAYMENT_FAILED: frozenset(),
    S.NO_SHOW: frozenset(),
}

TERMINAL_STATUSES = frozenset(status for status, targets in VALID_TRANSITIONS.items() if not targets)

# Higher = further along the workflow; ended bookings sit at 0
STATUS_PRIORITY = {
    S.PENDING: 1,
    S.PROCESSING: 2,
    S.PAYMENT_FAILED: 2,
    S.CONFIRMED: 3,
    S.RESCHEDULED: 3,
    S.IN_PROGRESS: 4,
    S.COMPLETED: 5,
    S.DECLINED: 0,
    S.CANCELLED: 0,
    S.NO_SHOW: 0,
}

# Statuses a customer may cancel from
CANCELLABLE_STATUSES = frozenset({S.PENDING, S.CONFIRMED, S.RESCHEDULED})

# Statuses awaiting payment
PAYMENT_REQUIRED_STATUSES = frozenset({S.PROCESSING, S.PAYMENT_FAILED})

# Status changes the customer hears about by email
CUSTOMER_NOTIFIED_STATUSES = frozenset({S.CONFIRMED, S.CANCELLED, S.COMPLETED})

STATUS_LABELS = {
    S.PENDING: "Pending Review",
    S.PROCESSING: "Processing Payment",
    S.PAYMENT_FAILED: "Payment Failed",
    S.CONFIRMED: "Confirmed",
    S.RESCHEDULED: "Rescheduled",
    S.IN_PROGRESS: "Service In Progress",
    S.COMPLETED: "Completed",
    S.DECLINED: "Declined",
    S.CANCELLED: "Cancelled",
    S.NO_SHOW: "No Show",
}


def get_status_label(status: BookingStatus) -> str:
    return STATUS_LABELS.get(status, status.value)


def is_valid_transition(from_status: BookingStatus, to_status: BookingStatus) -> bool:
    return to_status in VALID_TRANSITIONS.get(from_status, frozenset())


def get_valid_next_statuses(status: BookingStatus) -> List[BookingStatus]:
    """Allowed targets from `status`, most advanced first."""
    return sorted(
        VALID_TRANSITIONS.get(status, frozenset()),
        key=lambda s: (-STATUS_PRIORITY[s], s.value),
    )


def is_backwards_transition(from_status: BookingStatus, to_status: BookingStatus) -> bool:
    """
    True for moves that undo progress.

    Either an ended booking is reactivated (e.g. cancelled -> pending) or
    a live booking drops to an earlier stage (e.g. completed -> pending).
    """
    if from_status in TERMINAL_STATUSES and to_status not in TERMINAL_STATUSES:
        return True
    to_priority = STATUS_PRIORITY[to_status]
    return 0 < to_priority < STATUS_PRIORITY[from_status]


def validate_transition(
    from_status: BookingStatus,
    to_status: BookingStatus,
    override: bool = False,
    booking_reference: str = None,
) -> Optional[str]:
    """
    Check a status change against the transition table.

    Args:
        from_status: Current status
        to_status: Requested status
        override: Admin override; allows any move but logs it
        booking_reference: Used in log messages only

    Returns:
        A warning message for overridden moves, None for regular ones

    Raises:
        InvalidTransitionError: move not allowed and no override
    """
    if is_valid_transition(from_status, to_status):
        return None

    if not override:
        raise InvalidTransitionError(
            f'Cannot transition from "{from_status.value}" to "{to_status.value}". Invalid status change.',
            details={
                "from_status": from_status.value,
                "to_status": to_status.value,
                "allowed": [s.value for s in get_valid_next_statuses(from_status)],
            },
        )

    label = booking_reference or "booking"
    if is_backwards_transition(from_status, to_status):
        warning = f"Backwards status override on {label}: {from_status.value} -> {to_status.value}"
        logger.error(warning)
    else:
        warning = f"Status override on {label}: {from_status.value} -> {to_status.value}"
        logger.warning(warning)
    return warning
