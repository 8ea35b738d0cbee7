"""Booking state machine.

The transition table is static data. Every status change in the system is
checked against it, and nothing else decides whether a change is legal.
"""

from enum import Enum

from app.core.exceptions import InvalidTransition


class BookingStatus(str, Enum):
    """Booking lifecycle statuses."""

    DRAFT = "draft"
    PENDING_PAYMENT = "pending_payment"
    CONFIRMED = "confirmed"
    ASSIGNED = "assigned"
    ONGOING = "ongoing"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"


BOOKING_TRANSITIONS: dict[BookingStatus, frozenset[BookingStatus]] = {
    BookingStatus.DRAFT: frozenset({BookingStatus.PENDING_PAYMENT, BookingStatus.CANCELLED}),
    BookingStatus.PENDING_PAYMENT: frozenset({BookingStatus.CONFIRMED, BookingStatus.CANCELLED}),
    BookingStatus.CONFIRMED: frozenset({BookingStatus.ASSIGNED, BookingStatus.CANCELLED}),
    BookingStatus.ASSIGNED: frozenset({BookingStatus.ONGOING, BookingStatus.CANCELLED}),
    BookingStatus.ONGOING: frozenset({BookingStatus.COMPLETED}),
    BookingStatus.COMPLETED: frozenset({BookingStatus.REFUNDED}),
    BookingStatus.CANCELLED: frozenset({BookingStatus.REFUNDED}),
    BookingStatus.REFUNDED: frozenset(),
}

STATUS_LABELS: dict[BookingStatus, str] = {
    BookingStatus.DRAFT: "Draft",
    BookingStatus.PENDING_PAYMENT: "Pending Payment",
    BookingStatus.CONFIRMED: "Confirmed",
    BookingStatus.ASSIGNED: "Driver Assigned",
    BookingStatus.ONGOING: "Trip in Progress",
    BookingStatus.COMPLETED: "Completed",
    BookingStatus.CANCELLED: "Cancelled",
    BookingStatus.REFUNDED: "Refunded",
}

# Statuses in which the booking holds its vehicle. The hold starts at draft.
ACTIVE_HOLD_STATUSES: frozenset[BookingStatus] = frozenset(
    {
        BookingStatus.DRAFT,
        BookingStatus.PENDING_PAYMENT,
        BookingStatus.CONFIRMED,
        BookingStatus.ASSIGNED,
        BookingStatus.ONGOING,
    }
)

TERMINAL_STATUSES: frozenset[BookingStatus] = frozenset(
    status for status, targets in BOOKING_TRANSITIONS.items() if not targets
)

# Pre-state-machine status strings still present in old records
LEGACY_STATUS_MAP: dict[str, BookingStatus] = {
    "Pending": BookingStatus.PENDING_PAYMENT,
    "Confirmed": BookingStatus.CONFIRMED,
    "Active": BookingStatus.ONGOING,
    "Completed": BookingStatus.COMPLETED,
    "Cancelled": BookingStatus.CANCELLED,
}


def _coerce(status: str | BookingStatus) -> BookingStatus | None:
    try:
        return BookingStatus(status)
    except ValueError:
        return None


def can_transition(current: str | BookingStatus, target: str | BookingStatus) -> bool:
    """Return True when ``current -> target`` is an edge. Never raises."""
    source = _coerce(current)
    destination = _coerce(target)
    if source is None or destination is None:
        return False
    return destination in BOOKING_TRANSITIONS[source]


def allowed_transitions(current: str | BookingStatus) -> frozenset[BookingStatus]:
    """Statuses reachable in one step from ``current``."""
    source = _coerce(current)
    if source is None:
        return frozenset()
    return BOOKING_TRANSITIONS[source]


def is_terminal(status: str | BookingStatus) -> bool:
    return _coerce(status) in TERMINAL_STATUSES


def holds_vehicle(status: str | BookingStatus) -> bool:
    return _coerce(status) in ACTIVE_HOLD_STATUSES


def assert_booking_transition(current: str | BookingStatus, target: str | BookingStatus) -> None:
    """Raise InvalidTransition (with the allowed set) unless the edge exists."""
    if not can_transition(current, target):
        raise InvalidTransition(
            current=str(getattr(current, "value", current)),
            target=str(getattr(target, "value", target)),
            allowed=[s.value for s in allowed_transitions(current)],
        )


def map_legacy_status(legacy_status: str) -> BookingStatus:
    """Map a legacy status string onto the state machine; unknown values become draft."""
    known = _coerce(legacy_status)
    if known is not None:
        return known
    return LEGACY_STATUS_MAP.get(legacy_status, BookingStatus.DRAFT)
