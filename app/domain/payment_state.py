"""Payment state machine and related status enums."""

from enum import Enum

from app.core.exceptions import ValidationError


class PaymentStatus(str, Enum):
    """Gateway payment statuses."""

    CREATED = "created"
    AUTHORIZED = "authorized"
    CAPTURED = "captured"
    FAILED = "failed"
    REFUNDED = "refunded"


class BookingPaymentStatus(str, Enum):
    """Denormalized payment snapshot stored on the booking."""

    UNPAID = "Unpaid"
    PARTIALLY_PAID = "PartiallyPaid"
    PAID = "Paid"
    REFUNDED = "Refunded"


class VehicleStatus(str, Enum):
    """Vehicle availability statuses."""

    AVAILABLE = "Available"
    RENTED = "Rented"
    MAINTENANCE = "Maintenance"
    INACTIVE = "Inactive"


PAYMENT_TRANSITIONS: dict[PaymentStatus, frozenset[PaymentStatus]] = {
    PaymentStatus.CREATED: frozenset(
        {PaymentStatus.AUTHORIZED, PaymentStatus.CAPTURED, PaymentStatus.FAILED}
    ),
    PaymentStatus.AUTHORIZED: frozenset({PaymentStatus.CAPTURED, PaymentStatus.FAILED}),
    PaymentStatus.CAPTURED: frozenset({PaymentStatus.REFUNDED}),
    PaymentStatus.FAILED: frozenset(),
    PaymentStatus.REFUNDED: frozenset(),
}

# A booking may carry at most one payment in these statuses
OPEN_PAYMENT_STATUSES: frozenset[PaymentStatus] = frozenset(
    {PaymentStatus.CREATED, PaymentStatus.AUTHORIZED, PaymentStatus.CAPTURED}
)


def assert_payment_transition(current: str, target: str) -> None:
    allowed = PAYMENT_TRANSITIONS.get(PaymentStatus(current), frozenset())
    if PaymentStatus(target) not in allowed:
        raise ValidationError(
            f"Invalid payment transition: {current} → {target}"
        )
