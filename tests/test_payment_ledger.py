import pytest

from app.core.exceptions import (
    GatewayUnavailable,
    PaymentAlreadyOpen,
    PaymentAlreadyRefunded,
    ValidationError,
)
from app.models.booking import Booking
from app.models.payment import Payment
from app.services.payment_ledger import PaymentLedger


@pytest.fixture
def ledger(gateway):
    return PaymentLedger(gateway)


@pytest.fixture
def in_transaction(session_factory, ledger):
    """Run ``fn(db, payment)`` against the row for ``order_id`` in one transaction."""

    async def _run(order_id, fn):
        async with session_factory() as db, db.begin():
            payment = await ledger.get_by_order_id(db, order_id, for_update=True)
            return await fn(db, payment)

    return _run


async def test_open_order_records_created_payment(open_order, gateway):
    opened = await open_order()

    payment = opened.payment
    assert payment.status == "created"
    assert payment.amount == 7500
    assert payment.gateway == "sandbox"
    assert gateway.orders[payment.order_id]["receipt"] == opened.booking.booking_code


async def test_second_open_order_rejected(open_order, session_factory, ledger, customer):
    opened = await open_order()

    with pytest.raises(PaymentAlreadyOpen) as exc_info:
        async with session_factory() as db, db.begin():
            booking = await db.get(Booking, opened.booking.id)
            await ledger.open_order(db, booking, customer.id)
    assert exc_info.value.context["order_id"] == opened.payment.order_id


async def test_gateway_outage_creates_nothing(lifecycle, gateway, vehicle, customer, window, session_factory):
    created = await lifecycle.create_booking(vehicle.id, window(), customer.id)
    gateway.available = False

    with pytest.raises(GatewayUnavailable):
        await lifecycle.open_payment(created.booking.id)

    async with session_factory() as db:
        assert await PaymentLedger(gateway).latest_for_booking(db, created.booking.id) is None
        assert (await db.get(Booking, created.booking.id)).status == "draft"


async def test_repeated_capture_is_noop(open_order, in_transaction, ledger):
    opened = await open_order()

    first = await in_transaction(
        opened.payment.order_id, lambda db, p: ledger.apply_capture(db, p, "pay_one")
    )
    second = await in_transaction(
        opened.payment.order_id, lambda db, p: ledger.apply_capture(db, p, "pay_one")
    )

    assert first.applied is True
    assert second.applied is False
    assert second.payment.captured_amount == 7500


async def test_conflicting_capture_rejected(open_order, in_transaction, ledger):
    opened = await open_order()
    await in_transaction(opened.payment.order_id, lambda db, p: ledger.apply_capture(db, p, "pay_one"))

    with pytest.raises(ValidationError):
        await in_transaction(
            opened.payment.order_id, lambda db, p: ledger.apply_capture(db, p, "pay_two")
        )


async def test_capture_amount_from_event(open_order, in_transaction, ledger):
    opened = await open_order()

    outcome = await in_transaction(
        opened.payment.order_id,
        lambda db, p: ledger.apply_capture(db, p, "pay_one", amount=5000, method="upi"),
    )
    assert outcome.payment.captured_amount == 5000
    assert outcome.payment.method == "upi"


async def test_failure_after_capture_is_noop(open_order, in_transaction, ledger):
    opened = await open_order()
    await in_transaction(opened.payment.order_id, lambda db, p: ledger.apply_capture(db, p, "pay_one"))

    outcome = await in_transaction(
        opened.payment.order_id, lambda db, p: ledger.apply_failure(db, p, "card declined")
    )
    assert outcome.applied is False
    assert outcome.payment.status == "captured"


async def test_unverified_capture_after_failure_rejected(open_order, in_transaction, ledger):
    opened = await open_order()
    failed = await in_transaction(
        opened.payment.order_id, lambda db, p: ledger.apply_failure(db, p, "card declined")
    )
    assert failed.payment.status == "failed"
    assert failed.payment.failure_reason == "card declined"

    with pytest.raises(ValidationError):
        await in_transaction(
            opened.payment.order_id, lambda db, p: ledger.apply_capture(db, p, "pay_one")
        )


async def test_verified_capture_after_failure_recorded(open_order, in_transaction, ledger):
    opened = await open_order()
    await in_transaction(
        opened.payment.order_id, lambda db, p: ledger.apply_failure(db, p, "card declined")
    )

    outcome = await in_transaction(
        opened.payment.order_id,
        lambda db, p: ledger.apply_capture(db, p, "pay_retry", amount=7500, verified=True),
    )
    assert outcome.applied is True
    assert outcome.payment.status == "captured"
    assert outcome.payment.gateway_payment_id == "pay_retry"
    assert outcome.payment.captured_amount == 7500


async def test_refund_cannot_exceed_capture(open_order, in_transaction, ledger):
    opened = await open_order()
    await in_transaction(opened.payment.order_id, lambda db, p: ledger.apply_capture(db, p, "pay_one"))

    with pytest.raises(ValidationError):
        await in_transaction(
            opened.payment.order_id,
            lambda db, p: ledger.apply_refund(db, p, "rfnd_1", 7501),
        )


async def test_refund_requires_capture(open_order, in_transaction, ledger):
    opened = await open_order()

    with pytest.raises(ValidationError):
        await in_transaction(
            opened.payment.order_id,
            lambda db, p: ledger.apply_refund(db, p, "rfnd_1", 100),
        )


async def test_refund_through_gateway(open_order, in_transaction, ledger, gateway):
    opened = await open_order()
    await in_transaction(opened.payment.order_id, lambda db, p: ledger.apply_capture(db, p, "pay_one"))

    outcome = await in_transaction(
        opened.payment.order_id, lambda db, p: ledger.refund_captured(db, p, 2000)
    )

    payment = outcome.payment
    assert payment.status == "refunded"
    assert payment.refund_amount == 2000
    assert gateway.refunds[payment.refund_id]["payment_id"] == "pay_one"

    with pytest.raises(PaymentAlreadyRefunded):
        await in_transaction(
            opened.payment.order_id, lambda db, p: ledger.refund_captured(db, p)
        )


async def test_gateway_refund_failure_leaves_payment_captured(
    open_order, in_transaction, ledger, gateway, reload
):
    opened = await open_order()
    await in_transaction(opened.payment.order_id, lambda db, p: ledger.apply_capture(db, p, "pay_one"))
    gateway.available = False

    with pytest.raises(GatewayUnavailable):
        await in_transaction(opened.payment.order_id, lambda db, p: ledger.refund_captured(db, p))

    payment = await reload(Payment, opened.payment.id)
    assert payment.status == "captured"
    assert payment.refund_amount == 0
