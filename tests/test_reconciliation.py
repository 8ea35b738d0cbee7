import asyncio
import json

import pytest
from sqlalchemy import func, select

from app.core.exceptions import GatewayUnavailable, SignatureError, ValidationError
from app.gateways.base import sign_webhook_payload
from app.models.admin import AuditLog
from app.models.booking import Booking
from app.models.payment import Payment
from app.models.user import User
from app.services.reconciliation_service import ReconciliationService


def snapshot(row) -> dict:
    return {column.key: getattr(row, column.key) for column in row.__table__.columns}


async def test_concurrent_capture_deliveries_apply_once(
    reconciliation, open_order, gateway, lifecycle, driver, admin, customer, reload, session_factory
):
    opened = await open_order()
    payment_id, _ = gateway.checkout(opened.payment.order_id)
    body, signature = gateway.build_webhook("payment.captured", opened.payment.order_id, payment_id, 7500)

    outcomes = await asyncio.gather(
        reconciliation.handle_webhook(body, signature),
        reconciliation.handle_webhook(body, signature),
    )

    assert sorted(o.status for o in outcomes) == ["applied", "duplicate"]
    assert {o.booking_code for o in outcomes} == {opened.booking.booking_code}
    async with session_factory() as db:
        confirmations = await db.scalar(
            select(func.count()).select_from(AuditLog).where(AuditLog.action == "booking_confirmed")
        )
    assert confirmations == 1

    booking_id = opened.booking.id
    await lifecycle.assign_driver(booking_id, driver.id, admin.id)
    await lifecycle.start_trip(booking_id, driver.id)
    await lifecycle.complete_trip(booking_id, driver.id)
    assert (await reload(User, customer.id)).total_bookings == 1


async def test_client_verification_racing_webhook_confirms_once(
    reconciliation, lifecycle, open_order, gateway, session_factory, reload
):
    opened = await open_order()
    order_id = opened.payment.order_id
    payment_id, signature = gateway.checkout(order_id)
    body, webhook_signature = gateway.build_webhook("payment.captured", order_id, payment_id, 7500)

    verified, delivered = await asyncio.gather(
        lifecycle.confirm_payment(opened.booking.id, order_id, payment_id, signature),
        reconciliation.handle_webhook(body, webhook_signature),
    )

    assert sorted([verified.applied, delivered.status == "applied"]) == [False, True]
    booking = await reload(Booking, opened.booking.id)
    assert (booking.status, booking.payment_status) == ("confirmed", "Paid")
    async with session_factory() as db:
        confirmations = await db.scalar(
            select(func.count())
            .select_from(AuditLog)
            .where(AuditLog.action == "booking_confirmed", AuditLog.resource_id == opened.booking.id)
        )
        captures = await db.scalar(
            select(func.count())
            .select_from(AuditLog)
            .where(AuditLog.action == "payment_captured", AuditLog.resource_id == opened.payment.id)
        )
    assert (confirmations, captures) == (1, 1)


async def test_capture_after_failure_notification_is_recorded(
    reconciliation, open_order, gateway, reload
):
    opened = await open_order()
    order_id = opened.payment.order_id
    failed_body, failed_signature = gateway.build_webhook("payment.failed", order_id, "pay_attempt1")
    await reconciliation.handle_webhook(failed_body, failed_signature)

    body, signature = gateway.build_webhook("payment.captured", order_id, "pay_attempt2", 7500)
    outcome = await reconciliation.handle_webhook(body, signature)

    assert outcome.status == "applied"
    payment = await reload(Payment, opened.payment.id)
    assert (payment.status, payment.gateway_payment_id, payment.captured_amount) == (
        "captured",
        "pay_attempt2",
        7500,
    )
    booking = await reload(Booking, opened.booking.id)
    assert (booking.status, booking.payment_status) == ("confirmed", "Paid")

    replay = await reconciliation.handle_webhook(body, signature)
    assert replay.status == "duplicate"


async def test_invalid_signature_leaves_records_unchanged(reconciliation, open_order, gateway, reload):
    opened = await open_order()
    payment_id, _ = gateway.checkout(opened.payment.order_id)
    body, _ = gateway.build_webhook("payment.captured", opened.payment.order_id, payment_id, 7500)
    booking_before = snapshot(await reload(Booking, opened.booking.id))
    payment_before = snapshot(await reload(Payment, opened.payment.id))

    with pytest.raises(SignatureError) as exc_info:
        await reconciliation.handle_webhook(body, "f" * 64)

    assert exc_info.value.status_code == 401
    assert snapshot(await reload(Booking, opened.booking.id)) == booking_before
    assert snapshot(await reload(Payment, opened.payment.id)) == payment_before


async def test_missing_signature_rejected(reconciliation, gateway):
    body, _ = gateway.build_webhook("payment.captured", "order_x", "pay_x", 100)

    with pytest.raises(SignatureError):
        await reconciliation.handle_webhook(body, None)


async def test_failed_event(reconciliation, open_order, gateway):
    opened = await open_order()
    body, signature = gateway.build_webhook("payment.failed", opened.payment.order_id, "pay_failed")

    outcome = await reconciliation.handle_webhook(body, signature)

    assert outcome.status == "applied"
    assert outcome.as_dict() == {
        "received": True,
        "event": "payment.failed",
        "status": "applied",
        "booking": opened.booking.booking_code,
    }

    replay = await reconciliation.handle_webhook(body, signature)
    assert replay.status == "duplicate"


async def test_refund_event(reconciliation, paid_booking, lifecycle, customer, gateway, reload):
    paid = await paid_booking()
    await lifecycle.cancel_booking(paid.booking.id, customer)
    body, signature = gateway.build_webhook(
        "refund.created",
        paid.payment.order_id,
        paid.payment.gateway_payment_id,
        7500,
        refund_id="rfnd_from_gateway",
    )

    first = await reconciliation.handle_webhook(body, signature)
    second = await reconciliation.handle_webhook(body, signature)

    assert (first.status, second.status) == ("applied", "duplicate")
    assert (await reload(Booking, paid.booking.id)).status == "refunded"

    body, signature = gateway.build_webhook(
        "refund.created",
        paid.payment.order_id,
        paid.payment.gateway_payment_id,
        2000,
        refund_id="rfnd_second",
    )
    later = await reconciliation.handle_webhook(body, signature)

    assert later.status == "duplicate"
    payment = await reload(Payment, paid.payment.id)
    assert (payment.refund_id, payment.refund_amount) == ("rfnd_from_gateway", 7500)


async def test_unknown_event_ignored(reconciliation, gateway):
    body, signature = gateway.build_webhook("order.paid", "order_x", "pay_x", 100)

    outcome = await reconciliation.handle_webhook(body, signature)
    assert outcome.status == "ignored"


async def test_unknown_order_acknowledged(reconciliation, gateway):
    body, signature = gateway.build_webhook("payment.captured", "order_unknown", "pay_unknown", 100)

    outcome = await reconciliation.handle_webhook(body, signature)
    assert outcome.status == "ignored"
    assert outcome.booking_code is None


@pytest.mark.parametrize(
    "body",
    [
        b"not json",
        json.dumps(["payment.captured"]).encode(),
        json.dumps({"event": "payment.captured", "payload": {}}).encode(),
        json.dumps({"event": "payment.captured", "payload": {"payment": "x"}}).encode(),
        json.dumps({"event": "refund.created", "payload": {"refund": {"entity": [1]}}}).encode(),
        json.dumps({"event": "payment.failed", "payload": "x"}).encode(),
    ],
)
async def test_malformed_payload_rejected(reconciliation, gateway, body):
    signature = sign_webhook_payload(gateway.webhook_secret, body)

    with pytest.raises(ValidationError):
        await reconciliation.handle_webhook(body, signature)


async def test_unconfigured_webhook_secret(lifecycle, monkeypatch):
    monkeypatch.setattr(type(lifecycle.gateway), "webhook_configured", property(lambda self: False))

    with pytest.raises(GatewayUnavailable):
        await ReconciliationService(lifecycle).handle_webhook(b"{}", "sig")
