import asyncio

import pytest
from sqlalchemy import func, select

from app.core.exceptions import (
    AuthorizationError,
    InvalidTransition,
    NotFoundError,
    ResourceUnavailable,
    SignatureError,
    ValidationError,
)
from app.models.admin import AuditLog
from app.models.booking import Booking
from app.models.payment import Payment
from app.models.user import User
from app.models.vehicle import Vehicle

ACTIVE = ["draft", "pending_payment", "confirmed", "assigned", "ongoing"]


async def assert_exclusive(session_factory, vehicle_id):
    """Vehicle is Rented iff exactly one active booking references it."""
    async with session_factory() as db:
        holders = (
            await db.execute(
                select(Booking.id).where(Booking.vehicle_id == vehicle_id, Booking.status.in_(ACTIVE))
            )
        ).scalars().all()
        vehicle = await db.get(Vehicle, vehicle_id)

    assert len(holders) <= 1
    if holders:
        assert vehicle.status == "Rented"
        assert vehicle.current_booking_id == holders[0]
    else:
        assert vehicle.status != "Rented"
        assert vehicle.current_booking_id is None


async def test_create_booking_holds_vehicle(lifecycle, vehicle, customer, window, session_factory):
    result = await lifecycle.create_booking(vehicle.id, window(3), customer.id)

    booking = result.booking
    assert booking.status == "draft"
    assert booking.payment_status == "Unpaid"
    assert booking.total_amount == 7500
    assert booking.duration == "3 days"
    assert booking.booking_code.startswith("RB-")
    assert result.allowed_transitions == ["cancelled", "pending_payment"]
    await assert_exclusive(session_factory, vehicle.id)


async def test_booking_codes_are_sequential(lifecycle, add, customer, window):
    codes = []
    for n in range(3):
        car = await add(Vehicle(name=f"Car {n}", registration_no=f"KA01ZZ000{n}", price_per_day=1000))
        result = await lifecycle.create_booking(car.id, window(1), customer.id)
        codes.append(result.booking.booking_code)

    numbers = [int(code.rsplit("-", 1)[1]) for code in codes]
    assert numbers == [1, 2, 3]
    assert len({code.rsplit("-", 1)[0] for code in codes}) == 1


async def test_second_booking_for_held_vehicle_rejected(lifecycle, vehicle, customer, other_customer, window):
    await lifecycle.create_booking(vehicle.id, window(), customer.id)

    with pytest.raises(ResourceUnavailable):
        await lifecycle.create_booking(vehicle.id, window(), other_customer.id)


async def test_concurrent_creates_hold_once(lifecycle, vehicle, customer, other_customer, window, session_factory):
    results = await asyncio.gather(
        lifecycle.create_booking(vehicle.id, window(), customer.id),
        lifecycle.create_booking(vehicle.id, window(), other_customer.id),
        return_exceptions=True,
    )

    assert sum(isinstance(r, ResourceUnavailable) for r in results) == 1
    await assert_exclusive(session_factory, vehicle.id)


async def test_inverted_window_rejected(lifecycle, vehicle, customer, window):
    request = window()
    request.dropoff_date, request.pickup_date = request.pickup_date, request.dropoff_date

    with pytest.raises(ValidationError):
        await lifecycle.create_booking(vehicle.id, request, customer.id)


async def test_scenario_pay_and_confirm(paid_booking, session_factory, vehicle):
    result = await paid_booking()

    assert result.applied is True
    assert result.booking.total_amount == 7500
    assert result.booking.status == "confirmed"
    assert result.booking.payment_status == "Paid"
    assert result.booking.confirmed_at is not None
    assert result.payment.status == "captured"
    assert result.payment.captured_amount == 7500
    await assert_exclusive(session_factory, vehicle.id)


async def test_scenario_full_trip_records_stats_once(
    lifecycle, paid_booking, driver, admin, customer, vehicle, reload, session_factory
):
    booking_id = (await paid_booking()).booking.id

    assigned = await lifecycle.assign_driver(booking_id, driver.id, admin.id)
    assert assigned.booking.assigned_driver_id == driver.id
    await lifecycle.start_trip(booking_id, driver.id)
    completed = await lifecycle.complete_trip(booking_id, driver.id)

    assert completed.applied is True
    assert completed.booking.status == "completed"
    assert completed.allowed_transitions == ["refunded"]
    await assert_exclusive(session_factory, vehicle.id)

    stats = await reload(User, customer.id)
    assert stats.total_bookings == 1
    assert stats.total_spent == 7500

    repeat = await lifecycle.complete_trip(booking_id, driver.id)
    assert repeat.applied is False
    stats = await reload(User, customer.id)
    assert stats.total_bookings == 1
    assert stats.total_spent == 7500


async def test_simultaneous_completion_applies_once(
    lifecycle, paid_booking, driver, admin, customer, vehicle, reload, session_factory
):
    booking_id = (await paid_booking()).booking.id
    await lifecycle.assign_driver(booking_id, driver.id, admin.id)
    await lifecycle.start_trip(booking_id, driver.id)

    results = await asyncio.gather(
        lifecycle.complete_trip(booking_id, driver.id),
        lifecycle.complete_trip(booking_id, driver.id),
    )

    assert sorted(r.applied for r in results) == [False, True]
    stats = await reload(User, customer.id)
    assert stats.total_bookings == 1
    assert stats.total_spent == 7500
    await assert_exclusive(session_factory, vehicle.id)
    async with session_factory() as db:
        completions = await db.scalar(
            select(func.count())
            .select_from(AuditLog)
            .where(AuditLog.action == "booking_completed", AuditLog.resource_id == booking_id)
        )
    assert completions == 1


async def test_scenario_cancel_then_assign_rejected(
    lifecycle, paid_booking, customer, driver, admin, vehicle, session_factory
):
    booking_id = (await paid_booking()).booking.id

    cancelled = await lifecycle.cancel_booking(booking_id, customer, reason="Plans changed")
    assert cancelled.booking.status == "cancelled"
    assert cancelled.booking.cancelled_by == customer.id
    await assert_exclusive(session_factory, vehicle.id)

    with pytest.raises(InvalidTransition) as exc_info:
        await lifecycle.assign_driver(booking_id, driver.id, admin.id)
    assert exc_info.value.context["allowed"] == ["refunded"]


async def test_skipping_payment_rejected(lifecycle, vehicle, customer, driver, window):
    created = await lifecycle.create_booking(vehicle.id, window(), customer.id)

    with pytest.raises(InvalidTransition):
        await lifecycle.start_trip(created.booking.id, driver.id)
    with pytest.raises(InvalidTransition):
        await lifecycle.assign_driver(created.booking.id, driver.id)


async def test_assigning_a_customer_as_driver_rejected(lifecycle, paid_booking, other_customer, reload):
    booking_id = (await paid_booking()).booking.id

    with pytest.raises(ValidationError):
        await lifecycle.assign_driver(booking_id, other_customer.id)
    assert (await reload(Booking, booking_id)).status == "confirmed"


async def test_repeated_confirm_is_noop(lifecycle, open_order, gateway, session_factory):
    opened = await open_order()
    order_id = opened.payment.order_id
    payment_id, signature = gateway.checkout(order_id)

    first = await lifecycle.confirm_payment(opened.booking.id, order_id, payment_id, signature)
    second = await lifecycle.confirm_payment(opened.booking.id, order_id, payment_id, signature)

    assert first.applied is True
    assert second.applied is False
    assert second.booking.status == "confirmed"
    async with session_factory() as db:
        captured = await db.scalar(
            select(func.count()).select_from(Payment).where(Payment.status == "captured")
        )
        confirmations = await db.scalar(
            select(func.count()).select_from(AuditLog).where(AuditLog.action == "booking_confirmed")
        )
    assert captured == 1
    assert confirmations == 1


async def test_confirm_after_webhook_capture(lifecycle, open_order, gateway):
    opened = await open_order()
    order_id = opened.payment.order_id
    payment_id, signature = gateway.checkout(order_id)

    webhook = await lifecycle.record_gateway_capture(order_id, payment_id, amount=7500)
    client = await lifecycle.confirm_payment(opened.booking.id, order_id, payment_id, signature)

    assert webhook.applied is True
    assert client.applied is False
    assert client.booking.status == "confirmed"


async def test_webhook_capture_after_confirm(lifecycle, open_order, gateway):
    opened = await open_order()
    order_id = opened.payment.order_id
    payment_id, signature = gateway.checkout(order_id)

    client = await lifecycle.confirm_payment(opened.booking.id, order_id, payment_id, signature)
    webhook = await lifecycle.record_gateway_capture(order_id, payment_id, amount=7500)

    assert client.applied is True
    assert webhook.applied is False


async def test_bad_proof_changes_nothing(lifecycle, open_order, reload):
    opened = await open_order()

    with pytest.raises(SignatureError):
        await lifecycle.confirm_payment(
            opened.booking.id, opened.payment.order_id, "pay_forged", "0" * 64
        )

    assert (await reload(Booking, opened.booking.id)).status == "pending_payment"
    assert (await reload(Payment, opened.payment.id)).status == "created"


async def test_order_of_another_booking_not_found(lifecycle, open_order, add, other_customer, window, gateway):
    opened = await open_order()
    car = await add(Vehicle(name="Swift Dzire", registration_no="KA05XY9876", price_per_day=1500))
    other = await lifecycle.create_booking(car.id, window(), other_customer.id)
    payment_id, signature = gateway.checkout(opened.payment.order_id)

    with pytest.raises(NotFoundError):
        await lifecycle.confirm_payment(other.booking.id, opened.payment.order_id, payment_id, signature)


async def test_partial_capture_confirms_as_partially_paid(lifecycle, open_order, gateway):
    opened = await open_order()
    payment_id, _ = gateway.checkout(opened.payment.order_id)

    result = await lifecycle.record_gateway_capture(opened.payment.order_id, payment_id, amount=5000)

    assert result.booking.status == "confirmed"
    assert result.booking.payment_status == "PartiallyPaid"


async def test_capture_after_cancel_keeps_booking_cancelled(lifecycle, open_order, gateway, customer):
    opened = await open_order()
    await lifecycle.cancel_booking(opened.booking.id, customer)
    payment_id, _ = gateway.checkout(opened.payment.order_id)

    result = await lifecycle.record_gateway_capture(opened.payment.order_id, payment_id)

    assert result.applied is True
    assert result.booking.status == "cancelled"
    assert result.booking.payment_status == "Paid"
    assert result.payment.status == "captured"


async def test_failed_payment_allows_new_order(lifecycle, open_order, reload):
    opened = await open_order()

    failed = await lifecycle.record_gateway_failure(opened.payment.order_id, "card declined")
    assert failed.applied is True
    assert failed.booking.status == "pending_payment"

    retry = await lifecycle.open_payment(opened.booking.id)
    assert retry.payment.order_id != opened.payment.order_id
    assert (await reload(Payment, opened.payment.id)).status == "failed"


async def test_verified_checkout_after_failure_confirms(lifecycle, open_order, gateway):
    opened = await open_order()
    order_id = opened.payment.order_id
    await lifecycle.record_gateway_failure(order_id, "first attempt declined")

    payment_id, signature = gateway.checkout(order_id)
    result = await lifecycle.confirm_payment(opened.booking.id, order_id, payment_id, signature)

    assert result.applied is True
    assert result.payment.status == "captured"
    assert result.booking.status == "confirmed"
    assert result.booking.payment_status == "Paid"


async def test_refund_pinned_to_named_payment(lifecycle, open_order, gateway, customer, reload):
    opened = await open_order()
    await lifecycle.record_gateway_failure(opened.payment.order_id, "card declined")
    retry = await lifecycle.open_payment(opened.booking.id)
    payment_id, signature = gateway.checkout(retry.payment.order_id)
    await lifecycle.confirm_payment(opened.booking.id, retry.payment.order_id, payment_id, signature)
    await lifecycle.cancel_booking(opened.booking.id, customer)

    with pytest.raises(ValidationError):
        await lifecycle.refund(opened.booking.id, payment_id=opened.payment.id)
    assert (await reload(Booking, opened.booking.id)).status == "cancelled"

    refunded = await lifecycle.refund(opened.booking.id, payment_id=retry.payment.id)
    assert refunded.payment.id == retry.payment.id
    assert refunded.payment.status == "refunded"
    assert (await reload(Payment, opened.payment.id)).status == "failed"


async def test_cancel_by_someone_else_forbidden(lifecycle, open_order, other_customer, reload):
    opened = await open_order()

    with pytest.raises(AuthorizationError):
        await lifecycle.cancel_booking(opened.booking.id, other_customer)
    assert (await reload(Booking, opened.booking.id)).status == "pending_payment"


async def test_repeated_cancel_is_noop(lifecycle, open_order, admin):
    opened = await open_order()

    first = await lifecycle.cancel_booking(opened.booking.id, admin, reason="Fleet issue")
    second = await lifecycle.cancel_booking(opened.booking.id, admin)

    assert first.applied is True
    assert second.applied is False
    assert second.booking.cancellation_reason == "Fleet issue"


async def test_ongoing_trip_cannot_be_cancelled(lifecycle, paid_booking, driver, admin):
    booking_id = (await paid_booking()).booking.id
    await lifecycle.assign_driver(booking_id, driver.id, admin.id)
    await lifecycle.start_trip(booking_id, driver.id)

    with pytest.raises(InvalidTransition) as exc_info:
        await lifecycle.cancel_booking(booking_id, admin)
    assert exc_info.value.context["allowed"] == ["completed"]


async def test_refund_cancelled_booking(lifecycle, paid_booking, customer, admin, gateway):
    booking_id = (await paid_booking()).booking.id
    await lifecycle.cancel_booking(booking_id, customer)

    result = await lifecycle.refund(booking_id, actor_id=admin.id)

    assert result.booking.status == "refunded"
    assert result.booking.payment_status == "Refunded"
    assert result.payment.status == "refunded"
    assert result.payment.refund_amount == 7500
    assert result.payment.refund_id in gateway.refunds
    assert result.allowed_transitions == []


async def test_refund_above_capture_rejected(lifecycle, paid_booking, customer, reload):
    booking_id = (await paid_booking()).booking.id
    await lifecycle.cancel_booking(booking_id, customer)

    with pytest.raises(ValidationError):
        await lifecycle.refund(booking_id, amount=7501)
    assert (await reload(Booking, booking_id)).status == "cancelled"


async def test_refund_without_capture_rejected(lifecycle, open_order, customer):
    opened = await open_order()
    await lifecycle.cancel_booking(opened.booking.id, customer)

    with pytest.raises(ValidationError):
        await lifecycle.refund(opened.booking.id)


async def test_refund_of_confirmed_booking_rejected(lifecycle, paid_booking):
    booking_id = (await paid_booking()).booking.id

    with pytest.raises(InvalidTransition):
        await lifecycle.refund(booking_id)


async def test_refund_webhook_after_refund_is_duplicate(lifecycle, paid_booking, customer):
    paid = await paid_booking()
    await lifecycle.cancel_booking(paid.booking.id, customer)
    refunded = await lifecycle.refund(paid.booking.id)

    replay = await lifecycle.record_gateway_refund(
        refunded.payment.gateway_payment_id, refunded.payment.refund_id, amount=7500
    )
    assert replay.applied is False
    assert replay.booking.status == "refunded"


async def test_refund_webhook_moves_booking_to_refunded(lifecycle, paid_booking, customer, gateway):
    paid = await paid_booking()
    await lifecycle.cancel_booking(paid.booking.id, customer)

    result = await lifecycle.record_gateway_refund(paid.payment.gateway_payment_id, "rfnd_dashboard")

    assert result.applied is True
    assert result.booking.status == "refunded"
    assert result.payment.refund_id == "rfnd_dashboard"
    assert result.payment.refund_amount == 7500
    assert gateway.refunds == {}


async def test_refund_webhook_on_confirmed_booking_only_updates_snapshot(lifecycle, paid_booking):
    paid = await paid_booking()

    result = await lifecycle.record_gateway_refund(paid.payment.gateway_payment_id, "rfnd_dashboard")

    assert result.booking.status == "confirmed"
    assert result.booking.payment_status == "Refunded"
    assert result.payment.status == "refunded"


async def test_unknown_payment_notifications_return_none(lifecycle):
    assert await lifecycle.record_gateway_capture("order_missing", "pay_missing") is None
    assert await lifecycle.record_gateway_failure("order_missing") is None
    assert await lifecycle.record_gateway_refund("pay_missing", "rfnd_missing") is None


async def test_admin_status_override_runs_side_effects(
    lifecycle, paid_booking, admin, driver, customer, vehicle, reload, session_factory
):
    booking_id = (await paid_booking()).booking.id

    await lifecycle.admin_set_status(booking_id, "assigned", admin, driver_id=driver.id)
    await lifecycle.admin_set_status(booking_id, "ongoing", admin)
    result = await lifecycle.admin_set_status(booking_id, "completed", admin)

    assert result.booking.status == "completed"
    assert result.booking.assigned_driver_id == driver.id
    assert (await reload(User, customer.id)).total_bookings == 1
    await assert_exclusive(session_factory, vehicle.id)


async def test_admin_status_override_validates(lifecycle, open_order, admin, customer):
    opened = await open_order()

    with pytest.raises(AuthorizationError):
        await lifecycle.admin_set_status(opened.booking.id, "cancelled", customer)
    with pytest.raises(ValidationError):
        await lifecycle.admin_set_status(opened.booking.id, "finished", admin)
    with pytest.raises(InvalidTransition):
        await lifecycle.admin_set_status(opened.booking.id, "completed", admin)


async def test_transitions_are_audited(lifecycle, paid_booking, session_factory):
    booking_id = (await paid_booking()).booking.id

    async with session_factory() as db:
        result = await db.execute(
            select(AuditLog.action)
            .where(AuditLog.resource_type == "booking", AuditLog.resource_id == booking_id)
            .order_by(AuditLog.created_at)
        )
        actions = result.scalars().all()
    assert actions == ["booking_draft", "booking_pending_payment", "booking_confirmed"]


async def test_vehicle_status_blocked_while_held(lifecycle, open_order, vehicle, admin, customer):
    opened = await open_order()

    with pytest.raises(ResourceUnavailable):
        await lifecycle.set_vehicle_status(vehicle.id, "Maintenance", admin.id)

    await lifecycle.cancel_booking(opened.booking.id, customer)
    updated = await lifecycle.set_vehicle_status(vehicle.id, "Maintenance", admin.id)
    assert updated.status == "Maintenance"


async def test_reads(lifecycle, paid_booking, customer, driver, admin):
    paid = await paid_booking()
    await lifecycle.assign_driver(paid.booking.id, driver.id, admin.id)

    assert [b.id for b in await lifecycle.list_bookings(customer_id=customer.id)] == [paid.booking.id]
    assert [b.id for b in await lifecycle.list_bookings(driver_id=driver.id)] == [paid.booking.id]
    assert await lifecycle.list_bookings(status="draft") == []
    assert await lifecycle.get_allowed_transitions(paid.booking.id) == ["cancelled", "ongoing"]
    assert (await lifecycle.get_latest_payment(paid.booking.id)).id == paid.payment.id

    with pytest.raises(NotFoundError):
        await lifecycle.get_booking(paid.payment.id)
