from datetime import timedelta

from app.models.booking import Booking
from app.models.vehicle import Vehicle
from app.tasks import EXPIRY_REASON, expire_bookings


async def test_sweep_cancels_unpaid_bookings(lifecycle, open_order, add, customer, window, reload):
    opened = await open_order()
    car = await add(Vehicle(name="Swift Dzire", registration_no="KA05XY9876", price_per_day=1500))
    draft = await lifecycle.create_booking(car.id, window(), customer.id)
    spare = await add(Vehicle(name="Honda City", registration_no="KA03CD4321", price_per_day=2000))
    confirmed = await lifecycle.create_booking(spare.id, window(), customer.id)
    opened_spare = await lifecycle.open_payment(confirmed.booking.id)
    from_gateway = lifecycle.gateway.checkout(opened_spare.payment.order_id)
    await lifecycle.confirm_payment(confirmed.booking.id, opened_spare.payment.order_id, *from_gateway)

    summary = await expire_bookings(lifecycle, timedelta(0))

    assert summary == {"expired": 2, "skipped": 0, "failed": 0}
    for booking_id in (opened.booking.id, draft.booking.id):
        booking = await reload(Booking, booking_id)
        assert booking.status == "cancelled"
        assert booking.cancelled_by is None
        assert booking.cancellation_reason == EXPIRY_REASON
    assert (await reload(Booking, confirmed.booking.id)).status == "confirmed"
    assert (await reload(Vehicle, car.id)).status == "Available"


async def test_sweep_ignores_recent_bookings(lifecycle, open_order):
    await open_order()

    summary = await expire_bookings(lifecycle, timedelta(hours=1))
    assert summary == {"expired": 0, "skipped": 0, "failed": 0}


async def test_sweep_is_idempotent(lifecycle, open_order):
    await open_order()

    await expire_bookings(lifecycle, timedelta(0))
    summary = await expire_bookings(lifecycle, timedelta(0))
    assert summary["expired"] == 0
