"""Booking lifecycle service.

Every status change goes through ``_enter_status``, which validates the edge
against the state graph and then runs the single side-effect step registered
for the target status. The specific operations (confirm, assign, start,
complete, cancel, refund) and the admin override all share those steps.

Each mutating operation runs under the booking's lock (and the vehicle's,
when the vehicle may be released) in one transaction that commits before
the lock is let go.
"""

import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from uuid import UUID, uuid4

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm.exc import StaleDataError

from app.config import settings
from app.core.exceptions import (
    AuthorizationError,
    ConcurrentUpdate,
    GatewayUnavailable,
    NotFoundError,
    ResourceUnavailable,
    SignatureError,
    ValidationError,
)
from app.core.locks import LockManager, get_lock_manager
from app.database import async_session_maker, utcnow
from app.domain.booking_state import (
    BookingStatus,
    allowed_transitions,
    assert_booking_transition,
    can_transition,
    holds_vehicle,
)
from app.domain.payment_state import BookingPaymentStatus, PaymentStatus, VehicleStatus
from app.domain.pricing import combine_window, duration_label, rental_days, rental_total
from app.gateways.base import ReconciliationGateway
from app.models.admin import AuditLog
from app.models.booking import Booking
from app.models.payment import Payment
from app.models.user import User
from app.models.vehicle import Vehicle
from app.services.audit_service import audit_service
from app.services.availability_service import availability_service
from app.services.gateway_service import get_gateway
from app.services.payment_ledger import PaymentLedger
from app.utils.booking_number import generate_booking_code

logger = logging.getLogger(__name__)


@dataclass
class RentalWindow:
    """Requested pickup/dropoff window."""

    pickup_date: date
    pickup_time: str
    dropoff_date: date
    dropoff_time: str
    pickup_location: str
    dropoff_location: str
    services: list[str] = field(default_factory=list)

    @property
    def pickup_at(self) -> datetime:
        return combine_window(self.pickup_date, self.pickup_time)

    @property
    def dropoff_at(self) -> datetime:
        return combine_window(self.dropoff_date, self.dropoff_time)


@dataclass
class LifecycleResult:
    """Outcome of a lifecycle operation.

    ``applied`` is False when the call was an idempotent repeat and changed
    nothing (duplicate capture, repeated completion or cancellation).
    """

    booking: Booking
    payment: Payment | None = None
    applied: bool = True

    @property
    def allowed_transitions(self) -> list[str]:
        return sorted(status.value for status in allowed_transitions(self.booking.status))


EntryStep = Callable[..., Awaitable[Payment | None]]


class BookingLifecycleService:
    """Orchestrates booking, payment and vehicle state."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession] | None = None,
        gateway: ReconciliationGateway | None = None,
        locks: LockManager | None = None,
    ):
        self.session_factory = session_factory or async_session_maker
        self.gateway = gateway or get_gateway()
        self.locks = locks or get_lock_manager()
        self.ledger = PaymentLedger(self.gateway)
        self._entry_steps: dict[BookingStatus, EntryStep] = {
            BookingStatus.CONFIRMED: self._on_confirmed,
            BookingStatus.ASSIGNED: self._on_assigned,
            BookingStatus.ONGOING: self._on_ongoing,
            BookingStatus.COMPLETED: self._on_completed,
            BookingStatus.CANCELLED: self._on_cancelled,
            BookingStatus.REFUNDED: self._on_refunded,
        }

    # ==================== UNITS OF WORK ====================

    @asynccontextmanager
    async def _transaction(self, booking_id: UUID | None = None) -> AsyncIterator[AsyncSession]:
        try:
            async with self.session_factory() as db, db.begin():
                yield db
        except StaleDataError:
            raise ConcurrentUpdate("Booking", str(booking_id))

    @asynccontextmanager
    async def _locked_booking(
        self, booking_id: UUID, with_vehicle: bool = False
    ) -> AsyncIterator[tuple[AsyncSession, Booking]]:
        """Lock the booking (and optionally its vehicle), then load it for update."""
        async with self.locks.booking(booking_id):
            if not with_vehicle:
                async with self._transaction(booking_id) as db:
                    yield db, await self._load_booking(db, booking_id)
                return

            # vehicle_id never changes after creation, so it is safe to read before locking
            vehicle_id = await self._vehicle_of(booking_id)
            async with self.locks.vehicle(vehicle_id), self._transaction(booking_id) as db:
                yield db, await self._load_booking(db, booking_id)

    async def _load_booking(self, db: AsyncSession, booking_id: UUID) -> Booking:
        result = await db.execute(
            select(Booking).where(Booking.id == booking_id).with_for_update()
        )
        booking = result.scalar_one_or_none()
        if not booking:
            raise NotFoundError("Booking", str(booking_id))
        return booking

    async def _vehicle_of(self, booking_id: UUID) -> UUID:
        async with self.session_factory() as db:
            vehicle_id = await db.scalar(select(Booking.vehicle_id).where(Booking.id == booking_id))
        if vehicle_id is None:
            raise NotFoundError("Booking", str(booking_id))
        return vehicle_id

    async def _booking_id_for_payment(
        self, order_id: str | None = None, gateway_payment_id: str | None = None
    ) -> UUID | None:
        if order_id:
            clause = Payment.order_id == order_id
        elif gateway_payment_id:
            clause = Payment.gateway_payment_id == gateway_payment_id
        else:
            return None
        async with self.session_factory() as db:
            return await db.scalar(select(Payment.booking_id).where(clause))

    async def _get_user(self, db: AsyncSession, user_id: UUID) -> User:
        user = await db.get(User, user_id)
        if not user:
            raise NotFoundError("User", str(user_id))
        return user

    # ==================== STATUS ENTRY ====================

    async def _enter_status(
        self,
        db: AsyncSession,
        booking: Booking,
        target: BookingStatus,
        actor_id: UUID | None = None,
        source: str = "api",
        **details,
    ) -> Payment | None:
        """Validate ``booking.status -> target`` and apply its side effects."""
        previous = booking.status
        assert_booking_transition(previous, target)

        booking.status = target.value
        step = self._entry_steps.get(target)
        payment = None
        if step:
            payment = await step(db, booking, previous, actor_id=actor_id, **details)
        await db.flush()

        await audit_service.log_booking_transition(
            db=db,
            booking_id=booking.id,
            old_status=previous,
            new_status=target.value,
            user_id=actor_id,
            source=source,
        )
        logger.info(f"Booking {booking.booking_code}: {previous} -> {target.value}")
        return payment

    async def _on_confirmed(self, db: AsyncSession, booking: Booking, previous: str, **_) -> None:
        booking.confirmed_at = utcnow()

    async def _on_assigned(
        self,
        db: AsyncSession,
        booking: Booking,
        previous: str,
        driver_id: UUID | None = None,
        **_,
    ) -> None:
        if driver_id is None:
            return
        driver = await self._get_user(db, driver_id)
        if not driver.can_drive or not driver.is_active:
            raise ValidationError(f"User {driver_id} cannot be assigned as a driver")
        booking.assigned_driver_id = driver.id

    async def _on_ongoing(self, db: AsyncSession, booking: Booking, previous: str, **_) -> None:
        booking.actual_start_time = utcnow()

    async def _on_completed(self, db: AsyncSession, booking: Booking, previous: str, **_) -> None:
        now = utcnow()
        booking.actual_end_time = now
        booking.completed_at = now
        await availability_service.release(db, booking.vehicle_id)

        if booking.stats_recorded:
            return
        await db.execute(
            update(User)
            .where(User.id == booking.customer_id)
            .values(
                total_bookings=User.total_bookings + 1,
                total_spent=User.total_spent + booking.total_amount,
                last_booking_date=now,
            )
        )
        booking.stats_recorded = True

    async def _on_cancelled(
        self,
        db: AsyncSession,
        booking: Booking,
        previous: str,
        actor_id: UUID | None = None,
        reason: str | None = None,
        **_,
    ) -> None:
        booking.cancelled_by = actor_id
        booking.cancelled_at = utcnow()
        booking.cancellation_reason = reason
        if holds_vehicle(previous):
            await availability_service.release(db, booking.vehicle_id)

    async def _on_refunded(
        self,
        db: AsyncSession,
        booking: Booking,
        previous: str,
        actor_id: UUID | None = None,
        amount: int | None = None,
        payment_id: UUID | None = None,
        refund_recorded: bool = False,
        **_,
    ) -> Payment | None:
        booking.refunded_at = utcnow()
        booking.payment_status = BookingPaymentStatus.REFUNDED.value
        if refund_recorded:
            return None

        if payment_id is not None:
            payment = await self.ledger.get_by_id(db, payment_id, for_update=True)
            if payment is None or payment.booking_id != booking.id:
                raise NotFoundError("Payment", str(payment_id))
            if payment.status != PaymentStatus.CAPTURED.value:
                raise ValidationError(f"Payment {payment_id} is {payment.status}, not captured")
        else:
            payment = await self.ledger.captured_for_booking(db, booking.id)
        if payment is None:
            raise ValidationError("Booking has no captured payment to refund")
        if payment.status == PaymentStatus.CAPTURED.value:
            await self.ledger.refund_captured(db, payment, amount, user_id=actor_id)
        return payment

    # ==================== OPERATIONS ====================

    async def create_booking(
        self, vehicle_id: UUID, window: RentalWindow, customer_id: UUID
    ) -> LifecycleResult:
        """Create a draft booking and hold the vehicle for it.

        Raises:
            ValidationError: If the window is empty or inverted
            ResourceUnavailable: If the vehicle is not Available
        """
        try:
            days = rental_days(window.pickup_at, window.dropoff_at)
        except ValueError as e:
            raise ValidationError(str(e))

        async with self.locks.vehicle(vehicle_id), self._transaction() as db:
            customer = await self._get_user(db, customer_id)
            vehicle = await availability_service.get_vehicle(db, vehicle_id, for_update=True)
            if vehicle.status != VehicleStatus.AVAILABLE.value:
                raise ResourceUnavailable(vehicle_id)

            booking = Booking(
                id=uuid4(),
                booking_code=await generate_booking_code(db),
                customer_id=customer.id,
                customer_name=customer.name,
                customer_phone=customer.phone,
                vehicle_id=vehicle.id,
                vehicle_name=vehicle.name,
                pickup_date=window.pickup_date,
                pickup_time=window.pickup_time,
                dropoff_date=window.dropoff_date,
                dropoff_time=window.dropoff_time,
                pickup_location=window.pickup_location,
                dropoff_location=window.dropoff_location,
                services=list(window.services),
                duration_days=days,
                duration=duration_label(days),
                total_amount=rental_total(days, vehicle.price_per_day),
                currency=settings.currency,
                status=BookingStatus.DRAFT.value,
                payment_status=BookingPaymentStatus.UNPAID.value,
            )
            db.add(booking)
            await db.flush()
            await availability_service.hold(db, vehicle.id, booking.id)

            await audit_service.log_booking_transition(
                db=db,
                booking_id=booking.id,
                old_status=None,
                new_status=booking.status,
                user_id=customer.id,
                total_amount=booking.total_amount,
            )

        logger.info(f"Booking {booking.booking_code} created for vehicle {vehicle_id}")
        return LifecycleResult(booking=booking)

    async def open_payment(self, booking_id: UUID, actor_id: UUID | None = None) -> LifecycleResult:
        """Open a gateway order and move the booking to pending_payment.

        Raises:
            InvalidTransition: If the booking is past pending_payment
            PaymentAlreadyOpen: If an open payment already exists
            GatewayUnavailable: If the gateway cannot create the order
        """
        async with self._locked_booking(booking_id) as (db, booking):
            if booking.status != BookingStatus.PENDING_PAYMENT.value:
                assert_booking_transition(booking.status, BookingStatus.PENDING_PAYMENT)

            payment = await self.ledger.open_order(db, booking, booking.customer_id)
            if booking.status == BookingStatus.DRAFT.value:
                await self._enter_status(db, booking, BookingStatus.PENDING_PAYMENT, actor_id)

        return LifecycleResult(booking=booking, payment=payment)

    async def confirm_payment(
        self,
        booking_id: UUID,
        order_id: str,
        gateway_payment_id: str,
        signature: str,
    ) -> LifecycleResult:
        """Verify the checkout's proof and capture the payment.

        Safe to repeat: a second call with the same proof returns
        ``applied=False`` and changes nothing.

        Raises:
            GatewayUnavailable: If the gateway is not configured
            SignatureError: If the proof does not verify
            NotFoundError: If the order does not belong to the booking
        """
        if not self.gateway.is_configured:
            raise GatewayUnavailable(self.gateway.gateway_type.value, "not configured")
        if not self.gateway.verify_client_proof(order_id, gateway_payment_id, signature):
            logger.warning(f"Rejected payment proof for order {order_id}")
            raise SignatureError()

        async with self._locked_booking(booking_id) as (db, booking):
            payment = await self.ledger.get_by_order_id(db, order_id, for_update=True)
            if not payment or payment.booking_id != booking.id:
                raise NotFoundError("Payment", order_id)
            return await self._capture(
                db, booking, payment, gateway_payment_id, signature=signature
            )

    async def _capture(
        self,
        db: AsyncSession,
        booking: Booking,
        payment: Payment,
        gateway_payment_id: str,
        amount: int | None = None,
        method: str | None = None,
        signature: str | None = None,
        source: str = "api",
    ) -> LifecycleResult:
        """Capture step shared by client confirmation and the capture webhook.

        Both callers have verified the capture with the gateway.
        """
        outcome = await self.ledger.apply_capture(
            db,
            payment,
            gateway_payment_id,
            amount=amount,
            method=method,
            signature=signature,
            source=source,
            verified=True,
        )
        if not outcome.applied:
            return LifecycleResult(booking=booking, payment=payment, applied=False)

        if payment.captured_amount >= booking.total_amount:
            booking.payment_status = BookingPaymentStatus.PAID.value
        else:
            booking.payment_status = BookingPaymentStatus.PARTIALLY_PAID.value

        if booking.status == BookingStatus.PENDING_PAYMENT.value:
            await self._enter_status(db, booking, BookingStatus.CONFIRMED, source=source)
        else:
            await db.flush()
            logger.warning(
                f"Capture {gateway_payment_id} recorded for booking {booking.booking_code} "
                f"in status {booking.status}; booking left unchanged"
            )
        return LifecycleResult(booking=booking, payment=payment)

    async def assign_driver(
        self, booking_id: UUID, driver_id: UUID, actor_id: UUID | None = None
    ) -> LifecycleResult:
        """Assign a driver to a confirmed booking."""
        async with self._locked_booking(booking_id) as (db, booking):
            await self._enter_status(
                db, booking, BookingStatus.ASSIGNED, actor_id, driver_id=driver_id
            )
        return LifecycleResult(booking=booking)

    async def start_trip(self, booking_id: UUID, actor_id: UUID | None = None) -> LifecycleResult:
        async with self._locked_booking(booking_id) as (db, booking):
            await self._enter_status(db, booking, BookingStatus.ONGOING, actor_id)
        return LifecycleResult(booking=booking)

    async def complete_trip(self, booking_id: UUID, actor_id: UUID | None = None) -> LifecycleResult:
        """Finish the trip, release the vehicle and record customer stats.

        Completing an already completed booking is a no-op.
        """
        async with self._locked_booking(booking_id, with_vehicle=True) as (db, booking):
            if booking.status == BookingStatus.COMPLETED.value:
                return LifecycleResult(booking=booking, applied=False)
            await self._enter_status(db, booking, BookingStatus.COMPLETED, actor_id)
        return LifecycleResult(booking=booking)

    async def cancel_booking(
        self,
        booking_id: UUID,
        requester: User | None = None,
        reason: str | None = None,
    ) -> LifecycleResult:
        """Cancel a booking and release its vehicle.

        ``requester=None`` is the system (expiry sweep). Cancelling an already
        cancelled booking is a no-op.

        Raises:
            AuthorizationError: If the requester is neither the customer nor an admin
            InvalidTransition: If the booking can no longer be cancelled
        """
        async with self._locked_booking(booking_id, with_vehicle=True) as (db, booking):
            if requester is not None and not requester.is_admin:
                if booking.customer_id != requester.id:
                    raise AuthorizationError("You can only cancel your own bookings")

            if booking.status == BookingStatus.CANCELLED.value:
                return LifecycleResult(booking=booking, applied=False)

            await self._enter_status(
                db,
                booking,
                BookingStatus.CANCELLED,
                requester.id if requester else None,
                source="api" if requester else "system",
                reason=reason,
            )
        return LifecycleResult(booking=booking)

    async def refund(
        self,
        booking_id: UUID,
        amount: int | None = None,
        actor_id: UUID | None = None,
        payment_id: UUID | None = None,
    ) -> LifecycleResult:
        """Refund the captured payment of a completed or cancelled booking.

        ``payment_id`` pins the refund to one payment of the booking.

        Raises:
            InvalidTransition: If the booking is not completed or cancelled
            NotFoundError: If ``payment_id`` is not a payment of the booking
            ValidationError: If nothing was captured, the named payment is not
                captured, or the amount is invalid
            GatewayUnavailable: If the gateway refuses the refund
        """
        async with self._locked_booking(booking_id) as (db, booking):
            payment = await self._enter_status(
                db, booking, BookingStatus.REFUNDED, actor_id, amount=amount, payment_id=payment_id
            )
        return LifecycleResult(booking=booking, payment=payment)

    async def admin_set_status(
        self,
        booking_id: UUID,
        target: str | BookingStatus,
        actor: User,
        driver_id: UUID | None = None,
    ) -> LifecycleResult:
        """Move a booking along any valid edge, with the target's usual side effects."""
        if not actor.is_admin:
            raise AuthorizationError("Admin access required")
        try:
            target = BookingStatus(target)
        except ValueError:
            raise ValidationError(f"Unknown booking status '{target}'")

        async with self._locked_booking(booking_id, with_vehicle=True) as (db, booking):
            payment = await self._enter_status(
                db, booking, target, actor.id, driver_id=driver_id
            )
        return LifecycleResult(booking=booking, payment=payment)

    async def set_vehicle_status(
        self, vehicle_id: UUID, status: str, actor_id: UUID | None = None
    ) -> Vehicle:
        """Admin operational status change, refused while a booking holds the vehicle."""
        async with self.locks.vehicle(vehicle_id), self._transaction() as db:
            vehicle = await availability_service.set_operational_status(
                db, vehicle_id, status, user_id=actor_id
            )
        logger.info(f"Vehicle {vehicle_id} set to {vehicle.status}")
        return vehicle

    # ==================== GATEWAY NOTIFICATIONS ====================

    async def record_gateway_capture(
        self,
        order_id: str,
        gateway_payment_id: str,
        amount: int | None = None,
        method: str | None = None,
    ) -> LifecycleResult | None:
        """Apply a verified capture notification. Returns None for unknown orders."""
        booking_id = await self._booking_id_for_payment(order_id=order_id)
        if booking_id is None:
            return None

        async with self._locked_booking(booking_id) as (db, booking):
            payment = await self.ledger.get_by_order_id(db, order_id, for_update=True)
            return await self._capture(
                db,
                booking,
                payment,
                gateway_payment_id,
                amount=amount,
                method=method,
                source="webhook",
            )

    async def record_gateway_failure(
        self, order_id: str, reason: str | None = None
    ) -> LifecycleResult | None:
        """Apply a verified failure notification. The booking stays pending_payment."""
        booking_id = await self._booking_id_for_payment(order_id=order_id)
        if booking_id is None:
            return None

        async with self._locked_booking(booking_id) as (db, booking):
            payment = await self.ledger.get_by_order_id(db, order_id, for_update=True)
            outcome = await self.ledger.apply_failure(db, payment, reason, source="webhook")
        return LifecycleResult(booking=booking, payment=payment, applied=outcome.applied)

    async def record_gateway_refund(
        self,
        gateway_payment_id: str,
        refund_id: str,
        amount: int | None = None,
    ) -> LifecycleResult | None:
        """Apply a verified refund notification. Returns None for unknown payments."""
        booking_id = await self._booking_id_for_payment(gateway_payment_id=gateway_payment_id)
        if booking_id is None:
            return None

        async with self._locked_booking(booking_id) as (db, booking):
            payment = await self.ledger.get_by_gateway_payment_id(
                db, gateway_payment_id, for_update=True
            )
            if payment.status == PaymentStatus.REFUNDED.value:
                if payment.refund_id != refund_id:
                    # One refund per payment is tracked; later partial refunds are only logged
                    logger.warning(
                        f"Refund {refund_id} for payment {gateway_payment_id} not recorded; "
                        f"payment already refunded by {payment.refund_id}"
                    )
                return LifecycleResult(booking=booking, payment=payment, applied=False)

            await self.ledger.apply_refund(
                db,
                payment,
                refund_id,
                amount if amount is not None else payment.captured_amount,
                source="webhook",
            )
            if can_transition(booking.status, BookingStatus.REFUNDED):
                await self._enter_status(
                    db, booking, BookingStatus.REFUNDED, source="webhook", refund_recorded=True
                )
            else:
                booking.payment_status = BookingPaymentStatus.REFUNDED.value
                await db.flush()
                logger.warning(
                    f"Refund {refund_id} recorded for booking {booking.booking_code} "
                    f"in status {booking.status}; booking left unchanged"
                )
        return LifecycleResult(booking=booking, payment=payment)

    # ==================== READS ====================

    async def get_booking(self, booking_id: UUID) -> Booking:
        async with self.session_factory() as db:
            booking = await db.get(Booking, booking_id)
        if not booking:
            raise NotFoundError("Booking", str(booking_id))
        return booking

    async def list_bookings(
        self,
        customer_id: UUID | None = None,
        driver_id: UUID | None = None,
        status: str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[Booking]:
        query = select(Booking)
        if customer_id:
            query = query.where(Booking.customer_id == customer_id)
        if driver_id:
            query = query.where(Booking.assigned_driver_id == driver_id)
        if status:
            query = query.where(Booking.status == status)
        query = query.order_by(Booking.created_at.desc()).offset(offset).limit(limit)

        async with self.session_factory() as db:
            result = await db.execute(query)
            return list(result.scalars().all())

    async def get_allowed_transitions(self, booking_id: UUID) -> list[str]:
        booking = await self.get_booking(booking_id)
        return LifecycleResult(booking=booking).allowed_transitions

    async def get_history(self, booking_id: UUID) -> list[AuditLog]:
        """Applied transitions of the booking, oldest first."""
        async with self.session_factory() as db:
            return await audit_service.history(db, "booking", booking_id)

    async def get_latest_payment(self, booking_id: UUID) -> Payment | None:
        async with self.session_factory() as db:
            return await self.ledger.latest_for_booking(db, booking_id)

    async def get_payment(self, payment_id: UUID) -> Payment:
        async with self.session_factory() as db:
            payment = await db.get(Payment, payment_id)
        if not payment:
            raise NotFoundError("Payment", str(payment_id))
        return payment

    async def stale_booking_ids(self, older_than: timedelta) -> list[UUID]:
        """Draft and pending_payment bookings created before ``now - older_than``."""
        cutoff = utcnow() - older_than
        async with self.session_factory() as db:
            result = await db.execute(
                select(Booking.id)
                .where(
                    Booking.status.in_(
                        [BookingStatus.DRAFT.value, BookingStatus.PENDING_PAYMENT.value]
                    ),
                    Booking.created_at < cutoff,
                )
                .order_by(Booking.created_at)
            )
            return list(result.scalars().all())
