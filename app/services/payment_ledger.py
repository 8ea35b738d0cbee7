"""Payment ledger.

Owns Payment rows keyed by gateway order id. Every mutation here happens
after the caller has verified the gateway's signature and while it holds
the owning booking's lock.
"""

import logging
from dataclasses import dataclass
from datetime import UTC, datetime
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.core.exceptions import (
    GatewayUnavailable,
    PaymentAlreadyOpen,
    PaymentAlreadyRefunded,
    ValidationError,
)
from app.domain.payment_state import (
    OPEN_PAYMENT_STATUSES,
    PaymentStatus,
    assert_payment_transition,
)
from app.gateways.base import ReconciliationGateway
from app.models.booking import Booking
from app.models.payment import Payment
from app.services.audit_service import audit_service

logger = logging.getLogger(__name__)


@dataclass
class LedgerOutcome:
    """Payment after a ledger call; ``applied`` is False for idempotent no-ops."""

    payment: Payment
    applied: bool


class PaymentLedger:
    """Records order creation, capture, failure and refund."""

    def __init__(self, gateway: ReconciliationGateway):
        self.gateway = gateway

    async def get_by_id(
        self, db: AsyncSession, payment_id: UUID, for_update: bool = False
    ) -> Payment | None:
        query = select(Payment).where(Payment.id == payment_id)
        if for_update:
            query = query.with_for_update()
        result = await db.execute(query)
        return result.scalar_one_or_none()

    async def get_by_order_id(
        self, db: AsyncSession, order_id: str, for_update: bool = False
    ) -> Payment | None:
        query = select(Payment).where(Payment.order_id == order_id)
        if for_update:
            query = query.with_for_update()
        result = await db.execute(query)
        return result.scalar_one_or_none()

    async def get_by_gateway_payment_id(
        self, db: AsyncSession, gateway_payment_id: str, for_update: bool = False
    ) -> Payment | None:
        query = select(Payment).where(Payment.gateway_payment_id == gateway_payment_id)
        if for_update:
            query = query.with_for_update()
        result = await db.execute(query)
        return result.scalar_one_or_none()

    async def latest_for_booking(
        self, db: AsyncSession, booking_id: UUID, for_update: bool = False
    ) -> Payment | None:
        query = (
            select(Payment)
            .where(Payment.booking_id == booking_id)
            .order_by(Payment.created_at.desc())
            .limit(1)
        )
        if for_update:
            query = query.with_for_update()
        result = await db.execute(query)
        return result.scalar_one_or_none()

    async def captured_for_booking(self, db: AsyncSession, booking_id: UUID) -> Payment | None:
        result = await db.execute(
            select(Payment)
            .where(
                Payment.booking_id == booking_id,
                Payment.status.in_([PaymentStatus.CAPTURED.value, PaymentStatus.REFUNDED.value]),
            )
            .with_for_update()
        )
        return result.scalars().first()

    async def open_order(self, db: AsyncSession, booking: Booking, payer_id: UUID) -> Payment:
        """Open a gateway order for the booking's total amount.

        Raises:
            PaymentAlreadyOpen: If a created/authorized/captured payment exists
            GatewayUnavailable: If the gateway is unconfigured or refuses
        """
        existing = await db.execute(
            select(Payment).where(
                Payment.booking_id == booking.id,
                Payment.status.in_([s.value for s in OPEN_PAYMENT_STATUSES]),
            )
        )
        open_payment = existing.scalars().first()
        if open_payment:
            raise PaymentAlreadyOpen(booking.id, open_payment.order_id)

        if not self.gateway.is_configured:
            raise GatewayUnavailable(self.gateway.gateway_type.value, "not configured")

        result = await self.gateway.create_order(
            amount=booking.total_amount,
            currency=booking.currency or settings.currency,
            receipt=booking.booking_code,
            notes={"booking_id": str(booking.id), "user_id": str(payer_id)},
        )
        if not result.success or not result.order_id:
            raise GatewayUnavailable(self.gateway.gateway_type.value, result.error_message)

        payment = Payment(
            booking_id=booking.id,
            user_id=payer_id,
            gateway=self.gateway.gateway_type.value,
            order_id=result.order_id,
            amount=booking.total_amount,
            currency=booking.currency or settings.currency,
            status=PaymentStatus.CREATED.value,
        )
        db.add(payment)
        await db.flush()

        await audit_service.log_payment_transition(
            db=db,
            payment_id=payment.id,
            old_status=None,
            new_status=PaymentStatus.CREATED.value,
            amount=payment.amount,
            user_id=payer_id,
        )
        logger.info(f"Opened order {payment.order_id} for booking {booking.booking_code}")
        return payment

    async def apply_capture(
        self,
        db: AsyncSession,
        payment: Payment,
        gateway_payment_id: str,
        amount: int | None = None,
        method: str | None = None,
        signature: str | None = None,
        source: str = "api",
        verified: bool = False,
    ) -> LedgerOutcome:
        """Mark the payment captured. A repeat with the same payment id is a no-op.

        ``verified`` marks a capture the gateway has signed for. Such a capture
        is recorded even on an order already marked failed, since the gateway
        may report a failed attempt after (or before) a successful retry.

        Raises:
            ValidationError: If the order was captured by a different payment,
                or the payment can no longer be captured
        """
        if payment.gateway_payment_id and payment.status in (
            PaymentStatus.CAPTURED.value,
            PaymentStatus.REFUNDED.value,
        ):
            if payment.gateway_payment_id == gateway_payment_id:
                return LedgerOutcome(payment=payment, applied=False)
            raise ValidationError(
                f"Order {payment.order_id} already captured by payment {payment.gateway_payment_id}"
            )

        old_status = payment.status
        if verified and old_status == PaymentStatus.FAILED.value:
            logger.warning(
                f"Verified capture {gateway_payment_id} on failed order {payment.order_id}"
            )
        else:
            assert_payment_transition(old_status, PaymentStatus.CAPTURED.value)

        payment.status = PaymentStatus.CAPTURED.value
        payment.gateway_payment_id = gateway_payment_id
        payment.captured_amount = amount if amount is not None else payment.amount
        payment.captured_at = datetime.now(UTC)
        if method:
            payment.method = method
        if signature:
            payment.signature = signature
        await db.flush()

        await audit_service.log_payment_transition(
            db=db,
            payment_id=payment.id,
            old_status=old_status,
            new_status=payment.status,
            amount=payment.captured_amount,
            source=source,
        )
        return LedgerOutcome(payment=payment, applied=True)

    async def apply_failure(
        self,
        db: AsyncSession,
        payment: Payment,
        reason: str | None = None,
        source: str = "api",
    ) -> LedgerOutcome:
        """Mark the payment failed. Only created/authorized payments can fail;
        a failure reported after capture or after an earlier failure is a no-op.
        """
        if payment.status not in (PaymentStatus.CREATED.value, PaymentStatus.AUTHORIZED.value):
            if payment.status != PaymentStatus.FAILED.value:
                logger.warning(
                    f"Ignoring failure for order {payment.order_id} in status {payment.status}"
                )
            return LedgerOutcome(payment=payment, applied=False)

        old_status = payment.status
        payment.status = PaymentStatus.FAILED.value
        payment.failure_reason = (reason or "")[:255] or None
        payment.failed_at = datetime.now(UTC)
        await db.flush()

        await audit_service.log_payment_transition(
            db=db,
            payment_id=payment.id,
            old_status=old_status,
            new_status=payment.status,
            source=source,
        )
        return LedgerOutcome(payment=payment, applied=True)

    async def apply_refund(
        self,
        db: AsyncSession,
        payment: Payment,
        refund_id: str,
        refund_amount: int,
        user_id: UUID | None = None,
        source: str = "api",
    ) -> LedgerOutcome:
        """Mark a captured payment refunded.

        Raises:
            PaymentAlreadyRefunded: If the payment is already refunded
            ValidationError: If the payment is not captured or the amount
                exceeds the captured amount
        """
        if payment.status == PaymentStatus.REFUNDED.value:
            raise PaymentAlreadyRefunded(payment.gateway_payment_id)
        self._validate_refund(payment, refund_amount)

        old_status = payment.status
        payment.status = PaymentStatus.REFUNDED.value
        payment.refund_id = refund_id
        payment.refund_amount = refund_amount
        payment.refunded_at = datetime.now(UTC)
        await db.flush()

        await audit_service.log_payment_transition(
            db=db,
            payment_id=payment.id,
            old_status=old_status,
            new_status=payment.status,
            amount=refund_amount,
            user_id=user_id,
            source=source,
        )
        return LedgerOutcome(payment=payment, applied=True)

    async def refund_captured(
        self,
        db: AsyncSession,
        payment: Payment,
        amount: int | None = None,
        user_id: UUID | None = None,
    ) -> LedgerOutcome:
        """Refund through the gateway, then record it. Defaults to the captured amount.

        Raises:
            PaymentAlreadyRefunded: If the payment is already refunded
            ValidationError: If the refund is not allowed or the amount is invalid
            GatewayUnavailable: If the gateway refuses or is unreachable
        """
        if payment.status == PaymentStatus.REFUNDED.value:
            raise PaymentAlreadyRefunded(payment.gateway_payment_id)
        refund_amount = amount if amount is not None else payment.captured_amount
        self._validate_refund(payment, refund_amount)

        if not self.gateway.is_configured:
            raise GatewayUnavailable(self.gateway.gateway_type.value, "not configured")

        result = await self.gateway.refund(
            payment_id=payment.gateway_payment_id,
            amount=refund_amount,
            notes={"order_id": payment.order_id},
        )
        if not result.success or not result.refund_id:
            raise GatewayUnavailable(self.gateway.gateway_type.value, result.error_message)

        return await self.apply_refund(
            db, payment, result.refund_id, refund_amount, user_id=user_id
        )

    def _validate_refund(self, payment: Payment, refund_amount: int) -> None:
        if payment.status != PaymentStatus.CAPTURED.value:
            raise ValidationError(
                f"Only captured payments can be refunded (payment is {payment.status})"
            )
        if refund_amount <= 0:
            raise ValidationError(f"Refund amount must be positive, got {refund_amount}")
        if refund_amount > payment.captured_amount:
            raise ValidationError(
                f"Refund amount ({refund_amount}) exceeds captured amount ({payment.captured_amount})"
            )
