"""Payment endpoints."""

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, status

from app.api.deps import (
    get_current_admin,
    get_lifecycle_service,
    require_customer_booking_access,
)
from app.api.v1.bookings import payment_lifecycle_response
from app.config import settings
from app.core.exceptions import NotFoundError, ValidationError
from app.domain.payment_state import PaymentStatus
from app.models.booking import Booking
from app.models.payment import Payment
from app.models.user import User
from app.schemas.booking import BookingResponse
from app.schemas.payment import (
    OrderResponse,
    PaymentLifecycleResponse,
    PaymentResponse,
    PaymentVerifyRequest,
    RefundCreate,
)
from app.services.booking_service import BookingLifecycleService

router = APIRouter()

Lifecycle = Annotated[BookingLifecycleService, Depends(get_lifecycle_service)]


@router.post(
    "/bookings/{booking_id}/order",
    response_model=OrderResponse,
    status_code=status.HTTP_201_CREATED,
)
async def open_payment(
    booking: Annotated[Booking, Depends(require_customer_booking_access)],
    lifecycle: Lifecycle,
) -> OrderResponse:
    """Open a gateway order for the booking total.

    The client completes checkout with the returned order id and then calls
    the verify endpoint with the gateway's payment id and signature.
    """
    result = await lifecycle.open_payment(booking.id, actor_id=booking.customer_id)
    return OrderResponse(
        booking=BookingResponse.model_validate(result.booking),
        payment=PaymentResponse.model_validate(result.payment),
        key_id=settings.razorpay_key_id or None,
    )


@router.post("/bookings/{booking_id}/verify", response_model=PaymentLifecycleResponse)
async def verify_payment(
    request: PaymentVerifyRequest,
    booking: Annotated[Booking, Depends(require_customer_booking_access)],
    lifecycle: Lifecycle,
) -> PaymentLifecycleResponse:
    """Verify the checkout signature and confirm the booking.

    Repeating the call with the same proof returns ``applied: false``.
    """
    result = await lifecycle.confirm_payment(
        booking.id, request.order_id, request.payment_id, request.signature
    )
    return payment_lifecycle_response(result)


@router.get("/bookings/{booking_id}", response_model=PaymentResponse)
async def get_latest_payment(
    booking: Annotated[Booking, Depends(require_customer_booking_access)],
    lifecycle: Lifecycle,
) -> Payment:
    """Most recent payment for a booking."""
    payment = await lifecycle.get_latest_payment(booking.id)
    if not payment:
        raise NotFoundError("Payment for booking", str(booking.id))
    return payment


@router.post("/{payment_id}/refund", response_model=PaymentLifecycleResponse)
async def refund_payment(
    payment_id: UUID,
    request: RefundCreate,
    current_user: Annotated[User, Depends(get_current_admin)],
    lifecycle: Lifecycle,
) -> PaymentLifecycleResponse:
    """Refund a captured payment by its id (admin only)."""
    payment = await lifecycle.get_payment(payment_id)
    if payment.status != PaymentStatus.CAPTURED.value:
        raise ValidationError(f"Payment {payment_id} is {payment.status}, not captured")
    result = await lifecycle.refund(
        payment.booking_id,
        amount=request.amount,
        actor_id=current_user.id,
        payment_id=payment.id,
    )
    return payment_lifecycle_response(result)
