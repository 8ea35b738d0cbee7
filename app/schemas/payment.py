"""Payment-related Pydantic schemas."""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from app.schemas.booking import BookingResponse


class PaymentVerifyRequest(BaseModel):
    """Client checkout result to verify."""

    order_id: str = Field(..., min_length=1, max_length=64)
    payment_id: str = Field(..., min_length=1, max_length=64)
    signature: str = Field(..., min_length=1, max_length=128)


class RefundCreate(BaseModel):
    """Schema for requesting a refund (defaults to the captured amount)."""

    amount: int | None = Field(None, gt=0)


class PaymentResponse(BaseModel):
    """Schema for payment response."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    booking_id: UUID
    user_id: UUID
    gateway: str
    order_id: str
    gateway_payment_id: str | None
    method: str | None
    amount: int
    currency: str
    captured_amount: int
    refund_amount: int
    refund_id: str | None
    status: str
    failure_reason: str | None
    created_at: datetime
    captured_at: datetime | None
    refunded_at: datetime | None


class OrderResponse(BaseModel):
    """Order opened for checkout; ``key_id`` is the public checkout key."""

    booking: BookingResponse
    payment: PaymentResponse
    key_id: str | None = None


class PaymentLifecycleResponse(BaseModel):
    """Booking and payment after a payment operation."""

    booking: BookingResponse
    payment: PaymentResponse | None
    applied: bool
    allowed_transitions: list[str]
