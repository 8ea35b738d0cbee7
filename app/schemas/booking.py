"""Booking-related Pydantic schemas."""

from datetime import date, datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator

from app.domain.booking_state import BookingStatus

CLOCK_PATTERN = r"^([01]\d|2[0-3]):[0-5]\d$"


class BookingCreate(BaseModel):
    """Schema for creating a booking."""

    vehicle_id: UUID
    pickup_date: date
    pickup_time: str = Field(..., pattern=CLOCK_PATTERN)
    dropoff_date: date
    dropoff_time: str = Field(..., pattern=CLOCK_PATTERN)
    pickup_location: str = Field(..., min_length=1, max_length=255)
    dropoff_location: str = Field(..., min_length=1, max_length=255)
    services: list[str] = Field(default_factory=list, max_length=20)

    @field_validator("dropoff_date")
    @classmethod
    def validate_dropoff(cls, v: date, info) -> date:
        pickup_date = info.data.get("pickup_date")
        if pickup_date and v < pickup_date:
            raise ValueError("dropoff_date cannot be before pickup_date")
        return v


class BookingCancelRequest(BaseModel):
    """Schema for cancelling a booking."""

    reason: str | None = Field(None, max_length=500)


class AssignDriverRequest(BaseModel):
    driver_id: UUID


class AdminStatusRequest(BaseModel):
    """Schema for the admin status override."""

    status: BookingStatus
    driver_id: UUID | None = None


class BookingResponse(BaseModel):
    """Schema for booking response."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    booking_code: str
    customer_id: UUID
    customer_name: str
    vehicle_id: UUID
    vehicle_name: str

    # Rental window
    pickup_date: date
    pickup_time: str
    dropoff_date: date
    dropoff_time: str
    pickup_location: str
    dropoff_location: str
    services: list[str] = []

    # Pricing
    duration_days: int
    duration: str
    total_amount: int
    currency: str

    # Status
    status: str
    payment_status: str
    assigned_driver_id: UUID | None
    actual_start_time: datetime | None
    actual_end_time: datetime | None
    cancellation_reason: str | None

    # Timestamps
    confirmed_at: datetime | None
    cancelled_at: datetime | None
    completed_at: datetime | None
    refunded_at: datetime | None
    created_at: datetime


class LifecycleResponse(BaseModel):
    """Booking after a lifecycle operation."""

    booking: BookingResponse
    applied: bool
    allowed_transitions: list[str]


class BookingListResponse(BaseModel):
    """Schema for booking list."""

    items: list[BookingResponse]
    limit: int
    offset: int


class AllowedTransitionsResponse(BaseModel):
    booking_id: UUID
    status: str
    status_label: str
    allowed_transitions: list[str]


class AuditEntryResponse(BaseModel):
    """One applied transition from the audit trail."""

    model_config = ConfigDict(from_attributes=True)

    action: str
    user_id: UUID | None
    source: str
    old_values: dict | None
    new_values: dict | None
    created_at: datetime
