"""Vehicle-related Pydantic schemas."""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from app.domain.payment_state import VehicleStatus


class VehicleCreate(BaseModel):
    """Schema for registering a vehicle."""

    name: str = Field(..., min_length=1, max_length=100)
    registration_no: str = Field(..., min_length=1, max_length=20)
    category: str = Field(default="Sedan", pattern="^(Sedan|SUV|MUV|Luxury|Economy)$")
    seats: int = Field(default=4, ge=1, le=60)
    price_per_day: int = Field(..., ge=0)  # in paise


class VehicleStatusUpdate(BaseModel):
    status: VehicleStatus


class VehicleResponse(BaseModel):
    """Schema for vehicle response."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    name: str
    registration_no: str
    category: str
    seats: int
    price_per_day: int
    status: str
    current_booking_id: UUID | None
    created_at: datetime
