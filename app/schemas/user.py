"""User-related Pydantic schemas."""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict


class UserResponse(BaseModel):
    """Schema for user response, including booking stats."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    name: str
    email: str
    phone: str | None
    role: str
    is_active: bool
    total_bookings: int
    total_spent: int
    last_booking_date: datetime | None
    created_at: datetime
