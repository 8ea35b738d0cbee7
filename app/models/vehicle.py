"""Vehicle database model."""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import DateTime, Integer, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from app.database import Base, utcnow
from app.domain.payment_state import VehicleStatus


class Vehicle(Base):
    """Rentable vehicle and its availability flag."""

    __tablename__ = "vehicles"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    registration_no: Mapped[str] = mapped_column(String(20), unique=True, nullable=False)
    category: Mapped[str] = mapped_column(
        String(20), default="Sedan"
    )  # Sedan, SUV, MUV, Luxury, Economy
    seats: Mapped[int] = mapped_column(Integer, default=4)
    price_per_day: Mapped[int] = mapped_column(Integer, nullable=False)  # in paise

    status: Mapped[str] = mapped_column(
        String(20), default=VehicleStatus.AVAILABLE.value, nullable=False, index=True
    )  # Available, Rented, Maintenance, Inactive
    # Booking currently holding the vehicle; set iff status is Rented
    current_booking_id: Mapped[uuid.UUID | None] = mapped_column(Uuid)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow
    )
