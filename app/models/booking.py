"""Booking-related database models."""

from __future__ import annotations

import uuid
from datetime import date, datetime

from sqlalchemy import (
    JSON,
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column

from app.database import Base, utcnow
from app.domain.booking_state import BookingStatus
from app.domain.payment_state import BookingPaymentStatus


class BookingCodeCounter(Base):
    """Per-year counter backing human-readable booking codes."""

    __tablename__ = "booking_code_counters"

    year: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=False)
    value: Mapped[int] = mapped_column(Integer, nullable=False, default=0)


class Booking(Base):
    """Vehicle rental booking.

    Holds a denormalized snapshot of the payment status; the Payment row
    owns the reference back to the booking, never the other way round.
    """

    __tablename__ = "bookings"
    __table_args__ = (
        CheckConstraint("total_amount >= 0", name="ck_bookings_total_amount_non_negative"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    booking_code: Mapped[str] = mapped_column(
        String(20), unique=True, nullable=False, index=True
    )  # RB-2026-00001

    customer_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id"), nullable=False, index=True
    )
    customer_name: Mapped[str] = mapped_column(String(100), nullable=False)
    customer_phone: Mapped[str | None] = mapped_column(String(20))
    vehicle_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("vehicles.id"), nullable=False, index=True
    )
    vehicle_name: Mapped[str] = mapped_column(String(100), nullable=False)

    # Rental window
    pickup_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    pickup_time: Mapped[str] = mapped_column(String(5), nullable=False)  # HH:MM
    dropoff_date: Mapped[date] = mapped_column(Date, nullable=False)
    dropoff_time: Mapped[str] = mapped_column(String(5), nullable=False)
    pickup_location: Mapped[str] = mapped_column(String(255), nullable=False)
    dropoff_location: Mapped[str] = mapped_column(String(255), nullable=False)
    services: Mapped[list[str]] = mapped_column(JSON, default=list)

    # Pricing (in paise)
    duration_days: Mapped[int] = mapped_column(Integer, nullable=False)
    duration: Mapped[str] = mapped_column(String(20), nullable=False)  # "3 days"
    total_amount: Mapped[int] = mapped_column(Integer, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), default="INR")

    # Status
    status: Mapped[str] = mapped_column(
        String(20), default=BookingStatus.DRAFT.value, nullable=False, index=True
    )
    payment_status: Mapped[str] = mapped_column(
        String(20), default=BookingPaymentStatus.UNPAID.value, nullable=False
    )  # Unpaid, PartiallyPaid, Paid, Refunded

    # Fulfilment
    assigned_driver_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("users.id"), index=True
    )
    actual_start_time: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    actual_end_time: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    # Cancellation
    cancelled_by: Mapped[uuid.UUID | None] = mapped_column(Uuid)  # null when cancelled by the system
    cancellation_reason: Mapped[str | None] = mapped_column(String(500))

    # Set in the same transaction that increments the customer's stats
    stats_recorded: Mapped[bool] = mapped_column(default=False, nullable=False)

    # Optimistic concurrency counter, bumped on every UPDATE
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    # Timestamps
    confirmed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    cancelled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    refunded_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, index=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow
    )

    __mapper_args__ = {"version_id_col": version}

