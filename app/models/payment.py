"""Payment database model."""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import JSON, CheckConstraint, DateTime, ForeignKey, Integer, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from app.database import Base, utcnow
from app.domain.payment_state import PaymentStatus


class Payment(Base):
    """Payment opened against the gateway for one booking."""

    __tablename__ = "payments"
    __table_args__ = (
        CheckConstraint("refund_amount <= captured_amount", name="ck_payments_refund_within_capture"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    booking_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("bookings.id"), nullable=False, index=True
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id"), nullable=False, index=True
    )

    # Gateway identifiers
    gateway: Mapped[str] = mapped_column(String(30), nullable=False)  # razorpay, sandbox
    order_id: Mapped[str] = mapped_column(String(100), unique=True, nullable=False, index=True)
    gateway_payment_id: Mapped[str | None] = mapped_column(String(100), unique=True)
    signature: Mapped[str | None] = mapped_column(String(255))
    method: Mapped[str | None] = mapped_column(String(30))  # card, upi, netbanking, wallet

    # Amounts (in paise)
    amount: Mapped[int] = mapped_column(Integer, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), default="INR")
    captured_amount: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    refund_amount: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    refund_id: Mapped[str | None] = mapped_column(String(100))

    # Status
    status: Mapped[str] = mapped_column(
        String(20), default=PaymentStatus.CREATED.value, nullable=False, index=True
    )  # created, authorized, captured, failed, refunded
    failure_reason: Mapped[str | None] = mapped_column(String(255))
    notes: Mapped[dict | None] = mapped_column(JSON)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    captured_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    failed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    refunded_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow
    )
