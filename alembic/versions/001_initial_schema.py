"""Initial database schema.

Revision ID: 001_initial
Revises: None
Create Date: 2026-10-19

Creates all tables for the rental booking engine:
- Users (customers, drivers, admins)
- Vehicles and their availability flag
- Bookings and the booking code counter
- Payments
- Audit log
"""

from typing import Sequence

import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

from alembic import op

# revision identifiers
revision: str = "001_initial"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    """Create all database tables."""

    # ==================== USERS ====================
    op.create_table(
        "users",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("email", sa.String(255), unique=True, nullable=False, index=True),
        sa.Column("phone", sa.String(20)),
        sa.Column("role", sa.String(20), nullable=False, server_default="user"),
        sa.Column("is_active", sa.Boolean, server_default=sa.true()),
        sa.Column("total_bookings", sa.Integer, nullable=False, server_default="0"),
        sa.Column("total_spent", sa.Integer, nullable=False, server_default="0"),
        sa.Column("last_booking_date", sa.DateTime(timezone=True)),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    # ==================== VEHICLES ====================
    op.create_table(
        "vehicles",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("registration_no", sa.String(20), unique=True, nullable=False),
        sa.Column("category", sa.String(20), server_default="Sedan"),
        sa.Column("seats", sa.Integer, server_default="4"),
        sa.Column("price_per_day", sa.Integer, nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="Available", index=True),
        sa.Column("current_booking_id", postgresql.UUID(as_uuid=True)),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    # ==================== BOOKINGS ====================
    op.create_table(
        "booking_code_counters",
        sa.Column("year", sa.Integer, primary_key=True, autoincrement=False),
        sa.Column("value", sa.Integer, nullable=False, server_default="0"),
    )

    op.create_table(
        "bookings",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("booking_code", sa.String(20), unique=True, nullable=False, index=True),
        sa.Column("customer_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("users.id"), nullable=False, index=True),
        sa.Column("customer_name", sa.String(100), nullable=False),
        sa.Column("customer_phone", sa.String(20)),
        sa.Column("vehicle_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("vehicles.id"), nullable=False, index=True),
        sa.Column("vehicle_name", sa.String(100), nullable=False),
        sa.Column("pickup_date", sa.Date, nullable=False, index=True),
        sa.Column("pickup_time", sa.String(5), nullable=False),
        sa.Column("dropoff_date", sa.Date, nullable=False),
        sa.Column("dropoff_time", sa.String(5), nullable=False),
        sa.Column("pickup_location", sa.String(255), nullable=False),
        sa.Column("dropoff_location", sa.String(255), nullable=False),
        sa.Column("services", postgresql.JSONB),
        sa.Column("duration_days", sa.Integer, nullable=False),
        sa.Column("duration", sa.String(20), nullable=False),
        sa.Column("total_amount", sa.Integer, nullable=False),
        sa.Column("currency", sa.String(3), server_default="INR"),
        sa.Column("status", sa.String(20), nullable=False, server_default="draft", index=True),
        sa.Column("payment_status", sa.String(20), nullable=False, server_default="Unpaid"),
        sa.Column("assigned_driver_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("users.id"), index=True),
        sa.Column("actual_start_time", sa.DateTime(timezone=True)),
        sa.Column("actual_end_time", sa.DateTime(timezone=True)),
        sa.Column("cancelled_by", postgresql.UUID(as_uuid=True)),
        sa.Column("cancellation_reason", sa.String(500)),
        sa.Column("stats_recorded", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("version", sa.Integer, nullable=False, server_default="1"),
        sa.Column("confirmed_at", sa.DateTime(timezone=True)),
        sa.Column("cancelled_at", sa.DateTime(timezone=True)),
        sa.Column("completed_at", sa.DateTime(timezone=True)),
        sa.Column("refunded_at", sa.DateTime(timezone=True)),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), index=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.CheckConstraint("total_amount >= 0", name="ck_bookings_total_amount_non_negative"),
    )

    # ==================== PAYMENTS ====================
    op.create_table(
        "payments",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("booking_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("bookings.id"), nullable=False, index=True),
        sa.Column("user_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("users.id"), nullable=False, index=True),
        sa.Column("gateway", sa.String(30), nullable=False),
        sa.Column("order_id", sa.String(100), unique=True, nullable=False, index=True),
        sa.Column("gateway_payment_id", sa.String(100), unique=True),
        sa.Column("signature", sa.String(255)),
        sa.Column("method", sa.String(30)),
        sa.Column("amount", sa.Integer, nullable=False),
        sa.Column("currency", sa.String(3), server_default="INR"),
        sa.Column("captured_amount", sa.Integer, nullable=False, server_default="0"),
        sa.Column("refund_amount", sa.Integer, nullable=False, server_default="0"),
        sa.Column("refund_id", sa.String(100)),
        sa.Column("status", sa.String(20), nullable=False, server_default="created", index=True),
        sa.Column("failure_reason", sa.String(255)),
        sa.Column("notes", postgresql.JSONB),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("captured_at", sa.DateTime(timezone=True)),
        sa.Column("failed_at", sa.DateTime(timezone=True)),
        sa.Column("refunded_at", sa.DateTime(timezone=True)),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.CheckConstraint("refund_amount <= captured_amount", name="ck_payments_refund_within_capture"),
    )

    # ==================== ADMIN ====================
    op.create_table(
        "audit_logs",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("user_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("users.id"), index=True),
        sa.Column("action", sa.String(100), nullable=False, index=True),
        sa.Column("resource_type", sa.String(50), nullable=False, index=True),
        sa.Column("resource_id", postgresql.UUID(as_uuid=True), index=True),
        sa.Column("source", sa.String(20), server_default="api"),
        sa.Column("old_values", postgresql.JSONB),
        sa.Column("new_values", postgresql.JSONB),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), index=True),
    )


def downgrade() -> None:
    """Drop all database tables in reverse order."""
    op.drop_table("audit_logs")
    op.drop_table("payments")
    op.drop_table("bookings")
    op.drop_table("booking_code_counters")
    op.drop_table("vehicles")
    op.drop_table("users")
