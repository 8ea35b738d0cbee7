"""Database models."""

from app.models.admin import AuditLog
from app.models.booking import Booking, BookingCodeCounter
from app.models.payment import Payment
from app.models.user import User
from app.models.vehicle import Vehicle

__all__ = [
    # User
    "User",
    # Vehicle
    "Vehicle",
    # Booking
    "Booking",
    "BookingCodeCounter",
    # Payment
    "Payment",
    # Admin
    "AuditLog",
]
