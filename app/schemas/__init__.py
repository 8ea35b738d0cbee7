"""Pydantic schemas for API validation."""

from app.schemas.booking import (
    AdminStatusRequest,
    AllowedTransitionsResponse,
    AuditEntryResponse,
    AssignDriverRequest,
    BookingCancelRequest,
    BookingCreate,
    BookingListResponse,
    BookingResponse,
    LifecycleResponse,
)
from app.schemas.payment import (
    OrderResponse,
    PaymentLifecycleResponse,
    PaymentResponse,
    PaymentVerifyRequest,
    RefundCreate,
)
from app.schemas.user import UserResponse
from app.schemas.vehicle import VehicleCreate, VehicleResponse, VehicleStatusUpdate

__all__ = [
    # Booking
    "BookingCreate",
    "BookingCancelRequest",
    "AssignDriverRequest",
    "AdminStatusRequest",
    "BookingResponse",
    "BookingListResponse",
    "LifecycleResponse",
    "AllowedTransitionsResponse",
    "AuditEntryResponse",
    # Payment
    "PaymentVerifyRequest",
    "RefundCreate",
    "PaymentResponse",
    "OrderResponse",
    "PaymentLifecycleResponse",
    # User
    "UserResponse",
    # Vehicle
    "VehicleCreate",
    "VehicleStatusUpdate",
    "VehicleResponse",
]
