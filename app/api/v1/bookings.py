"""Booking endpoints."""

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status

from app.api.deps import (
    get_current_admin,
    get_current_user,
    get_lifecycle_service,
    require_booking_access,
)
from app.core.exceptions import AuthorizationError
from app.domain.booking_state import STATUS_LABELS, map_legacy_status
from app.models.admin import AuditLog
from app.models.booking import Booking
from app.models.user import User
from app.schemas.booking import (
    AdminStatusRequest,
    AllowedTransitionsResponse,
    AssignDriverRequest,
    AuditEntryResponse,
    BookingCancelRequest,
    BookingCreate,
    BookingListResponse,
    BookingResponse,
    LifecycleResponse,
)
from app.schemas.payment import PaymentLifecycleResponse, PaymentResponse, RefundCreate
from app.services.booking_service import (
    BookingLifecycleService,
    LifecycleResult,
    RentalWindow,
)

router = APIRouter()

Lifecycle = Annotated[BookingLifecycleService, Depends(get_lifecycle_service)]


def lifecycle_response(result: LifecycleResult) -> LifecycleResponse:
    return LifecycleResponse(
        booking=BookingResponse.model_validate(result.booking),
        applied=result.applied,
        allowed_transitions=result.allowed_transitions,
    )


def payment_lifecycle_response(result: LifecycleResult) -> PaymentLifecycleResponse:
    return PaymentLifecycleResponse(
        booking=BookingResponse.model_validate(result.booking),
        payment=PaymentResponse.model_validate(result.payment) if result.payment else None,
        applied=result.applied,
        allowed_transitions=result.allowed_transitions,
    )


def _require_trip_staff(booking: Booking, user: User) -> None:
    if not (user.is_admin or booking.assigned_driver_id == user.id):
        raise AuthorizationError("Only the assigned driver can update this trip")


@router.post("/", response_model=LifecycleResponse, status_code=status.HTTP_201_CREATED)
async def create_booking(
    booking_data: BookingCreate,
    current_user: Annotated[User, Depends(get_current_user)],
    lifecycle: Lifecycle,
) -> LifecycleResponse:
    """Create a draft booking; the vehicle is held from this point."""
    window = RentalWindow(
        pickup_date=booking_data.pickup_date,
        pickup_time=booking_data.pickup_time,
        dropoff_date=booking_data.dropoff_date,
        dropoff_time=booking_data.dropoff_time,
        pickup_location=booking_data.pickup_location,
        dropoff_location=booking_data.dropoff_location,
        services=booking_data.services,
    )
    result = await lifecycle.create_booking(booking_data.vehicle_id, window, current_user.id)
    return lifecycle_response(result)


@router.get("/", response_model=BookingListResponse)
async def list_bookings(
    current_user: Annotated[User, Depends(get_current_user)],
    lifecycle: Lifecycle,
    role: str = Query(default="customer", pattern="^(customer|driver|all)$"),
    status_filter: str | None = Query(default=None, alias="status"),
    limit: int = Query(default=50, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
) -> BookingListResponse:
    """List bookings for the current user (``role=all`` is admin only)."""
    customer_id = driver_id = None
    if role == "customer":
        customer_id = current_user.id
    elif role == "driver":
        if not current_user.can_drive:
            raise AuthorizationError("Driver access required")
        driver_id = current_user.id
    elif not current_user.is_admin:
        raise AuthorizationError("Admin access required")

    bookings = await lifecycle.list_bookings(
        customer_id=customer_id,
        driver_id=driver_id,
        status=status_filter,
        limit=limit,
        offset=offset,
    )
    return BookingListResponse(
        items=[BookingResponse.model_validate(b) for b in bookings],
        limit=limit,
        offset=offset,
    )


@router.get("/{booking_id}", response_model=BookingResponse)
async def get_booking(
    booking: Annotated[Booking, Depends(require_booking_access)],
) -> Booking:
    """Get a booking by ID."""
    return booking


@router.get("/{booking_id}/transitions", response_model=AllowedTransitionsResponse)
async def get_allowed_transitions(
    booking: Annotated[Booking, Depends(require_booking_access)],
) -> AllowedTransitionsResponse:
    """Statuses the booking can move to next."""
    return AllowedTransitionsResponse(
        booking_id=booking.id,
        status=booking.status,
        status_label=STATUS_LABELS.get(map_legacy_status(booking.status), booking.status),
        allowed_transitions=LifecycleResult(booking=booking).allowed_transitions,
    )


@router.get("/{booking_id}/history", response_model=list[AuditEntryResponse])
async def get_booking_history(
    booking_id: UUID,
    current_user: Annotated[User, Depends(get_current_admin)],
    lifecycle: Lifecycle,
) -> list[AuditLog]:
    """Applied status changes of a booking, oldest first (admin only)."""
    await lifecycle.get_booking(booking_id)
    return await lifecycle.get_history(booking_id)


@router.post("/{booking_id}/assign-driver", response_model=LifecycleResponse)
async def assign_driver(
    booking_id: UUID,
    request: AssignDriverRequest,
    current_user: Annotated[User, Depends(get_current_admin)],
    lifecycle: Lifecycle,
) -> LifecycleResponse:
    """Assign a driver to a confirmed booking (admin only)."""
    result = await lifecycle.assign_driver(booking_id, request.driver_id, current_user.id)
    return lifecycle_response(result)


@router.post("/{booking_id}/start", response_model=LifecycleResponse)
async def start_trip(
    booking: Annotated[Booking, Depends(require_booking_access)],
    current_user: Annotated[User, Depends(get_current_user)],
    lifecycle: Lifecycle,
) -> LifecycleResponse:
    """Start the trip (assigned driver or admin)."""
    _require_trip_staff(booking, current_user)
    result = await lifecycle.start_trip(booking.id, current_user.id)
    return lifecycle_response(result)


@router.post("/{booking_id}/complete", response_model=LifecycleResponse)
async def complete_trip(
    booking: Annotated[Booking, Depends(require_booking_access)],
    current_user: Annotated[User, Depends(get_current_user)],
    lifecycle: Lifecycle,
) -> LifecycleResponse:
    """Complete the trip (assigned driver or admin)."""
    _require_trip_staff(booking, current_user)
    result = await lifecycle.complete_trip(booking.id, current_user.id)
    return lifecycle_response(result)


@router.post("/{booking_id}/cancel", response_model=LifecycleResponse)
async def cancel_booking(
    booking_id: UUID,
    request: BookingCancelRequest,
    current_user: Annotated[User, Depends(get_current_user)],
    lifecycle: Lifecycle,
) -> LifecycleResponse:
    """Cancel a booking (its customer or an admin)."""
    result = await lifecycle.cancel_booking(booking_id, current_user, reason=request.reason)
    return lifecycle_response(result)


@router.post("/{booking_id}/refund", response_model=PaymentLifecycleResponse)
async def refund_booking(
    booking_id: UUID,
    request: RefundCreate,
    current_user: Annotated[User, Depends(get_current_admin)],
    lifecycle: Lifecycle,
) -> PaymentLifecycleResponse:
    """Refund a completed or cancelled booking (admin only)."""
    result = await lifecycle.refund(booking_id, amount=request.amount, actor_id=current_user.id)
    return payment_lifecycle_response(result)


@router.post("/{booking_id}/status", response_model=LifecycleResponse)
async def admin_set_status(
    booking_id: UUID,
    request: AdminStatusRequest,
    current_user: Annotated[User, Depends(get_current_admin)],
    lifecycle: Lifecycle,
) -> LifecycleResponse:
    """Move a booking along any valid edge (admin only)."""
    result = await lifecycle.admin_set_status(
        booking_id, request.status, current_user, driver_id=request.driver_id
    )
    return lifecycle_response(result)
