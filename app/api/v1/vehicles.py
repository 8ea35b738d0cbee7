"""Vehicle endpoints."""

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import get_current_admin, get_db, get_lifecycle_service
from app.core.exceptions import NotFoundError, ValidationError
from app.domain.payment_state import VehicleStatus
from app.models.user import User
from app.models.vehicle import Vehicle
from app.schemas.vehicle import VehicleCreate, VehicleResponse, VehicleStatusUpdate
from app.services.booking_service import BookingLifecycleService

router = APIRouter()


@router.post("/", response_model=VehicleResponse, status_code=status.HTTP_201_CREATED)
async def create_vehicle(
    vehicle_data: VehicleCreate,
    current_user: Annotated[User, Depends(get_current_admin)],
    db: Annotated[AsyncSession, Depends(get_db)],
) -> Vehicle:
    """Register a vehicle (admin only). New vehicles start Available."""
    result = await db.execute(
        select(Vehicle).where(Vehicle.registration_no == vehicle_data.registration_no)
    )
    if result.scalar_one_or_none():
        raise ValidationError("Registration number already exists")

    vehicle = Vehicle(**vehicle_data.model_dump(), status=VehicleStatus.AVAILABLE.value)
    db.add(vehicle)
    await db.flush()
    return vehicle


@router.get("/", response_model=list[VehicleResponse])
async def list_vehicles(
    db: Annotated[AsyncSession, Depends(get_db)],
    status_filter: VehicleStatus | None = Query(default=None, alias="status"),
    category: str | None = None,
) -> list[Vehicle]:
    """List vehicles, optionally only those in one status."""
    query = select(Vehicle)
    if status_filter:
        query = query.where(Vehicle.status == status_filter.value)
    if category:
        query = query.where(Vehicle.category == category)
    result = await db.execute(query.order_by(Vehicle.name))
    return list(result.scalars().all())


@router.get("/{vehicle_id}", response_model=VehicleResponse)
async def get_vehicle(
    vehicle_id: UUID,
    db: Annotated[AsyncSession, Depends(get_db)],
) -> Vehicle:
    """Get a vehicle by ID."""
    vehicle = await db.get(Vehicle, vehicle_id)
    if not vehicle:
        raise NotFoundError("Vehicle", str(vehicle_id))
    return vehicle


@router.patch("/{vehicle_id}/status", response_model=VehicleResponse)
async def set_vehicle_status(
    vehicle_id: UUID,
    request: VehicleStatusUpdate,
    current_user: Annotated[User, Depends(get_current_admin)],
    lifecycle: Annotated[BookingLifecycleService, Depends(get_lifecycle_service)],
) -> Vehicle:
    """Put a vehicle into maintenance, retire it, or return it to service (admin only)."""
    return await lifecycle.set_vehicle_status(vehicle_id, request.status.value, current_user.id)
