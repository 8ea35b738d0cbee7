"""Vehicle availability ledger.

A vehicle is Rented exactly while one booking holds it. Holds and releases
are written in the caller's transaction, next to the booking status change
that causes them.
"""

import logging
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import NotFoundError, ResourceUnavailable, ValidationError
from app.domain.payment_state import VehicleStatus
from app.models.vehicle import Vehicle
from app.services.audit_service import audit_service

logger = logging.getLogger(__name__)

# Statuses an admin may set directly; Rented is only ever set by a hold
OPERATIONAL_STATUSES = frozenset(
    {VehicleStatus.AVAILABLE, VehicleStatus.MAINTENANCE, VehicleStatus.INACTIVE}
)


class AvailabilityService:
    """Hold and release vehicles on behalf of bookings."""

    async def get_vehicle(
        self,
        db: AsyncSession,
        vehicle_id: UUID,
        for_update: bool = False,
    ) -> Vehicle:
        query = select(Vehicle).where(Vehicle.id == vehicle_id)
        if for_update:
            query = query.with_for_update()
        result = await db.execute(query)
        vehicle = result.scalar_one_or_none()
        if not vehicle:
            raise NotFoundError("Vehicle", str(vehicle_id))
        return vehicle

    async def hold(self, db: AsyncSession, vehicle_id: UUID, booking_id: UUID) -> Vehicle:
        """Mark the vehicle Rented by ``booking_id``.

        Raises:
            ResourceUnavailable: If the vehicle is not Available
        """
        vehicle = await self.get_vehicle(db, vehicle_id, for_update=True)
        if vehicle.status != VehicleStatus.AVAILABLE.value:
            raise ResourceUnavailable(vehicle_id)

        vehicle.status = VehicleStatus.RENTED.value
        vehicle.current_booking_id = booking_id
        await db.flush()
        logger.info(f"Vehicle {vehicle_id} held by booking {booking_id}")
        return vehicle

    async def release(self, db: AsyncSession, vehicle_id: UUID) -> bool:
        """Mark the vehicle Available. Releasing an available vehicle is a no-op.

        Returns:
            True if the vehicle changed state
        """
        vehicle = await self.get_vehicle(db, vehicle_id, for_update=True)
        if vehicle.status == VehicleStatus.AVAILABLE.value and vehicle.current_booking_id is None:
            return False

        previous_holder = vehicle.current_booking_id
        vehicle.status = VehicleStatus.AVAILABLE.value
        vehicle.current_booking_id = None
        await db.flush()
        logger.info(f"Vehicle {vehicle_id} released (was held by {previous_holder})")
        return True

    async def set_operational_status(
        self,
        db: AsyncSession,
        vehicle_id: UUID,
        status: str,
        user_id: UUID | None = None,
    ) -> Vehicle:
        """Admin status change (maintenance, retirement, return to service).

        Raises:
            ValidationError: If ``status`` is Rented or unknown
            ResourceUnavailable: If a booking currently holds the vehicle
        """
        try:
            target = VehicleStatus(status)
        except ValueError:
            raise ValidationError(f"Unknown vehicle status '{status}'")
        if target not in OPERATIONAL_STATUSES:
            raise ValidationError("Vehicles are only marked Rented by a booking")

        vehicle = await self.get_vehicle(db, vehicle_id, for_update=True)
        if vehicle.status == VehicleStatus.RENTED.value:
            raise ResourceUnavailable(
                vehicle_id,
                detail=f"Vehicle is held by booking {vehicle.current_booking_id}",
            )

        old_status = vehicle.status
        vehicle.status = target.value
        await audit_service.log_action(
            db=db,
            action="vehicle_status_changed",
            resource_type="vehicle",
            resource_id=vehicle.id,
            user_id=user_id,
            old_values={"status": old_status},
            new_values={"status": target.value},
        )
        await db.flush()
        return vehicle


availability_service = AvailabilityService()
