"""API dependencies for authentication and service access."""

from functools import lru_cache
from typing import Annotated
from uuid import UUID

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import AuthenticationError, AuthorizationError
from app.core.security import verify_token
from app.database import get_db
from app.models.booking import Booking
from app.models.user import User
from app.services.booking_service import BookingLifecycleService
from app.services.reconciliation_service import ReconciliationService

# Security scheme
security = HTTPBearer(auto_error=False)


async def get_current_user(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(security)],
    db: Annotated[AsyncSession, Depends(get_db)],
) -> User:
    """Get the current authenticated user from JWT token."""
    if not credentials:
        raise AuthenticationError("Missing bearer token")
    try:
        payload = verify_token(credentials.credentials, token_type="access")
        user_id = UUID(payload.get("sub") or "")
    except ValueError:
        raise AuthenticationError("Invalid token payload")

    result = await db.execute(select(User).where(User.id == user_id))
    user = result.scalar_one_or_none()

    if not user:
        raise AuthenticationError("User not found")
    if not user.is_active:
        raise AuthenticationError("User account is deactivated")

    return user


async def get_current_admin(
    current_user: Annotated[User, Depends(get_current_user)],
) -> User:
    """Get current user and verify they are an admin."""
    if not current_user.is_admin:
        raise AuthorizationError("Admin access required")
    return current_user


@lru_cache
def get_lifecycle_service() -> BookingLifecycleService:
    """Process-wide lifecycle service (shares the lock manager across requests)."""
    return BookingLifecycleService()


def get_reconciliation_service(
    lifecycle: Annotated[BookingLifecycleService, Depends(get_lifecycle_service)],
) -> ReconciliationService:
    return ReconciliationService(lifecycle)


class BookingPermissionChecker:
    """Check if user has permission to access a booking.

    Customers see their own bookings, drivers the ones assigned to them,
    admins everything.
    """

    def __init__(self, allow_driver: bool = True):
        self.allow_driver = allow_driver

    async def __call__(
        self,
        booking_id: UUID,
        current_user: Annotated[User, Depends(get_current_user)],
        lifecycle: Annotated[BookingLifecycleService, Depends(get_lifecycle_service)],
    ) -> Booking:
        """Return the booking when the user may access it."""
        booking = await lifecycle.get_booking(booking_id)

        if current_user.is_admin or booking.customer_id == current_user.id:
            return booking
        if self.allow_driver and booking.assigned_driver_id == current_user.id:
            return booking

        raise AuthorizationError("You don't have permission to access this booking")


require_booking_access = BookingPermissionChecker()
require_customer_booking_access = BookingPermissionChecker(allow_driver=False)
