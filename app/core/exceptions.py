"""Custom application exceptions.

Every error the lifecycle engine signals is an ``AppException``. The
``context`` dict carries structured fields (allowed transitions, ids) that
the exception handler renders next to ``detail``.
"""

from collections.abc import Iterable
from typing import Any

from fastapi import HTTPException, status


class AppException(HTTPException):
    """Base application exception."""

    def __init__(
        self,
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail: str = "An unexpected error occurred",
        headers: dict[str, str] | None = None,
        context: dict[str, Any] | None = None,
    ) -> None:
        self.context = context or {}
        super().__init__(status_code=status_code, detail=detail, headers=headers)


class ValidationError(AppException):
    """Validation error exception."""

    def __init__(self, detail: str = "Validation failed", errors: list[dict[str, Any]] | None = None) -> None:
        self.errors = errors
        super().__init__(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=detail)


class NotFoundError(AppException):
    """Resource not found exception."""

    def __init__(self, resource: str = "Resource", identifier: str | None = None) -> None:
        detail = f"{resource} not found"
        if identifier:
            detail = f"{resource} with ID '{identifier}' not found"
        super().__init__(status_code=status.HTTP_404_NOT_FOUND, detail=detail)


class AuthenticationError(AppException):
    """Authentication failed exception."""

    def __init__(self, detail: str = "Authentication failed") -> None:
        super().__init__(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=detail,
            headers={"WWW-Authenticate": "Bearer"},
        )


class AuthorizationError(AppException):
    """Requester lacks rights over the specific resource."""

    def __init__(self, detail: str = "You don't have permission to access this resource") -> None:
        super().__init__(status_code=status.HTTP_403_FORBIDDEN, detail=detail)


class InvalidTransition(AppException):
    """Requested booking status change is not an edge of the state graph."""

    def __init__(self, current: str, target: str, allowed: Iterable[str]) -> None:
        self.current = current
        self.target = target
        self.allowed = sorted(allowed)
        listed = ", ".join(self.allowed) or "none"
        super().__init__(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Cannot transition from '{current}' to '{target}'. Allowed transitions: {listed}",
            context={"from": current, "to": target, "allowed": self.allowed},
        )


class ResourceUnavailable(AppException):
    """Vehicle is not available for a hold."""

    def __init__(self, vehicle_id: Any, detail: str = "Vehicle is not available for booking") -> None:
        self.vehicle_id = vehicle_id
        super().__init__(
            status_code=status.HTTP_409_CONFLICT,
            detail=detail,
            context={"vehicle_id": str(vehicle_id)},
        )


class PaymentAlreadyOpen(AppException):
    """A non-terminal payment already exists for the booking."""

    def __init__(self, booking_id: Any, order_id: str) -> None:
        super().__init__(
            status_code=status.HTTP_409_CONFLICT,
            detail="A payment is already in progress for this booking",
            context={"booking_id": str(booking_id), "order_id": order_id},
        )


class PaymentAlreadyRefunded(AppException):
    """Payment has already been refunded."""

    def __init__(self, gateway_payment_id: str | None) -> None:
        super().__init__(
            status_code=status.HTTP_409_CONFLICT,
            detail="Payment already refunded",
            context={"payment_id": gateway_payment_id},
        )


class SignatureError(AppException):
    """Client proof or webhook signature failed verification."""

    def __init__(self, detail: str = "Invalid payment signature") -> None:
        super().__init__(status_code=status.HTTP_401_UNAUTHORIZED, detail=detail)


class GatewayUnavailable(AppException):
    """Payment gateway unreachable, failing or unconfigured."""

    def __init__(self, gateway: str, detail: str | None = None) -> None:
        message = f"Payment gateway '{gateway}' is unavailable"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=message)


class ConcurrentUpdate(AppException):
    """Record changed underneath the caller or its lock could not be taken in time."""

    def __init__(self, resource: str, identifier: str) -> None:
        super().__init__(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"{resource} '{identifier}' is being modified by another request. Retry the operation.",
        )

