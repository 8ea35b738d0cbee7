"""Core utilities and security modules."""

from app.core.exceptions import (
    AppException,
    AuthenticationError,
    AuthorizationError,
    ConcurrentUpdate,
    GatewayUnavailable,
    InvalidTransition,
    NotFoundError,
    PaymentAlreadyOpen,
    PaymentAlreadyRefunded,
    ResourceUnavailable,
    SignatureError,
    ValidationError,
)
from app.core.security import create_access_token, verify_token

__all__ = [
    "AppException",
    "AuthenticationError",
    "AuthorizationError",
    "ConcurrentUpdate",
    "GatewayUnavailable",
    "InvalidTransition",
    "NotFoundError",
    "PaymentAlreadyOpen",
    "PaymentAlreadyRefunded",
    "ResourceUnavailable",
    "SignatureError",
    "ValidationError",
    "create_access_token",
    "verify_token",
]
