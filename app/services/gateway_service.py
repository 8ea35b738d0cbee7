"""Payment gateway selection.

Builds the configured gateway adapter. No business logic here - only
gateway coordination.
"""

from functools import lru_cache

from app.config import settings
from app.gateways.base import GatewayType, ReconciliationGateway
from app.gateways.razorpay import RazorpayGateway
from app.gateways.sandbox import SandboxGateway


def _is_production() -> bool:
    """Check if running in production environment."""
    return settings.environment == "production"


def _assert_gateway_allowed(gateway_type: GatewayType) -> None:
    """Block the real gateway unless running in production or staging.

    Raises:
        RuntimeError: If the real gateway is selected in development
    """
    if gateway_type == GatewayType.RAZORPAY and settings.environment == "development":
        if settings.razorpay_key_id and not settings.razorpay_key_id.startswith("rzp_test_"):
            raise RuntimeError(
                "Cannot use live Razorpay keys in development environment. "
                "Use rzp_test_ keys or PAYMENT_GATEWAY=sandbox."
            )


def build_gateway(gateway_type: str | GatewayType) -> ReconciliationGateway:
    """Create a gateway adapter of the given type."""
    gateway_type = GatewayType(gateway_type)
    _assert_gateway_allowed(gateway_type)
    if gateway_type == GatewayType.RAZORPAY:
        return RazorpayGateway()
    if _is_production():
        raise RuntimeError("The sandbox gateway cannot be used in production")
    return SandboxGateway()


@lru_cache
def get_gateway() -> ReconciliationGateway:
    """Configured gateway instance."""
    return build_gateway(settings.payment_gateway)
