"""Base reconciliation gateway interface.

All gateway adapters must implement this interface.
Business logic should NOT live in adapters - only gateway communication
and signature primitives. How gateway events map onto bookings is decided
by the lifecycle and reconciliation services.
"""

import hashlib
import hmac
import json
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum


class GatewayType(str, Enum):
    """Supported payment gateways."""

    RAZORPAY = "razorpay"
    SANDBOX = "sandbox"


class WebhookEventType(str, Enum):
    """Webhook events consumed by reconciliation."""

    PAYMENT_CAPTURED = "payment.captured"
    PAYMENT_FAILED = "payment.failed"
    REFUND_CREATED = "refund.created"


@dataclass
class OrderResult:
    """Result of opening a remote payment order."""

    success: bool
    order_id: str | None = None
    error_message: str | None = None
    raw_response: dict | None = None


@dataclass
class RefundResult:
    """Result of a refund operation."""

    success: bool
    refund_id: str | None = None
    error_message: str | None = None
    raw_response: dict | None = None


@dataclass
class GatewayEvent:
    """Webhook event reduced to the fields needed to locate a Payment."""

    event_type: str
    order_id: str | None = None
    payment_id: str | None = None
    amount: int | None = None  # in paise
    refund_id: str | None = None
    method: str | None = None
    error_description: str | None = None


def sign_client_proof(secret: str, order_id: str, payment_id: str) -> str:
    """HMAC-SHA256 over ``order_id|payment_id``, hex encoded."""
    body = f"{order_id}|{payment_id}".encode()
    return hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()


def sign_webhook_payload(secret: str, payload: bytes) -> str:
    """HMAC-SHA256 over the raw webhook body, hex encoded."""
    return hmac.new(secret.encode(), payload, hashlib.sha256).hexdigest()


def signatures_match(expected: str, received: str | None) -> bool:
    if not received:
        return False
    return hmac.compare_digest(expected, received)


def _entity(entities: dict, name: str) -> dict | None:
    """``entities[name]["entity"]``, ``{}`` when absent, None when malformed."""
    wrapper = entities.get(name) or {}
    if not isinstance(wrapper, dict):
        return None
    entity = wrapper.get("entity") or {}
    return entity if isinstance(entity, dict) else None


def parse_webhook_event(payload: bytes) -> GatewayEvent | None:
    """Parse a Razorpay-format webhook body.

    Returns None when the body is not a JSON object with an ``event`` key, or
    when any nested ``payload`` level is present but not an object.
    """
    try:
        body = json.loads(payload)
    except ValueError:
        return None
    if not isinstance(body, dict) or not isinstance(body.get("event"), str):
        return None

    entities = body.get("payload") or {}
    if not isinstance(entities, dict):
        return None
    payment = _entity(entities, "payment")
    refund = _entity(entities, "refund")
    if payment is None or refund is None:
        return None

    if body["event"] == WebhookEventType.REFUND_CREATED.value:
        return GatewayEvent(
            event_type=body["event"],
            payment_id=refund.get("payment_id") or payment.get("id"),
            amount=refund.get("amount"),
            refund_id=refund.get("id"),
        )

    return GatewayEvent(
        event_type=body["event"],
        order_id=payment.get("order_id"),
        payment_id=payment.get("id"),
        amount=payment.get("amount"),
        method=payment.get("method"),
        error_description=payment.get("error_description"),
    )


class ReconciliationGateway(ABC):
    """Abstract base class for payment gateways."""

    @property
    @abstractmethod
    def gateway_type(self) -> GatewayType:
        """Return the gateway type."""
        pass

    @property
    @abstractmethod
    def is_configured(self) -> bool:
        """True when API credentials are present."""
        pass

    @property
    @abstractmethod
    def webhook_configured(self) -> bool:
        """True when a webhook secret is present."""
        pass

    @abstractmethod
    async def create_order(
        self,
        amount: int,
        currency: str,
        receipt: str,
        notes: dict | None = None,
    ) -> OrderResult:
        """Open a remote payment order.

        Args:
            amount: Amount in smallest currency unit (paise)
            currency: Currency code (INR)
            receipt: Internal reference (booking code)
            notes: Additional metadata stored with the order

        Returns:
            OrderResult with the gateway order id
        """
        pass

    @abstractmethod
    def verify_client_proof(self, order_id: str, payment_id: str, signature: str) -> bool:
        """Check a client-submitted success assertion.

        Args:
            order_id: Gateway order id
            payment_id: Gateway payment id reported by the checkout
            signature: Signature reported by the checkout

        Returns:
            True if the signature was produced with the shared key secret
        """
        pass

    @abstractmethod
    def verify_webhook_authenticity(self, payload: bytes, signature: str | None) -> bool:
        """Check a webhook body against its signature header.

        Args:
            payload: Raw request body
            signature: Webhook signature header

        Returns:
            True if the signature was produced with the webhook secret
        """
        pass

    @abstractmethod
    async def refund(
        self,
        payment_id: str,
        amount: int,
        notes: dict | None = None,
    ) -> RefundResult:
        """Refund a captured payment.

        Args:
            payment_id: Gateway payment id
            amount: Refund amount in smallest currency unit

        Returns:
            RefundResult with refund details
        """
        pass

    def parse_webhook(self, payload: bytes) -> GatewayEvent | None:
        """Parse an authenticated webhook body."""
        return parse_webhook_event(payload)
