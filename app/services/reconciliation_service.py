"""Gateway webhook reconciliation.

Authenticates the raw body, parses the event and hands it to the lifecycle
service. Nothing is read or written before the signature has been checked.
"""

import logging
from dataclasses import dataclass

from app.core.exceptions import GatewayUnavailable, SignatureError, ValidationError
from app.gateways.base import WebhookEventType
from app.services.booking_service import BookingLifecycleService, LifecycleResult

logger = logging.getLogger(__name__)


@dataclass
class WebhookOutcome:
    """Acknowledgement returned to the gateway."""

    event: str
    status: str  # applied, duplicate, ignored
    booking_code: str | None = None

    def as_dict(self) -> dict:
        return {"received": True, "event": self.event, "status": self.status, "booking": self.booking_code}


class ReconciliationService:
    """Maps verified gateway events onto booking and payment state."""

    def __init__(self, lifecycle: BookingLifecycleService):
        self.lifecycle = lifecycle
        self.gateway = lifecycle.gateway

    async def handle_webhook(self, payload: bytes, signature: str | None) -> WebhookOutcome:
        """Process one webhook delivery.

        Raises:
            GatewayUnavailable: If no webhook secret is configured
            SignatureError: If the signature does not match the body
            ValidationError: If the body is not a gateway event
        """
        if not self.gateway.webhook_configured:
            raise GatewayUnavailable(self.gateway.gateway_type.value, "webhook secret not configured")
        if not self.gateway.verify_webhook_authenticity(payload, signature):
            logger.warning("Rejected webhook with invalid signature")
            raise SignatureError("Invalid webhook signature")

        event = self.gateway.parse_webhook(payload)
        if event is None:
            raise ValidationError("Invalid webhook payload")

        if event.event_type == WebhookEventType.PAYMENT_CAPTURED.value:
            if not event.order_id or not event.payment_id:
                raise ValidationError("payment.captured requires order and payment ids")
            result = await self.lifecycle.record_gateway_capture(
                event.order_id, event.payment_id, amount=event.amount, method=event.method
            )
        elif event.event_type == WebhookEventType.PAYMENT_FAILED.value:
            if not event.order_id:
                raise ValidationError("payment.failed requires an order id")
            result = await self.lifecycle.record_gateway_failure(
                event.order_id, reason=event.error_description
            )
        elif event.event_type == WebhookEventType.REFUND_CREATED.value:
            if not event.payment_id or not event.refund_id:
                raise ValidationError("refund.created requires payment and refund ids")
            result = await self.lifecycle.record_gateway_refund(
                event.payment_id, event.refund_id, amount=event.amount
            )
        else:
            logger.info(f"Ignoring webhook event {event.event_type}")
            return WebhookOutcome(event=event.event_type, status="ignored")

        return self._outcome(event.event_type, result, event.order_id or event.payment_id)

    def _outcome(
        self, event_type: str, result: LifecycleResult | None, reference: str | None
    ) -> WebhookOutcome:
        if result is None:
            logger.warning(f"Webhook {event_type} references unknown payment {reference}")
            return WebhookOutcome(event=event_type, status="ignored")
        return WebhookOutcome(
            event=event_type,
            status="applied" if result.applied else "duplicate",
            booking_code=result.booking.booking_code,
        )
