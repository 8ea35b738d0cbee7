"""Sandbox gateway adapter for development and tests.

Never leaves the process. Orders and refunds get predictable identifiers,
and signatures follow the same HMAC rules as Razorpay, so the rest of the
payment flow (proof verification, webhooks, refunds) behaves as if a real
gateway had responded.
"""

import json
from uuid import uuid4

from app.config import settings
from app.gateways.base import (
    GatewayType,
    OrderResult,
    ReconciliationGateway,
    RefundResult,
    sign_client_proof,
    sign_webhook_payload,
    signatures_match,
)

SANDBOX_KEY_SECRET = "sandbox_key_secret"
SANDBOX_WEBHOOK_SECRET = "sandbox_webhook_secret"


class SandboxGateway(ReconciliationGateway):
    """Offline gateway. Set ``available = False`` to simulate an outage."""

    def __init__(
        self,
        key_secret: str | None = None,
        webhook_secret: str | None = None,
    ):
        self.key_secret = key_secret or settings.razorpay_key_secret or SANDBOX_KEY_SECRET
        self.webhook_secret = (
            webhook_secret or settings.razorpay_webhook_secret or SANDBOX_WEBHOOK_SECRET
        )
        self.available = True
        self.orders: dict[str, dict] = {}
        self.refunds: dict[str, dict] = {}

    @property
    def gateway_type(self) -> GatewayType:
        return GatewayType.SANDBOX

    @property
    def is_configured(self) -> bool:
        return True

    @property
    def webhook_configured(self) -> bool:
        return True

    async def create_order(
        self,
        amount: int,
        currency: str,
        receipt: str,
        notes: dict | None = None,
    ) -> OrderResult:
        """Create sandbox order (succeeds unless an outage is simulated)."""
        if not self.available:
            return OrderResult(success=False, error_message="Sandbox gateway offline")

        order_id = f"order_{uuid4().hex[:14]}"
        order = {
            "id": order_id,
            "amount": amount,
            "currency": currency,
            "receipt": receipt,
            "notes": notes or {},
            "status": "created",
        }
        self.orders[order_id] = order
        return OrderResult(success=True, order_id=order_id, raw_response=order)

    def verify_client_proof(self, order_id: str, payment_id: str, signature: str) -> bool:
        expected = sign_client_proof(self.key_secret, order_id, payment_id)
        return signatures_match(expected, signature)

    def verify_webhook_authenticity(self, payload: bytes, signature: str | None) -> bool:
        expected = sign_webhook_payload(self.webhook_secret, payload)
        return signatures_match(expected, signature)

    async def refund(
        self,
        payment_id: str,
        amount: int,
        notes: dict | None = None,
    ) -> RefundResult:
        """Process sandbox refund."""
        if not self.available:
            return RefundResult(success=False, error_message="Sandbox gateway offline")

        refund_id = f"rfnd_{uuid4().hex[:14]}"
        refund = {"id": refund_id, "payment_id": payment_id, "amount": amount, "status": "processed"}
        self.refunds[refund_id] = refund
        return RefundResult(success=True, refund_id=refund_id, raw_response=refund)

    # Checkout and webhook simulation

    def checkout(self, order_id: str) -> tuple[str, str]:
        """Simulate a successful checkout: returns (payment_id, signature)."""
        payment_id = f"pay_{uuid4().hex[:14]}"
        return payment_id, sign_client_proof(self.key_secret, order_id, payment_id)

    def build_webhook(
        self,
        event: str,
        order_id: str | None = None,
        payment_id: str | None = None,
        amount: int | None = None,
        refund_id: str | None = None,
        method: str = "card",
    ) -> tuple[bytes, str]:
        """Build a signed webhook body: returns (raw_body, signature)."""
        entities: dict[str, dict] = {
            "payment": {
                "entity": {
                    "id": payment_id,
                    "order_id": order_id,
                    "amount": amount,
                    "method": method,
                    "status": "failed" if event == "payment.failed" else "captured",
                }
            }
        }
        if event == "refund.created":
            entities["refund"] = {
                "entity": {"id": refund_id, "payment_id": payment_id, "amount": amount}
            }
        body = json.dumps({"event": event, "payload": entities}).encode()
        return body, sign_webhook_payload(self.webhook_secret, body)
