"""Razorpay gateway adapter.

Talks to the Razorpay REST API with HTTP basic auth (key id / key secret).
Documentation: https://razorpay.com/docs/api/
"""

import logging

import httpx

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

logger = logging.getLogger(__name__)


class RazorpayGateway(ReconciliationGateway):
    """Razorpay payment gateway implementation."""

    def __init__(
        self,
        key_id: str | None = None,
        key_secret: str | None = None,
        webhook_secret: str | None = None,
        api_url: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.key_id = key_id if key_id is not None else settings.razorpay_key_id
        self.key_secret = key_secret if key_secret is not None else settings.razorpay_key_secret
        self.webhook_secret = (
            webhook_secret if webhook_secret is not None else settings.razorpay_webhook_secret
        )
        self.api_url = (api_url or settings.razorpay_api_url).rstrip("/")
        self.timeout = timeout or settings.gateway_timeout_seconds
        self._transport = transport

    @property
    def gateway_type(self) -> GatewayType:
        return GatewayType.RAZORPAY

    @property
    def is_configured(self) -> bool:
        return bool(self.key_id and self.key_secret)

    @property
    def webhook_configured(self) -> bool:
        return bool(self.webhook_secret)

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.api_url,
            auth=(self.key_id or "", self.key_secret or ""),
            timeout=self.timeout,
            transport=self._transport,
        )

    async def create_order(
        self,
        amount: int,
        currency: str,
        receipt: str,
        notes: dict | None = None,
    ) -> OrderResult:
        """Create Razorpay order."""
        if not self.is_configured:
            return OrderResult(
                success=False,
                error_message="Razorpay not configured",
            )

        try:
            async with self._client() as client:
                response = await client.post(
                    "/orders",
                    json={
                        "amount": amount,
                        "currency": currency,
                        "receipt": receipt[:40],
                        "notes": notes or {},
                    },
                )

            if response.status_code != 200:
                return OrderResult(
                    success=False,
                    error_message=f"API returned {response.status_code}",
                    raw_response={"status_code": response.status_code, "body": response.text[:500]},
                )

            data = response.json()
            return OrderResult(
                success=True,
                order_id=data["id"],
                raw_response=data,
            )

        except (httpx.HTTPError, ValueError, KeyError) as e:
            logger.warning(f"Razorpay order creation failed: {e}")
            return OrderResult(
                success=False,
                error_message=str(e),
            )

    def verify_client_proof(self, order_id: str, payment_id: str, signature: str) -> bool:
        """Verify checkout signature over ``order_id|payment_id``."""
        if not self.key_secret:
            return False
        expected = sign_client_proof(self.key_secret, order_id, payment_id)
        return signatures_match(expected, signature)

    def verify_webhook_authenticity(self, payload: bytes, signature: str | None) -> bool:
        """Verify ``X-Razorpay-Signature`` over the raw body."""
        if not self.webhook_secret:
            return False
        expected = sign_webhook_payload(self.webhook_secret, payload)
        return signatures_match(expected, signature)

    async def refund(
        self,
        payment_id: str,
        amount: int,
        notes: dict | None = None,
    ) -> RefundResult:
        """Process Razorpay refund."""
        if not self.is_configured:
            return RefundResult(
                success=False,
                error_message="Razorpay not configured",
            )

        try:
            async with self._client() as client:
                response = await client.post(
                    f"/payments/{payment_id}/refund",
                    json={"amount": amount, "notes": notes or {}},
                )

            if response.status_code != 200:
                return RefundResult(
                    success=False,
                    error_message=f"API returned {response.status_code}",
                    raw_response={"status_code": response.status_code, "body": response.text[:500]},
                )

            data = response.json()
            return RefundResult(
                success=True,
                refund_id=data["id"],
                raw_response={"status": data.get("status"), "id": data["id"]},
            )

        except (httpx.HTTPError, ValueError, KeyError) as e:
            logger.warning(f"Razorpay refund failed for {payment_id}: {e}")
            return RefundResult(
                success=False,
                error_message=str(e),
            )
