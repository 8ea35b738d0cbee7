"""Webhook endpoints for payment gateways."""

from typing import Annotated

from fastapi import APIRouter, Depends, Header, Request, status

from app.api.deps import get_reconciliation_service
from app.services.reconciliation_service import ReconciliationService

router = APIRouter()


@router.post("/razorpay", status_code=status.HTTP_200_OK)
async def razorpay_webhook(
    request: Request,
    reconciliation: Annotated[ReconciliationService, Depends(get_reconciliation_service)],
    razorpay_signature: str | None = Header(None, alias="X-Razorpay-Signature"),
) -> dict:
    """Handle gateway webhook events.

    Duplicate and unknown deliveries are acknowledged with 200 so the
    gateway stops retrying; signature failures are rejected with 401.
    """
    # Raw body is what the signature covers
    payload = await request.body()
    outcome = await reconciliation.handle_webhook(payload, razorpay_signature)
    return outcome.as_dict()
