#!/usr/bin/env python3
"""
Cancel, refund and webhook replay flow script.

DO NOT ADD BUSINESS LOGIC HERE.
This script only orchestrates API calls.
All rules live in the backend.

Requires the server running with PAYMENT_GATEWAY=sandbox and the tokens
written by scripts/seed_dev_data.py.

Usage:
    python scripts/flow_refund_and_cancel.py --pickup 2026-11-10T09:00 --dropoff 2026-11-12T18:00

Flow:
    1. Create booking and open a payment order (customer)
    2. Deliver a signed payment.captured webhook
    3. Replay the same webhook (expect "duplicate")
    4. Cancel the booking (customer)
    5. Try to assign a driver (expect 409 with allowed transitions)
    6. Refund the booking (admin)
    7. Deliver the matching refund.created webhook (expect "duplicate")
"""

import argparse
import json
import sys
from datetime import datetime

import httpx

from app.gateways.sandbox import SandboxGateway
from flow_book_and_pay import BASE_URL, api_request, load_seed, print_result, print_step


def send_webhook(body: bytes, signature: str) -> dict:
    response = httpx.post(
        f"{BASE_URL}/api/v1/webhooks/razorpay",
        content=body,
        headers={"Content-Type": "application/json", "X-Razorpay-Signature": signature},
        timeout=10.0,
    )
    return {"status": response.status_code, "data": response.json() if response.text else {}}


def main():
    parser = argparse.ArgumentParser(description="Cancel and refund flow")
    parser.add_argument("--pickup", required=True, help="Pickup (YYYY-MM-DDTHH:MM)")
    parser.add_argument("--dropoff", required=True, help="Dropoff (YYYY-MM-DDTHH:MM)")
    args = parser.parse_args()

    seed = load_seed()
    customer, admin = seed["tokens"]["user"], seed["tokens"]["admin"]
    gateway = SandboxGateway()
    pickup = datetime.fromisoformat(args.pickup)
    dropoff = datetime.fromisoformat(args.dropoff)
    fields = ["booking_code", "status", "payment_status", "total_amount"]

    # Step 1: Create booking and order
    print_step(1, "Create booking and open order")
    result = api_request(customer, "POST", "/api/v1/bookings", {
        "vehicle_id": seed["vehicle_id"],
        "pickup_date": pickup.date().isoformat(),
        "pickup_time": pickup.strftime("%H:%M"),
        "dropoff_date": dropoff.date().isoformat(),
        "dropoff_time": dropoff.strftime("%H:%M"),
        "pickup_location": "Pune Station",
        "dropoff_location": "Lonavala",
    })
    if not print_result(result, fields):
        sys.exit(1)
    booking_id = result["data"]["booking"]["id"]
    total = result["data"]["booking"]["total_amount"]

    result = api_request(customer, "POST", f"/api/v1/payments/bookings/{booking_id}/order")
    if not print_result(result):
        sys.exit(1)
    order_id = result["data"]["payment"]["order_id"]

    # Steps 2-3: Capture webhook and replay
    payment_id, _ = gateway.checkout(order_id)
    body, signature = gateway.build_webhook("payment.captured", order_id, payment_id, total)
    print_step(2, "Deliver payment.captured webhook")
    print_result(send_webhook(body, signature))
    print_step(3, "Replay payment.captured webhook")
    print_result(send_webhook(body, signature))

    # Step 4: Cancel
    print_step(4, "Cancel booking (customer)")
    result = api_request(customer, "POST", f"/api/v1/bookings/{booking_id}/cancel", {
        "reason": "Plans changed",
    })
    if not print_result(result, fields):
        sys.exit(1)

    # Step 5: Rejected transition
    print_step(5, "Assign driver on cancelled booking (expect 409)")
    profile = api_request(admin, "GET", "/api/v1/users/me")["data"]
    result = api_request(admin, "POST", f"/api/v1/bookings/{booking_id}/assign-driver", {
        "driver_id": profile["id"],
    })
    print(f"Status: {result['status']}")
    print(json.dumps(result["data"], indent=2))

    # Step 6: Refund
    print_step(6, "Refund booking (admin)")
    result = api_request(admin, "POST", f"/api/v1/bookings/{booking_id}/refund", {})
    if not print_result(result):
        sys.exit(1)
    refund_id = result["data"]["payment"]["refund_id"]

    # Step 7: Refund webhook arriving after the synchronous refund
    print_step(7, "Deliver refund.created webhook")
    body, signature = gateway.build_webhook(
        "refund.created", order_id, payment_id, total, refund_id=refund_id
    )
    print_result(send_webhook(body, signature))

    print("\n" + "="*60)
    print("CANCEL AND REFUND FLOW COMPLETE")
    print("="*60)


if __name__ == "__main__":
    main()
