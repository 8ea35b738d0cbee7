#!/usr/bin/env python3
"""
Complete booking, payment and trip flow script.

DO NOT ADD BUSINESS LOGIC HERE.
This script only orchestrates API calls.
All rules live in the backend.

Requires the server running with PAYMENT_GATEWAY=sandbox and the tokens
written by scripts/seed_dev_data.py.

Usage:
    python scripts/flow_book_and_pay.py --pickup 2026-11-01T09:00 --dropoff 2026-11-04T09:00

Flow:
    1. Create booking (customer)
    2. Open payment order (customer)
    3. Simulate sandbox checkout and verify the payment (customer)
    4. Verify again to show the repeat is a no-op
    5. Assign driver (admin)
    6. Start trip (driver)
    7. Complete trip (driver)
"""

import argparse
import json
import sys
from datetime import datetime
from pathlib import Path

import httpx

from app.gateways.sandbox import SandboxGateway

BASE_URL = "http://localhost:8000"
TOKEN_FILE = Path(__file__).parent.parent / ".tokens.json"


def load_seed() -> dict:
    if not TOKEN_FILE.exists():
        print(f"ERROR: {TOKEN_FILE} not found, run scripts/seed_dev_data.py first")
        sys.exit(1)
    return json.loads(TOKEN_FILE.read_text())


def api_request(token: str, method: str, endpoint: str, data: dict | None = None) -> dict:
    """Make authenticated API request."""
    headers = {"Authorization": f"Bearer {token}"}
    response = httpx.request(
        method,
        f"{BASE_URL}{endpoint}",
        headers=headers,
        json=data if method != "GET" else None,
        timeout=10.0,
        follow_redirects=True,
    )
    return {"status": response.status_code, "data": response.json() if response.text else {}}


def print_step(step: int, title: str):
    print(f"\n{'='*60}")
    print(f"STEP {step}: {title}")
    print("="*60)


def print_result(result: dict, fields: list[str] | None = None) -> bool:
    """Print result, optionally filtering booking fields."""
    if result["status"] >= 400:
        print(f"ERROR ({result['status']}): {json.dumps(result['data'], indent=2)}")
        return False

    print(f"Status: {result['status']}")
    data = result["data"]
    if fields and "booking" in data:
        data = {
            **{k: data["booking"].get(k) for k in fields},
            "applied": data.get("applied"),
            "allowed_transitions": data.get("allowed_transitions"),
        }
    print(json.dumps(data, indent=2))
    return True


def main():
    parser = argparse.ArgumentParser(description="Complete booking and payment flow")
    parser.add_argument("--pickup", required=True, help="Pickup (YYYY-MM-DDTHH:MM)")
    parser.add_argument("--dropoff", required=True, help="Dropoff (YYYY-MM-DDTHH:MM)")
    parser.add_argument("--skip-trip", action="store_true", help="Stop after payment")
    args = parser.parse_args()

    seed = load_seed()
    customer, admin, driver = seed["tokens"]["user"], seed["tokens"]["admin"], seed["tokens"]["vendor"]
    pickup = datetime.fromisoformat(args.pickup)
    dropoff = datetime.fromisoformat(args.dropoff)
    fields = ["booking_code", "status", "payment_status", "total_amount", "duration"]

    # Step 1: Create booking
    print_step(1, "Create booking")
    result = api_request(customer, "POST", "/api/v1/bookings", {
        "vehicle_id": seed["vehicle_id"],
        "pickup_date": pickup.date().isoformat(),
        "pickup_time": pickup.strftime("%H:%M"),
        "dropoff_date": dropoff.date().isoformat(),
        "dropoff_time": dropoff.strftime("%H:%M"),
        "pickup_location": "Bengaluru Airport",
        "dropoff_location": "Mysuru Palace",
    })
    if not print_result(result, fields):
        sys.exit(1)
    booking_id = result["data"]["booking"]["id"]

    # Step 2: Open payment order
    print_step(2, "Open payment order")
    result = api_request(customer, "POST", f"/api/v1/payments/bookings/{booking_id}/order")
    if not print_result(result):
        sys.exit(1)
    order_id = result["data"]["payment"]["order_id"]

    # Step 3: Checkout and verify
    print_step(3, "Sandbox checkout and verify")
    payment_id, signature = SandboxGateway().checkout(order_id)
    proof = {"order_id": order_id, "payment_id": payment_id, "signature": signature}
    result = api_request(customer, "POST", f"/api/v1/payments/bookings/{booking_id}/verify", proof)
    if not print_result(result, fields):
        sys.exit(1)

    # Step 4: Repeat verification
    print_step(4, "Verify again (expect applied=false)")
    result = api_request(customer, "POST", f"/api/v1/payments/bookings/{booking_id}/verify", proof)
    if not print_result(result, fields):
        sys.exit(1)

    if args.skip_trip:
        print("\n" + "="*60)
        print("FLOW COMPLETE (skipped trip)")
        print("="*60)
        return

    # Step 5: Assign driver
    print_step(5, "Assign driver (admin)")
    driver_profile = api_request(driver, "GET", "/api/v1/users/me")["data"]
    result = api_request(admin, "POST", f"/api/v1/bookings/{booking_id}/assign-driver", {
        "driver_id": driver_profile["id"],
    })
    if not print_result(result, fields):
        sys.exit(1)

    # Step 6: Start trip
    print_step(6, "Start trip (driver)")
    result = api_request(driver, "POST", f"/api/v1/bookings/{booking_id}/start")
    if not print_result(result, fields):
        sys.exit(1)

    # Step 7: Complete trip
    print_step(7, "Complete trip (driver)")
    result = api_request(driver, "POST", f"/api/v1/bookings/{booking_id}/complete")
    if not print_result(result, fields):
        sys.exit(1)

    profile = api_request(customer, "GET", "/api/v1/users/me")["data"]
    print("\n" + "="*60)
    print("FULL FLOW COMPLETE")
    print("="*60)
    print(f"Customer bookings: {profile['total_bookings']}")
    print(f"Customer spent:    {profile['total_spent']:,} paise")


if __name__ == "__main__":
    main()
